"""Staging directories for remote-sourced modules.

Every remote module is materialized under a deterministic directory derived
from (module name, version, remote host identity, process key). The directory
belongs to the module: it is deleted by a removal hook when the module is
unloaded, or immediately when the import fails.
"""

from __future__ import annotations

import contextlib
import hashlib
import json
import logging
import os
import re
import shutil
import tempfile
import uuid
from collections.abc import Iterator
from pathlib import Path

from packaging.version import Version

from ..models import ModuleInfo
from ..models import RemovalHook

logger = logging.getLogger(__name__)

STAGING_PREFIX = "remoteIpMoProxy"
ZONE_RECORD_FILE = ".zone-of-origin.json"
ZONE_XATTR = "user.zone_of_origin"
INTRANET_ZONE = "Intranet"

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9.\-]+")


def default_staging_root() -> Path:
    return Path(tempfile.gettempdir()) / "psmodule-import"


def _safe(text: str) -> str:
    return _UNSAFE_CHARS.sub("_", text).strip("_") or "_"


def random_file_name(original_name: str, suffix: str) -> str:
    """Collision-free file name for a flattened remote file.

    Format: ``{first 20 chars of the original file name}_{random}{suffix}``.
    """
    return f"{original_name[:20]}_{uuid.uuid4().hex[:12]}{suffix}"


class StagingArea:
    """Root directory under which staging directories are created."""

    def __init__(self, root: Path | str | None = None, process_key: str | None = None):
        self.root = Path(root) if root is not None else default_staging_root()
        self.process_key = process_key or str(os.getpid())

    def path_for(self, module_name: str, version: Version | str | None, host_identity: str) -> Path:
        """Deterministic staging directory for one remote module.

        Same inputs always produce the same path within one process. The
        host identity is hashed so that endpoint details (resource URI,
        namespace) discriminate without leaking into the directory name.
        """
        digest = hashlib.sha1(host_identity.encode("utf-8")).hexdigest()[:8]
        host = _safe(host_identity.split("|", 1)[0])[:40]
        version_text = str(version) if version is not None else "0.0"
        directory = f"{STAGING_PREFIX}_{_safe(module_name)}_{_safe(version_text)}_{host}_{digest}_{self.process_key}"
        return self.root / directory

    def list_directories(self) -> list[Path]:
        if not self.root.is_dir():
            return []
        return sorted(p for p in self.root.iterdir() if p.is_dir() and p.name.startswith(STAGING_PREFIX))

    def clear(self) -> int:
        """Delete every staging directory under the root.

        Returns:
            Number of directories removed
        """
        removed = 0
        for directory in self.list_directories():
            if remove_staging_directory(directory):
                removed += 1
        return removed


def remove_staging_directory(path: Path) -> bool:
    """Delete a staging directory; returns False if it could not be removed."""
    if not path.exists():
        return True
    try:
        shutil.rmtree(path)
    except OSError as e:
        logger.warning(f"Failed to remove staging directory {path}: {e}")
        return False
    logger.debug(f"[module:remote] removed staging directory {path}")
    return True


@contextlib.contextmanager
def staging_directory(path: Path) -> Iterator[Path]:
    """Create a staging directory that is deleted if the body raises.

    Cancellation and any other exception both roll back before propagating.
    On success the directory stays; ownership passes to the module via
    `cleanup_hook`.
    """
    path.mkdir(parents=True, exist_ok=True)
    try:
        yield path
    except BaseException:
        remove_staging_directory(path)
        raise


def cleanup_hook(path: Path) -> RemovalHook:
    """Removal hook that deletes the staging directory of an unloaded module."""

    def _remove(module: ModuleInfo) -> None:
        if path.exists():
            shutil.rmtree(path)
            logger.debug(f"[module:remote] removed staging directory {path} for {module.name}")

    return _remove


def mark_zone_of_origin(file_path: Path, zone: str = INTRANET_ZONE) -> None:
    """Record that a materialized file came from a remote zone.

    The mark lives in a per-directory record file; an extended attribute is
    also set where the filesystem supports one.
    """
    record_path = file_path.parent / ZONE_RECORD_FILE
    record: dict[str, str] = {}
    if record_path.exists():
        record = json.loads(record_path.read_text(encoding="utf-8"))
    record[file_path.name] = zone
    record_path.write_text(json.dumps(record, indent=2, sort_keys=True), encoding="utf-8")

    setxattr = getattr(os, "setxattr", None)
    if setxattr is not None:
        try:
            setxattr(file_path, ZONE_XATTR, zone.encode("utf-8"))
        except OSError as e:
            logger.debug(f"Extended attributes unavailable for {file_path}: {e}")


def zone_of_origin(file_path: Path) -> str | None:
    record_path = file_path.parent / ZONE_RECORD_FILE
    if not record_path.exists():
        return None
    return json.loads(record_path.read_text(encoding="utf-8")).get(file_path.name)
