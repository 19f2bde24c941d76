"""HTTP transports for remote sessions and inventory endpoints.

Wire format (JSON):

- Session: ``POST {base}/invoke`` with ``{"command", "parameters"}``,
  answered by ``{"results": [{...}, ...]}``.
- Inventory: ``POST {base}/modules`` with ``{"names", "resource_uri",
  "namespace"}``, answered by ``{"modules": [{"module_name",
  "is_management_capable", "files": [{"file_name", "file_kind",
  "content"}]}]}`` where ``content`` is base64.

Requests are synchronous; cancellation is checked before and after each
request, and the client timeout bounds how long a cancelled call can block.
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
from typing import Any

import httpx
from pydantic import BaseModel
from pydantic import Field
from pydantic import ValidationError

from ..cancellation import CancellationToken
from ..errors import TransportError
from ..models import FileKind
from ..models import RemoteModule
from ..models import RemoteModuleFile

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0


class InvokeResponse(BaseModel):
    results: list[dict[str, Any]] = Field(default_factory=list)


class WireModuleFile(BaseModel):
    file_name: str
    file_kind: FileKind = FileKind.OTHER
    content: str = ""

    def to_model(self) -> RemoteModuleFile:
        try:
            raw = base64.b64decode(self.content, validate=True)
        except binascii.Error as e:
            raise ValueError(f"File '{self.file_name}' has invalid base64 content: {e}") from e
        return RemoteModuleFile(file_name=self.file_name, file_kind=self.file_kind, raw_bytes=raw)


class WireModule(BaseModel):
    module_name: str
    is_management_capable: bool = True
    files: list[WireModuleFile] = Field(default_factory=list)

    def to_model(self) -> RemoteModule:
        return RemoteModule(
            module_name=self.module_name,
            is_management_capable=self.is_management_capable,
            files=[f.to_model() for f in self.files],
        )


class QueryModulesResponse(BaseModel):
    modules: list[WireModule] = Field(default_factory=list)


class _HttpTransport:
    """Shared request handling for the HTTP handles."""

    def __init__(self, base_url: str, timeout: float = DEFAULT_TIMEOUT, client: httpx.Client | None = None):
        self.base_url = base_url.rstrip("/")
        self.computer_name = httpx.URL(self.base_url).host or self.base_url
        self._client = client or httpx.Client(timeout=timeout, follow_redirects=True)

    def close(self) -> None:
        self._client.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def _post(self, path: str, payload: dict[str, Any], identifier: str, cancel: CancellationToken | None) -> Any:
        if cancel is not None:
            cancel.raise_if_cancelled(identifier)
        url = f"{self.base_url}/{path}"
        logger.debug(f"[module:remote] POST {url}")
        try:
            response = self._client.post(
                url,
                content=json.dumps(payload, default=str),
                headers={"Content-Type": "application/json"},
            )
            response.raise_for_status()
            body = response.json()
        except httpx.HTTPError as e:
            raise TransportError(f"Request to {url} failed for '{identifier}': {e}", identifier) from e
        except json.JSONDecodeError as e:
            raise TransportError(f"Response from {url} is not valid JSON for '{identifier}': {e}", identifier) from e
        if cancel is not None:
            cancel.raise_if_cancelled(identifier)
        return body


class HttpRemoteSession(_HttpTransport):
    """Interactive remote session reached over HTTP."""

    def invoke(
        self, command: str, parameters: dict[str, Any], cancel: CancellationToken | None = None
    ) -> list[dict[str, Any]]:
        identifier = str(parameters.get("Name") or parameters.get("Module") or command)
        body = self._post("invoke", {"command": command, "parameters": parameters}, identifier, cancel)
        try:
            return InvokeResponse.model_validate(body).results
        except ValidationError as e:
            raise TransportError(f"Malformed response to '{command}' from {self.computer_name}: {e}", identifier) from e


class HttpInventoryEndpoint(_HttpTransport):
    """Inventory endpoint reached over HTTP."""

    def query_modules(
        self,
        names: list[str],
        resource_uri: str | None = None,
        namespace: str | None = None,
        cancel: CancellationToken | None = None,
    ) -> list[RemoteModule]:
        identifier = ", ".join(names)
        payload = {"names": list(names), "resource_uri": resource_uri, "namespace": namespace}
        body = self._post("modules", payload, identifier, cancel)
        try:
            return [module.to_model() for module in QueryModulesResponse.model_validate(body).modules]
        except (ValidationError, ValueError) as e:
            raise TransportError(f"Malformed module inventory from {self.computer_name}: {e}", identifier) from e
