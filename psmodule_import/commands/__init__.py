"""CLI command groups for psmodule."""

__all__ = [
    "cache",
    "module",
]
