"""Safe error message formatting utilities.

Ensures exceptions and error records always have useful display messages,
even when their str() representation is empty (e.g., TimeoutError).
"""

from __future__ import annotations

from rich.markup import escape as _escape_markup

from ..errors import ImportErrorRecord

# Friendly messages for specific exception types known to have empty str()
FRIENDLY_MESSAGES: dict[type, str] = {
    TimeoutError: "Request timed out. The remote host may be unreachable or slow to respond.",
    ConnectionResetError: "Connection was reset by the remote host.",
    BrokenPipeError: "Connection was closed unexpectedly.",
    KeyboardInterrupt: "Operation interrupted by user.",
}


def format_error_message(e: BaseException, *, include_type: bool = True) -> str:
    """Format an exception into a useful display message.

    Args:
        e: The exception to format
        include_type: Whether to include the exception type name

    Returns:
        A non-empty, user-friendly error message

    Examples:
        >>> format_error_message(ValueError("invalid input"))
        'ValueError: invalid input'

        >>> format_error_message(ValueError("invalid input"), include_type=False)
        'invalid input'
    """
    error_str = str(e)
    error_type = type(e).__name__

    if error_str:
        if include_type and error_type not in error_str:
            return f"{error_type}: {error_str}"
        return error_str

    for exc_type, friendly_msg in FRIENDLY_MESSAGES.items():
        if isinstance(e, exc_type):
            return f"{error_type}: {friendly_msg}"

    return f"{error_type}: (no additional details)"


def format_error_record(record: ImportErrorRecord) -> str:
    """One-line display form of an import error or warning record."""
    identifier = f" [{record.identifier}]" if record.identifier else ""
    message = record.message or (format_error_message(record.exception) if record.exception else "(no details)")
    return f"{record.category.value}{identifier}: {message}"


def escape_markup(value: object) -> str:
    """Escape a value for safe interpolation into Rich markup strings.

    Prevents Rich from interpreting brackets in error messages, file paths,
    or other dynamic content as markup tags.
    """
    return _escape_markup(str(value))
