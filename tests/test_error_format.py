"""Tests for error message formatting and Rich markup escaping."""

from __future__ import annotations

from io import StringIO

from rich.console import Console

from psmodule_import.errors import ErrorCategory
from psmodule_import.errors import ImportErrorRecord
from psmodule_import.errors import ModuleNotFoundError
from psmodule_import.utils.error_format import escape_markup
from psmodule_import.utils.error_format import format_error_message
from psmodule_import.utils.error_format import format_error_record


class TestEscapeMarkup:
    """Unit tests for the escape_markup() helper."""

    def test_path_with_closing_tag_pattern(self):
        """[/opt/modules/Foo] looks like a closing tag."""
        result = escape_markup("[/opt/modules/Foo.psd1]")
        assert "/opt/modules/Foo.psd1" in result

    def test_preserves_plain_text(self):
        assert escape_markup("Connection refused") == "Connection refused"

    def test_handles_non_string_input(self):
        assert escape_markup(ValueError("boom")) == "boom"
        assert escape_markup(42) == "42"

    def test_renders_correctly_in_rich(self):
        buf = StringIO()
        c = Console(file=buf, force_terminal=False, no_color=True)
        c.print(f"[red]Error:[/red] {escape_markup('NotFound [Foo]: missing')}")
        assert "NotFound [Foo]: missing" in buf.getvalue()


class TestFormatErrorMessage:
    def test_includes_type_name(self):
        assert format_error_message(ValueError("invalid input")) == "ValueError: invalid input"

    def test_without_type_name(self):
        assert format_error_message(ValueError("invalid input"), include_type=False) == "invalid input"

    def test_empty_timeout_gets_friendly_message(self):
        assert "timed out" in format_error_message(TimeoutError())

    def test_unknown_empty_exception(self):
        assert format_error_message(RuntimeError()) == "RuntimeError: (no additional details)"


class TestFormatErrorRecord:
    def test_record_from_exception(self):
        record = ImportErrorRecord.from_exception(ModuleNotFoundError("gone", "Foo"))

        assert format_error_record(record) == "NotFound [Foo]: gone"
        assert record.error_id == "Modules_ModuleNotFound"

    def test_identifier_falls_back_to_batch_item(self):
        record = ImportErrorRecord.from_exception(ModuleNotFoundError("gone"), "Bar")
        assert record.identifier == "Bar"

    def test_warning_without_identifier(self):
        record = ImportErrorRecord.warning(ErrorCategory.PARTIAL_CAPABILITY, None, "partial")
        assert format_error_record(record) == "PartialCapability: partial"
