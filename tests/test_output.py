"""
Tests for Rich Output Utilities
===============================

Tests for output.py - value styling and message escaping.
"""

import pytest

from fleetwarden import output


@pytest.fixture(autouse=True)
def wide_console(monkeypatch):
    monkeypatch.setattr(output.console, "width", 240)


class TestStyled:
    """Tests for styled()."""

    @pytest.mark.parametrize("value,family", [
        ("critical", "priority"),
        ("normal", "priority"),
        ("dismissed", "status"),
        ("overridden", "status"),
    ])
    def test_every_stored_value_has_a_style(self, value, family):
        markup = output.styled(value, family)

        assert markup == f"[fw.{family}.{value}]{value}[/]"
        assert output.console.get_style(f"fw.{family}.{value}") is not None


class TestMessages:
    """Tests for the message helpers."""

    def test_error_keeps_brackets_literal(self, capsys):
        output.print_error("Unknown escalation: [esc-1]")
        assert "error: Unknown escalation: [esc-1]" in capsys.readouterr().out

    def test_success(self, capsys):
        output.print_success("esc-1 is now resolved")
        assert "ok: esc-1 is now resolved" in capsys.readouterr().out

    def test_key_value_table(self, capsys):
        output.print_key_value_table({"Autonomy level": "full_auto"}, title="Configuration")
        out = capsys.readouterr().out

        assert "Configuration" in out
        assert "full_auto" in out
