"""Unit tests for sandboxed execution and the document parsers.

This module tests:
- Timeout enforcement and child termination
- Error and overflow propagation from the child
- XML and YAML parsing, including XXE and alias expansion
- Disclosure oracles and message truncation

Run all tests: pytest tests/test_sandbox.py
Run without child processes: pytest tests/test_sandbox.py -m "not sandbox"
"""

import time
from unittest.mock import patch

import pytest

from vulnshop.errors import InvalidInputFormat
from vulnshop.parsers import (
    SandboxedParser,
    decode_document,
    load_yaml_document,
    matches_etc_passwd_file,
    matches_system_ini_file,
    parse_xml_document,
    trunc,
)
from vulnshop.sandbox import (
    SandboxError,
    SandboxOverflow,
    SandboxTimeout,
    run_sandboxed,
)


# =============================================================================
# TEST CLASS: run_sandboxed
# =============================================================================


@pytest.mark.sandbox
class TestRunSandboxed:
    """Tests for the child-process runner."""

    def test_returns_result(self):
        """Test the child's return value reaches the parent."""
        assert run_sandboxed(len, "complaint", timeout=10) == 9

    def test_timeout_raises(self):
        """Test a call exceeding the timeout raises SandboxTimeout promptly."""
        start = time.monotonic()
        with pytest.raises(SandboxTimeout) as exc_info:
            run_sandboxed(time.sleep, 30, timeout=0.5)

        assert time.monotonic() - start < 10
        assert exc_info.value.message == "Script execution timed out."

    def test_error_carries_message(self):
        """Test child exceptions surface as SandboxError with their message."""
        with pytest.raises(SandboxError) as exc_info:
            run_sandboxed(int, "not a number", timeout=10)

        assert not isinstance(exc_info.value, SandboxTimeout)
        assert exc_info.value.error_type == "ValueError"
        assert "not a number" in exc_info.value.message

    def test_overflow_is_reported(self):
        """Test OverflowError in the child surfaces as SandboxOverflow."""
        with pytest.raises(SandboxOverflow) as exc_info:
            run_sandboxed(float.fromhex, "0x1p99999", timeout=10)

        assert exc_info.value.error_type == "OverflowError"


# =============================================================================
# TEST CLASS: Parse Functions
# =============================================================================


class TestParseFunctions:
    """Tests for the in-child parse functions, called directly."""

    def test_parse_plain_xml(self):
        """Test plain XML round-trips to its serialization."""
        result = parse_xml_document("<complaint>late delivery</complaint>")
        assert result == "<complaint>late delivery</complaint>"

    def test_parse_xml_substitutes_internal_entities(self):
        """Test internal entities are expanded in the output."""
        document = (
            '<!DOCTYPE complaint [<!ENTITY shop "Vuln Shop">]>'
            "<complaint>&shop;</complaint>"
        )
        assert "Vuln Shop" in parse_xml_document(document)

    def test_parse_xml_resolves_external_file(self, tmp_path):
        """Test external SYSTEM entities are read from disk."""
        secret = tmp_path / "secret.txt"
        secret.write_text("root:x:0:0:root:/root:/bin/bash")
        document = (
            f'<!DOCTYPE complaint [<!ENTITY xxe SYSTEM "file://{secret}">]>'
            "<complaint>&xxe;</complaint>"
        )

        result = parse_xml_document(document)

        assert "root:x:0:0:root" in result

    def test_parse_invalid_xml_raises(self):
        """Test malformed XML raises a parser error."""
        with pytest.raises(Exception):
            parse_xml_document("<complaint>")

    def test_load_yaml_serializes_json(self):
        """Test YAML documents are serialized as JSON."""
        result = load_yaml_document("order: 42\nitems: [a, b]\n")
        assert result == '{"order": 42, "items": ["a", "b"]}'

    def test_load_yaml_expands_aliases(self):
        """Test aliases are fully expanded in the output."""
        result = load_yaml_document('a: &a ["x","x"]\nb: [*a,*a]\n')
        assert result.count('"x"') == 6


# =============================================================================
# TEST CLASS: SandboxedParser
# =============================================================================


class TestSandboxedParser:
    """Tests for input validation and sandbox dispatch."""

    def test_default_timeout_from_config(self):
        """Test the timeout defaults to SANDBOX_TIMEOUT_MS."""
        with patch("vulnshop.parsers.SANDBOX_TIMEOUT_MS", 1500):
            parser = SandboxedParser()
        assert parser.timeout == 1.5

    def test_oversized_document_rejected(self):
        """Test documents above max_size never reach the sandbox."""
        parser = SandboxedParser(max_size=10)
        with patch("vulnshop.parsers.run_sandboxed") as mock_run:
            with pytest.raises(InvalidInputFormat) as exc_info:
                parser.parse_xml(b"<a>" + b"x" * 20 + b"</a>")

        assert exc_info.value.message == "Invalid XML data format or size"
        mock_run.assert_not_called()

    def test_non_utf8_rejected(self):
        """Test undecodable documents are rejected."""
        with pytest.raises(InvalidInputFormat) as exc_info:
            decode_document(b"\xff\xfe\xfa", "YAML")
        assert exc_info.value.message == "Invalid YAML data format or size"

    def test_missing_buffer_rejected(self):
        """Test a missing buffer is rejected."""
        with pytest.raises(InvalidInputFormat):
            decode_document(None, "XML")

    def test_dispatches_to_sandbox(self):
        """Test parsing runs through run_sandboxed with the configured timeout."""
        parser = SandboxedParser(timeout=0.75)
        with patch("vulnshop.parsers.run_sandboxed", return_value="<a/>") as mock_run:
            assert parser.parse_xml(b"<a/>") == "<a/>"

        mock_run.assert_called_once_with(parse_xml_document, "<a/>", timeout=0.75)

    @pytest.mark.sandbox
    def test_parse_yaml_in_sandbox(self):
        """Test a benign YAML document parses in a child process."""
        parser = SandboxedParser(timeout=10)
        assert parser.parse_yaml(b"status: ok\n") == '{"status": "ok"}'

    @pytest.mark.sandbox
    @pytest.mark.slow
    def test_yaml_bomb_exhausts_sandbox(self, yaml_bomb):
        """Test a nested alias bomb ends in timeout or overflow."""
        parser = SandboxedParser(timeout=1)
        with pytest.raises((SandboxTimeout, SandboxOverflow)):
            parser.parse_yaml(yaml_bomb)


# =============================================================================
# TEST CLASS: Oracles and Truncation
# =============================================================================


class TestOracles:
    """Tests for disclosure detection helpers."""

    def test_etc_passwd_line(self):
        """Test a passwd line is recognised."""
        assert matches_etc_passwd_file("root:x:0:0:root:/root:/bin/bash") is True

    def test_etc_passwd_macos_header(self):
        """Test the macOS passwd header is recognised."""
        text = "# Note that this file is consulted directly only when the system is running"
        assert matches_etc_passwd_file(text) is True

    def test_system_ini(self):
        """Test the Windows system.ini marker is recognised."""
        assert matches_system_ini_file("; for 16-bit app support\n[drivers]") is True

    def test_plain_text_does_not_match(self):
        """Test ordinary complaint text matches neither oracle."""
        text = "My order arrived late and broken."
        assert matches_etc_passwd_file(text) is False
        assert matches_system_ini_file(text) is False


class TestTrunc:
    """Tests for trunc()."""

    def test_short_text_unchanged(self):
        """Test text within the limit is returned as-is."""
        assert trunc("short", 10) == "short"

    def test_long_text_capped_with_ellipsis(self):
        """Test long text is capped and the ellipsis counts toward the limit."""
        result = trunc("x" * 500, 400)
        assert len(result) == 400
        assert result.endswith("...")

    def test_line_breaks_removed(self):
        """Test CR, LF and CRLF are removed."""
        assert trunc("a\nb\r\nc\rd", 100) == "abcd"
