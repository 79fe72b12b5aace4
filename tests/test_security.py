"""Tests for security utilities (vulnrelay/utils/security.py).

Tests sanitization of externally sourced values before they reach logs:
- Log injection prevention via sanitize_log_message()
- Sensitive data masking via mask_sensitive()
"""

from vulnrelay.utils.security import mask_sensitive, sanitize_log_message


class TestSanitizeLogMessage:
    """Test suite for log injection prevention."""

    def test_removes_newlines(self):
        """Test sanitize_log_message() removes newline characters."""
        assert sanitize_log_message("registry.local/app\ninjected") == "registry.local/appinjected"

    def test_removes_carriage_returns_and_tabs(self):
        assert sanitize_log_message("app:v1\r\n\tfake entry") == "app:v1fake entry"

    def test_removes_control_characters(self):
        """Test C0 and C1 control characters are stripped."""
        assert sanitize_log_message("a\x00b\x1bc\x7fd\x9fe") == "abcde"

    def test_preserves_normal_text(self):
        message = "123456789012.dkr.ecr.us-east-1.amazonaws.com/api:v1.0.0@sha256:abc"
        assert sanitize_log_message(message) == message

    def test_handles_none_input(self):
        assert sanitize_log_message(None) == ""

    def test_handles_numeric_input(self):
        assert sanitize_log_message(404) == "404"
        assert sanitize_log_message(1.5) == "1.5"

    def test_handles_bytes_input(self):
        assert sanitize_log_message(b"app\nv1") == "appv1"

    def test_handles_invalid_utf8_bytes(self):
        assert sanitize_log_message(b"app\xff") == "app\ufffd"

    def test_prevents_log_injection_attacks(self):
        """Test a forged log line cannot start on its own line."""
        malicious = "app:v1\n2024-01-01 00:00:00 - vulnrelay - INFO - forged"

        result = sanitize_log_message(malicious)

        assert "\n" not in result
        assert result.startswith("app:v12024-01-01")


class TestMaskSensitive:
    """Test suite for secret masking."""

    def test_masks_api_key_shows_last_4(self):
        assert mask_sensitive("vf_live_1234567890abcdef") == "***cdef"

    def test_masks_with_custom_visible_chars(self):
        assert mask_sensitive("vf_live_1234567890abcdef", visible_chars=6) == "***abcdef"

    def test_masks_short_values_completely(self):
        assert mask_sensitive("abcd") == "***"
        assert mask_sensitive("abc") == "***"

    def test_masks_none_and_empty(self):
        assert mask_sensitive(None) == "***"
        assert mask_sensitive("") == "***"

    def test_custom_mask_character(self):
        assert mask_sensitive("supersecret", mask_char="#") == "###cret"

    def test_never_shows_beginning_of_secret(self):
        secret = "prefix_that_must_stay_hidden_1234"

        assert "prefix" not in mask_sensitive(secret)
