"""Tests for the command line entry point (vulnrelay/__main__.py)."""

from unittest.mock import patch

from vulnrelay.__main__ import main


class TestMain:
    """Test suite for main()."""

    def test_invalid_configuration_exits_1(self, monkeypatch, caplog):
        """Test a bad environment is reported without starting the server."""
        monkeypatch.setenv("MODE", "swarm")
        monkeypatch.setenv("MOCK_MODE", "true")

        with patch("vulnrelay.__main__.Granian") as granian:
            assert main() == 1

        granian.assert_not_called()
        assert "Invalid configuration" in caplog.text

    def test_serves_app_on_configured_port(self, monkeypatch):
        monkeypatch.setenv("MOCK_MODE", "true")
        monkeypatch.setenv("PORT", "9191")
        monkeypatch.delenv("MODE", raising=False)

        with patch("vulnrelay.__main__.Granian") as granian:
            assert main() == 0

        args, kwargs = granian.call_args
        assert args == ("vulnrelay.main:app",)
        assert kwargs["port"] == 9191
        granian.return_value.serve.assert_called_once()
