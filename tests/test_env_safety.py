from __future__ import annotations

import os
from types import SimpleNamespace
from unittest.mock import patch

from app.services.env_safety import missing_api_keys, sanitize_ssl_keylogfile


def test_sanitize_ssl_keylogfile_unsets_unwritable_path():
    with patch.dict(os.environ, {"SSLKEYLOGFILE": r"Z:\does-not-exist\virtual_file.log"}, clear=False):
        with patch("builtins.open", side_effect=PermissionError):
            sanitize_ssl_keylogfile()
        assert "SSLKEYLOGFILE" not in os.environ


def test_sanitize_ssl_keylogfile_keeps_usable_path():
    with patch.dict(os.environ, {"SSLKEYLOGFILE": r"C:\tmp\keylog.log"}, clear=False):
        with patch("pathlib.Path.exists", return_value=True):
            with patch("builtins.open"):
                sanitize_ssl_keylogfile()
        assert os.environ.get("SSLKEYLOGFILE") == r"C:\tmp\keylog.log"


def _settings(**overrides):
    values = {
        "openrouter_api_key": "or-key",
        "exa_api_key": "exa-key",
        "tavily_api_key": "",
        "search_provider": "exa",
    }
    values.update(overrides)
    return SimpleNamespace(**values)


def test_missing_api_keys_reports_blank_values():
    with patch("app.services.env_safety.settings", _settings(openrouter_api_key="  ")):
        assert missing_api_keys() == ["OPENROUTER_API_KEY"]


def test_missing_api_keys_follows_search_provider():
    with patch("app.services.env_safety.settings", _settings(search_provider="Tavily")):
        assert missing_api_keys() == ["TAVILY_API_KEY"]
    with patch("app.services.env_safety.settings", _settings()):
        assert missing_api_keys() == []
