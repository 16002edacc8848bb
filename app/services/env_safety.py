from __future__ import annotations

import os
from pathlib import Path

from loguru import logger

from app.config import settings


class ConfigurationError(RuntimeError):
    """Raised when a required API key or setting is missing."""


def sanitize_ssl_keylogfile() -> None:
    """Unset SSLKEYLOGFILE when it points to an unusable path.

    Some environments set this globally for TLS debugging. If the path is
    inaccessible, underlying HTTP clients can crash while creating SSL context.
    """
    keylog_path = os.getenv("SSLKEYLOGFILE", "").strip()
    if not keylog_path:
        return

    try:
        path = Path(keylog_path)
        parent = path.parent
        if parent and not parent.exists():
            os.environ.pop("SSLKEYLOGFILE", None)
            return

        # Validate writability without truncating existing files.
        with open(path, "a", encoding="utf-8"):
            pass
    except OSError:
        os.environ.pop("SSLKEYLOGFILE", None)


def required_api_keys() -> dict[str, str]:
    """Map env var names to the configured values the active setup needs."""
    keys = {"OPENROUTER_API_KEY": settings.openrouter_api_key}
    provider = settings.search_provider.lower().strip()
    if provider == "tavily":
        keys["TAVILY_API_KEY"] = settings.tavily_api_key
    else:
        keys["EXA_API_KEY"] = settings.exa_api_key
    return keys


def missing_api_keys() -> list[str]:
    return [name for name, value in required_api_keys().items() if not (value or "").strip()]


def log_env_status() -> None:
    missing = missing_api_keys()
    if not missing:
        logger.info("All required API keys are configured")
        return
    logger.error("Missing required environment variables:")
    for name in missing:
        logger.error(f"  - {name}")
    logger.error("Research requests will be rejected until these are set (see .env).")
