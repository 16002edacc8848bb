"""Loguru sinks plus structured records for model calls, searches and research stages.

Records are emitted as ``TAG: {...}`` lines so the daily log file can be
grepped per request id.
"""

import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from loguru import logger

from app.config import settings

LOG_DIR = Path(settings.log_dir)
LOG_DIR.mkdir(parents=True, exist_ok=True)

CONSOLE_FORMAT = (
    "<green>{time:HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"
)
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {name}:{function}:{line} - {message}"

NOISY_LOGGERS = (
    "uvicorn.access",
    "sse_starlette.sse",
    "httpx",
    "httpcore",
    "openai._base_client",
    "asyncio",
)

logger.remove()
logger.add(sys.stderr, format=CONSOLE_FORMAT, level=settings.app_log_level.upper(), colorize=True)
logger.add(
    LOG_DIR / "research_{time:YYYY-MM-DD}.log",
    format=FILE_FORMAT,
    level="DEBUG",
    rotation="00:00",
    retention="14 days",
    encoding="utf-8",
)

for _name in NOISY_LOGGERS:
    logging.getLogger(_name).setLevel(settings.noisy_log_level.upper())


def _emit(tag: str, record: dict[str, Any], *, failed: bool = False) -> None:
    record = {"timestamp": datetime.now(timezone.utc).isoformat(), **record}
    if failed:
        logger.error(f"{tag}_FAILED: {record}")
    else:
        logger.info(f"{tag}: {record}")


def log_model_call(
    model: str,
    caller: str,
    input_tokens: int = 0,
    output_tokens: int = 0,
    duration_ms: int = 0,
    attempt: int = 1,
    error: Optional[str] = None,
) -> None:
    """One completion request, successful or not."""
    _emit(
        "MODEL_CALL",
        {
            "model": model,
            "caller": caller,
            "attempt": attempt,
            "tokens": {"input": input_tokens, "output": output_tokens},
            "duration_ms": duration_ms,
            "error": error,
        },
        failed=error is not None,
    )


def log_search_call(
    provider: str,
    query: str,
    results: int = 0,
    duration_ms: int = 0,
    error: Optional[str] = None,
) -> None:
    _emit(
        "SEARCH_CALL",
        {
            "provider": provider,
            "query": query[:120],
            "results": results,
            "duration_ms": duration_ms,
            "error": error,
        },
        failed=error is not None,
    )


def log_research_step(
    request_id: str,
    stage: str,
    status: str,
    data: Optional[dict] = None,
) -> None:
    """Stage transition (started / completed / failed / degraded) for one request."""
    _emit(
        "RESEARCH_STEP",
        {"request_id": request_id, "stage": stage, "status": status, "data": data or {}},
    )


def log_event(event_type: str, message: str, **fields: Any) -> None:
    _emit("EVENT", {"event_type": event_type, "message": message, **fields})
