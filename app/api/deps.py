from __future__ import annotations

from fastapi import HTTPException

from app.llm_client import STAGES, get_model
from app.services.env_safety import missing_api_keys


def require_api_keys() -> None:
    """Reject requests up front when the upstream API keys are not configured."""
    missing = missing_api_keys()
    if missing:
        raise HTTPException(
            status_code=503,
            detail=f"Service not configured: missing {', '.join(missing)}",
        )


def get_configured_models() -> list[dict[str, str]]:
    """Return the model configured for each pipeline stage."""
    return [{"stage": stage, "id": get_model(stage)} for stage in STAGES]
