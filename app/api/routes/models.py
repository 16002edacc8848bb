from __future__ import annotations

from fastapi import APIRouter

from app.api.deps import get_configured_models
from app.models.schemas import ModelInfo, ModelsResponse

router = APIRouter(prefix="/api/models", tags=["models"])


@router.get("", response_model=ModelsResponse)
async def list_models():
    """List the model used by each research stage."""
    models = get_configured_models()
    return ModelsResponse(models=[ModelInfo(**m) for m in models])
