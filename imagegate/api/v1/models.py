from fastapi import APIRouter, Depends, Header

from imagegate.core.dependencies import get_registry
from imagegate.gateway.model_registry import ModelRegistry
from imagegate.gateway.types import Tier
from imagegate.schemas.model import ModelItem, ModelListResponse

router = APIRouter(prefix="/models", tags=["models"])


@router.get("", response_model=ModelListResponse)
async def list_models(
    x_subscription_tier: str | None = Header(None),
    registry: ModelRegistry = Depends(get_registry),
):
    """Full catalogue, each entry flagged with whether the caller's tier may use it."""
    tier = Tier.parse(x_subscription_tier)
    items = [
        ModelItem(**model.to_dict(), accessible=registry.can_access(tier, model.id))
        for model in registry.list_models()
    ]
    return ModelListResponse(tier=tier.value, items=items)
