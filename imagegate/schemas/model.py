from imagegate.schemas.upscale import CamelModel


class ModelItem(CamelModel):
    id: str
    display_name: str
    minimum_tier: str | None
    capabilities: list[str]
    credit_multiplier: int
    accessible: bool


class ModelListResponse(CamelModel):
    tier: str
    items: list[ModelItem]
