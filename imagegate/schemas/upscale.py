"""Upscale request / response schemas. JSON field names are camelCase."""

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from imagegate.gateway.model_registry import DEFAULT_MODELS
from imagegate.gateway.types import UpscaleConfig, UpscaleMode

GuestMimeType = Literal["image/jpeg", "image/png", "image/webp"]
MimeType = Literal["image/jpeg", "image/png", "image/webp", "image/heic"]

_MODEL_IDS = frozenset(m.id for m in DEFAULT_MODELS)


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# --- Guest ---


class GuestUpscaleRequest(CamelModel):
    image_data: str = Field(..., min_length=100)
    mime_type: GuestMimeType
    visitor_id: str = Field(..., min_length=10, max_length=100)


class ProcessingInfo(CamelModel):
    model_used: str
    scale: int
    processing_time_ms: int


class GuestUpscaleResponse(CamelModel):
    success: bool = True
    image_url: str
    expires_at: int  # epoch milliseconds
    mime_type: str
    processing: ProcessingInfo


class GuestUsageResponse(CamelModel):
    count: int
    limit: int


# --- Authenticated ---


class UpscaleConfigIn(CamelModel):
    mode: UpscaleMode
    scale: Literal[2, 4] = 2
    model_id: str = "real-esrgan"
    denoise: bool = False
    enhance_faces: bool = False
    preserve_text: bool = False
    custom_prompt: str | None = Field(None, max_length=2000)

    @field_validator("model_id")
    @classmethod
    def _known_model(cls, value: str) -> str:
        if value not in _MODEL_IDS:
            raise ValueError(f"Unknown model '{value}'")
        return value

    def to_config(self) -> UpscaleConfig:
        return UpscaleConfig(
            mode=self.mode,
            scale=self.scale,
            model_id=self.model_id,
            denoise=self.denoise,
            enhance_faces=self.enhance_faces,
            preserve_text=self.preserve_text,
            custom_prompt=self.custom_prompt or None,
        )


class UpscaleRequest(CamelModel):
    image_data: str = Field(..., min_length=1)
    mime_type: MimeType = "image/jpeg"
    config: UpscaleConfigIn


class UpscaleResponse(CamelModel):
    image_data: str  # provider output URL
    mime_type: str
    expires_at: int  # epoch milliseconds
    credits_remaining: int
