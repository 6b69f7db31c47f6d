"""Core types and DTOs for the inference gateway."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class Tier(str, Enum):
    """Subscription tiers. Declaration order is the access order."""

    FREE = "free"
    HOBBY = "hobby"
    PRO = "pro"
    BUSINESS = "business"

    @property
    def rank(self) -> int:
        return _TIER_RANK[self]

    @classmethod
    def parse(cls, value: str | None) -> Tier:
        """Lenient parse: unknown or missing tiers fall back to FREE."""
        if not value:
            return cls.FREE
        try:
            return cls(value.strip().lower())
        except ValueError:
            return cls.FREE


_TIER_RANK: dict[Tier, int] = {tier: index for index, tier in enumerate(Tier)}


class UpscaleMode(str, Enum):
    UPSCALE = "upscale"
    ENHANCE = "enhance"
    BOTH = "both"
    CUSTOM = "custom"


class Capability(str, Enum):
    UPSCALE = "upscale"
    ENHANCE = "enhance"
    FACE_RESTORE = "face_restore"
    TEXT_PRESERVE = "text_preserve"
    CUSTOM_PROMPT = "custom_prompt"


class DenialCode(str, Enum):
    """Why the admission controller refused a guest request."""

    GLOBAL_LIMIT = "GLOBAL_LIMIT"
    IP_LIMIT = "IP_LIMIT"
    BOT_DETECTED = "BOT_DETECTED"


class ProviderErrorKind(str, Enum):
    """Structured classification of a failed provider call."""

    RATE_LIMITED = "rate_limited"  # Transient throttling: retryable
    TIMEOUT = "timeout"  # Terminal, never retried
    SAFETY = "safety"  # Content-safety rejection
    FAILED = "failed"  # Anything else


# ---------------------------------------------------------------------------
# Model descriptor
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ModelDescriptor:
    """Static metadata for one logical model."""

    id: str
    backend_version: str
    minimum_tier: Tier | None = None
    capabilities: frozenset[Capability] = frozenset()
    credit_multiplier: int = 1
    display_name: str = ""

    def supports(self, capability: Capability) -> bool:
        return capability in self.capabilities

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "displayName": self.display_name or self.id,
            "minimumTier": self.minimum_tier.value if self.minimum_tier else None,
            "capabilities": sorted(c.value for c in self.capabilities),
            "creditMultiplier": self.credit_multiplier,
        }


# ---------------------------------------------------------------------------
# Upscale config: what the caller asked for
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class UpscaleConfig:
    mode: UpscaleMode = UpscaleMode.UPSCALE
    scale: int = 2
    model_id: str = "real-esrgan"
    denoise: bool = False
    enhance_faces: bool = False
    preserve_text: bool = False
    custom_prompt: str | None = None


# ---------------------------------------------------------------------------
# Inference request / result
# ---------------------------------------------------------------------------


@dataclass
class InferenceRequest:
    """One call to the external provider. Request scoped, never persisted."""

    image_data: str
    mime_type: str = "image/jpeg"
    config: UpscaleConfig = field(default_factory=UpscaleConfig)
    request_id: str = field(default_factory=lambda: uuid.uuid4().hex[:16])

    @property
    def image_data_url(self) -> str:
        """The image as a data URL, which is what the provider accepts."""
        if self.image_data.startswith("data:"):
            return self.image_data
        return f"data:{self.mime_type or 'image/jpeg'};base64,{self.image_data}"


@dataclass
class InferenceResult:
    output_ref: str
    mime_type: str
    expires_at: datetime
    model_version: str = ""
    latency_ms: int = 0
    provider_raw: dict[str, Any] = field(default_factory=dict)

    @property
    def expires_at_ms(self) -> int:
        return int(self.expires_at.timestamp() * 1000)


# ---------------------------------------------------------------------------
# Admission decision
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AdmissionDecision:
    allowed: bool
    code: DenialCode | None = None
    reason: str = ""

    @classmethod
    def allow(cls) -> AdmissionDecision:
        return cls(allowed=True)

    @classmethod
    def deny(cls, code: DenialCode, reason: str) -> AdmissionDecision:
        return cls(allowed=False, code=code, reason=reason)
