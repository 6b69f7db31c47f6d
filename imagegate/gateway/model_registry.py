"""Model Registry: logical model id → backend version, tier gate and pricing.

The catalogue is static configuration: it is built once at process start
and never mutated afterwards, so lookups are referentially transparent.
"""

from __future__ import annotations

from collections.abc import Iterable
from types import MappingProxyType

from imagegate.core.exceptions import ModelNotFoundError
from imagegate.gateway.types import Capability, ModelDescriptor, Tier

_PROMPTABLE = frozenset(
    {
        Capability.UPSCALE,
        Capability.ENHANCE,
        Capability.FACE_RESTORE,
        Capability.TEXT_PRESERVE,
        Capability.CUSTOM_PROMPT,
    }
)

DEFAULT_MODELS: tuple[ModelDescriptor, ...] = (
    ModelDescriptor(
        id="real-esrgan",
        backend_version="nightmareai/real-esrgan:f121d640bd286e1fdc67f9799164c1d5be36ff74576ee11c803ae5b665dd46aa",
        minimum_tier=None,
        capabilities=frozenset({Capability.UPSCALE, Capability.FACE_RESTORE}),
        credit_multiplier=1,
        display_name="Real-ESRGAN",
    ),
    ModelDescriptor(
        id="gfpgan",
        backend_version="tencentarc/gfpgan:0fbacf7afc6c144e5be9767cff80f25aff23e52b0708f17e20f9879b2f21516c",
        minimum_tier=None,
        capabilities=frozenset({Capability.UPSCALE, Capability.FACE_RESTORE}),
        credit_multiplier=1,
        display_name="GFPGAN face restore",
    ),
    ModelDescriptor(
        id="clarity-upscaler",
        backend_version="philz1337x/clarity-upscaler:dfad41707589d68ecdccd1dfa600d55a208f9310748e44bfe35b4a6291453d5e",
        minimum_tier=Tier.HOBBY,
        capabilities=_PROMPTABLE,
        credit_multiplier=4,
        display_name="Clarity Upscaler",
    ),
    ModelDescriptor(
        id="flux-kontext-pro",
        backend_version="black-forest-labs/flux-kontext-pro",
        minimum_tier=Tier.HOBBY,
        capabilities=_PROMPTABLE,
        credit_multiplier=2,
        display_name="Flux Kontext Pro",
    ),
    ModelDescriptor(
        id="flux-2-pro",
        backend_version="black-forest-labs/flux-2-pro",
        minimum_tier=Tier.HOBBY,
        capabilities=_PROMPTABLE,
        credit_multiplier=8,
        display_name="Flux 2 Pro",
    ),
    ModelDescriptor(
        id="nano-banana-pro",
        backend_version="google/nano-banana-pro",
        minimum_tier=Tier.HOBBY,
        capabilities=_PROMPTABLE,
        credit_multiplier=8,
        display_name="Nano Banana Pro",
    ),
)


class ModelRegistry:
    """Read-only lookup over a fixed set of ModelDescriptors.

    Usage:
        registry = ModelRegistry()
        model = registry.get_model("clarity-upscaler")
        if not registry.can_access(Tier.FREE, model.id):
            ...
    """

    def __init__(self, models: Iterable[ModelDescriptor] | None = None):
        catalogue: dict[str, ModelDescriptor] = {}
        for model in DEFAULT_MODELS if models is None else models:
            if model.id in catalogue:
                raise ValueError(f"Duplicate model id: {model.id}")
            catalogue[model.id] = model
        self._models = MappingProxyType(catalogue)

    def get_model(self, model_id: str) -> ModelDescriptor:
        try:
            return self._models[model_id]
        except KeyError:
            raise ModelNotFoundError(model_id) from None

    def resolve_version(self, model_id: str) -> str:
        return self.get_model(model_id).backend_version

    def can_access(self, user_tier: Tier | str, model_id: str) -> bool:
        """True iff the user's tier ranks at or above the model's minimum tier."""
        model = self.get_model(model_id)
        if model.minimum_tier is None:
            return True
        tier = user_tier if isinstance(user_tier, Tier) else Tier.parse(user_tier)
        return tier.rank >= model.minimum_tier.rank

    def list_models(self) -> list[ModelDescriptor]:
        return list(self._models.values())

    def models_for_tier(self, user_tier: Tier | str) -> list[ModelDescriptor]:
        return [m for m in self._models.values() if self.can_access(user_tier, m.id)]
