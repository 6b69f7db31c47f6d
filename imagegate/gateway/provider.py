"""Inference provider client: Replicate predictions over HTTP.

Translates an InferenceRequest into the provider's prediction protocol,
waits for the prediction to finish, and returns an InferenceResult that
references the output image by URL.

Failures are raised as ``ProviderError`` with a structured ``kind``:
  - RATE_LIMITED: HTTP 429 or throttling reported by the provider (retryable)
  - TIMEOUT: HTTP timeout or prediction still running at the deadline
  - SAFETY: NSFW / safety filter rejection
  - FAILED: anything else

Model-specific input shapes:
  - real-esrgan: {image, scale (2|4), face_enhance}
  - gfpgan: {img, scale (≤4), version}  (note: 'img' not 'image')
  - clarity-upscaler: {image, prompt, scale_factor, output_format}
  - flux-kontext-pro: {prompt, input_image, aspect_ratio, output_format}
  - flux-2-pro: {prompt, input_images[], ...}
  - nano-banana-pro: {prompt, image_input[], resolution, ...}
"""

from __future__ import annotations

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Any

import httpx

from imagegate.gateway.types import (
    InferenceRequest,
    InferenceResult,
    ModelDescriptor,
    ProviderErrorKind,
    UpscaleConfig,
)

logger = logging.getLogger(__name__)

_SAFETY_MARKERS = ("nsfw", "safety", "sensitive content")
_TIMEOUT_MARKERS = ("timeout", "timed out")
_THROTTLE_MARKERS = ("rate limit", "throttled", "429")
_PENDING_STATUSES = ("starting", "processing")


class ProviderError(Exception):
    """Raised when a provider call fails. ``kind`` drives retry and error mapping."""

    def __init__(self, message: str, kind: ProviderErrorKind = ProviderErrorKind.FAILED, status_code: int = 0):
        super().__init__(message)
        self.kind = kind
        self.status_code = status_code


def classify_failure(message: str) -> ProviderErrorKind:
    lower = message.lower()
    if any(m in lower for m in _SAFETY_MARKERS):
        return ProviderErrorKind.SAFETY
    if any(m in lower for m in _THROTTLE_MARKERS):
        return ProviderErrorKind.RATE_LIMITED
    if any(m in lower for m in _TIMEOUT_MARKERS):
        return ProviderErrorKind.TIMEOUT
    return ProviderErrorKind.FAILED


# ---------------------------------------------------------------------------
# Input builders
# ---------------------------------------------------------------------------


def _prompt(config: UpscaleConfig, base: str, faces: str, text: str, suffix: str = "") -> str:
    if config.custom_prompt:
        return config.custom_prompt
    prompt = base
    if config.denoise:
        prompt += " Remove sensor noise and grain while preserving details."
    if config.enhance_faces:
        prompt += f" {faces}"
    if config.preserve_text:
        prompt += f" {text}"
    return prompt + suffix


def build_model_input(model_id: str, request: InferenceRequest) -> dict[str, Any]:
    """Build the provider input payload for a model."""
    config = request.config
    image = request.image_data_url
    scale = config.scale

    if model_id == "gfpgan":
        return {"img": image, "scale": min(scale, 4), "version": "v1.4"}

    if model_id == "clarity-upscaler":
        return {
            "image": image,
            "prompt": _prompt(
                config,
                "masterpiece, best quality, highres.",
                "Enhance facial features naturally.",
                "Preserve text and logos clearly.",
            ),
            "scale_factor": scale,
            "output_format": "png",
        }

    if model_id == "flux-kontext-pro":
        return {
            "prompt": _prompt(
                config,
                "Enhance and upscale this image, improve quality and details.",
                "Enhance facial features naturally without altering identity.",
                "Preserve and sharpen any text or logos.",
            ),
            "input_image": image,
            "aspect_ratio": "match_input_image",
            "output_format": "png",
        }

    if model_id == "flux-2-pro":
        return {
            "prompt": _prompt(
                config,
                "Restore this image exactly as it would look in higher resolution.",
                "Enhance facial features naturally without altering identity.",
                "Preserve text and logos clearly.",
                suffix=" No creative changes.",
            ),
            "input_images": [image],
            "aspect_ratio": "match_input_image",
            "output_format": "png",
            "safety_tolerance": 2,
            "prompt_upsampling": False,
        }

    if model_id == "nano-banana-pro":
        resolution = {2: "2K", 4: "4K", 8: "4K"}.get(scale, "2K")
        return {
            "prompt": _prompt(
                config,
                f"Upscale this image to {scale}x resolution with enhanced sharpness and detail.",
                "Enhance facial features naturally without altering identity.",
                "Preserve and sharpen any text or logos in the image.",
            ),
            "image_input": [image],
            "aspect_ratio": "match_input_image",
            "resolution": resolution,
            "output_format": "png",
            "safety_filter_level": "block_only_high",
        }

    # real-esrgan and fallback: only 2x or 4x
    return {"image": image, "scale": 2 if scale == 2 else 4, "face_enhance": config.enhance_faces}


def _extract_output_url(output: Any) -> str | None:
    if isinstance(output, list):
        return _extract_output_url(output[0]) if output else None
    if isinstance(output, str):
        return output
    if isinstance(output, dict):
        url = output.get("url") or output.get("href")
        if isinstance(url, str):
            return url
    return None


def _guess_mime_type(url: str) -> str:
    lower = url.lower()
    if ".png" in lower:
        return "image/png"
    if ".webp" in lower:
        return "image/webp"
    return "image/jpeg"


# ---------------------------------------------------------------------------
# Providers
# ---------------------------------------------------------------------------


class BaseInferenceProvider(ABC):
    """Base class for inference providers."""

    name: str = "base"

    @abstractmethod
    async def predict(self, request: InferenceRequest, model: ModelDescriptor) -> InferenceResult:
        """Run one prediction and return a reference to the output image."""
        ...


class ReplicateProvider(BaseInferenceProvider):
    """Replicate predictions API adapter.

    Pinned versions ("owner/name:hash") go to ``POST /predictions``;
    official models ("owner/name") go to ``POST /models/{owner}/{name}/predictions``.
    The ``Prefer: wait`` header lets short predictions finish in the first
    response; longer ones are polled until ``timeout`` elapses.
    """

    name = "replicate"

    def __init__(
        self,
        api_token: str,
        base_url: str = "https://api.replicate.com/v1",
        timeout: float = 60.0,
        poll_interval: float = 1.0,
        output_ttl_seconds: int = 3600,
    ):
        self.api_token = api_token
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.poll_interval = poll_interval
        self.output_ttl_seconds = output_ttl_seconds

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_token}",
            "Content-Type": "application/json",
            "Prefer": f"wait={min(int(self.timeout), 60)}",
        }

    def _endpoint(self, backend_version: str) -> tuple[str, dict[str, Any]]:
        if ":" in backend_version:
            _, version_hash = backend_version.split(":", 1)
            return f"{self.base_url}/predictions", {"version": version_hash}
        return f"{self.base_url}/models/{backend_version}/predictions", {}

    async def predict(self, request: InferenceRequest, model: ModelDescriptor) -> InferenceResult:
        if not self.api_token:
            raise ProviderError("Provider API token is not configured")

        url, body = self._endpoint(model.backend_version)
        body["input"] = build_model_input(model.id, request)
        start = time.monotonic()
        deadline = start + self.timeout

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                resp = await client.post(url, json=body, headers=self._headers())
                prediction = self._parse(resp)

                while prediction.get("status") in _PENDING_STATUSES:
                    if time.monotonic() >= deadline:
                        raise ProviderError(
                            f"Prediction timed out after {self.timeout}s",
                            kind=ProviderErrorKind.TIMEOUT,
                        )
                    await asyncio.sleep(self.poll_interval)
                    urls = prediction.get("urls")
                    poll_url = urls.get("get") if isinstance(urls, dict) else None
                    if not poll_url:
                        raise ProviderError("Prediction has no polling URL")
                    resp = await client.get(poll_url, headers=self._headers())
                    prediction = self._parse(resp)

        except httpx.TimeoutException:
            raise ProviderError(f"Timeout after {self.timeout}s", kind=ProviderErrorKind.TIMEOUT) from None
        except httpx.TransportError as e:
            raise ProviderError(f"Transport error: {e}") from e

        latency_ms = int((time.monotonic() - start) * 1000)
        return self._to_result(prediction, model, latency_ms)

    @staticmethod
    def _parse(resp: httpx.Response) -> dict[str, Any]:
        if resp.status_code == 429:
            raise ProviderError(
                "Rate limited by provider (429)",
                kind=ProviderErrorKind.RATE_LIMITED,
                status_code=429,
            )
        if resp.status_code >= 400:
            try:
                payload = resp.json()
            except ValueError:
                payload = None
            detail = payload.get("detail", "") if isinstance(payload, dict) else resp.text
            message = f"Provider returned {resp.status_code}: {detail}"
            raise ProviderError(message, kind=classify_failure(str(detail)), status_code=resp.status_code)
        try:
            prediction = resp.json()
        except ValueError:
            raise ProviderError("Provider returned a non-JSON response", status_code=resp.status_code) from None
        if not isinstance(prediction, dict):
            raise ProviderError(
                f"Unexpected prediction payload: {type(prediction).__name__}", status_code=resp.status_code
            )
        return prediction

    def _to_result(self, prediction: dict[str, Any], model: ModelDescriptor, latency_ms: int) -> InferenceResult:
        status = prediction.get("status")
        if status != "succeeded":
            error = str(prediction.get("error") or f"Prediction {status}")
            raise ProviderError(error, kind=classify_failure(error))

        output_url = _extract_output_url(prediction.get("output"))
        if not output_url:
            raise ProviderError("No output URL returned from provider")

        logger.info("Prediction %s for %s succeeded in %dms", prediction.get("id", "?"), model.id, latency_ms)
        return InferenceResult(
            output_ref=output_url,
            mime_type=_guess_mime_type(output_url),
            expires_at=datetime.now(timezone.utc) + timedelta(seconds=self.output_ttl_seconds),
            model_version=model.backend_version,
            latency_ms=latency_ms,
            provider_raw=prediction,
        )
