"""Request Orchestrator: gates, dispatch and compensation for one request.

Each request walks an explicit state machine. Every state is a small frozen
dataclass and ``TRANSITIONS`` lists, per state class, the only classes it may
move to; ``RequestTrace.advance`` refuses anything else.

Anonymous path:
    Received → Validated (guest size) → Admitted (admission check)
      → Dispatched (provider, with retry) → Completed (+ admission commit)

Authenticated path:
    Received → Validated (tier size) → Resolved (known model + tier gate)
      → Charged (ledger debit) → Dispatched (provider, with retry) → Completed

Every gate before dispatch rejects without side effects. After a successful
charge any failure, including cancellation of the awaiting task, issues a
compensating ``refund:<reason>`` credit before the error surfaces.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Union

from sqlalchemy.exc import InterfaceError, OperationalError

from imagegate.core.config import Settings, settings as default_settings
from imagegate.core.exceptions import (
    AccountNotFoundError,
    AIGenerationError,
    AdmissionDenied,
    AppError,
    InsufficientCreditsError,
    ModelNotFoundError,
    ProcessingError,
    TierAccessError,
    ValidationError,
)
from imagegate.core.logging import mask
from imagegate.core.metrics import PROVIDER_RETRIES, REQUEST_OUTCOMES
from imagegate.gateway.admission import AdmissionController, hash_ip
from imagegate.gateway.model_registry import ModelRegistry
from imagegate.gateway.provider import BaseInferenceProvider, ProviderError
from imagegate.gateway.retry import with_retry
from imagegate.gateway.types import (
    InferenceRequest,
    InferenceResult,
    ModelDescriptor,
    ProviderErrorKind,
    Tier,
    UpscaleConfig,
)
from imagegate.services.credit_ledger import CreditLedger
from imagegate.services.validation import check_guest_size, check_tier_size

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# States
# ---------------------------------------------------------------------------


class Gate(str, Enum):
    SIZE = "size"
    MODEL = "model"
    ADMISSION = "admission"
    TIER = "tier"
    CREDITS = "credits"


@dataclass(frozen=True)
class Received:
    request_id: str


@dataclass(frozen=True)
class Validated:
    size_bytes: int


@dataclass(frozen=True)
class Admitted:
    ip_hash: str


@dataclass(frozen=True)
class Resolved:
    model_id: str
    cost: int


@dataclass(frozen=True)
class Charged:
    cost: int
    balance: int


@dataclass(frozen=True)
class Dispatched:
    model_id: str


@dataclass(frozen=True)
class Completed:
    latency_ms: int


@dataclass(frozen=True)
class Rejected:
    gate: Gate


@dataclass(frozen=True)
class Failed:
    refunded: bool
    reason: str = ""


RequestState = Union[Received, Validated, Admitted, Resolved, Charged, Dispatched, Completed, Rejected, Failed]

TRANSITIONS: dict[type, frozenset[type]] = {
    Received: frozenset({Validated, Rejected}),
    Validated: frozenset({Admitted, Resolved, Rejected}),
    Admitted: frozenset({Dispatched, Failed}),
    Resolved: frozenset({Charged, Rejected, Failed}),
    Charged: frozenset({Dispatched, Failed}),
    Dispatched: frozenset({Completed, Failed}),
    Completed: frozenset(),
    Rejected: frozenset(),
    Failed: frozenset(),
}

TERMINAL_STATES: tuple[type, ...] = (Completed, Rejected, Failed)


class InvalidTransition(RuntimeError):
    pass


class RequestTrace:
    """Current state of one request plus the path it took to get there."""

    def __init__(self, path: str, request_id: str):
        self.path = path
        self.state: RequestState = Received(request_id)
        self.history: list[RequestState] = [self.state]

    def advance(self, new_state: RequestState) -> RequestState:
        allowed = TRANSITIONS[type(self.state)]
        if type(new_state) not in allowed:
            raise InvalidTransition(f"{type(self.state).__name__} -> {type(new_state).__name__}")
        self.state = new_state
        self.history.append(new_state)
        if isinstance(new_state, TERMINAL_STATES):
            gate = new_state.gate.value if isinstance(new_state, Rejected) else ""
            REQUEST_OUTCOMES.labels(path=self.path, state=type(new_state).__name__.lower(), gate=gate).inc()
        return new_state

    @property
    def is_terminal(self) -> bool:
        return isinstance(self.state, TERMINAL_STATES)


# ---------------------------------------------------------------------------
# Outcomes
# ---------------------------------------------------------------------------


@dataclass
class GuestOutcome:
    result: InferenceResult
    model_id: str
    scale: int
    processing_time_ms: int
    trace: RequestTrace


@dataclass
class UpscaleOutcome:
    result: InferenceResult
    model_id: str
    cost: int
    credits_remaining: int
    trace: RequestTrace


def _provider_failure(exc: Exception) -> AppError:
    """Translate a dispatch failure into the error a client sees."""
    if isinstance(exc, AppError):
        return exc
    if isinstance(exc, ProviderError):
        if exc.kind == ProviderErrorKind.SAFETY:
            return AIGenerationError(
                "The image was blocked by the content safety filter.",
                finish_reason="SAFETY",
            )
        return ProcessingError(details={"reason": exc.kind.value})
    return ProcessingError()


def is_transient_store_error(exc: Exception) -> bool:
    """Dropped connections and lock timeouts on the ledger store; safe to retry a refund."""
    return isinstance(exc, (OperationalError, InterfaceError, ConnectionError, TimeoutError))


def _failure_reason(exc: BaseException) -> str:
    if isinstance(exc, asyncio.CancelledError):
        return "cancelled"
    if isinstance(exc, ProviderError):
        return exc.kind.value
    return "error"


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------


class RequestOrchestrator:
    """Drives one inference request through its gates to the provider.

    Collaborators are injected so tests can swap in fakes:
        admission: guest counters (check / commit)
        ledger: credit balance and adjustments
        registry: model catalogue and tier gate
        provider: the upstream inference API
    """

    def __init__(
        self,
        admission: AdmissionController,
        ledger: CreditLedger,
        registry: ModelRegistry,
        provider: BaseInferenceProvider,
        config: Settings | None = None,
    ):
        self.admission = admission
        self.ledger = ledger
        self.registry = registry
        self.provider = provider
        self.config = config or default_settings

    async def _dispatch(self, request: InferenceRequest, model: ModelDescriptor) -> InferenceResult:
        def on_retry(attempt: int, delay_ms: int, error: Exception) -> None:
            PROVIDER_RETRIES.labels(model=model.id).inc()
            logger.warning(
                "Request %s: provider retry %d for %s in %dms (%s)",
                request.request_id,
                attempt,
                model.id,
                delay_ms,
                error,
            )

        return await with_retry(
            lambda: self.provider.predict(request, model),
            max_retries=self.config.retry_max_retries,
            base_delay_ms=self.config.retry_base_delay_ms,
            on_retry=on_retry,
        )

    # -- anonymous ---------------------------------------------------------

    async def run_guest(self, image_data: str, mime_type: str, client_ip: str, visitor_id: str) -> GuestOutcome:
        config = UpscaleConfig(scale=self.config.guest_scale, model_id=self.config.guest_model)
        request = InferenceRequest(image_data=image_data, mime_type=mime_type, config=config)
        trace = RequestTrace("guest", request.request_id)

        try:
            size = check_guest_size(image_data, self.config.guest_max_file_bytes)
        except AppError:
            trace.advance(Rejected(Gate.SIZE))
            raise
        trace.advance(Validated(size))

        ip_hash = hash_ip(client_ip, self.config.ip_hash_salt)
        decision = await self.admission.check(ip_hash, visitor_id)
        if not decision.allowed:
            trace.advance(Rejected(Gate.ADMISSION))
            raise AdmissionDenied(decision.code.value, decision.reason)
        trace.advance(Admitted(ip_hash))

        try:
            model = self.registry.get_model(config.model_id)
        except ModelNotFoundError:
            trace.advance(Failed(refunded=False, reason="model_not_configured"))
            logger.error("Guest model %r is not in the catalogue", config.model_id)
            raise
        trace.advance(Dispatched(model.id))
        start = time.monotonic()
        try:
            result = await self._dispatch(request, model)
        except Exception as exc:
            trace.advance(Failed(refunded=False, reason=_failure_reason(exc)))
            logger.error("Guest request %s failed (ip=%s): %s", request.request_id, mask(ip_hash), exc)
            raise ProcessingError() from exc
        except asyncio.CancelledError:
            trace.advance(Failed(refunded=False, reason="cancelled"))
            raise

        elapsed_ms = int((time.monotonic() - start) * 1000)
        try:
            await self.admission.commit(ip_hash, visitor_id)
        except Exception:
            # The image is already produced; an uncounted request is the lesser loss
            logger.exception("Guest usage commit failed for request %s", request.request_id)

        trace.advance(Completed(elapsed_ms))
        logger.info("Guest request %s completed in %dms", request.request_id, elapsed_ms)
        return GuestOutcome(
            result=result,
            model_id=model.id,
            scale=config.scale,
            processing_time_ms=elapsed_ms,
            trace=trace,
        )

    # -- authenticated -----------------------------------------------------

    async def run_authenticated(
        self,
        owner_id: str,
        tier: Tier,
        image_data: str,
        mime_type: str,
        config: UpscaleConfig,
    ) -> UpscaleOutcome:
        request = InferenceRequest(image_data=image_data, mime_type=mime_type, config=config)
        trace = RequestTrace("authenticated", request.request_id)

        try:
            size = check_tier_size(image_data, tier, self.config.max_upload_bytes(tier.value))
        except AppError:
            trace.advance(Rejected(Gate.SIZE))
            raise
        trace.advance(Validated(size))

        try:
            model = self.registry.get_model(config.model_id)
        except ModelNotFoundError:
            trace.advance(Rejected(Gate.MODEL))
            raise ValidationError(
                f"Unknown model '{config.model_id}'",
                details={"modelId": config.model_id},
            ) from None
        if not self.registry.can_access(tier, model.id):
            trace.advance(Rejected(Gate.TIER))
            raise TierAccessError(model.id, tier.value, model.minimum_tier.value)

        cost = self.ledger.calculate_cost(config, model.credit_multiplier)
        trace.advance(Resolved(model.id, cost))

        try:
            balance = await self.ledger.charge(owner_id, cost, f"upscale:{model.id}:{request.request_id}")
        except InsufficientCreditsError:
            trace.advance(Rejected(Gate.CREDITS))
            raise
        except Exception as exc:
            reason = "account_not_found" if isinstance(exc, AccountNotFoundError) else "charge_failed"
            trace.advance(Failed(refunded=False, reason=reason))
            raise
        trace.advance(Charged(cost, balance))

        try:
            trace.advance(Dispatched(model.id))
            result = await self._dispatch(request, model)
        except asyncio.CancelledError:
            refunded = await asyncio.shield(self._refund(owner_id, cost, "cancelled", request.request_id))
            trace.advance(Failed(refunded=refunded, reason="cancelled"))
            raise
        except Exception as exc:
            reason = _failure_reason(exc)
            refunded = await self._refund(owner_id, cost, reason, request.request_id)
            trace.advance(Failed(refunded=refunded, reason=reason))
            logger.error("Request %s for %s failed: %s", request.request_id, owner_id, exc)
            raise _provider_failure(exc) from exc

        trace.advance(Completed(result.latency_ms))
        return UpscaleOutcome(
            result=result,
            model_id=model.id,
            cost=cost,
            credits_remaining=balance,
            trace=trace,
        )

    async def _refund(self, owner_id: str, cost: int, reason: str, request_id: str) -> bool:
        def on_retry(attempt: int, delay_ms: int, error: Exception) -> None:
            logger.warning(
                "Request %s: refund retry %d for %s in %dms (%s)", request_id, attempt, owner_id, delay_ms, error
            )

        try:
            await with_retry(
                lambda: self.ledger.refund(owner_id, cost, reason),
                max_retries=self.config.refund_max_retries,
                base_delay_ms=self.config.refund_base_delay_ms,
                should_retry=is_transient_store_error,
                on_retry=on_retry,
            )
        except Exception:
            logger.exception("Refund of %d credits to %s failed for request %s", cost, owner_id, request_id)
            return False
        return True
