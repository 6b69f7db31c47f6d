"""Admission Controller: multi-layer limits for anonymous (guest) traffic.

Layers, evaluated in order, first denial wins:
  1. Global daily cap: circuit breaker against total cost blowup
  2. Per-IP hourly cap
  3. Per-IP daily cap
  4. Bot detection: too many distinct fingerprints behind one IP

``check`` is read-only. All mutation happens in ``commit``, which the caller
invokes only after the protected work succeeded. The split means two
concurrent requests can both pass ``check`` before either commits, so limits
may be nominally exceeded under bursts.

Keys (all auto-expire, no explicit deletion):
  guest:global-daily:<YYYY-MM-DD>   24h
  guest:ip-hourly:<ip-hash>         1h
  guest:ip-daily:<ip-hash>          24h
  guest:fingerprints:<ip-hash>      1h  (set)
"""

from __future__ import annotations

import hashlib
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone

from imagegate.core.logging import mask
from imagegate.core.metrics import ADMISSION_DECISIONS
from imagegate.gateway.counter_store import CounterStore, UsageBatch
from imagegate.gateway.types import AdmissionDecision, DenialCode

logger = logging.getLogger(__name__)

HOUR = 3600
DAY = 86400

_DENIAL_MESSAGES: dict[str, str] = {
    "global": "Service at capacity. Try again tomorrow or create a free account.",
    "ip_hourly": "Hourly limit reached. Sign up for unlimited access.",
    "ip_daily": "Daily limit reached from your network. Create a free account to continue.",
    "bot": "Suspicious activity detected.",
}


@dataclass(frozen=True)
class AdmissionLimits:
    global_daily: int = 500
    ip_hourly: int = 10
    ip_daily: int = 20
    fingerprints_per_ip: int = 5


def hash_ip(ip: str, salt: str) -> str:
    """Salted, truncated SHA-256 of an IP. The raw IP is never stored."""
    return hashlib.sha256((ip + salt).encode()).hexdigest()[:16]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AdmissionController:
    """Guest admission over an external atomic counter store.

    Usage:
        controller = AdmissionController(store, AdmissionLimits())

        decision = await controller.check(ip_hash, fingerprint)
        if not decision.allowed:
            ...  # reject with decision.code

        result = await do_expensive_work()
        await controller.commit(ip_hash, fingerprint)
    """

    def __init__(
        self,
        store: CounterStore,
        limits: AdmissionLimits | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.store = store
        self.limits = limits or AdmissionLimits()
        self._clock = clock

    # -- keys --------------------------------------------------------------

    def global_key(self) -> str:
        return f"guest:global-daily:{self._clock().date().isoformat()}"

    @staticmethod
    def ip_hourly_key(ip_hash: str) -> str:
        return f"guest:ip-hourly:{ip_hash}"

    @staticmethod
    def ip_daily_key(ip_hash: str) -> str:
        return f"guest:ip-daily:{ip_hash}"

    @staticmethod
    def fingerprints_key(ip_hash: str) -> str:
        return f"guest:fingerprints:{ip_hash}"

    # -- read phase --------------------------------------------------------

    async def check(self, ip_hash: str, fingerprint: str) -> AdmissionDecision:
        decision = await self._evaluate(ip_hash, fingerprint)
        outcome = "allowed" if decision.allowed else decision.code.value
        ADMISSION_DECISIONS.labels(outcome=outcome).inc()

        if not decision.allowed:
            logger.warning(
                "Guest denied: %s (ip=%s fp=%s)",
                decision.code.value,
                mask(ip_hash),
                mask(fingerprint),
            )
        return decision

    async def _evaluate(self, ip_hash: str, fingerprint: str) -> AdmissionDecision:
        # Layer 1: global circuit breaker
        if await self.store.get_count(self.global_key()) >= self.limits.global_daily:
            return AdmissionDecision.deny(DenialCode.GLOBAL_LIMIT, _DENIAL_MESSAGES["global"])

        # Layer 2: IP hourly
        if await self.store.get_count(self.ip_hourly_key(ip_hash)) >= self.limits.ip_hourly:
            return AdmissionDecision.deny(DenialCode.IP_LIMIT, _DENIAL_MESSAGES["ip_hourly"])

        # Layer 3: IP daily
        if await self.store.get_count(self.ip_daily_key(ip_hash)) >= self.limits.ip_daily:
            return AdmissionDecision.deny(DenialCode.IP_LIMIT, _DENIAL_MESSAGES["ip_daily"])

        # Layer 4: fingerprint diversity: a known fingerprint always passes
        seen = await self.store.get_members(self.fingerprints_key(ip_hash))
        if len(seen) >= self.limits.fingerprints_per_ip and fingerprint not in seen:
            return AdmissionDecision.deny(DenialCode.BOT_DETECTED, _DENIAL_MESSAGES["bot"])

        return AdmissionDecision.allow()

    # -- write phase -------------------------------------------------------

    def build_commit_batch(self, ip_hash: str, fingerprint: str) -> UsageBatch:
        return (
            UsageBatch()
            .incr(self.global_key(), DAY)
            .incr(self.ip_hourly_key(ip_hash), HOUR)
            .incr(self.ip_daily_key(ip_hash), DAY)
            .sadd(self.fingerprints_key(ip_hash), fingerprint, HOUR)
        )

    async def commit(self, ip_hash: str, fingerprint: str) -> dict[str, int]:
        """Record one successful guest operation in a single atomic batch."""
        values = await self.store.apply(self.build_commit_batch(ip_hash, fingerprint))
        logger.debug("Guest usage committed (ip=%s): %s", mask(ip_hash), values)
        return values

    # -- monitoring --------------------------------------------------------

    async def global_usage(self) -> dict[str, int]:
        count = await self.store.get_count(self.global_key())
        return {"count": count, "limit": self.limits.global_daily}
