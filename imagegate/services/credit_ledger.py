"""Credit Ledger: pricing and atomic balance adjustments for signed-in users.

Contract with the orchestrator:
  - cost is computed and charged (negative ``adjust``) before any provider call
  - the ledger never refunds on its own; after a failed call the orchestrator
    issues ``adjust(owner_id, +cost, "refund:<reason>")``
"""

from __future__ import annotations

import logging

from imagegate.core.exceptions import InsufficientCreditsError
from imagegate.core.metrics import CREDIT_ADJUSTMENTS
from imagegate.gateway.types import UpscaleConfig, UpscaleMode
from imagegate.models.credit import CreditTransaction
from imagegate.services.credit_store import CreditStore

logger = logging.getLogger(__name__)

# Base credits per processing mode; scale and feature flags do not change cost
_MODE_COST: dict[UpscaleMode, int] = {
    UpscaleMode.UPSCALE: 1,
    UpscaleMode.ENHANCE: 2,
    UpscaleMode.BOTH: 2,
    UpscaleMode.CUSTOM: 2,
}


def calculate_cost(config: UpscaleConfig, credit_multiplier: int = 1) -> int:
    """Credits required for one request. Pure function of the config."""
    base = _MODE_COST.get(config.mode, 1)
    return base * max(credit_multiplier, 1)


def _adjustment_kind(delta: int, reason: str) -> str:
    if reason.startswith("refund:"):
        return "refund"
    return "charge" if delta < 0 else "grant"


class CreditLedger:
    def __init__(self, store: CreditStore):
        self.store = store

    calculate_cost = staticmethod(calculate_cost)

    async def get_balance(self, owner_id: str) -> int:
        return await self.store.get_balance(owner_id)

    async def adjust(self, owner_id: str, delta: int, reason: str) -> int:
        """Apply ``delta`` atomically and append one transaction.

        Raises:
            InsufficientCreditsError: negative delta would overdraw the account.
            AccountNotFoundError: no account for ``owner_id``.
            ValueError: zero delta or empty reason.
        """
        if delta == 0:
            raise ValueError("delta must be non-zero")
        if not reason:
            raise ValueError("reason is required")

        kind = _adjustment_kind(delta, reason)
        try:
            new_balance = await self.store.adjust(owner_id, delta, reason)
        except InsufficientCreditsError as e:
            CREDIT_ADJUSTMENTS.labels(kind=kind, status="rejected").inc()
            logger.info("Insufficient credits for %s: required=%d balance=%s", owner_id, e.required, e.balance)
            raise

        CREDIT_ADJUSTMENTS.labels(kind=kind, status="applied").inc()
        logger.info("Credits %s for %s: delta=%+d reason=%s balance=%d", kind, owner_id, delta, reason, new_balance)
        return new_balance

    async def charge(self, owner_id: str, cost: int, reason: str) -> int:
        return await self.adjust(owner_id, -cost, reason)

    async def refund(self, owner_id: str, amount: int, reason: str) -> int:
        return await self.adjust(owner_id, amount, f"refund:{reason}")

    async def get_history(self, owner_id: str, limit: int = 50, offset: int = 0) -> tuple[list[CreditTransaction], int]:
        return await self.store.get_history(owner_id, limit=limit, offset=offset)
