"""Transactional credit store (PostgreSQL in production, SQLite in tests).

Each ``adjust`` is one database transaction containing:
  1. a conditional ``UPDATE credit_accounts SET balance = balance + :delta
     WHERE owner_id = :owner AND balance + :delta >= 0 RETURNING balance``
  2. one INSERT into ``credit_transactions``

If the UPDATE matches no row the transaction is rolled back and nothing is
written, so a balance can never go negative and the log never records a
rejected adjustment.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Protocol

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from imagegate.core.exceptions import AccountNotFoundError, InsufficientCreditsError
from imagegate.models.credit import CreditAccount, CreditTransaction

logger = logging.getLogger(__name__)


class CreditStore(Protocol):
    async def get_balance(self, owner_id: str) -> int: ...

    async def adjust(self, owner_id: str, delta: int, reason: str) -> int: ...

    async def get_history(self, owner_id: str, limit: int, offset: int) -> tuple[list[CreditTransaction], int]: ...


class SqlCreditStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def open_account(self, owner_id: str, initial_balance: int = 0) -> CreditAccount:
        """Create an account. Signup normally does this; used for provisioning and tests."""
        if initial_balance < 0:
            raise ValueError("initial_balance must be >= 0")
        async with self._session_factory() as session:
            async with session.begin():
                account = CreditAccount(owner_id=owner_id, balance=initial_balance)
                session.add(account)
            return account

    async def get_balance(self, owner_id: str) -> int:
        async with self._session_factory() as session:
            balance = await session.scalar(select(CreditAccount.balance).where(CreditAccount.owner_id == owner_id))
        if balance is None:
            raise AccountNotFoundError(owner_id)
        return balance

    async def adjust(self, owner_id: str, delta: int, reason: str) -> int:
        now = datetime.now(timezone.utc)
        async with self._session_factory() as session:
            async with session.begin():
                stmt = (
                    update(CreditAccount)
                    .where(
                        CreditAccount.owner_id == owner_id,
                        CreditAccount.balance + delta >= 0,
                    )
                    .values(balance=CreditAccount.balance + delta, updated_at=now)
                    .returning(CreditAccount.balance)
                    .execution_options(synchronize_session=False)
                )
                new_balance = (await session.execute(stmt)).scalar_one_or_none()

                if new_balance is None:
                    current = await session.scalar(
                        select(CreditAccount.balance).where(CreditAccount.owner_id == owner_id)
                    )
                    if current is None:
                        raise AccountNotFoundError(owner_id)
                    raise InsufficientCreditsError(required=-delta, balance=current)

                session.add(
                    CreditTransaction(
                        owner_id=owner_id,
                        delta=delta,
                        reason=reason,
                        balance_after=new_balance,
                        created_at=now,
                    )
                )
        return new_balance

    async def get_history(self, owner_id: str, limit: int = 50, offset: int = 0) -> tuple[list[CreditTransaction], int]:
        async with self._session_factory() as session:
            total = await session.scalar(
                select(func.count()).select_from(CreditTransaction).where(CreditTransaction.owner_id == owner_id)
            )
            result = await session.execute(
                select(CreditTransaction)
                .where(CreditTransaction.owner_id == owner_id)
                .order_by(CreditTransaction.id.desc())
                .limit(limit)
                .offset(offset)
            )
            rows = list(result.scalars().all())
        return rows, total or 0
