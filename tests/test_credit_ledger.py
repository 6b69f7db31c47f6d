"""Tests for credit pricing and the SQL-backed ledger."""

import pytest

from imagegate.core.exceptions import AccountNotFoundError, InsufficientCreditsError
from imagegate.gateway.types import UpscaleConfig, UpscaleMode
from imagegate.services.credit_ledger import calculate_cost


class TestCalculateCost:
    @pytest.mark.parametrize(
        "mode, expected",
        [
            (UpscaleMode.UPSCALE, 1),
            (UpscaleMode.ENHANCE, 2),
            (UpscaleMode.BOTH, 2),
            (UpscaleMode.CUSTOM, 2),
        ],
    )
    def test_mode_base_cost(self, mode, expected):
        assert calculate_cost(UpscaleConfig(mode=mode)) == expected

    def test_scale_and_flags_do_not_change_cost(self):
        plain = UpscaleConfig(mode=UpscaleMode.ENHANCE, scale=2)
        loaded = UpscaleConfig(
            mode=UpscaleMode.ENHANCE,
            scale=4,
            denoise=True,
            enhance_faces=True,
            preserve_text=True,
        )
        assert calculate_cost(plain) == calculate_cost(loaded)

    def test_model_multiplier(self):
        assert calculate_cost(UpscaleConfig(mode=UpscaleMode.UPSCALE), credit_multiplier=4) == 4
        assert calculate_cost(UpscaleConfig(mode=UpscaleMode.BOTH), credit_multiplier=8) == 16


class TestCreditLedger:
    @pytest.mark.asyncio
    async def test_charge_and_grant(self, ledger, credit_store):
        await credit_store.open_account("user-1", initial_balance=10)

        assert await ledger.adjust("user-1", -4, "upscale:real-esrgan") == 6
        assert await ledger.adjust("user-1", 5, "purchase:pack-s") == 11
        assert await ledger.get_balance("user-1") == 11

    @pytest.mark.asyncio
    async def test_overdraw_rejected_without_side_effects(self, ledger, credit_store):
        await credit_store.open_account("user-1", initial_balance=3)

        with pytest.raises(InsufficientCreditsError) as exc_info:
            await ledger.adjust("user-1", -5, "charge")

        assert exc_info.value.required == 5
        assert exc_info.value.balance == 3
        assert exc_info.value.status_code == 402
        assert exc_info.value.details == {"required": 5}
        assert await ledger.get_balance("user-1") == 3
        rows, total = await ledger.get_history("user-1")
        assert rows == [] and total == 0

    @pytest.mark.asyncio
    async def test_exact_balance_can_be_spent(self, ledger, credit_store):
        await credit_store.open_account("user-1", initial_balance=2)
        assert await ledger.adjust("user-1", -2, "charge") == 0

    @pytest.mark.asyncio
    async def test_one_transaction_per_adjustment(self, ledger, credit_store):
        await credit_store.open_account("user-1", initial_balance=5)
        await ledger.adjust("user-1", -2, "charge")
        await ledger.refund("user-1", 2, "timeout")
        with pytest.raises(InsufficientCreditsError):
            await ledger.adjust("user-1", -50, "charge")

        rows, total = await ledger.get_history("user-1")

        assert total == 2
        # Newest first
        assert [(r.delta, r.reason, r.balance_after) for r in rows] == [
            (2, "refund:timeout", 5),
            (-2, "charge", 3),
        ]

    @pytest.mark.asyncio
    async def test_balance_never_negative_over_many_charges(self, ledger, credit_store):
        await credit_store.open_account("user-1", initial_balance=7)
        applied = 0
        for _ in range(10):
            try:
                await ledger.charge("user-1", 2, "charge")
                applied += 1
            except InsufficientCreditsError:
                pass

        assert applied == 3
        assert await ledger.get_balance("user-1") == 1
        _, total = await ledger.get_history("user-1")
        assert total == applied

    @pytest.mark.asyncio
    async def test_history_pagination(self, ledger, credit_store):
        await credit_store.open_account("user-1", initial_balance=0)
        for i in range(1, 6):
            await ledger.adjust("user-1", i, f"grant:{i}")

        rows, total = await ledger.get_history("user-1", limit=2, offset=1)

        assert total == 5
        assert [r.reason for r in rows] == ["grant:4", "grant:3"]

    @pytest.mark.asyncio
    async def test_unknown_account(self, ledger):
        with pytest.raises(AccountNotFoundError):
            await ledger.get_balance("ghost")
        with pytest.raises(AccountNotFoundError):
            await ledger.adjust("ghost", -1, "charge")

    @pytest.mark.asyncio
    async def test_zero_delta_and_empty_reason_rejected(self, ledger, credit_store):
        await credit_store.open_account("user-1", initial_balance=1)
        with pytest.raises(ValueError):
            await ledger.adjust("user-1", 0, "noop")
        with pytest.raises(ValueError):
            await ledger.adjust("user-1", 1, "")

    @pytest.mark.asyncio
    async def test_negative_opening_balance_rejected(self, credit_store):
        with pytest.raises(ValueError):
            await credit_store.open_account("user-1", initial_balance=-1)
