"""Credit balance and transaction history for the signed-in user."""

from fastapi import APIRouter, Depends, Query

from imagegate.core.dependencies import Identity, get_identity, get_ledger
from imagegate.schemas.credits import BalanceResponse, HistoryResponse, TransactionItem
from imagegate.services.credit_ledger import CreditLedger

router = APIRouter(prefix="/credits", tags=["credits"])


@router.get("/balance", response_model=BalanceResponse)
async def get_balance(
    identity: Identity = Depends(get_identity),
    ledger: CreditLedger = Depends(get_ledger),
):
    return BalanceResponse(balance=await ledger.get_balance(identity.user_id))


@router.get("/history", response_model=HistoryResponse)
async def get_history(
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    identity: Identity = Depends(get_identity),
    ledger: CreditLedger = Depends(get_ledger),
):
    """Newest-first page of the credit transaction log."""
    rows, total = await ledger.get_history(identity.user_id, limit=limit, offset=offset)
    return HistoryResponse(
        items=[TransactionItem.model_validate(row) for row in rows],
        total=total,
        limit=limit,
        offset=offset,
    )
