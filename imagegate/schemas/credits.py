from datetime import datetime

from pydantic import ConfigDict
from pydantic.alias_generators import to_camel

from imagegate.schemas.upscale import CamelModel


class BalanceResponse(CamelModel):
    balance: int


class TransactionItem(CamelModel):
    id: int
    delta: int
    reason: str
    balance_after: int
    created_at: datetime

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class HistoryResponse(CamelModel):
    items: list[TransactionItem]
    total: int
    limit: int
    offset: int
