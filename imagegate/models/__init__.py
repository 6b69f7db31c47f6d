from imagegate.models.credit import CreditAccount, CreditTransaction

__all__ = [
    "CreditAccount",
    "CreditTransaction",
]
