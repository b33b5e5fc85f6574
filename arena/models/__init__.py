"""Database models."""

from arena.models.trade_record import TradeRecord
from arena.models.account_snapshot import AccountSnapshot

__all__ = [
    "TradeRecord",
    "AccountSnapshot",
]
