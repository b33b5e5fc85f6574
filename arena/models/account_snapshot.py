"""AccountSnapshot model: periodic account recordings for reporting."""

from datetime import datetime, timezone
from sqlmodel import SQLModel, Field


class AccountSnapshot(SQLModel, table=True):
    __tablename__ = "account_snapshot"

    id: int | None = Field(default=None, primary_key=True)
    agent_name: str = Field(index=True)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc), index=True)
    account_value: float
    total_pnl: float = 0.0
    unrealized_pnl: float = 0.0
    realized_pnl: float = 0.0
    win_rate: float = 0.0
    sharpe_ratio: float = 0.0
    trade_count: int = 0
