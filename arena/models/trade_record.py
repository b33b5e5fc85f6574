"""TradeRecord model: one row per position lifecycle, never deleted."""

from datetime import datetime, timezone
from typing import Any

from sqlalchemy import JSON, Index, text
from sqlmodel import SQLModel, Field, Column

from arena.config import settings
from arena.utils.constants import trade_table_name

_TABLE = trade_table_name(settings.agent_name)


class TradeRecord(SQLModel, table=True):
    __tablename__ = _TABLE
    __table_args__ = (
        # At most one open record per (coin, side); a coin may be open long and short at once
        Index(
            f"ix_{_TABLE}_open_coin_side",
            "coin",
            "side",
            unique=True,
            sqlite_where=text("status = 'open'"),
            postgresql_where=text("status = 'open'"),
        ),
    )

    position_id: str = Field(primary_key=True)
    coin: str = Field(index=True)
    side: str  # "long" or "short"
    entry_price: float
    quantity: float  # coin units, > 0 while open
    leverage: int = Field(default=1, ge=1)
    margin: float = 0.0  # notional / leverage at entry
    fees: float = 0.0
    realized_pnl: float = 0.0  # booked by partial reductions while open
    exit_plan: dict[str, Any] | None = Field(default=None, sa_column=Column(JSON))
    confidence: float | None = None  # 0-100, advisory
    status: str = Field(default="open", index=True)
    sl_order_id: str | None = None
    tp_order_id: str | None = None
    entry_time: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    exit_time: datetime | None = None
    exit_price: float | None = None
    net_pnl: float | None = None  # only set once closed, and only when computable
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def notional(self) -> float:
        return self.entry_price * self.quantity
