"""Pydantic schemas for the account, exit-plan and performance tools."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


class PositionView(BaseModel):
    coin: str
    side: str
    entry_price: float
    quantity: float
    leverage: int
    liquidation_price: float | None = None
    margin: float
    unrealized_pnl: float
    current_price: float
    exit_plan: dict[str, Any] | None = None
    position_id: str | None = None
    sl_order_id: str | None = None
    tp_order_id: str | None = None
    tracked: bool = True


class ClosedTradeView(BaseModel):
    position_id: str
    coin: str
    side: str
    entry_price: float
    exit_price: float | None = None
    quantity: float
    leverage: int
    net_pnl: float | None = None
    fees: float
    entry_time: datetime
    exit_time: datetime | None = None

    model_config = {"from_attributes": True}


class AccountState(BaseModel):
    success: bool = True
    account_value: float = 0.0
    available_cash: float = 0.0
    total_pnl: float = 0.0
    total_fees: float = 0.0
    net_realized: float = 0.0
    sharpe_ratio: float | None = None
    win_rate: float | None = None
    trade_count: int = 0
    active_positions: list[PositionView] = []
    trade_history: list[ClosedTradeView] | None = None
    error: str | None = None


class UpdateExitPlanRequest(BaseModel):
    position_id: str = Field(min_length=1)
    new_profit_target: float | None = Field(default=None, gt=0)
    new_stop_loss: float | None = Field(default=None, gt=0)
    new_invalidation: str | None = None


class UpdateExitPlanResult(BaseModel):
    success: bool
    position_id: str
    updated_exit_plan: dict[str, Any] | None = None
    message: str = ""
    error: str | None = None


class HoldTimes(BaseModel):
    """Fraction of the traded period spent long, short or flat."""
    long: float = 0.0
    short: float = 0.0
    flat: float = 1.0


class PerformanceMetrics(BaseModel):
    sharpe_ratio: float = 0.0
    win_rate: float = 0.0
    average_leverage: float = 0.0
    average_confidence: float = 0.0
    biggest_win: float = 0.0
    biggest_loss: float = 0.0
    total_trades: int = 0
    profitable_trades: int = 0
    losing_trades: int = 0
    hold_times: HoldTimes = HoldTimes()
    total_fees: float = 0.0
    net_pnl: float = 0.0


class MarketDataRequest(BaseModel):
    coins: list[str] = Field(default_factory=lambda: ["BTC", "ETH", "SOL", "BNB", "DOGE", "XRP"])
    timeframe: str = "3m"
    include_funding: bool = True
    include_open_interest: bool = True
