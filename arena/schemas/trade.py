"""Pydantic schemas for the execute_trade tool."""

from enum import Enum

from pydantic import BaseModel, Field, field_validator, model_validator

from arena.utils.constants import SIDES


class TradeAction(str, Enum):
    OPEN_LONG = "open_long"
    OPEN_SHORT = "open_short"
    CLOSE = "close"
    REDUCE = "reduce"
    HOLD = "hold"

    @property
    def is_open(self) -> bool:
        return self in (TradeAction.OPEN_LONG, TradeAction.OPEN_SHORT)

    @property
    def open_side(self) -> str | None:
        if self is TradeAction.OPEN_LONG:
            return "long"
        if self is TradeAction.OPEN_SHORT:
            return "short"
        return None


# Action names emitted by older agent prompts
LEGACY_ACTIONS: dict[str, TradeAction] = {
    "buy": TradeAction.OPEN_LONG,
    "buy_to_enter": TradeAction.OPEN_LONG,
    "long": TradeAction.OPEN_LONG,
    "sell_to_enter": TradeAction.OPEN_SHORT,
    "short": TradeAction.OPEN_SHORT,
    "sell": TradeAction.CLOSE,
    "close_position": TradeAction.CLOSE,
    "reduce_position": TradeAction.REDUCE,
}


class ExitPlan(BaseModel):
    profit_target: float | None = Field(default=None, gt=0)
    stop_loss: float | None = Field(default=None, gt=0)
    invalidation: str | None = None

    @property
    def has_orders(self) -> bool:
        return self.profit_target is not None or self.stop_loss is not None


class TradeRequest(BaseModel):
    action: TradeAction
    coin: str = Field(min_length=1, max_length=32)
    leverage: int = Field(default=1, ge=1)
    margin_amount: float | None = Field(default=None, ge=0)
    quantity: float | None = Field(default=None, gt=0)  # reduce size in coin units
    side: str | None = None  # disambiguates close/reduce when both sides are open
    position_id: str | None = None
    exit_plan: ExitPlan | None = None
    confidence: float | None = Field(default=None, ge=0, le=100)
    bypass_risk_check: bool = False

    @field_validator("action", mode="before")
    @classmethod
    def _normalize_action(cls, value):
        if isinstance(value, str):
            key = value.strip().lower()
            return LEGACY_ACTIONS.get(key, key)
        return value

    @field_validator("coin")
    @classmethod
    def _normalize_coin(cls, value: str) -> str:
        coin = value.strip().upper().split("/")[0].split("-")[0]
        if not coin:
            raise ValueError("must not be empty")
        return coin

    @field_validator("side")
    @classmethod
    def _check_side(cls, value: str | None) -> str | None:
        if value is None:
            return None
        side = value.strip().lower()
        if side not in SIDES:
            raise ValueError(f"side must be one of {SIDES}")
        return side

    @model_validator(mode="after")
    def _side_from_action(self):
        if self.action.is_open:
            self.side = self.action.open_side
        return self


class TradeResult(BaseModel):
    success: bool
    position_id: str | None = None
    entry_price: float | None = None
    quantity: float | None = None
    notional_value: float | None = None
    liquidation_price: float | None = None
    realized_pnl: float | None = None
    message: str = ""
    error: str | None = None
    warning: str | None = None
    violations: list[str] = []
