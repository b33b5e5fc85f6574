"""Object factories shared by the test modules."""

from datetime import datetime, timedelta, timezone
from itertools import count

from arena.models.trade_record import TradeRecord
from arena.services.exchange_adapter import Balance, ExchangePosition, OrderFill, WorkingOrder

_ids = count(1)


def make_record(**overrides) -> TradeRecord:
    """Open 0.02 BTC long at 50k, 10x, entered an hour ago."""
    fields = dict(
        position_id=f"pos-{next(_ids)}",
        coin="BTC",
        side="long",
        entry_price=50000.0,
        quantity=0.02,
        leverage=10,
        margin=100.0,
        fees=0.0,
        status="open",
        entry_time=datetime.now(timezone.utc) - timedelta(hours=1),
    )
    fields.update(overrides)
    return TradeRecord(**fields)


def make_position(**overrides) -> ExchangePosition:
    fields = dict(
        coin="BTC",
        side="long",
        quantity=0.02,
        entry_price=50000.0,
        mark_price=50500.0,
        leverage=10,
        liquidation_price=45600.0,
        margin=100.0,
        unrealized_pnl=10.0,
    )
    fields.update(overrides)
    return ExchangePosition(**fields)


def make_order(**overrides) -> WorkingOrder:
    fields = dict(
        order_id=f"ord-{next(_ids)}",
        coin="BTC",
        side="sell",
        kind="stop_loss",
        trigger_price=48000.0,
        amount=0.02,
        position_side="long",
        reduce_only=True,
        timestamp=1_700_000_000_000,
    )
    fields.update(overrides)
    return WorkingOrder(**fields)


def make_fill(**overrides) -> OrderFill:
    fields = dict(order_id="o-1", filled_quantity=0.02, average_price=50000.0, fee=0.02)
    fields.update(overrides)
    return OrderFill(**fields)


def make_balance(free: float = 1000.0, total: float = 1000.0) -> Balance:
    return Balance(free=free, used=total - free, total=total)
