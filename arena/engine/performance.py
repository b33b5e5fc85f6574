"""get_performance_metrics tool."""

import logging
from datetime import datetime, timezone

from arena.schemas.account import HoldTimes, PerformanceMetrics
from arena.services.position_store import as_utc
from arena.utils.constants import STATUS_CLOSED

logger = logging.getLogger(__name__)


def compute_hold_times(records, now: datetime | None = None) -> HoldTimes:
    """Share of the period since the first entry spent long, short and flat.

    Open records count up to ``now``. Overlapping positions can push long plus
    short above the period; the two are then scaled to sum to 1.
    """
    if not records:
        return HoldTimes()
    now = now or datetime.now(timezone.utc)
    start = min(as_utc(r.entry_time) for r in records)
    period = (now - start).total_seconds()
    if period <= 0:
        return HoldTimes()

    long_time = short_time = 0.0
    for r in records:
        end = as_utc(r.exit_time) or now
        duration = max(0.0, (end - as_utc(r.entry_time)).total_seconds())
        if r.side == "long":
            long_time += duration
        else:
            short_time += duration

    long_frac, short_frac = long_time / period, short_time / period
    busy = long_frac + short_frac
    if busy > 1:
        long_frac, short_frac = long_frac / busy, short_frac / busy
    return HoldTimes(long=long_frac, short=short_frac, flat=max(0.0, 1 - long_frac - short_frac))


def get_performance_metrics(store) -> PerformanceMetrics:
    try:
        records = store.get_all()
        closed = [r for r in records if r.status == STATUS_CLOSED]
        return PerformanceMetrics(
            sharpe_ratio=store.sharpe_ratio(),
            win_rate=store.win_rate(),
            average_leverage=store.average_leverage(),
            average_confidence=store.average_confidence(),
            biggest_win=store.biggest_win(),
            biggest_loss=store.biggest_loss(),
            total_trades=len(records),
            profitable_trades=sum(1 for r in closed if (r.net_pnl or 0) > 0),
            losing_trades=sum(1 for r in closed if (r.net_pnl or 0) < 0),
            hold_times=compute_hold_times(records),
            total_fees=store.total_fees(),
            net_pnl=store.total_realized_pnl(),
        )
    except Exception as e:
        logger.error(f"Performance metrics failed: {e}", exc_info=True)
        return PerformanceMetrics()
