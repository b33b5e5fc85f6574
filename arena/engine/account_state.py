"""get_account_state tool: exchange balance and positions merged with the ledger."""

import logging

from arena.engine.position_sync import sync_positions
from arena.engine.trade_executor import estimate_liquidation_price
from arena.errors import ArenaError
from arena.schemas.account import AccountState, ClosedTradeView, PositionView

logger = logging.getLogger(__name__)

HISTORY_LIMIT = 20


async def get_account_state(
    adapter,
    store,
    initial_balance: float,
    include_positions: bool = True,
    include_history: bool = True,
    include_performance: bool = True,
) -> AccountState:
    """Reconcile, then report. Reconciliation runs even when positions are not returned.

    Exchange or ledger failures come back as ``success=False`` with the error.
    """
    try:
        return await _account_state(
            adapter, store, initial_balance, include_positions, include_history, include_performance
        )
    except ArenaError as e:
        logger.error(f"Account state failed: {e}")
        return AccountState(success=False, error=str(e))
    except Exception as e:
        logger.exception("Account state failed unexpectedly")
        return AccountState(success=False, error=f"{type(e).__name__}: {e}")


async def _account_state(
    adapter,
    store,
    initial_balance: float,
    include_positions: bool,
    include_history: bool,
    include_performance: bool,
) -> AccountState:
    balance = await adapter.get_balance()
    report = await sync_positions(adapter, store)

    records = {r.position_id: r for r in store.get_open()}
    positions: list[PositionView] = []
    for rp in report.reconciliation.positions:
        pos = rp.exchange
        record = records.get(rp.position_id) if rp.position_id else None
        leverage = pos.leverage or (record.leverage if record else 1)
        positions.append(PositionView(
            coin=pos.coin,
            side=pos.side,
            entry_price=pos.entry_price,
            quantity=pos.quantity,
            leverage=leverage,
            liquidation_price=pos.liquidation_price or estimate_liquidation_price(pos.entry_price, pos.side, leverage),
            margin=pos.margin or (record.margin if record else 0.0),
            unrealized_pnl=pos.unrealized_pnl,
            current_price=pos.mark_price,
            exit_plan=record.exit_plan if record else rp.exit_plan,
            position_id=rp.position_id,
            sl_order_id=record.sl_order_id if record else None,
            tp_order_id=record.tp_order_id if record else None,
            tracked=rp.tracked,
        ))

    state = AccountState(
        account_value=balance.total,
        available_cash=balance.free,
        total_pnl=balance.total - initial_balance,
        total_fees=store.total_fees(),
        net_realized=store.total_realized_pnl(),
        trade_count=len(store.get_all()),
        active_positions=positions if include_positions else [],
    )
    if include_performance:
        state.sharpe_ratio = store.sharpe_ratio(open_positions=positions)
        state.win_rate = store.win_rate()
    if include_history:
        state.trade_history = [ClosedTradeView.model_validate(r) for r in store.recent_closed(HISTORY_LIMIT)]
    return state
