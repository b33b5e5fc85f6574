"""update_exit_plan tool: move stop-loss / take-profit on an open position."""

import logging

from arena.engine.risk import exit_plan_problems
from arena.errors import ArenaError
from arena.schemas.account import UpdateExitPlanRequest, UpdateExitPlanResult
from arena.schemas.trade import ExitPlan
from arena.utils.constants import STATUS_OPEN

logger = logging.getLogger(__name__)


async def update_exit_plan(adapter, store, request: UpdateExitPlanRequest) -> UpdateExitPlanResult:
    """Merge the new levels into the stored plan and replace the working SL/TP orders.

    Fields left unset keep their stored value. Order placement failures are
    reported in the message; the plan itself is still saved.
    """
    position_id = request.position_id
    try:
        record = store.get(position_id)
        if record is None or record.status != STATUS_OPEN:
            return UpdateExitPlanResult(
                success=False,
                position_id=position_id,
                message=f"No open position {position_id}",
                error="Position not found or already closed",
            )

        current = record.exit_plan or {}
        merged = ExitPlan(
            profit_target=request.new_profit_target if request.new_profit_target is not None else current.get("profit_target"),
            stop_loss=request.new_stop_loss if request.new_stop_loss is not None else current.get("stop_loss"),
            invalidation=request.new_invalidation if request.new_invalidation is not None else current.get("invalidation"),
        )
        problems = exit_plan_problems(record.side, merged)
        if problems:
            return UpdateExitPlanResult(
                success=False,
                position_id=position_id,
                updated_exit_plan=current or None,
                message="Exit plan rejected",
                error="; ".join(problems),
            )

        coin, side = record.coin, record.side
        warnings: list[str] = []
        try:
            await adapter.cancel_conditional_orders(coin, side)
        except ArenaError as e:
            logger.warning(f"[{coin} {side}] could not cancel existing SL/TP orders: {e}")
            warnings.append(f"Old SL/TP orders may still be working: {e}")

        sl_id = tp_id = None
        if merged.stop_loss is not None:
            try:
                sl_id = await adapter.set_stop_loss(coin, side, record.quantity, merged.stop_loss)
            except ArenaError as e:
                warnings.append(f"Stop loss failed: {e}")
        if merged.profit_target is not None:
            try:
                tp_id = await adapter.set_take_profit(coin, side, record.quantity, merged.profit_target)
            except ArenaError as e:
                warnings.append(f"Take profit failed: {e}")

        plan = merged.model_dump()
        store.update(position_id, {"exit_plan": plan, "sl_order_id": sl_id, "tp_order_id": tp_id})
        logger.info(f"[{coin} {side}] exit plan for {position_id} updated: {plan}")

        message = (
            f"Exit plan updated with warnings: {'; '.join(warnings)}"
            if warnings
            else "Exit plan updated and new SL/TP orders placed"
        )
        return UpdateExitPlanResult(
            success=True,
            position_id=position_id,
            updated_exit_plan=plan,
            message=message,
        )
    except Exception as e:
        logger.exception(f"Exit plan update for {position_id} failed")
        return UpdateExitPlanResult(
            success=False,
            position_id=position_id,
            message=f"Failed to update exit plan: {e}",
            error=str(e),
        )
