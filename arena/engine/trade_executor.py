"""Trade execution coordinator behind the ``execute_trade`` tool.

One call handles one agent decision: risk checks, exchange orders (with order
splitting), protective stop-loss / take-profit orders, and the ledger write.
Every outcome, including exchange failures, comes back as a ``TradeResult``;
nothing raises into the agent loop.

There is no transaction spanning the exchange and the ledger. If the ledger
write fails after a fill, the next position sync adopts the exchange position.
"""

import logging
from datetime import datetime, timezone

from arena.engine.order_split import MAX_SPLIT_DEPTH, execute_with_split
from arena.engine.position_sync import new_position_id
from arena.engine.risk import RiskContext, RiskLimits, validate_trade
from arena.errors import ArenaError
from arena.models.trade_record import TradeRecord
from arena.schemas.trade import TradeAction, TradeRequest, TradeResult
from arena.utils.constants import LIQUIDATION_BUFFER, STATUS_CLOSED

logger = logging.getLogger(__name__)


def estimate_liquidation_price(price: float, side: str, leverage: int) -> float:
    """Rough isolated-margin liquidation level, ignoring fees and maintenance margin."""
    if side == "long":
        return price * (1 - LIQUIDATION_BUFFER / leverage)
    return price * (1 + LIQUIDATION_BUFFER / leverage)


def price_pnl(side: str, entry_price: float, exit_price: float, quantity: float) -> float:
    if side == "long":
        return (exit_price - entry_price) * quantity
    return (entry_price - exit_price) * quantity


class TradeExecutor:
    def __init__(self, adapter, store, limits: RiskLimits, max_split_depth: int = MAX_SPLIT_DEPTH):
        self.adapter = adapter
        self.store = store
        self.limits = limits
        self.max_split_depth = max_split_depth
        self._handlers = {
            TradeAction.OPEN_LONG: self._open,
            TradeAction.OPEN_SHORT: self._open,
            TradeAction.CLOSE: self._close,
            TradeAction.REDUCE: self._reduce,
            TradeAction.HOLD: self._hold,
        }
        missing = set(TradeAction) - set(self._handlers)
        if missing:
            raise RuntimeError(f"No handler for actions: {sorted(a.value for a in missing)}")

    async def execute(self, request: TradeRequest) -> TradeResult:
        handler = self._handlers[request.action]
        try:
            return await handler(request)
        except ArenaError as e:
            logger.error(f"[{request.coin}] {request.action.value} failed: {e}")
            return TradeResult(
                success=False,
                position_id=request.position_id,
                message=f"Failed to {request.action.value} {request.coin}",
                error=str(e),
            )
        except Exception as e:
            logger.exception(f"[{request.coin}] {request.action.value} failed unexpectedly")
            return TradeResult(
                success=False,
                position_id=request.position_id,
                message=f"Failed to {request.action.value} {request.coin}",
                error=f"{type(e).__name__}: {e}",
            )

    # ------------------------------------------------------------------
    # hold
    # ------------------------------------------------------------------

    async def _hold(self, request: TradeRequest) -> TradeResult:
        return TradeResult(success=True, message=f"Holding {request.coin}, no action taken")

    # ------------------------------------------------------------------
    # open
    # ------------------------------------------------------------------

    async def _risk_context(self, coin: str) -> RiskContext:
        balance = await self.adapter.get_balance()
        price = await self.adapter.get_price(coin)
        open_notional = sum(r.entry_price * r.quantity for r in self.store.get_open())
        return RiskContext(
            available_cash=balance.free,
            account_value=balance.total,
            open_notional=open_notional,
            current_price=price,
        )

    async def _cancel_protection(self, coin: str, side: str, warnings: list[str]):
        try:
            await self.adapter.cancel_conditional_orders(coin, side)
        except ArenaError as e:
            logger.warning(f"[{coin} {side}] could not cancel existing SL/TP orders: {e}")
            warnings.append(f"Existing SL/TP orders may still be working: {e}")

    async def _protect(
        self, coin: str, side: str, quantity: float, plan: dict | None, warnings: list[str]
    ) -> tuple[str | None, str | None]:
        """Place stop-loss / take-profit for ``quantity``; failures become warnings."""
        if not plan:
            return None, None
        sl_id = tp_id = None
        if plan.get("stop_loss"):
            try:
                sl_id = await self.adapter.set_stop_loss(coin, side, quantity, plan["stop_loss"])
            except ArenaError as e:
                logger.warning(f"[{coin} {side}] stop-loss placement failed: {e}")
                warnings.append(f"Stop-loss not placed: {e}")
        if plan.get("profit_target"):
            try:
                tp_id = await self.adapter.set_take_profit(coin, side, quantity, plan["profit_target"])
            except ArenaError as e:
                logger.warning(f"[{coin} {side}] take-profit placement failed: {e}")
                warnings.append(f"Take-profit not placed: {e}")
        return sl_id, tp_id

    async def _restore_protection(self, record: TradeRecord, warnings: list[str]):
        """Re-place the record's SL/TP after a failed order left the position unprotected."""
        coin, side = record.coin, record.side
        sl_id, tp_id = await self._protect(coin, side, record.quantity, record.exit_plan, warnings)
        try:
            self.store.update(record.position_id, {"sl_order_id": sl_id, "tp_order_id": tp_id})
        except Exception as e:
            logger.error(f"[{coin} {side}] could not record restored SL/TP orders: {e}")
            warnings.append(f"Restored SL/TP orders were not saved locally: {e}")
        if record.exit_plan:
            warnings.append(f"Protective orders re-placed for the existing {record.quantity} {coin}")

    async def _open(self, request: TradeRequest) -> TradeResult:
        coin, side = request.coin, request.side
        margin = request.margin_amount or 0.0
        if margin <= 0:
            return TradeResult(
                success=False,
                message=f"Cannot open {side} {coin}",
                error="margin_amount is required for opening positions",
            )

        warnings: list[str] = []
        if request.bypass_risk_check:
            logger.warning(f"[{coin} {side}] risk checks bypassed by caller")
        else:
            violations = validate_trade(request, await self._risk_context(coin), self.limits)
            if violations:
                logger.info(f"[{coin} {side}] rejected by risk checks: {[v.check for v in violations]}")
                return TradeResult(
                    success=False,
                    message="Trade rejected by risk checks",
                    error="; ".join(str(v) for v in violations),
                    violations=[str(v) for v in violations],
                )

        existing = self.store.get_open_by(coin, side)
        leverage = request.leverage
        if existing is not None and existing.leverage != leverage:
            logger.warning(
                f"[{coin} {side}] adding to {existing.position_id} at {existing.leverage}x; "
                f"requested {leverage}x ignored"
            )
            warnings.append(
                f"Leverage {leverage}x ignored; existing {side} {coin} position uses {existing.leverage}x"
            )
            leverage = existing.leverage

        price, quantity = await self.adapter.quantity_for_margin(coin, margin, leverage)
        await self._cancel_protection(coin, side, warnings)
        try:
            order = await execute_with_split(
                self.adapter, side, coin, quantity, leverage, margin, max_depth=self.max_split_depth
            )
        except ArenaError as e:
            logger.error(f"[{coin} {side}] entry order failed: {e}")
            if existing is not None:
                await self._restore_protection(existing, warnings)
            return TradeResult(
                success=False,
                position_id=existing.position_id if existing is not None else None,
                message=f"Failed to open {side} {coin}",
                error=str(e),
                warning="; ".join(warnings) or None,
            )
        entry_price = order.average_price or price
        filled = order.filled_quantity or quantity
        if order.split:
            logger.info(f"[{coin} {side}] order filled in {order.split_ways} parts")

        plan = request.exit_plan.model_dump() if request.exit_plan else None
        now = datetime.now(timezone.utc)
        if existing is not None:
            total_qty = existing.quantity + filled
            record = existing
            record.entry_price = (existing.entry_price * existing.quantity + entry_price * filled) / total_qty
            record.quantity = total_qty
            record.margin = existing.margin + entry_price * filled / leverage
            record.fees = existing.fees + order.fees
            record.exit_plan = plan or existing.exit_plan
            if request.confidence is not None:
                record.confidence = request.confidence
        else:
            record = TradeRecord(
                position_id=new_position_id(),
                coin=coin,
                side=side,
                entry_price=entry_price,
                quantity=filled,
                leverage=leverage,
                margin=entry_price * filled / leverage,
                fees=order.fees,
                exit_plan=plan,
                confidence=request.confidence,
                entry_time=now,
            )

        record.sl_order_id, record.tp_order_id = await self._protect(
            coin, side, record.quantity, record.exit_plan, warnings
        )
        liquidation = estimate_liquidation_price(record.entry_price, side, leverage)

        try:
            record = self.store.save(record)
        except Exception as e:
            logger.error(f"[{coin} {side}] opened on exchange but ledger write failed: {e}")
            warnings.append(
                f"Position is open on the exchange but was not saved locally ({e}); "
                f"it will be recovered on the next account sync"
            )

        action = "Added to" if existing is not None else "Opened"
        split_note = f" in {order.split_ways} orders" if order.split else ""
        return TradeResult(
            success=True,
            position_id=record.position_id,
            entry_price=entry_price,
            quantity=filled,
            notional_value=entry_price * filled,
            liquidation_price=liquidation,
            message=f"{action} {side} {coin}: {filled} @ {entry_price} with {leverage}x leverage{split_note}",
            warning="; ".join(warnings) or None,
        )

    # ------------------------------------------------------------------
    # close / reduce
    # ------------------------------------------------------------------

    def _resolve_open_record(self, request: TradeRequest) -> TradeRecord | None:
        """Open record by position_id, else (coin, side), else the coin's only open side."""
        if request.position_id:
            record = self.store.get(request.position_id)
            if record is not None and record.status != STATUS_CLOSED:
                return record
            if record is not None:
                return None
        if request.side:
            return self.store.get_open_by(request.coin, request.side)
        records = self.store.get_open_for_coin(request.coin)
        if len(records) > 1:
            raise ArenaError(f"Both long and short {request.coin} positions are open; specify side")
        return records[0] if records else None

    async def _close(self, request: TradeRequest) -> TradeResult:
        if request.position_id:
            known = self.store.get(request.position_id)
            if known is not None and known.status == STATUS_CLOSED:
                return TradeResult(
                    success=True,
                    position_id=known.position_id,
                    message=f"Position {known.position_id} is already closed",
                )

        record = self._resolve_open_record(request)
        if record is None:
            return await self._close_untracked(request)

        coin, side = record.coin, record.side
        on_exchange = [p for p in await self.adapter.get_positions() if p.coin == coin and p.side == side]
        if not on_exchange:
            self.store.update_status(record.position_id, STATUS_CLOSED)
            logger.warning(f"[{coin} {side}] {record.position_id} already gone from the exchange")
            return TradeResult(
                success=True,
                position_id=record.position_id,
                message=f"{side} {coin} position was already closed on the exchange",
            )

        fill = await self.adapter.close_position(coin, side)
        exit_price = fill.average_price or await self.adapter.get_price(coin)
        gross = price_pnl(side, record.entry_price, exit_price, record.quantity)
        fees = record.fees + fill.fee
        net_pnl = gross + record.realized_pnl - fees

        self.store.update(record.position_id, {
            "status": STATUS_CLOSED,
            "exit_price": exit_price,
            "exit_time": datetime.now(timezone.utc),
            "net_pnl": net_pnl,
            "fees": fees,
            "exit_plan": None,
            "sl_order_id": None,
            "tp_order_id": None,
        })
        warnings: list[str] = []
        await self._cancel_protection(coin, side, warnings)

        logger.info(f"[{coin} {side}] closed {record.position_id} at {exit_price}, net P&L {net_pnl:.2f}")
        return TradeResult(
            success=True,
            position_id=record.position_id,
            entry_price=record.entry_price,
            quantity=record.quantity,
            notional_value=exit_price * record.quantity,
            realized_pnl=net_pnl,
            message=f"Closed {side} {coin} at {exit_price}. Net P&L: {net_pnl:.2f} USDT",
            warning="; ".join(warnings) or None,
        )

    async def _close_untracked(self, request: TradeRequest) -> TradeResult:
        """No local open record: close whatever the exchange still holds and backfill a closed record."""
        coin = request.coin
        positions = [
            p for p in await self.adapter.get_positions()
            if p.coin == coin and (request.side is None or p.side == request.side)
        ]
        if not positions:
            label = f"{request.side} {coin}" if request.side else coin
            return TradeResult(
                success=True,
                position_id=request.position_id,
                message=f"No open {label} position; nothing to close",
            )
        if len(positions) > 1:
            raise ArenaError(f"Both long and short {coin} positions are open on the exchange; specify side")

        pos = positions[0]
        logger.warning(f"[{coin} {pos.side}] closing position not tracked locally")
        fill = await self.adapter.close_position(coin, pos.side)
        exit_price = fill.average_price or await self.adapter.get_price(coin)
        now = datetime.now(timezone.utc)

        warnings: list[str] = []
        net_pnl = price_pnl(pos.side, pos.entry_price, exit_price, pos.quantity) - fill.fee
        try:
            backfilled = self.store.save(TradeRecord(
                position_id=new_position_id(),
                coin=coin,
                side=pos.side,
                entry_price=pos.entry_price,
                quantity=pos.quantity,
                leverage=max(1, pos.leverage),
                margin=pos.margin or pos.entry_price * pos.quantity / max(1, pos.leverage),
                fees=fill.fee,
                status=STATUS_CLOSED,
                exit_price=exit_price,
                exit_time=now,
                net_pnl=net_pnl,
            ))
            position_id = backfilled.position_id
        except Exception as e:
            logger.error(f"[{coin} {pos.side}] closed on exchange but ledger backfill failed: {e}")
            warnings.append(f"Closed on the exchange but the ledger was not updated: {e}")
            position_id, net_pnl = None, None

        await self._cancel_protection(coin, pos.side, warnings)
        return TradeResult(
            success=True,
            position_id=position_id,
            entry_price=pos.entry_price,
            quantity=pos.quantity,
            realized_pnl=net_pnl,
            message=f"Closed untracked {pos.side} {coin} position at {exit_price}",
            warning="; ".join(warnings) or None,
        )

    async def _reduce(self, request: TradeRequest) -> TradeResult:
        record = self._resolve_open_record(request)
        if record is None:
            return TradeResult(
                success=False,
                position_id=request.position_id,
                message=f"Cannot reduce {request.coin}",
                error=f"No open {request.coin} position to reduce",
            )

        coin, side = record.coin, record.side
        reduce_qty = request.quantity if request.quantity is not None else record.quantity / 2
        if reduce_qty >= record.quantity:
            logger.warning(
                f"[{coin} {side}] reduce of {reduce_qty} >= open quantity {record.quantity}, closing instead"
            )
            result = await self._close(request.model_copy(update={
                "action": TradeAction.CLOSE,
                "position_id": record.position_id,
                "side": side,
            }))
            if result.success:
                result.quantity = 0.0  # remaining
            return result

        warnings: list[str] = []
        await self._cancel_protection(coin, side, warnings)

        try:
            fill = await self.adapter.reduce_position(coin, side, reduce_qty)
        except ArenaError as e:
            logger.error(f"[{coin} {side}] reduce of {record.position_id} failed: {e}")
            await self._restore_protection(record, warnings)
            return TradeResult(
                success=False,
                position_id=record.position_id,
                message=f"Failed to reduce {side} {coin}",
                error=str(e),
                warning="; ".join(warnings) or None,
            )
        exit_price = fill.average_price or await self.adapter.get_price(coin)
        reduced = min(fill.filled_quantity or reduce_qty, record.quantity)
        gross = price_pnl(side, record.entry_price, exit_price, reduced)
        remaining = record.quantity - reduced

        plan = request.exit_plan.model_dump() if request.exit_plan else record.exit_plan
        sl_id, tp_id = await self._protect(coin, side, remaining, plan, warnings)

        self.store.update(record.position_id, {
            "quantity": remaining,
            "margin": record.margin * remaining / record.quantity,
            "fees": record.fees + fill.fee,
            "realized_pnl": record.realized_pnl + gross,
            "exit_plan": plan,
            "sl_order_id": sl_id,
            "tp_order_id": tp_id,
        })

        net = gross - fill.fee
        logger.info(f"[{coin} {side}] reduced {record.position_id} by {reduced}, remaining {remaining}")
        return TradeResult(
            success=True,
            position_id=record.position_id,
            entry_price=record.entry_price,
            quantity=remaining,
            notional_value=record.entry_price * remaining,
            liquidation_price=estimate_liquidation_price(record.entry_price, side, record.leverage),
            realized_pnl=net,
            message=f"Reduced {side} {coin} by {reduced}. Remaining: {remaining}. Net P&L: {net:.2f} USDT",
            warning="; ".join(warnings) or None,
        )
