"""Reconciliation of the local ledger against exchange truth.

Both functions are pure: they return the closures and order-link changes to
apply and leave the writes to the caller (see ``position_sync``).

Conditional orders carry no authoritative link to a position on the exchange,
so matching them to records is a best-match heuristic on coin, closing side,
position side, order kind and the direction of the trigger price relative to
entry. Ambiguous matches are logged.
"""

import logging
from dataclasses import dataclass, field, replace
from typing import Any

from arena.models.trade_record import TradeRecord
from arena.services.exchange_adapter import ExchangePosition, WorkingOrder, closing_order_side

logger = logging.getLogger(__name__)


@dataclass
class ReconciledPosition:
    exchange: ExchangePosition
    position_id: str | None = None
    exit_plan: dict[str, Any] | None = None
    tracked: bool = False

    @property
    def key(self) -> tuple[str, str]:
        return self.exchange.coin, self.exchange.side


@dataclass
class ReconciliationResult:
    positions: list[ReconciledPosition] = field(default_factory=list)
    closures: list[str] = field(default_factory=list)

    @property
    def untracked(self) -> list[ReconciledPosition]:
        return [p for p in self.positions if not p.tracked]


@dataclass
class OrderLinkUpdate:
    position_id: str
    sl_order_id: str | None
    tp_order_id: str | None


def reconcile(
    exchange_positions: list[ExchangePosition],
    local_open_records: list[TradeRecord],
) -> ReconciliationResult:
    """Pair exchange positions with open records by (coin, side).

    Open records the exchange no longer reports are returned as closures;
    exchange positions without a record come back untracked.
    """
    by_key: dict[tuple[str, str], ExchangePosition] = {}
    for pos in exchange_positions:
        key = (pos.coin, pos.side)
        if key in by_key:
            # Hedge mode reports one row per side; fold any split rows together
            prev = by_key[key]
            by_key[key] = replace(
                prev,
                quantity=prev.quantity + pos.quantity,
                unrealized_pnl=prev.unrealized_pnl + pos.unrealized_pnl,
                margin=prev.margin + pos.margin,
            )
        else:
            by_key[key] = pos

    records_by_key: dict[tuple[str, str], TradeRecord] = {}
    result = ReconciliationResult()
    for record in local_open_records:
        key = (record.coin, record.side)
        if key not in by_key:
            logger.warning(
                f"Reconciliation: [{record.coin} {record.side}] {record.position_id} is open locally "
                f"but not on the exchange, closing"
            )
            result.closures.append(record.position_id)
            continue
        if key in records_by_key:
            # Should not happen with the unique index; keep the older record
            logger.error(
                f"Reconciliation: duplicate open records for {key}: "
                f"{records_by_key[key].position_id}, {record.position_id}"
            )
            continue
        records_by_key[key] = record

    for key, pos in by_key.items():
        record = records_by_key.get(key)
        if record is None:
            result.positions.append(ReconciledPosition(exchange=pos))
        else:
            result.positions.append(ReconciledPosition(
                exchange=pos,
                position_id=record.position_id,
                exit_plan=record.exit_plan,
                tracked=True,
            ))
    return result


def _implied_kind(record: TradeRecord, order: WorkingOrder) -> str | None:
    """Classify an order by where its trigger sits relative to the entry price."""
    if order.kind is not None:
        return order.kind
    if order.trigger_price is None or not record.entry_price:
        return None
    below = order.trigger_price < record.entry_price
    if record.side == "long":
        return "stop_loss" if below else "take_profit"
    return "take_profit" if below else "stop_loss"


def _candidates(record: TradeRecord, orders: list[WorkingOrder], kind: str) -> list[WorkingOrder]:
    closing = closing_order_side(record.side)
    found = []
    for order in orders:
        if order.coin != record.coin:
            continue
        if order.side and order.side != closing:
            continue
        if order.position_side and order.position_side != record.side:
            continue
        if _implied_kind(record, order) != kind:
            continue
        found.append(order)
    return found


def match_conditional_orders(
    open_records: list[TradeRecord],
    working_orders: list[WorkingOrder],
) -> list[OrderLinkUpdate]:
    """Point each open record at the freshest matching SL / TP working order.

    Returns only the records whose links change. A link to an order that is no
    longer working is cleared.
    """
    updates = []
    for record in open_records:
        links: dict[str, str | None] = {}
        for kind in ("stop_loss", "take_profit"):
            candidates = _candidates(record, working_orders, kind)
            if len(candidates) > 1:
                logger.warning(
                    f"Reconciliation: [{record.coin} {record.side}] {len(candidates)} {kind} orders "
                    f"match {record.position_id} ({', '.join(o.order_id for o in candidates)}), "
                    f"using the newest"
                )
            best = max(candidates, key=lambda o: o.timestamp) if candidates else None
            links[kind] = best.order_id if best else None

        if links["stop_loss"] != record.sl_order_id or links["take_profit"] != record.tp_order_id:
            updates.append(OrderLinkUpdate(
                position_id=record.position_id,
                sl_order_id=links["stop_loss"],
                tp_order_id=links["take_profit"],
            ))
    return updates
