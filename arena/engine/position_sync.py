"""Position sync: apply reconciliation results to the local ledger.

Runs on every account-state read and once on startup. The exchange is the
source of truth:

1. Local open record, exchange has the position → keep, refresh order links
2. Local open record, exchange has no position → closed externally (stop hit,
   liquidation, manual close); mark closed with net P&L left unset
3. Exchange position with no local record → adopt as a new open record, which
   also recovers a crash between an exchange fill and the local save
"""

import logging
import uuid
from dataclasses import dataclass, field

from arena.engine.reconciliation import ReconciliationResult, match_conditional_orders, reconcile
from arena.errors import ArenaError
from arena.models.trade_record import TradeRecord
from arena.utils.constants import STATUS_CLOSED

logger = logging.getLogger(__name__)


@dataclass
class SyncReport:
    reconciliation: ReconciliationResult
    closed: list[str] = field(default_factory=list)
    adopted: list[str] = field(default_factory=list)
    relinked: list[str] = field(default_factory=list)


def new_position_id() -> str:
    return uuid.uuid4().hex


async def sync_positions(adapter, store, adopt_untracked: bool = True, sync_orders: bool = True) -> SyncReport:
    """Fetch exchange positions, reconcile and apply the outcome to the store.

    Exchange read failures propagate; order-link syncing is best-effort.
    """
    exchange_positions = await adapter.get_positions()
    result = reconcile(exchange_positions, store.get_open())
    report = SyncReport(reconciliation=result)

    for position_id in result.closures:
        store.update_status(position_id, STATUS_CLOSED)
        report.closed.append(position_id)

    if adopt_untracked:
        for rp in result.untracked:
            pos = rp.exchange
            record = TradeRecord(
                position_id=new_position_id(),
                coin=pos.coin,
                side=pos.side,
                entry_price=pos.entry_price,
                quantity=pos.quantity,
                leverage=max(1, pos.leverage),
                margin=pos.margin or (pos.entry_price * pos.quantity / max(1, pos.leverage)),
            )
            try:
                saved = store.save(record)
            except ArenaError as e:
                logger.error(f"Position sync: could not adopt [{pos.coin} {pos.side}]: {e}")
                continue
            rp.position_id = saved.position_id
            rp.tracked = True
            report.adopted.append(saved.position_id)
            logger.warning(
                f"Position sync: adopted untracked [{pos.coin} {pos.side}] "
                f"qty={pos.quantity} entry={pos.entry_price} as {saved.position_id}"
            )

    if sync_orders:
        try:
            orders = await adapter.get_open_orders()
        except ArenaError as e:
            logger.warning(f"Position sync: could not fetch working orders: {e}")
        else:
            for link in match_conditional_orders(store.get_open(), orders):
                store.update(link.position_id, {
                    "sl_order_id": link.sl_order_id,
                    "tp_order_id": link.tp_order_id,
                })
                report.relinked.append(link.position_id)

    if report.closed or report.adopted:
        logger.info(
            f"Position sync: {len(report.closed)} closed, {len(report.adopted)} adopted, "
            f"{len(result.positions)} on exchange"
        )
    return report


async def sync_positions_on_startup(adapter, store):
    """Reconcile before the service starts taking requests. Never raises."""
    try:
        report = await sync_positions(adapter, store)
    except Exception as e:
        logger.error(f"Position sync: startup sync failed: {e}")
        return None
    logger.info("Position sync complete")
    return report
