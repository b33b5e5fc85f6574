"""APScheduler integration for FastAPI.

Runs the periodic account snapshot job used for performance charts and as the
default Sharpe cutoff.
"""

import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from arena.models.account_snapshot import AccountSnapshot

logger = logging.getLogger(__name__)

SNAPSHOT_JOB_ID = "account_snapshot"

scheduler = AsyncIOScheduler()


async def record_account_snapshot(adapter, store, initial_balance: float) -> AccountSnapshot | None:
    """Record one snapshot of account value and ledger aggregates."""
    try:
        balance = await adapter.get_balance()
        positions = await adapter.get_positions()
    except Exception as e:
        logger.error(f"Snapshot skipped: exchange read failed: {e}")
        return None

    snapshot = AccountSnapshot(
        agent_name=store.agent_name,
        account_value=balance.total,
        total_pnl=balance.total - initial_balance,
        unrealized_pnl=sum(p.unrealized_pnl for p in positions),
        realized_pnl=store.total_realized_pnl(),
        win_rate=store.win_rate(),
        sharpe_ratio=store.sharpe_ratio(open_positions=positions),
        trade_count=len(store.get_all()),
    )
    snapshot = store.save_snapshot(snapshot)
    logger.info(f"Snapshot: account_value={snapshot.account_value:.2f} total_pnl={snapshot.total_pnl:.2f}")
    return snapshot


def start_scheduler(adapter, store, interval_minutes: int, initial_balance: float):
    """Start the scheduler with the snapshot job (skipped when the interval is 0)."""
    if interval_minutes > 0:
        scheduler.add_job(
            record_account_snapshot,
            trigger=IntervalTrigger(minutes=interval_minutes),
            args=[adapter, store, initial_balance],
            id=SNAPSHOT_JOB_ID,
            name="Account snapshot",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
            misfire_grace_time=60,
        )
    scheduler.start()
    logger.info(f"Scheduler started with {len(scheduler.get_jobs())} jobs")


def stop_scheduler():
    """Shut down the scheduler."""
    if scheduler.running:
        scheduler.shutdown(wait=False)
    logger.info("Scheduler stopped")


def get_scheduler_status() -> dict:
    """Return current scheduler state for the API."""
    jobs = scheduler.get_jobs()
    return {
        "running": scheduler.running,
        "job_count": len(jobs),
        "jobs": [
            {
                "id": j.id,
                "name": j.name,
                "next_run": str(j.next_run_time) if j.next_run_time else None,
                "trigger": str(j.trigger),
            }
            for j in jobs
        ],
    }
