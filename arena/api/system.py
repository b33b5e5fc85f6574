"""System API: health check, scheduler status and manual reconciliation."""

from fastapi import APIRouter, Depends, HTTPException

from arena.api.deps import get_adapter, get_store

router = APIRouter(prefix="/api/system", tags=["system"])


@router.get("/health")
def health_check():
    return {"status": "ok"}


@router.get("/scheduler")
def scheduler_status():
    """Current scheduler state with job details."""
    from arena.engine.scheduler import get_scheduler_status
    return get_scheduler_status()


@router.post("/sync")
async def sync_now(adapter=Depends(get_adapter), store=Depends(get_store)):
    """Reconcile the ledger against the exchange now."""
    from arena.engine.position_sync import sync_positions
    try:
        report = await sync_positions(adapter, store)
    except Exception as e:
        raise HTTPException(status_code=502, detail=str(e))
    return {
        "closed": report.closed,
        "adopted": report.adopted,
        "relinked": report.relinked,
        "exchange_positions": len(report.reconciliation.positions),
    }
