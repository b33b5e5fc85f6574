"""FastAPI application entry point."""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from arena.config import settings
from arena.database import create_db_and_tables, engine
from arena.utils.logging import setup_logging
from arena.api import system, tools, trades


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    setup_logging()
    create_db_and_tables()

    from arena.engine.risk import RiskLimits
    from arena.engine.trade_executor import TradeExecutor
    from arena.services.exchange_adapter import ExchangeAdapter
    from arena.services.position_store import PositionStore

    adapter = ExchangeAdapter.from_settings(settings)
    store = PositionStore(engine, agent_name=settings.agent_name, sharpe_cutoff=settings.sharpe_cutoff)
    app.state.settings = settings
    app.state.adapter = adapter
    app.state.store = store
    app.state.executor = TradeExecutor(
        adapter,
        store,
        RiskLimits.from_settings(settings),
        max_split_depth=settings.order_split_max_depth,
    )

    # Sync ledger against exchange state before taking requests
    from arena.engine.position_sync import sync_positions_on_startup
    await sync_positions_on_startup(adapter, store)
    from arena.engine.scheduler import start_scheduler, stop_scheduler
    start_scheduler(adapter, store, settings.snapshot_interval_minutes, settings.initial_balance)

    yield

    stop_scheduler()
    await adapter.close()


app = FastAPI(
    title="Agent Trading Desk",
    description="Trade execution and position reconciliation for LLM trading agents",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(tools.router)
app.include_router(trades.router)
app.include_router(system.router)
