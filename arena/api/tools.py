"""Agent tool-call API.

Every endpoint answers 200 with a structured result; failures are reported in
the body so the calling agent never sees an HTTP error for a trading outcome.
"""

import logging

from fastapi import APIRouter, Depends

from arena.api.deps import get_adapter, get_executor, get_settings, get_store
from arena.engine.account_state import get_account_state
from arena.engine.exit_plan import update_exit_plan
from arena.engine.performance import get_performance_metrics
from arena.schemas.account import (
    AccountState,
    MarketDataRequest,
    PerformanceMetrics,
    UpdateExitPlanRequest,
    UpdateExitPlanResult,
)
from arena.schemas.trade import TradeRequest, TradeResult
from arena.services.market_data import get_market_data

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/tools", tags=["tools"])


@router.post("/execute_trade", response_model=TradeResult)
async def execute_trade(body: TradeRequest, executor=Depends(get_executor)):
    return await executor.execute(body)


@router.get("/account_state", response_model=AccountState)
async def account_state(
    include_positions: bool = True,
    include_history: bool = True,
    include_performance: bool = True,
    adapter=Depends(get_adapter),
    store=Depends(get_store),
    settings=Depends(get_settings),
):
    return await get_account_state(
        adapter,
        store,
        initial_balance=settings.initial_balance,
        include_positions=include_positions,
        include_history=include_history,
        include_performance=include_performance,
    )


@router.post("/update_exit_plan", response_model=UpdateExitPlanResult)
async def exit_plan(body: UpdateExitPlanRequest, adapter=Depends(get_adapter), store=Depends(get_store)):
    return await update_exit_plan(adapter, store, body)


@router.get("/performance_metrics", response_model=PerformanceMetrics)
def performance_metrics(store=Depends(get_store)):
    return get_performance_metrics(store)


@router.post("/market_data")
async def market_data(body: MarketDataRequest, adapter=Depends(get_adapter)):
    return await get_market_data(
        adapter,
        body.coins,
        timeframe=body.timeframe,
        include_funding=body.include_funding,
        include_open_interest=body.include_open_interest,
    )
