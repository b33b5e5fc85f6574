"""Shared API dependencies.

Collaborators are built once in the app lifespan and kept on ``app.state``.
"""

from fastapi import Request

from arena.config import Settings
from arena.engine.trade_executor import TradeExecutor
from arena.services.exchange_adapter import ExchangeAdapter
from arena.services.position_store import PositionStore


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_adapter(request: Request) -> ExchangeAdapter:
    return request.app.state.adapter


def get_store(request: Request) -> PositionStore:
    return request.app.state.store


def get_executor(request: Request) -> TradeExecutor:
    return request.app.state.executor
