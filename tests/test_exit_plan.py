"""Tests for the update_exit_plan tool."""

from unittest.mock import AsyncMock

import pytest

from arena.engine.exit_plan import update_exit_plan
from arena.errors import ExchangeError
from arena.schemas.account import UpdateExitPlanRequest

from factories import make_record


def _make_adapter() -> AsyncMock:
    adapter = AsyncMock()
    adapter.cancel_conditional_orders.return_value = 2
    adapter.set_stop_loss.return_value = "sl-new"
    adapter.set_take_profit.return_value = "tp-new"
    return adapter


class TestUpdateExitPlan:
    @pytest.mark.asyncio
    async def test_merges_with_stored_plan(self, store):
        store.save(make_record(
            position_id="p1",
            exit_plan={"profit_target": 55000.0, "stop_loss": 48000.0, "invalidation": "4h close below 47k"},
        ))
        adapter = _make_adapter()

        result = await update_exit_plan(adapter, store, UpdateExitPlanRequest(position_id="p1", new_stop_loss=49000.0))

        assert result.success is True
        assert result.updated_exit_plan == {
            "profit_target": 55000.0,
            "stop_loss": 49000.0,
            "invalidation": "4h close below 47k",
        }
        adapter.cancel_conditional_orders.assert_awaited_once_with("BTC", "long")
        adapter.set_stop_loss.assert_awaited_once_with("BTC", "long", 0.02, 49000.0)
        adapter.set_take_profit.assert_awaited_once_with("BTC", "long", 0.02, 55000.0)
        record = store.get("p1")
        assert record.exit_plan["stop_loss"] == 49000.0
        assert (record.sl_order_id, record.tp_order_id) == ("sl-new", "tp-new")

    @pytest.mark.asyncio
    async def test_unknown_position(self, store):
        result = await update_exit_plan(_make_adapter(), store, UpdateExitPlanRequest(position_id="nope"))
        assert result.success is False
        assert "not found" in result.error

    @pytest.mark.asyncio
    async def test_closed_position_rejected(self, store):
        store.save(make_record(position_id="p1", status="closed", net_pnl=1.0))
        result = await update_exit_plan(_make_adapter(), store, UpdateExitPlanRequest(position_id="p1", new_stop_loss=49000.0))
        assert result.success is False

    @pytest.mark.asyncio
    async def test_stop_on_wrong_side_rejected(self, store):
        store.save(make_record(position_id="p1", exit_plan={"profit_target": 55000.0}))
        adapter = _make_adapter()
        result = await update_exit_plan(adapter, store, UpdateExitPlanRequest(position_id="p1", new_stop_loss=56000.0))
        assert result.success is False
        adapter.cancel_conditional_orders.assert_not_awaited()
        assert store.get("p1").exit_plan == {"profit_target": 55000.0}

    @pytest.mark.asyncio
    async def test_order_failure_reported_as_warning(self, store):
        store.save(make_record(position_id="p1"))
        adapter = _make_adapter()
        adapter.set_take_profit.side_effect = ExchangeError("trigger price too close")

        result = await update_exit_plan(
            adapter, store,
            UpdateExitPlanRequest(position_id="p1", new_stop_loss=48000.0, new_profit_target=50100.0),
        )

        assert result.success is True
        assert "Take profit failed" in result.message
        record = store.get("p1")
        assert record.sl_order_id == "sl-new"
        assert record.tp_order_id is None
