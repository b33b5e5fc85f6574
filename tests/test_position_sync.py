"""Tests for applying reconciliation to the ledger and the account-state tool."""

import logging
from unittest.mock import AsyncMock

import pytest

from arena.engine.account_state import get_account_state
from arena.engine.position_sync import sync_positions, sync_positions_on_startup
from arena.errors import ExchangeTransientError

from factories import make_balance, make_order, make_position, make_record


def _make_adapter(positions=None, orders=None) -> AsyncMock:
    adapter = AsyncMock()
    adapter.get_positions.return_value = positions or []
    adapter.get_open_orders.return_value = orders or []
    adapter.get_balance.return_value = make_balance(free=9000.0, total=10250.0)
    return adapter


# ---------------------------------------------------------------------------
# 1. sync_positions
# ---------------------------------------------------------------------------

class TestSyncPositions:
    @pytest.mark.asyncio
    async def test_drift_closes_local_record_without_pnl(self, store):
        store.save(make_record(position_id="gone", coin="ETH"))
        report = await sync_positions(_make_adapter(), store)
        assert report.closed == ["gone"]
        record = store.get("gone")
        assert record.status == "closed"
        assert record.net_pnl is None
        assert record.exit_time is not None

    @pytest.mark.asyncio
    async def test_adopts_untracked_position(self, store, caplog):
        adapter = _make_adapter([make_position(coin="SOL", side="short", quantity=3.0, entry_price=150.0, leverage=5, margin=90.0)])
        with caplog.at_level(logging.WARNING):
            report = await sync_positions(adapter, store)
        assert len(report.adopted) == 1
        record = store.get(report.adopted[0])
        assert (record.coin, record.side, record.quantity, record.leverage) == ("SOL", "short", 3.0, 5)
        assert record.status == "open"
        assert report.reconciliation.positions[0].tracked is True
        assert "adopted untracked" in caplog.text

    @pytest.mark.asyncio
    async def test_adoption_can_be_disabled(self, store):
        adapter = _make_adapter([make_position()])
        report = await sync_positions(adapter, store, adopt_untracked=False)
        assert report.adopted == []
        assert store.get_all() == []

    @pytest.mark.asyncio
    async def test_relinks_conditional_orders(self, store):
        store.save(make_record(position_id="p1", sl_order_id="stale"))
        adapter = _make_adapter([make_position()], [make_order(order_id="sl-new")])
        report = await sync_positions(adapter, store)
        assert report.relinked == ["p1"]
        assert store.get("p1").sl_order_id == "sl-new"

    @pytest.mark.asyncio
    async def test_order_fetch_failure_is_not_fatal(self, store):
        store.save(make_record(position_id="p1"))
        adapter = _make_adapter([make_position()])
        adapter.get_open_orders.side_effect = ExchangeTransientError("timeout")
        report = await sync_positions(adapter, store)
        assert report.closed == []
        assert store.get("p1").status == "open"

    @pytest.mark.asyncio
    async def test_startup_sync_swallows_exchange_failure(self, store, caplog):
        adapter = _make_adapter()
        adapter.get_positions.side_effect = ExchangeTransientError("unreachable")
        with caplog.at_level(logging.ERROR):
            assert await sync_positions_on_startup(adapter, store) is None
        assert "startup sync failed" in caplog.text


# ---------------------------------------------------------------------------
# 2. get_account_state
# ---------------------------------------------------------------------------

class TestAccountState:
    @pytest.mark.asyncio
    async def test_reports_reconciled_positions(self, store):
        store.save(make_record(position_id="btc", exit_plan={"stop_loss": 48000}))
        store.save(make_record(position_id="eth", coin="ETH", side="short"))
        store.save(make_record(position_id="old", coin="XRP", status="closed", net_pnl=12.0, fees=0.5))
        adapter = _make_adapter([make_position(), make_position(coin="SOL", side="short", unrealized_pnl=-5.0)])

        state = await get_account_state(adapter, store, initial_balance=10000.0)

        assert state.account_value == 10250.0
        assert state.available_cash == 9000.0
        assert state.total_pnl == pytest.approx(250.0)
        assert state.total_fees == pytest.approx(0.5)
        assert state.net_realized == pytest.approx(12.0)
        assert store.get("eth").status == "closed"

        by_coin = {p.coin: p for p in state.active_positions}
        assert set(by_coin) == {"BTC", "SOL"}
        assert by_coin["BTC"].position_id == "btc"
        assert by_coin["BTC"].exit_plan == {"stop_loss": 48000}
        assert by_coin["BTC"].current_price == 50500.0
        assert by_coin["SOL"].position_id is not None  # adopted
        assert state.trade_count == 4
        assert {t.position_id for t in state.trade_history} == {"eth", "old"}
        assert state.win_rate == pytest.approx(0.5)

    @pytest.mark.asyncio
    async def test_reconciles_even_when_positions_hidden(self, store):
        store.save(make_record(position_id="gone"))
        state = await get_account_state(
            _make_adapter(), store, initial_balance=10000.0,
            include_positions=False, include_history=False, include_performance=False,
        )
        assert state.active_positions == []
        assert state.trade_history is None
        assert state.sharpe_ratio is None
        assert store.get("gone").status == "closed"

    @pytest.mark.asyncio
    async def test_exchange_failure_is_structured(self, store, caplog):
        adapter = _make_adapter()
        adapter.get_balance.side_effect = ExchangeTransientError("fetch_balance: timed out")
        with caplog.at_level(logging.ERROR):
            state = await get_account_state(adapter, store, initial_balance=10000.0)
        assert state.success is False
        assert "timed out" in state.error
        assert state.active_positions == []
        assert "Account state failed" in caplog.text

    @pytest.mark.asyncio
    async def test_sync_failure_is_structured(self, store):
        adapter = _make_adapter()
        adapter.get_positions.side_effect = RuntimeError("bad payload")
        state = await get_account_state(adapter, store, initial_balance=10000.0)
        assert state.success is False
        assert state.error == "RuntimeError: bad payload"
