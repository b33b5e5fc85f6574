"""Tests for ledger/exchange reconciliation and conditional-order matching."""

import logging

from arena.engine.reconciliation import match_conditional_orders, reconcile

from factories import make_order, make_position, make_record


# ---------------------------------------------------------------------------
# 1. reconcile()
# ---------------------------------------------------------------------------

class TestReconcile:
    def test_matching_position_is_tracked(self):
        record = make_record(position_id="p1", exit_plan={"stop_loss": 48000})
        result = reconcile([make_position()], [record])
        assert result.closures == []
        assert len(result.positions) == 1
        rp = result.positions[0]
        assert rp.tracked is True
        assert rp.position_id == "p1"
        assert rp.exit_plan == {"stop_loss": 48000}

    def test_missing_on_exchange_is_closure(self, caplog):
        record = make_record(position_id="p1", coin="ETH")
        with caplog.at_level(logging.WARNING):
            result = reconcile([], [record])
        assert result.closures == ["p1"]
        assert result.positions == []
        assert "not on the exchange" in caplog.text

    def test_untracked_exchange_position(self):
        result = reconcile([make_position(coin="SOL", side="short")], [])
        assert result.closures == []
        assert [(p.key, p.tracked, p.position_id) for p in result.untracked] == [(("SOL", "short"), False, None)]

    def test_side_matters(self):
        # Local long, exchange only has a short on the same coin
        record = make_record(position_id="p1", side="long")
        result = reconcile([make_position(side="short")], [record])
        assert result.closures == ["p1"]
        assert len(result.untracked) == 1

    def test_hedge_mode_long_and_short(self):
        records = [make_record(position_id="L", side="long"), make_record(position_id="S", side="short")]
        positions = [make_position(side="long"), make_position(side="short")]
        result = reconcile(positions, records)
        assert result.closures == []
        assert {p.position_id for p in result.positions} == {"L", "S"}

    def test_is_pure(self):
        record = make_record(position_id="p1")
        pos = make_position()
        reconcile([pos, make_position(quantity=0.01)], [record])
        assert record.status == "open"
        assert pos.quantity == 0.02

    def test_split_rows_are_folded(self):
        result = reconcile([make_position(quantity=0.02), make_position(quantity=0.01)], [])
        assert len(result.positions) == 1
        assert abs(result.positions[0].exchange.quantity - 0.03) < 1e-12


# ---------------------------------------------------------------------------
# 2. match_conditional_orders()
# ---------------------------------------------------------------------------

class TestMatchConditionalOrders:
    def test_links_sl_and_tp(self):
        record = make_record(position_id="p1")
        sl = make_order(order_id="sl1", kind="stop_loss", trigger_price=48000)
        tp = make_order(order_id="tp1", kind="take_profit", trigger_price=55000)
        updates = match_conditional_orders([record], [sl, tp])
        assert len(updates) == 1
        assert (updates[0].sl_order_id, updates[0].tp_order_id) == ("sl1", "tp1")

    def test_no_update_when_links_unchanged(self):
        record = make_record(position_id="p1", sl_order_id="sl1", tp_order_id=None)
        updates = match_conditional_orders([record], [make_order(order_id="sl1")])
        assert updates == []

    def test_freshest_wins_and_ambiguity_logged(self, caplog):
        record = make_record(position_id="p1")
        old = make_order(order_id="old", timestamp=1000)
        new = make_order(order_id="new", timestamp=2000)
        with caplog.at_level(logging.WARNING):
            updates = match_conditional_orders([record], [old, new])
        assert updates[0].sl_order_id == "new"
        assert "2 stop_loss orders" in caplog.text

    def test_stale_link_cleared(self):
        record = make_record(position_id="p1", sl_order_id="gone", tp_order_id="tp-gone")
        updates = match_conditional_orders([record], [])
        assert (updates[0].sl_order_id, updates[0].tp_order_id) == (None, None)

    def test_ignores_other_coin_and_opening_side(self):
        record = make_record(position_id="p1")
        other_coin = make_order(order_id="eth", coin="ETH")
        wrong_side = make_order(order_id="buy", side="buy", position_side=None)
        assert match_conditional_orders([record], [other_coin, wrong_side]) == []

    def test_position_side_separates_hedged_books(self):
        long_rec = make_record(position_id="L", side="long")
        short_rec = make_record(position_id="S", side="short")
        long_sl = make_order(order_id="lsl", side="sell", position_side="long", trigger_price=48000)
        short_sl = make_order(order_id="ssl", side="buy", position_side="short", trigger_price=52000)
        updates = {u.position_id: u for u in match_conditional_orders([long_rec, short_rec], [long_sl, short_sl])}
        assert updates["L"].sl_order_id == "lsl"
        assert updates["S"].sl_order_id == "ssl"

    def test_kind_implied_from_trigger_direction(self):
        short_rec = make_record(position_id="S", side="short", entry_price=50000)
        above = make_order(order_id="above", side="buy", position_side=None, kind=None, trigger_price=53000)
        below = make_order(order_id="below", side="buy", position_side=None, kind=None, trigger_price=45000)
        updates = match_conditional_orders([short_rec], [above, below])
        assert (updates[0].sl_order_id, updates[0].tp_order_id) == ("above", "below")
