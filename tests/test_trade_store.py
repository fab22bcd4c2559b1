"""
Trade store tests - selection, image slots, notes and P&L override.
"""

import datetime as dt
import math

import pytest

from csv_normalizer import TradeType
from trade_store import IMAGE_SLOTS, TradeStore


@pytest.fixture
def store(make_trade):
    s = TradeStore()
    s.import_trades([
        make_trade(trade_id=2, instrument="XAUUSD", entry_price=1900.0, exit_price=1905.0,
                   quantity=2.0, profit_loss=1000.0),
        make_trade(trade_id=1, instrument="xauusd.m", entry_price=1905.0, exit_price=1900.0,
                   quantity=1.0, profit_loss=-500.0),
        make_trade(trade_id=3, instrument="MGCJ4", entry_price=2050.0, exit_price=2051.0,
                   quantity=1.0, profit_loss=10.0),
    ])
    return s


class TestImportAndSelection:

    def test_import_selects_first(self, store):
        assert store.selected_id == 2
        assert store.selected_trade.instrument == "XAUUSD"

    def test_import_replaces_everything(self, store, make_trade):
        store.attach_image(2, 0, b"img")
        store.set_note(2, "late entry")
        store.import_trades([make_trade(trade_id=7)])
        assert [t.id for t in store.trades] == [7]
        assert store.selected_id == 7
        assert store.images == {}
        assert store.notes == {}

    def test_import_empty_clears_selection(self, store):
        store.import_trades([])
        assert store.selected_trade is None

    def test_select_trade(self, store):
        store.select_trade(3)
        assert store.selected_trade.instrument == "MGCJ4"

    def test_select_unknown_is_noop(self, store):
        store.select_trade(99)
        assert store.selected_id == 2


class TestImageSlots:

    def test_attach_creates_all_slots(self, store):
        store.attach_image(1, 1, b"second")
        assert store.images[1] == [None, b"second", None]
        assert len(store.images_for(1)) == IMAGE_SLOTS

    def test_attach_replaces_slot(self, store):
        store.attach_image(1, 0, b"old")
        store.attach_image(1, 0, b"new")
        assert store.images[1][0] == b"new"

    def test_detaching_all_slots_removes_entry(self, store):
        for slot in range(IMAGE_SLOTS):
            store.attach_image(1, slot, f"img{slot}".encode())
        for slot in range(IMAGE_SLOTS):
            assert 1 in store.images
            store.detach_image(1, slot)
        assert 1 not in store.images

    def test_detach_keeps_entry_while_slots_remain(self, store):
        store.attach_image(1, 0, b"a")
        store.attach_image(1, 2, b"c")
        store.detach_image(1, 0)
        assert store.images[1] == [None, None, b"c"]

    def test_detach_unknown_trade_is_noop(self, store):
        store.detach_image(42, 0)
        assert store.images == {}

    @pytest.mark.parametrize("slot", [-1, 3])
    def test_invalid_slot(self, store, slot):
        with pytest.raises(ValueError):
            store.attach_image(1, slot, b"x")
        with pytest.raises(ValueError):
            store.detach_image(1, slot)

    def test_images_for_returns_copy(self, store):
        store.attach_image(1, 0, b"a")
        slots = store.images_for(1)
        slots[0] = None
        assert store.images[1][0] == b"a"


class TestOverridePnl:

    def test_recomputes_matching_trades(self, store):
        changed = store.override_pnl(lambda s: "XAUUSD" in s.upper(), 10)
        assert changed == 2
        by_id = {t.id: t for t in store.trades}
        # long: (1905 - 1900) * 1 * 10 * 2
        assert by_id[2].profit_loss == 100.0
        # short: (1900 - 1905) * -1 * 10 * 1
        assert by_id[1].trade_type is TradeType.SHORT
        assert by_id[1].profit_loss == 50.0
        assert by_id[3].profit_loss == 10.0

    def test_keeps_order_and_selection(self, store):
        store.select_trade(1)
        store.override_pnl(lambda s: True, 1)
        assert [t.id for t in store.trades] == [2, 1, 3]
        assert store.selected_trade.profit_loss == 5.0

    def test_no_match(self, store):
        assert store.override_pnl(lambda s: False, 10) == 0
        assert [t.profit_loss for t in store.trades] == [1000.0, -500.0, 10.0]


class TestNotesAndSummary:

    def test_notes(self, store):
        store.set_note(1, "chased the breakout")
        assert store.note_for(1) == "chased the breakout"
        store.set_note(1, "   ")
        assert store.note_for(1) == ""
        assert 1 not in store.notes

    def test_summary(self, store):
        summary = store.compute_summary()
        assert summary["total_pnl"] == 510.0
        assert summary["num_trades"] == 3
        assert summary["num_wins"] == 2
        assert summary["num_losses"] == 1
        assert summary["num_invalid"] == 0
        assert summary["win_ratio"] == pytest.approx(2 / 3)
        assert summary["avg_pnl"] == 170.0

    def test_summary_skips_nan(self, make_trade):
        s = TradeStore()
        s.import_trades([make_trade(trade_id=1, profit_loss=float("nan")), make_trade(trade_id=2, profit_loss=20.0)])
        summary = s.compute_summary()
        assert summary["num_trades"] == 1
        assert summary["num_invalid"] == 1
        assert summary["total_pnl"] == 20.0

    def test_summary_empty(self):
        summary = TradeStore().compute_summary()
        assert summary["num_trades"] == 0
        assert summary["win_ratio"] == 0.0

    def test_equity_curve_ordered_by_exit(self, make_trade):
        s = TradeStore()
        base = dt.datetime(2024, 3, 1, tzinfo=dt.timezone.utc)
        s.import_trades([
            make_trade(trade_id=1, profit_loss=-5.0, entry_time=base + dt.timedelta(days=2)),
            make_trade(trade_id=2, profit_loss=10.0, entry_time=base),
            make_trade(trade_id=3, profit_loss=float("nan"), entry_time=base + dt.timedelta(days=1)),
        ])
        curve = s.equity_curve()
        assert list(curve["equity"]) == [10.0, 5.0]

    def test_equity_curve_empty(self):
        assert TradeStore().equity_curve().empty

    def test_dataframe(self, store):
        store.attach_image(2, 1, b"x")
        store.set_note(3, "scalp")
        df = store.to_dataframe()
        assert list(df["ID"]) == [2, 1, 3]
        assert list(df["Type"]) == ["Long", "Short", "Long"]
        assert list(df["Images"]) == [1, 0, 0]
        assert df.loc[2, "Note"] == "scalp"
        assert not math.isnan(df.loc[0, "P&L"])
