"""In-memory trade collection with selection, image slots and notes."""

import logging
from dataclasses import replace
from typing import Any, Callable, Dict, List, Optional

import numpy as np
import pandas as pd

from csv_normalizer import Trade, TradeType

logger = logging.getLogger(__name__)

IMAGE_SLOTS = 3


class TradeStore:
    """Holds the current import plus everything the user attached to it.

    There is exactly one writer (the session driving the UI), so nothing here
    is locked.
    """

    def __init__(self):
        self.trades: List[Trade] = []
        self.selected_id: Optional[int] = None
        # Exactly IMAGE_SLOTS entries per trade id; an id is dropped once all are None
        self.images: Dict[int, List[Optional[Any]]] = {}
        # Notes keyed by trade id; ids are only unique within one import
        self.notes: Dict[int, str] = {}

    def clear(self) -> None:
        """Reset all stored data."""
        self.trades = []
        self.selected_id = None
        self.images.clear()
        self.notes.clear()

    def import_trades(self, trades: List[Trade]) -> None:
        """Replace the collection and select the first (most recent) trade.

        Images and notes belong to the previous batch's ids, so they go too.
        """
        self.clear()
        self.trades = list(trades)
        if self.trades:
            self.selected_id = self.trades[0].id
        logger.info("Imported %d trades", len(self.trades))

    def get_trade(self, trade_id: int) -> Optional[Trade]:
        for trade in self.trades:
            if trade.id == trade_id:
                return trade
        return None

    @property
    def selected_trade(self) -> Optional[Trade]:
        if self.selected_id is None:
            return None
        return self.get_trade(self.selected_id)

    def select_trade(self, trade_id: int) -> None:
        """Select ``trade_id``; unknown ids leave the selection alone."""
        if self.get_trade(trade_id) is None:
            logger.debug("Ignoring selection of unknown trade %s", trade_id)
            return
        self.selected_id = trade_id

    def attach_image(self, trade_id: int, slot: int, image: Any) -> None:
        """Put ``image`` in ``slot`` (0-2) of the trade's image list."""
        check_slot(slot)
        slots = self.images.setdefault(trade_id, [None] * IMAGE_SLOTS)
        slots[slot] = image

    def detach_image(self, trade_id: int, slot: int) -> None:
        """Clear ``slot``; forget the trade entirely once no slot is used."""
        check_slot(slot)
        slots = self.images.get(trade_id)
        if slots is None:
            return
        slots[slot] = None
        if all(img is None for img in slots):
            del self.images[trade_id]

    def images_for(self, trade_id: int) -> List[Optional[Any]]:
        """The trade's slots, or all-None if it has none (a copy either way)."""
        return list(self.images.get(trade_id, [None] * IMAGE_SLOTS))

    def set_note(self, trade_id: int, text: str) -> None:
        if text and text.strip():
            self.notes[trade_id] = text
        else:
            self.notes.pop(trade_id, None)

    def note_for(self, trade_id: int) -> str:
        return self.notes.get(trade_id, "")

    def override_pnl(self, predicate: Callable[[str], bool], multiplier: float) -> int:
        """Recompute P&L from prices for every trade whose instrument matches.

        ``profit_loss = (exit - entry) * (+1 long / -1 short) * multiplier * quantity``.
        This is a debugging aid for checking contract multipliers, not part
        of normal import.  Returns the number of trades changed.
        """
        changed = 0
        updated: List[Trade] = []
        for trade in self.trades:
            if predicate(trade.instrument):
                mult = 1 if trade.trade_type is TradeType.LONG else -1
                new_pnl = (trade.exit_price - trade.entry_price) * mult * multiplier * trade.quantity
                logger.info("Recalculated P/L for trade %d: %s -> %s", trade.id, trade.profit_loss, new_pnl)
                trade = replace(trade, profit_loss=new_pnl)
                changed += 1
            updated.append(trade)
        self.trades = updated
        return changed

    def compute_summary(self) -> Dict[str, float]:
        """Summary statistics over trades with a usable P&L.

        Returns:
            Dictionary with keys: total_pnl, num_trades, num_wins, num_losses,
            num_invalid, win_ratio, avg_pnl.
        """
        total_pnl = 0.0
        num_trades = 0
        num_wins = 0
        num_losses = 0
        num_invalid = 0
        for trade in self.trades:
            if not trade.has_valid_pnl:
                num_invalid += 1
                continue
            total_pnl += trade.profit_loss
            num_trades += 1
            if trade.profit_loss > 0:
                num_wins += 1
            elif trade.profit_loss < 0:
                num_losses += 1
        win_ratio = (num_wins / num_trades) if num_trades else 0.0
        avg_pnl = (total_pnl / num_trades) if num_trades else 0.0
        return {
            "total_pnl": total_pnl,
            "num_trades": num_trades,
            "num_wins": num_wins,
            "num_losses": num_losses,
            "num_invalid": num_invalid,
            "win_ratio": win_ratio,
            "avg_pnl": avg_pnl,
        }

    def equity_curve(self) -> pd.DataFrame:
        """Cumulative P&L ordered by exit time, columns 'time' and 'equity'."""
        points = sorted(
            ((t.exit_time, t.profit_loss) for t in self.trades if t.has_valid_pnl),
            key=lambda p: p[0],
        )
        times = [p[0] for p in points]
        equity = np.cumsum([p[1] for p in points]) if points else np.array([])
        return pd.DataFrame({"time": times, "equity": equity})

    def to_dataframe(self) -> pd.DataFrame:
        """Trade table for display and CSV download, in list order."""
        rows = []
        for trade in self.trades:
            rows.append({
                "ID": trade.id,
                "Symbol": trade.instrument,
                "Type": trade.trade_type.value,
                "Entry Time": trade.entry_display,
                "Exit Time": trade.exit_display,
                "Entry Price": trade.entry_price,
                "Exit Price": trade.exit_price,
                "Qty": trade.quantity,
                "P&L": trade.profit_loss,
                "P&L (CSV)": trade.original_pnl_string,
                "Duration": trade.duration,
                "Images": sum(1 for img in self.images.get(trade.id, []) if img is not None),
                "Note": self.note_for(trade.id),
            })
        columns = ["ID", "Symbol", "Type", "Entry Time", "Exit Time", "Entry Price", "Exit Price",
                   "Qty", "P&L", "P&L (CSV)", "Duration", "Images", "Note"]
        return pd.DataFrame(rows, columns=columns)


def check_slot(slot: int) -> None:
    """Raise ValueError unless ``slot`` is a valid image slot index."""
    if not 0 <= slot < IMAGE_SLOTS:
        raise ValueError(f"Image slot must be between 0 and {IMAGE_SLOTS - 1}, got {slot}")
