#!/usr/bin/env python3
"""
Trade Viewer - command-line front end for browsing imported broker trades.
"""

import logging
import mimetypes
import os
from typing import Optional

from csv_normalizer import Trade, format_money, format_number
from trade_store import IMAGE_SLOTS
from trade_viewer_session import TradeViewerSession
from viewer_config import ViewerConfig, configure_logging

logger = logging.getLogger(__name__)


def trade_summary_line(trade: Trade, selected: bool = False) -> str:
    """One-line listing of a trade."""
    marker = ">" if selected else " "
    loss = " Loss" if trade.profit_loss < 0 else ""
    return (f"{marker} #{trade.id:<4} {trade.instrument:8} | {trade.trade_type.value:5}{loss:5} | "
            f"{trade.entry_display:22} | {trade.duration:>8} | "
            f"{format_number(trade.entry_price)} -> {format_number(trade.exit_price)} | {trade.pnl_label()}")


class TradeViewerCLI:
    """Command-line interface for the trade viewer."""

    def __init__(self, session: Optional[TradeViewerSession] = None):
        self.session = session or TradeViewerSession(ViewerConfig.load())

    def _flush_notification(self) -> None:
        message = self.session.notification
        if message:
            print(f"\n{message}")
            self.session.notifier.clear()

    def display_menu(self) -> None:
        """Display main menu."""
        print("\n" + "=" * 60)
        print("           TRADE VIEWER")
        print("=" * 60)
        print("1. Import CSV")
        print("2. View All Trades")
        print("3. Select Trade")
        print("4. Add Image")
        print("5. Remove Image")
        print("6. Add Note")
        print("7. Export PDF")
        print("8. Debug: Override P/L Multiplier")
        print("9. Exit")
        print("=" * 60)

    def import_csv(self) -> None:
        path = input("CSV file path: ").strip()
        if not path:
            print("Error: Path cannot be empty.")
            return
        try:
            with open(path, newline="", encoding="utf-8-sig") as f:
                text = f.read()
        except OSError as e:
            print(f"Error: Could not read {path} - {e}")
            return
        self.session.import_csv(text, filename=os.path.basename(path))

    def view_all_trades(self) -> None:
        """Display all trades."""
        trades = self.session.trades
        if not trades:
            print("\nNo trades available. Import a CSV file first.")
            return
        selected = self.session.selected_trade
        print(f"\n--- All Trades ({len(trades)} total) ---")
        for trade in trades:
            print(trade_summary_line(trade, selected is not None and selected.id == trade.id))

    def view_selected_trade(self) -> None:
        trade = self.session.selected_trade
        if trade is None:
            print("\nNo trade selected.")
            return
        images = self.session.store.images_for(trade.id)
        print(f"\n--- Trade #{trade.id}: {trade.instrument} ---")
        print(f"Type:        {trade.trade_type.value}")
        print(f"Entry Time:  {trade.entry_display}")
        print(f"Exit Time:   {trade.exit_display}")
        print(f"Entry Price: {format_number(trade.entry_price)}")
        print(f"Exit Price:  {format_number(trade.exit_price)}")
        print(f"Quantity:    {format_number(trade.quantity)}")
        print(f"Duration:    {trade.duration or 'N/A'}")
        print(f"P/L:         {trade.pnl_label()} ({format_money(trade.profit_loss)})")
        print(f"Images:      {', '.join((img.name or 'image') if img else '-' for img in images)}")
        note = self.session.store.note_for(trade.id)
        if note:
            print(f"Notes:       {note}")

    def select_trade(self) -> None:
        try:
            trade_id = int(input("Trade ID: ").strip())
        except ValueError:
            print("Error: Please enter a valid number.")
            return
        if self.session.store.get_trade(trade_id) is None:
            print(f"Error: No trade #{trade_id}.")
            return
        self.session.select_trade(trade_id)
        self.view_selected_trade()

    def _ask_slot(self) -> Optional[int]:
        try:
            slot = int(input(f"Image slot (1-{IMAGE_SLOTS}): ").strip()) - 1
        except ValueError:
            print("Error: Please enter a valid number.")
            return None
        if not 0 <= slot < IMAGE_SLOTS:
            print(f"Error: Slot must be between 1 and {IMAGE_SLOTS}.")
            return None
        return slot

    def add_image(self) -> None:
        trade = self.session.selected_trade
        if trade is None:
            print("\nNo trade selected.")
            return
        slot = self._ask_slot()
        if slot is None:
            return
        path = input("Image file path: ").strip()
        mime_type = mimetypes.guess_type(path)[0] or "application/octet-stream"
        try:
            with open(path, "rb") as f:
                data = f.read()
        except OSError as e:
            print(f"Error: Could not read {path} - {e}")
            return
        if self.session.upload_image(trade.id, slot, data, mime_type, name=os.path.basename(path)):
            print("Loading image...")
            self.session.collect_images(wait=True)

    def remove_image(self) -> None:
        trade = self.session.selected_trade
        if trade is None:
            print("\nNo trade selected.")
            return
        slot = self._ask_slot()
        if slot is not None:
            self.session.remove_image(trade.id, slot)
            print(f"Image {slot + 1} removed.")

    def add_note(self) -> None:
        trade = self.session.selected_trade
        if trade is None:
            print("\nNo trade selected.")
            return
        self.session.set_note(trade.id, input("Note: ").strip())
        print("Note saved.")

    def export_pdf(self) -> None:
        if self.session.export_blocked:
            print("\nExport unavailable: no trades, images still loading, or an export is running.")
            return
        data = self.session.export_pdf()
        if data is None:
            return
        path = input(f"Output file [{self.session.config.export_filename}]: ").strip() \
            or self.session.config.export_filename
        try:
            with open(path, "wb") as f:
                f.write(data)
        except OSError as e:
            print(f"Error: Could not write {path} - {e}")
            return
        print(f"Wrote {path}")

    def override_pnl(self) -> None:
        symbol = self.session.config.override_symbol
        try:
            multiplier = float(input(f"{symbol} P/L multiplier [{self.session.config.instrument_multiplier}]: ").strip()
                               or self.session.config.instrument_multiplier)
        except ValueError:
            print("Error: Please enter a valid number.")
            return
        changed = self.session.override_pnl(multiplier)
        print(f"Recalculated P/L for {changed} trade(s).")

    def run(self) -> None:
        """Run the CLI application."""
        print("\nWelcome to Trade Viewer!")

        actions = {
            '1': self.import_csv,
            '2': self.view_all_trades,
            '3': self.select_trade,
            '4': self.add_image,
            '5': self.remove_image,
            '6': self.add_note,
            '7': self.export_pdf,
            '8': self.override_pnl,
        }
        while True:
            self.display_menu()
            choice = input("\nEnter your choice (1-9): ").strip()
            if choice == '9':
                print("\nThank you for using Trade Viewer. Goodbye!")
                break
            action = actions.get(choice)
            if action is None:
                print("\nError: Invalid choice. Please select 1-9.")
                continue
            action()
            self._flush_notification()


def main():
    """Main entry point."""
    config = ViewerConfig.load()
    configure_logging(config.log_level)
    cli = TradeViewerCLI(TradeViewerSession(config))
    try:
        cli.run()
    finally:
        cli.session.close()


if __name__ == '__main__':
    main()
