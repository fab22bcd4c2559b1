"""
Trade Viewer Session
====================

The one object a front end talks to.  It owns the trade store, the image
loader and the export busy flag, turns every user action into a store update,
and reports the outcome through a short-lived notification banner instead of
raising.  All store writes happen on the thread that calls the session.
"""

import logging
import time
from concurrent.futures import Future
from typing import Callable, Optional

from csv_normalizer import ParseError, is_csv_file, normalize
from image_loader import ImageError, ImageLoader, ImageTypeError
from pdf_export import ExportError, export_trades_pdf
from trade_store import TradeStore, check_slot
from viewer_config import ViewerConfig

logger = logging.getLogger(__name__)


class Notifier:
    """A single banner message that expires after a fixed delay."""

    def __init__(self, seconds: float = 3.0, clock: Callable[[], float] = time.monotonic):
        self.seconds = seconds
        self._clock = clock
        self._message = ""
        self._expires_at = 0.0

    def notify(self, message: str, seconds: Optional[float] = None) -> None:
        self._message = message
        self._expires_at = self._clock() + (self.seconds if seconds is None else seconds)

    def clear(self) -> None:
        self._message = ""
        self._expires_at = 0.0

    @property
    def message(self) -> str:
        """The current message, or "" once it has expired."""
        if self._message and self._clock() >= self._expires_at:
            self.clear()
        return self._message


class TradeViewerSession:
    """Controller behind the Streamlit page and the terminal menu."""

    def __init__(self, config: Optional[ViewerConfig] = None, *,
                 loader: Optional[ImageLoader] = None,
                 clock: Callable[[], float] = time.monotonic):
        self.config = config or ViewerConfig()
        self.store = TradeStore()
        self.loader = loader or ImageLoader(max_workers=self.config.image_workers)
        self.notifier = Notifier(self.config.notification_seconds, clock=clock)
        self.is_exporting = False
        # future -> (import batch, trade_id, slot); ids are only unique per batch
        self._uploads = {}
        self._batch = 0

    # -- notifications -------------------------------------------------

    def notify(self, message: str) -> None:
        self.notifier.notify(message)

    @property
    def notification(self) -> str:
        return self.notifier.message

    # -- CSV import ----------------------------------------------------

    def import_csv(self, text: str, filename: Optional[str] = None,
                   mime_type: Optional[str] = None) -> Optional[int]:
        """Normalize ``text`` and replace the current trades with it.

        Returns the number of trades imported, or None on failure (the
        previous trades are kept and the error is shown in the banner).
        """
        if (filename is not None or mime_type is not None) and not is_csv_file(filename, mime_type):
            self.notify("Error: Select a valid CSV file.")
            return None
        try:
            trades = normalize(
                text,
                multiplier=self.config.instrument_multiplier,
                source_tz=self.config.source_timezone,
                display_tz=self.config.display_timezone,
            )
        except ParseError as e:
            logger.error("CSV parse error: %s", e)
            self.notify(f"Error: {e}")
            return None
        self.store.import_trades(trades)
        self._batch += 1
        self.notify(f"Imported {len(trades)} trades from CSV")
        return len(trades)

    # -- browsing ------------------------------------------------------

    @property
    def import_batch(self) -> int:
        """Increments on every successful import."""
        return self._batch

    @property
    def trades(self):
        return self.store.trades

    @property
    def selected_trade(self):
        return self.store.selected_trade

    def select_trade(self, trade_id: int) -> None:
        self.store.select_trade(trade_id)

    def set_note(self, trade_id: int, text: str) -> None:
        self.store.set_note(trade_id, text)

    # -- images --------------------------------------------------------

    @property
    def images_loading(self) -> bool:
        return self.loader.images_loading

    def upload_image(self, trade_id: int, slot: int, data: bytes, mime_type: str,
                     name: str = "") -> Optional[Future]:
        """Start decoding a screenshot for ``slot`` of ``trade_id``.

        The image is attached by ``collect_images`` once the decode finishes.
        Returns the decode future, or None if the upload was rejected.
        """
        if self.store.get_trade(trade_id) is None:
            self.notify("Error: Select a trade before adding images")
            return None
        try:
            check_slot(slot)
        except ValueError as e:
            logger.warning("Upload for trade %d rejected: %s", trade_id, e)
            self.notify(f"Error: {e}")
            return None
        try:
            future = self.loader.load(data, mime_type, name)
        except ImageTypeError as e:
            self.notify(str(e))
            return None
        self._uploads[future] = (self._batch, trade_id, slot)
        return future

    def collect_images(self, wait: bool = False, timeout: Optional[float] = None) -> int:
        """Attach every finished decode to the store; returns how many were attached."""
        attached = 0
        for future in self.loader.collect(wait_all=wait, timeout=timeout):
            batch, trade_id, slot = self._uploads.pop(future)
            try:
                image = future.result()
            except ImageError as e:
                logger.warning("Image for trade %d slot %d rejected: %s", trade_id, slot, e)
                self.notify("Error reading image file")
                continue
            if batch != self._batch:
                logger.info("Dropping image for trade %d from a previous import", trade_id)
                continue
            try:
                self.store.attach_image(trade_id, slot, image)
            except ValueError as e:
                logger.warning("Image for trade %d not attached: %s", trade_id, e)
                self.notify(f"Error: {e}")
                continue
            attached += 1
            self.notify(f"Image {slot + 1} added successfully")
        return attached

    def remove_image(self, trade_id: int, slot: int) -> None:
        self.store.detach_image(trade_id, slot)

    # -- debug ---------------------------------------------------------

    def override_pnl(self, multiplier: float, symbol: Optional[str] = None) -> int:
        """Recompute P&L for trades whose instrument contains ``symbol``."""
        symbol = (symbol or self.config.override_symbol).upper()
        changed = self.store.override_pnl(lambda instrument: symbol in instrument.upper(), multiplier)
        logger.info("Debug: applied multiplier %s to %d %s trades", multiplier, changed, symbol)
        return changed

    # -- export --------------------------------------------------------

    @property
    def export_blocked(self) -> bool:
        return self.is_exporting or self.images_loading or not self.store.trades

    def export_pdf(self) -> Optional[bytes]:
        """Render all trades to PDF.

        A no-op returning None while images are loading, while another export
        is running, or when there is nothing to export.
        """
        if self.export_blocked:
            logger.info("Export request ignored (exporting=%s, images loading=%s, trades=%d)",
                        self.is_exporting, self.images_loading, len(self.store.trades))
            return None
        self.is_exporting = True
        self.notify("Preparing PDF export...")
        try:
            data = export_trades_pdf(
                self.store.trades,
                self.store.images,
                self.store.notes,
                progress=lambda i, n: self.notify(f"Exporting trade {i} of {n}..."),
            )
        except ExportError:
            logger.exception("Export error")
            self.notify("Error exporting PDF. Please try again.")
            return None
        finally:
            self.is_exporting = False
        self.notify("PDF export completed!")
        return data

    def close(self) -> None:
        self.loader.shutdown()
