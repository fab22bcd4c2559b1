"""
PDF export of the trade list.

Each trade gets a page with a fixed block of fields, followed by its
screenshots stacked vertically at full content width.  A screenshot that
would run past the bottom margin starts a new page.  Layout units are
millimetres on an A4 page with the origin at the top-left corner.
"""

import io
import logging
from typing import Callable, List, Mapping, NamedTuple, Optional, Sequence, Tuple

import numpy as np
from matplotlib.backends.backend_pdf import PdfPages
from matplotlib.figure import Figure
from PIL import Image

from csv_normalizer import Trade, format_money, format_number
from image_loader import LoadedImage

logger = logging.getLogger(__name__)

PAGE_WIDTH_MM = 210.0
PAGE_HEIGHT_MM = 297.0
MARGIN_MM = 10.0
IMAGES_TOP_MM = 120.0
NEW_PAGE_TOP_MM = 20.0
IMAGE_SPACING_MM = 10.0
MM_PER_INCH = 25.4


class ExportError(RuntimeError):
    """Raised when the document could not be produced."""


class Placement(NamedTuple):
    """Where one screenshot lands: page offset within the trade, top y, height."""

    page: int
    y: float
    height: float
    image: object


def image_size(image) -> Optional[Tuple[int, int]]:
    """Natural (width, height) of a stored image, or None if it can't be read."""
    if isinstance(image, LoadedImage):
        return image.width, image.height
    try:
        with Image.open(io.BytesIO(image)) as img:
            return img.size
    except (OSError, ValueError, TypeError) as e:
        logger.warning("Skipping unreadable image: %s", e)
        return None


def layout_images(images: Sequence, note: str = "") -> List[Placement]:
    """Stack a trade's screenshots down the page, breaking pages as needed."""
    img_width = PAGE_WIDTH_MM - MARGIN_MM * 2
    page = 0
    y_position = IMAGES_TOP_MM + (IMAGE_SPACING_MM if note else 0.0)
    placements: List[Placement] = []
    for image in images:
        if image is None:
            continue
        size = image_size(image)
        if not size or not size[0] or not size[1]:
            continue
        img_height = img_width * (size[1] / size[0])
        if y_position + img_height > PAGE_HEIGHT_MM - MARGIN_MM:
            page += 1
            y_position = NEW_PAGE_TOP_MM
        placements.append(Placement(page, y_position, img_height, image))
        y_position += img_height + IMAGE_SPACING_MM
    return placements


def trade_lines(trade: Trade, note: str = "") -> List[Tuple[float, str]]:
    """(y, text) pairs for the field block under the title."""
    lines = [
        (35.0, f"Type: {trade.trade_type.value}"),
        (45.0, f"Entry Time: {trade.entry_display or trade.entry_time.isoformat()}"),
        (55.0, f"Exit Time: {trade.exit_display or trade.exit_time.isoformat()}"),
        (65.0, f"Entry Price: {format_number(trade.entry_price)}"),
        (75.0, f"Exit Price: {format_number(trade.exit_price)}"),
        (85.0, f"Quantity: {format_number(trade.quantity)}"),
        (95.0, f"Profit/Loss: {format_money(trade.profit_loss)}"),
    ]
    if trade.description:
        lines.append((110.0, f"Description: {trade.description}"))
    if note:
        lines.append((IMAGES_TOP_MM, f"Notes: {note}"))
    return lines


def _new_page():
    fig = Figure(figsize=(PAGE_WIDTH_MM / MM_PER_INCH, PAGE_HEIGHT_MM / MM_PER_INCH))
    ax = fig.add_axes([0, 0, 1, 1])
    ax.axis("off")
    return fig, ax


def _finish_page(pdf: PdfPages, fig, ax) -> None:
    # Set last: imshow can nudge the view limits. y grows downwards, like a page.
    ax.set_xlim(0, PAGE_WIDTH_MM)
    ax.set_ylim(PAGE_HEIGHT_MM, 0)
    pdf.savefig(fig)


def _text(ax, y: float, text: str, size: int = 12) -> None:
    ax.text(MARGIN_MM, y, text, fontsize=size, va="baseline", ha="left", parse_math=False)


def _image_array(image) -> np.ndarray:
    data = image.data if isinstance(image, LoadedImage) else image
    with Image.open(io.BytesIO(data)) as img:
        return np.asarray(img.convert("RGB"))


def _render_trade(pdf: PdfPages, trade: Trade, images: Sequence, note: str) -> int:
    """Write one trade's page(s); returns how many pages were written."""
    fig, ax = _new_page()
    _text(ax, 20.0, f"Trade #{trade.id}: {trade.instrument}", size=18)
    for y, line in trade_lines(trade, note):
        _text(ax, y, line)

    img_width = PAGE_WIDTH_MM - MARGIN_MM * 2
    page = 0
    for placement in layout_images(images, note):
        if placement.page != page:
            _finish_page(pdf, fig, ax)
            fig, ax = _new_page()
            page = placement.page
        ax.imshow(
            _image_array(placement.image),
            extent=(MARGIN_MM, MARGIN_MM + img_width, placement.y + placement.height, placement.y),
            aspect="auto",
        )
    _finish_page(pdf, fig, ax)
    return page + 1


def page_count(trades: Sequence[Trade], images: Mapping[int, Sequence],
               notes: Optional[Mapping[int, str]] = None) -> int:
    """Pages ``export_trades_pdf`` will produce, without rendering anything."""
    notes = notes or {}
    total = 0
    for trade in trades:
        placements = layout_images(images.get(trade.id, []), notes.get(trade.id, ""))
        total += (placements[-1].page + 1) if placements else 1
    return total


def export_trades_pdf(trades: Sequence[Trade], images: Mapping[int, Sequence],
                      notes: Optional[Mapping[int, str]] = None,
                      progress: Optional[Callable[[int, int], None]] = None) -> bytes:
    """Render ``trades`` in list order and return the finished PDF.

    Trades are rendered one after another so page order always matches the
    list and only one document is held in memory.

    Args:
        trades: Trades in display order; one page each, plus overflow pages.
        images: Image slots keyed by trade id (``LoadedImage`` or raw bytes).
        notes: Optional note per trade id.
        progress: Called with (index, total), 1-based, before each trade.

    Raises:
        ExportError: If there is nothing to export or rendering fails.  No
            bytes are returned in that case.
    """
    if not trades:
        raise ExportError("No trades to export")
    notes = notes or {}
    buffer = io.BytesIO()
    total_pages = 0
    try:
        with PdfPages(buffer) as pdf:
            for idx, trade in enumerate(trades):
                if progress:
                    progress(idx + 1, len(trades))
                total_pages += _render_trade(pdf, trade, images.get(trade.id, []), notes.get(trade.id, ""))
    except Exception as e:
        raise ExportError(f"PDF export failed: {e}") from e
    logger.info("Exported %d trades on %d pages", len(trades), total_pages)
    return buffer.getvalue()
