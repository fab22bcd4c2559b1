import datetime as dt
import io
import os
import sys
import threading

import pytest
from PIL import Image

ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

import image_loader  # noqa: E402
from csv_normalizer import Trade, trade_direction  # noqa: E402

# Tradovate-style performance export
SAMPLE_CSV = (
    "symbol,_priceFormat,_tickSize,buyFillId,sellFillId,qty,buyPrice,sellPrice,pnl,boughtTimestamp,soldTimestamp\n"
    "XAUUSD,-2,0.1,101,201,1,1900.0,1905.0,$500.00,03/01/2024 09:30:00,03/01/2024 10:35:00\n"
    "XAUUSD,-2,0.1,102,202,2,1910.5,1908.0,$(500.00),03/02/2024 14:00:00,03/02/2024 14:45:00\n"
    "MGCJ4,-2,0.1,103,203,1,2050.0,2051.0,$10.00,02/28/2024 08:00:00,02/28/2024 08:05:00\n"
)


def make_png(width: int = 40, height: int = 20, fmt: str = "PNG") -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", (width, height), (200, 30, 30)).save(buf, format=fmt)
    return buf.getvalue()


@pytest.fixture
def sample_csv():
    return SAMPLE_CSV


@pytest.fixture
def png_bytes():
    return make_png()


@pytest.fixture
def fixed_now():
    return dt.datetime(2024, 6, 1, 12, 0, tzinfo=dt.timezone.utc)


@pytest.fixture
def make_trade():
    """Factory for trades built directly, bypassing the CSV parser."""

    def _make(trade_id=1, instrument="XAUUSD", entry_price=1900.0, exit_price=1905.0,
              quantity=1.0, profit_loss=500.0, entry_time=None, minutes=30):
        entry_time = entry_time or dt.datetime(2024, 3, 1, 9, 30, tzinfo=dt.timezone.utc)
        trade_type = trade_direction(entry_price, exit_price)
        return Trade(
            id=trade_id,
            instrument=instrument,
            entry_time=entry_time,
            exit_time=entry_time + dt.timedelta(minutes=minutes),
            quantity=quantity,
            entry_price=entry_price,
            exit_price=exit_price,
            profit_loss=profit_loss,
            original_pnl_string="",
            should_display_as_negative=profit_loss < 0,
            trade_type=trade_type,
            duration=f"{minutes}m",
            description=f"{trade_type.value} {quantity} {instrument}",
            entry_display=entry_time.strftime("%m/%d/%Y, %H:%M:%S"),
            exit_display=(entry_time + dt.timedelta(minutes=minutes)).strftime("%m/%d/%Y, %H:%M:%S"),
        )

    return _make


@pytest.fixture
def blocked_decode(monkeypatch):
    """Hold every image decode until the returned event is set."""
    release = threading.Event()
    real_decode = image_loader.decode_image

    def slow_decode(data, mime_type="image/png", name=""):
        release.wait(timeout=5)
        return real_decode(data, mime_type, name)

    monkeypatch.setattr(image_loader, "decode_image", slow_decode)
    yield release
    release.set()
