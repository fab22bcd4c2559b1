"""
CSV Normalizer
==============

Turns a broker CSV export (one completed round-trip per row) into a list of
``Trade`` records.  Broker exports differ in how they name columns and how
they write P&L, so the parser is deliberately forgiving:

* Column names are matched case-insensitively by substring, so
  ``BuyPrice_USD`` satisfies ``buyprice``.
* Rows that are too short are skipped, bad timestamps are replaced with the
  current time, and a P&L cell that is not a number is recomputed from the
  prices.

Only header-level problems (no data, missing columns, nothing usable) abort
the import; they raise a ``ParseError`` subclass.
"""

import datetime as dt
import logging
import math
import re
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Sequence, Tuple
from zoneinfo import ZoneInfo

import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)

# XAUUSD (Gold) multiplier - $1 move equals this amount per lot
INSTRUMENT_MULTIPLIER = 100.0

REQUIRED_COLUMNS = (
    "symbol", "buyprice", "sellprice", "qty", "boughttimestamp", "soldtimestamp", "pnl",
)
OPTIONAL_COLUMNS = ("duration",)

DISPLAY_FORMAT = "%m/%d/%Y, %H:%M:%S"

_FIELD_SPLIT = re.compile(r",|\t")
_NUMERIC_PREFIX = re.compile(r"[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?")
_CURRENCY = re.compile(r"[$£€]")
_CURRENCY_AND_COMMAS = re.compile(r"[$£€,]")


class ParseError(RuntimeError):
    """Base class for failures that abort a whole import."""


class NoValidTradesError(ParseError):
    """No row survived row-level recovery."""

    def __init__(self, message: str = "No valid trades found in CSV"):
        super().__init__(message)


class EmptyInputError(NoValidTradesError):
    """The input has a header at most, so there is nothing to import."""

    def __init__(self, message: str = "CSV has no data rows."):
        super().__init__(message)


class MissingColumnsError(ParseError):
    """One or more required logical columns have no matching header."""

    def __init__(self, names: Sequence[str]):
        self.names = list(names)
        super().__init__(f"Missing required columns: {', '.join(self.names)}")


class TradeType(Enum):
    LONG = "Long"
    SHORT = "Short"

    @property
    def sign(self) -> int:
        """+1 for long, -1 for short."""
        return 1 if self is TradeType.LONG else -1


def trade_direction(entry_price: float, exit_price: float) -> TradeType:
    """Classify a trade by price shape: an exit at or above entry is long.

    This is a heuristic, not the broker-reported side.  It is the single
    policy used both for ``Trade.trade_type`` and for the sign of a P&L that
    has to be recomputed from prices.
    """
    return TradeType.LONG if entry_price <= exit_price else TradeType.SHORT


@dataclass(frozen=True)
class Trade:
    """One completed buy/sell round-trip."""

    id: int
    instrument: str
    entry_time: dt.datetime
    exit_time: dt.datetime
    quantity: float
    entry_price: float
    exit_price: float
    profit_loss: float
    original_pnl_string: str
    should_display_as_negative: bool
    trade_type: TradeType
    duration: str
    description: str
    entry_display: str = ""
    exit_display: str = ""
    exit_reason: str = "Market Exit"

    @property
    def is_winning(self) -> bool:
        """Winning if the CSV did not mark the P&L as negative."""
        return not self.should_display_as_negative

    @property
    def duration_seconds(self) -> float:
        return (self.exit_time - self.entry_time).total_seconds()

    @property
    def has_valid_pnl(self) -> bool:
        return not np.isnan(self.profit_loss)

    def to_dict(self) -> Dict:
        """Convert trade to a JSON-safe dictionary (NaN becomes None)."""
        def num(value: float) -> Optional[float]:
            return None if np.isnan(value) else value
        return {
            'id': self.id,
            'instrument': self.instrument,
            'entry_time': self.entry_time.isoformat(),
            'exit_time': self.exit_time.isoformat(),
            'entry_display': self.entry_display,
            'exit_display': self.exit_display,
            'quantity': num(self.quantity),
            'entry_price': num(self.entry_price),
            'exit_price': num(self.exit_price),
            'profit_loss': num(self.profit_loss),
            'original_pnl_string': self.original_pnl_string,
            'should_display_as_negative': self.should_display_as_negative,
            'is_winning': self.is_winning,
            'trade_type': self.trade_type.value,
            'description': self.description,
            'exit_reason': self.exit_reason,
            'duration': self.duration,
            'duration_seconds': self.duration_seconds,
        }

    def pnl_label(self) -> str:
        """P&L as shown in lists: the CSV string if there was one, else formatted."""
        if self.original_pnl_string:
            return self.original_pnl_string
        return format_money(self.profit_loss)


def format_number(value: float) -> str:
    """Render a float the way a spreadsheet would: ``1`` not ``1.0``."""
    if isinstance(value, float) and math.isfinite(value) and value.is_integer():
        return str(int(value))
    if isinstance(value, float) and np.isnan(value):
        return "NaN"
    return str(value)


def format_money(value: float) -> str:
    """``-$12.50`` / ``$12.50``; ``N/A`` for a P&L that could not be computed."""
    if np.isnan(value):
        return "N/A"
    sign = "-" if value < 0 else ""
    return f"{sign}${abs(value):.2f}"


def format_duration(minutes: int) -> str:
    """``"2h 5m"`` for an hour or more, ``"45m"`` otherwise."""
    if minutes >= 60:
        return f"{minutes // 60}h {minutes % 60}m"
    return f"{minutes}m"


def parse_number(text: str) -> float:
    """Parse the leading numeric part of ``text``; NaN if there is none.

    ``"12.5abc"`` gives 12.5 and ``"1,200"`` gives 1, matching how broker
    exports have always been read by this tool.
    """
    match = _NUMERIC_PREFIX.match(text.strip())
    if not match:
        return np.nan
    return float(match.group(0))


def parse_pnl(pnl_string: str) -> Tuple[float, str, bool]:
    """Parse a P&L cell into ``(value, display_string, display_negative)``.

    Formats are tried in order: ``$(225.00)``, ``(225.00)``, ``-225.00`` and
    finally a plain positive number.  ``value`` is NaN when nothing parses;
    the display fields are still filled in.
    """
    pnl_string = pnl_string.strip()
    # Exact broker format $(225.00)
    if pnl_string.startswith("$(") and pnl_string.endswith(")"):
        numeric_part = pnl_string[2:-1]
        return -parse_number(numeric_part), f"-${numeric_part}", True
    if pnl_string.startswith("(") and pnl_string.endswith(")"):
        inner = pnl_string[1:-1]
        display = f"-${_CURRENCY.sub('', inner)}"
        value = -abs(parse_number(_CURRENCY_AND_COMMAS.sub("", inner).strip()))
        return value, display, True
    if pnl_string.startswith("-"):
        return parse_number(_CURRENCY_AND_COMMAS.sub("", pnl_string).strip()), pnl_string, True
    return parse_number(_CURRENCY_AND_COMMAS.sub("", pnl_string).strip()), pnl_string, False


def pnl_from_prices(entry_price: float, exit_price: float, quantity: float,
                    multiplier: float = INSTRUMENT_MULTIPLIER) -> float:
    """Recompute P&L when the CSV value is unusable."""
    direction = trade_direction(entry_price, exit_price).sign
    return direction * (exit_price - entry_price) * quantity * multiplier


def parse_timestamp(raw: str, tz: dt.tzinfo) -> Optional[dt.datetime]:
    """Parse a timestamp cell to an aware datetime, or None if it is not one.

    Naive values are taken to be in ``tz``.
    """
    if not raw or not raw.strip():
        return None
    try:
        ts = pd.to_datetime(raw.strip())
    except (ValueError, TypeError, OverflowError):
        return None
    if pd.isna(ts):
        return None
    value = ts.to_pydatetime()
    if value.tzinfo is None:
        value = value.replace(tzinfo=tz)
    return value


def split_fields(line: str) -> List[str]:
    return [f.strip() for f in _FIELD_SPLIT.split(line)]


def resolve_columns(headers: Sequence[str]) -> Dict[str, int]:
    """Map logical column names to header indices.

    A logical name matches a header when the lower-cased header contains it;
    the left-most matching header wins.  Two logical names can land on the
    same header (``"buyprice/sellprice"``), which is accepted as-is.
    Unmatched names are absent from the result.
    """
    lowered = [h.strip().lower() for h in headers]
    columns: Dict[str, int] = {}
    for name in REQUIRED_COLUMNS + OPTIONAL_COLUMNS:
        for idx, header in enumerate(lowered):
            if name in header:
                columns[name] = idx
                break
    return columns


def is_csv_file(name: Optional[str], mime_type: Optional[str] = None) -> bool:
    """Accept ``text/csv`` uploads and anything named ``*.csv``."""
    if mime_type == "text/csv":
        return True
    return bool(name) and name.lower().endswith(".csv")


def normalize(raw_text: str, *, multiplier: float = INSTRUMENT_MULTIPLIER,
              source_tz: str = "UTC", display_tz: str = "America/New_York",
              now: Optional[dt.datetime] = None) -> List[Trade]:
    """Parse CSV text into trades, most recent entry first.

    Args:
        raw_text: Whole CSV file contents, comma or tab delimited.
        multiplier: Contract multiplier used when P&L has to be recomputed.
        source_tz: Zone for timestamps that carry no offset.
        display_tz: Zone for ``entry_display`` / ``exit_display``.
        now: Substitute entry time for rows with bad timestamps; defaults to
            the current UTC time.

    Raises:
        EmptyInputError: Fewer than two lines after stripping.
        MissingColumnsError: A required column has no matching header.
        NoValidTradesError: No data row could be used.
    """
    lines = raw_text.strip().split("\n")
    if len(lines) < 2:
        raise EmptyInputError()

    headers = split_fields(lines[0])
    logger.debug("CSV headers: %s", headers)

    columns = resolve_columns(headers)
    missing = [name for name in REQUIRED_COLUMNS if name not in columns]
    if missing:
        raise MissingColumnsError(missing)
    logger.debug("Column indices: %s", columns)

    min_fields = max(columns[name] for name in REQUIRED_COLUMNS) + 1
    duration_idx = columns.get("duration")
    source_zone = ZoneInfo(source_tz)
    display_zone = ZoneInfo(display_tz)

    trades: List[Trade] = []
    for i in range(1, len(lines)):
        line = lines[i]
        if not line.strip():
            continue
        fields = split_fields(line)
        if len(fields) < min_fields:
            logger.warning("Skipping row %d: insufficient fields (%d < %d)", i, len(fields), min_fields)
            continue

        symbol = fields[columns["symbol"]]
        entry_price = parse_number(fields[columns["buyprice"]])
        exit_price = parse_number(fields[columns["sellprice"]])
        quantity = parse_number(fields[columns["qty"]])

        entry_time = parse_timestamp(fields[columns["boughttimestamp"]], source_zone)
        exit_time = parse_timestamp(fields[columns["soldtimestamp"]], source_zone)
        if entry_time is None or exit_time is None:
            logger.warning("Row %d: could not parse timestamps %r / %r, using current time",
                           i, fields[columns["boughttimestamp"]], fields[columns["soldtimestamp"]])
            entry_time = now or dt.datetime.now(dt.timezone.utc)
            exit_time = entry_time + dt.timedelta(hours=1)

        profit_loss, original_pnl_string, display_negative = parse_pnl(fields[columns["pnl"]])
        if np.isnan(profit_loss):
            profit_loss = pnl_from_prices(entry_price, exit_price, quantity, multiplier)
            logger.debug("Row %d: P&L %r not numeric, recomputed %s from prices",
                         i, fields[columns["pnl"]], profit_loss)
        if np.isnan(profit_loss):
            logger.warning("Row %d: P&L could not be computed from prices either", i)

        if duration_idx is not None and duration_idx < len(fields):
            duration = fields[duration_idx]
        else:
            elapsed_minutes = math.floor((exit_time - entry_time).total_seconds() / 60)
            duration = format_duration(elapsed_minutes)

        trade_type = trade_direction(entry_price, exit_price)
        trade = Trade(
            id=i,
            instrument=symbol,
            entry_time=entry_time,
            exit_time=exit_time,
            quantity=quantity,
            entry_price=entry_price,
            exit_price=exit_price,
            profit_loss=profit_loss,
            original_pnl_string=original_pnl_string,
            should_display_as_negative=display_negative,
            trade_type=trade_type,
            duration=duration,
            description=(f"{trade_type.value} {format_number(quantity)} {symbol} "
                         f"@ {format_number(entry_price)}, Exit @ {format_number(exit_price)}"),
            entry_display=entry_time.astimezone(display_zone).strftime(DISPLAY_FORMAT),
            exit_display=exit_time.astimezone(display_zone).strftime(DISPLAY_FORMAT),
        )
        trades.append(trade)
        logger.debug("Parsed trade %d: %s", i, trade)

    if not trades:
        raise NoValidTradesError()

    # sorted() is stable, and stays stable with reverse=True
    return sorted(trades, key=lambda t: t.entry_time, reverse=True)
