"""
Cell -> ISO date normalization for spreadsheet rows.

Spreadsheet dates arrive as native datetimes (Graph/openpyxl), Excel serial numbers
(unformatted Sheets/Graph values), or free text typed by operators ("21-Oct",
"21/10/24", "2024-10-21"). Every entry point here is total: bad input yields None,
never an exception.
"""

from __future__ import annotations

import re
from datetime import date, datetime, timedelta, timezone
from typing import Any

from dateutil import parser as date_parser

EXCEL_EPOCH = datetime(1899, 12, 30)
# Serial numbers in this open interval cover roughly 2009-06 .. 2064-04.
EXCEL_SERIAL_MIN = 40000
EXCEL_SERIAL_MAX = 60000

MONTHS: dict[str, int] = {
    "jan": 1,
    "feb": 2,
    "mar": 3,
    "apr": 4,
    "may": 5,
    "jun": 6,
    "jul": 7,
    "aug": 8,
    "sep": 9,
    "oct": 10,
    "nov": 11,
    "dec": 12,
}

_BLANK = {"", "-", "--", "n/a", "na"}

_YMD_RE = re.compile(r"^(\d{4})[-/.](\d{1,2})[-/.](\d{1,2})(?:[T\s].*)?$")
_DMY_RE = re.compile(r"^(\d{1,2})[-/](\d{1,2})[-/](\d{2}|\d{4})$")
_DM_RE = re.compile(r"^(\d{1,2})[-/](\d{1,2})$")
_D_MON_RE = re.compile(r"^(\d{1,2})[\s-]+([A-Za-z]{3,})\.?$")
_YEAR_RE = re.compile(r"(\d{4})")


def _iso(y: int, m: int, d: int) -> str | None:
    if not (1 <= m <= 12) or not (1 <= d <= 31):
        return None
    try:
        return date(y, m, d).isoformat()
    except ValueError:
        # 31 April and friends.
        return None


def resolve_year(year_hint: Any) -> int:
    """4-digit year from a hint ("2024", 2024, 2024.0, "FY2024"), else the current year."""
    if isinstance(year_hint, bool):
        year_hint = None
    if isinstance(year_hint, (int, float)) and 1900 <= int(year_hint) <= 2999:
        return int(year_hint)
    m = _YEAR_RE.search(str(year_hint or ""))
    if m:
        return int(m.group(1))
    return datetime.now().year


def excel_serial_to_iso(value: float) -> str | None:
    try:
        return (EXCEL_EPOCH + timedelta(days=float(value))).date().isoformat()
    except (OverflowError, ValueError):
        return None


def _is_number(v: Any) -> bool:
    return isinstance(v, (int, float)) and not isinstance(v, bool)


def parse_date(year_hint: Any, raw: Any) -> str | None:
    """
    Normalize one cell to YYYY-MM-DD (first rule that matches wins):

    1. blank / "-"                   -> None
    2. datetime / date               -> its calendar date (aware values in UTC)
    3. number in (40000, 60000)      -> Excel serial date
    4. YYYY-MM-DD (also / and .)
    5. DD/MM/YY or DD-MM-YYYY        -> 2-digit years are 20YY
    6. DD/MM or DD-MM                -> year from hint, else current year
    7. "21 Oct" / "21-October"       -> year from hint, else current year
    8. dateutil (day-first)          -> anything else it can read
    """
    if raw is None:
        return None

    if isinstance(raw, datetime):
        if raw.tzinfo is not None:
            raw = raw.astimezone(timezone.utc)
        return raw.date().isoformat()
    if isinstance(raw, date):
        return raw.isoformat()

    if _is_number(raw):
        if raw != raw:  # NaN
            return None
        if EXCEL_SERIAL_MIN < raw < EXCEL_SERIAL_MAX:
            return excel_serial_to_iso(raw)
        text = str(int(raw)) if float(raw).is_integer() else str(raw)
    else:
        text = str(raw)

    s = text.strip()
    if s.lower() in _BLANK:
        return None

    m = _YMD_RE.match(s)
    if m:
        return _iso(int(m.group(1)), int(m.group(2)), int(m.group(3)))

    m = _DMY_RE.match(s)
    if m:
        yy = int(m.group(3))
        if len(m.group(3)) == 2:
            yy += 2000
        return _iso(yy, int(m.group(2)), int(m.group(1)))

    m = _DM_RE.match(s)
    if m:
        return _iso(resolve_year(year_hint), int(m.group(2)), int(m.group(1)))

    m = _D_MON_RE.match(s)
    if m:
        month = MONTHS.get(m.group(2)[:3].lower())
        if month:
            return _iso(resolve_year(year_hint), month, int(m.group(1)))

    # Bare numbers outside the serial window are not dates.
    if s.replace(".", "", 1).isdigit():
        return None

    try:
        parsed = date_parser.parse(s, dayfirst=True)
    except (ValueError, OverflowError):
        return None
    return parsed.date().isoformat()


def build_received_display(year_hint: Any, raw: Any) -> str:
    """
    Best-effort human string for the "received" column. Operators want to see what
    was in the cell when normalization fails, so fall back to raw text + year hint.
    """
    iso = parse_date(year_hint, raw)
    if iso:
        return date.fromisoformat(iso).strftime("%d %b %Y")

    if isinstance(raw, (datetime, date)):
        return raw.isoformat()
    raw_text = "" if raw is None else str(raw).strip()
    if raw_text == "-":
        raw_text = ""
    hint_text = "" if year_hint is None or isinstance(year_hint, bool) else str(year_hint).strip()
    if hint_text and raw_text and hint_text in raw_text:
        return raw_text
    return " ".join(p for p in (raw_text, hint_text) if p)
