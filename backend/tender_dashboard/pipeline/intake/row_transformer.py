"""
Worksheet row -> canonical opportunity record.

The transformer resolves header columns once per worksheet and then maps rows
independently. Parse problems never raise: bad numbers become 0, bad dates become
None, and fields the sheet did not provide are flagged as imputed.
"""

from __future__ import annotations

import re
from datetime import date, datetime, timezone
from typing import Any, Mapping, Sequence

from .date_normalizer import build_received_display, parse_date
from .field_resolver import cell_at, resolve_columns
from .status_canonicalizer import (
    DEFAULT_PROBABILITY_BY_STAGE,
    IN_PROGRESS,
    PRE_BID,
    TERMINAL_STAGES,
    canonicalize_with_flag,
    combine_statuses,
    normalize_status,
)

_NUMERIC_STRIP_RE = re.compile(r"[^0-9.\-]")

TEXT_FIELDS: tuple[str, ...] = (
    "opportunityRefNo",
    "tenderName",
    "clientName",
    "internalLead",
    "groupClassification",
    "opportunityClassification",
    "country",
    "partnerName",
    "remarksReason",
    "comments",
)

DATE_FIELDS: tuple[str, ...] = (
    "dateTenderReceived",
    "tenderPlannedSubmissionDate",
    "tenderSubmittedDate",
    "lastContactDate",
)

AT_RISK_WINDOW_DAYS = 7


def _text(v: Any) -> str:
    if v is None:
        return ""
    if isinstance(v, float) and v.is_integer():
        v = int(v)
    return str(v).strip()


def is_blank_row(row: Sequence[Any] | None) -> bool:
    return not row or all(_text(c) == "" for c in row)


def parse_number(raw: Any) -> float:
    """Keep digits, '.' and '-' only ("AED 1,250,000" -> 1250000.0); junk -> 0."""
    if isinstance(raw, bool) or raw is None:
        return 0.0
    if isinstance(raw, (int, float)):
        return float(raw) if raw == raw else 0.0
    cleaned = _NUMERIC_STRIP_RE.sub("", str(raw))
    if not cleaned:
        return 0.0
    try:
        n = float(cleaned)
    except ValueError:
        return 0.0
    if n != n or n in (float("inf"), float("-inf")):
        return 0.0
    return n


def _num_out(n: float) -> int | float:
    return int(n) if float(n).is_integer() else round(n, 4)


def identity_key(record: Mapping[str, Any]) -> str:
    """Ref no when present, else a client + tender-name composite."""
    ref = _text(record.get("opportunityRefNo"))
    if ref:
        return f"REF:{ref.upper()}"
    client = _text(record.get("clientName")).upper()
    name = _text(record.get("tenderName")).upper()
    return f"CT:{client}|{name}"


def _snapshot_value(v: Any) -> Any:
    if isinstance(v, (datetime, date)):
        return v.isoformat()
    if v is None or isinstance(v, (str, int, float, bool)):
        return v
    return str(v)


def _snapshot_keys(headers: Sequence[Any], width: int) -> list[str]:
    keys: list[str] = []
    seen: dict[str, int] = {}
    for i in range(width):
        base = _text(headers[i]) if i < len(headers) else ""
        base = base or f"Column {i + 1}"
        n = seen.get(base, 0)
        seen[base] = n + 1
        keys.append(base if n == 0 else f"{base} ({n + 1})")
    return keys


def _days_between(start: str | None, end: str | None) -> int | None:
    if not start or not end:
        return None
    return (date.fromisoformat(end) - date.fromisoformat(start)).days


class RowTransformer:
    def __init__(
        self,
        headers: Sequence[Any],
        field_mapping: Mapping[str, Any] | None = None,
        now: datetime | None = None,
    ):
        self.headers = list(headers or [])
        self.columns = resolve_columns(self.headers, field_mapping)
        self.now = now or datetime.now(timezone.utc)

    def _cell(self, row: Sequence[Any], field: str) -> Any:
        return cell_at(row, self.columns.get(field, -1))

    def snapshot(self, row: Sequence[Any]) -> dict[str, Any]:
        width = max(len(self.headers), len(row))
        keys = _snapshot_keys(self.headers, width)
        return {k: _snapshot_value(row[i] if i < len(row) else "") for i, k in enumerate(keys)}

    def _stage(self, avenir: str, result: str) -> tuple[str, bool, str]:
        # A terminal tender result outranks whatever the AVENIR column says.
        result_stage, result_known = canonicalize_with_flag(result)
        if result and result_known and result_stage in TERMINAL_STAGES:
            return result_stage, True, result
        primary = avenir or result
        stage, known = canonicalize_with_flag(primary)
        return stage, known, primary

    def transform(
        self,
        row: Sequence[Any],
        year_hint: Any = None,
        row_number: int | None = None,
    ) -> dict[str, Any] | None:
        if is_blank_row(row):
            return None
        row = list(row)

        rec: dict[str, Any] = {f: _text(self._cell(row, f)) for f in TEXT_FIELDS}
        if not (rec["opportunityRefNo"] or rec["clientName"] or rec["tenderName"]):
            return None

        year_cell = _text(self._cell(row, "year"))
        year = year_cell or (_text(year_hint) or None)

        received_raw = self._cell(row, "dateTenderReceived")
        for f in DATE_FIELDS:
            rec[f] = parse_date(year, self._cell(row, f))

        # Status
        avenir = normalize_status(self._cell(row, "avenirStatus"))
        result = normalize_status(self._cell(row, "tenderResult"))
        stage, recognized, stage_source = self._stage(avenir, result)
        rec["avenirStatus"] = avenir
        rec["tenderResult"] = result
        rec["combinedStatuses"] = combine_statuses(avenir, result)
        rec["opportunityStatus"] = stage_source
        rec["canonicalStage"] = stage
        rec["canonicalStage_imputed"] = not recognized
        rec["canonicalStage_imputation_reason"] = (
            "" if recognized else f"Unrecognized status '{stage_source}' - defaulted to {PRE_BID}"
        )

        # Value / probability
        value = max(0.0, parse_number(self._cell(row, "opportunityValue")))
        rec["opportunityValue"] = _num_out(value)
        rec["opportunityValue_imputed"] = value == 0
        rec["opportunityValue_imputation_reason"] = "Value not provided - using 0" if value == 0 else ""

        prob_raw = self._cell(row, "probability")
        if _text(prob_raw):
            prob = parse_number(prob_raw)
            # Percent-formatted cells arrive unformatted as fractions (0.4 == 40%, 1.0 == 100%).
            if isinstance(prob_raw, (int, float)) and 0 < prob <= 1:
                prob *= 100
            prob = min(100.0, max(0.0, prob))
            rec["probability"] = _num_out(prob)
            rec["probability_imputed"] = False
            rec["probability_imputation_reason"] = ""
        else:
            prob = float(DEFAULT_PROBABILITY_BY_STAGE.get(stage, 0))
            rec["probability"] = _num_out(prob)
            rec["probability_imputed"] = True
            rec["probability_imputation_reason"] = f"Probability not provided - default for {stage}"
        rec["expectedValue"] = _num_out(round(value * prob / 100, 2))

        rec["partnerInvolvement"] = bool(rec["partnerName"])
        rec.update(self._timeline(rec))

        rec["opportunityKey"] = identity_key(rec)
        rec["syncedAt"] = self.now.isoformat().replace("+00:00", "Z")
        rec["rawGraphData"] = {
            "rowSnapshot": self.snapshot(row),
            "year": year_cell,
            "dateReceived": _text(_snapshot_value(received_raw)),
            "rfpReceivedDisplay": build_received_display(year, received_raw),
            "sourceRowNumber": row_number,
        }
        return rec

    def _timeline(self, rec: Mapping[str, Any]) -> dict[str, Any]:
        today = self.now.date().isoformat()
        since = _days_between(rec.get("dateTenderReceived"), today)
        to_planned = _days_between(today, rec.get("tenderPlannedSubmissionDate"))
        stage = rec.get("canonicalStage")
        still_open = stage in (PRE_BID, IN_PROGRESS) and not rec.get("tenderSubmittedDate")

        will_miss = bool(still_open and to_planned is not None and to_planned < 0)
        due_soon = bool(still_open and to_planned is not None and 0 <= to_planned <= AT_RISK_WINDOW_DAYS)
        return {
            "daysSinceTenderReceived": max(0, since) if since is not None else 0,
            "daysToPlannedSubmission": to_planned if to_planned is not None else 0,
            "willMissDeadline": will_miss,
            "isAtRisk": will_miss or due_soon,
        }


def transform_rows(
    headers: Sequence[Any],
    rows: Sequence[Sequence[Any]],
    *,
    field_mapping: Mapping[str, Any] | None = None,
    year_hint: Any = None,
    now: datetime | None = None,
    first_row_number: int = 1,
) -> list[dict[str, Any]]:
    """Transform a block of data rows; rows yielding None are dropped."""
    tx = RowTransformer(headers, field_mapping=field_mapping, now=now)
    out: list[dict[str, Any]] = []
    for i, row in enumerate(rows):
        rec = tx.transform(row, year_hint=year_hint, row_number=first_row_number + i)
        if rec is not None:
            out.append(rec)
    return out

