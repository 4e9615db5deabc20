from __future__ import annotations

from typing import Any, Mapping, Sequence


# Canonical field -> header fragments, in priority order. Matching is substring on
# upper-cased, trimmed header text so " Tender value " and "TENDER VALUE" both hit.
DEFAULT_FIELD_CANDIDATES: dict[str, list[str]] = {
    "opportunityRefNo": ["TENDER NO", "REF NO", "REFERENCE"],
    "tenderName": ["TENDER NAME", "DESCRIPTION", "PROJECT NAME"],
    "clientName": ["CLIENT"],
    "opportunityClassification": ["TENDER TYPE", "CLASSIFICATION"],
    "year": ["YEAR"],
    "dateTenderReceived": ["DATE TENDER RECD", "DATE RECEIVED", "RFP RECEIVED"],
    "tenderPlannedSubmissionDate": ["PLANNED SUBMISSION", "SUBMISSION DEADLINE", "DUE DATE"],
    "tenderSubmittedDate": ["SUBMITTED DATE", "DATE SUBMITTED", "SUBMITTED ON"],
    "lastContactDate": ["LAST CONTACT"],
    "internalLead": ["ASSIGNED PERSON", "INTERNAL LEAD", "LEAD"],
    "opportunityValue": ["TENDER VALUE", "VALUE"],
    "probability": ["PROBABILITY", "WIN %"],
    "avenirStatus": ["AVENIR STATUS"],
    "tenderResult": ["TENDER RESULT", "RESULT"],
    "groupClassification": ["GDS/GES", "GROUP"],
    "country": ["COUNTRY", "LOCATION"],
    "partnerName": ["PARTNER"],
    "remarksReason": ["REMARKS", "REASON"],
    "comments": ["COMMENTS", "NOTES"],
}

CANONICAL_FIELDS: tuple[str, ...] = tuple(DEFAULT_FIELD_CANDIDATES)

ABSENT = -1


def _norm(v: Any) -> str:
    return str(v if v is not None else "").strip().upper()


def resolve(header_row: Sequence[Any], candidates: Sequence[str]) -> int:
    """
    Index of the first header containing any candidate (case-insensitive), else -1.
    """
    cands = [_norm(c) for c in (candidates or []) if _norm(c)]
    if not cands:
        return ABSENT
    for idx, header in enumerate(header_row or []):
        h = _norm(header)
        if not h:
            continue
        if any(c in h for c in cands):
            return idx
    return ABSENT


def _override_candidates(override: Any) -> list[str] | int | None:
    if override is None:
        return None
    if isinstance(override, bool):
        return None
    if isinstance(override, int):
        return override
    if isinstance(override, str):
        s = override.strip()
        if not s:
            return None
        # Column mapping screens post indices as strings ("3").
        if s.isdigit():
            return int(s)
        return [s]
    if isinstance(override, (list, tuple)):
        vals = [str(x).strip() for x in override if str(x or "").strip()]
        return vals or None
    return None


def resolve_columns(
    header_row: Sequence[Any],
    overrides: Mapping[str, Any] | None = None,
) -> dict[str, int]:
    """
    Resolve every canonical field to a column index.

    `overrides` maps field -> candidate list, single candidate, or explicit column
    index. Fields without a usable override fall back to DEFAULT_FIELD_CANDIDATES.
    Explicit indices outside the header row resolve to -1.
    """
    ov = dict(overrides or {})
    width = len(header_row or [])
    out: dict[str, int] = {}
    for field, defaults in DEFAULT_FIELD_CANDIDATES.items():
        wanted = _override_candidates(ov.get(field))
        if isinstance(wanted, int):
            out[field] = wanted if 0 <= wanted < width else ABSENT
        elif wanted:
            out[field] = resolve(header_row, wanted)
        else:
            out[field] = resolve(header_row, defaults)
    return out


def cell_at(row: Sequence[Any] | None, index: int) -> Any:
    """Cell value or "" for a missing column / short row."""
    if row is None or index is None or index < 0 or index >= len(row):
        return ""
    v = row[index]
    return "" if v is None else v
