from __future__ import annotations

from typing import Any, Iterable

PRE_BID = "Pre-bid"
IN_PROGRESS = "In Progress"
SUBMITTED = "Submitted"
AWARDED = "Awarded"
LOST = "Lost"
REGRETTED = "Regretted"
ON_HOLD = "On Hold/Paused"

# Pipeline order used by the funnel view.
STAGE_ORDER: tuple[str, ...] = (
    PRE_BID,
    IN_PROGRESS,
    SUBMITTED,
    AWARDED,
    LOST,
    REGRETTED,
    ON_HOLD,
)

TERMINAL_STAGES = frozenset({AWARDED, LOST, REGRETTED})

DEFAULT_PROBABILITY_BY_STAGE: dict[str, int] = {
    PRE_BID: 10,
    IN_PROGRESS: 40,
    SUBMITTED: 60,
    AWARDED: 100,
    LOST: 0,
    REGRETTED: 0,
    ON_HOLD: 20,
}

_EXACT: dict[str, str] = {
    "SUBMITTED": SUBMITTED,
    "TENDER SUBMITTED": SUBMITTED,
    "AWARDED": AWARDED,
    "LOST": LOST,
    # Regretted (we declined to bid) is not Lost.
    "REGRETTED": REGRETTED,
}

_HOLD_MARKERS = ("HOLD", "CLOSED", "PAUSED")
_IN_PROGRESS_EXACT = {"ONGOING", "WORKING"}
_PRE_BID_EXACT = {"RFT", "EOI", "OPEN", "BD"}


def normalize_status(raw: Any) -> str:
    return str(raw if raw is not None else "").strip().upper()


def _match(upper: str) -> str | None:
    if not upper:
        return None
    hit = _EXACT.get(upper)
    if hit:
        return hit
    if any(m in upper for m in _HOLD_MARKERS):
        return ON_HOLD
    if "IN PROGRESS" in upper or upper in _IN_PROGRESS_EXACT:
        return IN_PROGRESS
    if "PRE" in upper or upper in _PRE_BID_EXACT:
        return PRE_BID
    # Canonical labels fed back in map to themselves.
    for stage in STAGE_ORDER:
        if upper == stage.upper():
            return stage
    return None


def canonicalize_with_flag(raw: Any) -> tuple[str, bool]:
    """
    Canonical stage plus whether a rule actually recognized the text.

    Empty input is "recognized" (nothing to flag); unknown non-empty text lands in
    Pre-bid with recognized=False so callers can mark the record as imputed.
    """
    upper = normalize_status(raw)
    if not upper:
        return PRE_BID, True
    hit = _match(upper)
    if hit is None:
        return PRE_BID, False
    return hit, True


def canonicalize(raw: Any) -> str:
    """Map free-text status to one of STAGE_ORDER (first rule wins, default Pre-bid)."""
    return canonicalize_with_flag(raw)[0]


def combine_statuses(*statuses: Any) -> list[str]:
    """Normalized, non-empty statuses in order, without duplicates."""
    out: list[str] = []
    for s in _flatten(statuses):
        n = normalize_status(s)
        if n and n not in out:
            out.append(n)
    return out


def _flatten(values: Iterable[Any]) -> Iterable[Any]:
    for v in values:
        if isinstance(v, (list, tuple)):
            yield from v
        else:
            yield v
