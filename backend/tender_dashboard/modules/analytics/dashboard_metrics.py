"""
Read-side aggregations for the dashboard (KPI cards, funnel, leaderboards, data health).

All functions are pure over a list of opportunity records so they can run against
whatever the active opportunity generation currently holds.
"""

from __future__ import annotations

from datetime import date
from typing import Any, Iterable

from ...pipeline.intake.status_canonicalizer import (
    AWARDED,
    IN_PROGRESS,
    LOST,
    ON_HOLD,
    PRE_BID,
    REGRETTED,
    STAGE_ORDER,
    SUBMITTED,
)

ACTIVE_STAGES = (PRE_BID, IN_PROGRESS, SUBMITTED)

MANDATORY_FIELDS: tuple[tuple[str, str], ...] = (
    ("internalLead", "Internal Lead"),
    ("opportunityValue", "Opportunity Value"),
    ("tenderPlannedSubmissionDate", "Planned Submission Date"),
)


def _num(v: Any) -> float:
    try:
        return float(v or 0)
    except (TypeError, ValueError):
        return 0.0


def _money(v: float) -> int | float:
    return int(v) if float(v).is_integer() else round(v, 2)


def _pct(part: int, whole: int) -> int:
    return round(part / whole * 100) if whole else 0


def filter_opportunities(
    records: Iterable[dict[str, Any]],
    *,
    stage: str | None = None,
    group: str | None = None,
    client: str | None = None,
    lead: str | None = None,
    search: str | None = None,
    received_from: date | None = None,
    received_to: date | None = None,
) -> list[dict[str, Any]]:
    st = str(stage or "").strip().lower()
    grp = str(group or "").strip().upper()
    cl = str(client or "").strip().lower()
    ld = str(lead or "").strip().lower()
    q = str(search or "").strip().lower()

    out: list[dict[str, Any]] = []
    for r in records:
        if st and str(r.get("canonicalStage") or "").lower() != st:
            continue
        if grp and str(r.get("groupClassification") or "").strip().upper() != grp:
            continue
        if cl and str(r.get("clientName") or "").strip().lower() != cl:
            continue
        if ld and str(r.get("internalLead") or "").strip().lower() != ld:
            continue
        if q:
            hay = " ".join(
                str(r.get(f) or "") for f in ("opportunityRefNo", "tenderName", "clientName", "internalLead")
            ).lower()
            if q not in hay:
                continue
        if received_from or received_to:
            rd = r.get("dateTenderReceived")
            if not rd:
                continue
            d = date.fromisoformat(rd)
            if received_from and d < received_from:
                continue
            if received_to and d > received_to:
                continue
        out.append(r)
    return out


def summary(records: list[dict[str, Any]]) -> dict[str, Any]:
    def of(stage: str) -> list[dict[str, Any]]:
        return [r for r in records if r.get("canonicalStage") == stage]

    active = [r for r in records if r.get("canonicalStage") in ACTIVE_STAGES]
    won, lost, regretted = of(AWARDED), of(LOST), of(REGRETTED)
    decided = len(won) + len(lost) + len(regretted)

    return {
        "totalOpportunities": len(records),
        "totalActive": len(active),
        "totalPipelineValue": _money(sum(_num(r.get("opportunityValue")) for r in active)),
        "weightedPipeline": _money(sum(_num(r.get("expectedValue")) for r in active)),
        "wonCount": len(won),
        "wonValue": _money(sum(_num(r.get("opportunityValue")) for r in won)),
        "lostCount": len(lost),
        "lostValue": _money(sum(_num(r.get("opportunityValue")) for r in lost)),
        "regrettedCount": len(regretted),
        "regrettedValue": _money(sum(_num(r.get("opportunityValue")) for r in regretted)),
        "onHoldCount": len(of(ON_HOLD)),
        "atRiskCount": sum(1 for r in records if r.get("isAtRisk")),
        "willMissDeadlineCount": sum(1 for r in records if r.get("willMissDeadline")),
        "winRate": _pct(len(won), decided),
        "byStage": {s: len(of(s)) for s in STAGE_ORDER},
    }


def funnel(records: list[dict[str, Any]]) -> list[dict[str, Any]]:
    counts = {s: {"count": 0, "value": 0.0} for s in STAGE_ORDER}
    for r in records:
        s = r.get("canonicalStage")
        if s in counts:
            counts[s]["count"] += 1
            counts[s]["value"] += _num(r.get("opportunityValue"))

    out: list[dict[str, Any]] = []
    prev: int | None = None
    for s in STAGE_ORDER:
        c = int(counts[s]["count"])
        rate = 100 if prev is None else _pct(c, prev)
        out.append({"stage": s, "count": c, "value": _money(counts[s]["value"]), "conversionRate": rate})
        prev = c
    return out


def leaderboard(records: list[dict[str, Any]]) -> list[dict[str, Any]]:
    stats: dict[str, dict[str, Any]] = {}
    for r in records:
        lead = str(r.get("internalLead") or "").strip()
        if not lead:
            continue
        s = stats.setdefault(lead, {"count": 0, "value": 0.0, "won": 0, "lost": 0})
        s["count"] += 1
        s["value"] += _num(r.get("opportunityValue"))
        if r.get("canonicalStage") == AWARDED:
            s["won"] += 1
        elif r.get("canonicalStage") in (LOST, REGRETTED):
            s["lost"] += 1

    rows = [
        {
            "name": name,
            "count": s["count"],
            "value": _money(s["value"]),
            "won": s["won"],
            "lost": s["lost"],
            "winRate": _pct(s["won"], s["won"] + s["lost"]),
        }
        for name, s in stats.items()
    ]
    return sorted(rows, key=lambda x: (-_num(x["value"]), x["name"]))


def top_clients(records: list[dict[str, Any]], *, limit: int = 10) -> list[dict[str, Any]]:
    stats: dict[str, dict[str, float]] = {}
    for r in records:
        name = str(r.get("clientName") or "").strip() or "Unknown"
        s = stats.setdefault(name, {"count": 0, "value": 0.0})
        s["count"] += 1
        s["value"] += _num(r.get("opportunityValue"))
    rows = [{"name": n, "count": int(s["count"]), "value": _money(s["value"])} for n, s in stats.items()]
    rows.sort(key=lambda x: (-_num(x["value"]), x["name"]))
    return rows[: max(1, int(limit))]


def data_health(records: list[dict[str, Any]]) -> dict[str, Any]:
    total = len(records) * len(MANDATORY_FIELDS)
    completed = 0
    missing_rows: list[dict[str, Any]] = []
    imputed = 0

    for r in records:
        missing = []
        for fld, label in MANDATORY_FIELDS:
            v = r.get(fld)
            ok = _num(v) > 0 if fld == "opportunityValue" else bool(str(v or "").strip())
            if ok:
                completed += 1
            else:
                missing.append(label)
        if missing:
            missing_rows.append(
                {"key": r.get("opportunityKey"), "refNo": r.get("opportunityRefNo"), "missingFields": missing}
            )
        if any(r.get(k) for k in r if k.endswith("_imputed")):
            imputed += 1

    return {
        "healthScore": _pct(completed, total) if total else 100,
        "missingRows": missing_rows[:20],
        "missingRowCount": len(missing_rows),
        "imputedCount": imputed,
    }
