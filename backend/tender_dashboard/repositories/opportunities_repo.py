"""
Synced opportunity storage (stage-then-swap).

Each sync writes a fresh generation under its own partition, then flips a single
pointer item to it with a conditional put. Readers always resolve the pointer first,
so they see either the previous complete generation or the new complete one.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any, Iterable

from boto3.dynamodb.conditions import Key

from ..db.dynamodb.table import get_main_table
from ..observability.logging import get_logger

log = get_logger("opportunities_repo")

_INTERNAL_FIELDS = ("pk", "sk", "entityType", "syncId")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def new_sync_id() -> str:
    # Sortable by time so operators can eyeball generations.
    return datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S") + "_" + uuid.uuid4().hex[:8]


def active_pointer_key() -> dict[str, str]:
    return {"pk": "OPPSET", "sk": "ACTIVE"}


def generation_pk(sync_id: str) -> str:
    sid = str(sync_id or "").strip()
    if not sid:
        raise ValueError("sync_id is required")
    return f"OPPSET#{sid}"


def opportunity_key(*, sync_id: str, index: int) -> dict[str, str]:
    return {"pk": generation_pk(sync_id), "sk": f"OPP#{int(index):06d}"}


def _public(item: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in item.items() if k not in _INTERNAL_FIELDS}


def get_active_pointer() -> dict[str, Any] | None:
    return get_main_table().get_item(key=active_pointer_key())


def list_generation(*, sync_id: str) -> list[dict[str, Any]]:
    items = get_main_table().query_all(
        key_condition_expression=Key("pk").eq(generation_pk(sync_id)) & Key("sk").begins_with("OPP#"),
        scan_index_forward=True,
    )
    return [_public(it) for it in items]


def list_opportunities() -> list[dict[str, Any]]:
    """All records of the active generation, in sheet order; [] before the first sync."""
    ptr = get_active_pointer()
    sid = str((ptr or {}).get("syncId") or "").strip()
    if not sid:
        return []
    return list_generation(sync_id=sid)


def stage_generation(*, sync_id: str, records: Iterable[dict[str, Any]]) -> int:
    items = []
    for i, rec in enumerate(records):
        items.append(
            {
                **_public(rec),
                **opportunity_key(sync_id=sync_id, index=i),
                "entityType": "SyncedOpportunity",
                "syncId": sync_id,
            }
        )
    return get_main_table().batch_put(items=items)


def delete_generation(*, sync_id: str) -> int:
    t = get_main_table()
    items = t.query_all(
        key_condition_expression=Key("pk").eq(generation_pk(sync_id)) & Key("sk").begins_with("OPP#"),
    )
    return t.batch_delete(keys=[{"pk": it["pk"], "sk": it["sk"]} for it in items])


def activate_generation(
    *,
    sync_id: str,
    count: int,
    previous_sync_id: str | None,
) -> dict[str, Any]:
    """
    Point readers at `sync_id`. Fails with DdbConflict if another writer moved the
    pointer since `previous_sync_id` was read.
    """
    now = _now_iso()
    item: dict[str, Any] = {
        **active_pointer_key(),
        "entityType": "OpportunitySetPointer",
        "syncId": sync_id,
        "count": int(count),
        "syncedAt": now,
        "previousSyncId": previous_sync_id,
    }
    if previous_sync_id:
        get_main_table().put_item(
            item=item,
            condition_expression="syncId = :prev",
            expression_attribute_values={":prev": previous_sync_id},
        )
    else:
        get_main_table().put_item(item=item, condition_expression="attribute_not_exists(pk)")
    return item


def replace_all(*, records: list[dict[str, Any]], sync_id: str | None = None) -> dict[str, Any]:
    """
    Full replace of the opportunity set.

    Returns {"syncId", "previousSyncId", "count", "syncedAt"}. On failure the staged
    generation is removed and the previous one stays active.
    """
    sid = sync_id or new_sync_id()
    ptr = get_active_pointer() or {}
    prev = str(ptr.get("syncId") or "").strip() or None

    try:
        stage_generation(sync_id=sid, records=records)
        active = activate_generation(sync_id=sid, count=len(records), previous_sync_id=prev)
    except Exception:
        log.warning("opportunity_generation_rollback", sync_id=sid, previous_sync_id=prev)
        delete_generation(sync_id=sid)
        raise

    if prev:
        try:
            removed = delete_generation(sync_id=prev)
            log.info("opportunity_generation_retired", sync_id=prev, removed=removed)
        except Exception as e:  # noqa: BLE001
            # Orphaned generations are invisible to readers.
            log.warning("opportunity_generation_retire_failed", sync_id=prev, error=str(e))

    return {"syncId": sid, "previousSyncId": prev, "count": len(records), "syncedAt": active["syncedAt"]}

