from __future__ import annotations

import threading
import time
import uuid
from datetime import datetime, timezone
from typing import Any

from boto3.dynamodb.conditions import Key

from ..db.dynamodb.table import get_main_table

APPROVALS_PK = "APPROVALS"
APPROVAL_LOG_PK = "APPROVAL_LOG"

_log_seq_lock = threading.Lock()
_last_log_ns = 0


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def approval_key(opportunity_ref_no: str) -> dict[str, str]:
    ref = str(opportunity_ref_no or "").strip()
    if not ref:
        raise ValueError("opportunity_ref_no is required")
    return {"pk": APPROVALS_PK, "sk": f"REF#{ref}"}


def _next_log_ns() -> int:
    # Strictly increasing within the process even when the clock does not advance.
    global _last_log_ns
    with _log_seq_lock:
        n = max(time.time_ns(), _last_log_ns + 1)
        _last_log_ns = n
        return n


def new_log_key() -> dict[str, str]:
    return {"pk": APPROVAL_LOG_PK, "sk": f"LOG#{_next_log_ns():020d}#{uuid.uuid4().hex[:8]}"}


def _strip(item: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in item.items() if k not in ("pk", "sk", "entityType")}


def get_approval(opportunity_ref_no: str) -> dict[str, Any] | None:
    it = get_main_table().get_item(key=approval_key(opportunity_ref_no))
    return _strip(it) if it else None


def list_approvals() -> list[dict[str, Any]]:
    items = get_main_table().query_all(
        key_condition_expression=Key("pk").eq(APPROVALS_PK) & Key("sk").begins_with("REF#"),
    )
    return [_strip(it) for it in items]


def build_log_entry(
    *,
    opportunity_ref_no: str,
    action: str,
    performed_by: str,
    performed_by_role: str,
    group: str | None = None,
) -> dict[str, Any]:
    key = new_log_key()
    return {
        **key,
        "entityType": "ApprovalLog",
        "logId": key["sk"][len("LOG#"):],
        "opportunityRefNo": opportunity_ref_no,
        "action": action,
        "performedBy": performed_by,
        "performedByRole": performed_by_role,
        "group": group,
        "createdAt": now_iso(),
    }


def write_transition(
    *,
    approval: dict[str, Any],
    expected_version: int | None,
    log_entry: dict[str, Any],
) -> dict[str, Any]:
    """
    Write the approval row and its log entry atomically.

    `expected_version=None` means "no row yet". Raises DdbConflict when the row moved
    underneath us; the log entry is never written without its approval update.
    The row records `lastLogId`, which lets a caller tell its own committed write
    apart from a competing one after a conflict.
    """
    t = get_main_table()
    ref = str(approval.get("opportunityRefNo") or "")
    log_id = str(log_entry["logId"])
    item = {
        **approval,
        **approval_key(ref),
        "entityType": "Approval",
        "version": int(expected_version or 0) + 1,
        "lastLogId": log_id,
    }
    if expected_version is None:
        approval_put = t.tx_put(item=item, condition_expression="attribute_not_exists(pk)")
    else:
        approval_put = t.tx_put(
            item=item,
            condition_expression="version = :expected",
            expression_attribute_values={":expected": int(expected_version)},
        )
    log_put = t.tx_put(item=log_entry, condition_expression="attribute_not_exists(pk)")
    t.transact_write(
        puts=[approval_put, log_put],
        client_request_token=str(uuid.uuid5(uuid.NAMESPACE_OID, log_id)),
    )
    return _strip(item)


def list_logs(*, opportunity_ref_no: str | None = None, limit: int | None = None) -> list[dict[str, Any]]:
    """Newest first."""
    items = get_main_table().query_all(
        key_condition_expression=Key("pk").eq(APPROVAL_LOG_PK) & Key("sk").begins_with("LOG#"),
        scan_index_forward=False,
    )
    ref = str(opportunity_ref_no or "").strip()
    out = [_strip(it) for it in items if not ref or it.get("opportunityRefNo") == ref]
    if limit:
        out = out[: max(1, int(limit))]
    return out


def delete_all_approvals() -> int:
    t = get_main_table()
    items = t.query_all(
        key_condition_expression=Key("pk").eq(APPROVALS_PK) & Key("sk").begins_with("REF#"),
    )
    return t.batch_delete(keys=[{"pk": it["pk"], "sk": it["sk"]} for it in items])
