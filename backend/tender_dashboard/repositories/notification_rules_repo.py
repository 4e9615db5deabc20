from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any

from boto3.dynamodb.conditions import Key

from ..db.dynamodb.errors import DdbNotFound
from ..db.dynamodb.table import get_main_table

RULES_PK = "NOTIFICATION_RULES"

TRIGGER_NEW_TENDER_SYNCED = "NEW_TENDER_SYNCED"
RECIPIENT_ROLE_SVP = "SVP"

DEFAULT_SUBJECT = "New Tender Synced: {{tenderName}}"
DEFAULT_BODY = (
    "<p>Dear Team,</p><p>A new tender has been synced.</p><ul>"
    "<li><strong>Name:</strong> {{tenderName}}</li>"
    "<li><strong>Ref No:</strong> {{refNo}}</li>"
    "<li><strong>Value:</strong> {{value}}</li>"
    "<li><strong>Group:</strong> {{groupClassification}}</li></ul>"
)


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def rule_key(rule_id: str) -> dict[str, str]:
    rid = str(rule_id or "").strip()
    if not rid:
        raise ValueError("rule_id is required")
    return {"pk": RULES_PK, "sk": f"RULE#{rid}"}


def _public(item: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in item.items() if k not in ("pk", "sk", "entityType")}


def get_rule(rule_id: str) -> dict[str, Any] | None:
    it = get_main_table().get_item(key=rule_key(rule_id))
    return _public(it) if it else None


def list_rules() -> list[dict[str, Any]]:
    items = get_main_table().query_all(
        key_condition_expression=Key("pk").eq(RULES_PK) & Key("sk").begins_with("RULE#"),
    )
    return sorted((_public(it) for it in items), key=lambda r: str(r.get("createdAt") or ""))


def list_active_rules(*, trigger_event: str, recipient_role: str) -> list[dict[str, Any]]:
    return [
        r
        for r in list_rules()
        if r.get("isActive", True)
        and r.get("triggerEvent") == trigger_event
        and r.get("recipientRole") == recipient_role
    ]


def create_rule(
    *,
    trigger_event: str = TRIGGER_NEW_TENDER_SYNCED,
    recipient_role: str = RECIPIENT_ROLE_SVP,
    use_group_matching: bool = True,
    email_subject: str | None = None,
    email_body: str | None = None,
    is_active: bool = True,
    created_by: str | None = None,
) -> dict[str, Any]:
    rid = "rule_" + uuid.uuid4().hex[:12]
    now = now_iso()
    item: dict[str, Any] = {
        **rule_key(rid),
        "entityType": "NotificationRule",
        "ruleId": rid,
        "triggerEvent": trigger_event,
        "recipientRole": recipient_role,
        "useGroupMatching": bool(use_group_matching),
        "emailSubject": email_subject or DEFAULT_SUBJECT,
        "emailBody": email_body or DEFAULT_BODY,
        "isActive": bool(is_active),
        "createdBy": created_by,
        "updatedBy": created_by,
        "createdAt": now,
        "updatedAt": now,
    }
    get_main_table().put_item(item=item, condition_expression="attribute_not_exists(pk)")
    return _public(item)


def update_rule(rule_id: str, updates: dict[str, Any], *, updated_by: str | None = None) -> dict[str, Any]:
    t = get_main_table()
    existing = t.get_item(key=rule_key(rule_id))
    if not existing:
        raise DdbNotFound(message="Notification rule not found", operation="GetItem", key=rule_key(rule_id))
    allowed = {"triggerEvent", "recipientRole", "useGroupMatching", "emailSubject", "emailBody", "isActive"}
    patch = {k: v for k, v in (updates or {}).items() if k in allowed and v is not None}
    item = {**existing, **patch, "updatedBy": updated_by, "updatedAt": now_iso()}
    t.put_item(item=item)
    return _public(item)


def delete_rule(rule_id: str) -> None:
    get_main_table().delete_item(key=rule_key(rule_id))
