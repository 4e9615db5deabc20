"""
Authorized dashboard users (the notification recipient directory).

Emails are the identity and are stored lower-cased. SVP users must carry an
assigned group because SVP notifications are routed by group.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from boto3.dynamodb.conditions import Key

from ..db.dynamodb.errors import DdbNotFound
from ..db.dynamodb.table import get_main_table
from ..modules.identity.roles import ROLE_SVP, normalize_group, normalize_role

USERS_PK = "USERS"
USER_STATUSES = ("pending", "approved", "rejected")


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def normalize_email(email: Any) -> str:
    return str(email or "").strip().lower()


def user_key(email: str) -> dict[str, str]:
    e = normalize_email(email)
    if not e:
        raise ValueError("email is required")
    return {"pk": USERS_PK, "sk": f"USER#{e}"}


def _public(item: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in item.items() if k not in ("pk", "sk", "entityType")}


def _validate(*, role: str | None, group: str | None, status: str) -> None:
    if role is None:
        raise ValueError("role must be one of Master, Admin, ProposalHead, SVP, Basic")
    if role == ROLE_SVP and not group:
        raise ValueError("assignedGroup is required for SVP users")
    if status not in USER_STATUSES:
        raise ValueError(f"status must be one of {', '.join(USER_STATUSES)}")


def get_user(email: str) -> dict[str, Any] | None:
    it = get_main_table().get_item(key=user_key(email))
    return _public(it) if it else None


def list_users() -> list[dict[str, Any]]:
    items = get_main_table().query_all(
        key_condition_expression=Key("pk").eq(USERS_PK) & Key("sk").begins_with("USER#"),
    )
    return [_public(it) for it in items]


def upsert_user(
    *,
    email: str,
    role: str,
    display_name: str | None = None,
    assigned_group: str | None = None,
    status: str = "pending",
    approved_by: str | None = None,
) -> dict[str, Any]:
    e = normalize_email(email)
    r = normalize_role(role)
    g = normalize_group(assigned_group)
    st = str(status or "pending").strip().lower()
    if not e or "@" not in e:
        raise ValueError("a valid email is required")
    _validate(role=r, group=g, status=st)

    existing = get_main_table().get_item(key=user_key(e)) or {}
    now = now_iso()
    item: dict[str, Any] = {
        **existing,
        **user_key(e),
        "entityType": "AuthorizedUser",
        "email": e,
        "displayName": str(display_name or existing.get("displayName") or "").strip(),
        "role": r,
        "assignedGroup": g,
        "status": st,
        "createdAt": existing.get("createdAt") or now,
        "updatedAt": now,
    }
    if st == "approved" and existing.get("status") != "approved":
        item["approvedBy"] = approved_by
        item["approvedAt"] = now
    get_main_table().put_item(item=item)
    return _public(item)


def update_user(email: str, updates: dict[str, Any], *, approved_by: str | None = None) -> dict[str, Any]:
    existing = get_user(email)
    if not existing:
        raise DdbNotFound(message="User not found", operation="GetItem", key=user_key(email))
    merged = {**existing, **{k: v for k, v in (updates or {}).items() if v is not None}}
    return upsert_user(
        email=existing["email"],
        role=merged.get("role"),
        display_name=merged.get("displayName"),
        assigned_group=merged.get("assignedGroup"),
        status=merged.get("status") or "pending",
        approved_by=approved_by,
    )


def delete_user(email: str) -> None:
    get_main_table().delete_item(key=user_key(email))


def list_recipients(*, role: str, status: str = "approved") -> list[dict[str, Any]]:
    want = normalize_role(role)
    return [u for u in list_users() if normalize_role(u.get("role")) == want and u.get("status") == status]
