from __future__ import annotations

from typing import Any


ROLE_MASTER = "Master"
ROLE_ADMIN = "Admin"
ROLE_PROPOSAL_HEAD = "ProposalHead"
ROLE_SVP = "SVP"
ROLE_BASIC = "Basic"

ROLES: tuple[str, ...] = (ROLE_MASTER, ROLE_ADMIN, ROLE_PROPOSAL_HEAD, ROLE_SVP, ROLE_BASIC)

GROUPS: tuple[str, ...] = ("GES", "GDS", "GTS")

# Who may perform each two-step approval action.
PROPOSAL_HEAD_ROLES = frozenset({ROLE_MASTER, ROLE_ADMIN, ROLE_PROPOSAL_HEAD})
SVP_ROLES = frozenset({ROLE_MASTER, ROLE_ADMIN, ROLE_SVP})


def normalize_role(value: Any) -> str | None:
    """
    Canonical role name or None when unknown.
    Accepts common variants ("proposal_head", "proposal head", "svp", "user").
    """
    s = str(value or "").strip()
    if not s:
        return None
    low = s.lower().replace("_", "").replace("-", "").replace(" ", "")
    if low in ("master", "superadmin"):
        return ROLE_MASTER
    if low == "admin":
        return ROLE_ADMIN
    if low in ("proposalhead", "ph"):
        return ROLE_PROPOSAL_HEAD
    if low == "svp":
        return ROLE_SVP
    if low in ("basic", "user", "member"):
        return ROLE_BASIC
    return None


def normalize_group(value: Any) -> str | None:
    s = str(value or "").strip().upper()
    return s if s in GROUPS else None


def can_approve_as_proposal_head(role: Any) -> bool:
    return normalize_role(role) in PROPOSAL_HEAD_ROLES


def can_approve_as_svp(role: Any) -> bool:
    return normalize_role(role) in SVP_ROLES
