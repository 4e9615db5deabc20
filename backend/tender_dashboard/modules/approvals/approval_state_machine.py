"""
Per-opportunity approval state with an append-only audit log.

Simple cycle:   pending -> approved -> pending (revert)
Two-step cycle: pending -> proposal_head_approved -> fully_approved, revert -> pending

Every transition writes the approval row and exactly one log entry in a single
DynamoDB transaction guarded by the row's `version`, so concurrent actions on the
same ref no serialize instead of silently overwriting each other.
"""

from __future__ import annotations

from typing import Any, Callable

from ...db.dynamodb.errors import DdbConflict
from ...errors import ApprovalActionError
from ...observability.logging import get_logger
from ...repositories import approvals_repo
from ..identity.roles import can_approve_as_proposal_head, can_approve_as_svp, normalize_group

log = get_logger("approvals")

PENDING = "pending"
APPROVED = "approved"
PROPOSAL_HEAD_APPROVED = "proposal_head_approved"
FULLY_APPROVED = "fully_approved"

STATUSES = (PENDING, APPROVED, PROPOSAL_HEAD_APPROVED, FULLY_APPROVED)

ACTION_APPROVED = "approved"
ACTION_REVERTED = "reverted"
ACTION_PROPOSAL_HEAD_APPROVED = "proposal_head_approved"
ACTION_SVP_APPROVED = "svp_approved"

_CLEARED_FIELDS: dict[str, Any] = {
    "approvedBy": None,
    "approvedByRole": None,
    "approvalDate": None,
    "proposalHeadApproved": False,
    "proposalHeadBy": None,
    "proposalHeadAt": None,
    "svpApproved": False,
    "svpBy": None,
    "svpAt": None,
    "svpGroup": None,
}


def normalize_approval(row: dict[str, Any] | None) -> dict[str, Any]:
    r = row or {}
    return {
        "status": r.get("status") or PENDING,
        "approvedBy": r.get("approvedBy"),
        "approvedByRole": r.get("approvedByRole"),
        "approvalDate": r.get("approvalDate"),
        "proposalHeadApproved": bool(r.get("proposalHeadApproved")),
        "proposalHeadBy": r.get("proposalHeadBy"),
        "svpApproved": bool(r.get("svpApproved")),
        "svpBy": r.get("svpBy"),
        "svpGroup": r.get("svpGroup"),
    }


def _clean(v: Any) -> str:
    return str(v or "").strip()


Mutation = Callable[[dict[str, Any] | None, str], dict[str, Any]]


class ApprovalStateMachine:
    def __init__(self, *, repo: Any = approvals_repo, max_attempts: int = 5):
        self.repo = repo
        self.max_attempts = max(1, int(max_attempts))

    # --- reads ---

    def get_status(self, opportunity_ref_no: str) -> str:
        ref = _clean(opportunity_ref_no)
        if not ref:
            return PENDING
        row = self.repo.get_approval(ref)
        return (row or {}).get("status") or PENDING

    def get_approvals(self) -> dict[str, str]:
        return {r["opportunityRefNo"]: r.get("status") or PENDING for r in self.repo.list_approvals()}

    def get_approval_states(self) -> dict[str, dict[str, Any]]:
        return {r["opportunityRefNo"]: normalize_approval(r) for r in self.repo.list_approvals()}

    def get_approval_logs(
        self, *, opportunity_ref_no: str | None = None, limit: int | None = None
    ) -> list[dict[str, Any]]:
        return self.repo.list_logs(opportunity_ref_no=opportunity_ref_no, limit=limit)

    def snapshot(self) -> dict[str, Any]:
        rows = self.repo.list_approvals()
        return {
            "approvals": {r["opportunityRefNo"]: r.get("status") or PENDING for r in rows},
            "approvalStates": {r["opportunityRefNo"]: normalize_approval(r) for r in rows},
            "approvalLogs": self.repo.list_logs(),
        }

    # --- transitions ---

    @staticmethod
    def _rejected(action: str, opportunity_ref_no: Any, reason: str) -> ApprovalActionError:
        log.warning("approval_action_rejected", action=action, ref=_clean(opportunity_ref_no) or None, reason=reason)
        return ApprovalActionError(reason)

    def _validate(self, ref: str, performed_by: str, performed_by_role: str) -> None:
        if not ref:
            raise ApprovalActionError("opportunityRefNo is required")
        if not performed_by:
            raise ApprovalActionError("performedBy is required")
        if not performed_by_role:
            raise ApprovalActionError("performedByRole is required")

    def _transition(
        self,
        *,
        action: str,
        opportunity_ref_no: Any,
        performed_by: Any,
        performed_by_role: Any,
        mutate: Mutation,
        group: str | None = None,
    ) -> dict[str, Any]:
        ref = _clean(opportunity_ref_no)
        actor = _clean(performed_by)
        role = _clean(performed_by_role)
        try:
            self._validate(ref, actor, role)
        except ApprovalActionError as e:
            raise self._rejected(action, ref, str(e)) from None

        for attempt in range(1, self.max_attempts + 1):
            current = self.repo.get_approval(ref)
            # Disallowed transitions are rejected here; nothing written yet.
            try:
                updated = mutate(current, actor)
            except ApprovalActionError as e:
                raise self._rejected(action, ref, str(e)) from None
            row = {
                **(current or {}),
                **updated,
                "opportunityRefNo": ref,
                "updatedAt": approvals_repo.now_iso(),
            }
            row.pop("version", None)
            entry = self.repo.build_log_entry(
                opportunity_ref_no=ref,
                action=action,
                performed_by=actor,
                performed_by_role=role,
                group=group,
            )
            expected = None if current is None else int(current.get("version") or 0)
            try:
                saved = self.repo.write_transition(approval=row, expected_version=expected, log_entry=entry)
                break
            except DdbConflict:
                # A retried commit whose first response was lost conflicts with itself.
                landed = self.repo.get_approval(ref)
                if landed and landed.get("lastLogId") == entry["logId"]:
                    log.info("approval_write_already_committed", action=action, ref=ref, attempt=attempt)
                    saved = landed
                    break
                log.info("approval_write_conflict", action=action, ref=ref, attempt=attempt)
                if attempt >= self.max_attempts:
                    raise
        log.info("approval_transition", action=action, ref=ref, status=saved.get("status"), by=actor)
        return {"success": True, "approval": normalize_approval(saved), **self.snapshot()}

    def approve(self, opportunity_ref_no: str, performed_by: str, performed_by_role: str) -> dict[str, Any]:
        def mutate(_current: dict[str, Any] | None, actor: str) -> dict[str, Any]:
            return {
                "status": APPROVED,
                "approvedBy": actor,
                "approvedByRole": _clean(performed_by_role),
                "approvalDate": approvals_repo.now_iso(),
            }

        return self._transition(
            action=ACTION_APPROVED,
            opportunity_ref_no=opportunity_ref_no,
            performed_by=performed_by,
            performed_by_role=performed_by_role,
            mutate=mutate,
        )

    def revert(self, opportunity_ref_no: str, performed_by: str, performed_by_role: str) -> dict[str, Any]:
        def mutate(_current: dict[str, Any] | None, _actor: str) -> dict[str, Any]:
            return {"status": PENDING, **_CLEARED_FIELDS}

        return self._transition(
            action=ACTION_REVERTED,
            opportunity_ref_no=opportunity_ref_no,
            performed_by=performed_by,
            performed_by_role=performed_by_role,
            mutate=mutate,
        )

    def approve_as_proposal_head(
        self, opportunity_ref_no: str, performed_by: str, performed_by_role: str
    ) -> dict[str, Any]:
        if _clean(performed_by_role) and not can_approve_as_proposal_head(performed_by_role):
            raise self._rejected(
                ACTION_PROPOSAL_HEAD_APPROVED,
                opportunity_ref_no,
                f"Role {performed_by_role!r} cannot give Proposal Head approval",
            )

        def mutate(current: dict[str, Any] | None, actor: str) -> dict[str, Any]:
            if (current or {}).get("status") == FULLY_APPROVED:
                raise ApprovalActionError("Opportunity is already fully approved; revert first")
            return {
                "status": PROPOSAL_HEAD_APPROVED,
                "proposalHeadApproved": True,
                "proposalHeadBy": actor,
                "proposalHeadAt": approvals_repo.now_iso(),
            }

        return self._transition(
            action=ACTION_PROPOSAL_HEAD_APPROVED,
            opportunity_ref_no=opportunity_ref_no,
            performed_by=performed_by,
            performed_by_role=performed_by_role,
            mutate=mutate,
        )

    def approve_as_svp(
        self,
        opportunity_ref_no: str,
        performed_by: str,
        performed_by_role: str,
        group: str | None = None,
    ) -> dict[str, Any]:
        if _clean(performed_by_role) and not can_approve_as_svp(performed_by_role):
            raise self._rejected(
                ACTION_SVP_APPROVED, opportunity_ref_no, f"Role {performed_by_role!r} cannot give SVP approval"
            )
        grp = normalize_group(group) if group else None
        if group and not grp:
            raise self._rejected(ACTION_SVP_APPROVED, opportunity_ref_no, f"Unknown group {group!r}")

        def mutate(current: dict[str, Any] | None, actor: str) -> dict[str, Any]:
            cur = current or {}
            if not cur.get("proposalHeadApproved"):
                raise ApprovalActionError("Proposal Head approval is required before SVP approval")
            if cur.get("status") == FULLY_APPROVED:
                raise ApprovalActionError("Opportunity is already fully approved")
            return {
                "status": FULLY_APPROVED,
                "svpApproved": True,
                "svpBy": actor,
                "svpAt": approvals_repo.now_iso(),
                "svpGroup": grp,
            }

        return self._transition(
            action=ACTION_SVP_APPROVED,
            opportunity_ref_no=opportunity_ref_no,
            performed_by=performed_by,
            performed_by_role=performed_by_role,
            mutate=mutate,
            group=grp,
        )

    # --- admin ---

    def clear_all_approvals(self, *, performed_by: str) -> dict[str, Any]:
        """Bulk reset of approval rows. The audit log is kept."""
        removed = self.repo.delete_all_approvals()
        log.warning("approvals_cleared", removed=removed, by=_clean(performed_by) or None)
        return {"success": True, "removed": removed, **self.snapshot()}
