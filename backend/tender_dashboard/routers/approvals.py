from __future__ import annotations

from typing import Literal

from fastapi import APIRouter, HTTPException, Query
from pydantic import BaseModel, Field

from ..modules.approvals.approval_state_machine import ApprovalStateMachine, normalize_approval

router = APIRouter(tags=["approvals"])


def _machine() -> ApprovalStateMachine:
    return ApprovalStateMachine()


class ApprovalActionRequest(BaseModel):
    opportunityRefNo: str = ""
    performedBy: str = ""
    performedByRole: str = ""
    group: str | None = None


class GenericApprovalRequest(ApprovalActionRequest):
    action: Literal["approve", "revert", "proposal_head_approve", "svp_approve"] = Field(...)


@router.get("/approvals")
def get_approvals():
    m = _machine()
    return {"approvals": m.get_approvals(), "approvalStates": m.get_approval_states()}


@router.post("/approvals")
def apply_approval_action(body: GenericApprovalRequest):
    m = _machine()
    if body.action == "approve":
        return m.approve(body.opportunityRefNo, body.performedBy, body.performedByRole)
    if body.action == "revert":
        return m.revert(body.opportunityRefNo, body.performedBy, body.performedByRole)
    if body.action == "proposal_head_approve":
        return m.approve_as_proposal_head(body.opportunityRefNo, body.performedBy, body.performedByRole)
    return m.approve_as_svp(body.opportunityRefNo, body.performedBy, body.performedByRole, body.group)


@router.post("/approvals/approve")
def approve(body: ApprovalActionRequest):
    return _machine().approve(body.opportunityRefNo, body.performedBy, body.performedByRole)


@router.post("/approvals/revert")
def revert(body: ApprovalActionRequest):
    return _machine().revert(body.opportunityRefNo, body.performedBy, body.performedByRole)


@router.post("/approvals/proposal-head-approve")
def proposal_head_approve(body: ApprovalActionRequest):
    return _machine().approve_as_proposal_head(body.opportunityRefNo, body.performedBy, body.performedByRole)


@router.post("/approvals/svp-approve")
def svp_approve(body: ApprovalActionRequest):
    return _machine().approve_as_svp(body.opportunityRefNo, body.performedBy, body.performedByRole, body.group)


@router.get("/approvals/{refNo}")
def get_approval(refNo: str):
    m = _machine()
    row = m.repo.get_approval(refNo)
    return {
        "opportunityRefNo": refNo,
        "status": m.get_status(refNo),
        "approval": normalize_approval(row),
        "logs": m.get_approval_logs(opportunity_ref_no=refNo),
    }


@router.delete("/approvals")
def clear_approvals(
    confirm: bool = Query(default=False),
    performedBy: str | None = Query(default=None),
):
    if not confirm:
        raise HTTPException(status_code=400, detail="Pass confirm=true to clear all approvals")
    return _machine().clear_all_approvals(performed_by=performedBy or "")


@router.get("/approval-logs")
def get_approval_logs(
    refNo: str | None = Query(default=None),
    limit: int | None = Query(default=None, ge=1, le=1000),
):
    return {"logs": _machine().get_approval_logs(opportunity_ref_no=refNo, limit=limit)}
