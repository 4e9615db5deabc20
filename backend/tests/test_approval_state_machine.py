from __future__ import annotations

import pytest

from tender_dashboard.db.dynamodb.errors import DdbConflict
from tender_dashboard.errors import ApprovalActionError
from tender_dashboard.modules.approvals import approval_state_machine
from tender_dashboard.modules.approvals.approval_state_machine import (
    APPROVED,
    FULLY_APPROVED,
    PENDING,
    PROPOSAL_HEAD_APPROVED,
    ApprovalStateMachine,
)


@pytest.fixture()
def machine(fake_table):
    return ApprovalStateMachine()


def test_unknown_ref_is_pending_and_reading_writes_nothing(machine, fake_table):
    assert machine.get_status("T-404") == PENDING
    assert machine.get_status("") == PENDING
    assert fake_table.items == {}


def test_approve_revert_cycle_is_logged_in_order(machine):
    out = machine.approve("T-1", "ana@example.com", "Admin")
    assert out["success"] is True
    assert out["approval"]["status"] == APPROVED
    assert out["approval"]["approvedBy"] == "ana@example.com"
    assert out["approvals"] == {"T-1": APPROVED}

    out = machine.revert("T-1", "ana@example.com", "Admin")
    assert out["approval"]["status"] == PENDING
    assert out["approval"]["approvedBy"] is None
    assert machine.get_status("T-1") == PENDING

    logs = machine.get_approval_logs(opportunity_ref_no="T-1")
    # Newest first.
    assert [entry["action"] for entry in logs] == ["reverted", "approved"]


def test_each_transition_bumps_version_in_one_transaction(machine, fake_table):
    machine.approve("T-1", "ana@example.com", "Admin")
    machine.revert("T-1", "ana@example.com", "Admin")
    row = fake_table.get_item(key={"pk": "APPROVALS", "sk": "REF#T-1"})
    assert row["version"] == 2
    # Approval row + log entry per transition.
    assert [len(tx) for tx in fake_table.transactions] == [2, 2]


@pytest.mark.parametrize(
    "ref,actor,role",
    [("", "ana@example.com", "Admin"), ("T-1", "", "Admin"), ("T-1", "ana@example.com", "")],
)
def test_invalid_actions_are_rejected_before_any_write(machine, fake_table, ref, actor, role):
    with pytest.raises(ApprovalActionError):
        machine.approve(ref, actor, role)
    assert fake_table.items == {}


def test_two_step_sign_off(machine):
    out = machine.approve_as_proposal_head("T-1", "ph@example.com", "ProposalHead")
    assert out["approval"]["status"] == PROPOSAL_HEAD_APPROVED
    assert out["approval"]["proposalHeadApproved"] is True

    out = machine.approve_as_svp("T-1", "svp@example.com", "SVP", group="ges")
    assert out["approval"]["status"] == FULLY_APPROVED
    assert out["approval"]["svpGroup"] == "GES"

    out = machine.revert("T-1", "admin@example.com", "Admin")
    assert out["approval"]["status"] == PENDING
    assert out["approval"]["proposalHeadApproved"] is False
    assert out["approval"]["svpApproved"] is False


def test_svp_requires_proposal_head_first(machine, fake_table):
    with pytest.raises(ApprovalActionError):
        machine.approve_as_svp("T-1", "svp@example.com", "SVP", group="GES")
    assert fake_table.items == {}


def test_role_checks(machine):
    with pytest.raises(ApprovalActionError):
        machine.approve_as_proposal_head("T-1", "basic@example.com", "Basic")
    machine.approve_as_proposal_head("T-1", "ph@example.com", "ProposalHead")
    with pytest.raises(ApprovalActionError):
        machine.approve_as_svp("T-1", "ph@example.com", "ProposalHead", group="GES")
    with pytest.raises(ApprovalActionError):
        machine.approve_as_svp("T-1", "svp@example.com", "SVP", group="XYZ")


class _RecordingLog:
    def __init__(self):
        self.warnings: list[tuple[str, dict]] = []

    def warning(self, event, **kw):
        self.warnings.append((event, kw))

    def info(self, event, **kw):
        pass


def test_every_rejection_is_logged(machine, fake_table, monkeypatch):
    rec = _RecordingLog()
    monkeypatch.setattr(approval_state_machine, "log", rec)

    with pytest.raises(ApprovalActionError):
        machine.approve_as_proposal_head("T-1", "basic@example.com", "Basic")
    with pytest.raises(ApprovalActionError):
        machine.approve_as_svp("T-1", "ph@example.com", "ProposalHead", group="GES")
    with pytest.raises(ApprovalActionError):
        machine.approve_as_svp("T-1", "svp@example.com", "SVP", group="XYZ")
    with pytest.raises(ApprovalActionError):
        machine.approve_as_svp("T-1", "svp@example.com", "SVP", group="GES")
    with pytest.raises(ApprovalActionError):
        machine.approve("", "ana@example.com", "Admin")

    assert [e for e, _ in rec.warnings] == ["approval_action_rejected"] * 5
    assert [kw["action"] for _, kw in rec.warnings] == [
        "proposal_head_approved",
        "svp_approved",
        "svp_approved",
        "svp_approved",
        "approved",
    ]
    assert rec.warnings[0][1]["ref"] == "T-1"
    assert "Proposal Head approval is required" in rec.warnings[3][1]["reason"]
    assert fake_table.items == {}


def test_fully_approved_cannot_be_reapproved_by_proposal_head(machine):
    machine.approve_as_proposal_head("T-1", "ph@example.com", "ProposalHead")
    machine.approve_as_svp("T-1", "svp@example.com", "SVP", group="GDS")
    with pytest.raises(ApprovalActionError):
        machine.approve_as_proposal_head("T-1", "ph@example.com", "ProposalHead")


def test_write_conflict_is_retried(machine, fake_table):
    fake_table.fail_next_transaction = DdbConflict(message="conflict", operation="TransactWriteItems")
    out = machine.approve("T-1", "ana@example.com", "Admin")
    assert out["approval"]["status"] == APPROVED
    assert len(fake_table.transactions) == 1


def test_lost_commit_response_writes_one_log_entry(machine, fake_table, monkeypatch):
    commit = fake_table.transact_write
    tokens: list[str | None] = []

    def commit_then_lose_response(**kw):
        tokens.append(kw.get("client_request_token"))
        commit(**kw)
        if len(tokens) == 1:
            # The resend after a read timeout trips over its own committed version.
            raise DdbConflict(message="conditional check failed", operation="TransactWriteItems")
        return {"ok": True}

    monkeypatch.setattr(fake_table, "transact_write", commit_then_lose_response)

    out = machine.approve("T-1", "ana@example.com", "Admin")
    assert out["approval"]["status"] == APPROVED
    assert len(tokens) == 1 and tokens[0]
    assert [e["action"] for e in machine.get_approval_logs(opportunity_ref_no="T-1")] == ["approved"]


def test_clear_all_keeps_logs(machine):
    machine.approve("T-1", "ana@example.com", "Admin")
    machine.approve("T-2", "ana@example.com", "Admin")
    out = machine.clear_all_approvals(performed_by="admin@example.com")
    assert out["removed"] == 2
    assert out["approvals"] == {}
    assert len(out["approvalLogs"]) == 2
