from __future__ import annotations

from typing import Any

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel

from ..modules.notifications.notification_dispatcher import render_template
from ..repositories import notification_rules_repo, opportunities_repo

router = APIRouter(tags=["notification-rules"])

SAMPLE_TENDER: dict[str, Any] = {
    "opportunityRefNo": "SAMPLE-001",
    "tenderName": "Sample Tender",
    "clientName": "Sample Client",
    "groupClassification": "GES",
    "opportunityValue": 250000,
    "internalLead": "Sample Lead",
}


class RuleCreateRequest(BaseModel):
    triggerEvent: str = notification_rules_repo.TRIGGER_NEW_TENDER_SYNCED
    recipientRole: str = notification_rules_repo.RECIPIENT_ROLE_SVP
    useGroupMatching: bool = True
    emailSubject: str | None = None
    emailBody: str | None = None
    isActive: bool = True
    createdBy: str | None = None


class RuleUpdateRequest(BaseModel):
    triggerEvent: str | None = None
    recipientRole: str | None = None
    useGroupMatching: bool | None = None
    emailSubject: str | None = None
    emailBody: str | None = None
    isActive: bool | None = None
    updatedBy: str | None = None


class RulePreviewRequest(BaseModel):
    emailSubject: str | None = None
    emailBody: str | None = None
    tender: dict[str, Any] | None = None


@router.get("/notification-rules")
def list_rules():
    return {"rules": notification_rules_repo.list_rules()}


@router.post("/notification-rules", status_code=201)
def create_rule(body: RuleCreateRequest):
    return notification_rules_repo.create_rule(
        trigger_event=body.triggerEvent,
        recipient_role=body.recipientRole,
        use_group_matching=body.useGroupMatching,
        email_subject=body.emailSubject,
        email_body=body.emailBody,
        is_active=body.isActive,
        created_by=body.createdBy,
    )


@router.get("/notification-rules/{ruleId}")
def get_rule(ruleId: str):
    rule = notification_rules_repo.get_rule(ruleId)
    if not rule:
        raise HTTPException(status_code=404, detail="Notification rule not found")
    return rule


@router.put("/notification-rules/{ruleId}")
def update_rule(ruleId: str, body: RuleUpdateRequest):
    updates = body.model_dump(exclude={"updatedBy"}, exclude_none=True)
    return notification_rules_repo.update_rule(ruleId, updates, updated_by=body.updatedBy)


@router.delete("/notification-rules/{ruleId}")
def delete_rule(ruleId: str):
    notification_rules_repo.delete_rule(ruleId)
    return {"success": True, "ruleId": ruleId}


@router.post("/notification-rules/preview")
def preview_rule(body: RulePreviewRequest):
    tender = body.tender
    if tender is None:
        current = opportunities_repo.list_opportunities()
        tender = current[0] if current else SAMPLE_TENDER
    subject = body.emailSubject or notification_rules_repo.DEFAULT_SUBJECT
    html = body.emailBody or notification_rules_repo.DEFAULT_BODY
    return {
        "subject": render_template(subject, tender),
        "html": render_template(html, tender, escape=True),
        "tenderRefNo": tender.get("opportunityRefNo"),
    }
