from __future__ import annotations

from typing import Any

import boto3

from ..errors import MailConfigurationError
from ..settings import settings


def _sesv2_client():
    return boto3.client("sesv2", region_name=settings.aws_region)


def send_html_email(*, to: str, subject: str, html: str, from_email: str | None = None) -> dict[str, Any]:
    """
    Send one HTML e-mail through SES. Raises on misconfiguration or transport failure;
    callers that fan out to many recipients isolate failures themselves.
    """
    to_ = str(to or "").strip()
    frm = str(from_email or settings.mail_from_email or "").strip()
    if not frm:
        raise MailConfigurationError("MAIL_FROM_EMAIL is not configured")
    if not to_ or "@" not in to_:
        raise MailConfigurationError(f"Invalid recipient address: {to_!r}")
    subj = str(subject or "").strip()[:200] or "Tender dashboard notification"
    body = str(html or "").strip() or "<p>(empty)</p>"

    resp = _sesv2_client().send_email(
        FromEmailAddress=frm,
        Destination={"ToAddresses": [to_]},
        Content={
            "Simple": {
                "Subject": {"Data": subj},
                "Body": {"Html": {"Data": body}},
            }
        },
    )
    msg_id = (resp or {}).get("MessageId") if isinstance(resp, dict) else None
    return {"ok": True, "messageId": msg_id}
