from __future__ import annotations

import html
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable

from ...observability.logging import get_logger
from ...repositories import notification_rules_repo, users_repo
from ...services.email_ses import send_html_email

log = get_logger("notifications")

_PLACEHOLDER_RE = re.compile(r"{{\s*(\w+)\s*}}")

SendFn = Callable[..., Any]


def _fmt(v: Any) -> str:
    if v is None or isinstance(v, (dict, list)):
        return ""
    if isinstance(v, bool):
        return "Yes" if v else "No"
    if isinstance(v, float) and v.is_integer():
        return str(int(v))
    return str(v)


def template_values(tender: dict[str, Any]) -> dict[str, str]:
    """Every top-level tender field plus the short aliases used by stored templates."""
    t = tender or {}
    raw = t.get("rawGraphData") if isinstance(t.get("rawGraphData"), dict) else {}
    values = {k: _fmt(v) for k, v in t.items()}
    values.update(
        {
            "refNo": _fmt(t.get("opportunityRefNo")),
            "value": _fmt(t.get("opportunityValue")),
            "tenderType": _fmt(t.get("opportunityClassification")),
            "submissionDate": _fmt(t.get("tenderSubmittedDate") or t.get("tenderPlannedSubmissionDate")),
            "rfpReceivedDate": _fmt(t.get("dateTenderReceived") or raw.get("rfpReceivedDisplay")),
        }
    )
    return values


def render_template(template: str | None, tender: dict[str, Any], *, escape: bool = False) -> str:
    """Replace {{field}} placeholders; unknown or absent fields render as ""."""
    values = template_values(tender)

    def _sub(m: re.Match[str]) -> str:
        v = values.get(m.group(1), "")
        return html.escape(v) if escape else v

    return _PLACEHOLDER_RE.sub(_sub, str(template or ""))


@dataclass
class DispatchReport:
    tenders: int = 0
    rules: int = 0
    sent: int = 0
    failed: int = 0
    failures: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "tenders": self.tenders,
            "rules": self.rules,
            "sent": self.sent,
            "failed": self.failed,
            "failures": self.failures[:50],
        }


class NotificationDispatcher:
    def __init__(
        self,
        *,
        rules_repo: Any = notification_rules_repo,
        recipients_repo: Any = users_repo,
        send: SendFn = send_html_email,
    ):
        self.rules_repo = rules_repo
        self.recipients_repo = recipients_repo
        self.send = send

    def _recipients(self, rule: dict[str, Any], tender: dict[str, Any], pool: list[dict[str, Any]]) -> list[dict[str, Any]]:
        if not rule.get("useGroupMatching", True):
            return pool
        grp = str(tender.get("groupClassification") or "").strip().upper()
        if not grp:
            return []
        return [u for u in pool if str(u.get("assignedGroup") or "").strip().upper() == grp]

    def notify_on_sync(self, new_tenders: Iterable[dict[str, Any]]) -> DispatchReport:
        """
        E-mail SVP recipients about newly synced tenders. Best-effort: failures are
        logged and counted, never raised.
        """
        report = DispatchReport()
        tenders = [t for t in (new_tenders or []) if isinstance(t, dict)]
        report.tenders = len(tenders)
        if not tenders:
            return report

        try:
            rules = self.rules_repo.list_active_rules(
                trigger_event=notification_rules_repo.TRIGGER_NEW_TENDER_SYNCED,
                recipient_role=notification_rules_repo.RECIPIENT_ROLE_SVP,
            )
            report.rules = len(rules)
            if not rules:
                return report
            pool = self.recipients_repo.list_recipients(role=notification_rules_repo.RECIPIENT_ROLE_SVP)
        except Exception as e:  # noqa: BLE001
            log.error("notification_setup_failed", error=str(e))
            report.failures.append({"stage": "setup", "error": str(e)})
            return report

        for tender in tenders:
            ref = tender.get("opportunityRefNo")
            for rule in rules:
                recipients = self._recipients(rule, tender, pool)
                if not recipients:
                    continue
                subject = render_template(rule.get("emailSubject"), tender)
                body = render_template(rule.get("emailBody"), tender, escape=True)
                for r in recipients:
                    to = r.get("email")
                    try:
                        self.send(to=to, subject=subject, html=body)
                        report.sent += 1
                    except Exception as e:  # noqa: BLE001
                        report.failed += 1
                        report.failures.append({"to": to, "ref": ref, "error": str(e)})
                        log.warning("notification_send_failed", to=to, ref=ref, rule=rule.get("ruleId"), error=str(e))

        log.info("notifications_dispatched", **{k: v for k, v in report.to_dict().items() if k != "failures"})
        return report
