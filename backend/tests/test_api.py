from __future__ import annotations

from datetime import datetime, timezone

import pytest
from fastapi.testclient import TestClient

from tender_dashboard.errors import UpstreamSourceError
from tender_dashboard.main import create_app
from tender_dashboard.modules.notifications.notification_dispatcher import DispatchReport
from tender_dashboard.modules.sync.sync_orchestrator import SyncOrchestrator
from tender_dashboard.routers import opportunities as opportunities_router
from tender_dashboard.routers import sync_config as sync_config_router

HEADERS = ["TENDER NO", "TENDER NAME", "CLIENT", "GDS/GES", "ASSIGNED PERSON", "TENDER VALUE", "AVENIR STATUS"]
ROWS = [
    HEADERS,
    ["T-1", "Fit-out", "Acme", "GES", "Sara", "1000", "Submitted"],
    ["T-2", "Campus network", "Beta", "GDS", "Omar", "2000", "Awarded"],
]


class _Source:
    kind = "fake"

    def __init__(self, rows):
        self.rows = rows

    def describe(self):
        return {"kind": self.kind}

    def get_rows(self):
        if isinstance(self.rows, Exception):
            raise self.rows
        return self.rows


class _Dispatcher:
    def notify_on_sync(self, new_tenders):
        return DispatchReport(tenders=len(list(new_tenders)))


@pytest.fixture()
def client(fake_table, monkeypatch):
    def orchestrator():
        return SyncOrchestrator(
            source_factory=lambda cfg: _Source(ROWS),
            dispatcher=_Dispatcher(),
            now=lambda: datetime(2024, 10, 1, tzinfo=timezone.utc),
        )

    monkeypatch.setattr(opportunities_router, "_orchestrator", orchestrator)
    return TestClient(create_app())


def _configure(client):
    r = client.put(
        "/api/sync-config",
        json={"sourceKind": "graph_excel", "driveId": "d1", "fileId": "f1", "worksheetName": "2024"},
    )
    assert r.status_code == 200
    return r.json()


def test_health_and_request_id(client):
    r = client.get("/api/health", headers={"X-Request-Id": "abc-123"})
    assert r.status_code == 200
    assert r.json()["status"] == "ok"
    assert r.headers.get("X-Request-Id") == "abc-123"
    assert client.get("/").headers.get("X-Request-Id")


def test_404_is_problem_json(client):
    r = client.get("/this-route-does-not-exist")
    assert r.status_code == 404
    assert r.headers.get("content-type", "").startswith("application/problem+json")
    assert r.json()["status"] == 404


def test_empty_set_returns_no_data_payload(client):
    r = client.get("/api/opportunities")
    assert r.status_code == 200
    body = r.json()
    assert body["opportunities"] == []
    assert body["message"] == "No data available"
    assert body["remediation"]


def test_sync_without_config_is_a_400_problem(client):
    r = client.post("/api/opportunities/sync-now")
    assert r.status_code == 400
    body = r.json()
    assert body["title"] == "Sync Configuration Error"
    assert "worksheetName" in body["extensions"]["missing"]


def test_sync_now_then_read_views(client):
    _configure(client)
    r = client.post("/api/opportunities/sync-now")
    assert r.status_code == 200
    assert r.json()["syncedCount"] == 2

    listing = client.get("/api/opportunities").json()
    assert listing["count"] == 2
    assert listing["syncId"]

    filtered = client.get("/api/opportunities", params={"group": "gds"}).json()
    assert [o["opportunityRefNo"] for o in filtered["opportunities"]] == ["T-2"]

    summary = client.get("/api/opportunities/summary").json()
    assert summary["wonCount"] == 1
    assert summary["totalActive"] == 1

    assert len(client.get("/api/opportunities/funnel").json()["stages"]) == 7
    assert client.get("/api/opportunities/leaderboard").json()["leads"][0]["name"] == "Omar"
    assert client.get("/api/opportunities/clients", params={"limit": 1}).json()["clients"][0]["name"] == "Beta"
    assert "healthScore" in client.get("/api/opportunities/data-health").json()

    runs = client.get("/api/sync-config/runs").json()["items"]
    assert runs[0]["status"] == "success"
    assert client.get("/api/sync-config").json()["lastSyncStatus"] == "success"


def test_upstream_failure_is_a_502_problem(client, monkeypatch):
    _configure(client)
    monkeypatch.setattr(
        opportunities_router,
        "_orchestrator",
        lambda: SyncOrchestrator(source_factory=lambda cfg: _Source(UpstreamSourceError("sheet gone")), dispatcher=_Dispatcher()),
    )
    r = client.post("/api/opportunities/sync-now")
    assert r.status_code == 502
    assert r.json()["detail"] == "sheet gone"


def test_sync_graph_resolves_share_link_and_saves(client, monkeypatch):
    class _Graph:
        def resolve_share_link(self, link):
            return {"driveId": "d9", "fileId": "f9", "fileName": "x.xlsx", "webUrl": link}

    monkeypatch.setattr(opportunities_router, "_graph_client", lambda: _Graph())
    r = client.post(
        "/api/opportunities/sync-graph",
        json={"shareLink": "https://contoso.sharepoint.com/x", "worksheetName": "2024", "save": True},
    )
    assert r.status_code == 200
    cfg = client.get("/api/sync-config").json()
    assert cfg["driveId"] == "d9" and cfg["fileId"] == "f9"
    assert cfg["sourceKind"] == "graph_excel"


def test_sync_config_never_returns_the_api_key(client):
    r = client.put(
        "/api/sync-config",
        json={"sourceKind": "google_sheets", "spreadsheetId": "sid", "sheetName": "2024", "googleApiKey": "secret"},
    )
    body = r.json()
    assert "googleApiKey" not in body
    assert body["googleApiKeyConfigured"] is True

    # Omitting the key keeps the stored one.
    r = client.put("/api/sync-config", json={"sourceKind": "google_sheets", "spreadsheetId": "sid", "sheetName": "S"})
    assert r.json()["googleApiKeyConfigured"] is True


def test_graph_resolve_endpoint(client, monkeypatch):
    class _Graph:
        def resolve_share_link(self, link):
            return {"driveId": "d1", "fileId": "f1", "fileName": "x.xlsx", "webUrl": link}

        def list_worksheets(self, *, drive_id, file_id):
            return [{"id": "s1", "name": "2024", "position": 0}]

    monkeypatch.setattr(sync_config_router, "_graph_client", lambda: _Graph())
    r = client.post("/api/sync-config/graph/resolve", json={"shareLink": "https://contoso.sharepoint.com/x"})
    assert r.status_code == 200
    assert r.json()["worksheets"][0]["name"] == "2024"
    assert client.get("/api/sync-config").json()["lastResolvedAt"]


def test_approval_endpoints(client):
    actor = {"performedBy": "ph@example.com", "performedByRole": "ProposalHead"}
    r = client.post("/api/approvals/proposal-head-approve", json={"opportunityRefNo": "T-1", **actor})
    assert r.status_code == 200
    assert r.json()["approval"]["status"] == "proposal_head_approved"

    r = client.post(
        "/api/approvals",
        json={
            "action": "svp_approve",
            "opportunityRefNo": "T-1",
            "performedBy": "svp@example.com",
            "performedByRole": "SVP",
            "group": "GES",
        },
    )
    assert r.json()["approvals"] == {"T-1": "fully_approved"}

    detail = client.get("/api/approvals/T-1").json()
    assert detail["status"] == "fully_approved"
    assert len(detail["logs"]) == 2

    logs = client.get("/api/approval-logs", params={"limit": 1}).json()["logs"]
    assert logs[0]["action"] == "svp_approved"

    assert client.delete("/api/approvals").status_code == 400
    cleared = client.delete("/api/approvals", params={"confirm": "true"}).json()
    assert cleared["removed"] == 1
    assert client.get("/api/approvals").json()["approvals"] == {}


def test_invalid_approval_is_a_400_problem(client, fake_table):
    r = client.post("/api/approvals/approve", json={"opportunityRefNo": "", "performedBy": "a@example.com", "performedByRole": "Admin"})
    assert r.status_code == 400
    assert r.json()["title"] == "Invalid Approval Action"
    assert fake_table.items == {}


def test_users_crud_and_validation(client):
    r = client.post("/api/users", json={"email": "SVP@Example.com", "role": "SVP"})
    assert r.status_code == 400

    r = client.post("/api/users", json={"email": "SVP@Example.com", "role": "svp", "assignedGroup": "ges"})
    assert r.status_code == 201
    assert r.json()["email"] == "svp@example.com"
    assert r.json()["role"] == "SVP"
    assert client.post("/api/users", json={"email": "svp@example.com", "role": "SVP", "assignedGroup": "GES"}).status_code == 409

    r = client.put("/api/users/svp@example.com", json={"status": "approved", "approvedBy": "admin@example.com"})
    assert r.json()["status"] == "approved"
    assert r.json()["approvedBy"] == "admin@example.com"

    assert client.put("/api/users/nobody@example.com", json={"status": "approved"}).status_code == 404
    assert [u["email"] for u in client.get("/api/users", params={"status": "approved"}).json()["users"]] == [
        "svp@example.com"
    ]
    assert client.delete("/api/users/svp@example.com").status_code == 200
    assert client.get("/api/users/svp@example.com").status_code == 404


def test_notification_rules_crud_and_preview(client):
    r = client.post("/api/notification-rules", json={"emailSubject": "New: {{refNo}}"})
    assert r.status_code == 201
    rule = r.json()
    assert rule["emailBody"]

    r = client.put(f"/api/notification-rules/{rule['ruleId']}", json={"isActive": False})
    assert r.json()["isActive"] is False
    assert client.put("/api/notification-rules/rule_missing", json={"isActive": True}).status_code == 404

    preview = client.post(
        "/api/notification-rules/preview",
        json={"emailSubject": "New: {{refNo}}", "tender": {"opportunityRefNo": "T-9"}},
    ).json()
    assert preview["subject"] == "New: T-9"

    assert client.delete(f"/api/notification-rules/{rule['ruleId']}").status_code == 200
    assert client.get("/api/notification-rules").json()["rules"] == []
