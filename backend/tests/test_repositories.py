from __future__ import annotations

import pytest

from tender_dashboard.db.dynamodb.errors import DdbConflict, DdbNotFound
from tender_dashboard.repositories import (
    notification_rules_repo,
    opportunities_repo,
    sync_config_repo,
    sync_runs_repo,
    users_repo,
)


def test_sync_config_api_key_is_encrypted_at_rest(fake_table):
    sync_config_repo.put_config({"sourceKind": "google_sheets", "googleApiKey": "AIza-secret"})

    stored = fake_table.get_item(key=sync_config_repo.sync_config_key())
    assert "googleApiKey" not in stored
    assert stored["googleApiKeyEnc"].startswith("v1:")
    assert "AIza-secret" not in stored["googleApiKeyEnc"]
    assert sync_config_repo.get_config()["googleApiKey"] == "AIza-secret"


def test_sync_config_none_keeps_key_and_empty_clears_it(fake_table):
    sync_config_repo.put_config({"googleApiKey": "k1"})
    sync_config_repo.put_config({"sheetName": "2024", "googleApiKey": None})
    assert sync_config_repo.get_config()["googleApiKey"] == "k1"

    sync_config_repo.put_config({"sheetName": "2024", "googleApiKey": ""})
    assert sync_config_repo.get_config()["googleApiKey"] is None


def test_record_sync_outcome_is_noop_without_config(fake_table):
    assert sync_config_repo.record_sync_outcome(status="success", synced_count=3) is None
    assert fake_table.items == {}


def test_record_sync_outcome_keeps_last_success_time_on_failure(fake_table):
    sync_config_repo.put_config({"sheetName": "2024"})
    ok = sync_config_repo.record_sync_outcome(status="success", synced_count=3)
    failed = sync_config_repo.record_sync_outcome(status="failed", error="boom")

    assert failed["lastSyncStatus"] == "failed"
    assert failed["lastSyncError"] == "boom"
    assert failed["lastSyncAt"] == ok["lastSyncAt"]
    assert failed["lastSyncedCount"] == 3


def test_replace_all_swaps_generations(fake_table):
    first = opportunities_repo.replace_all(records=[{"opportunityRefNo": "A"}], sync_id="s1")
    assert first["previousSyncId"] is None

    second = opportunities_repo.replace_all(
        records=[{"opportunityRefNo": "B"}, {"opportunityRefNo": "C"}], sync_id="s2"
    )
    assert second["previousSyncId"] == "s1"
    assert [r["opportunityRefNo"] for r in opportunities_repo.list_opportunities()] == ["B", "C"]
    assert fake_table.partition("OPPSET#s1") == []
    assert opportunities_repo.get_active_pointer()["count"] == 2


def test_replace_all_rolls_back_when_pointer_moved(fake_table, monkeypatch):
    opportunities_repo.replace_all(records=[{"opportunityRefNo": "A"}], sync_id="s1")
    real_get = opportunities_repo.get_active_pointer

    # Stale pointer read: the stored pointer no longer names s0.
    monkeypatch.setattr(opportunities_repo, "get_active_pointer", lambda: {"syncId": "s0"})
    with pytest.raises(DdbConflict):
        opportunities_repo.replace_all(records=[{"opportunityRefNo": "X"}], sync_id="s2")
    monkeypatch.setattr(opportunities_repo, "get_active_pointer", real_get)

    assert fake_table.partition("OPPSET#s2") == []
    assert [r["opportunityRefNo"] for r in opportunities_repo.list_opportunities()] == ["A"]


def test_sync_runs_are_listed_newest_first_with_paging(fake_table):
    for i, started in enumerate(["2024-01-01T00:00:00Z", "2024-01-02T00:00:00Z", "2024-01-03T00:00:00Z"]):
        sync_runs_repo.record_run(
            run_id=f"run_{i}",
            trigger="auto",
            source={"kind": "graph_excel"},
            status="success",
            started_at=started,
            duration_ms=10,
        )

    page = sync_runs_repo.list_runs(limit=2)
    assert [r["runId"] for r in page["items"]] == ["run_2", "run_1"]
    assert page["nextToken"]

    rest = sync_runs_repo.list_runs(limit=2, next_token=page["nextToken"])
    assert [r["runId"] for r in rest["items"]] == ["run_0"]
    assert rest["nextToken"] is None


def test_users_are_normalized_and_validated(fake_table):
    u = users_repo.upsert_user(email=" Ph@Example.com ", role="proposal_head")
    assert u["email"] == "ph@example.com"
    assert u["role"] == "ProposalHead"
    assert u["status"] == "pending"

    with pytest.raises(ValueError):
        users_repo.upsert_user(email="x@example.com", role="wizard")
    with pytest.raises(ValueError):
        users_repo.upsert_user(email="x@example.com", role="SVP", assigned_group="NOPE")
    with pytest.raises(ValueError):
        users_repo.upsert_user(email="not-an-email", role="Basic")
    with pytest.raises(DdbNotFound):
        users_repo.update_user("missing@example.com", {"status": "approved"})


def test_list_recipients_only_returns_approved_users_of_role(fake_table):
    users_repo.upsert_user(email="a@example.com", role="SVP", assigned_group="GES", status="approved")
    users_repo.upsert_user(email="b@example.com", role="SVP", assigned_group="GDS")
    users_repo.upsert_user(email="c@example.com", role="Admin", status="approved")

    assert [u["email"] for u in users_repo.list_recipients(role="svp")] == ["a@example.com"]


def test_notification_rules_defaults_and_active_filter(fake_table):
    on = notification_rules_repo.create_rule()
    notification_rules_repo.create_rule(is_active=False)
    notification_rules_repo.create_rule(recipient_role="Admin")

    assert on["emailSubject"] == notification_rules_repo.DEFAULT_SUBJECT
    active = notification_rules_repo.list_active_rules(
        trigger_event=notification_rules_repo.TRIGGER_NEW_TENDER_SYNCED,
        recipient_role=notification_rules_repo.RECIPIENT_ROLE_SVP,
    )
    assert [r["ruleId"] for r in active] == [on["ruleId"]]

    with pytest.raises(DdbNotFound):
        notification_rules_repo.update_rule("rule_missing", {"isActive": True})
