from __future__ import annotations

import pytest
from pydantic import ValidationError

from tender_dashboard.middleware.cors import DEV_ORIGINS, build_allowed_origins
from tender_dashboard.settings import Settings


def test_environment_aliases(monkeypatch):
    monkeypatch.setenv("APP_ENV", " Stage ")
    assert Settings().environment == "staging"
    monkeypatch.delenv("APP_ENV")
    assert Settings().environment == "development"


def test_production_requires_table_key_and_sender(monkeypatch):
    monkeypatch.setenv("APP_ENV", "prod")
    monkeypatch.delenv("DDB_TABLE_NAME", raising=False)
    monkeypatch.delenv("TOKEN_ENC_KEY", raising=False)
    monkeypatch.setenv("MAIL_FROM_EMAIL", "tenders@example.com")
    with pytest.raises(ValidationError) as ei:
        Settings()
    assert "DDB_TABLE_NAME, TOKEN_ENC_KEY" in str(ei.value)

    monkeypatch.setenv("DDB_TABLE_NAME", "tenders")
    monkeypatch.setenv("TOKEN_ENC_KEY", "k")
    s = Settings()
    assert s.is_production
    assert s.to_log_safe_dict()["token_enc_key_configured"] is True


def test_graph_configured_needs_all_three(monkeypatch):
    monkeypatch.setenv("GRAPH_TENANT_ID", "t")
    monkeypatch.setenv("GRAPH_CLIENT_ID", "c")
    monkeypatch.delenv("GRAPH_CLIENT_SECRET", raising=False)
    assert not Settings().graph_configured
    monkeypatch.setenv("GRAPH_CLIENT_SECRET", "s")
    assert Settings().graph_configured


def test_allowed_origins():
    prod = build_allowed_origins(
        frontend_base_url="https://tenders.example.com/",
        frontend_urls="https://a.example.com, ,https://b.example.com/",
        include_dev=False,
    )
    assert prod == ["https://a.example.com", "https://b.example.com", "https://tenders.example.com"]

    dev = build_allowed_origins(frontend_base_url="", frontend_urls=None, include_dev=True)
    assert dev == sorted(DEV_ORIGINS)
