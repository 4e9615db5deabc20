from __future__ import annotations

from functools import lru_cache
from typing import Any

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_ENV_ALIASES = {
    "prod": "production",
    "production": "production",
    "stage": "staging",
    "staging": "staging",
    "dev": "development",
    "development": "development",
    "test": "test",
}


class Settings(BaseSettings):
    """Process configuration, read once from the environment (no .env file)."""

    model_config = SettingsConfigDict(env_file=None, extra="ignore")

    environment: str = Field(default="development", validation_alias="APP_ENV")
    port: int = Field(default=8080, validation_alias="PORT")
    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")
    # JSON lines in deployed environments; console rendering is easier to read locally.
    log_json: bool = Field(default=True, validation_alias="LOG_JSON")

    frontend_base_url: str = Field(default="http://localhost:5173", validation_alias="FRONTEND_BASE_URL")
    # Comma-separated extra origins.
    frontend_urls: str | None = Field(default=None, validation_alias="FRONTEND_URLS")

    aws_region: str = Field(default="us-east-1", validation_alias="AWS_REGION")
    ddb_table_name: str | None = Field(default=None, validation_alias="DDB_TABLE_NAME")
    # DynamoDB Local, e.g. http://localhost:8000
    ddb_endpoint_url: str | None = Field(default=None, validation_alias="DDB_ENDPOINT_URL")

    # Seals the stored Google API key and pagination cursors.
    token_enc_key: str | None = Field(default=None, validation_alias="TOKEN_ENC_KEY")

    # Used when the stored sync configuration carries no key of its own.
    google_sheets_api_key: str | None = Field(default=None, validation_alias="GOOGLE_SHEETS_API_KEY")

    # Microsoft Graph, app-only client credentials.
    graph_tenant_id: str | None = Field(default=None, validation_alias="GRAPH_TENANT_ID")
    graph_client_id: str | None = Field(default=None, validation_alias="GRAPH_CLIENT_ID")
    graph_client_secret: str | None = Field(default=None, validation_alias="GRAPH_CLIENT_SECRET")
    graph_timeout_seconds: float = Field(default=30.0, validation_alias="GRAPH_TIMEOUT_SECONDS")

    mail_from_email: str | None = Field(default=None, validation_alias="MAIL_FROM_EMAIL")

    boot_sync_enabled: bool = Field(default=True, validation_alias="BOOT_SYNC_ENABLED")
    auto_sync_enabled: bool = Field(default=True, validation_alias="AUTO_SYNC_ENABLED")
    auto_sync_interval_minutes: int = Field(default=10, ge=1, le=24 * 60, validation_alias="AUTO_SYNC_INTERVAL_MINUTES")

    @field_validator("environment", mode="before")
    @classmethod
    def _normalize_environment(cls, v: Any) -> str:
        raw = str(v or "").strip().lower()
        return _ENV_ALIASES.get(raw, raw or "development")

    @model_validator(mode="after")
    def _require_in_production(self) -> "Settings":
        # Dev and staging may run half-configured; production may not.
        if self.environment != "production":
            return self
        missing = [
            name
            for name, value in (
                ("DDB_TABLE_NAME", self.ddb_table_name),
                ("TOKEN_ENC_KEY", self.token_enc_key),
                ("MAIL_FROM_EMAIL", self.mail_from_email),
            )
            if not str(value or "").strip()
        ]
        if missing:
            raise ValueError(f"Missing required production environment variables: {', '.join(missing)}")
        return self

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def graph_configured(self) -> bool:
        return all(str(v or "").strip() for v in (self.graph_tenant_id, self.graph_client_id, self.graph_client_secret))

    def to_log_safe_dict(self) -> dict[str, Any]:
        """Startup snapshot for the logs; secrets appear only as configured/not configured."""

        def _set(v: Any) -> bool:
            return bool(str(v or "").strip())

        return {
            "environment": self.environment,
            "port": self.port,
            "frontend_base_url": self.frontend_base_url,
            "frontend_urls": self.frontend_urls,
            "aws_region": self.aws_region,
            "ddb_table_name": self.ddb_table_name,
            "ddb_endpoint_url": self.ddb_endpoint_url,
            "token_enc_key_configured": _set(self.token_enc_key),
            "google_sheets_api_key_configured": _set(self.google_sheets_api_key),
            "graph_configured": self.graph_configured,
            "mail_from_email": self.mail_from_email,
            "boot_sync_enabled": self.boot_sync_enabled,
            "auto_sync_enabled": self.auto_sync_enabled,
            "auto_sync_interval_minutes": self.auto_sync_interval_minutes,
        }


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
