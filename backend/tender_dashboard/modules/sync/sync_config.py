from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field

from ...settings import settings

SourceKind = Literal["google_sheets", "graph_excel"]


class SyncConfig(BaseModel):
    """
    Everything a sync run needs, passed explicitly into the orchestrator.
    Persisted by `repositories.sync_config_repo` (API key encrypted at rest).
    """

    sourceKind: SourceKind = "graph_excel"

    # Google Sheets
    spreadsheetId: str = ""
    sheetName: str = ""
    googleApiKey: str | None = None

    # Microsoft Graph workbook
    shareLink: str = ""
    driveId: str = ""
    fileId: str = ""
    worksheetName: str = ""

    dataRange: str = ""
    headerRowOffset: int = Field(default=0, ge=0)
    syncIntervalMinutes: int = Field(default=10, ge=1, le=24 * 60)
    yearHint: str | None = None
    fieldMapping: dict[str, Any] = Field(default_factory=dict)

    lastResolvedAt: str | None = None
    lastSyncAt: str | None = None
    lastSyncStatus: str | None = None
    lastSyncError: str | None = None
    updatedBy: str | None = None

    @classmethod
    def from_stored(cls, stored: dict[str, Any] | None) -> "SyncConfig":
        data = {k: v for k, v in (stored or {}).items() if k in cls.model_fields and v is not None}
        return cls(**data)

    def effective_google_api_key(self) -> str:
        return str(self.googleApiKey or settings.google_sheets_api_key or "").strip()

    def missing_source_fields(self) -> list[str]:
        if self.sourceKind == "google_sheets":
            required = {
                "spreadsheetId": self.spreadsheetId,
                "sheetName": self.sheetName,
                "googleApiKey": self.effective_google_api_key(),
            }
        else:
            required = {
                "driveId": self.driveId,
                "fileId": self.fileId,
                "worksheetName": self.worksheetName,
            }
        return [k for k, v in required.items() if not str(v or "").strip()]

    def is_complete(self) -> bool:
        return not self.missing_source_fields()

    def public_dict(self) -> dict[str, Any]:
        """Safe for API responses: the API key never leaves the server."""
        out = self.model_dump(exclude={"googleApiKey"})
        out["googleApiKeyConfigured"] = bool(self.effective_google_api_key())
        return out
