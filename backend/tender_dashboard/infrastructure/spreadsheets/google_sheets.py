from __future__ import annotations

from typing import Any

import httplib2
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from ...errors import SyncConfigurationError, UpstreamSourceError
from ...observability.logging import get_logger

log = get_logger("google_sheets")


def a1_range(sheet_name: str, data_range: str | None = None) -> str:
    # Sheet names with spaces/quotes must be quoted in A1 notation.
    quoted = "'" + str(sheet_name).replace("'", "''") + "'"
    rng = str(data_range or "").strip()
    return f"{quoted}!{rng}" if rng else quoted


def _sheets_service(api_key: str) -> Any:
    return build("sheets", "v4", developerKey=api_key, cache_discovery=False)


class GoogleSheetsSource:
    """Reads one worksheet through the Sheets v4 API with an API key."""

    kind = "google_sheets"

    def __init__(
        self,
        *,
        api_key: str,
        spreadsheet_id: str,
        sheet_name: str,
        data_range: str | None = None,
    ):
        self.api_key = str(api_key or "").strip()
        self.spreadsheet_id = str(spreadsheet_id or "").strip()
        self.sheet_name = str(sheet_name or "").strip()
        self.data_range = str(data_range or "").strip() or None

    def describe(self) -> dict[str, Any]:
        return {"kind": self.kind, "spreadsheetId": self.spreadsheet_id, "sheetName": self.sheet_name}

    def get_rows(self) -> list[list[Any]]:
        missing = [
            name
            for name, v in (
                ("apiKey", self.api_key),
                ("spreadsheetId", self.spreadsheet_id),
                ("sheetName", self.sheet_name),
            )
            if not v
        ]
        if missing:
            raise SyncConfigurationError(
                f"Google Sheets source is missing: {', '.join(missing)}",
                extensions={"missing": missing},
            )

        rng = a1_range(self.sheet_name, self.data_range)
        try:
            resp = (
                _sheets_service(self.api_key)
                .spreadsheets()
                .values()
                .get(
                    spreadsheetId=self.spreadsheet_id,
                    range=rng,
                    # Unformatted values keep dates as serial numbers and amounts as numbers.
                    valueRenderOption="UNFORMATTED_VALUE",
                    dateTimeRenderOption="SERIAL_NUMBER",
                )
                .execute()
            )
        except HttpError as e:
            status = getattr(getattr(e, "resp", None), "status", None)
            log.warning("google_sheets_fetch_failed", spreadsheet_id=self.spreadsheet_id, status=status)
            raise UpstreamSourceError(
                f"Google Sheets API error ({status or 'unknown'})",
                extensions={"source": self.kind, "upstreamStatus": status},
            ) from e
        except (OSError, httplib2.HttpLib2Error) as e:
            # Socket timeouts and DNS failures from the transport.
            log.warning("google_sheets_unreachable", spreadsheet_id=self.spreadsheet_id, error=str(e))
            raise UpstreamSourceError(
                "Google Sheets API unreachable",
                extensions={"source": self.kind, "upstreamStatus": None},
            ) from e

        rows = (resp or {}).get("values") or []
        log.info("google_sheets_fetched", spreadsheet_id=self.spreadsheet_id, range=rng, rows=len(rows))
        return [list(r or []) for r in rows]
