"""
Microsoft Graph (OneDrive/SharePoint) Excel workbook access, app-only.

Token: client-credentials against the tenant's v2.0 endpoint.
Share links resolve through `/shares/u!{base64url(url)}/driveItem`.
"""

from __future__ import annotations

import base64
from typing import Any
from urllib.parse import quote

import httpx

from ...errors import SyncConfigurationError, UpstreamSourceError
from ...observability.logging import get_logger
from ...settings import settings

log = get_logger("graph_excel")

GRAPH_BASE_URL = "https://graph.microsoft.com/v1.0"
GRAPH_SCOPE = "https://graph.microsoft.com/.default"


def token_url(tenant_id: str) -> str:
    return f"https://login.microsoftonline.com/{tenant_id}/oauth2/v2.0/token"


def to_share_token(url: str) -> str:
    raw = base64.urlsafe_b64encode(str(url).encode("utf-8")).decode("ascii")
    return raw.rstrip("=")


def _sheet_segment(worksheet_name: str) -> str:
    escaped = str(worksheet_name).replace("'", "''")
    return f"worksheets('{quote(escaped, safe='')}')"


def _json(resp: httpx.Response) -> dict[str, Any]:
    try:
        data = resp.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


def _error_message(resp: httpx.Response) -> str:
    try:
        data = resp.json()
    except ValueError:
        return resp.text or f"Graph request failed ({resp.status_code})"
    err = data.get("error") if isinstance(data, dict) else None
    if isinstance(err, dict):
        return str(err.get("message") or err.get("code") or resp.status_code)
    if isinstance(data, dict) and data.get("error_description"):
        return str(data["error_description"])
    return f"Graph request failed ({resp.status_code})"


class GraphExcelClient:
    def __init__(
        self,
        *,
        tenant_id: str | None = None,
        client_id: str | None = None,
        client_secret: str | None = None,
        timeout_s: float | None = None,
        transport: httpx.BaseTransport | None = None,
    ):
        self.tenant_id = str(tenant_id or settings.graph_tenant_id or "").strip()
        self.client_id = str(client_id or settings.graph_client_id or "").strip()
        self.client_secret = str(client_secret or settings.graph_client_secret or "").strip()
        self.timeout_s = float(timeout_s or settings.graph_timeout_seconds)
        self._transport = transport

    def _client(self) -> httpx.Client:
        return httpx.Client(timeout=self.timeout_s, transport=self._transport)

    def acquire_token(self) -> str:
        missing = [
            name
            for name, v in (
                ("GRAPH_TENANT_ID", self.tenant_id),
                ("GRAPH_CLIENT_ID", self.client_id),
                ("GRAPH_CLIENT_SECRET", self.client_secret),
            )
            if not v
        ]
        if missing:
            raise SyncConfigurationError(
                f"Missing Graph settings: {', '.join(missing)}", extensions={"missing": missing}
            )

        body = {
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "grant_type": "client_credentials",
            "scope": GRAPH_SCOPE,
        }
        try:
            with self._client() as client:
                resp = client.post(
                    token_url(self.tenant_id),
                    data=body,
                    headers={"Content-Type": "application/x-www-form-urlencoded"},
                )
        except httpx.HTTPError as e:
            raise UpstreamSourceError(f"Graph token request failed: {e}") from e

        data = _json(resp)
        if resp.status_code >= 400 or not data.get("access_token"):
            raise UpstreamSourceError(
                f"Failed to acquire Microsoft Graph token: {_error_message(resp)}",
                extensions={"upstreamStatus": resp.status_code},
            )
        return str(data["access_token"])

    def _get(self, path: str, token: str) -> dict[str, Any]:
        try:
            with self._client() as client:
                resp = client.get(f"{GRAPH_BASE_URL}{path}", headers={"Authorization": f"Bearer {token}"})
        except httpx.HTTPError as e:
            raise UpstreamSourceError(f"Graph request failed: {e}") from e
        if resp.status_code >= 400:
            log.warning("graph_request_failed", path=path, status=resp.status_code)
            raise UpstreamSourceError(
                _error_message(resp), extensions={"upstreamStatus": resp.status_code}
            )
        return _json(resp)

    def resolve_share_link(self, share_link: str) -> dict[str, str]:
        link = str(share_link or "").strip()
        if not link:
            raise SyncConfigurationError("shareLink is required")
        token = self.acquire_token()
        item = self._get(f"/shares/u!{to_share_token(link)}/driveItem", token)
        parent = item.get("parentReference") or {}
        return {
            "driveId": str(parent.get("driveId") or ""),
            "fileId": str(item.get("id") or ""),
            "fileName": str(item.get("name") or ""),
            "webUrl": str(item.get("webUrl") or ""),
        }

    def list_worksheets(self, *, drive_id: str, file_id: str) -> list[dict[str, Any]]:
        if not drive_id or not file_id:
            raise SyncConfigurationError("driveId and fileId are required")
        token = self.acquire_token()
        data = self._get(f"/drives/{drive_id}/items/{file_id}/workbook/worksheets", token)
        return [
            {"id": s.get("id"), "name": s.get("name"), "position": s.get("position")}
            for s in (data.get("value") or [])
        ]

    def get_worksheet_rows(
        self,
        *,
        drive_id: str,
        file_id: str,
        worksheet_name: str,
        data_range: str | None = None,
    ) -> list[list[Any]]:
        if not drive_id or not file_id or not worksheet_name:
            raise SyncConfigurationError("driveId, fileId and worksheetName are required")
        token = self.acquire_token()
        base = f"/drives/{drive_id}/items/{file_id}/workbook/{_sheet_segment(worksheet_name)}"
        rng = str(data_range or "").strip()
        path = f"{base}/range(address='{quote(rng, safe=':')}')" if rng else f"{base}/usedRange"
        data = self._get(path, token)
        return [list(r or []) for r in (data.get("values") or [])]


class GraphExcelSource:
    kind = "graph_excel"

    def __init__(
        self,
        *,
        drive_id: str,
        file_id: str,
        worksheet_name: str,
        data_range: str | None = None,
        client: GraphExcelClient | None = None,
    ):
        self.drive_id = str(drive_id or "").strip()
        self.file_id = str(file_id or "").strip()
        self.worksheet_name = str(worksheet_name or "").strip()
        self.data_range = str(data_range or "").strip() or None
        self.client = client or GraphExcelClient()

    def describe(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "driveId": self.drive_id,
            "fileId": self.file_id,
            "worksheetName": self.worksheet_name,
        }

    def get_rows(self) -> list[list[Any]]:
        rows = self.client.get_worksheet_rows(
            drive_id=self.drive_id,
            file_id=self.file_id,
            worksheet_name=self.worksheet_name,
            data_range=self.data_range,
        )
        log.info("graph_worksheet_fetched", worksheet=self.worksheet_name, rows=len(rows))
        return rows
