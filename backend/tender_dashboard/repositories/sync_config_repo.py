from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from ..services.token_crypto import decrypt_string, encrypt_string
from ..db.dynamodb.table import get_main_table


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def sync_config_key() -> dict[str, str]:
    return {"pk": "SYNC_CONFIG", "sk": "CURRENT"}


def _from_item(item: dict[str, Any]) -> dict[str, Any]:
    out = {k: v for k, v in item.items() if k not in ("pk", "sk", "entityType", "googleApiKeyEnc")}
    out["googleApiKey"] = decrypt_string(item.get("googleApiKeyEnc"))
    return out


def get_config() -> dict[str, Any] | None:
    """Stored configuration with the API key decrypted (None when never saved)."""
    item = get_main_table().get_item(key=sync_config_key())
    return _from_item(item) if item else None


def put_config(config: dict[str, Any], *, updated_by: str | None = None) -> dict[str, Any]:
    """
    Replace the stored configuration. `googleApiKey` is encrypted at rest; passing
    None keeps the previously stored key, passing "" clears it.
    """
    existing = get_main_table().get_item(key=sync_config_key()) or {}
    data = {k: v for k, v in dict(config or {}).items() if k not in ("pk", "sk", "entityType")}
    api_key = data.pop("googleApiKey", None)
    if api_key is None:
        enc = existing.get("googleApiKeyEnc")
    else:
        enc = encrypt_string(api_key) if str(api_key).strip() else None

    item: dict[str, Any] = {
        **data,
        **sync_config_key(),
        "entityType": "SyncConfig",
        "googleApiKeyEnc": enc,
        "updatedBy": updated_by or data.get("updatedBy"),
        "updatedAt": now_iso(),
        "createdAt": existing.get("createdAt") or now_iso(),
    }
    get_main_table().put_item(item=item)
    return _from_item(item)


def record_sync_outcome(
    *,
    status: str,
    error: str | None = None,
    synced_count: int | None = None,
) -> dict[str, Any] | None:
    """Stamp lastSyncAt/lastSyncStatus on the stored configuration (no-op when unset)."""
    existing = get_main_table().get_item(key=sync_config_key())
    if not existing:
        return None
    now = now_iso()
    item = {
        **existing,
        "lastSyncStatus": status,
        "lastSyncError": error,
        "lastSyncAttemptAt": now,
    }
    if status == "success":
        item["lastSyncAt"] = now
        item["lastSyncedCount"] = synced_count
    get_main_table().put_item(item=item)
    return _from_item(item)


def record_resolved(*, drive_id: str, file_id: str, share_link: str | None = None) -> dict[str, Any]:
    existing = get_main_table().get_item(key=sync_config_key()) or {
        **sync_config_key(),
        "entityType": "SyncConfig",
        "createdAt": now_iso(),
    }
    item = {
        **existing,
        "driveId": drive_id,
        "fileId": file_id,
        "lastResolvedAt": now_iso(),
        "updatedAt": now_iso(),
    }
    if share_link:
        item["shareLink"] = share_link
    get_main_table().put_item(item=item)
    return _from_item(item)
