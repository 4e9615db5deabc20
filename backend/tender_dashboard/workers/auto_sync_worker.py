from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from ..modules.sync.auto_sync import run_auto_sync_once
from ..observability.logging import configure_logging, get_logger
from ..settings import settings


log = get_logger("auto_sync_worker")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def run_once() -> dict[str, Any]:
    """
    Single sync tick for external schedulers (cron, EventBridge, ECS scheduled task),
    for deployments that run with AUTO_SYNC_ENABLED=false in the web process.
    """
    started_at = _now_iso()
    out = run_auto_sync_once()
    out = {**out, "startedAt": started_at, "finishedAt": _now_iso()}
    log.info("auto_sync_worker_run_once_done", status=out.get("status"), ok=out.get("ok"))
    return out


if __name__ == "__main__":
    configure_logging(level=settings.log_level, json_logs=settings.log_json)
    run_once()
