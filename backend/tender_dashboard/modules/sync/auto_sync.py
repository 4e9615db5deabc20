from __future__ import annotations

from typing import Any, Callable

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from ...errors import SyncInProgressError
from ...observability.logging import get_logger
from ...settings import settings
from .sync_config import SyncConfig
from .sync_orchestrator import SyncOrchestrator, load_config

log = get_logger("auto_sync")

JOB_ID = "auto_sync"


def run_auto_sync_once(
    *,
    orchestrator: SyncOrchestrator | None = None,
    config_loader: Callable[[], SyncConfig] = load_config,
) -> dict[str, Any]:
    """One timer tick. Never raises; returns a small status dict for logs/workers."""
    try:
        config = config_loader()
    except Exception as e:  # noqa: BLE001
        log.warning("auto_sync_config_unavailable", error=str(e))
        return {"ok": False, "status": "config_unavailable", "error": str(e)}

    if not config.is_complete():
        log.info("auto_sync_skipped", reason="source_not_configured")
        return {"ok": True, "status": "skipped", "reason": "source_not_configured"}

    try:
        result = (orchestrator or SyncOrchestrator()).sync(config, trigger="timer")
    except SyncInProgressError:
        return {"ok": True, "status": "skipped", "reason": "in_flight"}
    except Exception as e:  # noqa: BLE001
        # Already logged and recorded by the orchestrator; wait for the next tick.
        return {"ok": False, "status": "failed", "error": str(e)}
    return {"ok": True, "status": "success", **result.to_dict()}


class AutoSyncScheduler:
    def __init__(
        self,
        *,
        interval_minutes: int | None = None,
        tick: Callable[[], Any] = run_auto_sync_once,
        scheduler: BackgroundScheduler | None = None,
    ):
        self.interval_minutes = max(1, int(interval_minutes or settings.auto_sync_interval_minutes or 10))
        self.tick = tick
        self.scheduler = scheduler or BackgroundScheduler(timezone="UTC")

    def start(self) -> None:
        self.scheduler.add_job(
            self.tick,
            IntervalTrigger(minutes=self.interval_minutes),
            id=JOB_ID,
            name="auto_sync",
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        if not self.scheduler.running:
            self.scheduler.start()
        log.info("auto_sync_scheduler_started", interval_minutes=self.interval_minutes)

    def reschedule(self, interval_minutes: int) -> None:
        self.interval_minutes = max(1, int(interval_minutes))
        if self.scheduler.get_job(JOB_ID) is not None:
            self.scheduler.reschedule_job(JOB_ID, trigger=IntervalTrigger(minutes=self.interval_minutes))
            log.info("auto_sync_rescheduled", interval_minutes=self.interval_minutes)

    def shutdown(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            log.info("auto_sync_scheduler_stopped")
