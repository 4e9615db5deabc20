"""
Worksheet -> opportunity set synchronization.

One run: validate config, fetch rows, transform, commit (stage-then-swap), stamp
the stored config, notify about tenders that were not in the previous set, record
the run. Runs are serialized per process; a concurrent call fails fast.
"""

from __future__ import annotations

import threading
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Protocol

import structlog

from ...errors import SyncConfigurationError, SyncInProgressError, UpstreamSourceError
from ...infrastructure.spreadsheets.google_sheets import GoogleSheetsSource
from ...infrastructure.spreadsheets.graph_excel import GraphExcelSource
from ...observability.logging import get_logger
from ...pipeline.intake.row_transformer import identity_key, transform_rows
from ...repositories import opportunities_repo, sync_config_repo, sync_runs_repo
from ..notifications.notification_dispatcher import NotificationDispatcher
from .sync_config import SyncConfig

log = get_logger("sync")


class SpreadsheetSource(Protocol):
    kind: str

    def get_rows(self) -> list[list[Any]]: ...

    def describe(self) -> dict[str, Any]: ...


def build_source(config: SyncConfig) -> SpreadsheetSource:
    if config.sourceKind == "google_sheets":
        return GoogleSheetsSource(
            api_key=config.effective_google_api_key(),
            spreadsheet_id=config.spreadsheetId,
            sheet_name=config.sheetName,
            data_range=config.dataRange or None,
        )
    return GraphExcelSource(
        drive_id=config.driveId,
        file_id=config.fileId,
        worksheet_name=config.worksheetName,
        data_range=config.dataRange or None,
    )


def load_config() -> SyncConfig:
    return SyncConfig.from_stored(sync_config_repo.get_config())


@dataclass
class SyncResult:
    runId: str
    syncId: str
    syncedCount: int
    skippedCount: int
    newCount: int
    notifiedCount: int
    durationMs: int
    trigger: str
    source: dict[str, Any] = field(default_factory=dict)
    newTenders: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": True,
            "runId": self.runId,
            "syncId": self.syncId,
            "syncedCount": self.syncedCount,
            "skippedCount": self.skippedCount,
            "newCount": self.newCount,
            "notifiedCount": self.notifiedCount,
            "durationMs": self.durationMs,
            "trigger": self.trigger,
            "source": self.source,
            "newTenderRefs": [t.get("opportunityRefNo") for t in self.newTenders],
        }


# Single in-flight sync per process.
_sync_lock = threading.Lock()


def sync_in_progress() -> bool:
    return _sync_lock.locked()


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def split_header(rows: list[list[Any]], header_row_offset: int) -> tuple[list[Any], list[list[Any]]]:
    if not rows:
        raise UpstreamSourceError("Worksheet returned no rows")
    off = int(header_row_offset)
    if off < 0 or off >= len(rows):
        raise SyncConfigurationError(
            f"headerRowOffset {off} is out of range for a worksheet with {len(rows)} rows",
            extensions={"headerRowOffset": off, "rowCount": len(rows)},
        )
    return list(rows[off] or []), [list(r or []) for r in rows[off + 1 :]]


class SyncOrchestrator:
    def __init__(
        self,
        *,
        source_factory: Callable[[SyncConfig], SpreadsheetSource] = build_source,
        dispatcher: NotificationDispatcher | None = None,
        store: Any = opportunities_repo,
        config_store: Any = sync_config_repo,
        runs_store: Any = sync_runs_repo,
        now: Callable[[], datetime] | None = None,
    ):
        self.source_factory = source_factory
        self.dispatcher = dispatcher or NotificationDispatcher()
        self.store = store
        self.config_store = config_store
        self.runs_store = runs_store
        self.now = now or (lambda: datetime.now(timezone.utc))

    def sync(self, config: SyncConfig, *, trigger: str = "manual") -> SyncResult:
        if not _sync_lock.acquire(blocking=False):
            log.info("sync_skipped_in_flight", trigger=trigger)
            raise SyncInProgressError("A sync is already running; try again shortly")
        run_id = "run_" + uuid.uuid4().hex[:12]
        try:
            # Every log line of the run (repositories, sources, dispatcher) carries the run id.
            with structlog.contextvars.bound_contextvars(sync_run_id=run_id, sync_trigger=trigger):
                return self._run(config, trigger=trigger, run_id=run_id)
        finally:
            _sync_lock.release()

    def _run(self, config: SyncConfig, *, trigger: str, run_id: str) -> SyncResult:
        started_at = _now_iso()
        t0 = time.monotonic()
        source_info: dict[str, Any] = {"kind": config.sourceKind}

        try:
            missing = config.missing_source_fields()
            if missing:
                raise SyncConfigurationError(
                    f"Sync source is not configured: missing {', '.join(missing)}",
                    extensions={"missing": missing, "sourceKind": config.sourceKind},
                )

            source = self.source_factory(config)
            source_info = source.describe()
            log.info("sync_started", run_id=run_id, trigger=trigger, **source_info)

            rows = source.get_rows()
            headers, data_rows = split_header(rows, config.headerRowOffset)
            records = transform_rows(
                headers,
                data_rows,
                field_mapping=config.fieldMapping,
                year_hint=config.yearHint,
                now=self.now(),
                first_row_number=config.headerRowOffset + 2,
            )

            previous_ptr = self.store.get_active_pointer()
            previous_keys = {
                r.get("opportunityKey") or identity_key(r) for r in self.store.list_opportunities()
            }
            commit = self.store.replace_all(records=records)

            # The first sync only establishes a baseline.
            new_tenders = (
                [r for r in records if r["opportunityKey"] not in previous_keys] if previous_ptr else []
            )
            self.config_store.record_sync_outcome(status="success", synced_count=len(records))

            notified = 0
            if new_tenders:
                report = self.dispatcher.notify_on_sync(new_tenders)
                notified = report.sent

            result = SyncResult(
                runId=run_id,
                syncId=commit["syncId"],
                syncedCount=len(records),
                skippedCount=len(data_rows) - len(records),
                newCount=len(new_tenders),
                notifiedCount=notified,
                durationMs=int((time.monotonic() - t0) * 1000),
                trigger=trigger,
                source=source_info,
                newTenders=new_tenders,
            )
        except Exception as e:
            duration_ms = int((time.monotonic() - t0) * 1000)
            log.warning("sync_failed", run_id=run_id, trigger=trigger, error=str(e), error_type=type(e).__name__)
            self._record_failure(run_id, trigger, source_info, started_at, duration_ms, e)
            raise

        log.info(
            "sync_done",
            run_id=run_id,
            trigger=trigger,
            synced=result.syncedCount,
            skipped=result.skippedCount,
            new=result.newCount,
            notified=result.notifiedCount,
            duration_ms=result.durationMs,
        )
        self._record_run(
            run_id=run_id,
            trigger=trigger,
            source=source_info,
            status="success",
            started_at=started_at,
            duration_ms=result.durationMs,
            synced_count=result.syncedCount,
            skipped_count=result.skippedCount,
            new_count=result.newCount,
            notified_count=result.notifiedCount,
            sync_id=result.syncId,
        )
        return result

    def _record_failure(
        self,
        run_id: str,
        trigger: str,
        source: dict[str, Any],
        started_at: str,
        duration_ms: int,
        exc: Exception,
    ) -> None:
        try:
            self.config_store.record_sync_outcome(status="failed", error=str(exc))
        except Exception as e:  # noqa: BLE001
            log.warning("sync_config_stamp_failed", run_id=run_id, error=str(e))
        self._record_run(
            run_id=run_id,
            trigger=trigger,
            source=source,
            status="failed",
            started_at=started_at,
            duration_ms=duration_ms,
            error=str(exc),
        )

    def _record_run(self, **kwargs: Any) -> None:
        # Run history is observability only; never fail a sync because of it.
        try:
            self.runs_store.record_run(**kwargs)
        except Exception as e:  # noqa: BLE001
            log.warning("sync_run_record_failed", run_id=kwargs.get("run_id"), error=str(e))


def boot_sync(
    *,
    orchestrator: SyncOrchestrator | None = None,
    config_loader: Callable[[], SyncConfig] = load_config,
) -> SyncResult | None:
    """
    Sync once at startup when the stored configuration is complete. Anything else
    (no config, partial config, failed run) is logged and the app keeps booting.
    """
    try:
        config = config_loader()
    except Exception as e:  # noqa: BLE001
        log.warning("boot_sync_skipped", reason="config_unavailable", error=str(e))
        return None

    missing = config.missing_source_fields()
    if missing:
        log.info("boot_sync_skipped", reason="source_not_configured", missing=missing)
        return None

    try:
        return (orchestrator or SyncOrchestrator()).sync(config, trigger="boot")
    except Exception as e:  # noqa: BLE001
        log.error("boot_sync_failed", error=str(e), error_type=type(e).__name__)
        return None
