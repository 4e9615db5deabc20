"""Domain error taxonomy.

Configuration and action errors are raised before any write and rendered as
problem-details responses by the handler registered in `main.py`. Parse and
normalization problems are never raised (see `pipeline.intake`).
"""

from __future__ import annotations

from typing import Any


class DashboardError(Exception):
    status_code: int = 500
    title: str = "Internal Server Error"

    def __init__(self, message: str, *, extensions: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.extensions = extensions or {}

    def __str__(self) -> str:
        return self.message


class SyncConfigurationError(DashboardError):
    """Missing source identifiers, invalid header offset, unknown source kind."""

    status_code = 400
    title = "Sync Configuration Error"


class SyncInProgressError(DashboardError):
    status_code = 409
    title = "Sync In Progress"


class UpstreamSourceError(DashboardError):
    """The spreadsheet source (Google Sheets / Graph) failed or returned garbage."""

    status_code = 502
    title = "Upstream Source Error"


class ApprovalActionError(DashboardError):
    status_code = 400
    title = "Invalid Approval Action"


class MailConfigurationError(DashboardError):
    status_code = 500
    title = "Mail Configuration Error"
