from __future__ import annotations

from typing import Any


class DdbError(Exception):
    """
    Storage failure, already classified.

    Each subclass carries the HTTP status it renders as, so the handler in
    `main.py` needs no mapping table of its own.
    """

    status_code = 500
    title = "Storage Error"
    retryable = False

    def __init__(
        self,
        message: str,
        *,
        operation: str | None = None,
        table_name: str | None = None,
        key: dict[str, Any] | None = None,
        aws_request_id: str | None = None,
        retryable: bool | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.operation = operation
        self.table_name = table_name
        self.key = key
        self.aws_request_id = aws_request_id
        if retryable is not None:
            self.retryable = retryable

    def __str__(self) -> str:
        return self.message

    def extensions(self) -> dict[str, Any]:
        ext = {
            "operation": self.operation,
            "table": self.table_name,
            "awsRequestId": self.aws_request_id,
            "retryable": bool(self.retryable),
        }
        return {k: v for k, v in ext.items() if v is not None}


class DdbValidation(DdbError):
    status_code = 400
    title = "Bad Request"


class DdbNotFound(DdbError):
    status_code = 404
    title = "Not Found"


class DdbConflict(DdbError):
    """A condition expression failed (optimistic version, pointer swap, create-if-absent)."""

    status_code = 409
    title = "Conflict"


class DdbThrottled(DdbError):
    status_code = 503
    title = "Service Unavailable"
    retryable = True


class DdbUnavailable(DdbError):
    status_code = 503
    title = "Service Unavailable"


class DdbInternal(DdbError):
    pass
