from __future__ import annotations

import random
import time
from dataclasses import dataclass
from typing import Any, Callable, TypeVar

from botocore.exceptions import BotoCoreError, ClientError

from ...observability.logging import get_logger
from .errors import (
    DdbConflict,
    DdbError,
    DdbInternal,
    DdbThrottled,
    DdbUnavailable,
    DdbValidation,
)

T = TypeVar("T")

log = get_logger("ddb")


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    max_attempts: int = 5
    base_delay_s: float = 0.05
    max_delay_s: float = 1.0

    def delay(self, attempt: int) -> float:
        # Full jitter.
        return random.random() * min(self.max_delay_s, self.base_delay_s * (2 ** max(0, attempt - 1)))


# Batch commits of a whole opportunity generation and approval transactions get more room.
WRITE_POLICY = RetryPolicy(max_attempts=8, base_delay_s=0.08, max_delay_s=2.0)

# AWS error code -> (error class, message)
_CODES: dict[str, tuple[type[DdbError], str]] = {
    "ConditionalCheckFailedException": (DdbConflict, "Conditional check failed"),
    "ValidationException": (DdbValidation, "DynamoDB rejected the request"),
    "ResourceNotFoundException": (DdbUnavailable, "DynamoDB table not found"),
    "AccessDeniedException": (DdbUnavailable, "DynamoDB access denied"),
    "UnrecognizedClientException": (DdbUnavailable, "DynamoDB credentials rejected"),
    "ProvisionedThroughputExceededException": (DdbThrottled, "DynamoDB throughput exceeded"),
    "ThrottlingException": (DdbThrottled, "DynamoDB request throttled"),
    "RequestLimitExceeded": (DdbThrottled, "DynamoDB request limit exceeded"),
    "InternalServerError": (DdbThrottled, "DynamoDB internal error"),
    "ServiceUnavailable": (DdbThrottled, "DynamoDB unavailable"),
    "TransactionConflictException": (DdbThrottled, "Concurrent transaction on the same item"),
}


def _cancellation_codes(e: ClientError) -> set[str]:
    reasons = (e.response or {}).get("CancellationReasons") or []
    return {str((r or {}).get("Code") or "") for r in reasons} - {"", "None"}


def classify(
    exc: Exception,
    *,
    operation: str,
    table_name: str | None = None,
    key: dict[str, Any] | None = None,
) -> DdbError:
    """Turn a botocore failure into one of the typed storage errors."""
    if isinstance(exc, DdbError):
        return exc

    ctx: dict[str, Any] = {"operation": operation, "table_name": table_name, "key": key}

    if isinstance(exc, ClientError):
        err = (exc.response or {}).get("Error") or {}
        code = str(err.get("Code") or "")
        ctx["aws_request_id"] = ((exc.response or {}).get("ResponseMetadata") or {}).get("RequestId")

        if code == "TransactionCanceledException":
            reasons = _cancellation_codes(exc)
            if "ConditionalCheckFailed" in reasons:
                return DdbConflict("Transaction condition failed", **ctx)
            if "TransactionConflict" in reasons or "ThrottlingError" in reasons:
                return DdbThrottled("Transaction cancelled by contention", **ctx)
            return DdbInternal(f"Transaction cancelled ({', '.join(sorted(reasons)) or 'unknown'})", **ctx)

        cls, message = _CODES.get(code, (DdbInternal, f"DynamoDB request failed ({code or 'ClientError'})"))
        return cls(message, **ctx)

    if isinstance(exc, BotoCoreError):
        return DdbUnavailable(f"DynamoDB client error: {exc}", retryable=True, **ctx)

    return DdbInternal(f"Unexpected storage error: {exc}", **ctx)


def ddb_call(
    operation: str,
    fn: Callable[[], T],
    *,
    table_name: str | None = None,
    key: dict[str, Any] | None = None,
    retry_policy: RetryPolicy | None = None,
) -> T:
    policy = retry_policy or RetryPolicy()
    attempts = max(1, int(policy.max_attempts))
    attempt = 1
    while True:
        try:
            return fn()
        except Exception as e:  # noqa: BLE001
            err = classify(e, operation=operation, table_name=table_name, key=key)
            if not err.retryable or attempt >= attempts:
                raise err from e
            log.info("ddb_retry", operation=operation, attempt=attempt, error=err.message)
            time.sleep(policy.delay(attempt))
            attempt += 1
