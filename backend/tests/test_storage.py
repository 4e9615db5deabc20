from __future__ import annotations

import pytest
from botocore.exceptions import ClientError, EndpointConnectionError, ReadTimeoutError

from tender_dashboard.db.dynamodb import retry
from tender_dashboard.db.dynamodb.errors import (
    DdbConflict,
    DdbInternal,
    DdbThrottled,
    DdbUnavailable,
    DdbValidation,
)
from tender_dashboard.db.dynamodb.pagination import decode_next_token, encode_next_token
from tender_dashboard.db.dynamodb.table import DynamoTable
from tender_dashboard.middleware.request_context import resolve_request_id
from tender_dashboard.services.token_crypto import decrypt_string, encrypt_string


def _client_error(code: str, *, reasons: list[dict] | None = None) -> ClientError:
    response = {"Error": {"Code": code, "Message": code}, "ResponseMetadata": {"RequestId": "req-1"}}
    if reasons is not None:
        response["CancellationReasons"] = reasons
    return ClientError(response, "PutItem")


def test_token_crypto_round_trip_and_tamper():
    sealed = encrypt_string("AIza-secret")
    assert sealed.startswith("v1:")
    assert decrypt_string(sealed) == "AIza-secret"

    prefix, iv, tag, body = sealed.split(":")
    assert decrypt_string(":".join([prefix, iv, tag, "AAAA" + body])) is None
    assert decrypt_string("not-a-token") is None
    assert decrypt_string(None) is None
    assert encrypt_string(None) is None


def test_next_token_round_trip():
    lek = {"pk": "SYNC_RUNS", "sk": "RUN#2024-01-01T00:00:00Z#run_1"}
    tok = encode_next_token(lek)
    assert tok and "SYNC_RUNS" not in tok
    assert decode_next_token(tok) == lek
    assert encode_next_token(None) is None
    assert decode_next_token(None) is None


def test_garbage_next_token_is_a_validation_error():
    with pytest.raises(DdbValidation):
        decode_next_token("v1:garbage")
    with pytest.raises(DdbValidation):
        decode_next_token(encrypt_string("[1, 2]"))


@pytest.mark.parametrize(
    "code, expected, retryable",
    [
        ("ConditionalCheckFailedException", DdbConflict, False),
        ("ValidationException", DdbValidation, False),
        ("ProvisionedThroughputExceededException", DdbThrottled, True),
        ("AccessDeniedException", DdbUnavailable, False),
        ("SomethingNew", DdbInternal, False),
    ],
)
def test_client_errors_are_classified(code, expected, retryable):
    err = retry.classify(_client_error(code), operation="PutItem", table_name="t")
    assert type(err) is expected
    assert err.retryable is retryable
    assert err.aws_request_id == "req-1"
    assert err.extensions()["operation"] == "PutItem"


def test_cancelled_transactions():
    failed = _client_error("TransactionCanceledException", reasons=[{"Code": "None"}, {"Code": "ConditionalCheckFailed"}])
    assert isinstance(retry.classify(failed, operation="TransactWriteItems"), DdbConflict)

    contended = _client_error("TransactionCanceledException", reasons=[{"Code": "TransactionConflict"}])
    assert isinstance(retry.classify(contended, operation="TransactWriteItems"), DdbThrottled)


def test_ddb_call_retries_only_retryable_errors(monkeypatch):
    monkeypatch.setattr(retry.time, "sleep", lambda _s: None)
    calls = {"n": 0}

    def flaky():
        calls["n"] += 1
        if calls["n"] < 3:
            raise _client_error("ThrottlingException")
        return "ok"

    assert retry.ddb_call("Query", flaky) == "ok"
    assert calls["n"] == 3

    def conflict():
        calls["n"] += 1
        raise _client_error("ConditionalCheckFailedException")

    calls["n"] = 0
    with pytest.raises(DdbConflict):
        retry.ddb_call("PutItem", conflict)
    assert calls["n"] == 1


def test_ddb_call_gives_up_after_max_attempts(monkeypatch):
    monkeypatch.setattr(retry.time, "sleep", lambda _s: None)
    calls = {"n": 0}

    def down():
        calls["n"] += 1
        raise EndpointConnectionError(endpoint_url="http://localhost:8000")

    with pytest.raises(DdbUnavailable):
        retry.ddb_call("GetItem", down, retry_policy=retry.RetryPolicy(max_attempts=3))
    assert calls["n"] == 3


class _LostResponseClient:
    """Commits every token once; the first response never arrives."""

    def __init__(self):
        self.tokens: list[str] = []
        self.committed: set[str] = set()

    def transact_write_items(self, *, TransactItems, ClientRequestToken):
        self.tokens.append(ClientRequestToken)
        if ClientRequestToken in self.committed:
            return {}
        self.committed.add(ClientRequestToken)
        raise ReadTimeoutError(endpoint_url="http://localhost:8000")


def test_transact_write_resends_the_same_request_token(monkeypatch):
    monkeypatch.setattr(retry.time, "sleep", lambda _s: None)
    t = DynamoTable.__new__(DynamoTable)
    t.table_name = "t"
    t._client = _LostResponseClient()

    t.transact_write(puts=[{"TableName": "t", "Item": {"pk": {"S": "A"}, "sk": {"S": "B"}}}])
    assert len(t._client.tokens) == 2
    assert t._client.tokens[0] == t._client.tokens[1]
    assert len(t._client.committed) == 1

    t.transact_write(puts=[{"TableName": "t", "Item": {"pk": {"S": "A"}, "sk": {"S": "C"}}}], client_request_token="tok-1")
    assert t._client.tokens[-1] == "tok-1"


def test_request_ids_are_sanitized():
    assert resolve_request_id("abc-123") == "abc-123"
    assert len(resolve_request_id("")) == 32
    assert resolve_request_id("bad id\nwith newline") != "bad id\nwith newline"
    assert len(resolve_request_id("x" * 500)) == 32
