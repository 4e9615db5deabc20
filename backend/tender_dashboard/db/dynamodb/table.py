from __future__ import annotations

import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Iterable

from boto3.dynamodb.types import TypeSerializer

from ...settings import settings
from .client import dynamodb_client, table_resource
from .errors import DdbInternal
from .pagination import decode_next_token, encode_next_token
from .retry import WRITE_POLICY, ddb_call

_serializer = TypeSerializer()


def to_ddb(value: Any) -> Any:
    """Floats become Decimal (boto3 rejects float); NaN/inf are dropped to None."""
    if isinstance(value, bool):
        return value
    if isinstance(value, float):
        if value != value or value in (float("inf"), float("-inf")):
            return None
        return Decimal(str(value))
    if isinstance(value, dict):
        return {k: to_ddb(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_ddb(v) for v in value]
    return value


def from_ddb(value: Any) -> Any:
    if isinstance(value, Decimal):
        return int(value) if value == value.to_integral_value() else float(value)
    if isinstance(value, dict):
        return {k: from_ddb(v) for k, v in value.items()}
    if isinstance(value, list):
        return [from_ddb(v) for v in value]
    return value


def _attribute_values(d: dict[str, Any]) -> dict[str, Any]:
    # Low-level client shape ({"S": ...}) for TransactWriteItems.
    return {k: _serializer.serialize(v) for k, v in to_ddb(d).items()}


def _condition_kwargs(
    condition_expression: str | None,
    names: dict[str, str] | None,
    values: dict[str, Any] | None,
) -> dict[str, Any]:
    kw: dict[str, Any] = {}
    if condition_expression:
        kw["ConditionExpression"] = condition_expression
    if names:
        kw["ExpressionAttributeNames"] = names
    if values:
        kw["ExpressionAttributeValues"] = to_ddb(values)
    return kw


@dataclass(slots=True)
class Page:
    items: list[dict[str, Any]]
    next_token: str | None


class DynamoTable:
    """Single-table access: every entity lives under its own pk partition."""

    def __init__(self, *, table_name: str):
        self.table_name = str(table_name)
        self._table = table_resource(self.table_name)
        self._client = dynamodb_client()

    def get_item(self, *, key: dict[str, Any]) -> dict[str, Any] | None:
        resp = ddb_call(
            "GetItem",
            lambda: self._table.get_item(Key=key, ConsistentRead=True),
            table_name=self.table_name,
            key=key,
        )
        item = resp.get("Item")
        return from_ddb(item) if item else None

    def put_item(
        self,
        *,
        item: dict[str, Any],
        condition_expression: str | None = None,
        expression_attribute_names: dict[str, str] | None = None,
        expression_attribute_values: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        kw = _condition_kwargs(condition_expression, expression_attribute_names, expression_attribute_values)
        key = {"pk": item.get("pk"), "sk": item.get("sk")}
        return ddb_call(
            "PutItem",
            lambda: self._table.put_item(Item=to_ddb(item), **kw),
            table_name=self.table_name,
            key=key,
        )

    def delete_item(self, *, key: dict[str, Any]) -> dict[str, Any]:
        return ddb_call(
            "DeleteItem",
            lambda: self._table.delete_item(Key=key),
            table_name=self.table_name,
            key=key,
        )

    # Batch writes carry no conditions and are idempotent, so they are safe to retry.

    def batch_put(self, *, items: Iterable[dict[str, Any]]) -> int:
        rows = [to_ddb(it) for it in items]
        if not rows:
            return 0

        def _op() -> int:
            with self._table.batch_writer() as bw:
                for it in rows:
                    bw.put_item(Item=it)
            return len(rows)

        return ddb_call("BatchWriteItem", _op, table_name=self.table_name, retry_policy=WRITE_POLICY)

    def batch_delete(self, *, keys: Iterable[dict[str, Any]]) -> int:
        ks = list(keys)
        if not ks:
            return 0

        def _op() -> int:
            with self._table.batch_writer(overwrite_by_pkeys=["pk", "sk"]) as bw:
                for k in ks:
                    bw.delete_item(Key=k)
            return len(ks)

        return ddb_call("BatchWriteItem", _op, table_name=self.table_name, retry_policy=WRITE_POLICY)

    def query_page(
        self,
        *,
        key_condition_expression: Any,
        limit: int = 50,
        scan_index_forward: bool = False,
        next_token: str | None = None,
    ) -> Page:
        kw: dict[str, Any] = {
            "KeyConditionExpression": key_condition_expression,
            "ScanIndexForward": bool(scan_index_forward),
            "Limit": max(1, min(500, int(limit or 50))),
        }
        lek = decode_next_token(next_token)
        if lek:
            kw["ExclusiveStartKey"] = lek

        resp = ddb_call("Query", lambda: self._table.query(**kw), table_name=self.table_name)
        return Page(
            items=[from_ddb(it) for it in (resp.get("Items") or [])],
            next_token=encode_next_token(resp.get("LastEvaluatedKey")),
        )

    def query_all(
        self,
        *,
        key_condition_expression: Any,
        scan_index_forward: bool = True,
        max_items: int = 20000,
    ) -> list[dict[str, Any]]:
        """Whole partition (or key range), following LastEvaluatedKey."""
        out: list[dict[str, Any]] = []
        kw: dict[str, Any] = {
            "KeyConditionExpression": key_condition_expression,
            "ScanIndexForward": bool(scan_index_forward),
        }
        while len(out) < max_items:
            resp = ddb_call("Query", lambda: self._table.query(**kw), table_name=self.table_name)
            out.extend(from_ddb(it) for it in (resp.get("Items") or []))
            lek = resp.get("LastEvaluatedKey")
            if not lek:
                break
            kw["ExclusiveStartKey"] = lek
        return out[:max_items]

    def tx_put(
        self,
        *,
        item: dict[str, Any],
        condition_expression: str | None = None,
        expression_attribute_names: dict[str, str] | None = None,
        expression_attribute_values: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """A Put entry for `transact_write`, in low-level client shape."""
        out: dict[str, Any] = {"TableName": self.table_name, "Item": _attribute_values(item)}
        if condition_expression:
            out["ConditionExpression"] = condition_expression
        if expression_attribute_names:
            out["ExpressionAttributeNames"] = expression_attribute_names
        if expression_attribute_values:
            out["ExpressionAttributeValues"] = _attribute_values(expression_attribute_values)
        return out

    def transact_write(
        self,
        *,
        puts: Iterable[dict[str, Any]] = (),
        client_request_token: str | None = None,
    ) -> dict[str, Any]:
        """
        One TransactWriteItems call.

        The same ClientRequestToken is sent on every transport retry, so a commit whose
        response was lost is acknowledged instead of re-applied (DynamoDB keeps tokens
        for 10 minutes).
        """
        items = [{"Put": p} for p in puts]
        if not items:
            return {"ok": True}
        token = str(client_request_token or uuid.uuid4())
        return ddb_call(
            "TransactWriteItems",
            lambda: self._client.transact_write_items(TransactItems=items, ClientRequestToken=token),
            table_name=self.table_name,
            retry_policy=WRITE_POLICY,
        )


def get_main_table() -> DynamoTable:
    if not settings.ddb_table_name:
        raise DdbInternal("DDB_TABLE_NAME is not set", operation="Config")
    return DynamoTable(table_name=settings.ddb_table_name)
