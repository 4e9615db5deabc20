from __future__ import annotations

import copy
import re
import sys
from pathlib import Path
from typing import Any

import pytest

# Ensure `backend/` is on sys.path so `import tender_dashboard.*` works in tests.
BACKEND_DIR = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(BACKEND_DIR))

from tender_dashboard.db.dynamodb.errors import DdbConflict  # noqa: E402
from tender_dashboard.db.dynamodb.table import Page  # noqa: E402

_EQ_RE = re.compile(r"^(#?\w+)\s*=\s*(:\w+)$")
_NOT_EXISTS_RE = re.compile(r"^attribute_not_exists\((\w+)\)$")

REPO_MODULES = (
    "tender_dashboard.repositories.opportunities_repo",
    "tender_dashboard.repositories.approvals_repo",
    "tender_dashboard.repositories.sync_config_repo",
    "tender_dashboard.repositories.sync_runs_repo",
    "tender_dashboard.repositories.notification_rules_repo",
    "tender_dashboard.repositories.users_repo",
)


def _matches_key(cond: Any, item: dict[str, Any]) -> bool:
    expr = cond.get_expression()
    op = expr["operator"]
    values = expr["values"]
    if op == "AND":
        return all(_matches_key(v, item) for v in values)
    actual = item.get(values[0].name)
    if op == "=":
        return actual == values[1]
    if op == "begins_with":
        return str(actual or "").startswith(str(values[1]))
    raise AssertionError(f"FakeTable: unsupported key condition {op!r}")


class FakeTable:
    """
    In-memory stand-in for DynamoTable.

    Supports the key conditions (eq / begins_with) and the condition expressions
    the repositories use: attribute_not_exists(x), `a = :v`, joined with AND.
    """

    def __init__(self):
        # Keyed by (pk, sk)
        self.items: dict[tuple[str, str], dict[str, Any]] = {}
        self.transactions: list[list[dict[str, Any]]] = []
        self.fail_next_transaction: Exception | None = None

    @staticmethod
    def _key(d: dict[str, Any]) -> tuple[str, str]:
        return str(d.get("pk") or ""), str(d.get("sk") or "")

    def _check(
        self,
        key: tuple[str, str],
        condition_expression: str | None,
        values: dict[str, Any] | None,
        names: dict[str, str] | None,
    ) -> None:
        if not condition_expression:
            return
        current = self.items.get(key)
        for clause in [c.strip() for c in condition_expression.split(" AND ")]:
            m = _NOT_EXISTS_RE.match(clause)
            if m:
                ok = current is None or m.group(1) not in current
            else:
                m = _EQ_RE.match(clause)
                assert m, f"FakeTable: unsupported condition {clause!r}"
                attr = (names or {}).get(m.group(1), m.group(1))
                ok = current is not None and current.get(attr) == (values or {}).get(m.group(2))
            if not ok:
                raise DdbConflict(message="Conditional check failed", operation="PutItem", table_name="Fake")

    def get_item(self, *, key: dict[str, Any]) -> dict[str, Any] | None:
        it = self.items.get(self._key(key))
        return copy.deepcopy(it) if it else None

    def put_item(
        self,
        *,
        item: dict[str, Any],
        condition_expression: str | None = None,
        expression_attribute_names: dict[str, str] | None = None,
        expression_attribute_values: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        k = self._key(item)
        self._check(k, condition_expression, expression_attribute_values, expression_attribute_names)
        self.items[k] = copy.deepcopy(item)
        return {"ok": True}

    def delete_item(self, *, key: dict[str, Any], **_kw) -> dict[str, Any]:
        self.items.pop(self._key(key), None)
        return {"ok": True}

    def batch_put(self, *, items) -> int:
        rows = list(items)
        for it in rows:
            self.items[self._key(it)] = copy.deepcopy(it)
        return len(rows)

    def batch_delete(self, *, keys) -> int:
        ks = list(keys)
        for k in ks:
            self.items.pop(self._key(k), None)
        return len(ks)

    def _query(self, key_condition_expression: Any, scan_index_forward: bool) -> list[dict[str, Any]]:
        hits = [copy.deepcopy(v) for v in self.items.values() if _matches_key(key_condition_expression, v)]
        return sorted(hits, key=lambda it: str(it.get("sk") or ""), reverse=not scan_index_forward)

    def query_all(self, *, key_condition_expression: Any, scan_index_forward: bool = True, **_kw):
        return self._query(key_condition_expression, scan_index_forward)

    def query_page(
        self,
        *,
        key_condition_expression: Any,
        limit: int = 50,
        scan_index_forward: bool = False,
        next_token: str | None = None,
        **_kw,
    ) -> Page:
        rows = self._query(key_condition_expression, scan_index_forward)
        start = int(next_token or 0)
        end = start + int(limit)
        return Page(items=rows[start:end], next_token=str(end) if end < len(rows) else None)

    def tx_put(
        self,
        *,
        item: dict[str, Any],
        condition_expression: str | None = None,
        expression_attribute_names: dict[str, str] | None = None,
        expression_attribute_values: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        return {
            "Item": copy.deepcopy(item),
            "ConditionExpression": condition_expression,
            "ExpressionAttributeNames": expression_attribute_names,
            "ExpressionAttributeValues": expression_attribute_values,
        }

    def transact_write(self, *, puts=(), deletes=(), updates=(), **_kw) -> dict[str, Any]:
        puts = list(puts)
        if self.fail_next_transaction is not None:
            exc, self.fail_next_transaction = self.fail_next_transaction, None
            raise exc
        # All conditions are checked before anything is applied.
        for p in puts:
            self._check(
                self._key(p["Item"]),
                p.get("ConditionExpression"),
                p.get("ExpressionAttributeValues"),
                p.get("ExpressionAttributeNames"),
            )
        for p in puts:
            self.items[self._key(p["Item"])] = copy.deepcopy(p["Item"])
        self.transactions.append(puts)
        return {"ok": True}

    def partition(self, pk: str) -> list[dict[str, Any]]:
        return [v for (p, _s), v in sorted(self.items.items()) if p == pk]


@pytest.fixture()
def fake_table(monkeypatch):
    import importlib

    t = FakeTable()
    for name in REPO_MODULES:
        monkeypatch.setattr(importlib.import_module(name), "get_main_table", lambda: t)
    return t
