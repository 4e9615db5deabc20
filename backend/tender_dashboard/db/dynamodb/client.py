from __future__ import annotations

from functools import lru_cache
from typing import Any

import boto3
from botocore.config import Config

from ...settings import settings


@lru_cache(maxsize=1)
def botocore_config() -> Config:
    # botocore's own retries stay on; ddb_call only adds a narrow app-level retry on top.
    return Config(
        retries={"max_attempts": 5, "mode": "adaptive"},
        connect_timeout=2,
        read_timeout=10,
    )


def _session_kwargs() -> dict[str, Any]:
    kw: dict[str, Any] = {"region_name": settings.aws_region, "config": botocore_config()}
    # DynamoDB Local / LocalStack in development.
    if settings.ddb_endpoint_url:
        kw["endpoint_url"] = settings.ddb_endpoint_url
    return kw


@lru_cache(maxsize=1)
def dynamodb_client():
    return boto3.client("dynamodb", **_session_kwargs())


@lru_cache(maxsize=8)
def table_resource(table_name: str):
    return boto3.resource("dynamodb", **_session_kwargs()).Table(table_name)
