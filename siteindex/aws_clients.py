"""siteindex.aws_clients — Lazy-singleton AWS service clients.

Clients are created on first call and cached for the lifetime of the
Lambda container, so cold starts only pay for the clients they use.
"""

from __future__ import annotations

from typing import Optional

import boto3
from botocore.config import Config

from siteindex import config

__all__ = ["_get_ddb", "_get_eb", "_reset_clients"]

_ddb = None
_eb = None


def _get_ddb(region: Optional[str] = None):
    """Get (or create) the DynamoDB client singleton."""
    global _ddb
    if _ddb is None:
        _ddb = boto3.client(
            "dynamodb",
            region_name=region or config.DYNAMODB_REGION,
            config=Config(retries={"max_attempts": 5, "mode": "standard"}),
        )
    return _ddb


def _get_eb(region: Optional[str] = None):
    """Get (or create) the EventBridge client singleton."""
    global _eb
    if _eb is None:
        _eb = boto3.client(
            "events",
            region_name=region or config.EVENTBRIDGE_REGION,
            config=Config(retries={"max_attempts": 3, "mode": "standard"}),
        )
    return _eb


def _reset_clients() -> None:
    global _ddb, _eb
    _ddb = None
    _eb = None
