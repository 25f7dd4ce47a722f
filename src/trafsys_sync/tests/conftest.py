"""Shared test fixtures for trafsys_sync test suite.

Provides a moto-backed run-state table, TrafSys API response shapes and an
in-memory stand-in for the psycopg async connection.
"""

from __future__ import annotations

import os
from contextlib import asynccontextmanager
from typing import Any, Dict, List

import boto3
import pytest
from moto import mock_aws


# ---------------------------------------------------------------------------
# AWS credential safety: prevent accidental real AWS calls
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True, scope="session")
def aws_credentials():
    """Set fake AWS credentials for the entire test session."""
    os.environ["AWS_ACCESS_KEY_ID"] = "testing"
    os.environ["AWS_SECRET_ACCESS_KEY"] = "testing"
    os.environ["AWS_SECURITY_TOKEN"] = "testing"
    os.environ["AWS_SESSION_TOKEN"] = "testing"
    os.environ["AWS_DEFAULT_REGION"] = "us-east-1"
    yield
    for key in (
        "AWS_ACCESS_KEY_ID",
        "AWS_SECRET_ACCESS_KEY",
        "AWS_SECURITY_TOKEN",
        "AWS_SESSION_TOKEN",
        "AWS_DEFAULT_REGION",
    ):
        os.environ.pop(key, None)


def create_run_state_table(client, table_name: str = "trafsys_run_state") -> None:
    client.create_table(
        TableName=table_name,
        KeySchema=[
            {"AttributeName": "job", "KeyType": "HASH"},
            {"AttributeName": "created_at", "KeyType": "RANGE"},
        ],
        AttributeDefinitions=[
            {"AttributeName": "job", "AttributeType": "S"},
            {"AttributeName": "created_at", "AttributeType": "S"},
        ],
        BillingMode="PAY_PER_REQUEST",
    )


@pytest.fixture()
def run_state_table():
    """Create a moto mock DynamoDB table 'trafsys_run_state'.

    Hash key: job (S), Range key: created_at (S).
    Yields the boto3 DynamoDB client.
    """
    with mock_aws():
        client = boto3.client("dynamodb", region_name="us-east-1")
        create_run_state_table(client)
        yield client


# ---------------------------------------------------------------------------
# Sample data fixtures: TrafSys API response shapes
# ---------------------------------------------------------------------------

@pytest.fixture()
def sample_traffic_payload() -> List[Dict[str, Any]]:
    """Return sample records matching the /api/traffic response shape."""
    return [
        {
            "SiteCode": "ULS01",
            "Location": "Main Entrance",
            "IsInternal": False,
            "PeriodEnding": "2020-01-05T09:00:00",
            "Ins": 42,
            "Outs": 17,
        },
        {
            "SiteCode": "ULS01",
            "Location": "Main Entrance",
            "IsInternal": False,
            "PeriodEnding": "2020-01-05T10:00:00",
            "Ins": 88,
            "Outs": 51,
        },
        {
            "SiteCode": "ULS02",
            "Location": "Reading Room Gate",
            "IsInternal": True,
            "PeriodEnding": "2020-01-05T10:00:00",
            "Ins": 5,
            "Outs": 3,
        },
    ]


@pytest.fixture()
def token_payload() -> Dict[str, Any]:
    """Return a password-grant response as issued by the token endpoint."""
    return {
        "access_token": "fresh-token",
        "token_type": "bearer",
        "expires_in": 86399,
        ".issued": "Sun, 05 Jan 2020 12:00:00 GMT",
        ".expires": "Mon, 06 Jan 2020 12:00:00 GMT",
    }


# ---------------------------------------------------------------------------
# In-memory psycopg connection
# ---------------------------------------------------------------------------

class FakeCursor:
    def __init__(self, conn: "FakeConnection") -> None:
        self._conn = conn
        self.rowcount = -1

    async def __aenter__(self) -> "FakeCursor":
        return self

    async def __aexit__(self, *exc) -> None:
        return None

    async def execute(self, query, params=None) -> None:
        self._conn.executed.append((query, params))
        if self._conn.fail_after is not None and len(self._conn.executed) > self._conn.fail_after:
            raise RuntimeError("simulated database failure")
        if params is None:
            self.rowcount = -1
            return
        site_code, location, is_internal, period_ending, ins, outs = params
        key = (site_code, location, period_ending)
        existing = self._conn.rows.get(key)
        if existing is None:
            self._conn.rows[key] = {
                "site_code": site_code,
                "location": location,
                "is_internal": is_internal,
                "period_ending": period_ending,
                "ins": ins,
                "outs": outs,
            }
        else:
            existing["ins"] = ins
            existing["outs"] = outs
        self.rowcount = 1


class FakeConnection:
    """Behaves like a table with ON CONFLICT DO UPDATE on the composite key."""

    def __init__(self) -> None:
        self.rows: Dict[tuple, Dict[str, Any]] = {}
        self.executed: List[tuple] = []
        self.commits = 0
        self.rollbacks = 0
        self.closed = False
        self.fail_after = None

    @asynccontextmanager
    async def transaction(self):
        snapshot = {key: dict(row) for key, row in self.rows.items()}
        try:
            yield self
        except BaseException:
            self.rows = snapshot
            self.rollbacks += 1
            raise
        self.commits += 1

    def cursor(self) -> FakeCursor:
        return FakeCursor(self)

    async def close(self) -> None:
        self.closed = True


@pytest.fixture()
def fake_connection() -> FakeConnection:
    return FakeConnection()
