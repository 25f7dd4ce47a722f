from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from .exceptions import RunStateError


@dataclass(frozen=True)
class RunState:
    access_token: str
    access_token_expires_at: datetime
    from_date: str
    to_date: str
    record_count: int
    created_at: Optional[datetime] = None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _iso(ts: datetime) -> str:
    # Fixed-width UTC so lexicographic order on the range key is time order.
    return ts.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%f+00:00")


class RunStateStore:
    """Append-only history of completed runs in a DynamoDB table.

    Hash key ``job`` (S), range key ``created_at`` (S). Entries are never
    updated or deleted.
    """

    def __init__(self, region: str, table_name: str, job: str) -> None:
        self.table_name = table_name
        self.job = job
        self._client = boto3.client("dynamodb", region_name=region)
        self._clock = _utcnow

    def close(self) -> None:
        self._client.close()

    def append_run(self, state: RunState) -> RunState:
        stored = dataclasses.replace(state, created_at=self._clock())
        try:
            self._client.put_item(
                TableName=self.table_name,
                Item={
                    "job": {"S": self.job},
                    "created_at": {"S": _iso(stored.created_at)},
                    "access_token": {"S": stored.access_token},
                    "access_token_expires_at": {"S": _iso(stored.access_token_expires_at)},
                    "from_date": {"S": stored.from_date},
                    "to_date": {"S": stored.to_date},
                    "record_count": {"N": str(stored.record_count)},
                },
            )
        except (BotoCoreError, ClientError) as exc:
            raise RunStateError(f"Could not append run state to {self.table_name}: {exc}") from exc
        return stored

    def most_recent_run(self) -> Optional[RunState]:
        try:
            resp = self._client.query(
                TableName=self.table_name,
                KeyConditionExpression="#job = :job",
                ExpressionAttributeNames={"#job": "job"},
                ExpressionAttributeValues={":job": {"S": self.job}},
                ScanIndexForward=False,
                Limit=1,
            )
        except (BotoCoreError, ClientError) as exc:
            raise RunStateError(f"Could not read run state from {self.table_name}: {exc}") from exc
        items = resp.get("Items") or []
        if not items:
            return None
        item = items[0]
        return RunState(
            access_token=item["access_token"]["S"],
            access_token_expires_at=datetime.fromisoformat(item["access_token_expires_at"]["S"]),
            from_date=item["from_date"]["S"],
            to_date=item["to_date"]["S"],
            record_count=int(item["record_count"]["N"]),
            created_at=datetime.fromisoformat(item["created_at"]["S"]),
        )
