from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List

from .api_client import ApiClient
from .exceptions import MalformedResponseError
from .logging_utils import log_json
from .tokens import Token


@dataclass(frozen=True)
class TrafficRecord:
    site_code: str
    location: str
    is_internal: int
    period_ending: datetime
    ins: int
    outs: int

    @property
    def key(self) -> tuple:
        return (self.site_code, self.location, self.period_ending)


def _internal_flag(value: Any) -> int:
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int) and value in (0, 1):
        return value
    if isinstance(value, str):
        normalized = value.strip().lower()
        if normalized in {"1", "true"}:
            return 1
        if normalized in {"0", "false"}:
            return 0
    raise ValueError(f"not a boolean: {value!r}")


def _count(value: Any) -> int:
    if isinstance(value, bool):
        raise ValueError(f"not a count: {value!r}")
    if isinstance(value, float) and not value.is_integer():
        raise ValueError(f"fractional count: {value!r}")
    count = int(value)
    if count < 0:
        raise ValueError(f"negative count: {value!r}")
    return count


def _period_ending(value: Any) -> datetime:
    ts = datetime.fromisoformat(value)
    # Key column is a naive wall-clock timestamp; an offset would be shifted by the session time zone.
    if ts.tzinfo is not None:
        raise ValueError(f"unexpected UTC offset: {value!r}")
    return ts.replace(microsecond=0)


def parse_record(raw: Dict[str, Any]) -> TrafficRecord:
    try:
        return TrafficRecord(
            site_code=str(raw["SiteCode"]),
            location=str(raw["Location"]),
            is_internal=_internal_flag(raw["IsInternal"]),
            period_ending=_period_ending(raw["PeriodEnding"]),
            ins=_count(raw["Ins"]),
            outs=_count(raw["Outs"]),
        )
    except (KeyError, TypeError, ValueError) as exc:
        raise MalformedResponseError(f"Unusable traffic record {raw!r}: {exc}") from exc


def _coerce_records(resp: Any) -> List[Dict[str, Any]]:
    if isinstance(resp, list):
        records = resp
    elif isinstance(resp, dict) and isinstance(resp.get("data"), list):
        records = resp["data"]
    else:
        raise MalformedResponseError(f"Expected a list of traffic records, got {type(resp).__name__}")
    for rec in records:
        if not isinstance(rec, dict):
            raise MalformedResponseError(f"Expected a traffic record object, got {type(rec).__name__}")
    return records


class TrafficFetcher:
    def __init__(self, api: ApiClient, logger=None) -> None:
        self.api = api
        self.logger = logger

    async def fetch(self, token: Token, from_date: str, to_date: str) -> List[TrafficRecord]:
        params = {
            "SiteCode": "",
            "IncludeInternalLocations": "true",
            "DataSummedByDay": "false",
            "DateFrom": from_date,
            "DateTo": to_date,
        }
        resp = await self.api.get_json(self.api.cfg.traffic_path, token.value, params=params)
        records = [parse_record(raw) for raw in _coerce_records(resp)]
        if self.logger:
            log_json(self.logger, "fetch_done", from_date=from_date, to_date=to_date, records=len(records))
        return records
