from __future__ import annotations

import asyncio
import enum
import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Awaitable, Callable, List, Optional, Tuple

import httpx

from .dates import yesterday
from .exceptions import TokenRejectedError
from .fetcher import TrafficFetcher, TrafficRecord
from .logging_utils import log_json
from .run_state import RunState, RunStateStore
from .sink import TrafficSink
from .tokens import Token, TokenManager


class RunPhase(str, enum.Enum):
    IDLE = "idle"
    AUTHENTICATING = "authenticating"
    FETCHING = "fetching"
    REAUTHENTICATING = "reauthenticating"
    FETCHING_RETRY = "fetching_retry"
    UPSERTING = "upserting"
    COMMITTED = "committed"
    FAILED = "failed"


@dataclass(frozen=True)
class RunContext:
    """Everything a run depends on besides the remote systems."""

    previous: Optional[RunState]
    today: date
    from_override: Optional[str] = None
    to_override: Optional[str] = None
    now: Optional[datetime] = None


def resolve_date_range(ctx: RunContext) -> Tuple[str, str]:
    default = yesterday(ctx.today)
    if ctx.from_override is not None:
        from_date = ctx.from_override
    elif ctx.previous is not None:
        from_date = ctx.previous.to_date
    else:
        from_date = default
    to_date = ctx.to_override if ctx.to_override is not None else default
    return from_date, to_date


class Orchestrator:
    def __init__(
        self,
        store: RunStateStore,
        tokens: TokenManager,
        fetcher: TrafficFetcher,
        sink: TrafficSink,
        logger: logging.Logger,
        reauth_delay_seconds: float = 1.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.store = store
        self.tokens = tokens
        self.fetcher = fetcher
        self.sink = sink
        self.logger = logger
        self.reauth_delay_seconds = reauth_delay_seconds
        self._sleep = sleep
        self.phase = RunPhase.IDLE

    def _enter(self, phase: RunPhase) -> None:
        self.phase = phase
        self.logger.debug("phase", extra={"extra": {"phase": phase.value}})

    async def run(
        self,
        from_date: Optional[str] = None,
        to_date: Optional[str] = None,
        today: Optional[date] = None,
    ) -> RunState:
        log_json(self.logger, "run_start", from_override=from_date, to_override=to_date)
        try:
            ctx = RunContext(
                previous=self.store.most_recent_run(),
                today=today or datetime.now().date(),
                from_override=from_date,
                to_override=to_date,
            )
            return await self.run_with_context(ctx)
        except Exception as exc:
            details = {}
            if isinstance(exc, httpx.HTTPStatusError):
                details["status"] = exc.response.status_code
                details["body"] = exc.response.text
            log_json(
                self.logger,
                "run_failed",
                level=logging.ERROR,
                phase=self.phase.value,
                error_type=type(exc).__name__,
                error=str(exc),
                **details,
            )
            self.phase = RunPhase.FAILED
            raise
        finally:
            try:
                await self.sink.close()
            finally:
                self.store.close()

    async def run_with_context(self, ctx: RunContext) -> RunState:
        self._enter(RunPhase.AUTHENTICATING)
        from_date, to_date = resolve_date_range(ctx)
        log_json(
            self.logger,
            "date_range_resolved",
            from_date=from_date,
            to_date=to_date,
            continued=ctx.previous is not None and ctx.from_override is None,
        )
        token = await self.tokens.get_valid_token(ctx.previous, now=ctx.now)

        token, records = await self._fetch_with_reauth(token, from_date, to_date)

        self._enter(RunPhase.UPSERTING)
        if records:
            await self.sink.ensure_table()
        await self.sink.upsert(records)

        stored = self.store.append_run(
            RunState(
                access_token=token.value,
                access_token_expires_at=token.expires_at,
                from_date=from_date,
                to_date=to_date,
                record_count=len(records),
            )
        )
        self._enter(RunPhase.COMMITTED)
        log_json(self.logger, "run_committed", from_date=from_date, to_date=to_date, records=len(records))
        return stored

    async def _fetch_with_reauth(
        self, token: Token, from_date: str, to_date: str
    ) -> Tuple[Token, List[TrafficRecord]]:
        self._enter(RunPhase.FETCHING)
        try:
            return token, await self.fetcher.fetch(token, from_date, to_date)
        except TokenRejectedError as exc:
            log_json(self.logger, "token_rejected", level=logging.WARNING, endpoint=exc.endpoint)

        self._enter(RunPhase.REAUTHENTICATING)
        # Upstream rate limiter needs a pause before the token endpoint is hit again.
        await self._sleep(self.reauth_delay_seconds)
        token = await self.tokens.refresh()

        self._enter(RunPhase.FETCHING_RETRY)
        return token, await self.fetcher.fetch(token, from_date, to_date)
