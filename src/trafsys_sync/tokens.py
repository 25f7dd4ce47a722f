from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Optional

import httpx

from .api_client import ApiClient
from .exceptions import AuthenticationError
from .logging_utils import log_json
from .run_state import RunState


@dataclass(frozen=True)
class Token:
    value: str
    expires_at: datetime


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_token_response(payload: Any, now: Optional[datetime] = None) -> Token:
    """Build a Token from the password-grant response body.

    The absolute ``.expires`` field is preferred; ``expires_in`` (seconds)
    is the fallback.
    """
    if not isinstance(payload, dict) or not payload.get("access_token"):
        raise AuthenticationError("Token response has no access_token")
    now = now or _utcnow()
    expires_at: Optional[datetime] = None
    raw_expires = payload.get(".expires")
    if raw_expires:
        try:
            expires_at = parsedate_to_datetime(raw_expires)
        except (TypeError, ValueError):
            expires_at = None
        if expires_at is not None and expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
    if expires_at is None and payload.get("expires_in") is not None:
        try:
            expires_at = now + timedelta(seconds=int(payload["expires_in"]))
        except (TypeError, ValueError):
            expires_at = None
    if expires_at is None:
        raise AuthenticationError("Token response has no usable expiry")
    return Token(value=payload["access_token"], expires_at=expires_at)


class TokenManager:
    def __init__(
        self,
        api: ApiClient,
        username: str,
        password: str,
        safety_margin: timedelta = timedelta(minutes=5),
        logger=None,
    ) -> None:
        self.api = api
        self.username = username
        self.password = password
        self.safety_margin = safety_margin
        self.logger = logger

    async def get_valid_token(self, previous: Optional[RunState], now: Optional[datetime] = None) -> Token:
        now = now or _utcnow()
        if previous is not None and previous.access_token_expires_at - self.safety_margin > now:
            if self.logger:
                log_json(self.logger, "token_reused", expires_at=previous.access_token_expires_at.isoformat())
            return Token(value=previous.access_token, expires_at=previous.access_token_expires_at)
        return await self.refresh()

    async def refresh(self) -> Token:
        try:
            payload = await self.api.post_form(
                self.api.cfg.token_path,
                {
                    "username": self.username,
                    "password": self.password,
                    "grant_type": "password",
                },
            )
        except httpx.HTTPStatusError as exc:
            raise AuthenticationError(
                f"Token request failed with HTTP {exc.response.status_code}"
            ) from exc
        except (httpx.RequestError, ValueError) as exc:
            raise AuthenticationError(f"Token request failed: {exc}") from exc
        token = parse_token_response(payload)
        if self.logger:
            log_json(self.logger, "token_refreshed", expires_at=token.expires_at.isoformat())
        return token
