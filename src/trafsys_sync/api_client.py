from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

from .exceptions import MalformedResponseError, TokenRejectedError


@dataclass
class ApiConfig:
    base_url: str
    timeout_seconds: float = 30
    token_path: str = "token"
    traffic_path: str = "api/traffic"


class ApiClient:
    """Async HTTP client for the TrafSys REST API.

    No retries happen at this level: non-2xx responses raise
    ``httpx.HTTPStatusError`` except 401, which raises
    ``TokenRejectedError`` so callers can re-authenticate.
    """

    def __init__(self, cfg: ApiConfig, transport: Optional[httpx.AsyncBaseTransport] = None) -> None:
        self.cfg = cfg
        self._client = httpx.AsyncClient(
            base_url=cfg.base_url,
            timeout=cfg.timeout_seconds,
            transport=transport,
        )
        self._logger = None

    def set_logger(self, logger) -> None:
        self._logger = logger

    async def close(self) -> None:
        await self._client.aclose()

    async def post_form(self, path: str, data: Dict[str, str]) -> Any:
        if self._logger:
            self._logger.info("http_request_start", extra={"extra": {"method": "POST", "path": path}})
        resp = await self._client.post(path, data=data)
        resp.raise_for_status()
        return resp.json()

    async def get_json(self, path: str, token: str, params: Optional[Dict[str, Any]] = None) -> Any:
        params = params or {}
        if self._logger:
            self._logger.info(
                "http_request_start",
                extra={"extra": {"method": "GET", "path": path, "params": params}},
            )
        resp = await self._client.get(
            path,
            params=params,
            headers={"Authorization": f"Bearer {token}"},
        )
        if resp.status_code == 401:
            raise TokenRejectedError(f"Bearer token rejected by {path}", endpoint=path)
        resp.raise_for_status()
        try:
            return resp.json()
        except ValueError as exc:
            raise MalformedResponseError(f"{path} returned a non-JSON body") from exc
