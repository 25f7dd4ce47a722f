from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

import yaml

from .exceptions import ConfigError


REQUIRED_ENV = (
    "TRAFSYS_DB_USER",
    "TRAFSYS_DB_PASSWORD",
    "TRAFSYS_DB_CONNECTION_STRING",
    "TRAFSYS_USER",
    "TRAFSYS_PASSWORD",
)


@dataclass
class Config:
    raw: Dict[str, Any]

    @property
    def api(self) -> Dict[str, Any]:
        api = {
            "timeout_seconds": 30,
            "token_path": "token",
            "traffic_path": "api/traffic",
        }
        api.update(self.raw["api"])
        return api

    @property
    def run_state(self) -> Dict[str, Any]:
        run_state = {
            "region": "us-east-1",
            "table_name": "trafsys_run_state",
            "job": "trafsys_traffic",
        }
        run_state.update(self.raw.get("run_state") or {})
        return run_state

    @property
    def sink_table(self) -> str:
        return (self.raw.get("sink") or {}).get("table", "trafsys_data")

    @property
    def reauth_delay_seconds(self) -> float:
        return float((self.raw.get("sync") or {}).get("reauth_delay_seconds", 1.0))

    @property
    def token_safety_margin_minutes(self) -> float:
        return float((self.raw.get("sync") or {}).get("token_safety_margin_minutes", 5))


@dataclass(frozen=True)
class Credentials:
    db_user: str
    db_password: str
    db_conninfo: str
    api_username: str
    api_password: str


def load_config(path: str = "config.yaml") -> Config:
    with open(path, "r", encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}
    if not isinstance(raw, dict):
        raise ConfigError(f"{path} must contain a mapping at the top level")
    api = raw.get("api")
    if not isinstance(api, dict):
        raise ConfigError("api.base_url is required in " + path)
    base_url = api.get("base_url")
    if not base_url:
        raise ConfigError("api.base_url is required in " + path)
    if not isinstance(base_url, str):
        raise ConfigError(f"api.base_url must be a string in {path}")
    if not base_url.endswith("/"):
        raw["api"]["base_url"] = base_url + "/"
    return Config(raw)


def load_credentials(env: Optional[Mapping[str, str]] = None) -> Credentials:
    env = os.environ if env is None else env
    missing = [key for key in REQUIRED_ENV if not env.get(key)]
    if missing:
        raise ConfigError(
            "Missing required environment variables: " + ", ".join(missing),
            missing=missing,
        )
    return Credentials(
        db_user=env["TRAFSYS_DB_USER"],
        db_password=env["TRAFSYS_DB_PASSWORD"],
        db_conninfo=env["TRAFSYS_DB_CONNECTION_STRING"],
        api_username=env["TRAFSYS_USER"],
        api_password=env["TRAFSYS_PASSWORD"],
    )
