from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from datetime import timedelta
from typing import List, Optional

from dotenv import find_dotenv, load_dotenv

from .api_client import ApiClient, ApiConfig
from .config import Config, Credentials, load_config, load_credentials
from .dates import check_date_format
from .exceptions import ConfigError
from .fetcher import TrafficFetcher
from .logging_utils import log_json, setup_logging
from .orchestrate import Orchestrator
from .run_state import RunStateStore
from .sink import TrafficSink, connect_postgres
from .tokens import TokenManager


def _date_arg(value: str) -> str:
    try:
        return check_date_format(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected YYYY-MM-DD, got {value!r}")


def _parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="trafsys-sync")
    parser.add_argument("--from", dest="from_date", type=_date_arg, help="First date to fetch (YYYY-MM-DD)")
    parser.add_argument("--to", dest="to_date", type=_date_arg, help="Last date to fetch (YYYY-MM-DD)")
    parser.add_argument("--config", default="config.yaml", help="Path to config.yaml")
    parser.add_argument("--log-level", default="INFO")
    return parser.parse_args(argv)


async def _run(cfg: Config, creds: Credentials, args: argparse.Namespace, logger: logging.Logger) -> None:
    run_state_cfg = cfg.run_state
    store = RunStateStore(
        run_state_cfg["region"],
        table_name=run_state_cfg["table_name"],
        job=run_state_cfg["job"],
    )
    try:
        api = ApiClient(ApiConfig(**cfg.api))
        try:
            await _sync(api, store, cfg, creds, args, logger)
        finally:
            await api.close()
    finally:
        store.close()


async def _sync(
    api: ApiClient,
    store: RunStateStore,
    cfg: Config,
    creds: Credentials,
    args: argparse.Namespace,
    logger: logging.Logger,
) -> None:
    api.set_logger(logger)
    tokens = TokenManager(
        api,
        creds.api_username,
        creds.api_password,
        safety_margin=timedelta(minutes=cfg.token_safety_margin_minutes),
        logger=logger,
    )
    sink = TrafficSink(
        lambda: connect_postgres(creds.db_conninfo, creds.db_user, creds.db_password),
        table=cfg.sink_table,
        logger=logger,
    )
    orchestrator = Orchestrator(
        store,
        tokens,
        TrafficFetcher(api, logger=logger),
        sink,
        logger,
        reauth_delay_seconds=cfg.reauth_delay_seconds,
    )
    await orchestrator.run(from_date=args.from_date, to_date=args.to_date)


def main(argv: Optional[List[str]] = None) -> None:
    args = _parse_args(argv)
    load_dotenv(find_dotenv(usecwd=True))
    logger = setup_logging(args.log_level)
    try:
        creds = load_credentials()
        cfg = load_config(args.config)
    except (ConfigError, OSError) as exc:
        log_json(logger, "config_error", level=logging.ERROR, error=str(exc))
        sys.exit(1)

    try:
        asyncio.run(_run(cfg, creds, args, logger))
    except Exception as exc:
        log_json(
            logger,
            "sync_exit",
            level=logging.ERROR,
            exc_info=exc,
            status=1,
            error_type=type(exc).__name__,
            error=str(exc),
        )
        sys.exit(1)
