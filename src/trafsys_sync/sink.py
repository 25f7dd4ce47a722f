from __future__ import annotations

from typing import Awaitable, Callable, Optional, Sequence

from psycopg import AsyncConnection, sql

from .fetcher import TrafficRecord
from .logging_utils import log_json


CREATE_TABLE_SQL = """
    CREATE TABLE IF NOT EXISTS {table} (
        site_code varchar(100) NOT NULL,
        location varchar(100) NOT NULL,
        is_internal smallint NOT NULL,
        period_ending timestamp NOT NULL,
        ins integer NOT NULL,
        outs integer NOT NULL,
        PRIMARY KEY (site_code, location, period_ending)
    )
"""

UPSERT_SQL = """
    INSERT INTO {table} (site_code, location, is_internal, period_ending, ins, outs)
    VALUES (%s, %s, %s, %s, %s, %s)
    ON CONFLICT (site_code, location, period_ending)
    DO UPDATE
       SET ins = EXCLUDED.ins,
           outs = EXCLUDED.outs
"""


def _table_identifier(name: str) -> sql.Identifier:
    return sql.Identifier(*name.split("."))


class TrafficSink:
    """PostgreSQL sink for hourly traffic records.

    The connection is opened on first use, so a run with nothing to write
    never touches the database.
    """

    def __init__(
        self,
        connect: Callable[[], Awaitable[AsyncConnection]],
        table: str = "trafsys_data",
        logger=None,
    ) -> None:
        self._connect = connect
        self._conn: Optional[AsyncConnection] = None
        self._table = _table_identifier(table)
        self.logger = logger

    async def _connection(self) -> AsyncConnection:
        if self._conn is None:
            self._conn = await self._connect()
        return self._conn

    async def close(self) -> None:
        if self._conn is not None:
            await self._conn.close()
            self._conn = None

    async def ensure_table(self) -> None:
        conn = await self._connection()
        async with conn.transaction():
            async with conn.cursor() as cur:
                await cur.execute(sql.SQL(CREATE_TABLE_SQL).format(table=self._table))

    async def upsert(self, records: Sequence[TrafficRecord]) -> int:
        if not records:
            if self.logger:
                log_json(self.logger, "upsert_skipped_empty")
            return 0
        conn = await self._connection()
        query = sql.SQL(UPSERT_SQL).format(table=self._table)
        affected = 0
        # One transaction per batch; any failure rolls back every row.
        async with conn.transaction():
            async with conn.cursor() as cur:
                for rec in records:
                    await cur.execute(
                        query,
                        (rec.site_code, rec.location, rec.is_internal, rec.period_ending, rec.ins, rec.outs),
                    )
                    affected += cur.rowcount
        if self.logger:
            log_json(self.logger, "upsert_done", records=len(records), rows_affected=affected)
        return affected


async def connect_postgres(conninfo: str, user: str, password: str) -> AsyncConnection:
    return await AsyncConnection.connect(conninfo, user=user, password=password, autocommit=True)
