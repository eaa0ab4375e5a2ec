from __future__ import annotations

from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, AsyncIterator, Sequence

import aiosqlite

from driveflow.errors import InvariantViolationError


BUSY_TIMEOUT_SECONDS = 30.0


@dataclass(frozen=True, slots=True)
class TableSpec:
    name: str
    key_columns: tuple[str, ...]
    value_columns: tuple[str, ...]
    schema_sql: str


LOCAL_HASH_TABLE = TableSpec(
    name="local_hash_cache",
    key_columns=("path",),
    value_columns=("mtime", "hash"),
    schema_sql="""
CREATE TABLE IF NOT EXISTS local_hash_cache (
    path TEXT NOT NULL,
    mtime INTEGER NOT NULL,
    hash TEXT NOT NULL,
    access_time INTEGER NOT NULL,
    PRIMARY KEY (path)
);
""",
)

REMOTE_HASH_TABLE = TableSpec(
    name="remote_hash_cache",
    key_columns=("node_id", "volume_id", "share_id", "revision_id"),
    value_columns=("hash",),
    schema_sql="""
CREATE TABLE IF NOT EXISTS remote_hash_cache (
    node_id TEXT NOT NULL,
    volume_id TEXT NOT NULL,
    share_id TEXT NOT NULL,
    revision_id TEXT NOT NULL,
    hash TEXT NOT NULL,
    access_time INTEGER NOT NULL,
    PRIMARY KEY (node_id, volume_id, share_id, revision_id)
);
""",
)


@asynccontextmanager
async def _connect(db_path: Path, table: TableSpec) -> AsyncIterator[aiosqlite.Connection]:
    db_path.parent.mkdir(parents=True, exist_ok=True)
    # isolation_level=None: transactions are opened explicitly below.
    async with aiosqlite.connect(
        db_path, timeout=BUSY_TIMEOUT_SECONDS, isolation_level=None
    ) as db:
        db.row_factory = aiosqlite.Row
        await db.execute(table.schema_sql)
        yield db


def _where_clause(table: TableSpec) -> str:
    return " AND ".join(f"{column} = ?" for column in table.key_columns)


def _check_key(table: TableSpec, key: Sequence[Any]) -> tuple[Any, ...]:
    key = tuple(key)
    if len(key) != len(table.key_columns):
        raise ValueError(
            f"{table.name} expects {len(table.key_columns)} key part(s), got {len(key)}"
        )
    return key


async def ensure_db(db_path: Path, tables: Sequence[TableSpec] = (LOCAL_HASH_TABLE, REMOTE_HASH_TABLE)) -> None:
    db_path.parent.mkdir(parents=True, exist_ok=True)
    async with aiosqlite.connect(db_path, timeout=BUSY_TIMEOUT_SECONDS) as db:
        for table in tables:
            await db.execute(table.schema_sql)
        await db.commit()


async def fetch_and_touch(
    db_path: Path, table: TableSpec, key: Sequence[Any]
) -> dict[str, Any] | None:
    """Read the row for ``key`` and bump its access time in one transaction."""
    key = _check_key(table, key)
    columns = ", ".join(table.value_columns)
    where = _where_clause(table)

    async with _connect(db_path, table) as db:
        await db.execute("BEGIN IMMEDIATE")
        try:
            cursor = await db.execute(
                f"SELECT {columns} FROM {table.name} WHERE {where}",
                key,
            )
            rows = await cursor.fetchmany(2)
            await cursor.close()

            if len(rows) > 1:
                raise InvariantViolationError(
                    f"Expected at most one row in {table.name} for key {key!r}"
                )
            if not rows:
                await db.rollback()
                return None

            await db.execute(
                f"UPDATE {table.name} SET access_time = strftime('%s','now') WHERE {where}",
                key,
            )
            await db.commit()
        except BaseException:
            await db.rollback()
            raise

    row = rows[0]
    return {column: row[column] for column in table.value_columns}


async def upsert(
    db_path: Path,
    table: TableSpec,
    key: Sequence[Any],
    values: Sequence[Any],
) -> None:
    key = _check_key(table, key)
    values = tuple(values)
    if len(values) != len(table.value_columns):
        raise ValueError(
            f"{table.name} expects {len(table.value_columns)} value(s), got {len(values)}"
        )

    columns = (*table.key_columns, *table.value_columns)
    placeholders = ", ".join("?" for _ in columns)
    updates = ", ".join(
        f"{column}=excluded.{column}" for column in (*table.value_columns, "access_time")
    )
    conflict_target = ", ".join(table.key_columns)

    async with _connect(db_path, table) as db:
        await db.execute("BEGIN IMMEDIATE")
        try:
            await db.execute(
                f"""
                INSERT INTO {table.name} ({", ".join(columns)}, access_time)
                VALUES ({placeholders}, strftime('%s','now'))
                ON CONFLICT ({conflict_target}) DO UPDATE SET {updates}
                """,
                (*key, *values),
            )
            await db.commit()
        except BaseException:
            await db.rollback()
            raise


async def fetch_all(db_path: Path, table: TableSpec) -> list[dict[str, Any]]:
    columns = (*table.key_columns, *table.value_columns, "access_time")
    async with _connect(db_path, table) as db:
        cursor = await db.execute(
            f"SELECT {', '.join(columns)} FROM {table.name} ORDER BY {', '.join(table.key_columns)}"
        )
        rows = await cursor.fetchall()
        await cursor.close()

    return [{column: row[column] for column in columns} for row in rows]
