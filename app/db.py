"""Database helpers and dependencies for FastAPI routes."""

from __future__ import annotations

import logging
import os
import sqlite3
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator

import aiosqlite
from fastapi import HTTPException, status

from app.errors import StoreError

logger = logging.getLogger(__name__)

DEFAULT_DB_PATH = Path("comics.db")
DB_PATH_ENV_VAR = "COMICS_DB_PATH"
DB_TIMEOUT_ENV_VAR = "COMICS_DB_TIMEOUT"
DEFAULT_DB_TIMEOUT = 5.0


def resolve_db_path() -> Path:
    """Return the SQLite path, honoring the COMICS_DB_PATH override.

    If the resolved file does not exist, raise a 500 so the API fails loudly.
    """
    env_value = os.environ.get(DB_PATH_ENV_VAR)
    path = Path(env_value) if env_value else DEFAULT_DB_PATH

    if not path.exists():
        # Fail loudly so misconfigurations are obvious
        logger.error("database file not found at %s", path)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"database file not found at {path}",
        )
    return path


def resolve_db_timeout() -> float:
    raw = os.environ.get(DB_TIMEOUT_ENV_VAR)
    if not raw:
        return DEFAULT_DB_TIMEOUT
    try:
        value = float(raw)
    except ValueError:
        return DEFAULT_DB_TIMEOUT
    return max(value, 0.0)


async def open_connection(path: Path | str) -> aiosqlite.Connection:
    """Open a connection in autocommit mode with foreign keys enforced.

    Writes outside :func:`transaction` are durable immediately; multi-step
    operations opt into atomicity explicitly.
    """
    conn = await aiosqlite.connect(
        path, timeout=resolve_db_timeout(), isolation_level=None
    )
    conn.row_factory = aiosqlite.Row
    await conn.execute("PRAGMA foreign_keys = ON")
    return conn


async def get_connection() -> AsyncIterator[aiosqlite.Connection]:
    """FastAPI dependency that yields an async SQLite connection."""

    conn = await open_connection(resolve_db_path())
    try:
        yield conn
    finally:
        await conn.close()


@asynccontextmanager
async def transaction(conn: aiosqlite.Connection) -> AsyncIterator[aiosqlite.Connection]:
    """Run the enclosed statements as one atomic unit.

    ``BEGIN IMMEDIATE`` takes the write lock up front so two writers never
    deadlock on lock upgrade. Any exception, including task cancellation,
    rolls everything back before propagating.
    """
    if conn.in_transaction:
        raise RuntimeError("nested transactions are not supported")
    try:
        await conn.execute("BEGIN IMMEDIATE")
    except sqlite3.Error as exc:
        raise StoreError(f"could not start transaction: {exc}") from exc
    try:
        yield conn
    except BaseException:
        await conn.rollback()
        raise
    try:
        await conn.commit()
    except sqlite3.Error as exc:
        await conn.rollback()
        raise StoreError(f"could not commit transaction: {exc}") from exc
