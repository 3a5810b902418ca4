"""Database connection, schema management, and lifespan for the request desk."""

from __future__ import annotations

import asyncio
import logging
import os
import sys
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from pathlib import Path

import aiosqlite
from fastmcp import FastMCP

from request_desk.config_schema import DeskConfig, load_config
from request_desk.identity import IdentityResolver
from request_desk.state_machine import TransitionPolicy
from request_desk.store import RecordStore

DB_FILENAME = "request_desk.sqlite3"
USER_CONFIG_DIRNAME = "request-desk"
DB_PATH_ENV_VAR = "DESK_DB_PATH"
CONFIG_PATH_ENV_VAR = "DESK_CONFIG_PATH"
logger = logging.getLogger("request_desk")

SCHEMA_SQL = """\
CREATE TABLE IF NOT EXISTS profiles (
    id          TEXT PRIMARY KEY,
    email       TEXT NOT NULL,
    role        TEXT NOT NULL,
    created_at  TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now'))
);
CREATE INDEX IF NOT EXISTS idx_profiles_role ON profiles(role);

CREATE TABLE IF NOT EXISTS requests (
    id          TEXT PRIMARY KEY,
    title       TEXT NOT NULL,
    client_id   TEXT NOT NULL REFERENCES profiles(id),
    reviewer_id TEXT REFERENCES profiles(id),
    status      TEXT NOT NULL DEFAULT 'New'
                CHECK(status IN ('New','In Progress','Info Needed',
                                 'Peer Review','Complete')),
    urgency     TEXT NOT NULL DEFAULT 'Normal'
                CHECK(urgency IN ('Normal','Urgent')),
    created_at  TEXT NOT NULL,
    updated_at  TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_requests_client ON requests(client_id);
CREATE INDEX IF NOT EXISTS idx_requests_status ON requests(status);

CREATE TABLE IF NOT EXISTS messages (
    id          TEXT PRIMARY KEY,
    request_id  TEXT NOT NULL REFERENCES requests(id),
    user_id     TEXT NOT NULL REFERENCES profiles(id),
    text        TEXT NOT NULL,
    is_internal INTEGER NOT NULL DEFAULT 0,
    created_at  TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_messages_request ON messages(request_id, created_at);

CREATE TABLE IF NOT EXISTS request_views (
    user_id        TEXT NOT NULL REFERENCES profiles(id),
    request_id     TEXT NOT NULL REFERENCES requests(id),
    last_viewed_at TEXT NOT NULL,
    PRIMARY KEY (user_id, request_id)
);
"""


@dataclass
class AppContext:
    """Application context: connection, store, policy, and identity resolver."""

    db: aiosqlite.Connection
    config: DeskConfig = field(default_factory=DeskConfig)
    write_lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    store: RecordStore = field(init=False)
    policy: TransitionPolicy = field(init=False)
    identity: IdentityResolver = field(init=False)

    def __post_init__(self) -> None:
        self.store = RecordStore(self.db, self.write_lock)
        self.policy = self.config.transition_policy()
        self.identity = IdentityResolver(self.store, self.config.identity_retry)


async def ensure_schema(db: aiosqlite.Connection) -> None:
    """Create tables and indexes if they don't exist."""
    await db.executescript(SCHEMA_SQL)


async def connect(path: str | Path) -> aiosqlite.Connection:
    """Open a connection configured for manual BEGIN IMMEDIATE transactions."""
    db = await aiosqlite.connect(
        str(path),
        isolation_level=None,  # CRITICAL: enables manual BEGIN IMMEDIATE
    )
    db.row_factory = aiosqlite.Row
    await db.execute("PRAGMA foreign_keys=ON")
    return db


def default_user_config_dir() -> Path:
    """Resolve a cross-platform user config directory for desk state."""
    xdg_config_home = os.environ.get("XDG_CONFIG_HOME")
    if xdg_config_home:
        return Path(xdg_config_home).expanduser() / USER_CONFIG_DIRNAME

    if os.name == "nt":
        appdata = os.environ.get("APPDATA")
        if appdata:
            return Path(appdata).expanduser() / USER_CONFIG_DIRNAME
        return Path.home() / "AppData" / "Roaming" / USER_CONFIG_DIRNAME

    if sys.platform == "darwin":
        return Path.home() / "Library" / "Application Support" / USER_CONFIG_DIRNAME

    return Path.home() / ".config" / USER_CONFIG_DIRNAME


def resolve_db_path() -> Path:
    """Resolve the database path.

    Priority:
    1) Explicit DESK_DB_PATH environment variable
    2) Standard user config directory (~/.config, APPDATA, or Application Support)
    """
    configured_path = os.environ.get(DB_PATH_ENV_VAR)
    if configured_path:
        return Path(configured_path).expanduser()
    return default_user_config_dir() / DB_FILENAME


def resolve_config_path() -> Path:
    configured_path = os.environ.get(CONFIG_PATH_ENV_VAR)
    if configured_path:
        return Path(configured_path).expanduser()
    return default_user_config_dir() / "config.json"


@asynccontextmanager
async def desk_lifespan(server: FastMCP) -> AsyncIterator[AppContext]:
    """Open SQLite in WAL mode at server startup, checkpoint and close on shutdown."""
    del server
    db_path = resolve_db_path()
    config_path = resolve_config_path()
    config = load_config(config_path)
    if os.environ.get(CONFIG_PATH_ENV_VAR):
        logger.info("Using config path override from %s: %s", CONFIG_PATH_ENV_VAR, config_path)

    db_path.parent.mkdir(parents=True, exist_ok=True)
    db = await connect(db_path)
    await db.execute("PRAGMA journal_mode=WAL")
    await db.execute("PRAGMA busy_timeout=5000")
    await db.execute("PRAGMA synchronous=NORMAL")
    await ensure_schema(db)

    ctx = AppContext(db=db, config=config)
    logger.info("Request desk ready - db=%s, config=%s", db_path, config_path)
    try:
        yield ctx
    finally:
        await db.execute("PRAGMA wal_checkpoint(TRUNCATE)")
        await db.close()
