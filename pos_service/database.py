from __future__ import annotations

import logging
import os
import sqlite3
import time
from pathlib import Path
from typing import List

import psycopg
from psycopg.rows import dict_row

logger = logging.getLogger(__name__)

INVENTORY_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS inventory (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    quantity REAL NOT NULL DEFAULT 0,
    unit TEXT,
    last_updated TEXT
);

CREATE TABLE IF NOT EXISTS recipe_ingredients (
    menu_item_id TEXT NOT NULL,
    inventory_item_id TEXT NOT NULL,
    quantity REAL NOT NULL,
    unit TEXT,
    PRIMARY KEY (menu_item_id, inventory_item_id),
    FOREIGN KEY (inventory_item_id) REFERENCES inventory (id)
);
"""

QUEUE_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS queued_requests (
    id TEXT PRIMARY KEY,
    position INTEGER NOT NULL,
    target TEXT NOT NULL,
    method TEXT NOT NULL,
    body_json TEXT,
    timestamp REAL NOT NULL,
    retry_count INTEGER NOT NULL DEFAULT 0
);
"""


def _build_database_url() -> str:
    if url := os.environ.get("DATABASE_URL"):
        return url
    user = os.environ.get("DB_USER", "pos")
    password = os.environ.get("DB_PASSWORD", "pos")
    host = os.environ.get("DB_HOST", "inventory-db")
    port = os.environ.get("DB_PORT", "5432")
    name = os.environ.get("DB_NAME", "inventory")
    return f"postgresql://{user}:{password}@{host}:{port}/{name}"


DATABASE_URL = _build_database_url()

CONNECT_ERRORS = (psycopg.OperationalError, sqlite3.OperationalError)


def get_connection(url: str | None = None):
    """Open the inventory database, waiting for it to accept connections.

    Attempts and spacing come from ``DB_CONNECT_MAX_RETRIES`` and
    ``DB_CONNECT_RETRY_DELAY``; the last connect error is re-raised.
    """
    target = url or DATABASE_URL
    attempts = max(1, int(os.environ.get("DB_CONNECT_MAX_RETRIES", "30")))
    delay = float(os.environ.get("DB_CONNECT_RETRY_DELAY", "2"))
    attempt = 1
    while True:
        try:
            return _open(target)
        except CONNECT_ERRORS as exc:
            if attempt >= attempts:
                raise
            logger.warning(
                "Inventory database not reachable (attempt %d/%d): %s", attempt, attempts, exc
            )
            attempt += 1
            time.sleep(delay)


def _open(url: str):
    if url.startswith("sqlite:///"):
        return connect_sqlite(url[len("sqlite:///"):])
    # Deductions run inside explicit transactions, so no autocommit here.
    return psycopg.connect(url, row_factory=dict_row)


def connect_sqlite(path: str) -> sqlite3.Connection:
    if path != ":memory:":
        Path(path).parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(path)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON;")
    return conn


def queue_connection_factory(path: str):
    def factory() -> sqlite3.Connection:
        return connect_sqlite(path)

    return factory


def apply_schema(conn, schema_sql: str) -> None:
    if isinstance(conn, sqlite3.Connection):
        conn.executescript(schema_sql)
    else:
        # psycopg runs one statement per execute call.
        with conn.cursor() as cur:
            for statement in schema_statements(schema_sql):
                cur.execute(statement)
    conn.commit()


def schema_statements(schema_sql: str) -> List[str]:
    return [part.strip() for part in schema_sql.split(";") if part.strip()]


def placeholder(conn) -> str:
    module = conn.__class__.__module__
    return "%s" if "psycopg" in module else "?"
