from __future__ import annotations

import logging
import sqlite3

import pytest

from pos_service.config import load_settings
from pos_service.database import INVENTORY_SCHEMA_SQL, apply_schema, get_connection, schema_statements
from pos_service.events import EventBus


def test_settings_from_environment(monkeypatch):
    monkeypatch.setenv("BACKEND_URL", "http://pos-backend:3000")
    monkeypatch.setenv("ALLOWED_ORIGINS", "http://till-1, http://till-2")
    monkeypatch.setenv("REFUNDS_SMALL_AMOUNT_THRESHOLD", "25")
    monkeypatch.setenv("REFUNDS_ALLOWED_PAYMENT_METHODS", "cash,card")
    monkeypatch.setenv("REFUNDS_AUTO_APPROVE_SMALL_AMOUNTS", "false")
    monkeypatch.setenv("SCANNER_ENABLED", "yes")
    monkeypatch.setenv("QUEUE_MAX_RETRIES", "3")

    settings = load_settings()

    assert settings.backend_url == "http://pos-backend:3000"
    assert settings.allowed_origins == ["http://till-1", "http://till-2"]
    assert settings.queue_max_retries == 3
    assert settings.refund_policy.small_amount_threshold == 25.0
    assert settings.refund_policy.allowed_payment_methods == ("cash", "card")
    assert settings.refund_policy.auto_approve_small_amounts is False
    assert settings.refund_policy.max_manager_refund == 200.0
    assert settings.integration.scanner_enabled is True
    assert settings.integration.business_name == "KHH RESTAURANT"


def test_failing_listener_does_not_block_others():
    bus = EventBus()
    received = []

    def broken(payload):
        raise RuntimeError("boom")

    bus.subscribe("orders_updated", broken)
    unsubscribe = bus.subscribe("orders_updated", received.append)
    bus.publish("orders_updated", 1)
    unsubscribe()
    bus.publish("orders_updated", 2)

    assert received == [1]


def test_sqlite_inventory_connection_and_schema(tmp_path):
    conn = get_connection(f"sqlite:///{tmp_path / 'data' / 'inventory.db'}")
    try:
        apply_schema(conn, INVENTORY_SCHEMA_SQL)
        tables = {row["name"] for row in conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'")}
    finally:
        conn.close()

    assert {"inventory", "recipe_ingredients"} <= tables
    assert len(schema_statements(INVENTORY_SCHEMA_SQL)) == 2


def test_connection_retries_then_raises(tmp_path, monkeypatch, caplog):
    monkeypatch.setenv("DB_CONNECT_MAX_RETRIES", "3")
    monkeypatch.setenv("DB_CONNECT_RETRY_DELAY", "0")

    with caplog.at_level(logging.WARNING, logger="pos_service.database"):
        with pytest.raises(sqlite3.OperationalError):
            get_connection(f"sqlite:///{tmp_path}")

    assert [record.getMessage().split(":")[0] for record in caplog.records] == [
        "Inventory database not reachable (attempt 1/3)",
        "Inventory database not reachable (attempt 2/3)",
    ]
