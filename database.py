import json
import logging
import re
import sqlite3
import threading
from typing import Any, Optional

import requests
from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.pool import QueuePool

from config import Settings

logger = logging.getLogger(__name__)

_PHONE_NOISE = re.compile(r"[\s()]")
SQLITE_MAX_INTEGER = 2**63 - 1


# ---------------- Database ----------------
def get_engine_for_chinook_db(settings: Settings) -> Engine:
    """Open the Chinook database: a local file if configured, otherwise the downloaded script in memory."""
    if settings.CHINOOK_DB_PATH:
        logger.info("Opening Chinook database at %s", settings.CHINOOK_DB_PATH)
        return create_engine(f"sqlite:///{settings.CHINOOK_DB_PATH}")

    logger.info("Downloading Chinook SQL script from %s", settings.CHINOOK_SQL_URL)
    response = requests.get(settings.CHINOOK_SQL_URL, timeout=60)
    response.raise_for_status()
    source = sqlite3.connect(":memory:", check_same_thread=False)
    source.executescript(response.text)
    source_lock = threading.Lock()

    # Every pooled connection gets its own in-memory copy, so parallel tool calls never share one
    def connect():
        conn = sqlite3.connect(":memory:", check_same_thread=False)
        with source_lock:
            source.backup(conn)
        return conn

    return create_engine("sqlite://", creator=connect, poolclass=QueuePool)


def fetch_rows(engine: Engine, sql: str, params: Optional[dict] = None) -> list[dict[str, Any]]:
    with engine.connect() as conn:
        result = conn.execute(text(sql), params or {})
        return [dict(row._mapping) for row in result]


def serialize_rows(rows: list[dict[str, Any]]) -> str:
    # Dates and decimals are not JSON native
    return json.dumps(rows, default=str)


# ---------------- Customer lookup ----------------
def normalize_phone(phone: str) -> str:
    return _PHONE_NOISE.sub("", phone or "")


def get_customer_id_from_identifier(engine: Engine, identifier: str) -> Optional[int]:
    """
    Resolve a customer identifier to a CustomerId.

    identifier may be a numeric customer id, a phone number starting with '+',
    or an email address. Returns None when nothing matches.
    """
    identifier = (identifier or "").strip()
    if not identifier:
        return None

    if identifier.isascii() and identifier.isdigit():
        # Longer digit strings (order or card numbers) cannot be a CustomerId
        if int(identifier) > SQLITE_MAX_INTEGER:
            return None
        rows = fetch_rows(
            engine,
            "SELECT CustomerId FROM Customer WHERE CustomerId = :cid;",
            {"cid": int(identifier)},
        )
        return int(rows[0]["CustomerId"]) if rows else None

    if identifier.startswith("+"):
        rows = fetch_rows(
            engine,
            "SELECT CustomerId FROM Customer WHERE Phone = :phone;",
            {"phone": identifier},
        )
        if rows:
            return int(rows[0]["CustomerId"])

        # Stored numbers are formatted like "+1 (204) 452-6452"
        normalized = normalize_phone(identifier)
        for row in fetch_rows(engine, "SELECT CustomerId, Phone FROM Customer WHERE Phone LIKE '+%';"):
            if row["Phone"] and normalize_phone(row["Phone"]) == normalized:
                return int(row["CustomerId"])
        return None

    if "@" in identifier:
        rows = fetch_rows(
            engine,
            "SELECT CustomerId FROM Customer WHERE Email = :email;",
            {"email": identifier},
        )
        return int(rows[0]["CustomerId"]) if rows else None

    return None
