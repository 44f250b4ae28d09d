"""Database helpers for persisting accepted records."""

import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import psycopg2
from psycopg2 import extras, pool

from harvester.core.config import get_settings
from harvester.core.models import AcceptedRecord

logger = logging.getLogger(__name__)

_connection_pool: Optional[pool.SimpleConnectionPool] = None


def init_pool(minconn: int = 1, maxconn: int = 2) -> pool.SimpleConnectionPool:
    """Initialise and return the shared connection pool."""
    global _connection_pool
    if _connection_pool is None:
        settings = get_settings()
        if not settings.database_url:
            raise RuntimeError("DATABASE_URL is required for database connections")
        _connection_pool = pool.SimpleConnectionPool(
            minconn,
            maxconn,
            dsn=settings.database_url,
            connect_timeout=10,
        )
        logger.info("Database connection pool initialised")
    return _connection_pool


@contextmanager
def get_connection():
    """Context manager yielding a pooled connection."""
    pg_pool = init_pool()
    conn = pg_pool.getconn()
    try:
        yield conn
    finally:
        pg_pool.putconn(conn)


def _prepare_params(row: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "business_name": row.get("business_name"),
        "address": row.get("address"),
        "phone": row.get("phone"),
        "website": row.get("website"),
        "rating": row.get("rating"),
        "reviews_count": row.get("reviews_count"),
        "category": row.get("category"),
        "price_level": row.get("price_level"),
        "plus_code": row.get("plus_code"),
        "email": row.get("email"),
        "filter_status": row.get("filter_status"),
        "query_search_term": row.get("query_searchTerm"),
        "query_location": row.get("query_location"),
        "query_index": row.get("query_index"),
        "raw": extras.Json(row),
        "scraped_at": row.get("scraped_at") or datetime.now(timezone.utc),
    }


# Plain INSERT: deduplication is decided before records reach the sink.
_INSERT_PLACE = """
INSERT INTO places (
    business_name,
    address,
    phone,
    website,
    rating,
    reviews_count,
    category,
    price_level,
    plus_code,
    email,
    filter_status,
    query_search_term,
    query_location,
    query_index,
    raw,
    scraped_at
) VALUES (
    %(business_name)s,
    %(address)s,
    %(phone)s,
    %(website)s,
    %(rating)s,
    %(reviews_count)s,
    %(category)s,
    %(price_level)s,
    %(plus_code)s,
    %(email)s,
    %(filter_status)s,
    %(query_search_term)s,
    %(query_location)s,
    %(query_index)s,
    %(raw)s,
    %(scraped_at)s
);
"""


def insert_place(row: Dict[str, Any]) -> None:
    """Append one accepted record to the places table."""
    params = _prepare_params(row)
    if not params["business_name"]:
        raise ValueError("business_name is required for insert")

    with get_connection() as conn:
        with conn.cursor() as cur:
            cur.execute(_INSERT_PLACE, params)
        conn.commit()
        logger.debug("Inserted place %s", params["business_name"])


class PostgresSink:
    def __init__(self) -> None:
        init_pool()
        self.count = 0

    def append(self, record: AcceptedRecord) -> None:
        try:
            insert_place(record.to_dict())
        except psycopg2.Error as exc:
            logger.error("Failed to insert %s: %s", record.record.business_name, exc)
            raise
        self.count += 1

    def close(self) -> None:
        global _connection_pool
        if _connection_pool is not None:
            _connection_pool.closeall()
            _connection_pool = None
