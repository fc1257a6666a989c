"""Document store helpers backed by a PostgreSQL JSONB table.

Documents live in ``documents(collection TEXT, id TEXT, data JSONB,
PRIMARY KEY (collection, id))``.
"""

import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple

import psycopg2
from psycopg2 import extras, pool

from geobackfill.core.config import get_settings
from geobackfill.models import GeocodeResult

logger = logging.getLogger(__name__)

_connection_pool: Optional[pool.SimpleConnectionPool] = None

Document = Tuple[str, Dict[str, Any]]


def init_pool(minconn: int = 1, maxconn: int = 5) -> pool.SimpleConnectionPool:
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


def ping() -> None:
    """Round-trip a trivial query so bad credentials surface before any work."""
    with get_connection() as conn:
        with conn.cursor() as cur:
            cur.execute("SELECT 1")
            cur.fetchone()
        conn.rollback()


def count_documents(collection: str) -> int:
    with get_connection() as conn:
        with conn.cursor() as cur:
            cur.execute("SELECT COUNT(*) FROM documents WHERE collection = %s", (collection,))
            row = cur.fetchone()
        conn.rollback()
    return int(row[0]) if row else 0


_PAGE_QUERY = """
SELECT id, data
FROM documents
WHERE collection = %(collection)s
  AND (%(after)s::text IS NULL OR id > %(after)s::text)
ORDER BY id
LIMIT %(limit)s
"""


def iter_documents(collection: str, page_size: int = 500) -> Iterator[Document]:
    """Yield ``(id, data)`` for every document, one keyset page at a time."""
    after: Optional[str] = None
    while True:
        with get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(_PAGE_QUERY, {"collection": collection, "after": after, "limit": page_size})
                rows = cur.fetchall()
            conn.rollback()
        for doc_id, data in rows:
            yield doc_id, data or {}
        if len(rows) < page_size:
            return
        after = rows[-1][0]


def geocoding_fields(result: GeocodeResult, geocoded_at: Optional[datetime] = None) -> Dict[str, Any]:
    """The four fields the migration owns on a record."""
    geocoded_at = geocoded_at or datetime.now(timezone.utc)
    return {
        "coordinates": result.coordinate.to_dict(),
        "geocodedAt": geocoded_at.isoformat(),
        "geocodingSource": result.source.value,
        "placeId": result.place_id,
    }


# Only documents still lacking numeric coordinates are touched, so a
# concurrent or repeated run cannot overwrite an earlier result.
_CONDITIONAL_UPDATE = """
UPDATE documents
SET data = data || %(patch)s::jsonb
WHERE collection = %(collection)s
  AND id = %(id)s
  AND NOT COALESCE(
    jsonb_typeof(data #> '{coordinates,lat}') = 'number'
    AND jsonb_typeof(data #> '{coordinates,lng}') = 'number',
    false
  )
"""


def commit_updates(collection: str, updates: List[Tuple[str, Dict[str, Any]]]) -> int:
    """Apply staged field updates in one transaction; return rows changed."""
    if not updates:
        return 0
    changed = 0
    with get_connection() as conn:
        try:
            with conn.cursor() as cur:
                for doc_id, fields in updates:
                    cur.execute(
                        _CONDITIONAL_UPDATE,
                        {"patch": extras.Json(fields), "collection": collection, "id": doc_id},
                    )
                    changed += max(cur.rowcount, 0)
            conn.commit()
        except psycopg2.Error:
            conn.rollback()
            raise
    logger.debug("Committed %d/%d updates to %s", changed, len(updates), collection)
    return changed


class BatchWriter:
    """Buffers document updates and commits them ``batch_size`` at a time.

    Leaving the ``with`` block flushes whatever is still staged, whether the
    block ended normally or by an exception. When ``on_failure`` is given, a
    batch whose commit fails is handed to it as ``(batch, exc)`` and the
    writer carries on; otherwise the store error propagates.
    """

    def __init__(
        self,
        collection: str,
        batch_size: int = 500,
        on_failure: Optional[Callable[[List[Tuple[str, Dict[str, Any]]], Exception], None]] = None,
    ) -> None:
        if batch_size <= 0:
            raise ValueError("batch_size must be positive")
        self.collection = collection
        self.batch_size = batch_size
        self.on_failure = on_failure
        self.committed = 0
        self._staged: List[Tuple[str, Dict[str, Any]]] = []

    def __enter__(self) -> "BatchWriter":
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        try:
            self.flush()
        except Exception:
            if exc_type is None:
                raise
            # keep the in-flight exception; the flush error is only logged
            logger.exception("Final flush of %s failed while aborting on %s", self.collection, exc_type.__name__)
        return False

    def stage(self, doc_id: str, fields: Dict[str, Any]) -> None:
        self._staged.append((doc_id, fields))
        if len(self._staged) >= self.batch_size:
            self.flush()

    def flush(self) -> int:
        if not self._staged:
            return 0
        staged, self._staged = self._staged, []
        try:
            changed = commit_updates(self.collection, staged)
        except psycopg2.Error as exc:
            if self.on_failure is None:
                raise
            logger.error("Failed to commit %d %s updates: %s", len(staged), self.collection, exc)
            self.on_failure(staged, exc)
            return 0
        self.committed += len(staged)
        logger.info("  Updated %d %s", len(staged), self.collection)
        return changed
