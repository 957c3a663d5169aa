# core/storage.py
import datetime
import json
import os
import sqlite3
import threading
from contextlib import contextmanager
from decimal import Decimal, InvalidOperation
from typing import Iterator, List, Optional

import pytz

from .errors import StoreError, StoreUnavailableError
from .logger import get_logger
from .models import CatalogRecord, VariantRecord

logger = get_logger(__name__)

DB_PATH = os.getenv("DB_PATH", "/data/catalog_mirror.sqlite3")

_COLUMNS = "id, external_id, title, handle, price, category, variants, created_at, updated_at"


def now_utc() -> datetime.datetime:
    return datetime.datetime.now(tz=pytz.UTC)


def to_db_ts(ts: datetime.datetime) -> str:
    # Fixed precision keeps lexical order == chronological order
    return ts.astimezone(pytz.UTC).isoformat(timespec="microseconds")


def from_db_ts(value: Optional[str]) -> Optional[datetime.datetime]:
    if not value:
        return None
    return datetime.datetime.fromisoformat(value)


def _escape_like(text: str) -> str:
    return text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _read_variants(raw: Optional[str], local_id: int) -> List[VariantRecord]:
    if not raw:
        return []
    try:
        data = json.loads(raw)
        return [VariantRecord.from_json(v) for v in data if isinstance(v, dict)]
    except (ValueError, TypeError, InvalidOperation) as e:
        logger.warning("Failed to parse variants JSON for product %s: %s", local_id, e)
        return []


def _write_variants(variants: List[VariantRecord]) -> str:
    return json.dumps([v.to_json() for v in variants or []])


def _row_to_record(row: tuple) -> CatalogRecord:
    local_id, external_id, title, handle, price, category, variants, created_at, updated_at = row
    try:
        price_value = Decimal(price) if price is not None else Decimal("0")
    except InvalidOperation:
        logger.warning("Stored price %r for product %s is not a decimal.", price, local_id)
        price_value = Decimal("0")
    return CatalogRecord(
        local_id=local_id,
        external_id=external_id,
        title=title,
        handle=handle,
        price=price_value,
        category=category,
        variants=_read_variants(variants, local_id),
        created_at=from_db_ts(created_at),
        updated_at=from_db_ts(updated_at),
    )


class CatalogStore:
    """
    SQLite-backed catalog of products, keyed by local id and unique on the
    upstream external id. Every write refreshes updated_at with a timestamp
    strictly greater than any previously issued one, so the prune order is
    total even for writes within the same clock tick.
    """

    def __init__(self, db_path: str = DB_PATH):
        self.db_path = db_path
        self._ts_lock = threading.Lock()
        self._last_ts: Optional[datetime.datetime] = None

    def _open(self) -> sqlite3.Connection:
        try:
            directory = os.path.dirname(self.db_path)
            if directory:
                os.makedirs(directory, exist_ok=True)
            return sqlite3.connect(self.db_path)
        except (OSError, sqlite3.Error) as e:
            raise StoreUnavailableError(f"cannot open catalog database {self.db_path}: {e}") from e

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        con = self._open()
        try:
            with con:
                yield con
        except sqlite3.Error as e:
            raise StoreError(str(e)) from e
        finally:
            con.close()

    def ensure_db(self) -> None:
        with self._connect() as con:
            con.execute(
                """
                CREATE TABLE IF NOT EXISTS products (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    external_id INTEGER UNIQUE,
                    title TEXT NOT NULL,
                    handle TEXT NOT NULL,
                    price TEXT NOT NULL DEFAULT '0',
                    category TEXT,
                    variants TEXT NOT NULL DEFAULT '[]',
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """
            )
            con.execute(
                "CREATE INDEX IF NOT EXISTS idx_products_updated ON products (updated_at DESC, id DESC)"
            )

    def _next_timestamp(self, con: sqlite3.Connection) -> datetime.datetime:
        with self._ts_lock:
            if self._last_ts is None:
                row = con.execute("SELECT MAX(updated_at) FROM products").fetchone()
                self._last_ts = from_db_ts(row[0]) if row else None
            ts = now_utc()
            if self._last_ts is not None and ts <= self._last_ts:
                ts = self._last_ts + datetime.timedelta(microseconds=1)
            self._last_ts = ts
            return ts

    # -- lookups -----------------------------------------------------------

    def find_by_external_id(self, external_id: int) -> Optional[CatalogRecord]:
        with self._connect() as con:
            row = con.execute(
                f"SELECT {_COLUMNS} FROM products WHERE external_id=?", (external_id,)
            ).fetchone()
        return _row_to_record(row) if row else None

    def find_by_id(self, local_id: int) -> Optional[CatalogRecord]:
        with self._connect() as con:
            row = con.execute(f"SELECT {_COLUMNS} FROM products WHERE id=?", (local_id,)).fetchone()
        return _row_to_record(row) if row else None

    def find_page(self, offset: int, limit: int) -> List[CatalogRecord]:
        """Newest-created first."""
        if limit <= 0:
            return []
        with self._connect() as con:
            rows = con.execute(
                f"SELECT {_COLUMNS} FROM products ORDER BY created_at DESC, id DESC LIMIT ? OFFSET ?",
                (limit, max(offset, 0)),
            ).fetchall()
        return [_row_to_record(r) for r in rows]

    def search_by_title(self, query: str) -> List[CatalogRecord]:
        term = (query or "").strip()
        if not term:
            return []
        pattern = f"%{_escape_like(term.lower())}%"
        with self._connect() as con:
            rows = con.execute(
                f"""
                SELECT {_COLUMNS} FROM products
                WHERE lower(title) LIKE ? ESCAPE '\\'
                ORDER BY created_at DESC, id DESC
            """,
                (pattern,),
            ).fetchall()
        return [_row_to_record(r) for r in rows]

    def count(self) -> int:
        with self._connect() as con:
            row = con.execute("SELECT COUNT(*) FROM products").fetchone()
        return row[0] if row and row[0] is not None else 0

    # -- writes ------------------------------------------------------------

    def upsert(self, record: CatalogRecord) -> CatalogRecord:
        """
        Insert when record.local_id is None, otherwise update by local id.
        Assigns local_id/created_at on first insert and refreshes updated_at
        on every write. The passed record is updated in place and returned.
        """
        with self._connect() as con:
            ts = self._next_timestamp(con)
            stamp = to_db_ts(ts)
            values = (
                record.external_id,
                record.title,
                record.handle,
                str(record.price),
                record.category,
                _write_variants(record.variants),
            )

            if record.local_id is None:
                cur = con.execute(
                    """
                    INSERT INTO products (
                        external_id, title, handle, price, category, variants,
                        created_at, updated_at
                    )
                    VALUES (?,?,?,?,?,?,?,?)
                    ON CONFLICT(external_id) DO UPDATE SET
                        title=excluded.title,
                        handle=excluded.handle,
                        price=excluded.price,
                        category=excluded.category,
                        variants=excluded.variants,
                        updated_at=excluded.updated_at
                """,
                    values + (stamp, stamp),
                )
                if record.external_id is None:
                    row = (cur.lastrowid, stamp)
                else:
                    row = con.execute(
                        "SELECT id, created_at FROM products WHERE external_id=?",
                        (record.external_id,),
                    ).fetchone()
                record.local_id = row[0]
                record.created_at = from_db_ts(row[1])
            else:
                cur = con.execute(
                    """
                    UPDATE products
                    SET external_id=?, title=?, handle=?, price=?, category=?, variants=?,
                        updated_at=?
                    WHERE id=?
                """,
                    values + (stamp, record.local_id),
                )
                if cur.rowcount == 0:
                    raise StoreError(f"no product with id {record.local_id}")
                if record.created_at is None:
                    row = con.execute(
                        "SELECT created_at FROM products WHERE id=?", (record.local_id,)
                    ).fetchone()
                    record.created_at = from_db_ts(row[0])

        record.updated_at = ts
        return record

    def delete_by_id(self, local_id: int) -> bool:
        with self._connect() as con:
            cur = con.execute("DELETE FROM products WHERE id=?", (local_id,))
        return cur.rowcount > 0

    def prune_to_newest(self, keep: int) -> int:
        """
        Keep the `keep` most recently updated products (ties: higher id wins)
        and delete the rest. Returns the number of deleted rows.
        """
        with self._connect() as con:
            cur = con.execute(
                """
                DELETE FROM products
                WHERE id IN (
                    SELECT id FROM products
                    ORDER BY updated_at DESC, id DESC
                    LIMIT -1 OFFSET ?
                )
            """,
                (max(keep, 0),),
            )
            deleted = cur.rowcount
        if deleted:
            logger.info("Pruned %d product(s) beyond the newest %d.", deleted, keep)
        return deleted
