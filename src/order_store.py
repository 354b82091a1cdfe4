"""
SQLite-backed store of tracked orders.

Holds every imported order, active and archived, in one `orders` table and
implements the order lifecycle:

    import ──> pending ──scan──> scanned
                  ^                 │
                  └──reset_scan─────┘
    active ──archive──> archived ──restore / re-import──> active (pending)
                           │
                           └──delete_archived / purge_older_than──> gone

A partial unique index keeps tracking numbers unique among active orders
while letting archived orders share a tracking number with a re-imported one.

Each public method opens its own connection and runs in one transaction, so
the store can be shared by the import pipeline, scan station and reporting
views without holding locks between calls.
"""

import sqlite3
import uuid
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Iterable, Iterator, List, Optional, Union

from app_config import AppConfig, get_db_path
from exceptions import StorageError, ValidationError
from logger import get_logger
from models import (
    DESCRIPTIVE_FIELDS,
    ImportOutcome,
    ImportResult,
    Order,
    OrderCandidate,
    OrderStats,
    OrderStatus,
    RestoreOutcome,
    ScanOutcome,
    ScanResult,
)

logger = get_logger(__name__)

DEFAULT_RETENTION_DAYS = 7

# Stay below SQLite's host parameter limit for IN (...) lists
_MAX_IDS_PER_STATEMENT = 500

_SCHEMA = """
CREATE TABLE IF NOT EXISTS orders (
    id                   TEXT PRIMARY KEY,
    tracking_number      TEXT NOT NULL,
    order_id             TEXT,
    variation_name       TEXT,
    receiver_name        TEXT,
    buyer_user_name      TEXT,
    jumlah               TEXT,
    shipping_method      TEXT,
    order_creation_date  TEXT,
    status               TEXT NOT NULL DEFAULT 'pending'
                         CHECK (status IN ('pending', 'scanned')),
    scanned_at           TEXT,
    created_at           TEXT NOT NULL,
    archived_at          TEXT,
    CHECK ((status = 'scanned') = (scanned_at IS NOT NULL))
);
CREATE UNIQUE INDEX IF NOT EXISTS idx_orders_active_tracking
    ON orders (tracking_number) WHERE archived_at IS NULL;
CREATE INDEX IF NOT EXISTS idx_orders_tracking_archived
    ON orders (tracking_number, archived_at);
CREATE INDEX IF NOT EXISTS idx_orders_archived_at
    ON orders (archived_at);
"""

_INSERT_SQL = """
    INSERT INTO orders
        (id, tracking_number, order_id, variation_name, receiver_name,
         buyer_user_name, jumlah, shipping_method, order_creation_date,
         status, scanned_at, created_at, archived_at)
    VALUES
        (:id, :tracking_number, :order_id, :variation_name, :receiver_name,
         :buyer_user_name, :jumlah, :shipping_method, :order_creation_date,
         'pending', NULL, :created_at, NULL)
"""

_RESTORE_WITH_OVERWRITE_SQL = """
    UPDATE orders SET
        archived_at = NULL,
        status = 'pending',
        scanned_at = NULL,
        order_id = :order_id,
        variation_name = :variation_name,
        receiver_name = :receiver_name,
        buyer_user_name = :buyer_user_name,
        jumlah = :jumlah,
        shipping_method = :shipping_method,
        order_creation_date = :order_creation_date
    WHERE id = :id AND archived_at IS NOT NULL
"""


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _to_db_time(value: datetime) -> str:
    """Fixed-width UTC ISO text so timestamps compare correctly as strings."""
    return value.astimezone(timezone.utc).isoformat(timespec='microseconds')


def _chunks(ids: List[str]) -> Iterator[List[str]]:
    for start in range(0, len(ids), _MAX_IDS_PER_STATEMENT):
        yield ids[start:start + _MAX_IDS_PER_STATEMENT]


def _placeholders(count: int) -> str:
    return ", ".join("?" * count)


def _normalize_ids(order_ids: Union[str, Iterable[str], None]) -> List[str]:
    if order_ids is None:
        return []
    if isinstance(order_ids, str):
        order_ids = [order_ids]
    # Deduplicate while keeping order
    return list(dict.fromkeys(i for i in order_ids if i))


class OrderStore:
    """
    Persisted order collection and its state transitions.

    Args:
        db_path: SQLite database file, created on first use
        timeout: Seconds to wait when another process holds the write lock
        clock: Returns the current time, injectable for tests
    """

    def __init__(self, db_path: Union[str, Path], timeout: float = 5,
                 clock: Optional[Callable[[], datetime]] = None):
        self._path = str(db_path)
        self._timeout = timeout
        self._clock = clock or _utc_now
        self._init_schema()
        logger.info(f"OrderStore opened: {self._path}")

    @property
    def db_path(self) -> str:
        return self._path

    # ------------------------------------------------------------------
    # Connection handling
    # ------------------------------------------------------------------

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._path, timeout=self._timeout)
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def _transaction(self, operation: str) -> Iterator[sqlite3.Connection]:
        """
        Run a block in one transaction on a fresh connection.

        Commits on success, rolls back on any exception. sqlite3 errors are
        re-raised as StorageError tagged with the operation name.
        """
        conn = None
        try:
            conn = self._connect()
            with conn:
                yield conn
        except sqlite3.Error as e:
            logger.error(f"Storage failure during {operation}: {e}")
            raise StorageError(str(e), operation=operation) from e
        finally:
            if conn is not None:
                conn.close()

    def _init_schema(self) -> None:
        with self._transaction("init_schema") as conn:
            conn.executescript(_SCHEMA)

    def _now(self) -> str:
        return _to_db_time(self._clock())

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    @staticmethod
    def _select_active(conn: sqlite3.Connection, tracking_number: str) -> Optional[sqlite3.Row]:
        return conn.execute(
            "SELECT * FROM orders WHERE tracking_number = ? AND archived_at IS NULL",
            (tracking_number,)
        ).fetchone()

    @staticmethod
    def _select_archived(conn: sqlite3.Connection, tracking_number: str) -> Optional[sqlite3.Row]:
        return conn.execute(
            """
            SELECT * FROM orders
            WHERE tracking_number = ? AND archived_at IS NOT NULL
            ORDER BY archived_at DESC
            LIMIT 1
            """,
            (tracking_number,)
        ).fetchone()

    @staticmethod
    def _select_by_id(conn: sqlite3.Connection, order_id: str) -> Optional[sqlite3.Row]:
        return conn.execute("SELECT * FROM orders WHERE id = ?", (order_id,)).fetchone()

    def get(self, order_id: str) -> Optional[Order]:
        """Fetch any order, active or archived, by identifier."""
        with self._transaction("get") as conn:
            row = self._select_by_id(conn, order_id)
        return Order.from_row(row) if row else None

    def find_active_by_tracking(self, tracking_number: str) -> Optional[Order]:
        """
        Find the active order with this tracking number.

        The lookup trims surrounding whitespace and is otherwise exact.
        Archived orders are never returned.
        """
        tracking_number = (tracking_number or "").strip()
        if not tracking_number:
            return None
        with self._transaction("find_active_by_tracking") as conn:
            row = self._select_active(conn, tracking_number)
        return Order.from_row(row) if row else None

    def find_archived_by_tracking(self, tracking_number: str) -> Optional[Order]:
        """Return the most recently archived order with this tracking number."""
        tracking_number = (tracking_number or "").strip()
        if not tracking_number:
            return None
        with self._transaction("find_archived_by_tracking") as conn:
            row = self._select_archived(conn, tracking_number)
        return Order.from_row(row) if row else None

    # ------------------------------------------------------------------
    # Import
    # ------------------------------------------------------------------

    def insert_or_update_from_import(self, candidate: OrderCandidate) -> ImportResult:
        """
        Reconcile one import candidate against storage.

        Matching by tracking number:
        1. An active order exists -> DUPLICATE, nothing is written.
        2. An archived order exists -> RESTORED: the archived record keeps its
           id, becomes active and pending again, and its descriptive fields
           are overwritten with the imported values.
        3. Otherwise -> INSERTED as a new pending order.

        Storage failures are returned as FAILED with the error message rather
        than raised, so a batch import can continue with the next row.

        Args:
            candidate: Validated import row (a mapping is converted first)

        Raises:
            ValidationError: If a mapping without a tracking number is passed
        """
        if not isinstance(candidate, OrderCandidate):
            candidate = OrderCandidate.from_dict(candidate)

        tracking_number = candidate.tracking_number
        values = candidate.descriptive_values()

        try:
            with self._transaction("insert_or_update_from_import") as conn:
                if self._select_active(conn, tracking_number) is not None:
                    logger.debug(f"Import duplicate (already active): {tracking_number}")
                    return ImportResult(ImportOutcome.DUPLICATE, tracking_number)

                archived = self._select_archived(conn, tracking_number)
                if archived is not None:
                    conn.execute(_RESTORE_WITH_OVERWRITE_SQL, {'id': archived['id'], **values})
                    order = Order.from_row(self._select_by_id(conn, archived['id']))
                    logger.info(f"Restored archived order from import: {tracking_number} (id={order.id})")
                    return ImportResult(ImportOutcome.RESTORED, tracking_number, order=order)

                new_id = uuid.uuid4().hex
                try:
                    conn.execute(_INSERT_SQL, {
                        'id': new_id,
                        'tracking_number': tracking_number,
                        'created_at': self._now(),
                        **values,
                    })
                except sqlite3.IntegrityError:
                    # Another writer activated this tracking number since our lookup
                    logger.warning(f"Import duplicate detected on insert: {tracking_number}")
                    return ImportResult(ImportOutcome.DUPLICATE, tracking_number)

                order = Order.from_row(self._select_by_id(conn, new_id))
                logger.debug(f"Inserted order: {tracking_number} (id={new_id})")
                return ImportResult(ImportOutcome.INSERTED, tracking_number, order=order)

        except StorageError as e:
            return ImportResult(ImportOutcome.FAILED, tracking_number, error=str(e))

    # ------------------------------------------------------------------
    # Scanning
    # ------------------------------------------------------------------

    def mark_scanned(self, tracking_number: str) -> ScanResult:
        """
        Mark the active order with this tracking number as scanned.

        Returns:
            ScanResult with outcome:
            - SUCCESS: order moved pending -> scanned, scanned_at stamped
            - NOT_FOUND: no active order has this tracking number
            - ALREADY_SCANNED: order returned unchanged, scanned_at kept

        Raises:
            ValidationError: If the tracking number is empty
            StorageError: If the database cannot be read or written
        """
        tracking_number = (tracking_number or "").strip()
        if not tracking_number:
            raise ValidationError("Tracking number is empty")

        with self._transaction("mark_scanned") as conn:
            row = self._select_active(conn, tracking_number)
            if row is None:
                logger.info(f"Scan not found: {tracking_number}")
                return ScanResult(ScanOutcome.NOT_FOUND, tracking_number)

            if row['status'] == OrderStatus.SCANNED.value:
                logger.info(f"Scan already recorded: {tracking_number}")
                return ScanResult(ScanOutcome.ALREADY_SCANNED, tracking_number,
                                  order=Order.from_row(row))

            # Conditional update: only one of two racing scans can match
            cur = conn.execute(
                """
                UPDATE orders SET status = 'scanned', scanned_at = ?
                WHERE id = ? AND status = 'pending' AND archived_at IS NULL
                """,
                (self._now(), row['id'])
            )
            updated = cur.rowcount
            current = self._select_by_id(conn, row['id'])

        if updated == 0:
            if current is None or current['archived_at'] is not None:
                return ScanResult(ScanOutcome.NOT_FOUND, tracking_number)
            logger.info(f"Scan already recorded by a concurrent writer: {tracking_number}")
            return ScanResult(ScanOutcome.ALREADY_SCANNED, tracking_number,
                              order=Order.from_row(current))

        logger.info(f"Order scanned: {tracking_number}")
        return ScanResult(ScanOutcome.SUCCESS, tracking_number, order=Order.from_row(current))

    def reset_scan(self, order_ids: Optional[Iterable[str]] = None) -> int:
        """
        Put scanned orders back to pending.

        Args:
            order_ids: None resets every active scanned order; otherwise only
                       the given identifiers, restricted to active orders

        Returns:
            Number of orders actually reset
        """
        with self._transaction("reset_scan") as conn:
            if order_ids is None:
                count = conn.execute(
                    """
                    UPDATE orders SET status = 'pending', scanned_at = NULL
                    WHERE status = 'scanned' AND archived_at IS NULL
                    """
                ).rowcount
            else:
                count = 0
                for chunk in _chunks(_normalize_ids(order_ids)):
                    count += conn.execute(
                        f"""
                        UPDATE orders SET status = 'pending', scanned_at = NULL
                        WHERE id IN ({_placeholders(len(chunk))})
                          AND status = 'scanned' AND archived_at IS NULL
                        """,
                        chunk
                    ).rowcount

        logger.info(f"Scan reset for {count} order(s)")
        return count

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    def get_stats(self) -> OrderStats:
        """Total and scanned counts over active orders, taken in one query."""
        with self._transaction("get_stats") as conn:
            row = conn.execute(
                """
                SELECT COUNT(*) AS total,
                       COALESCE(SUM(status = 'scanned'), 0) AS scanned
                FROM orders
                WHERE archived_at IS NULL
                """
            ).fetchone()
        return OrderStats(total=row['total'], scanned=row['scanned'])

    def list_active(self) -> List[Order]:
        """Active orders, pending before scanned, newest first within each status."""
        with self._transaction("list_active") as conn:
            rows = conn.execute(
                """
                SELECT * FROM orders
                WHERE archived_at IS NULL
                ORDER BY status ASC, created_at DESC, rowid DESC
                """
            ).fetchall()
        return [Order.from_row(r) for r in rows]

    def list_history(self, days_back: int = 7) -> List[Order]:
        """Archived orders archived within the last days_back days, newest archive first."""
        cutoff = _to_db_time(self._clock() - timedelta(days=days_back))
        with self._transaction("list_history") as conn:
            rows = conn.execute(
                """
                SELECT * FROM orders
                WHERE archived_at IS NOT NULL AND archived_at >= ?
                ORDER BY archived_at DESC
                """,
                (cutoff,)
            ).fetchall()
        return [Order.from_row(r) for r in rows]

    # ------------------------------------------------------------------
    # Archive / restore / delete
    # ------------------------------------------------------------------

    def archive(self, order_ids: Iterable[str], scanned_only: bool = False) -> int:
        """
        Move active orders to history.

        Args:
            order_ids: Orders to archive; archived or unknown ids are skipped
            scanned_only: Archive only the targets that have been scanned

        Returns:
            Number of orders actually archived
        """
        ids = _normalize_ids(order_ids)
        if not ids:
            logger.warning("archive called without order ids")
            return 0

        status_filter = "AND status = 'scanned'" if scanned_only else ""
        now = self._now()
        count = 0
        with self._transaction("archive") as conn:
            for chunk in _chunks(ids):
                count += conn.execute(
                    f"""
                    UPDATE orders SET archived_at = ?
                    WHERE id IN ({_placeholders(len(chunk))})
                      AND archived_at IS NULL {status_filter}
                    """,
                    [now, *chunk]
                ).rowcount

        logger.info(f"Archived {count} of {len(ids)} requested order(s) (scanned_only={scanned_only})")
        return count

    def archive_all(self) -> int:
        """Archive every active order. Returns the number archived."""
        with self._transaction("archive_all") as conn:
            count = conn.execute(
                "UPDATE orders SET archived_at = ? WHERE archived_at IS NULL",
                (self._now(),)
            ).rowcount
        logger.info(f"Archived all active orders: {count}")
        return count

    def restore(self, order_id: str) -> RestoreOutcome:
        """
        Bring an archived order back to the active list as pending.

        Descriptive fields are kept. Restoring an order that is already active
        or does not exist is a no-op reported as NOT_ARCHIVED. If another
        active order already uses the same tracking number the restore is
        refused with CONFLICT.
        """
        with self._transaction("restore") as conn:
            row = self._select_by_id(conn, order_id)
            if row is None or row['archived_at'] is None:
                logger.debug(f"Restore skipped, order not archived: {order_id}")
                return RestoreOutcome.NOT_ARCHIVED

            if self._select_active(conn, row['tracking_number']) is not None:
                logger.warning(
                    f"Restore refused, tracking number already active: {row['tracking_number']}"
                )
                return RestoreOutcome.CONFLICT

            conn.execute(
                """
                UPDATE orders SET archived_at = NULL, status = 'pending', scanned_at = NULL
                WHERE id = ? AND archived_at IS NOT NULL
                """,
                (order_id,)
            )

        logger.info(f"Restored order {row['tracking_number']} (id={order_id})")
        return RestoreOutcome.RESTORED

    def delete_archived(self, order_ids: Union[str, Iterable[str]]) -> int:
        """
        Permanently delete archived orders.

        Active orders are never deleted, whatever ids are passed.

        Args:
            order_ids: One identifier or an iterable of identifiers

        Returns:
            Number of orders deleted
        """
        ids = _normalize_ids(order_ids)
        if not ids:
            logger.warning("delete_archived called without order ids")
            return 0

        count = 0
        with self._transaction("delete_archived") as conn:
            for chunk in _chunks(ids):
                count += conn.execute(
                    f"""
                    DELETE FROM orders
                    WHERE id IN ({_placeholders(len(chunk))}) AND archived_at IS NOT NULL
                    """,
                    chunk
                ).rowcount

        logger.info(f"Deleted {count} archived order(s)")
        return count

    def purge_older_than(self, days: int = DEFAULT_RETENTION_DAYS) -> int:
        """
        Delete archived orders whose archived_at is older than `days` days.

        Runs opportunistically (e.g. at startup). A storage failure is logged
        and swallowed: the purge simply happens on a later run.

        Returns:
            Number of orders deleted, 0 on failure
        """
        if days < 0:
            raise ValueError(f"days must not be negative, got {days}")

        cutoff = _to_db_time(self._clock() - timedelta(days=days))
        try:
            with self._transaction("purge_older_than") as conn:
                count = conn.execute(
                    "DELETE FROM orders WHERE archived_at IS NOT NULL AND archived_at < ?",
                    (cutoff,)
                ).rowcount
        except StorageError as e:
            logger.warning(f"History cleanup failed, will retry on next run: {e}")
            return 0

        if count:
            logger.info(f"History cleanup removed {count} order(s) archived before {cutoff}")
        return count

    def clear_all(self) -> int:
        """Delete every order, active and archived. Returns the number deleted."""
        with self._transaction("clear_all") as conn:
            count = conn.execute("DELETE FROM orders").rowcount
        logger.warning(f"All orders cleared: {count}")
        return count


def open_store(config: Optional[AppConfig] = None,
               clock: Optional[Callable[[], datetime]] = None) -> OrderStore:
    """
    Open the configured store and run the startup history cleanup.

    Args:
        config: Application settings, defaults when None
        clock: Optional clock passed to the store

    Returns:
        Ready-to-use OrderStore
    """
    config = config or AppConfig()
    store = OrderStore(get_db_path(config), timeout=config.connection_timeout, clock=clock)
    store.purge_older_than(config.retention_days)
    return store
