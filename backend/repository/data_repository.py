"""Repository layer responsible for all database access."""

from __future__ import annotations

import random
import sqlite3
from contextlib import contextmanager
from datetime import datetime, time, timedelta, timezone
from pathlib import Path
from typing import Iterator, Optional, Sequence

from backend.domain.exceptions import (
    BookingRecordNotFoundError,
    PersistenceError,
    StaleStateError,
)
from backend.domain.models import (
    Booking,
    BookingDraft,
    BookingStatus,
    Resource,
    ResourceKind,
)
from backend.utils.config import Settings, get_settings
from backend.utils.logger import get_logger


logger = get_logger(__name__)

_TIMESTAMP_FIELDS = frozenset({"started_at", "ended_at", "canceled_at"})

_BOOKING_COLUMNS = """
    id, kind, resource_id, resource_name, start_time, end_time, quantity,
    status, requester_name, requester_role, purpose, created_at, updated_at,
    started_at, ended_at, canceled_at
"""

_CATALOG_SEED = [
    ("VEHICLE", "Car 1", "Vehicle", "Sedan", 1, "Available"),
    ("VEHICLE", "Car 2", "Vehicle", "Sedan", 1, "Available"),
    ("VEHICLE", "Car 3", "Vehicle", "MPV", 1, "Maintenance"),
    ("VEHICLE", "Car 4", "Vehicle", "Sedan", 1, "Available"),
    ("FACILITY", "Drawing Room", "Classroom", "Drawing Room", 1, "Available"),
    ("FACILITY", "Computer Lab", "Lab", "Computer Lab", 1, "Available"),
    ("FACILITY", "Chemistry Lab", "Lab", "Chemistry Lab", 1, "Available"),
    ("FACILITY", "Auditorium 1", "Auditorium", "Auditorium 1", 1, "Available"),
    ("FACILITY", "Auditorium 2", "Auditorium", "Auditorium 2", 1, "Maintenance"),
    ("FACILITY", "Plaza", "Outdoor", "Plaza", 1, "Available"),
    ("FACILITY", "Futsal Court", "Court", "Futsal", 1, "Available"),
    ("EQUIPMENT", "Chair - Monobloc", "Furniture", "Chair", 100, "Available"),
    ("EQUIPMENT", "Table - Round (Big)", "Furniture", "Table", 6, "Available"),
    ("EQUIPMENT", "Projector", "A/V", "Projector", 7, "Available"),
    ("EQUIPMENT", "Microphone - Wireless", "A/V", "Mic Wireless", 12, "Available"),
    ("EQUIPMENT", "Portable Speaker - Big", "A/V", "Speaker", 4, "Available"),
    ("EQUIPMENT", "Podium", "Accessories", "Podium", 2, "Available"),
]

_SEED_REQUESTERS = [
    ("John Smith", "FACULTY"),
    ("Maria Santos", "STUDENT"),
    ("Admin Office", "STAFF"),
    ("Robert Chen", "FACULTY"),
    ("Student Council", "STUDENT"),
    ("Facilities Office", "STAFF"),
]

_SEED_PURPOSES = [
    "Department meeting",
    "Student activity",
    "Research presentation",
    "Workshop training",
    "Thesis defense",
    "Guest lecture",
]


def to_storage_timestamp(value: datetime) -> str:
    """Render a UTC timestamp with fixed width so TEXT comparison is chronological."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _from_storage_timestamp(value: Optional[str]) -> Optional[datetime]:
    if value is None:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _row_to_booking(row: sqlite3.Row) -> Booking:
    return Booking(
        booking_id=int(row["id"]),
        kind=ResourceKind(str(row["kind"])),
        resource_id=int(row["resource_id"]),
        resource_name=str(row["resource_name"]),
        start_time=_from_storage_timestamp(row["start_time"]),
        end_time=_from_storage_timestamp(row["end_time"]),
        requested_quantity=int(row["quantity"]),
        status=BookingStatus(str(row["status"])),
        requester_name=row["requester_name"],
        requester_role=row["requester_role"],
        purpose=row["purpose"],
        created_at=_from_storage_timestamp(row["created_at"]),
        updated_at=_from_storage_timestamp(row["updated_at"]),
        started_at=_from_storage_timestamp(row["started_at"]),
        ended_at=_from_storage_timestamp(row["ended_at"]),
        canceled_at=_from_storage_timestamp(row["canceled_at"]),
    )


def _row_to_resource(row: sqlite3.Row) -> Resource:
    return Resource(
        resource_id=int(row["id"]),
        kind=ResourceKind(str(row["kind"])),
        name=str(row["name"]),
        quantity=int(row["quantity"]),
        status=str(row["status"]),
        subcategory=row["subcategory"],
        type=row["type"],
    )


class _SQLiteAdmission:
    """Check-then-insert view bound to one ``BEGIN IMMEDIATE`` transaction."""

    def __init__(self, connection: sqlite3.Connection) -> None:
        self._conn = connection

    def find_overlapping(
        self,
        resource_id: int,
        start_time: datetime,
        end_time: datetime,
        statuses: Sequence[BookingStatus],
    ) -> list[int]:
        if not statuses:
            return []
        placeholders = ",".join("?" for _ in statuses)
        cursor = self._conn.execute(
            f"""
            SELECT quantity
            FROM Bookings
            WHERE resource_id = ?
              AND status IN ({placeholders})
              AND NOT (? <= start_time OR ? >= end_time);
            """,
            (
                resource_id,
                *(status.value for status in statuses),
                to_storage_timestamp(end_time),
                to_storage_timestamp(start_time),
            ),
        )
        return [int(row["quantity"]) for row in cursor.fetchall()]

    def insert_booking(self, draft: BookingDraft, created_at: datetime) -> Booking:
        created = to_storage_timestamp(created_at)
        cursor = self._conn.execute(
            """
            INSERT INTO Bookings (
                kind, resource_id, resource_name, start_time, end_time, quantity,
                status, requester_name, requester_role, purpose, created_at, updated_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?);
            """,
            (
                draft.kind.value,
                draft.resource_id,
                draft.resource_name,
                to_storage_timestamp(draft.start_time),
                to_storage_timestamp(draft.end_time),
                draft.requested_quantity,
                BookingStatus.REQUEST.value,
                draft.requester_name,
                draft.requester_role,
                draft.purpose,
                created,
                created,
            ),
        )
        row = self._conn.execute(
            f"SELECT {_BOOKING_COLUMNS} FROM Bookings WHERE id = ?;",
            (cursor.lastrowid,),
        ).fetchone()
        return _row_to_booking(row)


class DataRepository:
    """SQLite-backed resource catalog and booking store."""

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self._settings = settings or get_settings()
        self._db_path = Path(self._settings.database_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)

    def _open(self) -> sqlite3.Connection:
        connection = sqlite3.connect(
            self._db_path,
            timeout=self._settings.sqlite_timeout_seconds,
            isolation_level=None,
            check_same_thread=False,
        )
        connection.row_factory = sqlite3.Row
        connection.execute("PRAGMA foreign_keys = ON;")
        return connection

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        connection = self._open()
        try:
            yield connection
        except sqlite3.Error as exc:
            raise PersistenceError(f"Database operation failed: {exc}") from exc
        finally:
            connection.close()

    @staticmethod
    def _rollback(connection: sqlite3.Connection) -> None:
        if connection.in_transaction:
            connection.execute("ROLLBACK;")

    def initialize_database(self) -> None:
        """Create all persistence artifacts before API startup."""
        try:
            with self._connect() as conn:
                conn.execute("PRAGMA journal_mode = WAL;")
                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS Resources (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        kind TEXT NOT NULL CHECK (kind IN ('VEHICLE','FACILITY','EQUIPMENT')),
                        name TEXT NOT NULL,
                        subcategory TEXT,
                        type TEXT,
                        quantity INTEGER NOT NULL DEFAULT 1 CHECK (quantity >= 0),
                        status TEXT NOT NULL DEFAULT 'Available',
                        UNIQUE (kind, name)
                    );
                    """
                )
                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS Bookings (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        kind TEXT NOT NULL,
                        resource_id INTEGER NOT NULL,
                        resource_name TEXT NOT NULL,
                        start_time TEXT NOT NULL,
                        end_time TEXT NOT NULL,
                        quantity INTEGER NOT NULL DEFAULT 1 CHECK (quantity >= 1),
                        status TEXT NOT NULL DEFAULT 'REQUEST'
                            CHECK (status IN ('REQUEST','ONGOING','SUCCESS','CANCEL')),
                        requester_name TEXT,
                        requester_role TEXT,
                        purpose TEXT,
                        created_at TEXT NOT NULL,
                        updated_at TEXT,
                        started_at TEXT,
                        ended_at TEXT,
                        canceled_at TEXT,
                        CHECK (end_time > start_time),
                        FOREIGN KEY (resource_id) REFERENCES Resources(id)
                    );
                    """
                )
                conn.execute(
                    """
                    CREATE INDEX IF NOT EXISTS idx_bookings_resource_time
                    ON Bookings(resource_id, start_time, end_time);
                    """
                )
                conn.execute(
                    """
                    CREATE INDEX IF NOT EXISTS idx_bookings_status
                    ON Bookings(status);
                    """
                )
            logger.info("Database initialized at %s", self._db_path)
        except PersistenceError as exc:
            raise RuntimeError(f"Database initialization failed: {exc}") from exc

    def seed_catalog(self) -> int:
        """Seed the campus catalog only when the Resources table is empty."""
        with self._connect() as conn:
            row = conn.execute("SELECT COUNT(*) AS count FROM Resources;").fetchone()
            if int(row["count"]) > 0:
                logger.info("Resource catalog already present; skipping seed")
                return 0
            conn.execute("BEGIN;")
            conn.executemany(
                """
                INSERT INTO Resources (kind, name, subcategory, type, quantity, status)
                VALUES (?, ?, ?, ?, ?, ?);
                """,
                _CATALOG_SEED,
            )
            conn.execute("COMMIT;")
        logger.info("Catalog seed completed with %s resources", len(_CATALOG_SEED))
        return len(_CATALOG_SEED)

    def seed_booking_history(self, now: Optional[datetime] = None) -> int:
        """Seed deterministic past bookings when the Bookings table is empty.

        Only terminal (SUCCESS/CANCEL) rows are written, so the seed never
        holds capacity that live admissions would have to respect.
        """
        rng = random.Random(self._settings.synthetic_random_seed)
        reference = (now or datetime.now(timezone.utc)).astimezone(timezone.utc)
        today = reference.date()

        with self._connect() as conn:
            row = conn.execute("SELECT COUNT(*) AS count FROM Bookings;").fetchone()
            if int(row["count"]) > 0:
                logger.info("Booking history already present; skipping seed")
                return 0
            resources = [
                _row_to_resource(item)
                for item in conn.execute(
                    "SELECT * FROM Resources WHERE status = 'Available' ORDER BY id ASC;"
                ).fetchall()
            ]
            if not resources:
                logger.warning("No available resources; booking history seed skipped")
                return 0

            rows = []
            for offset in range(self._settings.synthetic_history_days, 1, -1):
                day = today - timedelta(days=offset)
                daily_target = rng.randint(1, 4) if day.weekday() < 5 else rng.randint(0, 1)
                for _ in range(daily_target):
                    resource = rng.choice(resources)
                    start = datetime.combine(
                        day, time(hour=rng.randint(8, 17)), tzinfo=timezone.utc
                    )
                    end = start + timedelta(hours=rng.randint(1, 4))
                    quantity = 1
                    if resource.kind is ResourceKind.EQUIPMENT:
                        quantity = rng.randint(1, max(1, min(10, int(resource.quantity * 0.3))))
                    requester_name, requester_role = rng.choice(_SEED_REQUESTERS)
                    succeeded = rng.random() < 0.8
                    status = BookingStatus.SUCCESS if succeeded else BookingStatus.CANCEL
                    closed_at = end if succeeded else start - timedelta(days=1)
                    rows.append(
                        (
                            resource.kind.value,
                            resource.resource_id,
                            resource.name,
                            to_storage_timestamp(start),
                            to_storage_timestamp(end),
                            quantity,
                            status.value,
                            requester_name,
                            requester_role,
                            rng.choice(_SEED_PURPOSES),
                            to_storage_timestamp(start - timedelta(days=2)),
                            to_storage_timestamp(closed_at),
                            to_storage_timestamp(start) if succeeded else None,
                            to_storage_timestamp(end) if succeeded else None,
                            None if succeeded else to_storage_timestamp(closed_at),
                        )
                    )

            conn.execute("BEGIN;")
            conn.executemany(
                """
                INSERT INTO Bookings (
                    kind, resource_id, resource_name, start_time, end_time, quantity,
                    status, requester_name, requester_role, purpose, created_at,
                    updated_at, started_at, ended_at, canceled_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?);
                """,
                rows,
            )
            conn.execute("COMMIT;")
        logger.info("Booking history seed completed with %s records", len(rows))
        return len(rows)

    def create_resource(
        self,
        kind: ResourceKind,
        name: str,
        quantity: int,
        status: str = "Available",
        subcategory: Optional[str] = None,
        type: Optional[str] = None,
    ) -> Resource:
        """Insert a catalog row; used by seeding and tests."""
        with self._connect() as conn:
            cursor = conn.execute(
                """
                INSERT INTO Resources (kind, name, subcategory, type, quantity, status)
                VALUES (?, ?, ?, ?, ?, ?);
                """,
                (kind.value, name, subcategory, type, quantity, status),
            )
            row = conn.execute(
                "SELECT * FROM Resources WHERE id = ?;",
                (cursor.lastrowid,),
            ).fetchone()
            return _row_to_resource(row)

    def get_resource(self, resource_id: int) -> Optional[Resource]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM Resources WHERE id = ?;",
                (resource_id,),
            ).fetchone()
            if row is None:
                return None
            return _row_to_resource(row)

    def list_resources(self, kind: Optional[ResourceKind] = None) -> list[Resource]:
        with self._connect() as conn:
            if kind is None:
                rows = conn.execute(
                    "SELECT * FROM Resources ORDER BY kind ASC, name ASC;"
                ).fetchall()
            else:
                rows = conn.execute(
                    "SELECT * FROM Resources WHERE kind = ? ORDER BY name ASC;",
                    (kind.value,),
                ).fetchall()
            return [_row_to_resource(row) for row in rows]

    def get_booking(self, booking_id: int) -> Optional[Booking]:
        with self._connect() as conn:
            row = conn.execute(
                f"SELECT {_BOOKING_COLUMNS} FROM Bookings WHERE id = ?;",
                (booking_id,),
            ).fetchone()
            if row is None:
                return None
            return _row_to_booking(row)

    def list_bookings(
        self,
        resource_id: Optional[int] = None,
        status: Optional[BookingStatus] = None,
    ) -> list[Booking]:
        clauses: list[str] = []
        params: list[object] = []
        if resource_id is not None:
            clauses.append("resource_id = ?")
            params.append(resource_id)
        if status is not None:
            clauses.append("status = ?")
            params.append(status.value)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        with self._connect() as conn:
            rows = conn.execute(
                f"""
                SELECT {_BOOKING_COLUMNS}
                FROM Bookings
                {where}
                ORDER BY start_time DESC, id DESC;
                """,
                tuple(params),
            ).fetchall()
            return [_row_to_booking(row) for row in rows]

    @contextmanager
    def admission(self, resource_id: int) -> Iterator[_SQLiteAdmission]:
        """Serialize admission with SQLite's single write lock.

        ``BEGIN IMMEDIATE`` takes the RESERVED lock before the overlap read,
        so no other writer can insert between the capacity check and the
        insert for any resource.
        """
        connection = self._open()
        try:
            connection.execute("BEGIN IMMEDIATE;")
            logger.debug("Admission transaction opened | resource_id=%s", resource_id)
            yield _SQLiteAdmission(connection)
            connection.execute("COMMIT;")
        except sqlite3.Error as exc:
            self._rollback(connection)
            raise PersistenceError(f"Admission transaction failed: {exc}") from exc
        except BaseException:
            self._rollback(connection)
            raise
        finally:
            connection.close()

    def update_booking_status(
        self,
        booking_id: int,
        expected_status: BookingStatus,
        new_status: BookingStatus,
        timestamp_field: str,
        at: datetime,
    ) -> Booking:
        """Compare-and-swap the status of one booking row."""
        if timestamp_field not in _TIMESTAMP_FIELDS:
            raise ValueError(f"Unsupported timestamp field: {timestamp_field}")
        stamp = to_storage_timestamp(at)
        with self._connect() as conn:
            cursor = conn.execute(
                f"""
                UPDATE Bookings
                SET status = ?, {timestamp_field} = ?, updated_at = ?
                WHERE id = ? AND status = ?;
                """,
                (new_status.value, stamp, stamp, booking_id, expected_status.value),
            )
            row = conn.execute(
                f"SELECT {_BOOKING_COLUMNS} FROM Bookings WHERE id = ?;",
                (booking_id,),
            ).fetchone()
        if row is None:
            raise BookingRecordNotFoundError(f"Booking {booking_id} not found")
        booking = _row_to_booking(row)
        if cursor.rowcount == 0:
            raise StaleStateError(
                booking_id=booking_id,
                expected=expected_status,
                actual=booking.status,
            )
        return booking

    def count_bookings(self, status: Optional[BookingStatus] = None) -> int:
        """Return persisted booking count for diagnostics and tests."""
        with self._connect() as conn:
            if status is None:
                row = conn.execute("SELECT COUNT(*) AS count FROM Bookings;").fetchone()
            else:
                row = conn.execute(
                    "SELECT COUNT(*) AS count FROM Bookings WHERE status = ?;",
                    (status.value,),
                ).fetchone()
            return int(row["count"])
