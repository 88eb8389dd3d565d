"""SQLite persistence layer for Downto.

Every cross-request invariant lives here as a constraint or a conditional
write: one squad per check (partial unique index), one membership row per
user (composite primary key), capacity (count-then-insert inside an
``IMMEDIATE`` transaction) and the write-once lifecycle stamps (``UPDATE ...
WHERE <column> IS NULL``).
"""

from __future__ import annotations

import sqlite3
import uuid
from collections.abc import Iterable
from contextlib import contextmanager
from datetime import date, datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Tuple

from .errors import AlreadyExists, CapacityExceeded, Conflict, NotFound, SquadFull
from .models import (
    CheckResponse,
    Event,
    InterestCheck,
    Message,
    ResponseKind,
    Squad,
    SquadMember,
)

Connection = sqlite3.Connection
Row = sqlite3.Row

CHECK_EDITABLE_FIELDS = ("text", "event_date", "event_time", "max_squad_size")
SQUAD_LOGISTICS_FIELDS = ("meeting_spot", "arrival_time", "transport_notes")


def new_id() -> str:
    return uuid.uuid4().hex


def to_db(value: Optional[datetime]) -> Optional[str]:
    """Serialize an instant as fixed-width UTC ISO text so SQL string comparison orders correctly."""

    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def from_db(value: Optional[str]) -> Optional[datetime]:
    if value is None:
        return None
    return datetime.fromisoformat(value)


def _date_from_db(value: Optional[str]) -> Optional[date]:
    return date.fromisoformat(value) if value else None


def _check_from_row(row: Row) -> InterestCheck:
    return InterestCheck(
        id=row["id"],
        author_id=row["author_id"],
        text=row["text"],
        created_at=from_db(row["created_at"]),
        expires_at=from_db(row["expires_at"]),
        max_squad_size=row["max_squad_size"],
        event_date=_date_from_db(row["event_date"]),
        event_time=row["event_time"],
    )


def _response_from_row(row: Row) -> CheckResponse:
    return CheckResponse(
        check_id=row["check_id"],
        user_id=row["user_id"],
        response=ResponseKind(row["response"]),
        created_at=from_db(row["created_at"]),
    )


def _event_from_row(row: Row) -> Event:
    return Event(
        id=row["id"],
        title=row["title"],
        created_at=from_db(row["created_at"]),
        venue=row["venue"],
        event_date=_date_from_db(row["event_date"]),
        event_time=row["event_time"],
        image_url=row["image_url"],
        source_url=row["source_url"],
    )


def _squad_from_row(row: Row) -> Squad:
    return Squad(
        id=row["id"],
        name=row["name"],
        created_at=from_db(row["created_at"]),
        check_id=row["check_id"],
        event_id=row["event_id"],
        created_by=row["created_by"],
        expires_at=from_db(row["expires_at"]),
        warned_at=from_db(row["warned_at"]),
        grace_started_at=from_db(row["grace_started_at"]),
        locked_date=_date_from_db(row["locked_date"]),
        meeting_spot=row["meeting_spot"],
        arrival_time=row["arrival_time"],
        transport_notes=row["transport_notes"],
    )


def _member_from_row(row: Row) -> SquadMember:
    return SquadMember(
        squad_id=row["squad_id"],
        user_id=row["user_id"],
        joined_at=from_db(row["joined_at"]),
    )


def _message_from_row(row: Row) -> Message:
    return Message(
        id=row["id"],
        squad_id=row["squad_id"],
        sender_id=row["sender_id"],
        text=row["text"],
        is_system=bool(row["is_system"]),
        created_at=from_db(row["created_at"]),
    )


def _placeholders(values: List[Any]) -> str:
    return ",".join("?" * len(values))


class Database:
    """Lightweight wrapper around SQLite operations."""

    def __init__(self, path: Path, timeout: float = 30.0) -> None:
        self._path = path
        self._timeout = timeout
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._initialize()

    @contextmanager
    def connect(self) -> Iterator[Connection]:
        conn = sqlite3.connect(self._path, timeout=self._timeout)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        try:
            yield conn
        finally:
            conn.close()

    @contextmanager
    def transaction(self) -> Iterator[Connection]:
        """Open a write transaction that holds the database write lock from its first statement."""

        with self.connect() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except BaseException:
                conn.rollback()
                raise
            conn.commit()

    def _initialize(self) -> None:
        with self.connect() as conn:
            conn.execute("PRAGMA journal_mode = WAL")
            cursor = conn.cursor()
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS interest_checks (
                    id TEXT PRIMARY KEY,
                    author_id TEXT NOT NULL,
                    text TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    expires_at TEXT,
                    max_squad_size INTEGER NOT NULL DEFAULT 5 CHECK (max_squad_size >= 2),
                    event_date TEXT,
                    event_time TEXT
                )
                """
            )
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS check_responses (
                    check_id TEXT NOT NULL,
                    user_id TEXT NOT NULL,
                    response TEXT NOT NULL CHECK (response IN ('down', 'maybe')),
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    PRIMARY KEY (check_id, user_id),
                    FOREIGN KEY (check_id) REFERENCES interest_checks(id) ON DELETE CASCADE
                )
                """
            )
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS events (
                    id TEXT PRIMARY KEY,
                    title TEXT NOT NULL,
                    venue TEXT,
                    event_date TEXT,
                    event_time TEXT,
                    image_url TEXT,
                    source_url TEXT,
                    created_at TEXT NOT NULL
                )
                """
            )
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS squads (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    check_id TEXT,
                    event_id TEXT,
                    created_by TEXT,
                    created_at TEXT NOT NULL,
                    expires_at TEXT,
                    warned_at TEXT,
                    grace_started_at TEXT,
                    locked_date TEXT,
                    meeting_spot TEXT,
                    arrival_time TEXT,
                    transport_notes TEXT,
                    FOREIGN KEY (check_id) REFERENCES interest_checks(id) ON DELETE RESTRICT,
                    FOREIGN KEY (event_id) REFERENCES events(id) ON DELETE SET NULL
                )
                """
            )
            cursor.execute(
                """
                CREATE UNIQUE INDEX IF NOT EXISTS squads_check_id_unique
                ON squads (check_id) WHERE check_id IS NOT NULL
                """
            )
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS squad_members (
                    squad_id TEXT NOT NULL,
                    user_id TEXT NOT NULL,
                    joined_at TEXT NOT NULL,
                    PRIMARY KEY (squad_id, user_id),
                    FOREIGN KEY (squad_id) REFERENCES squads(id) ON DELETE CASCADE
                )
                """
            )
            cursor.execute(
                "CREATE INDEX IF NOT EXISTS squad_members_user ON squad_members (user_id)"
            )
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS messages (
                    id TEXT PRIMARY KEY,
                    squad_id TEXT NOT NULL,
                    sender_id TEXT,
                    text TEXT NOT NULL,
                    is_system INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL,
                    FOREIGN KEY (squad_id) REFERENCES squads(id) ON DELETE CASCADE
                )
                """
            )
            cursor.execute(
                "CREATE INDEX IF NOT EXISTS messages_squad ON messages (squad_id, created_at)"
            )
            conn.commit()

    # region Interest checks
    def insert_check(self, check: InterestCheck) -> InterestCheck:
        with self.connect() as conn:
            conn.execute(
                """
                INSERT INTO interest_checks
                    (id, author_id, text, created_at, expires_at, max_squad_size, event_date, event_time)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    check.id,
                    check.author_id,
                    check.text,
                    to_db(check.created_at),
                    to_db(check.expires_at),
                    check.max_squad_size,
                    check.event_date.isoformat() if check.event_date else None,
                    check.event_time,
                ),
            )
            conn.commit()
        return check

    def get_check(self, check_id: str) -> Optional[InterestCheck]:
        with self.connect() as conn:
            row = conn.execute(
                "SELECT * FROM interest_checks WHERE id = ?", (check_id,)
            ).fetchone()
            return _check_from_row(row) if row else None

    def update_check(self, check_id: str, fields: Dict[str, Any]) -> Optional[InterestCheck]:
        """Apply ``fields`` to a check.

        A new ``max_squad_size`` is compared with the formed squad's member
        count under the same write lock as the update; a smaller size raises
        :class:`Conflict`.
        """

        unknown = set(fields) - set(CHECK_EDITABLE_FIELDS)
        if unknown:
            raise ValueError(f"not editable: {', '.join(sorted(unknown))}")
        if fields:
            values = dict(fields)
            if isinstance(values.get("event_date"), date):
                values["event_date"] = values["event_date"].isoformat()
            assignments = ", ".join(f"{name} = :{name}" for name in values)
            with self.transaction() as conn:
                if "max_squad_size" in values:
                    members = conn.execute(
                        """
                        SELECT COUNT(*) FROM squad_members m
                        JOIN squads s ON s.id = m.squad_id
                        WHERE s.check_id = ?
                        """,
                        (check_id,),
                    ).fetchone()[0]
                    if values["max_squad_size"] < members:
                        raise Conflict(f"squad already has {members} members")
                conn.execute(
                    f"UPDATE interest_checks SET {assignments} WHERE id = :check_id",
                    {**values, "check_id": check_id},
                )
        return self.get_check(check_id)

    def delete_check_if_unreferenced(self, check_id: str) -> bool:
        """Delete the check unless a squad points at it. Returns whether a row was removed."""

        with self.connect() as conn:
            cursor = conn.execute(
                """
                DELETE FROM interest_checks
                WHERE id = ?
                  AND NOT EXISTS (SELECT 1 FROM squads WHERE check_id = ?)
                """,
                (check_id, check_id),
            )
            conn.commit()
            return cursor.rowcount == 1

    def list_active_checks(self, author_ids: Iterable[str], now: datetime) -> List[InterestCheck]:
        authors = sorted(set(author_ids))
        if not authors:
            return []
        with self.connect() as conn:
            cursor = conn.execute(
                f"""
                SELECT * FROM interest_checks
                WHERE author_id IN ({_placeholders(authors)})
                  AND (expires_at IS NULL OR expires_at > ?)
                ORDER BY created_at DESC
                """,
                (*authors, to_db(now)),
            )
            return [_check_from_row(row) for row in cursor.fetchall()]

    # endregion

    # region Check responses
    def upsert_response(
        self, check_id: str, user_id: str, response: ResponseKind, now: datetime
    ) -> CheckResponse:
        try:
            with self.connect() as conn:
                conn.execute(
                    """
                    INSERT INTO check_responses (check_id, user_id, response, created_at, updated_at)
                    VALUES (:check_id, :user_id, :response, :now, :now)
                    ON CONFLICT(check_id, user_id) DO UPDATE SET
                        response=excluded.response,
                        updated_at=excluded.updated_at
                    """,
                    {
                        "check_id": check_id,
                        "user_id": user_id,
                        "response": response.value,
                        "now": to_db(now),
                    },
                )
                conn.commit()
                row = conn.execute(
                    "SELECT * FROM check_responses WHERE check_id = ? AND user_id = ?",
                    (check_id, user_id),
                ).fetchone()
        except sqlite3.IntegrityError as exc:
            raise NotFound(f"check {check_id} not found") from exc
        return _response_from_row(row)

    def delete_response(self, check_id: str, user_id: str) -> bool:
        with self.connect() as conn:
            cursor = conn.execute(
                "DELETE FROM check_responses WHERE check_id = ? AND user_id = ?",
                (check_id, user_id),
            )
            conn.commit()
            return cursor.rowcount == 1

    def get_responses(self, check_ids: Iterable[str]) -> Dict[str, List[CheckResponse]]:
        ids = list(check_ids)
        results: Dict[str, List[CheckResponse]] = {check_id: [] for check_id in ids}
        if not ids:
            return results
        with self.connect() as conn:
            cursor = conn.execute(
                f"""
                SELECT * FROM check_responses
                WHERE check_id IN ({_placeholders(ids)})
                ORDER BY created_at
                """,
                ids,
            )
            for row in cursor.fetchall():
                results[row["check_id"]].append(_response_from_row(row))
        return results

    # endregion

    # region Events
    def insert_event(self, event: Event) -> Event:
        with self.connect() as conn:
            conn.execute(
                """
                INSERT INTO events (id, title, venue, event_date, event_time, image_url, source_url, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    event.id,
                    event.title,
                    event.venue,
                    event.event_date.isoformat() if event.event_date else None,
                    event.event_time,
                    event.image_url,
                    event.source_url,
                    to_db(event.created_at),
                ),
            )
            conn.commit()
        return event

    def get_event(self, event_id: str) -> Optional[Event]:
        with self.connect() as conn:
            row = conn.execute("SELECT * FROM events WHERE id = ?", (event_id,)).fetchone()
            return _event_from_row(row) if row else None

    # endregion

    # region Squads
    def insert_squad(
        self,
        squad: Squad,
        member_ids: Iterable[str],
        messages: Iterable[Tuple[Optional[str], str, bool]],
    ) -> Squad:
        """Create a squad, its members and its opening messages in one transaction.

        Raises :class:`AlreadyExists` when another squad already claims the same check.
        Raises :class:`CapacityExceeded` when the members outgrow the check's size
        as read under the write lock.
        """

        now = to_db(squad.created_at)
        try:
            with self.transaction() as conn:
                conn.execute(
                    """
                    INSERT INTO squads
                        (id, name, check_id, event_id, created_by, created_at, expires_at, locked_date)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        squad.id,
                        squad.name,
                        squad.check_id,
                        squad.event_id,
                        squad.created_by,
                        now,
                        to_db(squad.expires_at),
                        squad.locked_date.isoformat() if squad.locked_date else None,
                    ),
                )
                conn.executemany(
                    """
                    INSERT INTO squad_members (squad_id, user_id, joined_at)
                    VALUES (?, ?, ?)
                    ON CONFLICT(squad_id, user_id) DO NOTHING
                    """,
                    [(squad.id, user_id, now) for user_id in member_ids],
                )
                if squad.check_id is not None:
                    total, capacity = conn.execute(
                        """
                        SELECT COUNT(*), (SELECT max_squad_size FROM interest_checks WHERE id = ?)
                        FROM squad_members WHERE squad_id = ?
                        """,
                        (squad.check_id, squad.id),
                    ).fetchone()
                    if capacity is not None and total > capacity:
                        raise CapacityExceeded(
                            f"{total} members do not fit max squad size {capacity}"
                        )
                for sender_id, text, is_system in messages:
                    self._append_message(conn, squad.id, sender_id, text, is_system, squad.created_at)
        except sqlite3.IntegrityError as exc:
            if "squads.check_id" in str(exc):
                raise AlreadyExists(f"a squad already exists for check {squad.check_id}") from exc
            raise NotFound("check or event referenced by the squad no longer exists") from exc
        return squad

    def get_squad(self, squad_id: str) -> Optional[Squad]:
        with self.connect() as conn:
            row = conn.execute("SELECT * FROM squads WHERE id = ?", (squad_id,)).fetchone()
            return _squad_from_row(row) if row else None

    def get_squad_by_check(self, check_id: str) -> Optional[Squad]:
        with self.connect() as conn:
            row = conn.execute(
                "SELECT * FROM squads WHERE check_id = ?", (check_id,)
            ).fetchone()
            return _squad_from_row(row) if row else None

    def get_squads_by_checks(self, check_ids: Iterable[str]) -> Dict[str, Squad]:
        ids = list(check_ids)
        if not ids:
            return {}
        with self.connect() as conn:
            cursor = conn.execute(
                f"SELECT * FROM squads WHERE check_id IN ({_placeholders(ids)})", ids
            )
            return {row["check_id"]: _squad_from_row(row) for row in cursor.fetchall()}

    def list_squads_for_user(self, user_id: str) -> List[Squad]:
        with self.connect() as conn:
            cursor = conn.execute(
                """
                SELECT s.* FROM squads s
                JOIN squad_members m ON m.squad_id = s.id
                WHERE m.user_id = ?
                ORDER BY s.created_at DESC
                """,
                (user_id,),
            )
            return [_squad_from_row(row) for row in cursor.fetchall()]

    def squads_for_sweep(self) -> List[Tuple[Squad, Optional[datetime]]]:
        """Return every squad paired with its originating check's ``expires_at``."""

        with self.connect() as conn:
            cursor = conn.execute(
                """
                SELECT s.*, c.expires_at AS check_expires_at
                FROM squads s
                LEFT JOIN interest_checks c ON c.id = s.check_id
                ORDER BY s.created_at
                """
            )
            return [
                (_squad_from_row(row), from_db(row["check_expires_at"]))
                for row in cursor.fetchall()
            ]

    def update_logistics(self, squad_id: str, fields: Dict[str, Optional[str]]) -> Optional[Squad]:
        unknown = set(fields) - set(SQUAD_LOGISTICS_FIELDS)
        if unknown:
            raise ValueError(f"not logistics: {', '.join(sorted(unknown))}")
        with self.transaction() as conn:
            if fields:
                assignments = ", ".join(f"{name} = :{name}" for name in fields)
                conn.execute(
                    f"UPDATE squads SET {assignments} WHERE id = :squad_id",
                    {**fields, "squad_id": squad_id},
                )
            row = conn.execute("SELECT * FROM squads WHERE id = ?", (squad_id,)).fetchone()
            return _squad_from_row(row) if row else None

    # endregion

    # region Membership
    def get_members(self, squad_id: str) -> List[SquadMember]:
        with self.connect() as conn:
            cursor = conn.execute(
                "SELECT * FROM squad_members WHERE squad_id = ? ORDER BY joined_at, user_id",
                (squad_id,),
            )
            return [_member_from_row(row) for row in cursor.fetchall()]

    def get_member_ids_for_squads(self, squad_ids: Iterable[str]) -> Dict[str, List[str]]:
        ids = list(squad_ids)
        results: Dict[str, List[str]] = {squad_id: [] for squad_id in ids}
        if not ids:
            return results
        with self.connect() as conn:
            cursor = conn.execute(
                f"SELECT squad_id, user_id FROM squad_members WHERE squad_id IN ({_placeholders(ids)})",
                ids,
            )
            for row in cursor.fetchall():
                results[row["squad_id"]].append(row["user_id"])
        return results

    def is_member(self, squad_id: str, user_id: str) -> bool:
        with self.connect() as conn:
            row = conn.execute(
                "SELECT 1 FROM squad_members WHERE squad_id = ? AND user_id = ?",
                (squad_id, user_id),
            ).fetchone()
            return row is not None

    def count_members(self, squad_id: str) -> int:
        with self.connect() as conn:
            row = conn.execute(
                "SELECT COUNT(*) AS total FROM squad_members WHERE squad_id = ?", (squad_id,)
            ).fetchone()
            return row["total"]

    def add_member(self, squad_id: str, user_id: str, now: datetime) -> SquadMember:
        """Insert a membership row, reading capacity, counting and inserting under one write lock.

        Capacity is the originating check's ``max_squad_size``; event squads are
        uncapped. Raises :class:`AlreadyExists` for an existing member,
        :class:`SquadFull` when the squad is full and :class:`NotFound` if the
        squad is gone.
        """

        try:
            with self.transaction() as conn:
                row = conn.execute(
                    """
                    SELECT c.max_squad_size FROM squads s
                    LEFT JOIN interest_checks c ON c.id = s.check_id
                    WHERE s.id = ?
                    """,
                    (squad_id,),
                ).fetchone()
                if row is None:
                    raise NotFound(f"squad {squad_id} not found")
                capacity = row[0]
                if capacity is not None:
                    existing = conn.execute(
                        "SELECT 1 FROM squad_members WHERE squad_id = ? AND user_id = ?",
                        (squad_id, user_id),
                    ).fetchone()
                    if existing is None:
                        total = conn.execute(
                            "SELECT COUNT(*) FROM squad_members WHERE squad_id = ?",
                            (squad_id,),
                        ).fetchone()[0]
                        if total >= capacity:
                            raise SquadFull(f"squad {squad_id} is full ({capacity} members)")
                conn.execute(
                    "INSERT INTO squad_members (squad_id, user_id, joined_at) VALUES (?, ?, ?)",
                    (squad_id, user_id, to_db(now)),
                )
        except sqlite3.IntegrityError as exc:
            if "FOREIGN KEY" in str(exc):
                raise NotFound(f"squad {squad_id} not found") from exc
            raise AlreadyExists(f"{user_id} is already in squad {squad_id}") from exc
        return SquadMember(squad_id=squad_id, user_id=user_id, joined_at=now)

    def remove_member(self, squad_id: str, user_id: str) -> bool:
        with self.connect() as conn:
            cursor = conn.execute(
                "DELETE FROM squad_members WHERE squad_id = ? AND user_id = ?",
                (squad_id, user_id),
            )
            conn.commit()
            return cursor.rowcount == 1

    # endregion

    # region Messages
    def _append_message(
        self,
        conn: Connection,
        squad_id: str,
        sender_id: Optional[str],
        text: str,
        is_system: bool,
        now: datetime,
    ) -> Message:
        message = Message(
            id=new_id(),
            squad_id=squad_id,
            sender_id=sender_id,
            text=text,
            is_system=is_system,
            created_at=now,
        )
        conn.execute(
            """
            INSERT INTO messages (id, squad_id, sender_id, text, is_system, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (message.id, squad_id, sender_id, text, int(is_system), to_db(now)),
        )
        return message

    def append_message(
        self,
        squad_id: str,
        sender_id: Optional[str],
        text: str,
        now: datetime,
        is_system: bool = False,
    ) -> Message:
        try:
            with self.transaction() as conn:
                return self._append_message(conn, squad_id, sender_id, text, is_system, now)
        except sqlite3.IntegrityError as exc:
            raise NotFound(f"squad {squad_id} not found") from exc

    def list_messages(self, squad_id: str) -> List[Message]:
        with self.connect() as conn:
            cursor = conn.execute(
                "SELECT * FROM messages WHERE squad_id = ? ORDER BY created_at, rowid",
                (squad_id,),
            )
            return [_message_from_row(row) for row in cursor.fetchall()]

    # endregion

    # region Lifecycle transitions
    def mark_grace(self, squad_id: str, now: datetime, text: str) -> bool:
        """Stamp ``grace_started_at`` once and log ``text``. Returns whether this call won."""

        with self.transaction() as conn:
            cursor = conn.execute(
                """
                UPDATE squads SET grace_started_at = :now
                WHERE id = :squad_id
                  AND grace_started_at IS NULL
                  AND locked_date IS NULL
                  AND expires_at IS NOT NULL
                  AND check_id IS NOT NULL
                  AND EXISTS (
                      SELECT 1 FROM interest_checks c
                      WHERE c.id = squads.check_id
                        AND c.expires_at IS NOT NULL
                        AND c.expires_at < :now
                  )
                """,
                {"squad_id": squad_id, "now": to_db(now)},
            )
            if cursor.rowcount != 1:
                return False
            self._append_message(conn, squad_id, None, text, True, now)
            return True

    def mark_warned(self, squad_id: str, now: datetime, window: timedelta, text: str) -> bool:
        """Stamp ``warned_at`` once for a squad expiring within ``window`` and log ``text``."""

        with self.transaction() as conn:
            cursor = conn.execute(
                """
                UPDATE squads SET warned_at = :now
                WHERE id = :squad_id
                  AND warned_at IS NULL
                  AND expires_at IS NOT NULL
                  AND expires_at > :now
                  AND expires_at <= :window_end
                """,
                {"squad_id": squad_id, "now": to_db(now), "window_end": to_db(now + window)},
            )
            if cursor.rowcount != 1:
                return False
            self._append_message(conn, squad_id, None, text, True, now)
            return True

    def delete_expired_squad(self, squad_id: str, now: datetime) -> bool:
        with self.connect() as conn:
            cursor = conn.execute(
                """
                DELETE FROM squads
                WHERE id = ? AND expires_at IS NOT NULL AND expires_at < ?
                """,
                (squad_id, to_db(now)),
            )
            conn.commit()
            return cursor.rowcount == 1

    # endregion

    # region Date lock
    def lock_date(
        self,
        squad_id: str,
        locked_date: date,
        event_time: Optional[str],
        expires_at: datetime,
        text: str,
        now: datetime,
    ) -> Optional[Squad]:
        """Set the squad's date and timer, reset its stamps and mirror the date onto its check."""

        with self.transaction() as conn:
            cursor = conn.execute(
                """
                UPDATE squads
                SET expires_at = ?, locked_date = ?, warned_at = NULL, grace_started_at = NULL
                WHERE id = ?
                """,
                (to_db(expires_at), locked_date.isoformat(), squad_id),
            )
            if cursor.rowcount != 1:
                return None
            conn.execute(
                """
                UPDATE interest_checks SET event_date = ?, event_time = ?
                WHERE id = (SELECT check_id FROM squads WHERE id = ?)
                """,
                (locked_date.isoformat(), event_time, squad_id),
            )
            self._append_message(conn, squad_id, None, text, True, now)
            row = conn.execute("SELECT * FROM squads WHERE id = ?", (squad_id,)).fetchone()
            return _squad_from_row(row)

    def clear_date(self, squad_id: str, text: str, now: datetime) -> bool:
        with self.transaction() as conn:
            cursor = conn.execute(
                "UPDATE squads SET locked_date = NULL WHERE id = ?", (squad_id,)
            )
            if cursor.rowcount != 1:
                return False
            conn.execute(
                """
                UPDATE interest_checks SET event_date = NULL, event_time = NULL
                WHERE id = (SELECT check_id FROM squads WHERE id = ?)
                """,
                (squad_id,),
            )
            self._append_message(conn, squad_id, None, text, True, now)
            return True

    def extend_squad(
        self, squad_id: str, delta: timedelta, text: str, now: datetime
    ) -> Optional[datetime]:
        """Push ``expires_at`` to ``max(expires_at, now) + delta`` and re-arm the warning."""

        with self.transaction() as conn:
            row = conn.execute(
                "SELECT expires_at FROM squads WHERE id = ?", (squad_id,)
            ).fetchone()
            if row is None:
                return None
            current = from_db(row["expires_at"])
            base = max(current, now) if current is not None else now
            new_expiry = base + delta
            conn.execute(
                "UPDATE squads SET expires_at = ?, warned_at = NULL WHERE id = ?",
                (to_db(new_expiry), squad_id),
            )
            self._append_message(conn, squad_id, None, text, True, now)
            return new_expiry

    # endregion


__all__ = ["Database", "SQUAD_LOGISTICS_FIELDS", "new_id", "to_db", "from_db"]
