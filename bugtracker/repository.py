"""Storage for bug records behind a storage-agnostic interface."""
from __future__ import annotations

import itertools
import sqlite3
import threading
from dataclasses import replace
from typing import Dict, List, Protocol, Tuple

from .database import Database, current_timestamp, parse_datetime, serialize_datetime
from .errors import NotFound, ValidationError
from .models import Bug, BugFilter, BugPriority, BugStatus, NewBug


class BugRepository(Protocol):
    """Keyed bug store. ``query`` returns newest first, ties in reverse insertion order."""

    def insert(self, new_bug: NewBug) -> Bug:
        ...

    def get(self, bug_id: int) -> Bug:
        ...

    def query(self, bug_filter: BugFilter | None = None) -> List[Bug]:
        ...

    def replace(self, bug_id: int, bug: Bug) -> Bug:
        ...

    def remove(self, bug_id: int) -> None:
        ...


class SQLiteBugRepository:
    """Bug repository persisted in the ``bugs`` table of a :class:`Database`."""

    def __init__(self, database: Database) -> None:
        self._database = database

    def insert(self, new_bug: NewBug) -> Bug:
        now = serialize_datetime(current_timestamp())
        with self._database.transaction() as conn:
            try:
                cursor = conn.execute(
                    """
                    INSERT INTO bugs (
                        title, description, status, priority, created_by, assigned_to,
                        created_at, updated_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        new_bug.title,
                        new_bug.description,
                        new_bug.status.value,
                        new_bug.priority.value,
                        new_bug.created_by,
                        new_bug.assigned_to,
                        now,
                        now,
                    ),
                )
            except sqlite3.IntegrityError as exc:
                raise ValidationError("Bug references an unknown user", {"assignedTo": "unknown user"}) from exc
            bug_id = cursor.lastrowid
        return self.get(bug_id)

    def get(self, bug_id: int) -> Bug:
        with self._database.transaction() as conn:
            row = conn.execute("SELECT * FROM bugs WHERE id = ?", (bug_id,)).fetchone()
        if row is None:
            raise NotFound("Bug not found")
        return self._row_to_bug(row)

    def query(self, bug_filter: BugFilter | None = None) -> List[Bug]:
        bug_filter = bug_filter or BugFilter()
        clauses: List[str] = []
        values: List[object] = []
        if bug_filter.status is not None:
            clauses.append("status = ?")
            values.append(bug_filter.status.value)
        if bug_filter.priority is not None:
            clauses.append("priority = ?")
            values.append(bug_filter.priority.value)
        if bug_filter.assigned_to is not None:
            clauses.append("assigned_to = ?")
            values.append(bug_filter.assigned_to)

        where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
        query = f"SELECT * FROM bugs{where} ORDER BY created_at DESC, id DESC"
        with self._database.transaction() as conn:
            rows = conn.execute(query, values).fetchall()
        return [self._row_to_bug(row) for row in rows]

    def replace(self, bug_id: int, bug: Bug) -> Bug:
        with self._database.transaction() as conn:
            try:
                cursor = conn.execute(
                    """
                    UPDATE bugs
                       SET title = ?, description = ?, status = ?, priority = ?,
                           assigned_to = ?, updated_at = ?
                     WHERE id = ?
                    """,
                    (
                        bug.title,
                        bug.description,
                        bug.status.value,
                        bug.priority.value,
                        bug.assigned_to,
                        serialize_datetime(bug.updated_at),
                        bug_id,
                    ),
                )
            except sqlite3.IntegrityError as exc:
                raise ValidationError("Bug references an unknown user", {"assignedTo": "unknown user"}) from exc
            if cursor.rowcount == 0:
                raise NotFound("Bug not found")
        return self.get(bug_id)

    def remove(self, bug_id: int) -> None:
        with self._database.transaction() as conn:
            cursor = conn.execute("DELETE FROM bugs WHERE id = ?", (bug_id,))
            if cursor.rowcount == 0:
                raise NotFound("Bug not found")

    def _row_to_bug(self, row: sqlite3.Row) -> Bug:
        assigned_to = row["assigned_to"]
        return Bug(
            id=int(row["id"]),
            title=str(row["title"]),
            description=str(row["description"]),
            status=BugStatus(str(row["status"])),
            priority=BugPriority(str(row["priority"])),
            created_by=int(row["created_by"]),
            assigned_to=int(assigned_to) if assigned_to is not None else None,
            created_at=parse_datetime(str(row["created_at"])),
            updated_at=parse_datetime(str(row["updated_at"])),
        )


class InMemoryBugRepository:
    """Process-local repository used where no durable store is wanted."""

    def __init__(self) -> None:
        self._bugs: Dict[int, Tuple[int, Bug]] = {}
        self._ids = itertools.count(1)
        self._sequence = itertools.count()
        self._lock = threading.Lock()

    def insert(self, new_bug: NewBug) -> Bug:
        now = current_timestamp()
        with self._lock:
            bug = Bug(
                id=next(self._ids),
                title=new_bug.title,
                description=new_bug.description,
                status=new_bug.status,
                priority=new_bug.priority,
                created_by=new_bug.created_by,
                assigned_to=new_bug.assigned_to,
                created_at=now,
                updated_at=now,
            )
            self._bugs[bug.id] = (next(self._sequence), bug)
        return bug

    def get(self, bug_id: int) -> Bug:
        with self._lock:
            entry = self._bugs.get(bug_id)
        if entry is None:
            raise NotFound("Bug not found")
        return entry[1]

    def query(self, bug_filter: BugFilter | None = None) -> List[Bug]:
        bug_filter = bug_filter or BugFilter()
        with self._lock:
            entries = list(self._bugs.values())
        entries.sort(key=lambda entry: (entry[1].created_at, entry[0]), reverse=True)
        return [bug for _, bug in entries if bug_filter.matches(bug)]

    def replace(self, bug_id: int, bug: Bug) -> Bug:
        with self._lock:
            entry = self._bugs.get(bug_id)
            if entry is None:
                raise NotFound("Bug not found")
            stored = replace(bug, id=bug_id, created_by=entry[1].created_by, created_at=entry[1].created_at)
            self._bugs[bug_id] = (entry[0], stored)
        return stored

    def remove(self, bug_id: int) -> None:
        with self._lock:
            if self._bugs.pop(bug_id, None) is None:
                raise NotFound("Bug not found")


__all__ = ["BugRepository", "InMemoryBugRepository", "SQLiteBugRepository"]
