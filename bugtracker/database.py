"""SQLite-backed persistence for user credentials and bug records."""
from __future__ import annotations

import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator, List, Optional

from passlib.context import CryptContext

from .errors import DuplicateEmail, NotFound, ServiceUnavailable, ValidationError
from .models import Role, User


def _ensure_directory(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)


def resolve_database_path(env_value: Optional[str]) -> Path:
    """Resolve the on-disk path for the application database."""

    if env_value:
        return Path(env_value).expanduser().resolve(strict=False)
    base_dir = Path(__file__).resolve().parent.parent / "data"
    return (base_dir / "bugtracker.sqlite3").resolve(strict=False)


def current_timestamp() -> datetime:
    return datetime.now(timezone.utc)


def serialize_datetime(value: datetime) -> str:
    return value.isoformat(timespec="microseconds")


def parse_datetime(value: str) -> datetime:
    return datetime.fromisoformat(value)


def normalize_email(email: str) -> str:
    return email.strip().lower()


_pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


def _hash_password(password: str) -> str:
    return _pwd_context.hash(password)


def _verify_password(password: str, hashed: str) -> bool:
    try:
        return _pwd_context.verify(password, hashed)
    except ValueError:
        return False


class Database:
    """Explicitly opened and closed handle around a single SQLite connection.

    The handle is created at process start, shared by the credential store and
    the bug repository, and closed at shutdown. Statements are serialised
    through a lock because the connection is used from worker threads.
    """

    def __init__(self, path: Path | str) -> None:
        self._path = str(path)
        if self._path != ":memory:":
            _ensure_directory(Path(self._path))
        self._conn: Optional[sqlite3.Connection] = None
        self._lock = threading.RLock()

    @property
    def path(self) -> str:
        return self._path

    @property
    def is_open(self) -> bool:
        return self._conn is not None

    def open(self) -> None:
        if self._conn is not None:
            return
        try:
            conn = sqlite3.connect(self._path, check_same_thread=False, timeout=5.0)
        except sqlite3.Error as exc:
            raise ServiceUnavailable(f"Unable to open database at {self._path}") from exc
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        self._conn = conn

    def close(self) -> None:
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Yield the connection inside a transaction that commits or rolls back as a unit."""

        with self._lock:
            if self._conn is None:
                raise ServiceUnavailable("Database connection is not open")
            try:
                with self._conn:
                    yield self._conn
            except sqlite3.OperationalError as exc:
                raise ServiceUnavailable() from exc

    def initialize(self) -> None:
        """Open the connection and create the required tables if they do not exist."""

        self.open()
        with self.transaction() as conn:
            conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS users (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL,
                    email TEXT NOT NULL UNIQUE,
                    password_hash TEXT NOT NULL,
                    role TEXT NOT NULL DEFAULT 'user',
                    created_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS bugs (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    title TEXT NOT NULL,
                    description TEXT NOT NULL,
                    status TEXT NOT NULL,
                    priority TEXT NOT NULL,
                    created_by INTEGER NOT NULL REFERENCES users(id),
                    assigned_to INTEGER REFERENCES users(id) ON DELETE SET NULL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_bugs_status ON bugs(status);
                CREATE INDEX IF NOT EXISTS idx_bugs_priority ON bugs(priority);
                CREATE INDEX IF NOT EXISTS idx_bugs_assigned_to ON bugs(assigned_to);
                """
            )

    # ------------------------------------------------------------------
    # User management
    # ------------------------------------------------------------------
    def create_user(
        self,
        name: str,
        email: str,
        password: str,
        *,
        role: Role = Role.USER,
    ) -> User:
        """Persist a new user with a salted password hash."""

        if not password:
            raise ValidationError("Password must not be empty", {"password": "required"})

        created_at = current_timestamp()
        normalized_email = normalize_email(email)
        password_hash = _hash_password(password)

        with self.transaction() as conn:
            try:
                cursor = conn.execute(
                    """
                    INSERT INTO users (name, email, password_hash, role, created_at)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    (
                        name,
                        normalized_email,
                        password_hash,
                        role.value,
                        serialize_datetime(created_at),
                    ),
                )
            except sqlite3.IntegrityError as exc:
                raise DuplicateEmail() from exc
            user_id = cursor.lastrowid

        return User(id=user_id, name=name, email=normalized_email, role=role, created_at=created_at)

    def get_user(self, user_id: int) -> Optional[User]:
        with self.transaction() as conn:
            row = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
        if row is None:
            return None
        return self._row_to_user(row)

    def get_user_by_email(self, email: str) -> Optional[User]:
        with self.transaction() as conn:
            row = conn.execute(
                "SELECT * FROM users WHERE email = ?",
                (normalize_email(email),),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_user(row)

    def list_users(self) -> List[User]:
        with self.transaction() as conn:
            rows = conn.execute("SELECT * FROM users ORDER BY id").fetchall()
        return [self._row_to_user(row) for row in rows]

    def authenticate_user(self, email: str, password: str) -> Optional[User]:
        with self.transaction() as conn:
            row = conn.execute(
                "SELECT * FROM users WHERE email = ?",
                (normalize_email(email),),
            ).fetchone()
        if row is None:
            # Burn the same hashing time as a real check so unknown emails are not observable.
            _pwd_context.dummy_verify()
            return None
        if not _verify_password(password, str(row["password_hash"])):
            return None
        return self._row_to_user(row)

    def update_user_profile(
        self,
        user_id: int,
        *,
        name: Optional[str] = None,
        email: Optional[str] = None,
        password: Optional[str] = None,
    ) -> User:
        """Update name, email and/or password of an existing user in one statement."""

        updates: List[str] = []
        values: List[object] = []
        if name is not None:
            normalized_name = name.strip()
            if not normalized_name:
                raise ValidationError("Name must not be empty", {"name": "must not be empty"})
            updates.append("name = ?")
            values.append(normalized_name)
        if email is not None:
            updates.append("email = ?")
            values.append(normalize_email(email))
        if password is not None:
            if not password:
                raise ValidationError("Password must not be empty", {"password": "required"})
            updates.append("password_hash = ?")
            values.append(_hash_password(password))

        if updates:
            values.append(user_id)
            with self.transaction() as conn:
                try:
                    conn.execute(f"UPDATE users SET {', '.join(updates)} WHERE id = ?", values)
                except sqlite3.IntegrityError as exc:
                    raise DuplicateEmail() from exc

        refreshed = self.get_user(user_id)
        if refreshed is None:
            raise NotFound("User not found")
        return refreshed

    def set_user_role(self, user_id: int, role: Role) -> User:
        """Change a user's role. Only trusted administrative tooling calls this."""

        with self.transaction() as conn:
            cursor = conn.execute(
                "UPDATE users SET role = ? WHERE id = ?",
                (role.value, user_id),
            )
            if cursor.rowcount == 0:
                raise NotFound("User not found")

        refreshed = self.get_user(user_id)
        if refreshed is None:
            raise NotFound("User not found")
        return refreshed

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _row_to_user(self, row: sqlite3.Row) -> User:
        return User(
            id=int(row["id"]),
            name=str(row["name"]),
            email=str(row["email"]),
            role=Role(str(row["role"])),
            created_at=parse_datetime(str(row["created_at"])),
        )


__all__ = ["Database", "normalize_email", "resolve_database_path"]
