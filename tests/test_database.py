from __future__ import annotations

import pytest

from bugtracker.database import Database
from bugtracker.errors import DuplicateEmail, NotFound, ServiceUnavailable, ValidationError
from bugtracker.models import Role


def test_create_and_authenticate_user(database: Database) -> None:
    user = database.create_user("Alice", "Alice@Example.com", "Sup3rSecurePwd!")

    assert user.email == "alice@example.com"
    assert user.role is Role.USER

    retrieved = database.authenticate_user("ALICE@example.com", "Sup3rSecurePwd!")
    assert retrieved is not None
    assert retrieved.id == user.id

    assert database.authenticate_user("alice@example.com", "wrong-password") is None
    assert database.authenticate_user("nobody@example.com", "Sup3rSecurePwd!") is None


def test_duplicate_email_is_case_insensitive(database: Database) -> None:
    database.create_user("Alice", "alice@x.com", "password123")
    with pytest.raises(DuplicateEmail):
        database.create_user("Other Alice", "ALICE@X.COM", "password456")


def test_password_is_not_stored_in_cleartext(database: Database) -> None:
    database.create_user("Alice", "alice@x.com", "password123")
    with database.transaction() as conn:
        stored = conn.execute("SELECT password_hash FROM users").fetchone()["password_hash"]
    assert "password123" not in stored
    assert stored.startswith("$pbkdf2-sha256$")


def test_create_user_rejects_empty_password(database: Database) -> None:
    with pytest.raises(ValidationError):
        database.create_user("Alice", "alice@x.com", "")


def test_update_profile_changes_only_supplied_fields(database: Database) -> None:
    user = database.create_user("Alice", "alice@x.com", "password123")

    renamed = database.update_user_profile(user.id, name="Alice Liddell")
    assert renamed.name == "Alice Liddell"
    assert renamed.email == "alice@x.com"

    updated = database.update_user_profile(user.id, email="Liddell@X.com", password="newpassword")
    assert updated.email == "liddell@x.com"
    assert updated.role is Role.USER
    assert database.authenticate_user("liddell@x.com", "newpassword") is not None
    assert database.authenticate_user("liddell@x.com", "password123") is None


def test_update_profile_rejects_taken_email(database: Database) -> None:
    database.create_user("Alice", "alice@x.com", "password123")
    bob = database.create_user("Bob", "bob@x.com", "password123")

    with pytest.raises(DuplicateEmail):
        database.update_user_profile(bob.id, email="alice@x.com")

    assert database.get_user(bob.id).email == "bob@x.com"


def test_update_profile_for_missing_user(database: Database) -> None:
    with pytest.raises(NotFound):
        database.update_user_profile(999, name="Ghost")


def test_set_user_role(database: Database) -> None:
    user = database.create_user("Alice", "alice@x.com", "password123")
    promoted = database.set_user_role(user.id, Role.ADMIN)
    assert promoted.role is Role.ADMIN
    assert database.get_user(user.id).role is Role.ADMIN

    with pytest.raises(NotFound):
        database.set_user_role(999, Role.ADMIN)


def test_list_users_in_creation_order(database: Database) -> None:
    database.create_user("Alice", "alice@x.com", "password123")
    database.create_user("Bob", "bob@x.com", "password123")
    assert [user.name for user in database.list_users()] == ["Alice", "Bob"]


def test_closed_database_is_unavailable(database: Database) -> None:
    database.close()
    with pytest.raises(ServiceUnavailable):
        database.get_user(1)
