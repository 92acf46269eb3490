from __future__ import annotations

from datetime import datetime, timezone
from typing import Dict, Optional

import pytest

from bugtracker.bugs import BugService
from bugtracker.errors import Forbidden, NotFound, ValidationError
from bugtracker.models import BugFilter, BugPriority, BugStatus, Principal, Role, User
from bugtracker.repository import InMemoryBugRepository

ALICE = Principal(id=1, role=Role.USER)
BOB = Principal(id=2, role=Role.USER)
ADMIN = Principal(id=3, role=Role.ADMIN)

_USERS: Dict[int, User] = {
    principal.id: User(
        id=principal.id,
        name=f"user-{principal.id}",
        email=f"user{principal.id}@x.com",
        role=principal.role,
        created_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
    )
    for principal in (ALICE, BOB, ADMIN)
}


def _lookup(user_id: int) -> Optional[User]:
    return _USERS.get(user_id)


@pytest.fixture()
def service() -> BugService:
    return BugService(InMemoryBugRepository(), user_lookup=_lookup)


def _payload(**overrides) -> dict:
    payload = {
        "title": "Crash on save",
        "description": "The editor crashes when saving.",
        "status": "open",
        "priority": "high",
    }
    payload.update(overrides)
    return payload


def test_created_bug_round_trips(service: BugService) -> None:
    created = service.create_bug(_payload(assignedTo=BOB.id), ALICE)
    fetched = service.get_bug(created.id)

    assert fetched.title == "Crash on save"
    assert fetched.description == "The editor crashes when saving."
    assert fetched.status is BugStatus.OPEN
    assert fetched.priority is BugPriority.HIGH
    assert fetched.assigned_to == BOB.id
    assert fetched.created_by == ALICE.id


def test_create_ignores_owner_in_payload(service: BugService) -> None:
    bug = service.create_bug(_payload(createdBy=BOB.id), ALICE)
    assert bug.created_by == ALICE.id


def test_create_lists_missing_fields(service: BugService) -> None:
    with pytest.raises(ValidationError) as excinfo:
        service.create_bug({"status": "open"}, ALICE)
    assert set(excinfo.value.fields) == {"title", "description"}


def test_create_rejects_unknown_assignee(service: BugService) -> None:
    with pytest.raises(ValidationError) as excinfo:
        service.create_bug(_payload(assignedTo=999), ALICE)
    assert "assignedTo" in excinfo.value.fields


def test_non_owner_cannot_update_or_delete(service: BugService) -> None:
    bug = service.create_bug(_payload(), ALICE)

    with pytest.raises(Forbidden):
        service.update_bug(bug.id, {"status": "resolved"}, BOB)
    with pytest.raises(Forbidden):
        service.delete_bug(bug.id, BOB)

    assert service.get_bug(bug.id).status is BugStatus.OPEN


def test_admin_can_update_and_delete_any_bug(service: BugService) -> None:
    bug = service.create_bug(_payload(), ALICE)

    updated = service.update_bug(bug.id, {"status": "resolved"}, ADMIN)
    assert updated.status is BugStatus.RESOLVED
    assert updated.created_by == ALICE.id

    service.delete_bug(bug.id, ADMIN)
    with pytest.raises(NotFound):
        service.get_bug(bug.id)


def test_missing_bug_is_not_found_before_authorization(service: BugService) -> None:
    with pytest.raises(NotFound):
        service.update_bug(404, {"status": "resolved"}, BOB)
    with pytest.raises(NotFound):
        service.delete_bug(404, BOB)


def test_update_merges_only_present_fields(service: BugService) -> None:
    bug = service.create_bug(_payload(assignedTo=BOB.id), ALICE)

    updated = service.update_bug(bug.id, {"priority": "low", "createdBy": BOB.id}, ALICE)

    assert updated.priority is BugPriority.LOW
    assert updated.title == bug.title
    assert updated.status is bug.status
    assert updated.assigned_to == BOB.id
    assert updated.created_by == ALICE.id
    assert updated.created_at == bug.created_at
    assert updated.updated_at >= bug.updated_at


def test_update_can_unassign(service: BugService) -> None:
    bug = service.create_bug(_payload(assignedTo=BOB.id), ALICE)
    assert service.update_bug(bug.id, {"assignedTo": None}, ALICE).assigned_to is None


def test_update_rejects_invalid_status(service: BugService) -> None:
    bug = service.create_bug(_payload(), ALICE)
    with pytest.raises(ValidationError):
        service.update_bug(bug.id, {"status": "closed"}, ALICE)
    assert service.get_bug(bug.id).status is BugStatus.OPEN


def test_any_status_transition_is_allowed(service: BugService) -> None:
    bug = service.create_bug(_payload(status="resolved"), ALICE)
    assert service.update_bug(bug.id, {"status": "open"}, ALICE).status is BugStatus.OPEN


@pytest.mark.parametrize("status", list(BugStatus))
def test_list_filters_by_each_status(service: BugService, status: BugStatus) -> None:
    for value in ("open", "open", "in-progress", "resolved"):
        service.create_bug(_payload(status=value), ALICE)

    listed = service.list_bugs(BugFilter(status=status), BOB)

    assert listed
    assert all(bug.status is status for bug in listed)


def test_reads_are_not_scoped_to_owner(service: BugService) -> None:
    service.create_bug(_payload(), ALICE)
    service.create_bug(_payload(), BOB)
    assert len(service.list_bugs(None, BOB)) == 2


def test_stats_scenario(service: BugService) -> None:
    for value in ("open", "open", "open", "resolved"):
        service.create_bug(_payload(status=value), ALICE)

    stats = service.compute_stats(ALICE)

    assert stats.total_bugs == 4
    assert stats.open_bugs == 3
    assert stats.in_progress_bugs == 0
    assert stats.resolved_bugs == 1
    assert stats.assigned_to_me == 0


def test_stats_counts_sum_to_total_and_track_assignee(service: BugService) -> None:
    statuses = ["open", "in-progress", "resolved", "in-progress", "open"]
    for index, value in enumerate(statuses):
        assignee = BOB.id if index % 2 == 0 else None
        service.create_bug(_payload(status=value, assignedTo=assignee), ALICE)

    stats = service.compute_stats(BOB)

    assert stats.open_bugs + stats.in_progress_bugs + stats.resolved_bugs == stats.total_bugs == 5
    assert stats.assigned_to_me == 3
