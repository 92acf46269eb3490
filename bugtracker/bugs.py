"""Bug lifecycle rules and dashboard aggregation on top of a repository."""
from __future__ import annotations

import logging
from collections import Counter
from dataclasses import replace
from typing import Callable, List, Optional

from .database import current_timestamp
from .errors import Forbidden, ValidationError
from .models import Bug, BugFilter, BugStats, BugStatus, Principal, User
from .policy import can_mutate
from .repository import BugRepository
from .validation import validate_bug_patch, validate_new_bug

logger = logging.getLogger("bugtracker.bugs")

UserLookup = Callable[[int], Optional[User]]


class BugService:
    """Create, read, update, delete and count bugs for an explicit principal."""

    def __init__(self, repository: BugRepository, *, user_lookup: UserLookup | None = None) -> None:
        self._repository = repository
        self._user_lookup = user_lookup

    def create_bug(self, payload: object, creator: Principal) -> Bug:
        new_bug = validate_new_bug(payload, creator.id)
        self._check_assignee(new_bug.assigned_to)
        bug = self._repository.insert(new_bug)
        logger.info("User %s created bug %s", creator.id, bug.id)
        return bug

    def list_bugs(self, bug_filter: BugFilter | None, principal: Principal) -> List[Bug]:
        # Every authenticated user may read every bug.
        return self._repository.query(bug_filter or BugFilter())

    def get_bug(self, bug_id: int) -> Bug:
        return self._repository.get(bug_id)

    def update_bug(self, bug_id: int, patch: object, principal: Principal) -> Bug:
        """Merge the fields present in ``patch`` into the bug.

        Lookup happens before authorization, so a missing bug is reported as
        ``NotFound`` even to callers who could not have changed it. Attempts to
        change ``createdBy`` are dropped without error.
        """

        existing = self._repository.get(bug_id)
        self._authorize(principal, existing, "update")

        changes = validate_bug_patch(patch)
        if "assigned_to" in changes:
            self._check_assignee(changes["assigned_to"])

        merged = replace(existing, **changes, updated_at=current_timestamp())
        updated = self._repository.replace(bug_id, merged)
        logger.info("User %s updated bug %s (%s)", principal.id, bug_id, ", ".join(sorted(changes)) or "no changes")
        return updated

    def delete_bug(self, bug_id: int, principal: Principal) -> None:
        existing = self._repository.get(bug_id)
        self._authorize(principal, existing, "delete")
        self._repository.remove(bug_id)
        logger.info("User %s deleted bug %s", principal.id, bug_id)

    def compute_stats(self, principal: Principal) -> BugStats:
        snapshot = self._repository.query(BugFilter())
        by_status = Counter(bug.status for bug in snapshot)
        return BugStats(
            total_bugs=len(snapshot),
            open_bugs=by_status[BugStatus.OPEN],
            in_progress_bugs=by_status[BugStatus.IN_PROGRESS],
            resolved_bugs=by_status[BugStatus.RESOLVED],
            assigned_to_me=sum(1 for bug in snapshot if bug.assigned_to == principal.id),
        )

    def _authorize(self, principal: Principal, bug: Bug, action: str) -> None:
        if not can_mutate(principal, bug):
            logger.warning("User %s is not authorised to %s bug %s", principal.id, action, bug.id)
            raise Forbidden(f"Not authorized to {action} this bug")

    def _check_assignee(self, user_id: Optional[int]) -> None:
        if user_id is None or self._user_lookup is None:
            return
        if self._user_lookup(user_id) is None:
            raise ValidationError(fields={"assignedTo": "unknown user"})


__all__ = ["BugService"]
