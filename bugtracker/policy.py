"""Authorization decisions for bug mutations."""
from __future__ import annotations

from .models import Bug, Principal, Role


def can_mutate(principal: Principal, bug: Bug) -> bool:
    """Owners and admins may update or delete a bug; reads are not gated here."""

    return principal.id == bug.created_by or principal.role is Role.ADMIN


__all__ = ["can_mutate"]
