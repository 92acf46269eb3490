"""Pure input validation for users and bugs.

Nothing here touches storage: every function either returns a typed value or
raises :class:`~bugtracker.errors.ValidationError` listing the offending fields.
"""
from __future__ import annotations

import re
from typing import Any, Dict, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from .errors import ValidationError
from .models import BugFilter, BugPriority, BugStatus, NewBug

_EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_MAX_TITLE_LENGTH = 200
_MAX_DESCRIPTION_LENGTH = 10_000
_MAX_NAME_LENGTH = 100
# Largest value an SQLite INTEGER row id can hold.
MAX_RECORD_ID = 2**63 - 1

# Fields a bug patch may change; ownership and timestamps are never patchable.
PATCHABLE_FIELDS = ("title", "description", "status", "priority", "assigned_to")


def _strip_required(value: object) -> object:
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValueError("must not be empty")
        return stripped
    return value


def _blank_to_none(value: object) -> object:
    if isinstance(value, str) and not value.strip():
        return None
    return value


class BugCreateInput(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    title: str = Field(..., max_length=_MAX_TITLE_LENGTH)
    description: str = Field(..., max_length=_MAX_DESCRIPTION_LENGTH)
    status: BugStatus = BugStatus.OPEN
    priority: BugPriority = BugPriority.MEDIUM
    assigned_to: Optional[int] = Field(default=None, alias="assignedTo", ge=1, le=MAX_RECORD_ID)

    @field_validator("title", "description", mode="before")
    @classmethod
    def _require_text(cls, value: object) -> object:
        return _strip_required(value)

    @field_validator("assigned_to", mode="before")
    @classmethod
    def _normalize_assignee(cls, value: object) -> object:
        return _blank_to_none(value)


class BugPatchInput(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    title: Optional[str] = Field(default=None, max_length=_MAX_TITLE_LENGTH)
    description: Optional[str] = Field(default=None, max_length=_MAX_DESCRIPTION_LENGTH)
    status: Optional[BugStatus] = None
    priority: Optional[BugPriority] = None
    assigned_to: Optional[int] = Field(default=None, alias="assignedTo", ge=1, le=MAX_RECORD_ID)

    @field_validator("title", "description", mode="before")
    @classmethod
    def _require_text(cls, value: object) -> object:
        return _strip_required(value)

    @field_validator("assigned_to", mode="before")
    @classmethod
    def _normalize_assignee(cls, value: object) -> object:
        return _blank_to_none(value)


class RegistrationInput(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: str = Field(..., max_length=_MAX_NAME_LENGTH)
    email: str
    password: str

    @field_validator("name", mode="before")
    @classmethod
    def _require_name(cls, value: object) -> object:
        return _strip_required(value)

    @field_validator("email", mode="before")
    @classmethod
    def _check_email(cls, value: object) -> object:
        return _check_email_value(value)


class ProfileUpdateInput(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: Optional[str] = Field(default=None, max_length=_MAX_NAME_LENGTH)
    email: Optional[str] = None
    password: Optional[str] = None

    @field_validator("name", "password", mode="before")
    @classmethod
    def _empty_is_unchanged(cls, value: object) -> object:
        return _blank_to_none(value)

    @field_validator("email", mode="before")
    @classmethod
    def _check_email(cls, value: object) -> object:
        value = _blank_to_none(value)
        if value is None:
            return None
        return _check_email_value(value)


def _check_email_value(value: object) -> object:
    if isinstance(value, str):
        stripped = value.strip().lower()
        if not _EMAIL_PATTERN.match(stripped):
            raise ValueError("must be a valid email address")
        return stripped
    return value


def _field_name(loc: tuple) -> str:
    names = [str(part) for part in loc if not isinstance(part, int)]
    return ".".join(names) or "body"


def convert_pydantic_error(exc: PydanticValidationError) -> ValidationError:
    """Translate a pydantic error into the tracker's ``ValidationError``."""

    fields: Dict[str, str] = {}
    for error in exc.errors():
        name = _field_name(tuple(error.get("loc", ())))
        message = str(error.get("msg", "invalid"))
        if message.startswith("Value error, "):
            message = message[len("Value error, "):]
        fields.setdefault(name, message)
    return ValidationError(fields=fields)


def _ensure_mapping(payload: object) -> Mapping[str, Any]:
    if not isinstance(payload, Mapping):
        raise ValidationError("Request body must be a JSON object", {"body": "must be an object"})
    return payload


def validate_new_bug(payload: object, creator_id: int) -> NewBug:
    """Validate a create payload. ``created_by`` always comes from ``creator_id``."""

    try:
        parsed = BugCreateInput.model_validate(_ensure_mapping(payload))
    except PydanticValidationError as exc:
        raise convert_pydantic_error(exc) from exc
    return NewBug(
        title=parsed.title,
        description=parsed.description,
        status=parsed.status,
        priority=parsed.priority,
        created_by=creator_id,
        assigned_to=parsed.assigned_to,
    )


def validate_bug_patch(payload: object) -> Dict[str, Any]:
    """Return only the patchable fields present in ``payload``, validated.

    ``assigned_to`` may be explicitly cleared with ``null``; any other field set
    to ``null`` is rejected.
    """

    try:
        parsed = BugPatchInput.model_validate(_ensure_mapping(payload))
    except PydanticValidationError as exc:
        raise convert_pydantic_error(exc) from exc

    changes: Dict[str, Any] = {}
    problems: Dict[str, str] = {}
    for name in PATCHABLE_FIELDS:
        if name not in parsed.model_fields_set:
            continue
        value = getattr(parsed, name)
        if value is None and name != "assigned_to":
            problems[name] = "must not be null"
            continue
        changes[name] = value
    if problems:
        raise ValidationError(fields=problems)
    return changes


def validate_bug_filter(
    status: Optional[str] = None,
    priority: Optional[str] = None,
    assigned_to: Optional[str] = None,
) -> BugFilter:
    """Build a :class:`BugFilter` from raw query-string values; blanks mean "any"."""

    problems: Dict[str, str] = {}
    parsed_status: Optional[BugStatus] = None
    parsed_priority: Optional[BugPriority] = None
    parsed_assignee: Optional[int] = None

    if status:
        try:
            parsed_status = BugStatus(status)
        except ValueError:
            problems["status"] = "must be one of " + ", ".join(item.value for item in BugStatus)
    if priority:
        try:
            parsed_priority = BugPriority(priority)
        except ValueError:
            problems["priority"] = "must be one of " + ", ".join(item.value for item in BugPriority)
    if assigned_to:
        try:
            parsed_assignee = int(assigned_to)
        except ValueError:
            problems["assignedTo"] = "must be a user id"
        else:
            if not 1 <= parsed_assignee <= MAX_RECORD_ID:
                problems["assignedTo"] = "must be a user id"

    if problems:
        raise ValidationError(fields=problems)
    return BugFilter(status=parsed_status, priority=parsed_priority, assigned_to=parsed_assignee)


def validate_registration(payload: object, *, min_password_length: int) -> RegistrationInput:
    try:
        parsed = RegistrationInput.model_validate(_ensure_mapping(payload))
    except PydanticValidationError as exc:
        raise convert_pydantic_error(exc) from exc
    if len(parsed.password) < min_password_length:
        raise ValidationError(
            fields={"password": f"must be at least {min_password_length} characters"}
        )
    return parsed


def validate_profile_update(payload: object, *, min_password_length: int) -> ProfileUpdateInput:
    try:
        parsed = ProfileUpdateInput.model_validate(_ensure_mapping(payload))
    except PydanticValidationError as exc:
        raise convert_pydantic_error(exc) from exc
    if parsed.password is not None and len(parsed.password) < min_password_length:
        raise ValidationError(
            fields={"password": f"must be at least {min_password_length} characters"}
        )
    return parsed


__all__ = [
    "BugCreateInput",
    "BugPatchInput",
    "PATCHABLE_FIELDS",
    "ProfileUpdateInput",
    "RegistrationInput",
    "convert_pydantic_error",
    "validate_bug_filter",
    "validate_bug_patch",
    "validate_new_bug",
    "validate_profile_update",
    "validate_registration",
]
