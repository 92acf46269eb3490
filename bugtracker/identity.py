"""User registration, authentication and principal resolution."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List

from .database import Database
from .errors import InvalidCredentials, InvalidToken, NotFound
from .models import Principal, User
from .tokens import TokenSigner
from .validation import validate_profile_update, validate_registration

logger = logging.getLogger("bugtracker.identity")

DEFAULT_MIN_PASSWORD_LENGTH = 8


@dataclass(frozen=True)
class AuthenticatedUser:
    """A user together with a freshly issued bearer token."""

    user: User
    token: str


class IdentityManager:
    """Front door for accounts: wraps the credential store and the token signer."""

    def __init__(
        self,
        database: Database,
        signer: TokenSigner,
        *,
        min_password_length: int = DEFAULT_MIN_PASSWORD_LENGTH,
    ) -> None:
        self._database = database
        self._signer = signer
        self._min_password_length = min_password_length

    def register(self, name: str, email: str, password: str) -> User:
        parsed = validate_registration(
            {"name": name, "email": email, "password": password},
            min_password_length=self._min_password_length,
        )
        user = self._database.create_user(parsed.name, parsed.email, parsed.password)
        logger.info("Registered user %s", user.id)
        return user

    def authenticate(self, email: str, password: str) -> AuthenticatedUser:
        """Check credentials and issue a token.

        Unknown emails and wrong passwords fail identically with
        :class:`InvalidCredentials`.
        """

        user = None
        if email and password:
            user = self._database.authenticate_user(email, password)
        if user is None:
            logger.warning("Failed login attempt for %s", email)
            raise InvalidCredentials()
        logger.info("User %s signed in", user.id)
        return AuthenticatedUser(user=user, token=self.issue_token(user.id))

    def issue_token(self, user_id: int) -> str:
        return self._signer.issue(user_id)

    def resolve_principal(self, token: str) -> Principal:
        user_id = self._signer.verify(token)
        user = self._database.get_user(user_id)
        if user is None:
            raise InvalidToken("Token refers to an unknown user")
        return Principal(id=user.id, role=user.role)

    def get_profile(self, principal: Principal) -> User:
        user = self._database.get_user(principal.id)
        if user is None:
            raise NotFound("User not found")
        return user

    def list_users(self) -> List[User]:
        return self._database.list_users()

    def update_profile(self, principal: Principal, payload: object) -> AuthenticatedUser:
        """Apply a self-service profile change; role is never part of it."""

        parsed = validate_profile_update(payload, min_password_length=self._min_password_length)
        user = self._database.update_user_profile(
            principal.id,
            name=parsed.name,
            email=parsed.email,
            password=parsed.password,
        )
        logger.info("User %s updated their profile", principal.id)
        return AuthenticatedUser(user=user, token=self.issue_token(user.id))


__all__ = ["AuthenticatedUser", "DEFAULT_MIN_PASSWORD_LENGTH", "IdentityManager"]
