"""Signed bearer tokens whose payload is only a user id and an expiry."""
from __future__ import annotations

import base64
import hashlib
import json
import time
from datetime import timedelta
from typing import Callable, Optional

from cryptography.fernet import Fernet, InvalidToken as FernetInvalidToken

from .errors import ExpiredToken, InvalidToken

DEFAULT_TOKEN_TTL = timedelta(days=30)


def _derive_key(secret: str) -> bytes:
    digest = hashlib.sha256(secret.encode("utf-8")).digest()
    return base64.urlsafe_b64encode(digest)


class TokenSigner:
    """Issue and verify tamper-evident tokens.

    Tokens are Fernet messages (AES-CBC + HMAC-SHA256) whose payload is
    ``{"sub": <user id>, "exp": <unix seconds>}``. Fernet also stamps each
    token with its creation time, which is readable without the key. The
    user's role is absent; callers re-read it from the credential store.
    """

    def __init__(
        self,
        secret: str,
        *,
        ttl: timedelta = DEFAULT_TOKEN_TTL,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        if not secret:
            raise ValueError("A token signing secret must be provided")
        self._fernet = Fernet(_derive_key(secret))
        self._ttl = ttl
        self._clock = clock or time.time

    @property
    def ttl(self) -> timedelta:
        return self._ttl

    def issue(self, user_id: int) -> str:
        expires_at = int(self._clock() + self._ttl.total_seconds())
        payload = json.dumps({"sub": user_id, "exp": expires_at}, separators=(",", ":"))
        return self._fernet.encrypt(payload.encode("utf-8")).decode("ascii")

    def verify(self, token: str) -> int:
        """Return the user id in ``token``.

        Raises :class:`InvalidToken` for anything forged, altered or malformed and
        :class:`ExpiredToken` once the embedded expiry has passed.
        """

        try:
            plaintext = self._fernet.decrypt(token.encode("ascii"))
        except (FernetInvalidToken, UnicodeEncodeError) as exc:
            raise InvalidToken() from exc

        try:
            payload = json.loads(plaintext)
            user_id = int(payload["sub"])
            expires_at = int(payload["exp"])
        except (ValueError, TypeError, KeyError) as exc:
            raise InvalidToken() from exc

        if expires_at <= self._clock():
            raise ExpiredToken()
        return user_id


__all__ = ["DEFAULT_TOKEN_TTL", "TokenSigner"]
