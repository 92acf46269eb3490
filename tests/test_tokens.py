from __future__ import annotations

import base64
import hashlib
import json
from datetime import timedelta

import pytest
from cryptography.fernet import Fernet

from bugtracker.errors import ExpiredToken, InvalidToken
from bugtracker.tokens import TokenSigner

SECRET = "tests-secret-key"


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def test_issue_and_verify_round_trip() -> None:
    signer = TokenSigner(SECRET)
    token = signer.issue(42)
    assert signer.verify(token) == 42


def test_payload_carries_only_subject_and_expiry() -> None:
    clock = FakeClock()
    signer = TokenSigner(SECRET, clock=clock)
    token = signer.issue(7)

    key = base64.urlsafe_b64encode(hashlib.sha256(SECRET.encode("utf-8")).digest())
    payload = json.loads(Fernet(key).decrypt(token.encode("ascii")))

    assert payload == {"sub": 7, "exp": int(clock.now + timedelta(days=30).total_seconds())}


def test_token_expires_after_thirty_days() -> None:
    clock = FakeClock()
    signer = TokenSigner(SECRET, clock=clock)
    token = signer.issue(1)

    clock.now += timedelta(days=29).total_seconds()
    assert signer.verify(token) == 1

    clock.now += timedelta(days=1, seconds=1).total_seconds()
    with pytest.raises(ExpiredToken):
        signer.verify(token)


def test_tampered_token_is_invalid() -> None:
    signer = TokenSigner(SECRET)
    token = signer.issue(1)
    replacement = "A" if token[20] != "A" else "B"
    tampered = token[:20] + replacement + token[21:]

    with pytest.raises(InvalidToken) as excinfo:
        signer.verify(tampered)
    assert not isinstance(excinfo.value, ExpiredToken)


def test_token_signed_with_other_secret_is_invalid() -> None:
    token = TokenSigner("another-secret").issue(1)
    with pytest.raises(InvalidToken):
        TokenSigner(SECRET).verify(token)


@pytest.mark.parametrize("garbage", ["", "not-a-token", "Bearer abc", "ünïcode"])
def test_garbage_is_invalid(garbage: str) -> None:
    with pytest.raises(InvalidToken):
        TokenSigner(SECRET).verify(garbage)


def test_secret_is_required() -> None:
    with pytest.raises(ValueError):
        TokenSigner("")
