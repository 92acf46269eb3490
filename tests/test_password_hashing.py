"""Tests for the salted password hashing used by the credential store."""

from __future__ import annotations

import unittest

from bugtracker import database


class PasswordHashingTests(unittest.TestCase):
    def test_hash_and_verify(self) -> None:
        hashed = database._hash_password("supersecurepassword")
        self.assertTrue(hashed.startswith("$pbkdf2-sha256$"))
        self.assertTrue(database._verify_password("supersecurepassword", hashed))
        self.assertFalse(database._verify_password("incorrect", hashed))

    def test_hashes_are_salted(self) -> None:
        first = database._hash_password("samepassword")
        second = database._hash_password("samepassword")
        self.assertNotEqual(first, second)
        self.assertTrue(database._verify_password("samepassword", first))
        self.assertTrue(database._verify_password("samepassword", second))

    def test_malformed_hash_does_not_verify(self) -> None:
        self.assertFalse(database._verify_password("anything", "not-a-real-hash"))


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
