"""Salted PBKDF2 credential codec.

Stored form is ``<salt_hex>:<derived_key_hex>``. The salt is random per call,
so hashing the same secret twice yields different stored forms. The stored
form does not record the iteration count, so ``ITERATIONS`` is fixed for the
life of every stored hash.
"""

from __future__ import annotations

import hashlib
import hmac
import secrets

ITERATIONS = 10_000
DEFAULT_SALT_BYTES = 16
DEFAULT_KEY_LENGTH = 64
_DIGEST = "sha512"


def _derive(secret: str, salt: str, key_length: int) -> bytes:
    return hashlib.pbkdf2_hmac(_DIGEST, secret.encode("utf-8"), salt.encode("utf-8"), ITERATIONS, dklen=key_length)


def hash_secret(
    secret: str,
    *,
    salt_bytes: int = DEFAULT_SALT_BYTES,
    key_length: int = DEFAULT_KEY_LENGTH,
) -> str:
    salt = secrets.token_hex(salt_bytes)
    derived = _derive(secret, salt, key_length)
    return f"{salt}:{derived.hex()}"


def verify_secret(secret: str | None, stored_form: str | None) -> bool:
    if not secret or not stored_form:
        return False
    salt, sep, expected_hex = stored_form.partition(":")
    if not sep or not salt or not expected_hex:
        return False
    try:
        expected = bytes.fromhex(expected_hex)
    except ValueError:
        return False
    derived = _derive(secret, salt, len(expected))
    return hmac.compare_digest(derived, expected)
