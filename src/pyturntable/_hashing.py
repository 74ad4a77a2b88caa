"""Digest helpers."""

from __future__ import annotations

import hashlib
import random


def sha1_hex(value: object) -> str:
    """SHA1 hex digest of ``str(value)`` encoded as UTF-8."""
    return hashlib.sha1(str(value).encode("utf-8")).hexdigest()


def random_digest() -> str:
    """A random 40-character hex id, used where the service wants an arbitrary room id."""
    return sha1_hex(random.random())
