"""Hex digests of strings."""

import hashlib


def sha256(text: str) -> str:
    """Lowercase hex SHA-256 digest of ``text`` encoded as UTF-8."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def md5(text: str) -> str:
    """Lowercase hex MD5 digest of ``text`` encoded as UTF-8."""
    return hashlib.md5(text.encode("utf-8")).hexdigest()