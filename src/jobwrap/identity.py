"""Stable job identity derived from the wrapped command line."""

from __future__ import annotations

import hashlib
from collections.abc import Sequence

FINGERPRINT_VERSION = 1
_FINGERPRINT_PREFIX = f"jobwrap-fingerprint-v{FINGERPRINT_VERSION}".encode()


def canonical_command(tokens: Sequence[str]) -> bytes:
    """Serialize command tokens byte-exactly: versioned prefix, then NUL-joined tokens."""

    encoded = [token.encode("utf-8", "surrogateescape") for token in tokens]
    return _FINGERPRINT_PREFIX + b"\0" + b"\0".join(encoded)


def fingerprint(tokens: Sequence[str]) -> str:
    """Return the hex digest identifying this exact command line."""

    if not tokens:
        raise ValueError("Cannot fingerprint an empty command.")
    return hashlib.sha256(canonical_command(tokens)).hexdigest()
