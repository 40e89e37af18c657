"""Substrate-level data models.

Kept free of review semantics so backends can be used independently of
sentinel_core. The core serializes its own records to bytes.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class RestoredEntry:
    """A payload read back from a backend.

    ``key`` is the key that actually matched, which differs from the
    requested key when a fallback prefix was used.
    """

    key: str
    data: bytes
