"""Room code generation and normalization."""

from __future__ import annotations

import random
import string

ALPHABET = string.ascii_uppercase + string.digits
DEFAULT_LENGTH = 5


def generate_room_code(length: int = DEFAULT_LENGTH) -> str:
    """Random uppercase alphanumeric code; uniqueness is checked by the store."""
    return "".join(random.choices(ALPHABET, k=length))


def normalize_room_code(raw: str) -> str:
    return (raw or "").strip().upper()


def is_valid_room_code(code: str, length: int = DEFAULT_LENGTH) -> bool:
    return len(code) == length and all(c in ALPHABET for c in code)
