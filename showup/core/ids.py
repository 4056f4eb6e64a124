"""Identifier parsing and generation."""

import secrets
import time
import uuid

from showup.core.exceptions import NotFoundError


def parse_uuid(value: str | uuid.UUID, what: str) -> uuid.UUID:
    """Coerce ``value`` to a UUID. A malformed id is reported as ``<what> not found``."""
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except ValueError:
        raise NotFoundError(f"{what} not found")


def new_challenge_id() -> str:
    return f"challenge_{int(time.time() * 1000)}_{secrets.token_hex(4)}"


def new_test_session_id() -> str:
    return f"test_session_{int(time.time() * 1000)}_{secrets.token_hex(4)}"


def new_test_payment_intent_id() -> str:
    return f"test_pi_{int(time.time() * 1000)}_{secrets.token_hex(4)}"
