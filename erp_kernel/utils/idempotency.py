"""
Idempotency key utilities.

Clients send an ``Idempotency-Key`` with every document action.  The same
key always yields the same committed result, even under retries and
concurrent re-submission.
"""

import re
from uuid import UUID

from erp_kernel.exceptions import InvalidIdempotencyKeyError

MIN_KEY_LENGTH = 16
MAX_KEY_LENGTH = 128

_KEY_PATTERN = re.compile(r"^[A-Za-z0-9._:\-]+$")


def validate_idempotency_key(key: str) -> str:
    """
    Check a client-supplied key: 16-128 characters of [A-Za-z0-9._:-].

    Raises:
        InvalidIdempotencyKeyError
    """
    if not isinstance(key, str):
        raise InvalidIdempotencyKeyError(repr(key), "must be a string")
    if not MIN_KEY_LENGTH <= len(key) <= MAX_KEY_LENGTH:
        raise InvalidIdempotencyKeyError(
            key, f"length must be between {MIN_KEY_LENGTH} and {MAX_KEY_LENGTH}"
        )
    if not _KEY_PATTERN.match(key):
        raise InvalidIdempotencyKeyError(key, "contains unsupported characters")
    return key


def generate_idempotency_key(document_id: UUID | str, action: str, token: str) -> str:
    """
    Derive a key for internally triggered actions.

    Format: document_id:action:token

    Example:
        >>> generate_idempotency_key(po_id, "complete", "auto")
        "550e8400-e29b-41d4-a716-446655440000:complete:auto"
    """
    return validate_idempotency_key(f"{document_id}:{action}:{token}")
