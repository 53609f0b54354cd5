"""Hashing utilities for session identifiers."""
import hashlib
import json
import secrets
from typing import Any, Mapping, Optional

SESSION_ID_LENGTH = 32


def generate_session_id(metadata: Optional[Mapping[str, Any]] = None) -> str:
    """
    Generate a new session ID.

    The ID is a SHA-256 digest over the client timestamp, the user agent and
    16 random bytes, truncated to 32 hex characters.

    Args:
        metadata: Client metadata (``timestamp`` and ``userAgent`` are used)

    Returns:
        A 32 character hex string
    """
    metadata = metadata or {}
    payload = json.dumps(
        {
            "timestamp": metadata.get("timestamp"),
            "userAgent": metadata.get("userAgent"),
            "random": secrets.token_hex(16),
        },
        sort_keys=True,
        default=str,
    )
    return hashlib.sha256(payload.encode()).hexdigest()[:SESSION_ID_LENGTH]
