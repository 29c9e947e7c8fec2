"""Idempotency keys for gateway calls.

Keys are deterministic so a request replayed after a database failure hits
the gateway with the same key and cannot move money twice.
"""

import hashlib
import json
from typing import Any
from uuid import UUID


def generate_idempotency_key(
    operation: str,
    entity_id: UUID | str,
    params: dict[str, Any] | None = None,
) -> str:
    """Generate a deterministic idempotency key.

    Args:
        operation: Operation name (e.g., "charge_attempt", "transfer_reversal")
        entity_id: Primary entity ID
        params: Additional parameters to include in key

    Returns:
        SHA256 hash of operation + entity + params
    """
    key_data = {
        "operation": operation,
        "entity_id": str(entity_id),
        "params": params or {},
    }
    key_str = json.dumps(key_data, sort_keys=True, default=str)
    return hashlib.sha256(key_str.encode()).hexdigest()


def charge_attempt_key(charge_intent: str, attempt_number: int) -> str:
    """Stable key for one attempt of a logical charge."""
    return generate_idempotency_key(
        "charge_attempt", charge_intent, {"attempt_number": attempt_number}
    )


def refund_key(request_id: UUID | str, part: int = 0) -> str:
    """One key per captured payment a refund is split across."""
    if part == 0:
        return f"refund:{request_id}"
    return f"refund:{request_id}:{part}"


def transfer_reversal_key(request_id: UUID | str) -> str:
    return f"transfer_reversal:{request_id}"
