"""Financial audit trail service.

Every entry carries the hash of the entry before it, so the log can be
checked end to end with ``verify_integrity``.
"""

import hashlib
import json
from datetime import UTC, datetime
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from rentalpay.models.admin import AuditLog

# Keys whose values must never be stored in clear
SENSITIVE_KEYS = {
    "card_number",
    "cvv",
    "account_number",
    "iban",
    "instrument_ref",
    "customer_ref",
    "stripe_payment_method_id",
    "stripe_customer_id",
    "payment_method",
}


def mask_value(value: Any) -> str:
    text = str(value)
    if len(text) <= 4:
        return "****"
    return f"****{text[-4:]}"


def mask_sensitive(values: dict[str, Any] | None) -> dict[str, Any] | None:
    """Mask sensitive keys (recursively) and coerce values to JSON types."""
    if values is None:
        return None

    def _mask(obj: Any) -> Any:
        if isinstance(obj, dict):
            return {
                key: mask_value(val) if key in SENSITIVE_KEYS and val is not None else _mask(val)
                for key, val in obj.items()
            }
        if isinstance(obj, (list, tuple)):
            return [_mask(item) for item in obj]
        return obj

    return json.loads(json.dumps(_mask(values), default=str))


def _timestamp(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).isoformat()


def compute_entry_hash(entry: AuditLog) -> str:
    payload = {
        "sequence": entry.sequence,
        "actor_id": entry.actor_id,
        "action": entry.action,
        "resource_type": entry.resource_type,
        "resource_id": entry.resource_id,
        "old_values": entry.old_values,
        "new_values": entry.new_values,
        "created_at": _timestamp(entry.created_at),
        "previous_hash": entry.previous_hash,
    }
    canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


class AuditService:
    """Service for immutable financial audit logging."""

    async def _last_entry(self, db: AsyncSession) -> AuditLog | None:
        result = await db.execute(select(AuditLog).order_by(AuditLog.sequence.desc()).limit(1))
        return result.scalar_one_or_none()

    async def log_financial_action(
        self,
        db: AsyncSession,
        actor_id: str | None,
        action: str,
        resource_type: str,
        resource_id: UUID | str | None,
        old_values: dict[str, Any] | None = None,
        new_values: dict[str, Any] | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> AuditLog:
        """Append a financial action to the chained audit log.

        Args:
            db: Database session
            actor_id: Staff member, guest or "system"
            action: Action name (e.g., "refund_process", "charges_waive")
            resource_type: Resource type (e.g., "booking", "refund_request")
            resource_id: Resource ID
            old_values: Previous state
            new_values: New state
            ip_address: Client IP
            user_agent: Client user agent

        Returns:
            Created audit log entry
        """
        previous = await self._last_entry(db)

        audit = AuditLog(
            sequence=(previous.sequence + 1) if previous else 1,
            actor_id=actor_id,
            action=action,
            resource_type=resource_type,
            resource_id=str(resource_id) if resource_id is not None else None,
            old_values=mask_sensitive(old_values),
            new_values=mask_sensitive(new_values),
            ip_address=ip_address,
            user_agent=user_agent,
            previous_hash=previous.hash if previous else None,
            created_at=datetime.now(UTC),
        )
        audit.hash = compute_entry_hash(audit)
        db.add(audit)
        await db.flush()
        return audit

    async def log_status_change(
        self,
        db: AsyncSession,
        actor_id: str | None,
        action: str,
        booking_id: UUID,
        old_status: Any,
        new_status: Any,
        details: dict[str, Any] | None = None,
    ) -> AuditLog:
        """Log a booking settlement status change."""
        return await self.log_financial_action(
            db=db,
            actor_id=actor_id,
            action=action,
            resource_type="booking",
            resource_id=booking_id,
            old_values={"status": _status_dict(old_status)},
            new_values={"status": _status_dict(new_status), **(details or {})},
        )

    async def log_refund_action(
        self,
        db: AsyncSession,
        actor_id: str,
        action: str,
        refund_request_id: UUID,
        old_status: str | None,
        new_status: str,
        amount: int,
        extra: dict[str, Any] | None = None,
    ) -> AuditLog:
        """Log refund request creation, review or processing."""
        return await self.log_financial_action(
            db=db,
            actor_id=actor_id,
            action=action,
            resource_type="refund_request",
            resource_id=refund_request_id,
            old_values={"status": old_status} if old_status else None,
            new_values={"status": new_status, "amount": amount, **(extra or {})},
        )

    async def verify_integrity(self, db: AsyncSession) -> tuple[bool, list[UUID]]:
        """Walk the chain and return the ids of entries that do not check out."""
        result = await db.execute(select(AuditLog).order_by(AuditLog.sequence))
        broken: list[UUID] = []
        expected_previous: str | None = None
        for entry in result.scalars():
            if entry.previous_hash != expected_previous or compute_entry_hash(entry) != entry.hash:
                broken.append(entry.id)
            expected_previous = entry.hash
        return not broken, broken


def _status_dict(status: Any) -> Any:
    # SettlementStatus triples are logged as their three column values
    if hasattr(status, "lifecycle"):
        return {
            "status": status.lifecycle.value,
            "verification_status": status.verification.value,
            "payment_status": status.payment.value,
        }
    return status


audit_service = AuditService()
