"""Initial database schema.

Revision ID: 001_initial
Revises: None
Create Date: 2026-10-18

Creates all settlement tables:
- Rental bookings and trip disputes
- Trip charges
- Payment attempts, waives and adjustments
- Refund requests
- Settlement ledger and host balances
- Audit logs
"""

from typing import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers
revision: str = "001_initial"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    """Create all database tables."""

    # ==================== BOOKINGS ====================
    op.create_table(
        "rental_bookings",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("booking_code", sa.String(20), unique=True, nullable=False, index=True),
        sa.Column("guest_id", postgresql.UUID(as_uuid=True), nullable=False, index=True),
        sa.Column("guest_email", sa.String(255)),
        sa.Column("host_id", postgresql.UUID(as_uuid=True), nullable=False, index=True),
        sa.Column("stripe_customer_id", sa.String(100)),
        sa.Column("stripe_payment_method_id", sa.String(100)),
        sa.Column("currency", sa.String(3), default="USD"),
        sa.Column("number_of_days", sa.Integer, nullable=False),
        sa.Column("start_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("start_mileage", sa.Integer),
        sa.Column("end_mileage", sa.Integer),
        sa.Column("fuel_level_start", sa.String(10)),
        sa.Column("fuel_level_end", sa.String(10)),
        sa.Column("trip_started_at", sa.DateTime(timezone=True)),
        sa.Column("trip_ended_at", sa.DateTime(timezone=True)),
        sa.Column("damage_reported", sa.Boolean, default=False),
        sa.Column("damage_description", sa.Text),
        sa.Column("notes", sa.Text),
        sa.Column("status", sa.String(20), default="ACTIVE", index=True),
        sa.Column("verification_status", sa.String(20), default="PENDING"),
        sa.Column("payment_status", sa.String(20), default="PAID"),
        sa.Column("total_paid", sa.Integer, default=0),
        sa.Column("total_refunded", sa.Integer, default=0),
        sa.Column("pending_charges_amount", sa.Integer),
        sa.Column("charges_processed_at", sa.DateTime(timezone=True)),
        sa.Column("stripe_payment_intent_id", sa.String(100)),
        sa.Column("host_transfer_id", sa.String(100)),
        sa.Column("host_transfer_amount", sa.Integer, default=0),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), onupdate=sa.func.now()),
    )

    op.create_table(
        "trip_disputes",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("booking_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("rental_bookings.id"), nullable=False, index=True),
        sa.Column("type", sa.String(20), nullable=False),
        sa.Column("description", sa.Text, nullable=False),
        sa.Column("status", sa.String(20), default="OPEN"),
        sa.Column("resolved_by", sa.String(100)),
        sa.Column("resolved_at", sa.DateTime(timezone=True)),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    # ==================== TRIP CHARGES ====================
    op.create_table(
        "trip_charges",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("booking_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("rental_bookings.id"), nullable=False, index=True),
        sa.Column("supersedes_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("trip_charges.id")),
        sa.Column("mileage_charge", sa.Integer, default=0),
        sa.Column("fuel_charge", sa.Integer, default=0),
        sa.Column("late_charge", sa.Integer, default=0),
        sa.Column("damage_charge", sa.Integer, default=0),
        sa.Column("total_charges", sa.Integer, nullable=False),
        sa.Column("currency", sa.String(3), default="USD"),
        sa.Column("charge_details", postgresql.JSONB, nullable=False),
        sa.Column("requires_approval", sa.Boolean, default=False),
        sa.Column("hold_until", sa.DateTime(timezone=True)),
        sa.Column("payment_choice", sa.String(20)),
        sa.Column("routing_reason", sa.Text),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    # ==================== PAYMENTS ====================
    op.create_table(
        "payment_attempts",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("booking_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("rental_bookings.id"), index=True),
        sa.Column("charge_intent", sa.String(100), nullable=False, index=True),
        sa.Column("attempt_number", sa.Integer, nullable=False, default=1),
        sa.Column("retry_of_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("payment_attempts.id")),
        sa.Column("idempotency_key", sa.String(64), unique=True, nullable=False),
        sa.Column("amount", sa.Integer, nullable=False),
        sa.Column("currency", sa.String(3), default="USD"),
        sa.Column("customer_ref", sa.String(100), nullable=False),
        sa.Column("instrument_ref", sa.String(100), nullable=False),
        sa.Column("description", sa.Text),
        sa.Column("outcome", sa.String(20), default="pending", index=True),
        sa.Column("gateway", sa.String(30)),
        sa.Column("gateway_charge_id", sa.String(100)),
        sa.Column("failure_reason", sa.Text),
        sa.Column("gateway_response", postgresql.JSONB),
        sa.Column("attempt_metadata", postgresql.JSONB),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("completed_at", sa.DateTime(timezone=True)),
        sa.UniqueConstraint("charge_intent", "attempt_number", name="uq_payment_attempts_intent_number"),
    )

    op.create_table(
        "charge_waives",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("booking_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("rental_bookings.id"), nullable=False, index=True),
        sa.Column("original_amount", sa.Integer, nullable=False),
        sa.Column("waive_percentage", sa.Numeric(5, 2), nullable=False),
        sa.Column("waived_amount", sa.Integer, nullable=False),
        sa.Column("remaining_amount", sa.Integer, nullable=False),
        sa.Column("reason", sa.Text, nullable=False),
        sa.Column("actor_id", sa.String(100), nullable=False, index=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table(
        "charge_adjustments",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("booking_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("rental_bookings.id"), nullable=False, index=True),
        sa.Column("original_total", sa.Integer, nullable=False),
        sa.Column("adjusted_total", sa.Integer, nullable=False),
        sa.Column("total_adjustment", sa.Integer, nullable=False),
        sa.Column("actor_id", sa.String(100), nullable=False),
        sa.Column("payment_attempt_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("payment_attempts.id")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table(
        "charge_adjustment_items",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("adjustment_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("charge_adjustments.id"), nullable=False, index=True),
        sa.Column("position", sa.Integer, default=0),
        sa.Column("charge_type", sa.String(30), nullable=False),
        sa.Column("original_amount", sa.Integer, nullable=False),
        sa.Column("adjusted_amount", sa.Integer, nullable=False),
        sa.Column("included", sa.Boolean, default=True),
    )

    # ==================== REFUNDS ====================
    op.create_table(
        "refund_requests",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("booking_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("rental_bookings.id"), nullable=False, index=True),
        sa.Column("amount", sa.Integer, nullable=False),
        sa.Column("approved_amount", sa.Integer),
        sa.Column("processed_amount", sa.Integer),
        sa.Column("currency", sa.String(3), default="USD"),
        sa.Column("reason", sa.Text, nullable=False),
        sa.Column("status", sa.String(20), default="PENDING", index=True),
        sa.Column("requested_by", sa.String(100), nullable=False),
        sa.Column("requester_role", sa.String(30)),
        sa.Column("reviewed_by", sa.String(100)),
        sa.Column("review_notes", sa.Text),
        sa.Column("reviewed_at", sa.DateTime(timezone=True)),
        sa.Column("processed_by", sa.String(100)),
        sa.Column("processed_at", sa.DateTime(timezone=True)),
        sa.Column("gateway_refund_id", sa.String(255)),
        sa.Column("failure_reason", sa.Text),
        sa.Column("reverse_transfer", sa.Boolean, default=False),
        sa.Column("transfer_reversal_id", sa.String(100)),
        sa.Column("transfer_reversal_amount", sa.Integer),
        sa.Column("transfer_reversal_error", sa.Text),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), onupdate=sa.func.now()),
    )

    # ==================== LEDGER ====================
    op.create_table(
        "host_balances",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("host_id", postgresql.UUID(as_uuid=True), unique=True, nullable=False),
        sa.Column("current_balance", sa.Integer, default=0),
        sa.Column("total_reversed", sa.Integer, default=0),
        sa.Column("currency", sa.String(3), default="USD"),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), onupdate=sa.func.now()),
    )

    op.create_table(
        "settlement_ledger",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("entry_type", sa.String(30), nullable=False, index=True),
        sa.Column("direction", sa.String(10), nullable=False),
        sa.Column("amount", sa.Integer, nullable=False),
        sa.Column("currency", sa.String(3), default="USD"),
        sa.Column("booking_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("rental_bookings.id"), index=True),
        sa.Column("payment_attempt_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("payment_attempts.id")),
        sa.Column("refund_request_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("refund_requests.id")),
        sa.Column("waive_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("charge_waives.id")),
        sa.Column("counterparty_type", sa.String(20), nullable=False),
        sa.Column("counterparty_id", postgresql.UUID(as_uuid=True)),
        sa.Column("gateway", sa.String(30)),
        sa.Column("gateway_transaction_id", sa.String(100)),
        sa.Column("description", sa.Text),
        sa.Column("effective_date", sa.Date, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    # ==================== AUDIT ====================
    op.create_table(
        "audit_logs",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("sequence", sa.Integer, unique=True, nullable=False),
        sa.Column("actor_id", sa.String(100), index=True),
        sa.Column("action", sa.String(100), nullable=False, index=True),
        sa.Column("resource_type", sa.String(50), nullable=False, index=True),
        sa.Column("resource_id", sa.String(64)),
        sa.Column("old_values", postgresql.JSONB),
        sa.Column("new_values", postgresql.JSONB),
        sa.Column("ip_address", sa.String(45)),
        sa.Column("user_agent", sa.Text),
        sa.Column("previous_hash", sa.String(64)),
        sa.Column("hash", sa.String(64), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), index=True),
    )


def downgrade() -> None:
    """Drop all database tables in reverse order."""
    op.drop_table("audit_logs")
    op.drop_table("settlement_ledger")
    op.drop_table("host_balances")
    op.drop_table("refund_requests")
    op.drop_table("charge_adjustment_items")
    op.drop_table("charge_adjustments")
    op.drop_table("charge_waives")
    op.drop_table("payment_attempts")
    op.drop_table("trip_charges")
    op.drop_table("trip_disputes")
    op.drop_table("rental_bookings")
