"""Shared fixtures: SQLite database, scripted payment gateway and API client."""

import os

os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DATABASE_URL_OVERRIDE", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("STRIPE_SECRET_KEY", "")

import uuid
from datetime import UTC, datetime, timedelta

import httpx
import pytest
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

import rentalpay.models  # noqa: F401
from rentalpay.api.deps import get_gateway
from rentalpay.core.exceptions import ExternalServiceError
from rentalpay.core.immutability import register_immutability_enforcement
from rentalpay.database import Base, get_db
from rentalpay.gateways.base import (
    ChargeResult,
    GatewayType,
    PaymentGateway,
    RefundResult,
    TransferReversalResult,
)
from rentalpay.main import app
from rentalpay.models.booking import RentalBooking

SCHEDULED_RETURN = datetime(2026, 5, 4, 10, 0, tzinfo=UTC)

STAFF_HEADERS = {"X-Actor-Id": "staff-1", "X-Actor-Role": "staff"}


class FakeGateway(PaymentGateway):
    """Gateway double answering from a script and recording every call."""

    def __init__(
        self,
        charge_statuses: list[str] | None = None,
        refund_success: bool = True,
        reversal_success: bool = True,
        unavailable: bool = False,
    ):
        self.charge_statuses = list(charge_statuses or [])
        self.refund_success = refund_success
        self.reversal_success = reversal_success
        self.unavailable = unavailable
        self.charges: list[dict] = []
        self.refunds: list[dict] = []
        self.reversals: list[dict] = []

    @property
    def gateway_type(self) -> GatewayType:
        return GatewayType.STRIPE

    async def create_charge(
        self,
        amount,
        currency,
        customer_ref,
        instrument_ref,
        description,
        metadata=None,
        idempotency_key=None,
    ):
        self.charges.append(
            {
                "amount": amount,
                "currency": currency,
                "customer_ref": customer_ref,
                "instrument_ref": instrument_ref,
                "metadata": metadata,
                "idempotency_key": idempotency_key,
            }
        )
        if self.unavailable:
            raise ExternalServiceError("Stripe", "connection refused")
        status = self.charge_statuses.pop(0) if self.charge_statuses else "succeeded"
        if status == "succeeded":
            charge_id = f"pi_{len(self.charges)}"
            return ChargeResult(status=status, charge_id=charge_id, amount=amount, raw_response={"id": charge_id})
        if status == "requires_action":
            return ChargeResult(status=status, charge_id=f"pi_{len(self.charges)}", error_message="Authentication required")
        return ChargeResult(status="failed", error_message="Your card was declined.")

    async def create_refund(self, charge_id, amount, reason, idempotency_key=None):
        self.refunds.append({"charge_id": charge_id, "amount": amount, "idempotency_key": idempotency_key})
        if not self.refund_success:
            return RefundResult(success=False, error_message="Charge already refunded")
        return RefundResult(success=True, refund_id=f"re_{len(self.refunds)}")

    async def reverse_transfer(self, transfer_id, amount, idempotency_key=None):
        self.reversals.append({"transfer_id": transfer_id, "amount": amount, "idempotency_key": idempotency_key})
        if not self.reversal_success:
            return TransferReversalResult(success=False, error_message="Insufficient funds in connected account")
        return TransferReversalResult(success=True, reversal_id=f"trr_{len(self.reversals)}", amount=amount)


@pytest.fixture(autouse=True, scope="session")
def immutability():
    register_immutability_enforcement()


@pytest.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'settlement.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_maker(engine):
    return async_sessionmaker(engine, expire_on_commit=False)


@pytest.fixture
async def db(session_maker):
    async with session_maker() as session:
        yield session


@pytest.fixture
def gateway():
    return FakeGateway()


def booking_data(**overrides) -> dict:
    data = {
        "booking_code": f"RB-{uuid.uuid4().hex[:8].upper()}",
        "guest_id": uuid.uuid4(),
        "guest_email": "guest@example.com",
        "host_id": uuid.uuid4(),
        "stripe_customer_id": "cus_test",
        "stripe_payment_method_id": "pm_test",
        "currency": "USD",
        "number_of_days": 3,
        "start_date": SCHEDULED_RETURN - timedelta(days=3),
        "end_date": SCHEDULED_RETURN,
        "start_mileage": 10_000,
        "fuel_level_start": "Full",
        "trip_started_at": SCHEDULED_RETURN - timedelta(days=3),
        "status": "ACTIVE",
        "verification_status": "PENDING",
        "payment_status": "PAID",
        "total_paid": 30_000,
        "total_refunded": 0,
        "stripe_payment_intent_id": "pi_rental",
        "host_transfer_id": "tr_host",
        "host_transfer_amount": 24_000,
    }
    data.update(overrides)
    return data


@pytest.fixture
def make_booking(db):
    async def _make(**overrides) -> RentalBooking:
        booking = RentalBooking(**booking_data(**overrides))
        db.add(booking)
        await db.flush()
        return booking

    return _make


@pytest.fixture
def seed_booking(session_maker):
    """Create a committed booking, for tests that go through the API."""

    async def _seed(**overrides) -> RentalBooking:
        async with session_maker() as session:
            booking = RentalBooking(**booking_data(**overrides))
            session.add(booking)
            await session.commit()
            return booking

    return _seed


@pytest.fixture
async def client(session_maker, gateway):
    async def override_get_db():
        async with session_maker() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_gateway] = lambda: gateway
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as api_client:
        yield api_client
    app.dependency_overrides.clear()
