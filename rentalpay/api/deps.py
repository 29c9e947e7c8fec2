"""API dependencies for caller identity and service wiring."""

from dataclasses import dataclass
from typing import Annotated

from fastapi import Depends, Header
from sqlalchemy.ext.asyncio import AsyncSession

from rentalpay.core.exceptions import AuthenticationError, AuthorizationError
from rentalpay.database import get_db
from rentalpay.services.gateway_service import get_payment_gateway
from rentalpay.gateways.base import PaymentGateway
from rentalpay.services.payment_service import PaymentService
from rentalpay.services.refund_service import RefundService
from rentalpay.services.trip_settlement_service import TripSettlementService

STAFF_ROLES = {"staff", "admin"}

DbSession = Annotated[AsyncSession, Depends(get_db)]


@dataclass(frozen=True)
class Actor:
    """Caller identity, asserted by the upstream gateway in request headers."""

    id: str
    role: str

    @property
    def is_staff(self) -> bool:
        return self.role in STAFF_ROLES


async def get_actor(
    x_actor_id: Annotated[str | None, Header()] = None,
    x_actor_role: Annotated[str | None, Header()] = None,
) -> Actor:
    """Get the calling actor from the X-Actor-Id / X-Actor-Role headers."""
    if not x_actor_id or not x_actor_id.strip():
        raise AuthenticationError("X-Actor-Id header is required")
    return Actor(id=x_actor_id.strip(), role=(x_actor_role or "guest").strip().lower())


async def get_staff_actor(
    actor: Annotated[Actor, Depends(get_actor)],
) -> Actor:
    """Get the calling actor and verify they are staff."""
    if not actor.is_staff:
        raise AuthorizationError("Staff access required")
    return actor


def get_gateway() -> PaymentGateway:
    return get_payment_gateway()


def get_payment_service(
    gateway: Annotated[PaymentGateway, Depends(get_gateway)],
) -> PaymentService:
    return PaymentService(gateway)


def get_refund_service(
    gateway: Annotated[PaymentGateway, Depends(get_gateway)],
) -> RefundService:
    return RefundService(gateway)


def get_trip_settlement_service(
    gateway: Annotated[PaymentGateway, Depends(get_gateway)],
) -> TripSettlementService:
    return TripSettlementService(gateway)


CurrentActor = Annotated[Actor, Depends(get_actor)]
StaffActor = Annotated[Actor, Depends(get_staff_actor)]
