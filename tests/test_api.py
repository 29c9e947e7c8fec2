"""HTTP API: trips, staff charge resolution, refunds and reports."""

from sqlalchemy import select

from conftest import SCHEDULED_RETURN, STAFF_HEADERS
from rentalpay.models.booking import RentalBooking


def guest_headers(booking) -> dict:
    return {"X-Actor-Id": str(booking.guest_id), "X-Actor-Role": "guest"}


def end_payload(**overrides) -> dict:
    data = {
        "end_mileage": 10_300,
        "fuel_level": "1/2",
        "actual_return": SCHEDULED_RETURN.isoformat(),
    }
    data.update(overrides)
    return data


async def load_booking(session_maker, booking_id) -> RentalBooking:
    async with session_maker() as session:
        result = await session.execute(select(RentalBooking).where(RentalBooking.id == booking_id))
        return result.scalar_one()


async def test_health(client):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


async def test_caller_must_identify(client, seed_booking):
    booking = await seed_booking()
    response = await client.post(f"/api/v1/trips/{booking.id}/end", json=end_payload())
    assert response.status_code == 401


async def test_other_guests_cannot_end_the_trip(client, seed_booking):
    booking = await seed_booking()
    response = await client.post(
        f"/api/v1/trips/{booking.id}/end",
        json=end_payload(),
        headers={"X-Actor-Id": "someone-else", "X-Actor-Role": "guest"},
    )
    assert response.status_code == 403


async def test_end_trip_and_view_history(client, seed_booking, session_maker, gateway):
    booking = await seed_booking()

    check = await client.get(f"/api/v1/trips/{booking.id}/end", headers=guest_headers(booking))
    assert check.json() == {"booking_id": str(booking.id), "can_end": True, "reason": None}

    response = await client.post(
        f"/api/v1/trips/{booking.id}/end", json=end_payload(), headers=guest_headers(booking)
    )

    assert response.status_code == 200
    body = response.json()
    assert body["charge_status"] == "charged"
    assert body["payment_status"] == "CHARGES_PAID"
    assert body["booking_status"] == "COMPLETED"
    assert body["trip_charge"]["total_charges"] == 15_000
    assert body["charge"]["status"] == "succeeded"
    assert body["next_steps"] == ["You can now leave a review for your rental experience."]
    assert len(gateway.charges) == 1

    stored = await load_booking(session_maker, booking.id)
    assert stored.payment_status == "CHARGES_PAID"
    assert stored.total_paid == 45_000

    again = await client.post(
        f"/api/v1/trips/{booking.id}/end", json=end_payload(), headers=guest_headers(booking)
    )
    assert again.status_code == 409

    history = await client.get(f"/api/v1/trips/{booking.id}/charges", headers=guest_headers(booking))
    assert history.status_code == 200
    assert len(history.json()["charges"]) == 1
    assert [a["outcome"] for a in history.json()["attempts"]] == ["succeeded"]


async def test_invalid_readings_change_nothing(client, seed_booking, session_maker):
    booking = await seed_booking()

    response = await client.post(
        f"/api/v1/trips/{booking.id}/end",
        json=end_payload(fuel_level="overflowing"),
        headers=guest_headers(booking),
    )

    assert response.status_code == 422
    stored = await load_booking(session_maker, booking.id)
    assert stored.trip_ended_at is None


async def test_staff_endpoints_need_staff(client, seed_booking):
    booking = await seed_booking()
    response = await client.post(
        f"/api/v1/charges/{booking.id}/waive",
        json={"waive_percentage": 100, "reason": "Goodwill"},
        headers=guest_headers(booking),
    )
    assert response.status_code == 403


async def test_failed_charge_then_staff_waive(client, seed_booking, session_maker, gateway):
    gateway.charge_statuses = ["failed", "failed", "failed"]
    booking = await seed_booking()

    ended = await client.post(
        f"/api/v1/trips/{booking.id}/end", json=end_payload(), headers=guest_headers(booking)
    )
    assert ended.json()["charge_status"] == "failed"
    assert ended.json()["payment_status"] == "PAYMENT_FAILED"

    waived = await client.post(
        f"/api/v1/charges/{booking.id}/waive",
        json={"waive_percentage": 40, "reason": "Fuel gauge calibration"},
        headers=STAFF_HEADERS,
    )

    assert waived.status_code == 200
    body = waived.json()
    assert body["waive"]["waived_amount"] == 6_000
    assert body["charge"]["amount"] == 9_000
    assert body["payment_status"] == "PARTIAL_PAID"
    stored = await load_booking(session_maker, booking.id)
    assert stored.status == "COMPLETED"


async def test_staff_retry_and_adjust(client, seed_booking, gateway):
    gateway.charge_statuses = ["failed", "failed", "failed", "failed"]
    booking = await seed_booking()
    await client.post(f"/api/v1/trips/{booking.id}/end", json=end_payload(), headers=guest_headers(booking))

    retried = await client.post(f"/api/v1/charges/{booking.id}/retry", json={}, headers=STAFF_HEADERS)
    assert retried.status_code == 200
    assert retried.json()["status"] == "failed"

    adjusted = await client.post(
        f"/api/v1/charges/{booking.id}/adjust",
        json={
            "adjustments": [{"charge_type": "fuel", "original_amount": 15_000, "adjusted_amount": 7_500}],
            "reason": "Tank was not full at pickup",
        },
        headers=STAFF_HEADERS,
    )
    assert adjusted.status_code == 200
    assert adjusted.json()["adjustment"]["adjusted_total"] == 7_500
    assert adjusted.json()["charge"]["status"] == "succeeded"
    assert adjusted.json()["payment_status"] == "ADJUSTED_PAID"


async def test_recalculate_charges(client, seed_booking):
    booking = await seed_booking()
    await client.post(
        f"/api/v1/trips/{booking.id}/end",
        json=end_payload(payment_choice="request_review"),
        headers=guest_headers(booking),
    )

    response = await client.post(
        f"/api/v1/trips/{booking.id}/charges/recalculate",
        json={"end_mileage": 10_300, "fuel_level": "3/4"},
        headers=STAFF_HEADERS,
    )

    assert response.status_code == 200
    assert response.json()["total_charges"] == 7_500
    assert response.json()["supersedes_id"] is not None


async def test_refund_lifecycle(client, seed_booking, session_maker, gateway):
    booking = await seed_booking()

    created = await client.post(
        "/api/v1/refunds",
        json={"booking_id": str(booking.id), "amount": 6_000, "reason": "AC was broken", "reverse_transfer": True},
        headers=guest_headers(booking),
    )
    assert created.status_code == 201
    request_id = created.json()["id"]
    assert created.json()["status"] == "PENDING"
    # Only staff decide whether the host shares the refund
    assert created.json()["reverse_transfer"] is False

    early = await client.post(f"/api/v1/refunds/{request_id}/process", headers=STAFF_HEADERS)
    assert early.status_code == 409

    approved = await client.post(f"/api/v1/refunds/{request_id}/approve", json={}, headers=STAFF_HEADERS)
    assert approved.json()["status"] == "APPROVED"

    processed = await client.post(f"/api/v1/refunds/{request_id}/process", headers=STAFF_HEADERS)
    assert processed.status_code == 200
    assert processed.json()["status"] == "PROCESSED"
    assert processed.json()["processed_amount"] == 6_000

    replay = await client.post(f"/api/v1/refunds/{request_id}/process", headers=STAFF_HEADERS)
    assert replay.status_code == 200
    assert len(gateway.refunds) == 1

    stored = await load_booking(session_maker, booking.id)
    assert stored.total_refunded == 6_000
    assert stored.payment_status == "PARTIAL_REFUND"

    listing = await client.get("/api/v1/refunds", params={"booking_id": str(booking.id)}, headers=STAFF_HEADERS)
    assert listing.status_code == 200
    assert listing.json()["summary"]["processed"] == {"count": 1, "amount": 6_000}


async def test_refund_over_limit_is_rejected(client, seed_booking):
    booking = await seed_booking(total_paid=1_000)
    response = await client.post(
        "/api/v1/refunds",
        json={"booking_id": str(booking.id), "amount": 5_000, "reason": "Too much"},
        headers=STAFF_HEADERS,
    )
    assert response.status_code == 409


async def test_failed_gateway_refund_can_be_retried(client, seed_booking, gateway):
    gateway.refund_success = False
    booking = await seed_booking()
    created = await client.post(
        "/api/v1/refunds",
        json={"booking_id": str(booking.id), "amount": 1_000, "reason": "Late pickup"},
        headers=STAFF_HEADERS,
    )
    request_id = created.json()["id"]
    await client.post(f"/api/v1/refunds/{request_id}/approve", json={}, headers=STAFF_HEADERS)

    failed = await client.post(f"/api/v1/refunds/{request_id}/process", headers=STAFF_HEADERS)
    assert failed.status_code == 402

    gateway.refund_success = True
    processed = await client.post(f"/api/v1/refunds/{request_id}/process", headers=STAFF_HEADERS)
    assert processed.status_code == 200
    assert [r["idempotency_key"] for r in gateway.refunds] == [f"refund:{request_id}"] * 2


async def test_reports(client, seed_booking):
    booking = await seed_booking()
    await client.post(f"/api/v1/trips/{booking.id}/end", json=end_payload(), headers=guest_headers(booking))

    analytics = await client.get("/api/v1/reports/charges", headers=STAFF_HEADERS)
    assert analytics.status_code == 200
    assert analytics.json()["total_charges_processed"] == 1
    assert analytics.json()["total_collected"] == 15_000
    assert analytics.json()["success_rate"] == 1.0

    daily = await client.get("/api/v1/reports/settlement/daily", headers=STAFF_HEADERS)
    assert daily.status_code == 200
    assert daily.json()["total_charges_captured"] == 15_000

    audit = await client.get("/api/v1/reports/audit/verify", headers=STAFF_HEADERS)
    assert audit.json() == {"valid": True, "broken_entries": []}
