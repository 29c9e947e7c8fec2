"""Trip-end charge calculation."""

from datetime import UTC, datetime, timedelta
from decimal import Decimal

import pytest

from rentalpay.domain.charges import ChargeRates, compute_charges, from_minor_units, to_minor_units
from rentalpay.domain.telemetry import (
    DamageItem,
    FuelLevel,
    TripTelemetry,
    validate_fuel_level,
    validate_odometer,
)

SCHEDULED = datetime(2026, 5, 4, 10, 0, tzinfo=UTC)


def telemetry(**overrides) -> TripTelemetry:
    data = {
        "start_odometer": 10_000,
        "end_odometer": 10_100,
        "fuel_level_start": FuelLevel.FULL,
        "fuel_level_end": FuelLevel.FULL,
        "scheduled_return": SCHEDULED,
        "actual_return": SCHEDULED,
        "duration_days": 3,
        "damage_items": (),
    }
    data.update(overrides)
    return TripTelemetry(**data)


def test_mileage_overage_is_charged_per_mile():
    breakdown = compute_charges(telemetry(end_odometer=10_800))

    assert breakdown.mileage.used == 800
    assert breakdown.mileage.included == 600
    assert breakdown.mileage.overage == 200
    assert breakdown.mileage.charge == Decimal("90.00")
    assert breakdown.total == Decimal("90.00")


def test_fuel_shortfall_is_fraction_of_full_tank():
    breakdown = compute_charges(telemetry(fuel_level_end=FuelLevel.QUARTER))

    assert breakdown.fuel.shortfall == Decimal("0.75")
    assert breakdown.fuel.charge == Decimal("225")
    assert breakdown.total == Decimal("225.00")


def test_returning_with_more_fuel_is_not_credited():
    breakdown = compute_charges(
        telemetry(fuel_level_start=FuelLevel.HALF, fuel_level_end=FuelLevel.FULL)
    )
    assert breakdown.fuel.charge == 0


def test_unrecorded_fuel_level_charges_nothing():
    breakdown = compute_charges(telemetry(fuel_level_start=None, fuel_level_end=FuelLevel.EMPTY))
    assert breakdown.fuel.charge == 0


def test_late_return_charges_every_started_hour():
    five_hours = compute_charges(telemetry(actual_return=SCHEDULED + timedelta(hours=5)))
    assert five_hours.late.hours_late == 5
    assert five_hours.late.charge == Decimal("250")

    just_over = compute_charges(telemetry(actual_return=SCHEDULED + timedelta(hours=4, minutes=1)))
    assert just_over.late.hours_late == 5


def test_early_return_is_not_late():
    breakdown = compute_charges(telemetry(actual_return=SCHEDULED - timedelta(hours=2)))
    assert breakdown.late.hours_late == 0
    assert breakdown.late.charge == 0


def test_damage_items_pass_through():
    breakdown = compute_charges(
        telemetry(
            damage_items=(
                DamageItem(type="scratch", cost=Decimal("120.50")),
                DamageItem(type="mirror", cost=Decimal("80")),
            )
        )
    )
    assert breakdown.damage.charge == Decimal("200.50")
    assert breakdown.total == Decimal("200.50")


def test_negative_damage_cost_is_ignored_with_warning():
    breakdown = compute_charges(
        telemetry(damage_items=(DamageItem(type="dent", cost=Decimal("-50")),))
    )
    assert breakdown.damage.charge == 0
    assert any("dent" in warning for warning in breakdown.warnings)


def test_nothing_owed_is_zero_total():
    breakdown = compute_charges(telemetry())

    assert breakdown.total == 0
    assert not breakdown.has_charges
    assert breakdown.line_items() == []


def test_backwards_odometer_charges_no_mileage_and_warns():
    breakdown = compute_charges(telemetry(end_odometer=9_900))

    assert breakdown.mileage.overage == 0
    assert breakdown.mileage.charge == 0
    assert len(breakdown.warnings) == 1
    assert "backwards" in breakdown.warnings[0]


def test_all_components_sum_into_rounded_total():
    rates = ChargeRates(per_mile_rate=Decimal("0.333"))
    breakdown = compute_charges(
        telemetry(
            end_odometer=10_601,
            fuel_level_end=FuelLevel.THREE_QUARTERS,
            actual_return=SCHEDULED + timedelta(minutes=30),
        ),
        rates,
    )
    # 1 mile * 0.333 + 75 fuel + 50 late
    assert breakdown.mileage.charge == Decimal("0.333")
    assert breakdown.total == Decimal("125.33")
    assert breakdown.total_minor == 12_533
    assert [line[0] for line in breakdown.line_items()] == ["mileage", "fuel", "late"]


def test_breakdown_serialises_with_full_precision():
    rates = ChargeRates(per_mile_rate=Decimal("0.333"))
    details = compute_charges(telemetry(end_odometer=10_601), rates).to_dict()

    assert details["mileage"]["charge"] == "0.333"
    assert details["total"] == "0.33"


@pytest.mark.parametrize(
    "amount,cents",
    [(Decimal("90"), 9_000), (Decimal("0.005"), 1), (Decimal("125.334"), 12_533)],
)
def test_minor_unit_conversion(amount, cents):
    assert to_minor_units(amount) == cents


def test_from_minor_units():
    assert from_minor_units(12_533) == Decimal("125.33")


def test_fuel_level_parsing():
    assert FuelLevel.parse("full") is FuelLevel.FULL
    assert FuelLevel.parse(" 1/4 ") is FuelLevel.QUARTER
    assert FuelLevel.parse("three_quarters") is FuelLevel.THREE_QUARTERS
    assert FuelLevel.parse("half a tank") is None
    assert FuelLevel.parse(None) is None


def test_odometer_validation():
    assert validate_odometer(10_500, 10_000, 5_000).valid
    assert not validate_odometer(None, 10_000, 5_000).valid
    assert not validate_odometer(-1, 0, 5_000).valid

    too_far = validate_odometer(16_000, 10_000, 5_000)
    assert not too_far.valid
    assert "5000" in too_far.error

    # A reading below the start is allowed through; the calculator flags it
    assert validate_odometer(9_000, 10_000, 5_000).valid


def test_fuel_level_validation():
    assert validate_fuel_level("3/4").valid
    assert not validate_fuel_level("").valid
    assert not validate_fuel_level("lots").valid
