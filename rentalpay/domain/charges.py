"""Trip-end charge calculation.

Charges:
- mileage: miles driven beyond the daily allowance, per mile
- fuel: tank shortfall between pickup and return, as a fraction of a full tank
- late: every started hour past the scheduled return
- damage: itemised costs supplied by the damage assessment, passed through

Line items keep full precision; only the total is rounded to cents.
"""

import math
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal

from rentalpay.domain.telemetry import FUEL_STEPS, DamageItem, FuelLevel, TripTelemetry

CENT = Decimal("0.01")
ZERO = Decimal("0")


@dataclass(frozen=True)
class ChargeRates:
    """Rate card applied to a trip."""

    included_miles_per_day: int = 200
    per_mile_rate: Decimal = Decimal("0.45")
    full_tank_cost: Decimal = Decimal("300")
    late_fee_per_hour: Decimal = Decimal("50")

    @classmethod
    def from_settings(cls, settings) -> "ChargeRates":
        return cls(
            included_miles_per_day=settings.included_miles_per_day,
            per_mile_rate=Decimal(settings.per_mile_rate),
            full_tank_cost=Decimal(settings.full_tank_cost),
            late_fee_per_hour=Decimal(settings.late_fee_per_hour),
        )


@dataclass(frozen=True)
class MileageCharge:
    used: int
    included: int
    overage: int
    rate: Decimal
    charge: Decimal


@dataclass(frozen=True)
class FuelCharge:
    start_level: FuelLevel | None
    end_level: FuelLevel | None
    shortfall: Decimal  # fraction of a full tank
    tank_cost: Decimal
    charge: Decimal


@dataclass(frozen=True)
class LateCharge:
    hours_late: int
    rate: Decimal
    charge: Decimal


@dataclass(frozen=True)
class DamageCharge:
    items: tuple[DamageItem, ...]
    charge: Decimal


@dataclass(frozen=True)
class ChargeBreakdown:
    """Derived, immutable charge breakdown for one trip-end event."""

    mileage: MileageCharge
    fuel: FuelCharge
    late: LateCharge
    damage: DamageCharge
    total: Decimal
    warnings: tuple[str, ...] = field(default_factory=tuple)

    @property
    def has_charges(self) -> bool:
        return self.total > ZERO

    @property
    def total_minor(self) -> int:
        return to_minor_units(self.total)

    def line_items(self) -> list[tuple[str, str, Decimal]]:
        """(charge_type, label, amount) for every non-zero line."""
        lines = [
            ("mileage", f"Mileage overage ({self.mileage.overage} mi)", self.mileage.charge),
            ("fuel", "Fuel refill", self.fuel.charge),
            ("late", f"Late return ({self.late.hours_late} h)", self.late.charge),
            ("damage", "Damage", self.damage.charge),
        ]
        return [line for line in lines if line[2] > ZERO]

    def to_dict(self) -> dict:
        return {
            "mileage": {
                "used": self.mileage.used,
                "included": self.mileage.included,
                "overage": self.mileage.overage,
                "rate": str(self.mileage.rate),
                "charge": str(self.mileage.charge),
            },
            "fuel": {
                "start_level": self.fuel.start_level.value if self.fuel.start_level else None,
                "end_level": self.fuel.end_level.value if self.fuel.end_level else None,
                "shortfall": str(self.fuel.shortfall),
                "tank_cost": str(self.fuel.tank_cost),
                "charge": str(self.fuel.charge),
            },
            "late": {
                "hours_late": self.late.hours_late,
                "rate": str(self.late.rate),
                "charge": str(self.late.charge),
            },
            "damage": {
                "items": [{"type": item.type, "cost": str(item.cost)} for item in self.damage.items],
                "charge": str(self.damage.charge),
            },
            "total": str(self.total),
            "warnings": list(self.warnings),
        }


def to_minor_units(amount: Decimal) -> int:
    """Convert a major-unit amount to integer cents."""
    return int((Decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_minor_units(amount: int) -> Decimal:
    return (Decimal(amount) / 100).quantize(CENT)


def calculate_mileage(
    start_odometer: int,
    end_odometer: int,
    duration_days: int,
    rates: ChargeRates,
    warnings: list[str],
) -> MileageCharge:
    used = end_odometer - start_odometer
    if used < 0:
        warnings.append(
            f"Odometer went backwards ({start_odometer} → {end_odometer}); mileage charge set to zero"
        )
    included = rates.included_miles_per_day * max(duration_days, 0)
    overage = max(0, used - included)
    return MileageCharge(
        used=used,
        included=included,
        overage=overage,
        rate=rates.per_mile_rate,
        charge=overage * rates.per_mile_rate,
    )


def calculate_fuel(
    start_level: FuelLevel | None,
    end_level: FuelLevel | None,
    rates: ChargeRates,
) -> FuelCharge:
    # Unrecorded gauge reading: nothing to compare against.
    if start_level is None or end_level is None:
        shortfall = ZERO
    else:
        shortfall = Decimal(max(0, start_level.rank - end_level.rank)) / FUEL_STEPS
    return FuelCharge(
        start_level=start_level,
        end_level=end_level,
        shortfall=shortfall,
        tank_cost=rates.full_tank_cost,
        charge=shortfall * rates.full_tank_cost,
    )


def calculate_late(telemetry: TripTelemetry, rates: ChargeRates) -> LateCharge:
    seconds_late = (telemetry.actual_return - telemetry.scheduled_return).total_seconds()
    hours_late = max(0, math.ceil(seconds_late / 3600))
    return LateCharge(
        hours_late=hours_late,
        rate=rates.late_fee_per_hour,
        charge=hours_late * rates.late_fee_per_hour,
    )


def calculate_damage(items: tuple[DamageItem, ...], warnings: list[str]) -> DamageCharge:
    total = ZERO
    for item in items:
        cost = Decimal(item.cost)
        if cost < ZERO:
            warnings.append(f"Ignored negative damage cost for '{item.type}'")
            continue
        total += cost
    return DamageCharge(items=tuple(items), charge=total)


def compute_charges(telemetry: TripTelemetry, rates: ChargeRates | None = None) -> ChargeBreakdown:
    """Compute the charge breakdown for a finished trip.

    Never raises for business conditions: nothing owed yields zero-charge
    line items, and data anomalies are reported in ``warnings``.
    """
    rates = rates or ChargeRates()
    warnings: list[str] = []

    mileage = calculate_mileage(
        telemetry.start_odometer,
        telemetry.end_odometer,
        telemetry.duration_days,
        rates,
        warnings,
    )
    fuel = calculate_fuel(telemetry.fuel_level_start, telemetry.fuel_level_end, rates)
    late = calculate_late(telemetry, rates)
    damage = calculate_damage(telemetry.damage_items, warnings)

    total = (mileage.charge + fuel.charge + late.charge + damage.charge).quantize(
        CENT, rounding=ROUND_HALF_UP
    )

    return ChargeBreakdown(
        mileage=mileage,
        fuel=fuel,
        late=late,
        damage=damage,
        total=total,
        warnings=tuple(warnings),
    )
