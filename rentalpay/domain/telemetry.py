"""Trip telemetry types and input validation."""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum


class FuelLevel(str, Enum):
    """Discrete fuel gauge readings, lowest first."""

    EMPTY = "Empty"
    QUARTER = "1/4"
    HALF = "1/2"
    THREE_QUARTERS = "3/4"
    FULL = "Full"

    @property
    def rank(self) -> int:
        return _FUEL_ORDER.index(self)

    @classmethod
    def parse(cls, value: "str | FuelLevel | None") -> "FuelLevel | None":
        """Parse a gauge reading; unknown or empty values return None."""
        if value is None or isinstance(value, FuelLevel):
            return value
        normalized = str(value).strip().lower()
        for level in cls:
            if level.value.lower() == normalized or level.name.lower() == normalized:
                return level
        return None


_FUEL_ORDER = [
    FuelLevel.EMPTY,
    FuelLevel.QUARTER,
    FuelLevel.HALF,
    FuelLevel.THREE_QUARTERS,
    FuelLevel.FULL,
]

FUEL_STEPS = len(_FUEL_ORDER) - 1


@dataclass(frozen=True)
class DamageItem:
    """Itemised damage supplied by the external assessment."""

    type: str
    cost: Decimal


@dataclass(frozen=True)
class TripTelemetry:
    """Readings captured at trip start and end. Read-only once produced."""

    start_odometer: int
    end_odometer: int
    fuel_level_start: FuelLevel | None
    fuel_level_end: FuelLevel | None
    scheduled_return: datetime
    actual_return: datetime
    duration_days: int
    damage_items: tuple[DamageItem, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class ValidationResult:
    valid: bool
    error: str | None = None


def validate_odometer(
    end_mileage: int | None,
    start_mileage: int | None,
    max_trip_miles: int,
) -> ValidationResult:
    """Validate an end-of-trip odometer reading against the start reading."""
    if end_mileage is None:
        return ValidationResult(False, "End mileage is required")
    if end_mileage < 0:
        return ValidationResult(False, "End mileage cannot be negative")
    start = start_mileage or 0
    if end_mileage - start > max_trip_miles:
        return ValidationResult(
            False,
            f"End mileage exceeds start by more than {max_trip_miles} miles",
        )
    return ValidationResult(True)


def validate_fuel_level(value: str | None) -> ValidationResult:
    if not value:
        return ValidationResult(False, "Fuel level is required")
    if FuelLevel.parse(value) is None:
        allowed = ", ".join(level.value for level in FuelLevel)
        return ValidationResult(False, f"Invalid fuel level '{value}'. Expected one of: {allowed}")
    return ValidationResult(True)
