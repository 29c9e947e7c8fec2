"""Trip-end charge disputes raised by guests."""

from enum import Enum


class DisputeType(str, Enum):
    MILEAGE = "MILEAGE"
    FUEL = "FUEL"
    LATE_RETURN = "LATE_RETURN"
    DAMAGE = "DAMAGE"
    CLEANING = "CLEANING"
    OTHER = "OTHER"


class DisputeStatus(str, Enum):
    OPEN = "OPEN"
    RESOLVED = "RESOLVED"


# Keyword → type, evaluated in order - first match wins
_KEYWORDS: list[tuple[str, DisputeType]] = [
    ("mileage", DisputeType.MILEAGE),
    ("fuel", DisputeType.FUEL),
    ("late", DisputeType.LATE_RETURN),
    ("damage", DisputeType.DAMAGE),
    ("cleaning", DisputeType.CLEANING),
]


def classify_dispute(reason: str) -> DisputeType:
    """Classify a free-text dispute reason."""
    lowered = reason.lower()
    for keyword, dispute_type in _KEYWORDS:
        if keyword in lowered:
            return dispute_type
    return DisputeType.OTHER
