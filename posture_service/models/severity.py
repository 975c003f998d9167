"""
POSTUREIQ Posture Service - Severity Classification

Severity is a pure function of (value, normal range, unit). The threshold
table below is the only place tiers are defined; analysis, comparison and
trend code all go through `classify_severity`.
"""

from enum import Enum
from typing import Dict, Tuple

from .landmark_catalog import MeasurementUnit


class Severity(str, Enum):
    """Ordered severity tiers (MINIMAL < ... < EXTREME)."""
    MINIMAL = "MINIMAL"
    MILD = "MILD"
    MODERATE = "MODERATE"
    SEVERE = "SEVERE"
    EXTREME = "EXTREME"

    @property
    def rank(self) -> int:
        return _SEVERITY_ORDER.index(self)

    @property
    def weight(self) -> int:
        """Weight used by improvement scoring (1 for MINIMAL .. 5 for EXTREME)."""
        return self.rank + 1

    @property
    def clinical_significance(self) -> str:
        return CLINICAL_SIGNIFICANCE[self]

    def __lt__(self, other):
        if isinstance(other, Severity):
            return self.rank < other.rank
        return NotImplemented

    def __le__(self, other):
        if isinstance(other, Severity):
            return self.rank <= other.rank
        return NotImplemented

    def __gt__(self, other):
        if isinstance(other, Severity):
            return self.rank > other.rank
        return NotImplemented

    def __ge__(self, other):
        if isinstance(other, Severity):
            return self.rank >= other.rank
        return NotImplemented


_SEVERITY_ORDER = (
    Severity.MINIMAL,
    Severity.MILD,
    Severity.MODERATE,
    Severity.SEVERE,
    Severity.EXTREME,
)

CLINICAL_SIGNIFICANCE: Dict[Severity, str] = {
    Severity.MINIMAL: "Within normal limits",
    Severity.MILD: "Slight deviation, monitor",
    Severity.MODERATE: "Noticeable deviation, intervention recommended",
    Severity.SEVERE: "Significant deviation, treatment needed",
    Severity.EXTREME: "Critical deviation, urgent attention required",
}


# Upper bounds of MINIMAL, MILD, MODERATE and SEVERE as fractions of the
# normal-range width. Anything beyond the last bound is EXTREME.
SEVERITY_THRESHOLDS: Dict[MeasurementUnit, Tuple[float, float, float, float]] = {
    MeasurementUnit.DEGREES: (0.05, 0.25, 0.50, 1.00),
    MeasurementUnit.MILLIMETERS: (0.05, 0.25, 0.50, 1.00),
    MeasurementUnit.PERCENT: (0.10, 0.30, 0.60, 1.20),
}

# Used when a normal range collapses to a single value
MIN_RANGE_WIDTH = 1.0


def _ascending(bounds: Tuple[float, ...]) -> Tuple[float, ...]:
    result = []
    for bound in bounds:
        result.append(max(bound, result[-1]) if result else bound)
    return tuple(result)


# Bounds are forced non-decreasing so classification stays monotonic
_BOUNDS = {unit: _ascending(bounds) for unit, bounds in SEVERITY_THRESHOLDS.items()}


def deviation_amount(value: float, normal_min: float, normal_max: float) -> float:
    """Magnitude outside the normal range (0 when inside)."""
    return max(0.0, normal_min - value, value - normal_max)


def severity_for_amount(amount: float, normal_min: float, normal_max: float, unit: MeasurementUnit) -> Severity:
    width = normal_max - normal_min
    if width <= 0:
        width = MIN_RANGE_WIDTH

    ratio = amount / width
    for tier, bound in zip(_SEVERITY_ORDER, _BOUNDS[MeasurementUnit(unit)]):
        if ratio <= bound:
            return tier
    return Severity.EXTREME


def classify_severity(value: float, normal_min: float, normal_max: float, unit: MeasurementUnit) -> Severity:
    """Severity tier of a measurement against its normal range."""
    return severity_for_amount(deviation_amount(value, normal_min, normal_max), normal_min, normal_max, unit)


def max_severity(severities) -> Severity:
    """Highest tier in an iterable (MINIMAL when empty)."""
    highest = Severity.MINIMAL
    for severity in severities:
        if severity > highest:
            highest = severity
    return highest
