"""
Magnitude severity classification.

Thresholds follow the conventional USGS descriptive classes. Only used for
presentation and alerting; the domain filter is configured separately.
"""

from enum import Enum

from streamsync.core.types import Record


class Severity(str, Enum):
    """Descriptive magnitude classes, weakest first."""
    MINOR = "Minor"
    LIGHT = "Light"
    MODERATE = "Moderate"
    STRONG = "Strong"
    MAJOR = "Major"
    GREAT = "Great"


# Checked strongest first
_THRESHOLDS: tuple[tuple[float, Severity], ...] = (
    (8.0, Severity.GREAT),
    (7.0, Severity.MAJOR),
    (6.0, Severity.STRONG),
    (4.5, Severity.MODERATE),
    (4.0, Severity.LIGHT),
)

SEVERITY_COLORS: dict[Severity, str] = {
    Severity.GREAT: "#991b1b",
    Severity.MAJOR: "#dc2626",
    Severity.STRONG: "#f87171",
    Severity.MODERATE: "#fb923c",
    Severity.LIGHT: "#facc15",
    Severity.MINOR: "#4ade80",
}

DEFAULT_NOTIFY_THRESHOLD = 4.5


def classify_magnitude(magnitude: float) -> Severity:
    """Map a magnitude to its descriptive class."""
    for threshold, severity in _THRESHOLDS:
        if magnitude >= threshold:
            return severity
    return Severity.MINOR


def severity_color(magnitude: float) -> str:
    """Hex display colour for a magnitude."""
    return SEVERITY_COLORS[classify_magnitude(magnitude)]


def should_notify(
    record: Record,
    threshold: float = DEFAULT_NOTIFY_THRESHOLD,
    attribute: str = "magnitude",
) -> bool:
    """
    Whether a new record is significant enough for an alert.

    Args:
        record: Newly merged record
        threshold: Minimum magnitude that triggers an alert
        attribute: Attribute holding the magnitude

    Returns:
        True if the record's magnitude is at or above threshold
    """
    value = record.scalar(attribute)
    return value is not None and value >= threshold
