"""Agent availability probing."""

from .prober import AvailabilityProber, ProbeError, classify_status

__all__ = [
    "AvailabilityProber",
    "ProbeError",
    "classify_status",
]
