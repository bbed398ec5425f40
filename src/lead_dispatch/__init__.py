"""Fair, availability-aware lead-to-call dispatch for CloudTalk call centers."""

__version__ = "0.1.0"
