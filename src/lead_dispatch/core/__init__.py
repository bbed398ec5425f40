"""Core data model, configuration and validation."""

from .models import (
    Agent,
    ActiveCall,
    Lead,
    AttemptResult,
    FinalStatus,
    ProcessStage,
    DispatchAttempt,
    DispatchOutcome,
    LeadProcess,
)
from .config import DispatchConfig, DispatchConfigManager, Settings, settings
from .phone import normalize_phone, InvalidPhoneError

__all__ = [
    "Agent",
    "ActiveCall",
    "Lead",
    "AttemptResult",
    "FinalStatus",
    "ProcessStage",
    "DispatchAttempt",
    "DispatchOutcome",
    "LeadProcess",
    "DispatchConfig",
    "DispatchConfigManager",
    "Settings",
    "settings",
    "normalize_phone",
    "InvalidPhoneError",
]
