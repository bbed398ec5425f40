"""Process audit log and dispatch metrics."""

from .metrics import AgentDayStats, DailyMetrics, AnalyticsSummary
from .event_log import EventLog

__all__ = [
    "AgentDayStats",
    "DailyMetrics",
    "AnalyticsSummary",
    "EventLog",
]
