"""Daily dispatch counters and period analytics."""

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Dict, List, Any, Optional

from ..core.models import AttemptResult, LeadProcess


def _rate(part: int, whole: int) -> float:
    return round(part / whole * 100, 2) if whole else 0.0


@dataclass
class AgentDayStats:
    """Per-agent counters; every attempt through the agent counts as an assignment."""
    name: str = ""
    assigned: int = 0
    succeeded: int = 0
    failed: int = 0

    @property
    def success_rate(self) -> float:
        return _rate(self.succeeded, self.assigned)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "assigned": self.assigned,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "success_rate": self.success_rate,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AgentDayStats":
        return cls(
            name=data.get("name", ""),
            assigned=data.get("assigned", 0),
            succeeded=data.get("succeeded", 0),
            failed=data.get("failed", 0),
        )


def _tally_agents(agent_stats: Dict[str, AgentDayStats], process: LeadProcess):
    for attempt in process.attempted_agents:
        stats = agent_stats.setdefault(attempt.agent_id, AgentDayStats(name=attempt.agent_name))
        stats.name = attempt.agent_name or stats.name
        stats.assigned += 1
        if attempt.result == AttemptResult.SUCCESS:
            stats.succeeded += 1
        else:
            stats.failed += 1


@dataclass
class DailyMetrics:
    """Running totals for one calendar day, updated one process at a time."""
    date: date
    total_processes: int = 0
    successful: int = 0
    failed: int = 0
    errors_by_status: Dict[str, int] = field(default_factory=dict)
    agent_stats: Dict[str, AgentDayStats] = field(default_factory=dict)
    created_at: datetime = field(default_factory=datetime.now)
    last_updated: datetime = field(default_factory=datetime.now)

    @property
    def success_rate(self) -> float:
        return _rate(self.successful, self.total_processes)

    def record(self, process: LeadProcess):
        """Fold one finished process into the counters."""
        self.total_processes += 1
        self.last_updated = datetime.now()

        if process.success:
            self.successful += 1
        else:
            self.failed += 1
            key = process.final_status.value if process.final_status else "UNKNOWN_ERROR"
            self.errors_by_status[key] = self.errors_by_status.get(key, 0) + 1

        _tally_agents(self.agent_stats, process)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "date": self.date.isoformat(),
            "total_processes": self.total_processes,
            "successful": self.successful,
            "failed": self.failed,
            "success_rate": self.success_rate,
            "errors_by_status": dict(self.errors_by_status),
            "agent_stats": {aid: s.to_dict() for aid, s in self.agent_stats.items()},
            "created_at": self.created_at.isoformat(),
            "last_updated": self.last_updated.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DailyMetrics":
        return cls(
            date=date.fromisoformat(data["date"]),
            total_processes=data.get("total_processes", 0),
            successful=data.get("successful", 0),
            failed=data.get("failed", 0),
            errors_by_status=data.get("errors_by_status", {}),
            agent_stats={
                aid: AgentDayStats.from_dict(s)
                for aid, s in data.get("agent_stats", {}).items()
            },
            created_at=datetime.fromisoformat(data["created_at"]) if data.get("created_at") else datetime.now(),
            last_updated=datetime.fromisoformat(data["last_updated"]) if data.get("last_updated") else datetime.now(),
        )


@dataclass
class AnalyticsSummary:
    """Aggregate view over a date range."""
    start_date: date
    end_date: date
    total_processes: int = 0
    successful: int = 0
    failed: int = 0
    error_distribution: Dict[str, int] = field(default_factory=dict)
    agent_performance: Dict[str, AgentDayStats] = field(default_factory=dict)
    hourly_distribution: List[int] = field(default_factory=lambda: [0] * 24)
    daily_distribution: Dict[str, int] = field(default_factory=dict)
    fallback_dispatches: int = 0
    avg_processing_time_ms: Optional[int] = None

    _timed_total: int = field(default=0, repr=False)
    _timed_count: int = field(default=0, repr=False)

    @property
    def success_rate(self) -> float:
        return _rate(self.successful, self.total_processes)

    def add(self, process: LeadProcess):
        """Fold one process into the summary."""
        self.total_processes += 1
        if process.success:
            self.successful += 1
        else:
            self.failed += 1
            key = process.final_status.value if process.final_status else "UNKNOWN"
            self.error_distribution[key] = self.error_distribution.get(key, 0) + 1

        self.hourly_distribution[process.started_at.hour] += 1
        day = process.started_at.date().isoformat()
        self.daily_distribution[day] = self.daily_distribution.get(day, 0) + 1

        if process.outcome and process.outcome.used_fallback:
            self.fallback_dispatches += 1

        _tally_agents(self.agent_performance, process)

        if process.processing_time_ms is not None:
            self._timed_total += process.processing_time_ms
            self._timed_count += 1
            self.avg_processing_time_ms = round(self._timed_total / self._timed_count)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "period": {
                "start_date": self.start_date.isoformat(),
                "end_date": self.end_date.isoformat(),
            },
            "total_processes": self.total_processes,
            "successful": self.successful,
            "failed": self.failed,
            "success_rate": self.success_rate,
            "error_distribution": dict(self.error_distribution),
            "agent_performance": {aid: s.to_dict() for aid, s in self.agent_performance.items()},
            "hourly_distribution": list(self.hourly_distribution),
            "daily_distribution": dict(self.daily_distribution),
            "fallback_dispatches": self.fallback_dispatches,
            "avg_processing_time_ms": self.avg_processing_time_ms,
        }
