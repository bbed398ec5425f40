"""Data models shared across the dispatch pipeline."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, List, Dict, Any


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _parse_dt(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


class AttemptResult(Enum):
    """Classified result of a single place-call attempt."""

    SUCCESS = "success"
    BUSY = "busy"
    UNAVAILABLE = "unavailable"
    INVALID_TARGET = "invalid_target"
    OTHER_ERROR = "other_error"

    @property
    def is_retryable(self) -> bool:
        """Busy and unavailable agents can be skipped in favour of another agent."""
        return self in (AttemptResult.BUSY, AttemptResult.UNAVAILABLE)


class FinalStatus(Enum):
    """Terminal status of a lead process."""

    CALL_PLACED = "CALL_PLACED"
    DATA_ERROR = "DATA_ERROR"
    CONTACT_CREATION_FAILED = "CONTACT_CREATION_FAILED"
    NO_AGENTS_AVAILABLE = "NO_AGENTS_AVAILABLE"
    ALL_AGENTS_EXHAUSTED = "ALL_AGENTS_EXHAUSTED"
    REMOTE_TRANSPORT_ERROR = "REMOTE_TRANSPORT_ERROR"
    LEDGER_CONTENTION = "LEDGER_CONTENTION"


class ProcessStage(Enum):
    """Lead processing state machine."""

    STARTED = "started"
    CONTACT_ENSURED = "contact_ensured"
    AGENT_SELECTED = "agent_selected"
    CALL_PLACED = "call_placed"
    DONE = "done"

    # Terminal failures
    INVALID_LEAD = "invalid_lead"
    CONTACT_FAILED = "contact_failed"
    NO_AGENT = "no_agent"
    CALL_FAILED = "call_failed"


@dataclass
class ActiveCall:
    """A call an agent is on right now."""

    agent_id: str
    call_id: str
    started_at: datetime
    external_number: str = ""

    def duration_seconds(self, now: Optional[datetime] = None) -> int:
        now = now or datetime.now(self.started_at.tzinfo)
        return max(0, int((now - self.started_at).total_seconds()))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "agent_id": self.agent_id,
            "call_id": self.call_id,
            "started_at": _iso(self.started_at),
            "external_number": self.external_number,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ActiveCall":
        return cls(
            agent_id=str(data["agent_id"]),
            call_id=str(data.get("call_id", "")),
            started_at=_parse_dt(data["started_at"]),
            external_number=data.get("external_number", ""),
        )


@dataclass
class Agent:
    """A call-center agent with a freshly derived availability verdict."""

    id: str
    name: str
    status_tag: str
    available_for_dispatch: bool = False
    active_call: Optional[ActiveCall] = None
    email: str = ""
    extension: str = ""

    @property
    def is_on_call(self) -> bool:
        return self.active_call is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "status_tag": self.status_tag,
            "available_for_dispatch": self.available_for_dispatch,
            "active_call": self.active_call.to_dict() if self.active_call else None,
            "email": self.email,
            "extension": self.extension,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Agent":
        active_call = data.get("active_call")
        return cls(
            id=str(data["id"]),
            name=data.get("name", ""),
            status_tag=data.get("status_tag", ""),
            available_for_dispatch=data.get("available_for_dispatch", False),
            active_call=ActiveCall.from_dict(active_call) if active_call else None,
            email=data.get("email", ""),
            extension=data.get("extension", ""),
        )


@dataclass
class Lead:
    """An inbound request to call a phone number."""

    phone: str
    name: str = ""
    email: str = ""
    id: str = ""
    company: str = ""
    source: str = "webhook"

    @property
    def display_name(self) -> str:
        """Best available label for logs."""
        return self.name or self.phone or self.email or "Unnamed lead"

    @classmethod
    def from_payload(cls, data: Dict[str, Any]) -> "Lead":
        """Build a lead from a loosely shaped webhook payload."""
        name = data.get("name") or data.get("full_name") or data.get("contact_name")
        if not name:
            name = f"{data.get('firstName', '') or data.get('first_name', '')} " \
                   f"{data.get('lastName', '') or data.get('last_name', '')}".strip()

        phone = data.get("phone") or data.get("phone_number") or data.get("mobile") or ""

        return cls(
            phone=str(phone),
            name=name or "",
            email=data.get("email") or data.get("email_address") or "",
            id=str(data.get("id") or data.get("lead_id") or data.get("contact_id") or ""),
            company=data.get("company") or "",
            source=data.get("source") or "webhook",
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "phone": self.phone,
            "email": self.email,
            "company": self.company,
            "source": self.source,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Lead":
        return cls(
            phone=data.get("phone", ""),
            name=data.get("name", ""),
            email=data.get("email", ""),
            id=data.get("id", ""),
            company=data.get("company", ""),
            source=data.get("source", "webhook"),
        )


@dataclass
class DispatchAttempt:
    """One agent tried while dispatching a lead."""

    agent_id: str
    agent_name: str
    attempt_number: int
    result: AttemptResult
    message: str = ""
    selection_reason: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "agent_id": self.agent_id,
            "agent_name": self.agent_name,
            "attempt_number": self.attempt_number,
            "result": self.result.value,
            "message": self.message,
            "selection_reason": self.selection_reason,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DispatchAttempt":
        return cls(
            agent_id=str(data["agent_id"]),
            agent_name=data.get("agent_name", ""),
            attempt_number=data.get("attempt_number", 0),
            result=AttemptResult(data["result"]),
            message=data.get("message", ""),
            selection_reason=data.get("selection_reason", ""),
        )


@dataclass
class DispatchOutcome:
    """Every attempt made for one lead and how the cascade ended."""

    final_status: FinalStatus
    agent: Optional[Agent] = None
    attempts: List[DispatchAttempt] = field(default_factory=list)
    used_fallback: bool = False
    error: str = ""

    @property
    def success(self) -> bool:
        return self.final_status == FinalStatus.CALL_PLACED

    @property
    def saw_retryable_failure(self) -> bool:
        """True when some agent turned out to be busy or unavailable."""
        return any(a.result.is_retryable for a in self.attempts)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "final_status": self.final_status.value,
            "success": self.success,
            "agent": self.agent.to_dict() if self.agent else None,
            "attempts": [a.to_dict() for a in self.attempts],
            "used_fallback": self.used_fallback,
            "error": self.error,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DispatchOutcome":
        agent = data.get("agent")
        return cls(
            final_status=FinalStatus(data["final_status"]),
            agent=Agent.from_dict(agent) if agent else None,
            attempts=[DispatchAttempt.from_dict(a) for a in data.get("attempts", [])],
            used_fallback=data.get("used_fallback", False),
            error=data.get("error", ""),
        )


@dataclass
class LeadProcess:
    """Audit record of one lead's trip through the pipeline."""

    process_id: str
    lead: Lead
    started_at: datetime
    stage: ProcessStage = ProcessStage.STARTED
    final_status: Optional[FinalStatus] = None
    finished_at: Optional[datetime] = None
    contact_id: Optional[str] = None
    available_agents: int = 0
    outcome: Optional[DispatchOutcome] = None
    error: str = ""
    processing_time_ms: Optional[int] = None

    @property
    def success(self) -> bool:
        return self.final_status == FinalStatus.CALL_PLACED

    @property
    def attempted_agents(self) -> List[DispatchAttempt]:
        return self.outcome.attempts if self.outcome else []

    def to_dict(self) -> Dict[str, Any]:
        return {
            "process_id": self.process_id,
            "lead": self.lead.to_dict(),
            "started_at": _iso(self.started_at),
            "finished_at": _iso(self.finished_at),
            "stage": self.stage.value,
            "final_status": self.final_status.value if self.final_status else None,
            "success": self.success,
            "contact_id": self.contact_id,
            "available_agents": self.available_agents,
            "outcome": self.outcome.to_dict() if self.outcome else None,
            "error": self.error,
            "processing_time_ms": self.processing_time_ms,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LeadProcess":
        outcome = data.get("outcome")
        final_status = data.get("final_status")
        return cls(
            process_id=data["process_id"],
            lead=Lead.from_dict(data.get("lead", {})),
            started_at=_parse_dt(data["started_at"]),
            finished_at=_parse_dt(data.get("finished_at")),
            stage=ProcessStage(data.get("stage", "started")),
            final_status=FinalStatus(final_status) if final_status else None,
            contact_id=data.get("contact_id"),
            available_agents=data.get("available_agents", 0),
            outcome=DispatchOutcome.from_dict(outcome) if outcome else None,
            error=data.get("error", ""),
            processing_time_ms=data.get("processing_time_ms"),
        )
