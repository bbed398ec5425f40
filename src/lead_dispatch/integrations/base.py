"""Interfaces to the remote call-center platform and CRM."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, List

from ..core.models import AttemptResult, Lead


class PlatformError(Exception):
    """A remote platform request failed (timeout, transport, bad payload)."""


class ContactError(Exception):
    """The contact for a lead could not be created or found."""


@dataclass
class PlatformAgent:
    """Roster entry as reported by the platform."""

    id: str
    name: str
    status_tag: str
    email: str = ""
    extension: str = ""


@dataclass
class RecentCall:
    """Row from the platform's recent-call feed."""

    agent_id: str
    call_id: str
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    external_number: str = ""

    @property
    def is_open(self) -> bool:
        """Started and not yet ended."""
        return self.started_at is not None and self.ended_at is None


@dataclass
class PlaceCallResult:
    """Platform answer to a place-call request."""

    accepted: bool
    error_kind: Optional[AttemptResult] = None
    message: str = ""
    status_code: Optional[int] = None

    @property
    def result(self) -> AttemptResult:
        if self.accepted:
            return AttemptResult.SUCCESS
        return self.error_kind or AttemptResult.OTHER_ERROR


class CallCenterPlatform(ABC):
    """Operations the dispatcher needs from the call-center platform."""

    @abstractmethod
    def list_agents(self) -> List[PlatformAgent]:
        """Return the full agent roster."""
        pass

    @abstractmethod
    def list_recent_calls(self, since: datetime, limit: int = 50) -> List[RecentCall]:
        """Return calls started at or after ``since``."""
        pass

    def list_active_calls(self) -> Optional[List[RecentCall]]:
        """Return live calls when the platform has a direct feed, else None."""
        return None

    @abstractmethod
    def place_call(self, agent_id: str, phone_number: str) -> PlaceCallResult:
        """Ring the agent, then connect them to ``phone_number``."""
        pass


class ContactDirectory(ABC):
    """CRM-side contact management."""

    @abstractmethod
    def ensure_contact(self, lead: Lead) -> str:
        """Create (or reuse) a contact for the lead and return its id."""
        pass
