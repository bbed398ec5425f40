"""Real-time agent availability detection.

An agent is dispatchable only when the platform reports a "ready" status tag
AND no open call is found for them. Open calls come from the platform's live
feed when it has one, otherwise from the recent-call history: a call with a
start time, no end time, and a start inside the lookback window.
"""

import logging
import threading
import time
from datetime import datetime, timedelta
from typing import Callable, Dict, Iterable, List, Optional

from ..core.config import DispatchConfig, DEFAULT_AVAILABLE_STATUSES
from ..core.models import ActiveCall, Agent
from ..integrations.base import CallCenterPlatform, PlatformError, RecentCall

logger = logging.getLogger(__name__)


class ProbeError(Exception):
    """The roster or call feed could not be read; no verdict was produced."""


def classify_status(status_tag: Optional[str], available_statuses: Iterable[str] = DEFAULT_AVAILABLE_STATUSES) -> bool:
    """Map a raw platform status tag to "ready for a call".

    Unknown tags count as unavailable.
    """
    if not status_tag:
        return False
    allowed = {s.strip().lower() for s in available_statuses}
    return status_tag.strip().lower() in allowed


def _local_naive(value: datetime) -> datetime:
    """Express timestamps as naive local time so they compare with datetime.now()."""
    if value.tzinfo is not None:
        return value.astimezone().replace(tzinfo=None)
    return value


class AvailabilityProber:
    """Combine roster status and open calls into a per-agent verdict."""

    def __init__(
        self,
        platform: CallCenterPlatform,
        config: Optional[DispatchConfig] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.platform = platform
        self.config = config or DispatchConfig()
        self.clock = clock

        self._cache: Optional[List[Agent]] = None
        self._cached_at: float = 0.0
        self._active_call_count = 0
        self._lock = threading.Lock()

    # === CACHE ===

    def invalidate(self):
        """Drop the cached roster so the next probe hits the platform."""
        with self._lock:
            self._cache = None
            self._cached_at = 0.0
        logger.debug("Availability cache invalidated")

    def _cache_valid(self) -> bool:
        if self._cache is None:
            return False
        return (time.monotonic() - self._cached_at) < self.config.probe_cache_ttl

    # === PROBING ===

    def probe(self, fresh: bool = False) -> List[Agent]:
        """Return every agent with a freshly derived availability verdict.

        Raises ProbeError if either remote read fails; the cache is left as it was.
        """
        with self._lock:
            if not fresh and self._cache_valid():
                return list(self._cache)

        logger.info("Checking CloudTalk agent availability...")
        try:
            roster = self.platform.list_agents()
            open_calls = self._open_calls()
        except PlatformError as e:
            logger.error(f"Availability probe failed: {e}")
            raise ProbeError(str(e)) from e

        calls_by_agent: Dict[str, ActiveCall] = {}
        for call in open_calls:
            calls_by_agent.setdefault(call.agent_id, ActiveCall(
                agent_id=call.agent_id,
                call_id=call.call_id,
                started_at=call.started_at,
                external_number=call.external_number,
            ))

        agents = []
        for entry in roster:
            active_call = calls_by_agent.get(entry.id)
            available = active_call is None and classify_status(entry.status_tag, self.config.available_statuses)
            agents.append(Agent(
                id=entry.id,
                name=entry.name,
                status_tag=entry.status_tag,
                available_for_dispatch=available,
                active_call=active_call,
                email=entry.email,
                extension=entry.extension,
            ))
            logger.debug(
                f"Agent {entry.name} ({entry.id}): {entry.status_tag}"
                f"{' on call' if active_call else ''} -> {'available' if available else 'unavailable'}"
            )

        available_count = sum(1 for a in agents if a.available_for_dispatch)
        logger.info(f"Found {available_count} available agents out of {len(agents)} total")

        with self._lock:
            self._cache = agents
            self._cached_at = time.monotonic()
            self._active_call_count = len(calls_by_agent)

        return list(agents)

    def available_agents(self, fresh: bool = False) -> List[Agent]:
        """Only the agents that can take a call right now."""
        return [a for a in self.probe(fresh=fresh) if a.available_for_dispatch]

    def _open_calls(self) -> List[RecentCall]:
        """Calls in progress, from the live feed when available."""
        live = self.platform.list_active_calls()
        if live is not None:
            return [c for c in live if c.started_at is not None]

        now = self.clock()
        since = now - timedelta(minutes=self.config.recent_call_window_minutes)
        recent = self.platform.list_recent_calls(since, limit=self.config.recent_call_limit)

        open_calls = []
        for call in recent:
            if not call.is_open:
                continue
            # Calls that never logged an end age out of the window
            if _local_naive(call.started_at) < since:
                continue
            open_calls.append(call)
        return open_calls

    # === REPORTING ===

    def status_report(self, fresh: bool = False) -> Dict:
        """Summary of the roster for operators."""
        agents = self.probe(fresh=fresh)
        available = [a for a in agents if a.available_for_dispatch]
        return {
            "total_agents": len(agents),
            "available_agents": len(available),
            "busy_agents": len(agents) - len(available),
            "active_calls": self._active_call_count,
            "agents": agents,
            "generated_at": self.clock().isoformat(),
        }
