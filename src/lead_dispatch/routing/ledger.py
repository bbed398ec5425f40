"""Durable round-robin cursor and bounded dispatch history."""

import fcntl
import json
import logging
import os
import tempfile
import threading
import time
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Optional, List, Dict, Any, Generator

from ..core.config import settings
from ..core.models import Agent, FinalStatus

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_CAP = 50

LOCK_SUFFIX = ".lock"


class LedgerLock:
    """Exclusive access to one ledger file.

    A thread lock orders callers inside the process; an ``flock`` on a sidecar
    ``<ledger>.lock`` file orders processes. Reentrant for the holding thread,
    which keeps the flock until its outermost ``hold()`` exits.
    """

    def __init__(self, lock_path: Path):
        self.lock_path = lock_path
        self._thread_lock = threading.RLock()
        self._depth = 0
        self._fd: Optional[int] = None

    @contextmanager
    def hold(self) -> Generator[None, None, None]:
        with self._thread_lock:
            if self._depth == 0:
                self.lock_path.parent.mkdir(parents=True, exist_ok=True)
                fd = os.open(str(self.lock_path), os.O_CREAT | os.O_RDWR)
                try:
                    fcntl.flock(fd, fcntl.LOCK_EX)
                except OSError:
                    os.close(fd)
                    raise
                self._fd = fd
            self._depth += 1
            try:
                yield
            finally:
                self._depth -= 1
                if self._depth == 0:
                    fcntl.flock(self._fd, fcntl.LOCK_UN)
                    os.close(self._fd)
                    self._fd = None


# One lock per ledger file, shared by every DistributionLedger in the process.
_PATH_LOCKS: Dict[str, LedgerLock] = {}
_PATH_LOCKS_GUARD = threading.Lock()


def _lock_for(path: Path) -> LedgerLock:
    key = str(path.resolve())
    with _PATH_LOCKS_GUARD:
        if key not in _PATH_LOCKS:
            _PATH_LOCKS[key] = LedgerLock(path.with_name(path.name + LOCK_SUFFIX))
        return _PATH_LOCKS[key]


class LedgerContentionError(Exception):
    """The stored ledger changed between read and write."""


@dataclass
class DistributionDecision:
    """A past dispatch decision kept for audit."""

    id: str
    agent_id: str
    agent_name: str
    timestamp: datetime
    outcome: str
    used_fallback: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "agent_id": self.agent_id,
            "agent_name": self.agent_name,
            "timestamp": self.timestamp.isoformat(),
            "outcome": self.outcome,
            "used_fallback": self.used_fallback,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DistributionDecision":
        return cls(
            id=data.get("id", ""),
            agent_id=str(data["agent_id"]),
            agent_name=data.get("agent_name", ""),
            timestamp=datetime.fromisoformat(data["timestamp"]),
            outcome=data.get("outcome", FinalStatus.CALL_PLACED.value),
            used_fallback=data.get("used_fallback", False),
        )


@dataclass
class DistributionState:
    """The persisted cursor: who got the last call, plus recent decisions (newest first)."""

    last_agent_id: Optional[str] = None
    last_dispatch_time: Optional[datetime] = None
    history: List[DistributionDecision] = field(default_factory=list)
    version: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "last_agent_id": self.last_agent_id,
            "last_dispatch_time": self.last_dispatch_time.isoformat() if self.last_dispatch_time else None,
            "history": [d.to_dict() for d in self.history],
            "version": self.version,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DistributionState":
        last_time = data.get("last_dispatch_time")
        last_agent = data.get("last_agent_id")
        return cls(
            last_agent_id=str(last_agent) if last_agent is not None else None,
            last_dispatch_time=datetime.fromisoformat(last_time) if last_time else None,
            history=[DistributionDecision.from_dict(d) for d in data.get("history", [])],
            version=data.get("version", 0),
        )


class DistributionLedger:
    """JSON-file storage for the distribution state.

    Writes are compare-and-swap on ``version`` and atomic (temp file + rename).
    ``locked()`` serializes read-modify-write sequences across threads and
    processes; every read and write also takes the lock, so the version check
    and the rename happen as one step.
    """

    def __init__(
        self,
        state_path: Optional[Path] = None,
        history_cap: int = DEFAULT_HISTORY_CAP,
        max_retries: int = 3,
        retry_backoff: float = 0.05,
    ):
        self.state_path = Path(state_path) if state_path else settings.ledger_path
        self.history_cap = history_cap
        self.max_retries = max_retries
        self.retry_backoff = retry_backoff
        self._lock = _lock_for(self.state_path)

    @contextmanager
    def locked(self) -> Generator[None, None, None]:
        """Hold the ledger's mutual-exclusion boundary."""
        with self._lock.hold():
            yield

    def _read_raw(self) -> Optional[Dict[str, Any]]:
        if not self.state_path.exists():
            return None
        with open(self.state_path, 'r') as f:
            return json.load(f)

    def load(self) -> DistributionState:
        """Load the stored state; a missing file means no dispatch has happened yet."""
        with self.locked():
            try:
                data = self._read_raw()
            except (OSError, ValueError) as e:
                logger.error(f"Error loading distribution state, starting fresh: {e}")
                return DistributionState()

            if data is None:
                return DistributionState()

            state = DistributionState.from_dict(data)
            logger.debug(f"Distribution state loaded: last agent {state.last_agent_id or 'none'}")
            return state

    def _stored_version(self) -> int:
        try:
            data = self._read_raw()
        except (OSError, ValueError):
            return 0
        return data.get("version", 0) if data else 0

    def save(self, state: DistributionState, expected_version: Optional[int] = None):
        """Persist ``state``.

        With ``expected_version`` set, the write only happens if the stored
        version still matches; otherwise LedgerContentionError is raised.
        """
        with self.locked():
            stored = self._stored_version()
            if expected_version is not None and stored != expected_version:
                raise LedgerContentionError(
                    f"ledger version moved from {expected_version} to {stored}"
                )

            new_version = max(stored, state.version) + 1
            data = state.to_dict()
            data["version"] = new_version
            data["updated_at"] = datetime.now().isoformat()

            self.state_path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(
                dir=str(self.state_path.parent), prefix=".ledger-", suffix=".tmp"
            )
            try:
                with os.fdopen(fd, 'w') as f:
                    json.dump(data, f, indent=2)
                os.replace(tmp_path, self.state_path)
            except Exception:
                if os.path.exists(tmp_path):
                    os.unlink(tmp_path)
                raise

            state.version = new_version

    def record_decision(
        self,
        state: DistributionState,
        agent: Agent,
        outcome: FinalStatus = FinalStatus.CALL_PLACED,
        used_fallback: bool = False,
        now: Optional[datetime] = None,
    ) -> DistributionDecision:
        """Move the cursor to ``agent`` and prepend a history entry."""
        now = now or datetime.now()
        decision = DistributionDecision(
            id=str(uuid.uuid4())[:12],
            agent_id=agent.id,
            agent_name=agent.name,
            timestamp=now,
            outcome=outcome.value,
            used_fallback=used_fallback,
        )

        state.last_agent_id = agent.id
        state.last_dispatch_time = now
        state.history.insert(0, decision)
        if len(state.history) > self.history_cap:
            del state.history[self.history_cap:]

        return decision

    def commit_decision(
        self,
        state: DistributionState,
        agent: Agent,
        outcome: FinalStatus = FinalStatus.CALL_PLACED,
        used_fallback: bool = False,
    ) -> DistributionState:
        """Record a decision and write it with CAS, retrying on contention.

        Returns the state that was written. Raises LedgerContentionError once
        the retries are used up.
        """
        retry = 0
        while True:
            expected = state.version
            self.record_decision(state, agent, outcome, used_fallback)
            try:
                self.save(state, expected_version=expected)
                return state
            except LedgerContentionError as e:
                if retry >= self.max_retries:
                    logger.error(f"Giving up on ledger write after {retry + 1} attempts: {e}")
                    raise
                delay = self.retry_backoff * (2 ** retry)
                logger.warning(f"Ledger contention ({e}), retrying in {delay:.2f}s")
                time.sleep(delay)
                state = self.load()
                retry += 1

    def reset(self) -> DistributionState:
        """Forget the cursor and history."""
        with self.locked():
            state = DistributionState(version=self._stored_version())
            self.save(state)
        logger.info("Distribution state reset")
        return state

    def stats(self) -> Dict[str, Any]:
        """Cursor position and the most recent decisions."""
        state = self.load()
        return {
            "total_distributions": len(state.history),
            "last_agent_id": state.last_agent_id,
            "last_dispatch_time": state.last_dispatch_time.isoformat() if state.last_dispatch_time else None,
            "last_distribution": state.history[0].to_dict() if state.history else None,
            "recent_history": [d.to_dict() for d in state.history[:10]],
        }
