"""Append-only audit log of lead processes, one JSON-lines file per day.

Layout under ``log_dir``::

    lead-distribution-2024-05-01.jsonl   one LeadProcess per line
    metrics-2024-05-01.json              that day's DailyMetrics

Records are filed under the local date the process started on.
"""

import json
import logging
import re
import threading
from datetime import date, datetime, timedelta
from pathlib import Path
from typing import Callable, Iterator, List, Optional

from ..core.config import settings
from ..core.models import LeadProcess
from .metrics import AnalyticsSummary, DailyMetrics

logger = logging.getLogger(__name__)

LOG_PREFIX = "lead-distribution-"
METRICS_PREFIX = "metrics-"

_DATED_FILE = re.compile(r"^(?:lead-distribution|metrics)-(\d{4}-\d{2}-\d{2})\.jsonl?$")


class EventLog:
    """Daily JSONL process log with incrementally maintained metrics."""

    def __init__(self, log_dir: Optional[Path] = None, clock: Callable[[], datetime] = datetime.now):
        self.log_dir = Path(log_dir) if log_dir else settings.log_dir
        self.clock = clock
        self._lock = threading.Lock()
        self._metrics: Optional[DailyMetrics] = None

        self.log_dir.mkdir(parents=True, exist_ok=True)

    def _log_file(self, day: date) -> Path:
        return self.log_dir / f"{LOG_PREFIX}{day.isoformat()}.jsonl"

    def _metrics_file(self, day: date) -> Path:
        return self.log_dir / f"{METRICS_PREFIX}{day.isoformat()}.json"

    def _load_metrics(self, day: date) -> DailyMetrics:
        path = self._metrics_file(day)
        if path.exists():
            try:
                with open(path, 'r') as f:
                    return DailyMetrics.from_dict(json.load(f))
            except (OSError, ValueError, KeyError) as e:
                logger.error(f"Error loading metrics for {day}, rebuilding from log: {e}")
                metrics = DailyMetrics(date=day)
                for process in self._read_day(day):
                    metrics.record(process)
                return metrics
        return DailyMetrics(date=day)

    def _metrics_for(self, day: date) -> DailyMetrics:
        """The cached metrics for ``day``, rotating the cache when the day changes."""
        if self._metrics is None or self._metrics.date != day:
            if self._metrics is not None:
                logger.info(f"Rotating daily metrics from {self._metrics.date} to {day}")
            self._metrics = self._load_metrics(day)
        return self._metrics

    def _save_metrics(self, metrics: DailyMetrics):
        with open(self._metrics_file(metrics.date), 'w') as f:
            json.dump(metrics.to_dict(), f, indent=2)

    def append(self, process: LeadProcess):
        """Write one finished process and fold it into that day's metrics.

        I/O errors propagate to the caller.
        """
        day = process.started_at.date()
        line = json.dumps(process.to_dict())

        with self._lock:
            self.log_dir.mkdir(parents=True, exist_ok=True)
            with open(self._log_file(day), 'a') as f:
                f.write(line + "\n")

            metrics = self._metrics_for(day)
            metrics.record(process)
            self._save_metrics(metrics)

        logger.debug(
            f"Logged process {process.process_id}: "
            f"{process.final_status.value if process.final_status else 'unknown'}"
        )

    def _read_day(self, day: date) -> List[LeadProcess]:
        """All processes filed under ``day``, oldest first; bad lines are skipped."""
        path = self._log_file(day)
        if not path.exists():
            return []

        processes = []
        with open(path, 'r') as f:
            for line_number, line in enumerate(f, start=1):
                line = line.strip()
                if not line:
                    continue
                try:
                    processes.append(LeadProcess.from_dict(json.loads(line)))
                except (ValueError, KeyError) as e:
                    logger.warning(f"Skipping malformed record {path.name}:{line_number}: {e}")
        return processes

    def _logged_days(self) -> List[date]:
        """Days that have a process log, newest first."""
        days = []
        for path in self.log_dir.glob(f"{LOG_PREFIX}*.jsonl"):
            match = _DATED_FILE.match(path.name)
            if match:
                days.append(date.fromisoformat(match.group(1)))
        return sorted(days, reverse=True)

    def query_recent(self, limit: int = 20) -> List[LeadProcess]:
        """The most recent processes, newest first."""
        if limit <= 0:
            return []

        recent: List[LeadProcess] = []
        with self._lock:
            for day in self._logged_days():
                recent.extend(reversed(self._read_day(day)))
                if len(recent) >= limit:
                    break
        return recent[:limit]

    def current_metrics(self) -> DailyMetrics:
        """Metrics for the current local day."""
        with self._lock:
            return self._metrics_for(self.clock().date())

    def _days(self, start: date, end: date) -> Iterator[date]:
        day = start
        while day <= end:
            yield day
            day += timedelta(days=1)

    def aggregate(self, start: date, end: date) -> AnalyticsSummary:
        """Summarize every process filed between ``start`` and ``end`` inclusive."""
        if end < start:
            raise ValueError(f"end date {end} is before start date {start}")

        summary = AnalyticsSummary(start_date=start, end_date=end)
        with self._lock:
            for day in self._days(start, end):
                for process in self._read_day(day):
                    summary.add(process)
        return summary

    def cleanup_old_logs(self, retention_days: int = 30) -> int:
        """Delete log and metrics files older than ``retention_days``.

        Returns the number of files removed.
        """
        cutoff = self.clock().date() - timedelta(days=retention_days)
        removed = 0

        with self._lock:
            for path in self.log_dir.iterdir():
                match = _DATED_FILE.match(path.name)
                if not match:
                    continue
                if date.fromisoformat(match.group(1)) < cutoff:
                    path.unlink()
                    removed += 1
                    logger.info(f"Deleted old log file: {path.name}")

            if self._metrics is not None and self._metrics.date < cutoff:
                self._metrics = None

        if removed:
            logger.info(f"Cleaned up {removed} log file(s) older than {retention_days} days")
        return removed
