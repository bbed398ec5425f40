"""Lead-to-call pipeline.

A lead moves STARTED -> CONTACT_ENSURED -> AGENT_SELECTED -> CALL_PLACED -> DONE,
or stops at INVALID_LEAD, CONTACT_FAILED, NO_AGENT or CALL_FAILED. Every call
to ``process`` writes exactly one record to the event log before returning.
"""

import logging
import time
import uuid
from datetime import date, datetime
from typing import Any, Callable, Dict, List, Optional, Union

from ..availability.prober import AvailabilityProber, ProbeError
from ..core.config import DispatchConfig, DispatchConfigManager, settings
from ..core.models import FinalStatus, Lead, LeadProcess, ProcessStage
from ..core.phone import InvalidPhoneError, normalize_phone
from ..integrations.base import CallCenterPlatform, ContactDirectory, ContactError, PlatformError
from ..integrations.cloudtalk import CloudTalkClient
from ..routing.dispatcher import FallbackDispatcher
from ..routing.ledger import DistributionLedger
from ..tracking.event_log import EventLog
from ..tracking.metrics import AnalyticsSummary

logger = logging.getLogger(__name__)


class LeadOrchestrator:
    """Run leads through contact creation, availability and dispatch."""

    def __init__(
        self,
        platform: CallCenterPlatform,
        contacts: ContactDirectory,
        prober: AvailabilityProber,
        dispatcher: FallbackDispatcher,
        event_log: EventLog,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.platform = platform
        self.contacts = contacts
        self.prober = prober
        self.dispatcher = dispatcher
        self.event_log = event_log
        self.clock = clock

    @property
    def ledger(self) -> DistributionLedger:
        return self.dispatcher.ledger

    # === PIPELINE ===

    def process(self, lead: Union[Lead, Dict[str, Any]]) -> LeadProcess:
        """Take one lead from intake to a placed call (or a recorded failure)."""
        if isinstance(lead, dict):
            lead = Lead.from_payload(lead)

        started = time.monotonic()
        process = LeadProcess(
            process_id=f"proc_{uuid.uuid4().hex[:12]}",
            lead=lead,
            started_at=self.clock(),
        )
        logger.info(f"Processing lead {lead.display_name} ({process.process_id})")

        try:
            self._run(process)
        except Exception as e:
            logger.exception(f"Unexpected failure processing lead {lead.display_name}: {e}")
            process.final_status = FinalStatus.REMOTE_TRANSPORT_ERROR
            process.error = f"Unexpected error: {e}"
            if process.stage in (ProcessStage.STARTED, ProcessStage.CONTACT_ENSURED):
                process.stage = ProcessStage.NO_AGENT
            else:
                process.stage = ProcessStage.CALL_FAILED

        if process.stage == ProcessStage.CALL_PLACED:
            process.stage = ProcessStage.DONE
        process.finished_at = self.clock()
        process.processing_time_ms = int((time.monotonic() - started) * 1000)

        self.event_log.append(process)

        if process.success:
            logger.info(
                f"Lead {lead.display_name} connected to {process.outcome.agent.name} "
                f"in {process.processing_time_ms}ms"
            )
        else:
            logger.warning(
                f"Lead {lead.display_name} not connected: "
                f"{process.final_status.value} {process.error}"
            )
        return process

    def _run(self, process: LeadProcess):
        lead = process.lead

        # Fail fast before any remote work
        try:
            lead.phone = normalize_phone(lead.phone)
        except InvalidPhoneError as e:
            logger.error(f"Rejecting lead {lead.display_name}: {e}")
            self._fail(process, ProcessStage.INVALID_LEAD, FinalStatus.DATA_ERROR, str(e))
            return

        try:
            process.contact_id = self.contacts.ensure_contact(lead)
        except (ContactError, PlatformError) as e:
            logger.error(f"Contact creation failed for {lead.display_name}: {e}")
            self._fail(process, ProcessStage.CONTACT_FAILED, FinalStatus.CONTACT_CREATION_FAILED, str(e))
            return
        process.stage = ProcessStage.CONTACT_ENSURED
        logger.info(f"Contact ready for {lead.display_name}: {process.contact_id}")

        try:
            available = self.prober.available_agents()
        except ProbeError as e:
            self._fail(process, ProcessStage.NO_AGENT, FinalStatus.REMOTE_TRANSPORT_ERROR,
                       f"Availability check failed: {e}")
            return

        process.available_agents = len(available)
        if not available:
            self._fail(process, ProcessStage.NO_AGENT, FinalStatus.NO_AGENTS_AVAILABLE,
                       "No agents available right now")
            return
        process.stage = ProcessStage.AGENT_SELECTED

        outcome = self.dispatcher.dispatch(lead, available)
        process.outcome = outcome

        # Availability just changed under us; the next lead should re-probe
        if outcome.saw_retryable_failure:
            self.prober.invalidate()

        if outcome.success:
            process.final_status = FinalStatus.CALL_PLACED
            process.stage = ProcessStage.CALL_PLACED
        else:
            self._fail(process, ProcessStage.CALL_FAILED, outcome.final_status, outcome.error)

    @staticmethod
    def _fail(process: LeadProcess, stage: ProcessStage, status: FinalStatus, error: str):
        process.stage = stage
        process.final_status = status
        process.error = error

    # === OBSERVABILITY ===

    def get_stats(self) -> Dict[str, Any]:
        """Ledger position plus today's counters."""
        return {
            "distribution": self.ledger.stats(),
            "today": self.event_log.current_metrics().to_dict(),
            "timestamp": self.clock().isoformat(),
        }

    def get_recent_processes(self, limit: int = 20) -> List[LeadProcess]:
        return self.event_log.query_recent(limit)

    def get_analytics(self, start: Optional[date] = None, end: Optional[date] = None) -> AnalyticsSummary:
        """Aggregate over a date range; both ends default to today."""
        today = self.clock().date()
        return self.event_log.aggregate(start or today, end or today)


def build_orchestrator(config: Optional[DispatchConfig] = None) -> LeadOrchestrator:
    """Wire the CloudTalk-backed pipeline from environment settings."""
    settings.require_cloudtalk_credentials()
    config = config or DispatchConfigManager().config

    client = CloudTalkClient(timeout=config.request_timeout)
    ledger = DistributionLedger(
        history_cap=config.history_cap,
        max_retries=config.ledger_max_retries,
        retry_backoff=config.ledger_retry_backoff,
    )
    return LeadOrchestrator(
        platform=client,
        contacts=client,
        prober=AvailabilityProber(client, config),
        dispatcher=FallbackDispatcher(client, ledger),
        event_log=EventLog(),
    )
