"""Place a lead's call through the next fair agent, falling back on busy agents.

The whole read-cursor / select / place-call / write-cursor sequence runs
inside the ledger's lock, so two leads can never both read the same cursor and
hand the call to the same agent.

Attempt results drive a single branch:

* SUCCESS                -> move the cursor to that agent and stop
* BUSY / UNAVAILABLE     -> drop the agent, select again from the rest
* INVALID_TARGET         -> stop, the lead's number is the problem
* OTHER_ERROR            -> stop, the platform is the problem
"""

import logging
from typing import List, Optional

from ..core.models import (
    Agent,
    AttemptResult,
    DispatchAttempt,
    DispatchOutcome,
    FinalStatus,
    Lead,
)
from ..integrations.base import CallCenterPlatform, PlaceCallResult
from .ledger import DistributionLedger, LedgerContentionError
from .selector import select_next, stable_order

logger = logging.getLogger(__name__)

# Non-retryable attempt results and the final status they end the dispatch with
_STOP_STATUS = {
    AttemptResult.INVALID_TARGET: FinalStatus.DATA_ERROR,
    AttemptResult.OTHER_ERROR: FinalStatus.REMOTE_TRANSPORT_ERROR,
}


class FallbackDispatcher:
    """Dispatch a lead to available agents in round-robin order."""

    def __init__(self, platform: CallCenterPlatform, ledger: DistributionLedger):
        self.platform = platform
        self.ledger = ledger

    def _place_call(self, agent: Agent, phone: str) -> PlaceCallResult:
        """Ask the platform to connect ``agent`` to ``phone``; never raises."""
        try:
            return self.platform.place_call(agent.id, phone)
        except Exception as e:
            logger.exception(f"Unexpected error placing call through {agent.name}: {e}")
            return PlaceCallResult(accepted=False, error_kind=AttemptResult.OTHER_ERROR, message=str(e))

    def dispatch(self, lead: Lead, available: List[Agent]) -> DispatchOutcome:
        """Try agents until one accepts the call or a stop condition is hit."""
        attempts: List[DispatchAttempt] = []
        candidates = stable_order([a for a in available if a.available_for_dispatch])

        if not candidates:
            logger.warning(f"No agents available for lead {lead.display_name}")
            return DispatchOutcome(
                final_status=FinalStatus.NO_AGENTS_AVAILABLE,
                error="No agents available right now",
            )

        with self.ledger.locked():
            state = self.ledger.load()

            while candidates:
                selection = select_next(candidates, state)
                agent = selection.agent
                attempt_number = len(attempts) + 1

                logger.info(
                    f"Attempt {attempt_number}: calling {lead.phone} via {agent.name} "
                    f"({selection.reason.value})"
                )
                placed = self._place_call(agent, lead.phone)
                result = placed.result

                attempts.append(DispatchAttempt(
                    agent_id=agent.id,
                    agent_name=agent.name,
                    attempt_number=attempt_number,
                    result=result,
                    message=placed.message,
                    selection_reason=selection.reason.value,
                ))

                if result == AttemptResult.SUCCESS:
                    return self._succeed(state, agent, attempts)

                if not result.is_retryable:
                    final_status = _STOP_STATUS[result]
                    logger.error(
                        f"Dispatch for {lead.display_name} stopped on {result.value} "
                        f"via {agent.name}: {placed.message}"
                    )
                    return DispatchOutcome(
                        final_status=final_status,
                        attempts=attempts,
                        used_fallback=len(attempts) > 1,
                        error=placed.message or result.value,
                    )

                logger.warning(f"Agent {agent.name} is {result.value}, falling back to the next agent")
                candidates = [c for c in candidates if c.id != agent.id]

        logger.error(f"All {len(attempts)} available agents failed for lead {lead.display_name}")
        return DispatchOutcome(
            final_status=FinalStatus.ALL_AGENTS_EXHAUSTED,
            attempts=attempts,
            used_fallback=len(attempts) > 1,
            error=f"All {len(attempts)} available agents were busy or unavailable",
        )

    def _succeed(self, state, agent: Agent, attempts: List[DispatchAttempt]) -> DispatchOutcome:
        used_fallback = len(attempts) > 1
        try:
            self.ledger.commit_decision(state, agent, FinalStatus.CALL_PLACED, used_fallback)
        except LedgerContentionError as e:
            # The call is already ringing; only the cursor update was lost.
            return DispatchOutcome(
                final_status=FinalStatus.REMOTE_TRANSPORT_ERROR,
                agent=agent,
                attempts=attempts,
                used_fallback=used_fallback,
                error=f"Call placed but ledger update failed: {e}",
            )

        logger.info(
            f"Call placed via {agent.name} after {len(attempts)} attempt(s)"
            f"{' using fallback' if used_fallback else ''}"
        )
        return DispatchOutcome(
            final_status=FinalStatus.CALL_PLACED,
            agent=agent,
            attempts=attempts,
            used_fallback=used_fallback,
        )

    def preview(self, available: List[Agent]) -> Optional[Agent]:
        """The agent the next dispatch would try first, without placing a call."""
        return select_next(
            [a for a in available if a.available_for_dispatch],
            self.ledger.load(),
        ).agent
