"""Round-robin agent selection with wraparound."""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional, List

from ..core.models import Agent
from .ledger import DistributionState

logger = logging.getLogger(__name__)


class SelectionReason(Enum):
    """Why the selector picked (or failed to pick) an agent."""
    NO_AGENTS_AVAILABLE = "NO_AGENTS_AVAILABLE"
    SINGLE_AGENT = "SINGLE_AGENT"
    FIRST_DISTRIBUTION = "FIRST_DISTRIBUTION"
    ROUND_ROBIN_NEXT = "ROUND_ROBIN_NEXT"
    ROUND_ROBIN_WRAPPED = "ROUND_ROBIN_WRAPPED"
    LAST_AGENT_GONE_FALLBACK_TO_FIRST = "LAST_AGENT_GONE_FALLBACK_TO_FIRST"


@dataclass
class SelectionResult:
    """Selected agent and the rule that chose it."""
    agent: Optional[Agent]
    reason: SelectionReason
    used_fallback_of_ledger: bool = False


def stable_order(agents: List[Agent]) -> List[Agent]:
    """Deterministic ordering, independent of the order the platform returned."""
    return sorted(agents, key=lambda a: (a.name.casefold(), a.id))


def select_next(available: List[Agent], state: DistributionState) -> SelectionResult:
    """Pick the agent after ``state.last_agent_id`` in stable order.

    Never mutates ``state``.
    """
    if not available:
        logger.info("No agents available for distribution")
        return SelectionResult(agent=None, reason=SelectionReason.NO_AGENTS_AVAILABLE)

    ordered = stable_order(available)

    if len(ordered) == 1:
        return SelectionResult(agent=ordered[0], reason=SelectionReason.SINGLE_AGENT)

    if state.last_agent_id is None:
        logger.info(f"First distribution, selecting {ordered[0].name}")
        return SelectionResult(agent=ordered[0], reason=SelectionReason.FIRST_DISTRIBUTION)

    last_index = next(
        (i for i, agent in enumerate(ordered) if agent.id == state.last_agent_id),
        None,
    )

    if last_index is None:
        logger.info(f"Last agent {state.last_agent_id} no longer available, restarting from {ordered[0].name}")
        return SelectionResult(
            agent=ordered[0],
            reason=SelectionReason.LAST_AGENT_GONE_FALLBACK_TO_FIRST,
            used_fallback_of_ledger=True,
        )

    next_index = (last_index + 1) % len(ordered)
    reason = SelectionReason.ROUND_ROBIN_WRAPPED if next_index == 0 else SelectionReason.ROUND_ROBIN_NEXT
    logger.info(f"Round robin: {ordered[last_index].name} -> {ordered[next_index].name}")
    return SelectionResult(agent=ordered[next_index], reason=reason)
