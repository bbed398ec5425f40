"""Lead intake pipeline."""

from .lead_to_call import LeadOrchestrator, build_orchestrator

__all__ = ["LeadOrchestrator", "build_orchestrator"]
