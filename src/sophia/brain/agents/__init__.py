"""Agent mode handlers, dispatched through an explicit table."""

from sophia.brain.agents.base import (
    AgentHandler,
    AgentResult,
    AgentTurn,
    FlowUpdate,
    ProgressResult,
    ProgressTracker,
)
from sophia.brain.agents.companion import CompanionHandler
from sophia.brain.agents.firefighter import FirefighterHandler
from sophia.brain.agents.investigator import InvestigatorHandler, start_investigation
from sophia.brain.agents.sentry import SentryHandler
from sophia.brain.state import AgentMode

HANDLERS: dict[AgentMode, AgentHandler] = {
    AgentMode.COMPANION: CompanionHandler(),
    AgentMode.INVESTIGATOR: InvestigatorHandler(),
    AgentMode.FIREFIGHTER: FirefighterHandler(),
    AgentMode.SENTRY: SentryHandler(),
}

__all__ = [
    "AgentHandler",
    "AgentResult",
    "AgentTurn",
    "CompanionHandler",
    "FirefighterHandler",
    "FlowUpdate",
    "HANDLERS",
    "InvestigatorHandler",
    "ProgressResult",
    "ProgressTracker",
    "SentryHandler",
    "start_investigation",
]
