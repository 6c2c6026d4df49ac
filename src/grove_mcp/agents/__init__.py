"""Agent capability interface and panel registration."""

from .controller import (
    AgentController,
    AgentError,
    AgentRunResult,
    AgentStartError,
    AgentUnavailableError,
    CliAgentController,
)
from .panels import Panel, PanelNotRegisteredError, PanelRegistry

__all__ = [
    "AgentController",
    "AgentError",
    "AgentRunResult",
    "AgentStartError",
    "AgentUnavailableError",
    "CliAgentController",
    "Panel",
    "PanelNotRegisteredError",
    "PanelRegistry",
]
