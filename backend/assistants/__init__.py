"""Assistant registry and the default set of generation flows."""

from agents.linear_graph import LinearFlow
from agents.supervisor_graph import SupervisorFlow
from assistants.registry import AssistantNotFoundError, AssistantRegistry


def create_default_registry() -> AssistantRegistry:
    """Registry with the supervisor flow first, then the linear scaffold flow."""
    return AssistantRegistry([SupervisorFlow(), LinearFlow()])


__all__ = [
    "AssistantNotFoundError",
    "AssistantRegistry",
    "create_default_registry",
]
