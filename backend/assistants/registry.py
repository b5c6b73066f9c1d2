"""Assistant registry: maps ``assistant_id`` / ``graph_id`` to a flow."""

from typing import Any

import structlog

from agents.engine import Flow

logger = structlog.get_logger(__name__)


class AssistantNotFoundError(KeyError):
    """No assistant is registered under the requested id."""

    def __init__(self, assistant_id: str) -> None:
        super().__init__(assistant_id)
        self.assistant_id = assistant_id

    def __str__(self) -> str:
        return f"Assistant {self.assistant_id} not found"


class AssistantRegistry:
    """Registered pipeline variants, in registration order."""

    def __init__(self, flows: list[Flow] | None = None) -> None:
        self._by_id: dict[str, Flow] = {}
        for flow in flows or []:
            self.register(flow)

    def register(self, flow: Flow) -> None:
        self._by_id[flow.assistant_id] = flow
        logger.info("assistant_registered", assistant_id=flow.assistant_id)

    def get(self, assistant_id: str) -> Flow:
        """Get a flow by assistant id (graph ids are the same).

        Raises:
            AssistantNotFoundError: If nothing is registered under the id.
        """
        flow = self._by_id.get(assistant_id)
        if flow is None:
            raise AssistantNotFoundError(assistant_id)
        return flow

    def summary(self, flow: Flow) -> dict[str, Any]:
        return {
            "assistant_id": flow.assistant_id,
            "graph_id": flow.assistant_id,
            "name": flow.name,
            "description": flow.description,
            "metadata": dict(flow.metadata),
        }

    def search(self, graph_id: str | None = None) -> list[dict[str, Any]]:
        """Summaries of every assistant, or of the one matching ``graph_id``."""
        if graph_id is not None:
            flow = self._by_id.get(graph_id)
            return [self.summary(flow)] if flow is not None else []
        return [self.summary(flow) for flow in self._by_id.values()]

    def default_id(self) -> str | None:
        return next(iter(self._by_id), None)
