"""Shared test fixtures for backend tests.

Provides a fresh EventBus, ThreadStore and assistant registry per test, a
queued MockLLMClient, and step contexts whose events land on the bus so
tests never touch a real LLM API.
"""

import json
import sys
from typing import Any

import pytest

# Ensure the backend package root is on sys.path so that absolute imports
# like ``from agents.engine import ...`` resolve correctly when running
# pytest from the repository root.
_backend_root = str(
    __import__("pathlib").Path(__file__).resolve().parent.parent
)
if _backend_root not in sys.path:
    sys.path.insert(0, _backend_root)

from agents.engine import StepContext  # noqa: E402
from agents.utils import MockLLMClient  # noqa: E402
from assistants import AssistantRegistry, create_default_registry  # noqa: E402
from events import EventBus, EventType, RunEmitter, RunEvent  # noqa: E402
from models.generation import Message  # noqa: E402
from store import ThreadStore  # noqa: E402

TEST_RUN_ID = "run-test"
TEST_THREAD_ID = "thread-test"

REQUIREMENTS_JSON = json.dumps({
    "features": ["Add to cart", "Show price"],
    "styling": {"theme": "dark", "colorScheme": "emerald", "layout": "modern"},
    "components": ["Card", "Button"],
    "clarificationNeeded": False,
    "clarificationQuestions": [],
})

COMPONENT_HTML = '<div class="p-6 bg-gray-800"><button>Add to cart</button></div>'


# ---------------------------------------------------------------------------
# Collaborators
# ---------------------------------------------------------------------------


@pytest.fixture()
def event_bus() -> EventBus:
    """Return a fresh EventBus instance for each test."""
    return EventBus()


@pytest.fixture()
def thread_store() -> ThreadStore:
    return ThreadStore()


@pytest.fixture()
def registry() -> AssistantRegistry:
    return create_default_registry()


@pytest.fixture()
def mock_llm() -> MockLLMClient:
    """A mock LLM answering one supervisor pass: requirements, then code."""
    return MockLLMClient(responses=[REQUIREMENTS_JSON, f"```html\n{COMPONENT_HTML}\n```"])


def make_context(
    llm: MockLLMClient,
    event_bus: EventBus | None = None,
    run_id: str = TEST_RUN_ID,
) -> StepContext:
    """StepContext whose emitter publishes to ``event_bus`` under ``run_id``."""
    emitter = RunEmitter(event_bus, thread_id=TEST_THREAD_ID, run_id=run_id)
    return StepContext(llm=llm, emitter=emitter)


@pytest.fixture()
def step_context(mock_llm: MockLLMClient, event_bus: EventBus) -> StepContext:
    return make_context(mock_llm, event_bus)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def user_message(text: str) -> Message:
    return Message.text_message("user", text)


def events_of(
    event_bus: EventBus,
    event_type: EventType | None = None,
    run_id: str = TEST_RUN_ID,
) -> list[RunEvent]:
    """Events published for a run, optionally filtered by type."""
    history = event_bus.get_event_history(run_id)
    if event_type is None:
        return history
    return [event for event in history if event.type == event_type]


def event_types(event_bus: EventBus, run_id: str = TEST_RUN_ID) -> list[str]:
    return [event.type.value for event in event_bus.get_event_history(run_id)]


def payloads(events: list[RunEvent]) -> list[Any]:
    return [event.data for event in events]
