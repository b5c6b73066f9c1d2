"""Tests for the supervisor generation steps (agents/steps/).

Each step is called directly with a hand-built state and a MockLLMClient.
"""

import pytest

from agents.errors import (
    CodeGenerationError,
    MalformedLLMResponseError,
    MissingInputError,
    MissingPrecursorError,
)
from agents.state import create_supervisor_state
from agents.steps import (
    build_design_spec,
    design_component,
    generate_code,
    parse_requirements,
    preview_iteration,
)
from agents.steps.preview_iteration import APPROVED_MESSAGE, READY_MESSAGE
from agents.steps.requirements_parser import latest_user_text, parse_requirements_response
from agents.utils import MockLLMClient
from events import EventBus, EventType
from models.generation import Message, Requirements, Styling
from tests.conftest import COMPONENT_HTML, REQUIREMENTS_JSON, events_of, make_context, user_message


def _state(**overrides):
    return {**create_supervisor_state("thread-1"), **overrides}


def _requirements(**overrides) -> Requirements:
    data = {
        "raw_input": "A product card",
        "features": ["Add to cart"],
        "styling": Styling(theme="light", color_scheme="blue", layout="modern"),
    }
    data.update(overrides)
    return Requirements(**data)


# =========================================================================
# Requirements parser
# =========================================================================


class TestLatestUserText:
    def test_returns_most_recent_user_message(self) -> None:
        messages = [
            user_message("first"),
            Message.text_message("assistant", "ok"),
            user_message("second"),
        ]
        assert latest_user_text(messages) == "second"

    def test_no_user_message_raises(self) -> None:
        with pytest.raises(MissingInputError):
            latest_user_text([Message.text_message("assistant", "hello")])

    def test_user_message_without_text_raises(self) -> None:
        with pytest.raises(MissingInputError):
            latest_user_text([Message(role="user", content=[])])


class TestParseRequirementsResponse:
    def test_fenced_json_is_accepted(self) -> None:
        reqs = parse_requirements_response(f"```json\n{REQUIREMENTS_JSON}\n```", "raw")
        assert reqs.features == ["Add to cart", "Show price"]
        assert reqs.styling.theme == "dark"
        assert reqs.raw_input == "raw"

    def test_missing_fields_get_defaults(self) -> None:
        reqs = parse_requirements_response("{}", "A login form")
        assert reqs.features == []
        assert reqs.styling == Styling()
        assert reqs.clarification_needed is False

    def test_raw_input_is_never_taken_from_the_model(self) -> None:
        reqs = parse_requirements_response('{"rawInput": "hijacked"}', "real input")
        assert reqs.raw_input == "real input"

    def test_prose_raises_malformed(self) -> None:
        with pytest.raises(MalformedLLMResponseError) as exc_info:
            parse_requirements_response("Sure! Here are your requirements.", "x")
        assert exc_info.value.raw_response.startswith("Sure!")


class TestParseRequirementsStep:
    async def test_happy_path_hands_off_to_design(self) -> None:
        llm = MockLLMClient(responses=[REQUIREMENTS_JSON])
        update = await parse_requirements(
            _state(messages=[user_message("A dark product card")]), make_context(llm)
        )
        assert update["current_step"] == "design"
        assert update["requirements"].raw_input == "A dark product card"
        assert llm.call_history[0]["temperature"] == 0.3

    async def test_no_user_message_fails_before_calling_llm(self) -> None:
        llm = MockLLMClient(responses=[REQUIREMENTS_JSON])
        with pytest.raises(MissingInputError):
            await parse_requirements(_state(messages=[]), make_context(llm))
        assert llm.call_history == []

    async def test_feedback_loop_includes_previous_requirements(self) -> None:
        llm = MockLLMClient(responses=[REQUIREMENTS_JSON])
        state = _state(
            messages=[user_message("A card"), user_message("make it blue")],
            requirements=_requirements(),
        )
        await parse_requirements(state, make_context(llm))
        user_prompt = llm.call_history[0]["messages"][1]["content"]
        assert "Current requirements" in user_prompt
        assert "make it blue" in user_prompt


# =========================================================================
# Component designer
# =========================================================================


class TestComponentDesigner:
    @pytest.mark.parametrize(
        ("layout", "expected"),
        [("modern", "flex"), ("minimal", "grid"), ("classic", "stack")],
    )
    def test_layout_mapping(self, layout: str, expected: str) -> None:
        spec = build_design_spec(_requirements(styling=Styling(layout=layout)))
        assert spec.layout.type == expected

    def test_dark_theme_classes(self) -> None:
        spec = build_design_spec(_requirements(styling=Styling(theme="dark")))
        assert "bg-gray-900" in spec.styling.classes["Container"]
        assert "bg-gray-800" in spec.styling.classes["Content"]

    def test_light_theme_classes(self) -> None:
        spec = build_design_spec(_requirements())
        assert "bg-gray-50" in spec.styling.classes["Container"]
        assert "bg-white" in spec.styling.classes["Content"]

    def test_one_interaction_per_feature(self) -> None:
        spec = build_design_spec(_requirements(features=["Add to cart", "Share"]))
        assert [i.action for i in spec.interactions] == ["handleAddtocart", "handleShare"]
        assert all(i.trigger == "click" for i in spec.interactions)

    def test_default_hierarchy(self) -> None:
        assert build_design_spec(_requirements()).component_hierarchy == ["Container", "Content"]
        spec = build_design_spec(_requirements(components=["Card"]))
        assert spec.component_hierarchy == ["Card"]

    async def test_step_hands_off_to_code(self) -> None:
        update = await design_component(
            _state(requirements=_requirements()), make_context(MockLLMClient())
        )
        assert update["current_step"] == "code"
        assert update["design_spec"].styling.framework == "tailwind"

    async def test_missing_requirements_raises(self) -> None:
        with pytest.raises(MissingPrecursorError):
            await design_component(_state(), make_context(MockLLMClient()))


# =========================================================================
# Code generator
# =========================================================================


class TestCodeGenerator:
    def _ready_state(self):
        reqs = _requirements()
        return _state(requirements=reqs, design_spec=build_design_spec(reqs))

    async def test_generates_component_and_emits_artifact(self, event_bus: EventBus) -> None:
        llm = MockLLMClient(responses=[f"```html\n{COMPONENT_HTML}\n```"])
        update = await generate_code(self._ready_state(), make_context(llm, event_bus))

        component = update["component_state"]
        assert component.code == COMPONENT_HTML
        assert component.validated is True
        assert component.dependencies == ["tailwindcss"]
        assert update["current_step"] == "preview"

        artifacts = events_of(event_bus, EventType.ARTIFACT)
        assert artifacts[0].data["file"]["path"] == "component.html"
        assert llm.call_history[0]["temperature"] == 0.7

    async def test_prompt_carries_requirements_and_design(self) -> None:
        llm = MockLLMClient(responses=[COMPONENT_HTML])
        await generate_code(self._ready_state(), make_context(llm))
        system_prompt = llm.call_history[0]["messages"][0]["content"]
        assert "Add to cart" in system_prompt
        assert "componentHierarchy" in system_prompt

    async def test_llm_failure_raises_code_generation_error(self) -> None:
        llm = MockLLMClient(responses=[TimeoutError("upstream timed out")])
        with pytest.raises(CodeGenerationError):
            await generate_code(self._ready_state(), make_context(llm))

    async def test_empty_output_raises(self) -> None:
        llm = MockLLMClient(responses=["```html\n```"])
        with pytest.raises(CodeGenerationError):
            await generate_code(self._ready_state(), make_context(llm))

    async def test_missing_design_raises(self) -> None:
        with pytest.raises(MissingPrecursorError):
            await generate_code(_state(requirements=_requirements()), make_context(MockLLMClient()))


# =========================================================================
# Preview & iteration
# =========================================================================


class TestPreviewIteration:
    async def test_approval_moves_to_approved(self) -> None:
        update = await preview_iteration(
            _state(current_step="preview", user_approval=True), make_context(MockLLMClient())
        )
        assert update["current_step"] == "approved"
        assert update["user_approval"] is False
        assert update["messages"][0].text == APPROVED_MESSAGE
        assert update["messages"][0].role == "assistant"

    async def test_feedback_loops_back_to_requirements(self) -> None:
        update = await preview_iteration(
            _state(current_step="preview", feedback="make it blue", iteration_count=1),
            make_context(MockLLMClient()),
        )
        assert update["current_step"] == "requirements"
        assert update["iteration_count"] == 2
        assert update["feedback"] is None
        assert update["messages"][0].role == "user"
        assert update["messages"][0].text == "make it blue"

    async def test_no_decision_waits_for_approval(self) -> None:
        update = await preview_iteration(
            _state(current_step="preview"), make_context(MockLLMClient())
        )
        assert update["awaiting_approval"] is True
        assert "current_step" not in update
        assert update["messages"][0].text == READY_MESSAGE
