"""Component designer step: a deterministic mapping, no LLM call."""

import re
from collections.abc import Mapping
from typing import Any

from agents.engine import StepContext
from agents.errors import MissingPrecursorError
from agents.state import SupervisorStep
from models.generation import DesignLayout, DesignSpec, DesignStyling, Interaction, Requirements

DEFAULT_HIERARCHY = ["Container", "Content"]

_LAYOUT_TYPES = {"modern": "flex", "minimal": "grid"}


def build_design_spec(requirements: Requirements) -> DesignSpec:
    styling = requirements.styling
    dark = styling.theme == "dark"

    classes = {
        "Container": [
            "min-h-screen",
            "bg-gray-900" if dark else "bg-gray-50",
            "flex",
            "items-center",
            "justify-center",
            "p-6",
        ],
        "Content": [
            "bg-gray-800" if dark else "bg-white",
            "rounded-2xl",
            "shadow-xl",
            "p-8",
            "max-w-md",
            "w-full",
        ],
    }

    # One interaction per feature.
    interactions = [
        Interaction(
            trigger="click",
            action="handle" + re.sub(r"\s+", "", feature),
            target=feature,
        )
        for feature in requirements.features
    ]

    return DesignSpec(
        component_hierarchy=list(requirements.components) or list(DEFAULT_HIERARCHY),
        layout=DesignLayout(
            type=_LAYOUT_TYPES.get(styling.layout, "stack"),
            direction="column",
            spacing="md",
            padding="lg",
        ),
        styling=DesignStyling(
            framework="tailwind",
            theme=styling.theme,
            color_scheme=styling.color_scheme,
            classes=classes,
        ),
        interactions=interactions,
    )


async def design_component(state: Mapping[str, Any], context: StepContext) -> dict[str, Any]:
    requirements = state.get("requirements")
    if requirements is None:
        raise MissingPrecursorError("Component designer requires parsed requirements")
    return {
        "design_spec": build_design_spec(requirements),
        "current_step": SupervisorStep.CODE.value,
    }
