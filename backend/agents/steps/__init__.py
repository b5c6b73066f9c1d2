"""Generation steps.

Each step is ``async (state, context) -> partial update``. Steps read the
full state but return only the fields they computed.
"""

from agents.steps.code_generator import generate_code
from agents.steps.component_designer import build_design_spec, design_component
from agents.steps.preview_iteration import preview_iteration
from agents.steps.requirements_parser import parse_requirements
from agents.steps.scaffold import SCAFFOLD_STEPS

__all__ = [
    "parse_requirements",
    "design_component",
    "build_design_spec",
    "generate_code",
    "preview_iteration",
    "SCAFFOLD_STEPS",
]
