"""Prompt templates for the LLM-backed generation steps.

- REQUIREMENTS_SYSTEM_PROMPT: schema-specifying prompt for requirements parsing
- CODE_GENERATOR_SYSTEM_PROMPT: self-contained HTML/Tailwind component generation
- PREVIEW_SYSTEM_PROMPT: single-snippet preview used by the linear pipeline
"""

import json
from typing import Any

from models.generation import DesignSpec, Requirements

REQUIREMENTS_SYSTEM_PROMPT = """\
You are a requirements analyst for a UI component generator.
Analyze the user's request and extract structured requirements.

Respond in JSON format only:
{
  "features": ["feature1", "feature2"],
  "styling": {
    "theme": "light" | "dark" | "auto",
    "colorScheme": "blue" | "green" | "purple" | "custom",
    "layout": "modern" | "minimal" | "classic"
  },
  "components": ["Button", "Input", "Card"],
  "clarificationNeeded": true/false,
  "clarificationQuestions": ["question1?", "question2?"]
}"""

CODE_GENERATOR_SYSTEM_PROMPT = """\
You are an expert front-end developer creating beautiful, production-ready UI \
components with HTML, Tailwind CSS and vanilla JavaScript.

USER REQUEST: "{raw_input}"

KEY REQUIREMENTS:
{features}

DESIGN CONSTRAINTS:
- Theme: {theme}
- Color Scheme: {color_scheme}
- Layout Style: {layout}

DESIGN SPEC (JSON):
{design_spec}

INSTRUCTIONS:
1. Create a complete, self-contained HTML component with inline scripts
2. Use Tailwind CSS utility classes for all styling
3. Implement full interactivity with vanilla JavaScript in <script> tags
4. Use clean, semantic HTML5 markup following the component hierarchy above
5. Responsive (mobile-first) and accessible (ARIA labels, keyboard navigation)
6. Wire every interaction from the design spec to a working event handler
7. Return ONLY the HTML code - no markdown code blocks, no explanations

Generate the complete HTML component now:"""

PREVIEW_SYSTEM_PROMPT = """\
You are a senior front-end engineer. Produce a single HTML snippet styled with \
Tailwind CSS utility classes, no <html> or <head> tag, suitable for embedding \
in an iframe."""


def get_requirements_user_prompt(
    user_text: str,
    previous: Requirements | None = None,
) -> str:
    """Build the requirements user prompt.

    When a previous requirements record exists (a feedback loop), it is
    included so the model refines rather than starts over.
    """
    if previous is None:
        return user_text
    return (
        "Current requirements (JSON):\n"
        f"{json.dumps(previous.to_wire(), indent=2)}\n\n"
        "Revise them according to this request:\n"
        f"{user_text}"
    )


def get_code_generator_prompt(requirements: Requirements, design_spec: DesignSpec) -> str:
    """Fill the code generator system prompt from requirements and design."""
    features = "\n".join(f"- {feature}" for feature in requirements.features) or "- (none listed)"
    return CODE_GENERATOR_SYSTEM_PROMPT.format(
        raw_input=requirements.raw_input,
        features=features,
        theme=requirements.styling.theme,
        color_scheme=requirements.styling.color_scheme,
        layout=requirements.styling.layout,
        design_spec=json.dumps(design_spec.to_wire(), indent=2),
    )


def get_preview_user_prompt(prompt: str, feedback: str | None = None) -> str:
    """Build the user prompt for the linear pipeline's UI preview."""
    text = (
        "Create a polished UI preview for the following product idea. Highlight key "
        "views, user actions, and any relevant states. Use concise copy.\n\n"
        f"Brief:\n{prompt}\n"
    )
    if feedback:
        text += f"\nReviewer notes:\n{feedback}\n"
    return text + "\nReturn only HTML markup."


def is_requirements_request(messages: list[dict[str, Any]]) -> bool:
    """True when a message list was built from REQUIREMENTS_SYSTEM_PROMPT."""
    return any(
        m.get("role") == "system" and m.get("content") == REQUIREMENTS_SYSTEM_PROMPT
        for m in messages
    )
