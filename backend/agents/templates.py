"""Deterministic document and markup templates.

Used by the linear scaffold pipeline (PRD, Prisma schema, REST outline,
fallback preview) and by the offline LLM responder.
"""

import html
import json
import re
from typing import Any

from agents.prompts import is_requirements_request

_KNOWN_MODULES: tuple[tuple[str, str], ...] = (
    ("patient", "Patients"),
    ("appointment", "Appointments"),
    ("invoice", "Billing"),
    ("doctor", "Doctors"),
    ("task", "Tasks"),
    ("inventory", "Inventory"),
    ("project", "Projects"),
    ("ticket", "Support Tickets"),
    ("dashboard", "Reporting"),
)


def to_title_case(text: str) -> str:
    return " ".join(word[:1].upper() + word[1:] for word in re.split(r"\s+", text.strip()) if word)


def infer_modules(prompt: str) -> list[str]:
    """Infer app modules from keywords in the prompt.

    Always leads with "Dashboard"; falls back to a generic module set.
    """
    lower = prompt.lower()
    modules = [name for keyword, name in _KNOWN_MODULES if keyword in lower]
    if not modules:
        return ["Dashboard", "Records", "Settings"]
    if "Dashboard" not in modules:
        modules.insert(0, "Dashboard")
    return list(dict.fromkeys(modules))


def generate_spec(prompt: str, feedback: str | None = None) -> str:
    """Render the PRD markdown for a prompt."""
    title = to_title_case(re.split(r"[.!?\n]", prompt)[0] or "Generated App")
    modules = infer_modules(prompt)
    module_lines = "\n".join(f"- {module}" for module in modules)
    spec = f"""# {title}

## Overview
- Requested: {prompt}
- Modules detected: {", ".join(modules)}
- Goals: accelerate workflows, deliver responsive UX, enable analytics

## Modules
{module_lines}

## Personas
- Operator: manages day-to-day records
- Manager: reviews performance metrics and approvals
- Developer: maintains integrations and automations

## Non-Functional Requirements
- Authentication & RBAC, audit logs, responsive UI, instrumentation hooks
"""
    if feedback:
        spec += f"\n## Revision Notes\n- {feedback}\n"
    return spec


def _entity_name(module: str) -> str:
    singular = module[:-1] if module.endswith("s") else module
    return to_title_case(singular).replace(" ", "")


def generate_schema(prompt: str) -> str:
    """Render a Prisma schema with one model per inferred module (max four)."""
    models = [
        f"""model {_entity_name(module)} {{
  id        String   @id @default(cuid())
  name      String
  createdAt DateTime @default(now())
  updatedAt DateTime @updatedAt
}}"""
        for module in infer_modules(prompt)[:4]
    ]
    body = "\n\n".join(models)
    return f"""// Inferred from prompt
// {prompt}

datasource db {{
  provider = "sqlite"
  url      = env("DATABASE_URL")
}}

generator client {{
  provider = "prisma-client-js"
}}

{body}
"""


def generate_api_routes(prompt: str) -> str:
    """Render a REST route outline for each inferred module."""
    sections = []
    for module in infer_modules(prompt):
        slug = re.sub(r"\s+", "-", module.lower())
        sections.append(
            f"## /api/{slug}\n"
            f"- GET /api/{slug}\n"
            f"- POST /api/{slug}\n"
            f"- PATCH /api/{slug}/:id\n"
            f"- DELETE /api/{slug}/:id"
        )
    return "# REST API Routes\n\n" + "\n\n".join(sections) + "\n"


def sanitize_preview_html(markup: str) -> str:
    """Strip fences and document-level tags from a preview snippet."""
    cleaned = re.sub(r"```(\w+)?", "", markup)
    cleaned = re.sub(r"</?(body|html)>", "", cleaned)
    return cleaned.strip()


def build_fallback_component(prompt: str) -> str:
    """Static Tailwind preview used when the LLM is unavailable."""
    title = html.escape(to_title_case(prompt.split("\n")[0]) or "Generated App")
    brief = html.escape(prompt.strip())
    return f"""<div class="min-h-screen bg-slate-950 text-slate-50">
  <header class="border-b border-slate-800 px-6 py-5">
    <h1 class="text-2xl font-semibold">{title}</h1>
    <p class="mt-1 text-sm text-slate-400">Generated automatically from your brief.</p>
  </header>
  <main class="grid gap-6 p-6 sm:grid-cols-2">
    <section class="space-y-4 rounded-xl border border-slate-800 bg-slate-900/60 p-5">
      <h2 class="text-lg font-medium text-slate-100">Summary</h2>
      <p class="text-sm leading-6 text-slate-300">This starter layout reflects the key elements requested for "{brief}".</p>
    </section>
    <section class="rounded-xl border border-slate-800 bg-slate-900/40 p-5">
      <h2 class="text-lg font-medium text-slate-100">Next Steps</h2>
      <ol class="mt-4 space-y-3 text-sm text-slate-300">
        <li>Add interaction details (click targets, keyboard shortcuts, etc.).</li>
        <li>Request Tailwind refinements or alternative layouts from the agent.</li>
        <li>Approve once you are satisfied with the preview.</li>
      </ol>
    </section>
  </main>
</div>"""


def _infer_requirements(text: str) -> dict[str, Any]:
    lower = text.lower()
    theme = "dark" if "dark" in lower else "light"
    color = next(
        (c for c in ("blue", "green", "purple", "red", "orange") if c in lower),
        "blue",
    )
    features = [
        phrase.strip()
        for phrase in re.split(r",|\band\b|\bwith\b", text)
        if phrase.strip()
    ][1:] or [text.strip()]
    return {
        "features": features,
        "styling": {"theme": theme, "colorScheme": color, "layout": "modern"},
        "components": ["Container", "Content"],
        "clarificationNeeded": False,
        "clarificationQuestions": [],
    }


def offline_reply(messages: list[dict[str, Any]]) -> str:
    """Answer LLM requests without a provider (``use_mock_llm`` mode)."""
    user_text = next(
        (m.get("content", "") for m in reversed(messages) if m.get("role") == "user"),
        "",
    )
    if is_requirements_request(messages):
        return json.dumps(_infer_requirements(str(user_text)))
    return build_fallback_component(str(user_text))
