"""Prompt templates for the structuring step."""

from __future__ import annotations

import json
from typing import Any

SYSTEM_PROMPT = (
    "You convert web page text into structured data. "
    "Respond with a single JSON object that conforms to the given JSON Schema. "
    "No markdown, no code fence, no explanation. "
    "Use null for values the page does not contain; never invent facts."
)


def build_user_message(content: str, prompt: str, schema: dict[str, Any]) -> str:
    return (
        f"Instructions:\n{prompt.strip()}\n\n"
        f"JSON Schema:\n{json.dumps(schema, indent=2, ensure_ascii=False)}\n\n"
        f"Page content:\n\"\"\"\n{content}\n\"\"\""
    )


def build_correction_message(
    content: str,
    prompt: str,
    schema: dict[str, Any],
    previous_output: str,
    errors: list[str],
) -> str:
    """Re-prompt that shows the model its previous answer and what was wrong with it."""
    problems = "\n".join(f"- {e}" for e in errors[:20])
    return (
        build_user_message(content, prompt, schema)
        + "\n\nYour previous answer was:\n"
        + previous_output[:4000]
        + "\n\nIt is invalid for these reasons:\n"
        + problems
        + "\n\nReturn a corrected JSON object only."
    )
