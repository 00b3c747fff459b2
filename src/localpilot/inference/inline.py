"""Prompt builders and response cleanup for editor-inline generation.

- Autocomplete: fill-in-the-middle prompt around a ``<CURSOR>`` marker.
- Inline prompt: a code-only instruction plus a line-numbered window of the
  surrounding file (50 lines before, 20 after).
"""

from __future__ import annotations

import re

CURSOR_MARKER = "<CURSOR>"

FIM_BEGIN = "<｜fim_begin｜>"
FIM_HOLE = "<｜fim_hole｜>"
FIM_END = "<｜fim_end｜>"
FIM_STOP: list[str] = ["\n", "}", ";", FIM_END]

LINES_BEFORE = 50
LINES_AFTER = 20

_INLINE_SYSTEM_TEMPLATE = """\
You are an expert coding assistant.
User Request: "{prompt}"
Task: Write valid C++ code to fulfill the User Request.
Output ONLY the requested code. Do NOT output explanations or markdown backticks."""

_INLINE_USER_TEMPLATE = """\
Request: "{prompt}"
Context:
{context}

Write the code for "{prompt}". Only return the code."""

_CODE_BLOCK_RE = re.compile(r"```(?:[a-zA-Z]*)\n([\s\S]*?)```")
_CHATTY_LEAD_RE = re.compile(r"^(sure|here|okay|certainly|i can|below is)", re.IGNORECASE)


def fim_prompt(text_with_cursor: str) -> str:
    """Build a FIM prompt; text after the first ``<CURSOR>`` is the suffix."""
    prefix, _, suffix = text_with_cursor.partition(CURSOR_MARKER)
    return f"{FIM_BEGIN}{prefix}{FIM_HOLE}{suffix}{FIM_END}"


def numbered_window(code: str, line_number: int) -> str:
    """Lines around *line_number*, each prefixed with its 1-based number."""
    lines = code.split("\n")
    start = max(0, line_number - LINES_BEFORE)
    end = min(len(lines), line_number + LINES_AFTER)
    return "\n".join(f"{start + i + 1}: {line}" for i, line in enumerate(lines[start:end]))


def inline_messages(code: str, prompt: str, line_number: int) -> tuple[str, str]:
    """Return ``(system_instruction, user_message)`` for an inline request."""
    system = _INLINE_SYSTEM_TEMPLATE.format(prompt=prompt)
    user = _INLINE_USER_TEMPLATE.format(
        prompt=prompt, context=numbered_window(code, line_number)
    )
    return system, user


def clean_code_response(response: str) -> str:
    """Extract the first fenced code block, else drop a chatty first line."""
    text = response.strip()
    match = _CODE_BLOCK_RE.search(text)
    if match:
        return match.group(1).strip()
    lines = text.split("\n")
    if lines and _CHATTY_LEAD_RE.match(lines[0]):
        return "\n".join(lines[1:]).strip()
    return text
