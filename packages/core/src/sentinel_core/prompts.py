"""Prompt templates.

Templates are ``string.Template`` strings held by a PromptRegistry instance.
A registry is built per review pass and handed to the provider, so tests can
swap templates without touching any module-level state.
"""

from __future__ import annotations

import logging
from pathlib import Path
from string import Template

from sentinel_core.errors import ConfigError

logger = logging.getLogger(__name__)

SYSTEM_TEMPLATE = """You are a strict and precise senior code reviewer.
Review only the changed lines you are given and report concrete problems:
bugs, security issues, missing error handling, performance traps and clear
violations of the guidelines below.

$guidelines

Rules:
- Only report findings on the numbered changed lines.
- Do not comment on code that already follows best practices.
- Avoid assumptions when context is unclear. Be concise and actionable.
- Respond with JSON only."""

REVIEW_TEMPLATE = """Pull request: $title

$description

You are reviewing `$filename`.

## Changed lines (new-file line numbers)
$changed_lines

## Diff
$patch

### Output Format:
Respond with **only** a JSON object:

{
  "findings": [
    {
      "path": "$filename",
      "line": <line number from the changed lines above (integer)>,
      "severity": "<error|warning|info>",
      "message": "<concise, actionable comment in GitHub-flavored markdown>",
      "suggestion": "<optional replacement code for the line, or omit>"
    }
  ]
}

Severity guide:
- error: security vulnerability, data loss risk, crash, logic bug
- warning: missing error handling, significant performance issue, code smell
- info: naming, readability, minor style

If there are no issues, return: {"findings": []}"""


class PromptRegistry:
    def __init__(self):
        self._templates: dict[str, Template] = {}

    def register(self, name: str, text: str) -> None:
        self._templates[name] = Template(text)

    def load_file(self, name: str, path: str) -> None:
        p = Path(path)
        if not p.is_file():
            raise ConfigError(f"Prompt template not found: {path}")
        self.register(name, p.read_text(encoding="utf-8"))
        logger.debug("Loaded prompt template %r from %s", name, path)

    def has(self, name: str) -> bool:
        return name in self._templates

    def render(self, name: str, **context) -> str:
        """Render a template; unknown placeholders are left in place."""
        try:
            template = self._templates[name]
        except KeyError:
            raise ConfigError(f"Unknown prompt template: {name!r}") from None
        return template.safe_substitute({k: "" if v is None else str(v) for k, v in context.items()})


def default_registry(review_template_path: str | None = None) -> PromptRegistry:
    registry = PromptRegistry()
    registry.register("system", SYSTEM_TEMPLATE)
    registry.register("review", REVIEW_TEMPLATE)
    if review_template_path:
        registry.load_file("review", review_template_path)
    return registry


def format_changed_lines(changed_lines) -> str:
    """Render changed lines as ``<line>: <content>`` rows for the prompt."""
    return "\n".join(f"{line.line_number}: {line.content}" for line in changed_lines)
