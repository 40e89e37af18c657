"""Base reviewer implementing the Template Method pattern.

All providers share the same review algorithm:
    review() → _build_messages()
             → _call_with_retry() → _call_api()   ← only this differs per provider
             → parse_findings()

Subclasses implement two things only:
  - __init__: validate and store the SDK client
  - _call_api: make one raw API call and return a normalized ProviderReply

Provider-specific response shapes never leave _call_api. Everything after it
works on ProviderReply and Finding, so the review core does not branch on
which SDK produced the text.
"""

from __future__ import annotations

import json
import logging
import re
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from sentinel_core.errors import ProviderError
from sentinel_core.prompts import PromptRegistry, default_registry, format_changed_lines
from sentinel_core.state.models import SEVERITIES
from sentinel_core.utils.tokens import estimate_cost, estimate_messages, estimate_tokens

if TYPE_CHECKING:
    from sentinel_core.analysis.incremental import FileAnalysis

logger = logging.getLogger(__name__)

_MAX_RETRIES = 3
_MAX_TOKENS = 4096
_EXCERPT = 200

# Statuses that will not succeed on retry.
_FATAL_STATUSES = {400, 401, 403, 404}

_STATUS_REASONS = {
    400: "bad request",
    401: "invalid API key",
    403: "access denied",
    404: "model or endpoint not found",
    408: "request timed out",
    429: "rate limited",
}

_FENCE_RE = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL)


@dataclass
class ProviderReply:
    content: str
    prompt_tokens: int = 0
    completion_tokens: int = 0
    model: str = ""


@dataclass
class Finding:
    path: str
    line: int
    severity: str
    message: str
    suggestion: str | None = None


@dataclass
class ReviewResult:
    findings: list[Finding] = field(default_factory=list)
    prompt_tokens: int = 0
    completion_tokens: int = 0
    estimated_cost: float = 0.0
    dropped: int = 0


def provider_error_from(exc: Exception, provider: str) -> ProviderError:
    """Map an SDK exception to a ProviderError without leaking request details."""
    status = getattr(exc, "status_code", None)
    if status is None:
        status = getattr(getattr(exc, "response", None), "status_code", None)
    if isinstance(status, int):
        reason = _STATUS_REASONS.get(status) or ("provider unavailable" if status >= 500 else "request failed")
        return ProviderError(f"{provider}: {reason} (HTTP {status})", status=status)
    return ProviderError(f"{provider}: {type(exc).__name__}: {str(exc)[:_EXCERPT]}")


# ---------------------------------------------------------------------------
# Response extraction
# ---------------------------------------------------------------------------


_CLOSERS = {"{": "}", "[": "]"}


def _first_balanced(text: str, opener: str) -> tuple[int, str] | None:
    """Return ``(start, text)`` of the first balanced, parseable ``{...}`` or ``[...]``."""
    closer = _CLOSERS[opener]
    start = text.find(opener)
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        for i in range(start, len(text)):
            ch = text[i]
            if in_string:
                if escaped:
                    escaped = False
                elif ch == "\\":
                    escaped = True
                elif ch == '"':
                    in_string = False
            elif ch == '"':
                in_string = True
            elif ch == opener:
                depth += 1
            elif ch == closer:
                depth -= 1
                if depth == 0:
                    candidate = text[start : i + 1]
                    try:
                        json.loads(candidate)
                        return start, candidate
                    except json.JSONDecodeError:
                        break
        start = text.find(opener, start + 1)
    return None


def extract_json(text: str):
    """Return the JSON value embedded in a model response, or None.

    Tries, in order: the whole text, a fenced code block, and the first
    balanced ``{...}`` object or ``[...]`` array, whichever starts earlier.
    """
    if not text:
        return None
    stripped = text.strip()
    try:
        return json.loads(stripped)
    except json.JSONDecodeError:
        pass

    for match in _FENCE_RE.finditer(stripped):
        try:
            return json.loads(match.group(1).strip())
        except json.JSONDecodeError:
            continue

    found = [c for c in (_first_balanced(stripped, "{"), _first_balanced(stripped, "[")) if c is not None]
    if found:
        return json.loads(min(found)[1])
    return None


def _coerce_line(value) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if value > 0 else None
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip()) or None
    return None


def parse_findings(raw: str, default_path: str = "") -> tuple[list[Finding], int]:
    """Parse a model response into findings.

    Returns ``(findings, dropped)`` where ``dropped`` counts items that failed
    validation. Raises ProviderError when the response holds no usable JSON.
    """
    data = extract_json(raw)
    if isinstance(data, dict):
        data = data.get("findings")
    if not isinstance(data, list):
        raise ProviderError(f"response is not a findings JSON document: {raw[:_EXCERPT]!r}")

    findings: list[Finding] = []
    dropped = 0
    for item in data:
        if not isinstance(item, dict):
            dropped += 1
            continue
        path = item.get("path") or default_path
        line = _coerce_line(item.get("line"))
        severity = str(item.get("severity", "")).strip().lower()
        message = item.get("message")
        suggestion = item.get("suggestion")
        if (
            not isinstance(path, str)
            or line is None
            or severity not in SEVERITIES
            or not isinstance(message, str)
            or not message.strip()
        ):
            dropped += 1
            continue
        findings.append(
            Finding(
                path=path[2:] if path.startswith("./") else path,
                line=line,
                severity=severity,
                message=message.strip(),
                suggestion=suggestion if isinstance(suggestion, str) and suggestion.strip() else None,
            )
        )

    if dropped:
        logger.debug("Dropped %d malformed finding(s) from provider response", dropped)
    return findings, dropped


class BaseReviewer(ABC):
    MAX_RETRIES: int = _MAX_RETRIES
    MAX_TOKENS: int = _MAX_TOKENS
    MODEL: str = ""
    PROVIDER: str = "provider"

    def __init__(self, model: str | None = None, prompts: PromptRegistry | None = None):
        self.model = model or self.MODEL
        self.prompts = prompts or default_registry()

    # ------------------------------------------------------------------ #
    # Public interface                                                     #
    # ------------------------------------------------------------------ #

    def review(
        self,
        analysis: FileAnalysis,
        guidelines: str,
        title: str = "",
        description: str = "",
    ) -> ReviewResult:
        """Review the changed lines of one file (or chunk) and return findings.

        Raises ProviderError once retries are exhausted or the response is
        unusable.
        """
        messages = self._build_messages(analysis, guidelines, title, description)
        reply = self._call_with_retry(messages)
        findings, dropped = parse_findings(reply.content, default_path=analysis.filename)

        kept = [f for f in findings if f.path == analysis.filename]
        if len(kept) != len(findings):
            logger.debug("%s: dropped %d finding(s) for other files", analysis.filename, len(findings) - len(kept))

        prompt_tokens = reply.prompt_tokens or estimate_messages(messages)
        completion_tokens = reply.completion_tokens or estimate_tokens(reply.content)
        return ReviewResult(
            findings=kept,
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            estimated_cost=estimate_cost(reply.model or self.model, prompt_tokens, completion_tokens),
            dropped=dropped + len(findings) - len(kept),
        )

    # ------------------------------------------------------------------ #
    # Abstract: implement in each provider                                 #
    # ------------------------------------------------------------------ #

    @abstractmethod
    def _call_api(self, messages: list[dict]) -> ProviderReply:
        """Make a single API call and return the normalized reply.

        Should raise ProviderError on failure; _call_with_retry handles
        retries and logging.
        """

    # ------------------------------------------------------------------ #
    # Shared implementations                                               #
    # ------------------------------------------------------------------ #

    def _call_with_retry(self, messages: list[dict]) -> ProviderReply:
        """Retry _call_api up to MAX_RETRIES times with exponential backoff."""
        for attempt in range(self.MAX_RETRIES):
            try:
                return self._call_api(messages)
            except ProviderError as e:
                if e.status in _FATAL_STATUSES or attempt == self.MAX_RETRIES - 1:
                    logger.error(
                        "%s API failed after %d attempt(s): %s",
                        self.__class__.__name__,
                        attempt + 1,
                        e,
                    )
                    raise
                delay = 2**attempt
                logger.warning(
                    "%s API error (attempt %d/%d): %s. Retrying in %ds...",
                    self.__class__.__name__,
                    attempt + 1,
                    self.MAX_RETRIES,
                    e,
                    delay,
                )
                time.sleep(delay)
        raise ProviderError(f"{self.PROVIDER}: no attempts made")

    def _build_messages(self, analysis: FileAnalysis, guidelines: str, title: str, description: str) -> list[dict]:
        system = self.prompts.render("system", guidelines=guidelines)
        user = self.prompts.render(
            "review",
            title=title,
            description=description,
            filename=analysis.filename,
            changed_lines=format_changed_lines(analysis.changed_lines),
            patch=analysis.patch,
        )
        return [
            {"role": "system", "content": system},
            {"role": "user", "content": user},
        ]
