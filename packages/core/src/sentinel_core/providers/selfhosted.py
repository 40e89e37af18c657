"""Self-hosted provider for OpenAI-compatible chat completion servers.

Open WebUI, vLLM, Ollama and LM Studio all expose ``/chat/completions``; the
OpenAI SDK talks to them once ``base_url`` points at the server. Slow local
models get a longer per-request timeout than the hosted API.
"""

from __future__ import annotations

from sentinel_core.errors import ConfigError
from sentinel_core.prompts import PromptRegistry
from sentinel_core.providers.openai import OpenAIReviewer

SELF_HOSTED_TIMEOUT = 180.0


def normalize_endpoint(endpoint: str) -> str:
    """Return the SDK base URL for a configured endpoint.

    Accepts either the server root (``https://host/api``) or the full
    completion URL (``https://host/api/chat/completions``).
    """
    base = endpoint.strip().rstrip("/")
    if base.endswith("/chat/completions"):
        base = base[: -len("/chat/completions")]
    return base


class SelfHostedReviewer(OpenAIReviewer):
    PROVIDER = "selfhosted"

    def __init__(self, api_key: str, endpoint: str, model: str, prompts: PromptRegistry | None = None):
        if not endpoint:
            raise ConfigError("The selfhosted provider requires api_endpoint.")
        if not model:
            raise ConfigError("The selfhosted provider requires model.")
        super().__init__(
            # Servers without auth still need a non-empty key for the SDK.
            api_key=api_key or "unused",
            model=model,
            prompts=prompts,
            base_url=normalize_endpoint(endpoint),
            timeout=SELF_HOSTED_TIMEOUT,
        )

    def _completion_kwargs(self) -> dict:
        return {"max_tokens": self.MAX_TOKENS, "temperature": self.TEMPERATURE}
