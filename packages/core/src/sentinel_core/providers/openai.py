from __future__ import annotations

try:
    from openai import OpenAI as _OpenAI
except ImportError:
    _OpenAI = None  # type: ignore[assignment,misc]

from sentinel_core.errors import ProviderError
from sentinel_core.prompts import PromptRegistry
from sentinel_core.providers.base import BaseReviewer, ProviderReply, provider_error_from

# Reasoning models reject max_tokens and a non-default temperature.
_COMPLETION_TOKENS_PREFIXES = ("gpt-5", "o1", "o3", "o4")


class OpenAIReviewer(BaseReviewer):
    MODEL = "gpt-4o"
    PROVIDER = "openai"
    # Low temperature keeps the JSON structure stable.
    TEMPERATURE = 0.2

    def __init__(
        self,
        api_key: str,
        model: str | None = None,
        prompts: PromptRegistry | None = None,
        base_url: str | None = None,
        timeout: float | None = None,
    ):
        if _OpenAI is None:
            raise ImportError(
                "The 'openai' package is required for this provider. "
                "Install it with: pip install 'code-sentinel[openai]'"
            )
        super().__init__(model=model, prompts=prompts)
        kwargs = {"api_key": api_key}
        if base_url:
            kwargs["base_url"] = base_url
        if timeout:
            kwargs["timeout"] = timeout
        self.client = _OpenAI(**kwargs)

    def _completion_kwargs(self) -> dict:
        if self.model.startswith(_COMPLETION_TOKENS_PREFIXES):
            return {"max_completion_tokens": self.MAX_TOKENS}
        return {"max_tokens": self.MAX_TOKENS, "temperature": self.TEMPERATURE}

    def _call_api(self, messages: list[dict]) -> ProviderReply:
        try:
            response = self.client.chat.completions.create(
                model=self.model,
                messages=messages,
                **self._completion_kwargs(),
            )
        except Exception as e:
            raise provider_error_from(e, self.PROVIDER) from e

        if not response.choices:
            raise ProviderError(f"{self.PROVIDER}: response contained no choices")
        usage = response.usage
        return ProviderReply(
            content=response.choices[0].message.content or "",
            prompt_tokens=getattr(usage, "prompt_tokens", 0) or 0,
            completion_tokens=getattr(usage, "completion_tokens", 0) or 0,
            model=response.model or self.model,
        )
