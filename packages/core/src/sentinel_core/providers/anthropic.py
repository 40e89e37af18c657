from __future__ import annotations

from sentinel_core.prompts import PromptRegistry
from sentinel_core.providers.base import BaseReviewer, ProviderReply, provider_error_from


class AnthropicReviewer(BaseReviewer):
    MODEL = "claude-sonnet-4-20250514"
    PROVIDER = "anthropic"
    TEMPERATURE = 0.3

    def __init__(self, api_key: str, model: str | None = None, prompts: PromptRegistry | None = None):
        try:
            from anthropic import Anthropic
        except ImportError:
            raise ImportError(
                "The 'anthropic' package is required for this provider. "
                "Install it with: pip install 'code-sentinel[anthropic]'"
            )
        super().__init__(model=model, prompts=prompts)
        self.client = Anthropic(api_key=api_key)

    def _call_api(self, messages: list[dict]) -> ProviderReply:
        # Imported inside the method because the anthropic package is optional;
        # __init__ already validated it is installed before we reach here.
        from anthropic.types import TextBlock

        # The Messages API takes the system prompt separately.
        system = "\n\n".join(m["content"] for m in messages if m["role"] == "system")
        chat = [m for m in messages if m["role"] != "system"]
        try:
            response = self.client.messages.create(
                model=self.model,
                system=system,
                messages=chat,
                temperature=self.TEMPERATURE,
                max_tokens=self.MAX_TOKENS,
            )
        except Exception as e:
            raise provider_error_from(e, self.PROVIDER) from e

        text_blocks = [block.text for block in response.content if isinstance(block, TextBlock)]
        usage = response.usage
        return ProviderReply(
            content="".join(text_blocks).strip(),
            prompt_tokens=getattr(usage, "input_tokens", 0) or 0,
            completion_tokens=getattr(usage, "output_tokens", 0) or 0,
            model=getattr(response, "model", "") or self.model,
        )
