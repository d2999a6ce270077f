"""Anthropic Claude provider using anthropic SDK with native async streaming."""

import logging
from collections.abc import AsyncIterator, Sequence

import anthropic as anthropic_sdk

from config.config_loader import ProviderConfig
from council.models import Message
from council.providers.base import ProviderError, TextCompletionProvider, native_model_id
from council.stream_parser import format_usage_marker

logger = logging.getLogger(__name__)


class AnthropicProvider(TextCompletionProvider):
    """Anthropic Claude provider via anthropic SDK."""

    def __init__(self, config: ProviderConfig, api_key: str) -> None:
        self._config = config
        if not api_key.strip():
            raise ProviderError(config.name, f"Missing API key: {config.api_key_env}")
        self._client = anthropic_sdk.AsyncAnthropic(api_key=api_key)

    def name(self) -> str:
        return self._config.name

    async def stream_complete(
        self,
        model_id: str,
        messages: Sequence[Message],
        system_prompt: str | None = None,
    ) -> AsyncIterator[str]:
        # Anthropic takes system text separately from the turn list
        system_parts = [m.content for m in messages if m.role == "system"]
        if system_prompt:
            system_parts.insert(0, system_prompt)
        kwargs = {
            "model": native_model_id(model_id),
            "max_tokens": self._config.max_tokens,
            "messages": [
                {"role": m.role, "content": m.content} for m in messages if m.role != "system"
            ],
        }
        if system_parts:
            kwargs["system"] = "\n\n".join(system_parts)

        try:
            async with self._client.messages.stream(**kwargs) as stream:
                async for text in stream.text_stream:
                    if text:
                        yield text
                final = await stream.get_final_message()
        except anthropic_sdk.APIStatusError as exc:
            raise ProviderError(self._config.name, f"HTTP {exc.status_code}: {exc.message}", exc.status_code) from exc
        except anthropic_sdk.APIError as exc:
            raise ProviderError(self._config.name, f"API call failed: {exc}") from exc

        if final.usage:
            yield format_usage_marker(final.usage.input_tokens, final.usage.output_tokens)
