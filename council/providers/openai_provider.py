"""OpenAI-compatible provider (OpenAI, OpenRouter) using openai SDK with native async."""

import logging
import math
from collections.abc import AsyncIterator, Sequence

from openai import APIStatusError, AsyncOpenAI

from config.config_loader import ProviderConfig
from council.messages import to_wire
from council.models import Message, ModelRate
from council.providers.base import ProviderError, TextCompletionProvider
from council.stream_parser import format_usage_marker

logger = logging.getLogger(__name__)

_TOKENS_PER_MILLION = 1_000_000


class OpenAIProvider(TextCompletionProvider):
    """Streams chat completions from any OpenAI-compatible endpoint.

    With ``base_url`` pointing at OpenRouter, model ids are router ids such as
    ``anthropic/claude-3.5-sonnet`` and are passed through unchanged.
    """

    def __init__(self, config: ProviderConfig, api_key: str) -> None:
        self._config = config
        if not api_key.strip():
            raise ProviderError(config.name, f"Missing API key: {config.api_key_env}")
        self._client = AsyncOpenAI(api_key=api_key, base_url=config.base_url)

    def name(self) -> str:
        return self._config.name

    async def stream_complete(
        self,
        model_id: str,
        messages: Sequence[Message],
        system_prompt: str | None = None,
    ) -> AsyncIterator[str]:
        wire = to_wire(messages)
        if system_prompt:
            wire.insert(0, {"role": "system", "content": system_prompt})

        try:
            stream = await self._client.chat.completions.create(
                model=model_id,
                messages=wire,
                max_tokens=self._config.max_tokens,
                stream=True,
                stream_options={"include_usage": True},
            )
        except APIStatusError as exc:
            raise ProviderError(self._config.name, f"HTTP {exc.status_code}: {exc.message}", exc.status_code) from exc
        except Exception as exc:
            raise ProviderError(self._config.name, f"API call failed: {exc}") from exc

        usage = None
        try:
            async for chunk in stream:
                if chunk.usage:
                    usage = chunk.usage
                if chunk.choices and chunk.choices[0].delta.content:
                    yield chunk.choices[0].delta.content
        except Exception as exc:
            raise ProviderError(self._config.name, f"Stream interrupted: {exc}") from exc
        finally:
            await stream.close()

        if usage is not None:
            logger.debug(
                "%s usage: %d prompt, %d completion tokens",
                model_id, usage.prompt_tokens, usage.completion_tokens,
            )
            yield format_usage_marker(usage.prompt_tokens, usage.completion_tokens)

    async def fetch_pricing(self) -> dict[str, ModelRate]:
        """Fetch per-model rates from the models endpoint (OpenRouter exposes pricing).

        Prices come back per token as strings and are converted to USD per 1M.
        """
        rates: dict[str, ModelRate] = {}
        async for model in self._client.models.list():
            pricing = getattr(model, "pricing", None)
            if not isinstance(pricing, dict):
                continue
            try:
                input_rate = float(pricing["prompt"]) * _TOKENS_PER_MILLION
                output_rate = float(pricing["completion"]) * _TOKENS_PER_MILLION
            except (KeyError, TypeError, ValueError):
                continue
            if math.isfinite(input_rate) and math.isfinite(output_rate):
                rates[model.id] = ModelRate(input=input_rate, output=output_rate)
        logger.info("Fetched pricing for %d models from %s", len(rates), self._config.name)
        return rates
