"""Gemini provider using google-genai SDK with native async streaming."""

import logging
from collections.abc import AsyncIterator, Sequence

from google import genai
from google.genai import types as genai_types

from config.config_loader import ProviderConfig
from council.models import Message
from council.providers.base import ProviderError, TextCompletionProvider, native_model_id
from council.stream_parser import format_usage_marker

logger = logging.getLogger(__name__)

_ROLE_MAP = {"user": "user", "assistant": "model"}


class GeminiProvider(TextCompletionProvider):
    """Google Gemini provider via google-genai SDK."""

    def __init__(self, config: ProviderConfig, api_key: str) -> None:
        self._config = config
        if not api_key.strip():
            raise ProviderError(config.name, f"Missing API key: {config.api_key_env}")
        self._client = genai.Client(api_key=api_key)

    def name(self) -> str:
        return self._config.name

    async def stream_complete(
        self,
        model_id: str,
        messages: Sequence[Message],
        system_prompt: str | None = None,
    ) -> AsyncIterator[str]:
        system_parts = [m.content for m in messages if m.role == "system"]
        if system_prompt:
            system_parts.insert(0, system_prompt)
        contents = [
            genai_types.Content(role=_ROLE_MAP[m.role], parts=[genai_types.Part(text=m.content)])
            for m in messages
            if m.role in _ROLE_MAP
        ]
        config = genai_types.GenerateContentConfig(
            max_output_tokens=self._config.max_tokens,
            system_instruction="\n\n".join(system_parts) if system_parts else None,
        )

        usage = None
        try:
            stream = await self._client.aio.models.generate_content_stream(
                model=native_model_id(model_id),
                contents=contents,
                config=config,
            )
            async for chunk in stream:
                if chunk.usage_metadata:
                    usage = chunk.usage_metadata
                if chunk.text:
                    yield chunk.text
        except Exception as exc:
            code = getattr(exc, "code", None)
            raise ProviderError(
                self._config.name,
                f"API call failed: {exc}",
                code if isinstance(code, int) else None,
            ) from exc

        if usage is not None and usage.prompt_token_count is not None:
            yield format_usage_marker(usage.prompt_token_count, usage.candidates_token_count or 0)
