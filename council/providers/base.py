"""Abstract base for all streaming text-completion providers."""

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Sequence

from council.models import Message


class ProviderError(Exception):
    """Raised when a provider call fails."""

    def __init__(self, provider_name: str, message: str, status_code: int | None = None) -> None:
        self.provider_name = provider_name
        self.status_code = status_code
        super().__init__(f"[{provider_name}] {message}")


def native_model_id(model_id: str) -> str:
    """Strip a router-style vendor prefix: "anthropic/claude-x" -> "claude-x"."""
    return model_id.split("/", 1)[-1]


class TextCompletionProvider(ABC):
    """Abstract base for all streaming text-completion providers."""

    @abstractmethod
    def name(self) -> str:
        """Return the short provider name (e.g. 'openrouter', 'anthropic')."""
        ...

    @abstractmethod
    def stream_complete(
        self,
        model_id: str,
        messages: Sequence[Message],
        system_prompt: str | None = None,
    ) -> AsyncIterator[str]:
        """Stream a completion as incremental text chunks.

        Implementations are async generators. When the API reports token
        usage, the final chunk is ``format_usage_marker(...)``.

        Args:
            model_id: Provider model identifier.
            messages: Conversation so far, oldest first.
            system_prompt: Optional system instructions.

        Raises:
            ProviderError: On API failure, non-2xx status or invalid response.
        """
        ...
