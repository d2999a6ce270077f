"""Map the ``sdk`` field of a provider config to its implementation."""

import logging

from config.config_loader import ProviderConfig
from council.credentials import ConfigurationError
from council.providers.anthropic import AnthropicProvider
from council.providers.base import TextCompletionProvider
from council.providers.gemini import GeminiProvider
from council.providers.openai_provider import OpenAIProvider

logger = logging.getLogger(__name__)

PROVIDER_CLASSES: dict[str, type[TextCompletionProvider]] = {
    "openai": OpenAIProvider,
    "anthropic": AnthropicProvider,
    "gemini": GeminiProvider,
}


def build_provider(config: ProviderConfig, api_key: str) -> TextCompletionProvider:
    """Instantiate the provider named by ``config.sdk``.

    Raises:
        ConfigurationError: If the sdk name is unknown.
    """
    if config.sdk not in PROVIDER_CLASSES:
        raise ConfigurationError(f"Unknown sdk '{config.sdk}' for provider '{config.name}'")
    logger.debug("Building provider %s (sdk=%s)", config.name, config.sdk)
    return PROVIDER_CLASSES[config.sdk](config, api_key)
