"""Provider API key lookup. A missing key stops a run before any request."""

import logging
import os
from abc import ABC, abstractmethod
from collections.abc import Mapping

from config.config_loader import ProviderConfig

logger = logging.getLogger(__name__)


class ConfigurationError(Exception):
    """Raised when the run cannot start because configuration is invalid."""


class MissingCredentialError(ConfigurationError):
    """Raised when no API key can be resolved for a provider."""

    def __init__(self, provider: str, hint: str = "") -> None:
        self.provider = provider
        message = f"API key for provider '{provider}' is not configured"
        super().__init__(f"{message}. {hint}" if hint else message)


class CredentialStore(ABC):
    @abstractmethod
    def get_provider_key(self, provider: str) -> str:
        """Return the decrypted API key for ``provider``.

        Raises:
            MissingCredentialError: If no usable key exists.
        """
        ...


class EnvCredentialStore(CredentialStore):
    """Reads keys from the environment variables named in settings.yaml."""

    def __init__(self, providers: Mapping[str, ProviderConfig]) -> None:
        self._providers = providers

    def get_provider_key(self, provider: str) -> str:
        cfg = self._providers.get(provider)
        if cfg is None:
            raise MissingCredentialError(provider, "Provider is not defined in settings.yaml.")
        api_key = os.environ.get(cfg.api_key_env, "").strip()
        if not api_key:
            raise MissingCredentialError(provider, f"Set {cfg.api_key_env} in .env.")
        return api_key


class StaticCredentialStore(CredentialStore):
    """In-memory keys, for embedding and tests."""

    def __init__(self, keys: Mapping[str, str]) -> None:
        self._keys = dict(keys)

    def get_provider_key(self, provider: str) -> str:
        api_key = self._keys.get(provider, "").strip()
        if not api_key:
            raise MissingCredentialError(provider)
        return api_key
