"""Model health checks — ping each council model before starting a run."""

import asyncio
import logging
from collections.abc import Sequence
from contextlib import aclosing

from council.models import Message
from council.providers.base import TextCompletionProvider

logger = logging.getLogger(__name__)

_PING_MESSAGES = [Message(role="user", content="Reply with the word OK only.")]
_TIMEOUT_SEC = 15.0


async def _first_chunk(provider: TextCompletionProvider, model_id: str) -> str:
    stream = provider.stream_complete(model_id, _PING_MESSAGES)
    async with aclosing(stream):
        async for chunk in stream:
            if chunk:
                return chunk
    return ""


async def _check_one(provider: TextCompletionProvider, model_id: str) -> tuple[str, bool, str]:
    """Ping a single model. Returns (model_id, ok, error_message)."""
    try:
        await asyncio.wait_for(_first_chunk(provider, model_id), timeout=_TIMEOUT_SEC)
        return model_id, True, ""
    except TimeoutError:
        return model_id, False, f"No response within {_TIMEOUT_SEC}s"
    except Exception as exc:
        return model_id, False, str(exc)


async def run_health_checks(
    provider: TextCompletionProvider,
    model_ids: Sequence[str],
) -> dict[str, tuple[bool, str]]:
    """Ping all models in parallel.

    Returns:
        Dict mapping model id -> (ok, error_message).
        error_message is "" when ok is True.
    """
    unique = list(dict.fromkeys(model_ids))
    results = await asyncio.gather(*(_check_one(provider, m) for m in unique))
    for model_id, ok, err in results:
        if not ok:
            logger.debug("Health check failed for %s: %s", model_id, err)
    return {model_id: (ok, err) for model_id, ok, err in results}
