"""Token and cost accounting for council members and judge calls."""

import logging
import math
import time
from collections.abc import Awaitable, Callable, Iterable, Mapping

from council.models import CouncilMemberState, Message, ModelRate, UsageRecord

logger = logging.getLogger(__name__)

DEFAULT_RATE = ModelRate(input=1.0, output=1.0)

_TOKENS_PER_MILLION = 1_000_000


def estimate_tokens(text: str) -> int:
    """Rough token count: one token per four characters."""
    if not text:
        return 0
    return math.ceil(len(text) / 4)


def calculate_cost(
    model_id: str,
    prompt_tokens: int,
    completion_tokens: int,
    rates: Mapping[str, ModelRate] | None = None,
    fallback: ModelRate = DEFAULT_RATE,
) -> float:
    """USD cost for one call, using the fallback rate for unknown models."""
    rate = (rates or {}).get(model_id, fallback)
    return (
        (prompt_tokens / _TOKENS_PER_MILLION) * rate.input
        + (completion_tokens / _TOKENS_PER_MILLION) * rate.output
    )


def prompt_text(messages: Iterable[Message], system_prompt: str | None = None) -> str:
    """Concatenate everything sent to the model, for token estimation."""
    parts = [system_prompt] if system_prompt else []
    parts.extend(m.content for m in messages)
    return "\n".join(parts)


def usage_record(
    model_id: str,
    reported_prompt_tokens: int | None,
    reported_completion_tokens: int | None,
    prompt: str,
    completion: str,
    rates: Mapping[str, ModelRate] | None = None,
) -> UsageRecord:
    """Build a UsageRecord, estimating whichever side the provider did not report."""
    estimated = reported_prompt_tokens is None or reported_completion_tokens is None
    prompt_tokens = (
        reported_prompt_tokens if reported_prompt_tokens is not None else estimate_tokens(prompt)
    )
    completion_tokens = (
        reported_completion_tokens
        if reported_completion_tokens is not None
        else estimate_tokens(completion)
    )
    return UsageRecord(
        model_id=model_id,
        prompt_tokens=prompt_tokens,
        completion_tokens=completion_tokens,
        cost=calculate_cost(model_id, prompt_tokens, completion_tokens, rates),
        estimated=estimated,
    )


def member_usage(
    state: CouncilMemberState,
    history: Iterable[Message],
    system_prompt: str | None = None,
    rates: Mapping[str, ModelRate] | None = None,
) -> UsageRecord:
    return usage_record(
        state.model_id,
        state.prompt_tokens,
        state.completion_tokens,
        prompt_text(history, system_prompt),
        state.content,
        rates,
    )


def total_cost(records: Iterable[UsageRecord]) -> float:
    return sum(r.cost for r in records)


class PricingCache:
    """Model rate table refreshed from a remote source at most once per TTL.

    Owned by the caller; the clock is injectable so expiry can be driven
    deterministically.
    """

    def __init__(
        self,
        initial: Mapping[str, ModelRate],
        fetch: Callable[[], Awaitable[Mapping[str, ModelRate]]] | None = None,
        ttl_sec: float = 3600.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._initial = dict(initial)
        self._fetch = fetch
        self._ttl_sec = ttl_sec
        self._clock = clock
        self._rates: dict[str, ModelRate] | None = None
        self._fetched_at = 0.0

    def _is_fresh(self) -> bool:
        return self._rates is not None and (self._clock() - self._fetched_at) < self._ttl_sec

    async def get_rates(self) -> dict[str, ModelRate]:
        """Return the current rate table, refetching when stale.

        A failed fetch keeps the last good table (or the initial one) and is
        retried on the next call.
        """
        if self._is_fresh():
            return dict(self._rates)
        if self._fetch is None:
            return dict(self._initial)

        try:
            fetched = await self._fetch()
        except Exception as exc:
            logger.warning("Pricing fetch failed, using cached rates: %s", exc)
            return dict(self._rates if self._rates is not None else self._initial)

        merged = dict(self._initial)
        merged.update(fetched)
        self._rates = merged
        self._fetched_at = self._clock()
        logger.info("Pricing refreshed: %d models", len(merged))
        return dict(merged)

    def invalidate(self) -> None:
        self._rates = None
