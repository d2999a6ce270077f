"""Incremental parsing of streamed model text.

Two concerns live here because both operate on the cumulative raw text of a
stream rather than on individual chunks:

* splitting the trailing ``__USAGE__:`` marker that providers append when
  they have no other channel for token usage, and
* classifying a judge response into ``<reasoning>`` and ``<answer>``
  sections while it is still arriving.

Every function is pure, so callers simply re-run them on each chunk.
"""

import json
import logging
import re

from council.models import ParsedJudgeResponse

logger = logging.getLogger(__name__)

USAGE_SENTINEL = "__USAGE__:"

# Non-greedy up to the closing tag, or to end of text while still streaming
_REASONING_PATTERN = re.compile(r"<reasoning>(.*?)(?:</reasoning>|$)", re.DOTALL)
_ANSWER_PATTERN = re.compile(r"<answer>(.*?)(?:</answer>|$)", re.DOTALL)
_ANSWER_CLOSE = "</answer>"


def parse_judge_response(raw_text: str) -> ParsedJudgeResponse:
    """Extract reasoning/answer sections from the judge text seen so far.

    A missing closing tag is normal mid-stream; the partial section is still
    returned. Nested or malformed tags are not balanced: first match wins.
    """
    reasoning: str | None = None
    answer: str | None = None

    match = _REASONING_PATTERN.search(raw_text)
    if match:
        reasoning = match.group(1).strip()

    match = _ANSWER_PATTERN.search(raw_text)
    if match:
        answer = match.group(1).strip()

    return ParsedJudgeResponse(
        reasoning=reasoning,
        answer=answer,
        has_tags=reasoning is not None or answer is not None,
        answer_complete=_ANSWER_CLOSE in raw_text,
    )


def _pending_sentinel_prefix(text: str) -> int:
    """Length of the longest suffix of text that starts the usage sentinel."""
    for size in range(min(len(text), len(USAGE_SENTINEL) - 1), 0, -1):
        if USAGE_SENTINEL.startswith(text[-size:]):
            return size
    return 0


def _parse_usage(blob: str) -> dict | None:
    try:
        usage = json.loads(blob)
    except json.JSONDecodeError:
        return None
    if not isinstance(usage, dict):
        return None
    return usage


def split_usage(raw_text: str, final: bool = False) -> tuple[str, dict | None]:
    """Split cumulative stream text into (display_text, usage).

    Everything before the first sentinel is display text; the remainder is
    parsed as a JSON usage object, ``None`` while it is incomplete or invalid.
    With ``final=False`` a trailing fragment that may grow into the sentinel
    is withheld, so display text only ever grows across calls.
    """
    head, sep, tail = raw_text.partition(USAGE_SENTINEL)
    if sep:
        return head, _parse_usage(tail)
    if final:
        return raw_text, None
    held = _pending_sentinel_prefix(raw_text)
    if held:
        return raw_text[:-held], None
    return raw_text, None


def format_usage_marker(prompt_tokens: int, completion_tokens: int, cost: float | None = None) -> str:
    """Build the trailing usage marker a provider appends to its stream."""
    payload: dict[str, float | int] = {
        "promptTokens": prompt_tokens,
        "completionTokens": completion_tokens,
    }
    if cost is not None:
        payload["cost"] = cost
    return USAGE_SENTINEL + json.dumps(payload)


def usage_tokens(usage: dict | None) -> tuple[int | None, int | None]:
    """Read (prompt, completion) token counts from a usage blob.

    Accepts both the camelCase marker keys and OpenAI-style snake_case keys.
    """
    if not usage:
        return None, None

    def _read(camel: str, snake: str) -> int | None:
        value = usage.get(camel, usage.get(snake))
        try:
            return int(value) if value is not None else None
        except (TypeError, ValueError):
            logger.debug("Ignoring non-numeric usage value %r for %s", value, camel)
            return None

    return _read("promptTokens", "prompt_tokens"), _read("completionTokens", "completion_tokens")
