"""Normalize loosely-shaped chat messages into canonical Message records.

Chat turns reach the system as plain strings, ``{"role", "content"}`` dicts,
legacy ``{"text": ...}`` dicts or SDK-style ``{"parts": [...]}`` objects.
This is the only place that knows about those shapes.
"""

from collections.abc import Iterable
from typing import Any

from council.models import Message

_VALID_ROLES = {"user", "assistant", "system"}


def message_text(raw: Any) -> str:
    """Extract the text content from any supported message shape."""
    if raw is None:
        return ""
    if isinstance(raw, str):
        return raw
    if isinstance(raw, Message):
        return raw.content
    if not isinstance(raw, dict):
        return ""

    parts = raw.get("parts")
    if isinstance(parts, list):
        return "".join(
            part.get("text") or ""
            for part in parts
            if isinstance(part, dict) and part.get("type") == "text"
        )

    fallback = raw.get("content")
    if fallback is None:
        fallback = raw.get("text")
    return fallback if isinstance(fallback, str) else ""


def normalize_message(raw: Any) -> Message:
    """Convert one raw message into a Message. Unknown roles become "user"."""
    if isinstance(raw, Message):
        return raw
    role = raw.get("role") if isinstance(raw, dict) else None
    if role not in _VALID_ROLES:
        role = "user"
    return Message(role=role, content=message_text(raw))


def normalize_messages(raw_messages: Iterable[Any]) -> list[Message]:
    return [normalize_message(m) for m in raw_messages]


def to_wire(messages: Iterable[Message]) -> list[dict[str, str]]:
    """Render Messages as the ``{"role", "content"}`` dicts SDKs expect."""
    return [{"role": m.role, "content": m.content} for m in messages]
