"""Chat turn persistence: one JSON file per chat."""

import dataclasses
import json
import logging
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path

from council.models import Message, RunTranscript, UsageRecord

logger = logging.getLogger(__name__)


def transcript_to_dict(transcript: RunTranscript) -> dict:
    """Serialize a RunTranscript into the per-message annotation blob."""
    return {
        "members": [
            {**dataclasses.asdict(s), "status": s.status.value} for s in transcript.members
        ],
        "history": [dataclasses.asdict(m) for m in transcript.history],
    }


class MessageStore(ABC):
    @abstractmethod
    def history(self, chat_id: str) -> list[Message]:
        """Return the stored turns of a chat, oldest first. Unknown chats are empty."""
        ...

    @abstractmethod
    def append(
        self,
        chat_id: str,
        role: str,
        content: str,
        annotations: dict | None = None,
        usage: UsageRecord | None = None,
    ) -> None:
        ...

    def new_chat_id(self) -> str:
        return uuid.uuid4().hex[:12]


class JsonMessageStore(MessageStore):
    """Stores each chat as ``<store_dir>/<chat_id>.json``."""

    def __init__(self, store_dir: Path) -> None:
        self._dir = store_dir

    def _path(self, chat_id: str) -> Path:
        if not chat_id or "/" in chat_id or "\\" in chat_id or chat_id.startswith("."):
            raise ValueError(f"Invalid chat id: {chat_id!r}")
        return self._dir / f"{chat_id}.json"

    def _load(self, chat_id: str) -> list[dict]:
        path = self._path(chat_id)
        if not path.exists():
            return []
        return json.loads(path.read_text(encoding="utf-8"))

    def history(self, chat_id: str) -> list[Message]:
        return [Message(role=t["role"], content=t["content"]) for t in self._load(chat_id)]

    def records(self, chat_id: str) -> list[dict]:
        """Raw stored turns including annotations and usage."""
        return self._load(chat_id)

    def append(
        self,
        chat_id: str,
        role: str,
        content: str,
        annotations: dict | None = None,
        usage: UsageRecord | None = None,
    ) -> None:
        turns = self._load(chat_id)
        turn: dict = {
            "role": role,
            "content": content,
            "created_at": datetime.now(timezone.utc).isoformat(),
        }
        if annotations is not None:
            turn["annotations"] = annotations
        if usage is not None:
            turn["usage"] = dataclasses.asdict(usage)
        turns.append(turn)

        self._dir.mkdir(parents=True, exist_ok=True)
        path = self._path(chat_id)
        # Readers see either the old file or the new one, never a partial write
        tmp = path.with_name(path.name + ".tmp")
        tmp.write_text(json.dumps(turns, indent=2), encoding="utf-8")
        tmp.replace(path)
        logger.debug("Stored %s turn in chat %s", role, chat_id)
