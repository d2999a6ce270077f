"""Pure dataclasses for the council pipeline. No logic, no deps."""

from dataclasses import dataclass, field
from enum import Enum


class MemberStatus(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    STREAMING = "streaming"
    COMPLETED = "completed"
    ERROR = "error"


@dataclass(frozen=True)
class Message:
    role: str              # "user", "assistant" or "system"
    content: str


@dataclass(frozen=True)
class CouncilMember:
    model_id: str                          # provider model id, e.g. "openai/gpt-4o"
    persona: str | None = None             # system prompt override
    prompt_template_id: str | None = None  # key into member_templates


@dataclass
class CouncilMemberState:
    model_id: str
    model_name: str
    status: MemberStatus = MemberStatus.IDLE
    content: str = ""
    prompt_tokens: int | None = None
    completion_tokens: int | None = None
    error_message: str | None = None


@dataclass(frozen=True)
class RunTranscript:
    members: tuple[CouncilMemberState, ...]
    history: tuple[Message, ...]


@dataclass(frozen=True)
class ParsedJudgeResponse:
    reasoning: str | None
    answer: str | None
    has_tags: bool
    answer_complete: bool


@dataclass(frozen=True)
class ModelRate:
    input: float           # USD per 1M prompt tokens
    output: float          # USD per 1M completion tokens


@dataclass(frozen=True)
class UsageRecord:
    model_id: str
    prompt_tokens: int
    completion_tokens: int
    cost: float
    estimated: bool = False


@dataclass
class JudgeResult:
    model_id: str
    raw_text: str
    parsed: ParsedJudgeResponse
    usage: UsageRecord


@dataclass
class SessionResult:
    chat_id: str
    transcript: RunTranscript
    judge: JudgeResult
    member_usage: list[UsageRecord] = field(default_factory=list)
