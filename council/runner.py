"""Drive one council member's streaming call to completion or failure."""

import asyncio
import dataclasses
import logging
from collections.abc import Awaitable, Callable, Mapping, Sequence
from contextlib import aclosing

from council.models import CouncilMember, CouncilMemberState, MemberStatus, Message
from council.providers.base import TextCompletionProvider
from council.retry import DEFAULT_BASE_DELAY_MS, retry
from council.stream_parser import split_usage, usage_tokens

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SEC = 30.0
DEFAULT_MAX_RETRIES = 3
TIMEOUT_LABEL = "Timeout"

# Forward edges plus the retry edge back to LOADING
_TRANSITIONS: dict[MemberStatus, frozenset[MemberStatus]] = {
    MemberStatus.IDLE: frozenset({MemberStatus.LOADING}),
    MemberStatus.LOADING: frozenset(
        {MemberStatus.LOADING, MemberStatus.STREAMING, MemberStatus.COMPLETED, MemberStatus.ERROR}
    ),
    MemberStatus.STREAMING: frozenset(
        {MemberStatus.LOADING, MemberStatus.COMPLETED, MemberStatus.ERROR}
    ),
    MemberStatus.COMPLETED: frozenset({MemberStatus.LOADING}),
    MemberStatus.ERROR: frozenset({MemberStatus.LOADING}),
}


class InvalidTransitionError(Exception):
    """Raised on a member status change the state machine does not allow."""

    def __init__(self, current: MemberStatus, target: MemberStatus) -> None:
        self.current = current
        self.target = target
        super().__init__(f"Illegal member transition {current.value} -> {target.value}")


class CallTimeoutError(Exception):
    """Raised when one streaming attempt exceeds its time limit."""

    def __init__(self, model_id: str, timeout_sec: float) -> None:
        self.model_id = model_id
        self.timeout_sec = timeout_sec
        super().__init__(f"{model_id} timed out after {timeout_sec}s")


def can_transition(current: MemberStatus, target: MemberStatus) -> bool:
    return target in _TRANSITIONS[current]


def display_name(model_id: str) -> str:
    """Short label for a model id: "openai/gpt-4o" -> "gpt-4o"."""
    return model_id.rsplit("/", 1)[-1] or model_id


def resolve_system_prompt(member: CouncilMember, templates: Mapping[str, str] | None = None) -> str | None:
    """Persona wins over the template; empty text means no system prompt."""
    if member.persona and member.persona.strip():
        return member.persona
    if member.prompt_template_id and templates:
        template = templates.get(member.prompt_template_id, "")
        if template.strip():
            return template
    return None


def initial_state(member: CouncilMember) -> CouncilMemberState:
    return CouncilMemberState(model_id=member.model_id, model_name=display_name(member.model_id))


class CouncilMemberRunner:
    """Runs exactly one member's call, with timeout and retries.

    The runner owns its state and reports a copy of it through ``on_update``
    after every change. It never raises for provider failures: exhausted
    retries end in the ``error`` status instead.
    """

    def __init__(
        self,
        provider: TextCompletionProvider,
        member: CouncilMember,
        history: Sequence[Message],
        on_update: Callable[[CouncilMemberState], None],
        timeout_sec: float = DEFAULT_TIMEOUT_SEC,
        max_retries: int = DEFAULT_MAX_RETRIES,
        base_delay_ms: int = DEFAULT_BASE_DELAY_MS,
        system_prompt: str | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._provider = provider
        self._member = member
        self._history = list(history)
        self._on_update = on_update
        self._timeout_sec = timeout_sec
        self._max_retries = max_retries
        self._base_delay_ms = base_delay_ms
        self._system_prompt = system_prompt
        self._sleep = sleep
        self._state = initial_state(member)
        self.attempts = 0

    @property
    def state(self) -> CouncilMemberState:
        return dataclasses.replace(self._state)

    def _publish(self) -> None:
        self._on_update(self.state)

    def _transition(self, target: MemberStatus) -> None:
        current = self._state.status
        if not can_transition(current, target):
            raise InvalidTransitionError(current, target)
        self._state.status = target

    def _reset(self) -> None:
        self._transition(MemberStatus.LOADING)
        self._state.content = ""
        self._state.prompt_tokens = None
        self._state.completion_tokens = None
        self._state.error_message = None
        self._publish()

    def _apply(self, raw_text: str, final: bool) -> bool:
        """Update content/usage from the cumulative raw text. Returns True on change."""
        content, usage = split_usage(raw_text, final=final)
        prompt_tokens, completion_tokens = usage_tokens(usage)
        changed = content != self._state.content
        # Content is append-only within an attempt
        if len(content) > len(self._state.content):
            self._state.content = content
        if prompt_tokens is not None and prompt_tokens != self._state.prompt_tokens:
            self._state.prompt_tokens = prompt_tokens
            changed = True
        if completion_tokens is not None and completion_tokens != self._state.completion_tokens:
            self._state.completion_tokens = completion_tokens
            changed = True
        return changed

    async def _stream(self) -> None:
        raw_text = ""
        stream = self._provider.stream_complete(
            self._member.model_id, self._history, self._system_prompt
        )
        async with aclosing(stream):
            async for chunk in stream:
                if not chunk:
                    continue
                if self._state.status is MemberStatus.LOADING:
                    self._transition(MemberStatus.STREAMING)
                    self._publish()
                raw_text += chunk
                if self._apply(raw_text, final=False):
                    self._publish()
        self._apply(raw_text, final=True)

    async def _attempt(self) -> None:
        self.attempts += 1
        self._reset()
        try:
            await asyncio.wait_for(self._stream(), timeout=self._timeout_sec)
        except TimeoutError as exc:
            raise CallTimeoutError(self._member.model_id, self._timeout_sec) from exc
        self._transition(MemberStatus.COMPLETED)
        self._publish()

    async def run(self) -> CouncilMemberState:
        """Run the member to a terminal state and return the final snapshot."""
        logger.info("Starting council member %s", self._member.model_id)
        try:
            await retry(
                self._attempt,
                max_retries=self._max_retries,
                base_delay_ms=self._base_delay_ms,
                sleep=self._sleep,
                label=self._member.model_id,
            )
        except CallTimeoutError:
            self._fail(TIMEOUT_LABEL)
        except InvalidTransitionError:
            raise
        except Exception as exc:
            self._fail(str(exc) or type(exc).__name__)
        else:
            logger.info(
                "Council member %s completed: %d chars after %d attempt(s)",
                self._member.model_id, len(self._state.content), self.attempts,
            )
        return self.state

    def _fail(self, message: str) -> None:
        logger.warning("Council member %s failed: %s", self._member.model_id, message)
        self._transition(MemberStatus.ERROR)
        self._state.error_message = message
        self._publish()
