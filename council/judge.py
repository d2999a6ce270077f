"""Judge stage: inject the council transcript, stream one synthesis, parse it live."""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Mapping
from contextlib import aclosing

from council.models import (
    CouncilMemberState,
    JudgeResult,
    MemberStatus,
    Message,
    ModelRate,
    ParsedJudgeResponse,
    RunTranscript,
)
from council.providers.base import TextCompletionProvider
from council.retry import DEFAULT_BASE_DELAY_MS, retry
from council.runner import DEFAULT_MAX_RETRIES, DEFAULT_TIMEOUT_SEC, CallTimeoutError
from council.stream_parser import parse_judge_response, split_usage, usage_tokens
from council.usage import prompt_text, usage_record

logger = logging.getLogger(__name__)

DEFAULT_JUDGE_PROMPT = """You are the Chief Justice of an AI Council. Your role is to synthesize the perspectives provided by the council members into a single, authoritative response.

For each council member, evaluate their response in terms of:
- **Strengths:** What this response does well
- **Weaknesses:** What this response lacks or gets wrong
- **Key Insight:** The most valuable contribution from this member

Then explain your synthesis strategy: how you will combine the best elements and resolve any conflicts between members."""

JUDGE_FORMAT_INSTRUCTIONS = """Format your entire response using exactly these two XML sections, in this order:

<reasoning>
Your evaluation of each council member and your synthesis strategy.
</reasoning>
<answer>
Your final, self-contained answer to the user's query.
</answer>

Do not write anything outside these two sections."""

DELIBERATIONS_HEADER = "--- COUNCIL DELIBERATIONS ---"


class JudgeError(Exception):
    """Raised when the judge call fails after retries.

    The council transcript stays available on ``transcript`` so callers can
    still show the member answers.
    """

    def __init__(self, message: str, transcript: RunTranscript) -> None:
        self.transcript = transcript
        super().__init__(message)


def compose_system_prompt(judge_prompt: str | None = None) -> str:
    """Judge prompt (or the default) followed by the fixed format contract."""
    base = judge_prompt.strip() if judge_prompt and judge_prompt.strip() else DEFAULT_JUDGE_PROMPT
    return f"{base}\n\n{JUDGE_FORMAT_INSTRUCTIONS}"


def _member_body(state: CouncilMemberState) -> str:
    if state.status is MemberStatus.ERROR:
        reason = state.error_message or "unknown error"
        if state.content.strip():
            return f"{state.content}\n\n[Response incomplete: {reason}]"
        return f"[No response: this member failed ({reason})]"
    if not state.content.strip():
        return "[No response: this member returned no content]"
    return state.content


def format_transcript(members: tuple[CouncilMemberState, ...] | list[CouncilMemberState]) -> str:
    """One section per member, errored members included with a placeholder."""
    parts = [f"### {s.model_name} ({s.model_id})\n{_member_body(s)}" for s in members]
    return "\n\n".join(parts)


def build_judge_messages(transcript: RunTranscript) -> list[Message]:
    """History with the last user turn replaced by query + deliberations.

    Raises:
        ValueError: If the history contains no user message.
    """
    messages = list(transcript.history)
    last_user = next(
        (i for i in range(len(messages) - 1, -1, -1) if messages[i].role == "user"),
        None,
    )
    if last_user is None:
        raise ValueError("Judge needs at least one user message in the history")

    original = messages[last_user].content
    injected = (
        f"User Query: {original}\n\n{DELIBERATIONS_HEADER}\n"
        f"{format_transcript(transcript.members)}"
    )
    messages[last_user] = Message(role="user", content=injected)
    return messages


class JudgeSynthesizer:
    """Issues the single judge call through the same streaming provider."""

    def __init__(
        self,
        provider: TextCompletionProvider,
        timeout_sec: float = DEFAULT_TIMEOUT_SEC,
        max_retries: int = DEFAULT_MAX_RETRIES,
        base_delay_ms: int = DEFAULT_BASE_DELAY_MS,
        rates: Mapping[str, ModelRate] | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._provider = provider
        self._timeout_sec = timeout_sec
        self._max_retries = max_retries
        self._base_delay_ms = base_delay_ms
        self._rates = rates
        self._sleep = sleep

    async def synthesize(
        self,
        transcript: RunTranscript,
        judge_model: str,
        judge_prompt: str | None = None,
        on_update: Callable[[str, ParsedJudgeResponse], None] | None = None,
    ) -> JudgeResult:
        """Stream the judge response, publishing (display_text, parsed) per chunk.

        Args:
            transcript: Settled council run, copied from the orchestrator.
            judge_model: Model id of the judge.
            judge_prompt: Custom judge instructions; default prompt when empty.
            on_update: Called with the text so far and its parse on every chunk,
                and once more after the stream closes.

        Raises:
            ValueError: If the history has no user message.
            JudgeError: If the judge call fails after all retries.
        """
        system_prompt = compose_system_prompt(judge_prompt)
        messages = build_judge_messages(transcript)
        raw_text = ""

        def publish(final: bool) -> str:
            display, _ = split_usage(raw_text, final=final)
            if on_update:
                on_update(display, parse_judge_response(display))
            return display

        async def stream_once() -> None:
            nonlocal raw_text
            stream = self._provider.stream_complete(judge_model, messages, system_prompt)
            async with aclosing(stream):
                async for chunk in stream:
                    if not chunk:
                        continue
                    raw_text += chunk
                    publish(final=False)

        async def attempt() -> None:
            nonlocal raw_text
            raw_text = ""
            try:
                await asyncio.wait_for(stream_once(), timeout=self._timeout_sec)
            except TimeoutError as exc:
                raise CallTimeoutError(judge_model, self._timeout_sec) from exc

        logger.info("Running synthesis via %s over %d members", judge_model, len(transcript.members))
        try:
            await retry(
                attempt,
                max_retries=self._max_retries,
                base_delay_ms=self._base_delay_ms,
                sleep=self._sleep,
                label=f"judge {judge_model}",
            )
        except Exception as exc:
            raise JudgeError(f"Judge {judge_model} failed: {exc}", transcript) from exc

        # The closing </answer> may only be visible once the stream has ended
        display = publish(final=True)
        parsed = parse_judge_response(display)
        _, usage = split_usage(raw_text, final=True)
        reported_prompt, reported_completion = usage_tokens(usage)
        record = usage_record(
            judge_model,
            reported_prompt,
            reported_completion,
            prompt_text(messages, system_prompt),
            display,
            self._rates,
        )
        logger.info(
            "Synthesis complete: %d chars, answer_complete=%s, cost $%.6f",
            len(display), parsed.answer_complete, record.cost,
        )
        return JudgeResult(model_id=judge_model, raw_text=display, parsed=parsed, usage=record)
