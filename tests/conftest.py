"""Shared pytest fixtures."""

import asyncio
from collections.abc import AsyncIterator, Sequence
from pathlib import Path

import pytest

from config.config_loader import (
    AppConfig,
    CouncilConfig,
    DefaultsConfig,
    PresetConfig,
    PricingConfig,
    ProviderConfig,
)
from council.models import (
    CouncilMember,
    CouncilMemberState,
    MemberStatus,
    Message,
    ModelRate,
    RunTranscript,
)
from council.providers.base import TextCompletionProvider

# Script item that blocks until the call is cancelled
HANG = object()


class Delay:
    """Script item that pauses the stream for ``seconds`` of real time."""

    def __init__(self, seconds: float) -> None:
        self.seconds = seconds

JUDGE_TEXT = (
    "<reasoning>gpt-4o and claude-3.5-sonnet both say four; gemini adds nothing new.</reasoning>"
    "<answer>4</answer>"
)


class ScriptedProvider(TextCompletionProvider):
    """Test double provider that streams pre-scripted chunks per model.

    ``scripts`` maps a model id to a list of attempts; each attempt is a list
    of items streamed in order. A str is yielded, an Exception is raised,
    a ``Delay`` pauses and ``HANG`` sleeps until cancelled. Attempts are consumed one per call and
    the last one repeats. Unscripted models answer "Answer from <model_id>".
    """

    def __init__(self, scripts: dict[str, list[list]] | None = None, provider_name: str = "mock") -> None:
        self._name = provider_name
        self._scripts = {model_id: list(attempts) for model_id, attempts in (scripts or {}).items()}
        self.calls: list[tuple[str, list[Message], str | None]] = []
        self.closed = 0

    def name(self) -> str:
        return self._name

    def _next_attempt(self, model_id: str) -> list:
        attempts = self._scripts.get(model_id)
        if not attempts:
            return [f"Answer from {model_id}"]
        return attempts.pop(0) if len(attempts) > 1 else attempts[0]

    def calls_for(self, model_id: str) -> list[tuple[str, list[Message], str | None]]:
        return [c for c in self.calls if c[0] == model_id]

    async def stream_complete(
        self,
        model_id: str,
        messages: Sequence[Message],
        system_prompt: str | None = None,
    ) -> AsyncIterator[str]:
        self.calls.append((model_id, list(messages), system_prompt))
        attempt = self._next_attempt(model_id)
        try:
            for item in attempt:
                if item is HANG:
                    await asyncio.sleep(3600)
                elif isinstance(item, Delay):
                    await asyncio.sleep(item.seconds)
                elif isinstance(item, Exception):
                    raise item
                else:
                    yield item
        finally:
            self.closed += 1


class SleepRecorder:
    """Drop-in for asyncio.sleep that records delays instead of waiting."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


@pytest.fixture
def sleep_recorder() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def scripted_provider() -> ScriptedProvider:
    return ScriptedProvider()


@pytest.fixture
def three_members() -> list[CouncilMember]:
    return [
        CouncilMember(model_id="openai/gpt-4o"),
        CouncilMember(model_id="anthropic/claude-3.5-sonnet", prompt_template_id="skeptic"),
        CouncilMember(model_id="google/gemini-pro-1.5", persona="You are terse."),
    ]


@pytest.fixture
def sample_transcript() -> RunTranscript:
    return RunTranscript(
        members=(
            CouncilMemberState(
                model_id="openai/gpt-4o",
                model_name="gpt-4o",
                status=MemberStatus.COMPLETED,
                content="Four.",
                prompt_tokens=12,
                completion_tokens=2,
            ),
            CouncilMemberState(
                model_id="anthropic/claude-3.5-sonnet",
                model_name="claude-3.5-sonnet",
                status=MemberStatus.ERROR,
                error_message="Timeout",
            ),
        ),
        history=(Message(role="user", content="What is 2+2?"),),
    )


@pytest.fixture
def sample_provider_config() -> ProviderConfig:
    return ProviderConfig(
        name="openrouter",
        sdk="openai",
        api_key_env="TEST_OPENROUTER_KEY",
        max_tokens=1024,
        base_url="https://openrouter.ai/api/v1",
    )


@pytest.fixture
def sample_defaults_config(tmp_path: Path) -> DefaultsConfig:
    return DefaultsConfig(
        provider="openrouter",
        judge_model="openai/gpt-4o-mini",
        output_dir=tmp_path / "output",
        store_dir=tmp_path / "chats",
        judge_template="general",
        members=["openai/gpt-4o", "anthropic/claude-3.5-sonnet"],
    )


@pytest.fixture
def sample_app_config(
    sample_defaults_config: DefaultsConfig,
    sample_provider_config: ProviderConfig,
) -> AppConfig:
    return AppConfig(
        defaults=sample_defaults_config,
        council=CouncilConfig(timeout_sec=5.0, max_retries=2, base_delay_ms=0),
        providers={"openrouter": sample_provider_config},
        pricing=PricingConfig(
            ttl_sec=3600.0,
            refresh=False,
            rates={"openai/gpt-4o": ModelRate(input=2.5, output=10.0)},
        ),
        judge_templates={"general": "You are a careful judge.", "technical": "You are a staff engineer."},
        member_templates={"vanilla": "", "skeptic": "You are a skeptic."},
        presets={
            "critical_review": PresetConfig(
                name="Critical Review",
                description="Skeptic plus realist",
                members=[
                    CouncilMember(model_id="openai/gpt-4o", prompt_template_id="skeptic"),
                    CouncilMember(model_id="anthropic/claude-3.5-sonnet"),
                ],
                judge_template="technical",
            )
        },
        available_providers={"openrouter"},
    )
