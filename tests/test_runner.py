"""Unit tests for council/runner.py — no real API calls."""

import pytest

from council.models import CouncilMember, MemberStatus, Message
from council.providers.base import ProviderError
from council.runner import (
    TIMEOUT_LABEL,
    CouncilMemberRunner,
    can_transition,
    display_name,
    resolve_system_prompt,
)
from council.stream_parser import format_usage_marker

from tests.conftest import HANG, ScriptedProvider

MODEL = "openai/gpt-4o"
HISTORY = [Message(role="user", content="What is 2+2?")]


def _runner(provider, sleep, updates, **kwargs) -> CouncilMemberRunner:
    return CouncilMemberRunner(
        provider=provider,
        member=CouncilMember(model_id=MODEL),
        history=HISTORY,
        on_update=updates.append,
        sleep=sleep,
        **kwargs,
    )


async def test_successful_stream_walks_the_state_machine(sleep_recorder):
    provider = ScriptedProvider({MODEL: [["Hello", " world"]]})
    updates = []

    final = await _runner(provider, sleep_recorder, updates).run()

    assert final.status is MemberStatus.COMPLETED
    assert final.content == "Hello world"
    assert final.model_name == "gpt-4o"
    statuses = [u.status for u in updates]
    assert statuses[0] is MemberStatus.LOADING
    assert MemberStatus.STREAMING in statuses
    assert statuses[-1] is MemberStatus.COMPLETED


async def test_published_content_only_grows(sleep_recorder):
    provider = ScriptedProvider({MODEL: [["Hel", "lo", " there"]]})
    updates = []
    await _runner(provider, sleep_recorder, updates).run()

    contents = [u.content for u in updates]
    for earlier, later in zip(contents, contents[1:]):
        assert later.startswith(earlier)


async def test_usage_marker_populates_tokens(sleep_recorder):
    provider = ScriptedProvider({MODEL: [["Four.", format_usage_marker(12, 3)]]})
    final = await _runner(provider, sleep_recorder, []).run()

    assert final.content == "Four."
    assert final.prompt_tokens == 12
    assert final.completion_tokens == 3


async def test_sentinel_split_across_chunks_never_displayed(sleep_recorder):
    provider = ScriptedProvider(
        {MODEL: [["Four.", "__USA", "GE__:", '{"promptTokens": 3, "completionTokens": 1}']]}
    )
    updates = []
    final = await _runner(provider, sleep_recorder, updates).run()

    assert final.content == "Four."
    assert final.prompt_tokens == 3
    assert all("__" not in u.content for u in updates)


async def test_retry_resets_partial_content(sleep_recorder):
    provider = ScriptedProvider(
        {MODEL: [["partial", ProviderError("mock", "connection reset")], ["clean answer"]]}
    )
    updates = []
    runner = _runner(provider, sleep_recorder, updates, max_retries=3, base_delay_ms=100)

    final = await runner.run()

    assert final.status is MemberStatus.COMPLETED
    assert final.content == "clean answer"
    assert runner.attempts == 2
    assert sleep_recorder.delays == [0.1]
    # The second attempt starts from an empty LOADING snapshot
    reloads = [u for u in updates[1:] if u.status is MemberStatus.LOADING]
    assert reloads and reloads[0].content == ""


async def test_timeout_ends_in_timeout_error(sleep_recorder):
    provider = ScriptedProvider({MODEL: [[HANG]]})
    runner = _runner(provider, sleep_recorder, [], timeout_sec=0.05, max_retries=2)

    final = await runner.run()

    assert final.status is MemberStatus.ERROR
    assert final.error_message == TIMEOUT_LABEL
    assert runner.attempts == 2
    # The hung stream was closed on every attempt
    assert provider.closed == 2


async def test_exhausted_retries_keep_provider_message(sleep_recorder):
    provider = ScriptedProvider({MODEL: [[ProviderError("mock", "HTTP 500: upstream")]]})
    updates = []
    final = await _runner(provider, sleep_recorder, updates, max_retries=3).run()

    assert final.status is MemberStatus.ERROR
    assert "HTTP 500" in final.error_message
    assert len(provider.calls) == 3
    assert updates[-1].status is MemberStatus.ERROR


async def test_system_prompt_is_passed_through(sleep_recorder):
    provider = ScriptedProvider()
    await _runner(provider, sleep_recorder, [], system_prompt="Be brief.").run()
    assert provider.calls[0][2] == "Be brief."


def test_state_property_is_a_copy(scripted_provider, sleep_recorder):
    runner = _runner(scripted_provider, sleep_recorder, [])
    snapshot = runner.state
    snapshot.content = "tampered"
    assert runner.state.content == ""


@pytest.mark.parametrize(
    ("current", "target", "allowed"),
    [
        (MemberStatus.IDLE, MemberStatus.LOADING, True),
        (MemberStatus.IDLE, MemberStatus.STREAMING, False),
        (MemberStatus.LOADING, MemberStatus.COMPLETED, True),
        (MemberStatus.STREAMING, MemberStatus.LOADING, True),
        (MemberStatus.COMPLETED, MemberStatus.LOADING, True),
        (MemberStatus.COMPLETED, MemberStatus.STREAMING, False),
        (MemberStatus.ERROR, MemberStatus.COMPLETED, False),
    ],
)
def test_can_transition(current, target, allowed):
    assert can_transition(current, target) is allowed


def test_display_name():
    assert display_name("anthropic/claude-3.5-sonnet") == "claude-3.5-sonnet"
    assert display_name("gpt-4o") == "gpt-4o"


def test_resolve_system_prompt_precedence():
    templates = {"skeptic": "You are a skeptic.", "vanilla": ""}
    assert resolve_system_prompt(CouncilMember("m", persona="P", prompt_template_id="skeptic"), templates) == "P"
    assert resolve_system_prompt(CouncilMember("m", prompt_template_id="skeptic"), templates) == "You are a skeptic."
    assert resolve_system_prompt(CouncilMember("m", prompt_template_id="vanilla"), templates) is None
    assert resolve_system_prompt(CouncilMember("m", persona="   "), templates) is None
    assert resolve_system_prompt(CouncilMember("m"), templates) is None
