"""Unit tests for council/orchestrator.py — parallel fan-out with a scripted provider."""

import asyncio

import pytest

from council.models import CouncilMember, MemberStatus, Message
from council.orchestrator import CouncilOrchestrator
from council.providers.base import ProviderError

from tests.conftest import HANG, Delay, ScriptedProvider

HISTORY = [Message(role="user", content="What is 2+2?")]
TEMPLATES = {"skeptic": "You are a skeptic."}


def _orchestrator(provider, sleep, snapshots=None, **kwargs) -> CouncilOrchestrator:
    return CouncilOrchestrator(
        provider,
        on_update=snapshots.append if snapshots is not None else None,
        max_retries=2,
        base_delay_ms=0,
        member_templates=TEMPLATES,
        sleep=sleep,
        **kwargs,
    )


async def test_one_failure_does_not_affect_others(three_members, sleep_recorder):
    provider = ScriptedProvider({"anthropic/claude-3.5-sonnet": [[ProviderError("mock", "HTTP 429: rate limited")]]})
    states = await _orchestrator(provider, sleep_recorder).run(HISTORY, three_members)

    by_id = {s.model_id: s for s in states}
    assert by_id["openai/gpt-4o"].status is MemberStatus.COMPLETED
    assert by_id["google/gemini-pro-1.5"].status is MemberStatus.COMPLETED
    assert by_id["anthropic/claude-3.5-sonnet"].status is MemberStatus.ERROR
    assert "429" in by_id["anthropic/claude-3.5-sonnet"].error_message


async def test_states_keep_member_order(three_members, sleep_recorder):
    states = await _orchestrator(ScriptedProvider(), sleep_recorder).run(HISTORY, three_members)
    assert [s.model_id for s in states] == [m.model_id for m in three_members]
    assert states[0].content == "Answer from openai/gpt-4o"


async def test_every_snapshot_covers_all_members(three_members, sleep_recorder):
    snapshots = []
    await _orchestrator(ScriptedProvider(), sleep_recorder, snapshots).run(HISTORY, three_members)

    assert snapshots
    assert all(len(s) == 3 for s in snapshots)
    assert all(state.status is MemberStatus.LOADING for state in snapshots[0])
    assert all(state.status is MemberStatus.COMPLETED for state in snapshots[-1])


async def test_snapshots_are_copies(three_members, sleep_recorder):
    snapshots = []
    orchestrator = _orchestrator(ScriptedProvider(), sleep_recorder, snapshots)
    await orchestrator.run(HISTORY, three_members)

    snapshots[-1][0].content = "tampered"
    assert orchestrator.states[0].content == "Answer from openai/gpt-4o"


async def test_all_members_failing_still_resolves(three_members, sleep_recorder):
    error = ProviderError("mock", "HTTP 503: unavailable")
    provider = ScriptedProvider({m.model_id: [[error]] for m in three_members})

    states = await _orchestrator(provider, sleep_recorder).run(HISTORY, three_members)

    assert all(s.status is MemberStatus.ERROR for s in states)


async def test_slow_member_times_out_alone(three_members, sleep_recorder):
    provider = ScriptedProvider({"google/gemini-pro-1.5": [[HANG]]})
    states = await _orchestrator(provider, sleep_recorder, timeout_sec=0.05).run(HISTORY, three_members)

    assert [s.status for s in states] == [MemberStatus.COMPLETED, MemberStatus.COMPLETED, MemberStatus.ERROR]
    assert states[2].error_message == "Timeout"


async def test_member_system_prompts(three_members, sleep_recorder):
    provider = ScriptedProvider()
    await _orchestrator(provider, sleep_recorder).run(HISTORY, three_members)

    assert provider.calls_for("openai/gpt-4o")[0][2] is None
    assert provider.calls_for("anthropic/claude-3.5-sonnet")[0][2] == "You are a skeptic."
    assert provider.calls_for("google/gemini-pro-1.5")[0][2] == "You are terse."


async def test_empty_council_rejected(sleep_recorder):
    with pytest.raises(ValueError):
        await _orchestrator(ScriptedProvider(), sleep_recorder).run(HISTORY, [])


async def test_retry_one_reruns_only_that_member(three_members, sleep_recorder):
    error = ProviderError("mock", "HTTP 500")
    provider = ScriptedProvider({"anthropic/claude-3.5-sonnet": [[error], [error], ["Recovered."]]})
    snapshots = []
    orchestrator = _orchestrator(provider, sleep_recorder, snapshots)
    await orchestrator.run(HISTORY, three_members)
    calls_before = len(provider.calls)

    await orchestrator.retry_one("anthropic/claude-3.5-sonnet")

    states = orchestrator.states
    assert states[1].status is MemberStatus.COMPLETED
    assert states[1].content == "Recovered."
    assert states[0].content == "Answer from openai/gpt-4o"
    assert len(provider.calls) == calls_before + 1
    assert all(len(s) == 3 for s in snapshots)


async def test_retry_one_before_run(sleep_recorder):
    with pytest.raises(RuntimeError):
        await _orchestrator(ScriptedProvider(), sleep_recorder).retry_one("openai/gpt-4o")


async def test_retry_one_unknown_member(three_members, sleep_recorder):
    orchestrator = _orchestrator(ScriptedProvider(), sleep_recorder)
    await orchestrator.run(HISTORY, three_members)
    with pytest.raises(LookupError):
        await orchestrator.retry_one("mistralai/mistral-large")


async def test_transcript_is_frozen_copy(three_members, sleep_recorder):
    orchestrator = _orchestrator(ScriptedProvider(), sleep_recorder)
    await orchestrator.run(HISTORY, three_members)

    transcript = orchestrator.transcript()

    assert isinstance(transcript.members, tuple)
    assert transcript.history == tuple(HISTORY)
    assert len(transcript.members) == 3


async def test_first_member_finishing_last_leaves_others_intact(three_members, sleep_recorder):
    provider = ScriptedProvider({"openai/gpt-4o": [[Delay(0.05), "Slow answer."]]})
    snapshots = []

    states = await _orchestrator(provider, sleep_recorder, snapshots).run(HISTORY, three_members)

    assert [s.status for s in states] == [MemberStatus.COMPLETED] * 3
    assert states[0].content == "Slow answer."
    assert states[1].content == "Answer from anthropic/claude-3.5-sonnet"
    assert states[2].content == "Answer from google/gemini-pro-1.5"
    assert all(len(s) == 3 for s in snapshots)

    def first(predicate):
        return next(i for i, snapshot in enumerate(snapshots) if predicate(snapshot))

    others_done = first(lambda s: s[1].status is MemberStatus.COMPLETED and s[2].status is MemberStatus.COMPLETED)
    slow_done = first(lambda s: s[0].status is MemberStatus.COMPLETED)
    assert others_done < slow_done
    for snapshot in snapshots[others_done:]:
        assert snapshot[1].status is MemberStatus.COMPLETED
        assert snapshot[1].content == "Answer from anthropic/claude-3.5-sonnet"
        assert snapshot[2].status is MemberStatus.COMPLETED
        assert snapshot[2].content == "Answer from google/gemini-pro-1.5"
    assert snapshots[others_done][0].status is MemberStatus.LOADING


async def test_retry_one_rejects_member_in_flight(three_members, sleep_recorder):
    error = ProviderError("mock", "HTTP 500")
    provider = ScriptedProvider({"openai/gpt-4o": [[error], [error], [HANG]]})
    orchestrator = _orchestrator(provider, sleep_recorder)
    await orchestrator.run(HISTORY, three_members)
    assert orchestrator.settled

    pending = asyncio.create_task(orchestrator.retry_one("openai/gpt-4o"))
    await asyncio.sleep(0)
    assert orchestrator.states[0].status is MemberStatus.LOADING
    assert not orchestrator.settled

    with pytest.raises(RuntimeError, match="still running"):
        await orchestrator.retry_one("openai/gpt-4o")

    pending.cancel()
    with pytest.raises(asyncio.CancelledError):
        await pending
