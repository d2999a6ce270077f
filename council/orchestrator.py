"""Council orchestration: parallel member runs and live snapshot publishing."""

import asyncio
import dataclasses
import logging
from collections.abc import Awaitable, Callable, Mapping, Sequence

from council.models import CouncilMember, CouncilMemberState, MemberStatus, Message, RunTranscript
from council.providers.base import TextCompletionProvider
from council.retry import DEFAULT_BASE_DELAY_MS
from council.runner import (
    DEFAULT_MAX_RETRIES,
    DEFAULT_TIMEOUT_SEC,
    CouncilMemberRunner,
    initial_state,
    resolve_system_prompt,
)

logger = logging.getLogger(__name__)

_IN_FLIGHT = {MemberStatus.LOADING, MemberStatus.STREAMING}


class CouncilOrchestrator:
    """Fans one prompt out to every council member concurrently.

    Runners report their own state upward; only the orchestrator writes the
    shared snapshot list, and every change republishes the whole list so the
    consumer always sees all members at once.
    """

    def __init__(
        self,
        provider: TextCompletionProvider,
        on_update: Callable[[list[CouncilMemberState]], None] | None = None,
        timeout_sec: float = DEFAULT_TIMEOUT_SEC,
        max_retries: int = DEFAULT_MAX_RETRIES,
        base_delay_ms: int = DEFAULT_BASE_DELAY_MS,
        member_templates: Mapping[str, str] | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._provider = provider
        self._on_update = on_update
        self._timeout_sec = timeout_sec
        self._max_retries = max_retries
        self._base_delay_ms = base_delay_ms
        self._member_templates = dict(member_templates or {})
        self._sleep = sleep
        self._states: list[CouncilMemberState] = []
        self._members: list[CouncilMember] = []
        self._history: list[Message] = []

    @property
    def states(self) -> list[CouncilMemberState]:
        return [dataclasses.replace(s) for s in self._states]

    @property
    def settled(self) -> bool:
        """True when no member is loading or streaming."""
        return all(s.status not in _IN_FLIGHT for s in self._states)

    def system_prompt_for(self, member: CouncilMember) -> str | None:
        return resolve_system_prompt(member, self._member_templates)

    def _publish(self) -> None:
        if self._on_update:
            self._on_update(self.states)

    def _make_runner(self, index: int) -> CouncilMemberRunner:
        member = self._members[index]

        def on_member_update(state: CouncilMemberState) -> None:
            self._states[index] = state
            self._publish()

        return CouncilMemberRunner(
            provider=self._provider,
            member=member,
            history=self._history,
            on_update=on_member_update,
            timeout_sec=self._timeout_sec,
            max_retries=self._max_retries,
            base_delay_ms=self._base_delay_ms,
            system_prompt=self.system_prompt_for(member),
            sleep=self._sleep,
        )

    async def run(
        self,
        history: Sequence[Message],
        members: Sequence[CouncilMember],
    ) -> list[CouncilMemberState]:
        """Run every member to a terminal state.

        Never raises for member failures: a member that exhausts its retries
        simply ends in ``error``. Resolves once all members have settled.

        Raises:
            ValueError: If ``members`` is empty.
        """
        if not members:
            raise ValueError("A council needs at least one member")

        self._members = list(members)
        self._history = list(history)
        self._states = [initial_state(m) for m in self._members]
        for state in self._states:
            state.status = MemberStatus.LOADING
        self._publish()

        logger.info("Council run started with %d members", len(self._members))
        runners = [self._make_runner(i) for i in range(len(self._members))]
        await asyncio.gather(*(r.run() for r in runners))

        completed = sum(1 for s in self._states if s.status is MemberStatus.COMPLETED)
        logger.info("Council run complete: %d/%d members succeeded", completed, len(self._states))
        return self.states

    async def retry_one(self, model_id: str) -> None:
        """Re-run one member against the history captured by the last ``run``.

        Raises:
            RuntimeError: If no run happened yet or the member is still in flight.
            LookupError: If ``model_id`` is not a member of the last run.
        """
        if not self._members:
            raise RuntimeError("retry_one called before run")
        index = next((i for i, m in enumerate(self._members) if m.model_id == model_id), None)
        if index is None:
            raise LookupError(f"{model_id} is not a member of the last council run")
        if self._states[index].status in _IN_FLIGHT:
            raise RuntimeError(f"{model_id} is still running")

        logger.info("Retrying council member %s", model_id)
        await self._make_runner(index).run()

    def transcript(self) -> RunTranscript:
        """Frozen copy of the current states and history for the judge."""
        return RunTranscript(members=tuple(self.states), history=tuple(self._history))
