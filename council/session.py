"""One council turn end to end: credentials, council run, judge, persistence."""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence

from config.config_loader import AppConfig, ProviderConfig
from council.credentials import ConfigurationError, CredentialStore
from council.judge import JudgeSynthesizer
from council.models import (
    CouncilMember,
    CouncilMemberState,
    MemberStatus,
    Message,
    ParsedJudgeResponse,
    SessionResult,
)
from council.orchestrator import CouncilOrchestrator
from council.providers.base import TextCompletionProvider
from council.providers.registry import build_provider
from council.store import MessageStore, transcript_to_dict
from council.usage import PricingCache, member_usage

logger = logging.getLogger(__name__)

CouncilCallback = Callable[[list[CouncilMemberState]], None]
JudgeCallback = Callable[[str, ParsedJudgeResponse], None]


class CouncilSession:
    """Runs council turns for one chat against one configured provider.

    ``convene`` runs the members, ``retry_member`` re-runs one of them and
    ``conclude`` hands the settled transcript to the judge. ``ask`` does all
    three in sequence.
    """

    def __init__(
        self,
        config: AppConfig,
        credentials: CredentialStore,
        store: MessageStore,
        provider_name: str | None = None,
        provider_factory: Callable[[ProviderConfig, str], TextCompletionProvider] = build_provider,
        pricing: PricingCache | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._config = config
        self._credentials = credentials
        self._store = store
        self._provider_name = provider_name or config.defaults.provider
        self._provider_factory = provider_factory
        self._pricing = pricing
        self._sleep = sleep
        self._provider: TextCompletionProvider | None = None
        self._orchestrator: CouncilOrchestrator | None = None
        self._members: list[CouncilMember] = []
        self._history: list[Message] = []
        self._question = ""
        self.chat_id: str | None = None

    def connect(self) -> TextCompletionProvider:
        """Resolve the API key and build the provider.

        Raises:
            ConfigurationError: If the provider is unknown or has no key.
        """
        if self._provider is not None:
            return self._provider
        provider_cfg = self._config.providers.get(self._provider_name)
        if provider_cfg is None:
            raise ConfigurationError(f"Provider '{self._provider_name}' is not defined in settings.yaml")
        api_key = self._credentials.get_provider_key(provider_cfg.name)
        self._provider = self._provider_factory(provider_cfg, api_key)

        if self._pricing is None:
            fetch = getattr(self._provider, "fetch_pricing", None) if self._config.pricing.refresh else None
            self._pricing = PricingCache(self._config.pricing.rates, fetch, ttl_sec=self._config.pricing.ttl_sec)
        return self._provider

    async def convene(
        self,
        question: str,
        members: Sequence[CouncilMember],
        chat_id: str | None = None,
        on_update: CouncilCallback | None = None,
    ) -> list[CouncilMemberState]:
        """Run every member on ``question`` appended to the chat history.

        Raises:
            ConfigurationError: Before any request, if credentials are missing.
            ValueError: If ``members`` is empty or the question is blank.
        """
        if not question.strip():
            raise ValueError("Question must not be empty")
        provider = self.connect()

        self.chat_id = chat_id or self._store.new_chat_id()
        self._question = question
        self._members = list(members)
        self._history = self._store.history(self.chat_id) + [Message(role="user", content=question)]

        council = self._config.council
        self._orchestrator = CouncilOrchestrator(
            provider,
            on_update=on_update,
            timeout_sec=council.timeout_sec,
            max_retries=council.max_retries,
            base_delay_ms=council.base_delay_ms,
            member_templates=self._config.member_templates,
            sleep=self._sleep,
        )
        return await self._orchestrator.run(self._history, self._members)

    def _require_run(self) -> CouncilOrchestrator:
        if self._orchestrator is None:
            raise RuntimeError("No council run in this session; call convene first")
        return self._orchestrator

    async def retry_member(self, model_id: str) -> CouncilMemberState:
        orchestrator = self._require_run()
        await orchestrator.retry_one(model_id)
        return next(s for s in orchestrator.states if s.model_id == model_id)

    async def retry_failed(self) -> list[CouncilMemberState]:
        """Retry every errored member once more, concurrently."""
        orchestrator = self._require_run()
        failed = [s.model_id for s in orchestrator.states if s.status is MemberStatus.ERROR]
        if failed:
            logger.info("Retrying %d failed member(s): %s", len(failed), ", ".join(failed))
            await asyncio.gather(*(orchestrator.retry_one(m) for m in dict.fromkeys(failed)))
        return orchestrator.states

    async def conclude(
        self,
        judge_model: str,
        judge_prompt: str | None = None,
        on_update: JudgeCallback | None = None,
    ) -> SessionResult:
        """Synthesize the settled council and persist the turn.

        Only completed members are billed.

        Raises:
            RuntimeError: If a member retry is still in flight.
            JudgeError: If the judge fails; the transcript is on the exception.
        """
        orchestrator = self._require_run()
        if not orchestrator.settled:
            raise RuntimeError("Council is still running; wait for pending retries before concluding")
        provider = self.connect()
        rates = await self._pricing.get_rates()
        transcript = orchestrator.transcript()

        council = self._config.council
        judge = JudgeSynthesizer(
            provider,
            timeout_sec=council.timeout_sec,
            max_retries=council.max_retries,
            base_delay_ms=council.base_delay_ms,
            rates=rates,
            sleep=self._sleep,
        )
        result = await judge.synthesize(transcript, judge_model, judge_prompt, on_update)

        usage = [
            member_usage(state, self._history, orchestrator.system_prompt_for(member), rates)
            for state, member in zip(transcript.members, self._members)
            if state.status is MemberStatus.COMPLETED
        ]

        answer = result.parsed.answer if result.parsed.answer is not None else result.raw_text
        self._store.append(self.chat_id, "user", self._question)
        self._store.append(
            self.chat_id,
            "assistant",
            answer,
            annotations=transcript_to_dict(transcript),
            usage=result.usage,
        )
        logger.info("Stored council turn in chat %s", self.chat_id)

        return SessionResult(chat_id=self.chat_id, transcript=transcript, judge=result, member_usage=usage)

    async def ask(
        self,
        question: str,
        members: Sequence[CouncilMember],
        judge_model: str,
        judge_prompt: str | None = None,
        chat_id: str | None = None,
        retry_failed: bool = False,
        on_council_update: CouncilCallback | None = None,
        on_judge_update: JudgeCallback | None = None,
    ) -> SessionResult:
        await self.convene(question, members, chat_id=chat_id, on_update=on_council_update)
        if retry_failed:
            await self.retry_failed()
        return await self.conclude(judge_model, judge_prompt, on_update=on_judge_update)
