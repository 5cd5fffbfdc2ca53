"""Shared pytest fixtures."""

import asyncio
import json
from collections.abc import Callable
from pathlib import Path

import pytest

from cabinet.invoker import AgentInvoker
from cabinet.models import BriefContext, Completion, CompletionRequest, Minister
from cabinet.providers.base import CompletionProvider
from cabinet.store import InMemoryStore
from config.config_loader import (
    AppConfig,
    DefaultsConfig,
    PromptsConfig,
    ReputationConfig,
    TimeoutsConfig,
)


def make_minister(name: str, role: str, seat: int, model: str = "gpt-4o-mini", **kwargs) -> Minister:
    return Minister(
        id=name.lower().replace(" ", "-"),
        name=name,
        role=role,
        system_prompt=f"You are {name}.",
        model=model,
        seat_index=seat,
        **kwargs,
    )


def default_reply(request: CompletionRequest) -> str:
    """A well-formed JSON answer for whatever shape the request asks for."""
    speaker = request.system.removeprefix("You are ").rstrip(".")
    if "summary" in request.response_fields:
        return json.dumps({
            "summary": "The cabinet leans towards a cautious trial period.",
            "consensus": "moderate",
            "options": [
                {"title": "Trial run", "description": "Try it for a month", "tradeoffs": "Slow",
                 "supporters": ["Ethics"]},
                {"title": "Commit now", "description": "Go all in", "tradeoffs": "Risky"},
            ],
        })
    if "vote" in request.response_fields:
        return json.dumps({"content": f"{speaker} makes a considered statement on the brief.", "vote": "approve"})
    return json.dumps({"content": f"{speaker} answers a colleague at some length.", "responding_to": "Ethics"})


class ScriptedProvider(CompletionProvider):
    """Test double provider. Records every request and answers through ``reply``."""

    def __init__(
        self,
        provider_name: str = "openai",
        reply: Callable[[CompletionRequest], str] = default_reply,
        delay: float = 0.0,
    ) -> None:
        self._name = provider_name
        self._reply = reply
        self._delay = delay
        self.requests: list[CompletionRequest] = []

    def name(self) -> str:
        return self._name

    async def complete(self, request: CompletionRequest) -> Completion:
        self.requests.append(request)
        if self._delay:
            await asyncio.sleep(self._delay)
        return Completion(
            provider=self._name,
            model=request.model,
            text=self._reply(request),
            latency_sec=self._delay,
            token_count=10,
        )

    def prompts_for(self, speaker: str) -> list[str]:
        return [r.prompt for r in self.requests if r.system == f"You are {speaker}."]


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 0.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def sample_prompts_config() -> PromptsConfig:
    return PromptsConfig(
        opening="OPENING {name} ({role})\nGoals: {goals}\nValues: {values}\n{evidence}{interjection_block}",
        rebuttal="REBUTTAL {name}\nGoals: {goals}\nSo far:\n{previous_statements}\n{interjection_block}",
        cross_exam="CROSS {name}\nConstraints: {constraints}\nSo far:\n{previous_statements}\n{interjection_block}",
        closing="CLOSING {name}\nSo far:\n{previous_statements}\n{interjection_block}",
        synthesis="SYNTHESIS {name}\nTranscript:\n{transcript}\n{interjection_block}",
        interjection="USER SAYS: {interjection}\n",
    )


@pytest.fixture
def sample_defaults_config(tmp_path: Path) -> DefaultsConfig:
    return DefaultsConfig(
        budget_sec=120.0,
        parallel_opening=True,
        opening_concurrency=3,
        database=tmp_path / "cabinet.db",
        output_dir=tmp_path / "output",
    )


@pytest.fixture
def sample_app_config(sample_defaults_config: DefaultsConfig, sample_prompts_config: PromptsConfig) -> AppConfig:
    return AppConfig(
        defaults=sample_defaults_config,
        timeouts=TimeoutsConfig(),
        reputation=ReputationConfig(),
        prompts=sample_prompts_config,
        available_providers={"openai"},
    )


@pytest.fixture
def full_cabinet() -> list[Minister]:
    return [
        make_minister("Prime Minister", "Synthesizer", 0),
        make_minister("Productivity", "Productivity", 1),
        make_minister("Ethics", "Ethics", 2),
        make_minister("Economy", "Opportunity Cost", 3),
        make_minister("Opposition Leader", "Skeptic", 4),
    ]


@pytest.fixture
def store(full_cabinet: list[Minister]) -> InMemoryStore:
    s = InMemoryStore()
    for minister in full_cabinet:
        s.save_minister(minister)
    return s


@pytest.fixture
def sample_context() -> BriefContext:
    return BriefContext(
        goals="Decide whether to take the job offer in Lisbon.",
        constraints="Must decide within two weeks",
        values=["family", "growth"],
    )


@pytest.fixture
def brief(store: InMemoryStore, sample_context: BriefContext):
    return store.create_brief("Lisbon offer", sample_context)


@pytest.fixture
def provider() -> ScriptedProvider:
    return ScriptedProvider()


@pytest.fixture
def invoker(provider: ScriptedProvider) -> AgentInvoker:
    return AgentInvoker({"openai": provider})
