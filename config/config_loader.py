"""Load settings.yaml into typed dataclasses. Detects available providers at startup."""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml

logger = logging.getLogger(__name__)

_SETTINGS_PATH = Path(__file__).parent / "settings.yaml"

_PHASES = ("opening", "rebuttal", "cross_exam", "closing", "synthesis")


@dataclass
class ProviderConfig:
    name: str                    # sdk key: "openai", "anthropic", "gemini", "xai"
    api_key_env: str
    base_url: str | None = None


@dataclass
class TimeoutsConfig:
    opening: float = 12.0
    rebuttal: float = 10.0
    cross_exam: float = 12.0
    closing: float = 10.0
    synthesis: float = 20.0
    grace: float = 2.0           # how long an in-flight call may outlive the session budget

    def for_phase(self, phase: str) -> float:
        return float(getattr(self, getattr(phase, "value", phase), self.opening))


@dataclass
class ReputationConfig:
    warning_avg: float = 2.5
    probation_warnings: int = 2
    suspension_avg: float = 2.0
    consecutive_low: int = 3
    low_rating: int = 2          # ratings at or below this count towards the streak
    min_sessions: int = 5


@dataclass
class PromptsConfig:
    opening: str
    rebuttal: str
    cross_exam: str
    closing: str
    synthesis: str
    interjection: str = "THE USER INTERJECTS:\n{interjection}\n"


@dataclass
class MinisterSeed:
    name: str
    role: str
    system_prompt: str
    model: str
    temperature: float = 0.7


@dataclass
class DefaultsConfig:
    budget_sec: float = 120.0
    extension_window_sec: float = 0.0
    parallel_opening: bool = True
    opening_concurrency: int = 3
    max_panel: int = 5
    database: Path = Path("./cabinet.db")
    output_dir: Path = Path("./output")
    token_budgets: dict[str, int] = field(default_factory=dict)

    def token_budget(self, phase: str) -> int:
        return int(self.token_budgets.get(getattr(phase, "value", phase), 300))


@dataclass
class AppConfig:
    defaults: DefaultsConfig
    timeouts: TimeoutsConfig
    reputation: ReputationConfig
    prompts: PromptsConfig
    providers: dict[str, ProviderConfig] = field(default_factory=dict)
    cabinet: list[MinisterSeed] = field(default_factory=list)
    available_providers: set[str] = field(default_factory=set)


def _load_defaults(raw: dict) -> DefaultsConfig:
    return DefaultsConfig(
        budget_sec=float(raw.get("budget_sec", 120)),
        extension_window_sec=float(raw.get("extension_window_sec", 0)),
        parallel_opening=bool(raw.get("parallel_opening", True)),
        opening_concurrency=int(raw.get("opening_concurrency", 3)),
        max_panel=int(raw.get("max_panel", 5)),
        database=Path(raw.get("database", "./cabinet.db")),
        output_dir=Path(raw.get("output_dir", "./output")),
        token_budgets={k: int(v) for k, v in (raw.get("token_budgets") or {}).items()},
    )


def _load_timeouts(raw: dict) -> TimeoutsConfig:
    values = {phase: float(raw[phase]) for phase in _PHASES if phase in raw}
    if "grace" in raw:
        values["grace"] = float(raw["grace"])
    return TimeoutsConfig(**values)


def _load_reputation(raw: dict) -> ReputationConfig:
    return ReputationConfig(
        warning_avg=float(raw.get("warning_avg", 2.5)),
        probation_warnings=int(raw.get("probation_warnings", 2)),
        suspension_avg=float(raw.get("suspension_avg", 2.0)),
        consecutive_low=int(raw.get("consecutive_low", 3)),
        low_rating=int(raw.get("low_rating", 2)),
        min_sessions=int(raw.get("min_sessions", 5)),
    )


def load_config(settings_path: Path = _SETTINGS_PATH) -> AppConfig:
    """Load and validate configuration from settings.yaml.

    Raises FileNotFoundError if settings file missing.
    Logs missing API keys but does not raise; callers check
    available_providers.
    """
    if not settings_path.exists():
        raise FileNotFoundError(f"Settings file not found: {settings_path}")

    with settings_path.open("r", encoding="utf-8") as f:
        raw = yaml.safe_load(f)

    prompts_raw = raw["prompts"]
    prompts = PromptsConfig(
        opening=prompts_raw["opening"],
        rebuttal=prompts_raw["rebuttal"],
        cross_exam=prompts_raw["cross_exam"],
        closing=prompts_raw["closing"],
        synthesis=prompts_raw["synthesis"],
        **({"interjection": prompts_raw["interjection"]} if "interjection" in prompts_raw else {}),
    )

    cabinet = [
        MinisterSeed(
            name=str(m["name"]),
            role=str(m["role"]),
            system_prompt=str(m["system_prompt"]),
            model=str(m["model"]),
            temperature=float(m.get("temperature", 0.7)),
        )
        for m in raw.get("cabinet", [])
    ]

    providers: dict[str, ProviderConfig] = {}
    available_providers: set[str] = set()

    for provider_name, provider_raw in raw.get("providers", {}).items():
        providers[provider_name] = ProviderConfig(
            name=provider_name,
            api_key_env=provider_raw["api_key_env"],
            base_url=provider_raw.get("base_url"),
        )

        api_key = os.environ.get(provider_raw["api_key_env"], "").strip()
        if api_key:
            available_providers.add(provider_name)
            logger.info("Provider available: %s", provider_name)
        else:
            logger.info(
                "Provider skipped (no API key): %s, set %s in .env",
                provider_name,
                provider_raw["api_key_env"],
            )

    return AppConfig(
        defaults=_load_defaults(raw.get("defaults") or {}),
        timeouts=_load_timeouts(raw.get("timeouts") or {}),
        reputation=_load_reputation(raw.get("reputation") or {}),
        prompts=prompts,
        providers=providers,
        cabinet=cabinet,
        available_providers=available_providers,
    )
