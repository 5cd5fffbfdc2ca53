"""Static model capability table and model catalog.

Parameter dialects differ per model family: the gpt-5 and o-series reasoning
models reject ``temperature`` and take ``max_completion_tokens``, gemini takes
``max_output_tokens``. Everything is looked up here by model-id prefix so
providers never branch on model names themselves.
"""

from dataclasses import dataclass
from enum import Enum


class TokenParam(str, Enum):
    MAX_TOKENS = "max_tokens"
    MAX_COMPLETION_TOKENS = "max_completion_tokens"
    MAX_OUTPUT_TOKENS = "max_output_tokens"


@dataclass(frozen=True)
class ModelCapabilities:
    provider: str                # sdk key in settings.yaml "providers"
    supports_temperature: bool = True
    token_param: TokenParam = TokenParam.MAX_TOKENS
    json_mode: bool = False      # native JSON response format


_OPENAI_CHAT = ModelCapabilities("openai", json_mode=True)
_OPENAI_REASONING = ModelCapabilities(
    "openai",
    supports_temperature=False,
    token_param=TokenParam.MAX_COMPLETION_TOKENS,
    json_mode=True,
)

# Longest matching prefix wins.
CAPABILITIES: dict[str, ModelCapabilities] = {
    "gpt-5": _OPENAI_REASONING,
    "o1": _OPENAI_REASONING,
    "o3": _OPENAI_REASONING,
    "o4": _OPENAI_REASONING,
    "gpt-": _OPENAI_CHAT,
    "claude-": ModelCapabilities("anthropic"),
    "gemini-": ModelCapabilities("gemini", token_param=TokenParam.MAX_OUTPUT_TOKENS, json_mode=True),
    "grok-": ModelCapabilities("xai", json_mode=True),
}

DEFAULT_CAPABILITIES = _OPENAI_CHAT


def capabilities_for(model_id: str) -> ModelCapabilities:
    """Return the parameter dialect for a model id. Unknown ids get the OpenAI chat dialect."""
    matches = [prefix for prefix in CAPABILITIES if model_id.startswith(prefix)]
    if not matches:
        return DEFAULT_CAPABILITIES
    return CAPABILITIES[max(matches, key=len)]


@dataclass(frozen=True)
class ModelOption:
    id: str
    name: str
    description: str
    input_cost: str
    output_cost: str
    cost_tier: str               # "low", "medium", "high"


DEFAULT_MODEL = "gpt-4o-mini"

MODEL_CATALOG: tuple[ModelOption, ...] = (
    ModelOption("gpt-4o-mini", "GPT-4o Mini", "Fast and cost-effective, great for most tasks",
                "$0.15/1M", "$0.60/1M", "low"),
    ModelOption("gpt-4o", "GPT-4o", "Most capable GPT-4 model", "$2.50/1M", "$10.00/1M", "medium"),
    ModelOption("gpt-5-nano", "GPT-5 Nano", "Ultra-fast and cheapest GPT-5 variant",
                "$0.05/1M", "$0.40/1M", "low"),
    ModelOption("gpt-5-mini", "GPT-5 Mini", "Great balance of speed and GPT-5 capability",
                "$0.25/1M", "$2.00/1M", "low"),
    ModelOption("gpt-5", "GPT-5", "Full GPT-5 capabilities", "$1.25/1M", "$10.00/1M", "medium"),
    ModelOption("claude-sonnet-4-5", "Claude Sonnet 4.5", "Balanced Anthropic model",
                "$3.00/1M", "$15.00/1M", "medium"),
    ModelOption("gemini-2.5-flash", "Gemini 2.5 Flash", "Fast Google model with large context",
                "$0.30/1M", "$2.50/1M", "low"),
    ModelOption("grok-4", "Grok 4", "xAI flagship model", "$3.00/1M", "$15.00/1M", "high"),
)


def get_model(model_id: str) -> ModelOption | None:
    return next((m for m in MODEL_CATALOG if m.id == model_id), None)
