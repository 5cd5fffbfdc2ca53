"""Best-effort extraction of structured payloads from untrusted model output.

Completion services are asked for JSON but routinely return prose, fenced
code blocks, or objects with the wrong keys. A single unparseable turn must
never abort a debate, so extraction degrades in three tiers:

1. strict: the text parses as a JSON object carrying the primary field;
2. loose: the object lacks the primary field, so the first string value
   longer than ``min_length`` is promoted into it;
3. placeholder: nothing usable, a fixed sentence naming the agent is used.

Text that is not JSON at all is taken verbatim as the primary field.
"""

import json
import logging
import re

from cabinet.models import Synthesis, SynthesisOption, Vote

logger = logging.getLogger(__name__)

MIN_CONTENT_LENGTH = 20
MAX_OPTIONS = 3

_FENCE_RE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL | re.IGNORECASE)
_CONSENSUS_LEVELS = ("strong", "moderate", "weak", "split")


def placeholder(agent_name: str) -> str:
    return f"{agent_name} did not provide a usable statement."


def _strip_fences(text: str) -> str:
    match = _FENCE_RE.match(text.strip())
    return match.group(1) if match else text.strip()


def _first_long_string(obj: dict, min_length: int) -> str | None:
    for value in obj.values():
        if isinstance(value, str) and len(value.strip()) > min_length:
            return value.strip()
    return None


def extract_payload(
    raw: str,
    agent_name: str,
    primary_field: str = "content",
    min_length: int = MIN_CONTENT_LENGTH,
) -> dict:
    """Parse raw model output into a dict that always has a non-empty primary field."""
    text = _strip_fences(raw or "")
    try:
        parsed = json.loads(text)
    except (json.JSONDecodeError, ValueError):
        parsed = None

    if not isinstance(parsed, dict):
        if text:
            logger.debug("%s returned non-JSON output, using raw text", agent_name)
            return {primary_field: text}
        return {primary_field: placeholder(agent_name)}

    value = parsed.get(primary_field)
    if isinstance(value, str) and value.strip():
        return parsed

    fallback = _first_long_string(parsed, min_length)
    if fallback is None:
        logger.debug("%s returned JSON without usable text, using placeholder", agent_name)
        fallback = placeholder(agent_name)
    return {**parsed, primary_field: fallback}


def parse_vote(value: object) -> Vote:
    """Normalize a free-form vote to the Vote enum. Anything unrecognized abstains."""
    if isinstance(value, str):
        try:
            return Vote(value.strip().lower())
        except ValueError:
            pass
    return Vote.ABSTAIN


def _as_text(value: object) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, list):
        return "; ".join(_as_text(v) for v in value if v)
    return str(value)


def _parse_option(raw: object) -> SynthesisOption | None:
    if isinstance(raw, str) and raw.strip():
        return SynthesisOption(title=raw.strip())
    if not isinstance(raw, dict):
        return None
    title = _as_text(raw.get("title") or raw.get("name"))
    if not title:
        return None
    supporters = raw.get("supporters") or []
    if isinstance(supporters, str):
        supporters = [s.strip() for s in supporters.split(",") if s.strip()]
    return SynthesisOption(
        title=title,
        description=_as_text(raw.get("description")),
        tradeoffs=_as_text(raw.get("tradeoffs")),
        supporters=[str(s) for s in supporters if s],
    )


def parse_synthesis(payload: dict) -> Synthesis:
    """Normalize a chair payload into a Synthesis, keeping at most three options."""
    consensus = _as_text(payload.get("consensus")).lower()
    if consensus not in _CONSENSUS_LEVELS:
        consensus = "split"

    raw_options = payload.get("options")
    options = []
    if isinstance(raw_options, list):
        options = [opt for opt in (_parse_option(o) for o in raw_options) if opt is not None]

    summary = _as_text(payload.get("summary")) or _as_text(payload.get("content"))
    return Synthesis(summary=summary, consensus=consensus, options=options[:MAX_OPTIONS])


def synthesis_to_dict(synthesis: Synthesis) -> dict:
    return {
        "summary": synthesis.summary,
        "consensus": synthesis.consensus,
        "options": [
            {
                "title": o.title,
                "description": o.description,
                "tradeoffs": o.tradeoffs,
                "supporters": list(o.supporters),
            }
            for o in synthesis.options
        ],
    }


def synthesis_from_json(content: str) -> Synthesis | None:
    """Decode a stored synthesis turn. Returns None when the content is not a synthesis payload."""
    try:
        payload = json.loads(content)
    except (json.JSONDecodeError, ValueError):
        return None
    if not isinstance(payload, dict):
        return None
    return parse_synthesis(payload)
