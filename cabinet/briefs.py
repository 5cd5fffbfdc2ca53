"""Brief files: markdown body for goals, YAML frontmatter for the rest."""

from pathlib import Path

import frontmatter

from cabinet.models import BriefContext


def parse_values(text: str | None) -> list[str]:
    """Split a comma-separated values string, dropping blanks."""
    if not text:
        return []
    return [v.strip() for v in text.split(",") if v.strip()]


def _as_list(value: object, split: bool = True) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        if not split:
            return [value.strip()] if value.strip() else []
        return parse_values(value)
    return [str(v).strip() for v in value if str(v).strip()]


def parse_brief_file(file_path: Path) -> tuple[str, BriefContext]:
    """Parse a brief file.

    Frontmatter keys: title, constraints, values (list or comma string),
    evidence (list). The body is the goals text. Without a title the file
    stem is used.

    Returns:
        (title, context)

    Raises:
        ValueError: If the body is empty.
    """
    post = frontmatter.load(str(file_path))
    meta = dict(post.metadata)
    goals = post.content.strip()
    if not goals:
        raise ValueError(f"Brief file has no goals text: {file_path}")

    title = str(meta.get("title") or file_path.stem.replace("_", " ").replace("-", " ").strip())
    context = BriefContext(
        goals=goals,
        constraints=str(meta.get("constraints") or ""),
        values=_as_list(meta.get("values")),
        evidence=_as_list(meta.get("evidence"), split=False),
    )
    return title, context
