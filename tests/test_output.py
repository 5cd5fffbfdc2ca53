"""Tests for cabinet/output.py."""

from pathlib import Path

import pytest

from cabinet.models import (
    Brief,
    BriefContext,
    BriefStatus,
    DeliberationResult,
    Phase,
    Synthesis,
    SynthesisOption,
    Turn,
    Vote,
)
from cabinet.output import (
    _slug,
    print_ministers,
    print_models,
    print_synthesis,
    print_turn,
    render_markdown,
    save_to_file,
    vote_tally,
)


def test_slug_basic():
    assert _slug("Should I move to Lisbon?") == "should-i-move-to-lisbon"


def test_slug_max_len():
    assert len(_slug("a" * 100)) <= 40


def test_slug_special_chars():
    result = _slug("Job vs. Startup (2026)")
    assert "." not in result
    assert "(" not in result


def _turn(index, phase, content, speaker=None, vote=None, **kwargs) -> Turn:
    return Turn(
        brief_id="b1",
        index=index,
        phase=phase,
        content=content,
        speaker_id=speaker.lower() if speaker else None,
        speaker_name=speaker,
        vote=vote,
        model="gpt-4o-mini" if speaker else None,
        **kwargs,
    )


@pytest.fixture
def sample_result() -> DeliberationResult:
    brief = Brief(
        id="b1",
        title="Should I move to Lisbon?",
        context=BriefContext(goals="Decide on the Lisbon offer.", values=["family"]),
        status=BriefStatus.DONE,
    )
    transcript = [
        _turn(0, Phase.SYSTEM, "Cabinet session begins."),
        _turn(1, Phase.OPENING, "Take it.", "Productivity", Vote.APPROVE),
        _turn(2, Phase.OPENING, "Think of your family.", "Ethics", Vote.OPPOSE),
        _turn(3, Phase.INTERJECTION, "My partner can work remotely.", speaker=None),
        _turn(4, Phase.REBUTTAL, "That changes things.", "Ethics", has_interjection=True),
        _turn(5, Phase.CLOSING, "Fine, go.", "Ethics", Vote.APPROVE),
        _turn(6, Phase.SYNTHESIS, "{}", "Prime Minister", Vote.ABSTAIN),
    ]
    synthesis = Synthesis(
        summary="Move, with a trial period.",
        consensus="strong",
        options=[SynthesisOption("Trial move", "Six months first", "Moving costs", ["Ethics", "Productivity"])],
    )
    return DeliberationResult(
        brief=brief,
        transcript=transcript,
        synthesis=synthesis,
        phases_run=[Phase.OPENING, Phase.REBUTTAL, Phase.CLOSING, Phase.SYNTHESIS],
        total_duration_sec=42.0,
    )


def test_vote_tally_uses_latest_vote(sample_result):
    tally = vote_tally(sample_result.transcript)
    assert tally == {Vote.APPROVE: 2, Vote.ABSTAIN: 0, Vote.OPPOSE: 0}


def test_render_markdown_sections(sample_result):
    content = render_markdown(sample_result)
    assert content.startswith("# Cabinet Brief: Should I move to Lisbon?")
    assert "### Opening: Productivity (gpt-4o-mini)" in content
    assert "> **User:** My partner can work remotely." in content
    assert "*Cabinet session begins.*" in content
    assert "### Option 1: Trial move" in content
    assert "*Supporters:* Ethics, Productivity" in content
    assert "**Constraints:** none stated" in content


def test_render_markdown_without_synthesis(sample_result):
    sample_result.synthesis = None
    assert "*No synthesis was produced.*" in render_markdown(sample_result)


def test_save_to_file_creates_file(tmp_path: Path, sample_result):
    saved = save_to_file(sample_result, tmp_path / "output")
    assert saved.exists()
    assert saved.suffix == ".md"
    assert saved.name.endswith("_should-i-move-to-lisbon.md")


def test_save_to_file_creates_output_dir(tmp_path: Path, sample_result):
    output_dir = tmp_path / "nested" / "output"
    save_to_file(sample_result, output_dir)
    assert output_dir.exists()


def test_save_to_file_slug_override(tmp_path: Path, sample_result):
    saved = save_to_file(sample_result, tmp_path, slug_override="custom")
    assert saved.name.endswith("_custom.md")


def test_console_printers_do_not_raise(sample_result, full_cabinet, capsys):
    for turn in sample_result.transcript:
        print_turn(turn)
    print_synthesis(sample_result)
    print_ministers(full_cabinet)
    print_models()
    out = capsys.readouterr().out
    assert "Cabinet Synthesis" in out
    assert "Trial move" in out
