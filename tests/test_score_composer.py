"""Integration tests for ScoreComposer: glyph choice, line layout, ties and voltas."""

import logging

import pytest

from chordgrid.layout import LayoutConfig
from chordgrid.notation_models import (
    BarlineType,
    GroupingMode,
    Measure,
    Note,
    Score,
    Segment,
    TimeSignature,
    Tuplet,
    VoltaInfo,
)
from chordgrid.render_backends import CurveOp, HtmlBackend, LineOp, TextOp
from chordgrid.score_composer import ScoreComposer


def _score(*measures: Measure, title: str = "") -> Score:
    return Score(title=title, time_signature=TimeSignature(), measures=list(measures))


def _measure(*notes: Note, chord: str = "C", **kwargs: object) -> Measure:
    return Measure(segments=[Segment(chord, list(notes))], **kwargs)


def _roles(composer: ScoreComposer, role: str) -> int:
    return len(composer.backend.ops_with_role(role))


# ── Beams and flags ───────────────────────────────────────────────────────────

def test_four_eighths_share_one_beam() -> None:
    composer = ScoreComposer()
    composer.compose(_score(_measure(*[Note(8)] * 4)))
    assert _roles(composer, "beam") == 1
    assert _roles(composer, "flag") == 0
    assert _roles(composer, "stem") == 4


def test_lone_eighth_gets_a_flag() -> None:
    composer = ScoreComposer()
    composer.compose(_score(_measure(Note(4), Note(8), Note(4))))
    assert _roles(composer, "flag") == 1
    assert _roles(composer, "beam") == 0


def test_dotted_eighth_sixteenth_has_beam_and_beamlet() -> None:
    composer = ScoreComposer()
    composer.compose(_score(_measure(Note(8, dotted=True), Note(16))))
    assert _roles(composer, "beam") == 1
    assert _roles(composer, "beamlet") == 1
    assert _roles(composer, "dot") == 1


def test_four_sixteenths_have_two_beams() -> None:
    composer = ScoreComposer()
    composer.compose(_score(_measure(*[Note(16)] * 4)))
    assert _roles(composer, "beam") == 2


def test_whole_note_has_no_stem() -> None:
    composer = ScoreComposer()
    composer.compose(_score(_measure(Note(1))))
    assert _roles(composer, "stem") == 0
    assert _roles(composer, "note-head") == 1


@pytest.mark.parametrize(("direction", "pointing_down"), [("up", False), ("down", True)])
def test_stem_direction_follows_config(direction: str, pointing_down: bool) -> None:
    composer = ScoreComposer(LayoutConfig(stems_direction=direction))
    composer.compose(_score(_measure(Note(4), Note(4))))
    stems = composer.backend.ops_with_role("stem")
    assert stems
    assert all(isinstance(op, LineOp) and (op.y2 > op.y1) == pointing_down for op in stems)


def test_triplet_gets_bracket_and_number() -> None:
    triplet = Tuplet(count=3, group_id="t1")
    composer = ScoreComposer()
    composed = composer.compose(_score(_measure(*[Note(8, tuplet=triplet)] * 3)))
    assert _roles(composer, "tuplet-bracket") == 3
    assert _roles(composer, "tuplet-number") == 1
    assert len(composed.analyses[0].beam_groups) == 1


# ── Lines and canvas ──────────────────────────────────────────────────────────

def test_measures_wrap_onto_lines() -> None:
    composer = ScoreComposer(LayoutConfig(measures_per_line=2))
    composed = composer.compose(_score(*[_measure(*[Note(4)] * 4) for _ in range(4)]))
    assert composed.line_count == 2
    assert [p.line_index for p in composed.placements] == [0, 0, 1, 1]
    assert composed.placements[2].x == 20.0
    assert composed.placements[2].y == composed.placements[0].y + 140.0


def test_empty_score_has_margin_only_canvas() -> None:
    composed = ScoreComposer().compose(_score())
    assert (composed.width, composed.height) == (20.0, 20.0)
    assert composed.line_count == 0


def test_canvas_covers_every_line() -> None:
    composer = ScoreComposer(LayoutConfig(measures_per_line=1))
    composed = composer.compose(_score(_measure(Note(4)), _measure(Note(4))))
    assert composed.height > composed.placements[1].y + 120.0
    assert composed.width >= composed.placements[0].right


def test_registry_is_empty_after_compose() -> None:
    composer = ScoreComposer()
    composer.compose(_score(_measure(Note(8), Note(8), barline=BarlineType.DOUBLE)))
    assert len(composer.registry) == 0


def test_time_signature_shown_at_start_and_on_change() -> None:
    composer = ScoreComposer()
    waltz = TimeSignature(3, 4)
    composer.compose(
        _score(
            _measure(Note(2)),
            _measure(Note(2)),
            _measure(Note(2), Note(4), time_signature=waltz),
            _measure(Note(2), Note(4)),
        )
    )
    # numerator and denominator per shown signature
    assert _roles(composer, "time-signature") == 4


# ── Text ──────────────────────────────────────────────────────────────────────

def test_chord_and_repeat_count_appear_in_output() -> None:
    measure = _measure(
        Note(2),
        Note(2),
        chord="A7",
        barline=BarlineType.REPEAT_END,
        repeat_count=3,
    )
    composed = ScoreComposer().compose(_score(measure))
    assert "A7" in composed.content
    assert ">x3<" in composed.content


def test_repeat_start_draws_dots() -> None:
    composer = ScoreComposer()
    composer.compose(_score(_measure(Note(1), is_repeat_start=True)))
    assert _roles(composer, "repeat-dot") == 2


def test_html_backend_gets_title() -> None:
    composer = ScoreComposer(backend=HtmlBackend())
    composed = composer.compose(_score(_measure(Note(4)), title="Blues"))
    assert "<h1>Blues</h1>" in composed.content
    composed = composer.compose(_score(_measure(Note(4)), title="Blues"), title="Override")
    assert "<h1>Override</h1>" in composed.content


# ── Ties ──────────────────────────────────────────────────────────────────────

def test_tie_across_line_break_is_split_on_measure_edges() -> None:
    composer = ScoreComposer(LayoutConfig(measures_per_line=1))
    composed = composer.compose(
        _score(_measure(Note(2), Note(2, tie_start=True)), _measure(Note(1, tie_end=True)))
    )
    to_void, from_void = composed.tie_curves
    assert (to_void.kind, from_void.kind) == ("to-void", "from-void")
    assert to_void.end_x == composed.placements[0].right
    assert from_void.start_x == composed.placements[1].x == 20.0
    assert len(composer.pending_ties) == 0
    assert _roles(composer, "tie-to-void") == 1
    assert _roles(composer, "tie-from-void") == 1


def test_same_line_cross_measure_tie_is_cubic() -> None:
    composer = ScoreComposer()
    composer.compose(
        _score(_measure(Note(2), Note(2, tie_start=True)), _measure(Note(1, tie_end=True)))
    )
    (tie,) = composer.backend.ops_with_role("tie")
    assert isinstance(tie, CurveOp)
    assert len(tie.controls) == 2


def test_ties_sit_opposite_the_stems() -> None:
    composer = ScoreComposer()
    composer.compose(_score(_measure(Note(4, tie_start=True), Note(4, tie_end=True))))
    (tie,) = composer.backend.ops_with_role("tie")
    # stems up: the curve bows below its anchors
    assert tie.controls[0][1] > tie.start[1]


def test_unmatched_tie_is_reported(caplog: pytest.LogCaptureFixture) -> None:
    with caplog.at_level(logging.WARNING, logger="chordgrid.ties"):
        composed = ScoreComposer().compose(_score(_measure(Note(4, tie_start=True))))
    assert composed.tie_curves == []
    assert "Unmatched tie start" in caplog.text


# ── Voltas ────────────────────────────────────────────────────────────────────

def test_volta_across_two_lines() -> None:
    ending = VoltaInfo(numbers=(1,), text="1.")
    composer = ScoreComposer(LayoutConfig(measures_per_line=2))
    composed = composer.compose(
        _score(
            _measure(Note(1)),
            _measure(Note(1), volta_start=ending),
            _measure(Note(1), volta_end=ending, barline=BarlineType.REPEAT_END),
        )
    )
    assert len(composed.volta_segments) == 2
    assert _roles(composer, "volta-text") == 1
    first, second = composed.volta_segments
    assert first.start_x == composed.placements[0].right
    assert second.start_x == composed.placements[2].x


def test_grouping_mode_override_does_not_repeat_the_signature() -> None:
    composer = ScoreComposer()
    binary = TimeSignature(4, 4, GroupingMode.BINARY)
    composer.compose(_score(_measure(Note(1)), _measure(Note(1), time_signature=binary)))
    assert _roles(composer, "time-signature") == 2


# ── Chords ────────────────────────────────────────────────────────────────────

def test_chord_only_segment_keeps_its_chord() -> None:
    measure = Measure(segments=[Segment("Am7", []), Segment("D7", [Note(2), Note(2)])])
    composer = ScoreComposer()
    composer.compose(_score(measure))

    chords = [op.text for op in composer.backend.ops_with_role("chord")]
    assert chords == ["Am7", "D7"]


def _tuplet_number_y(spacing: float) -> float:
    triplet = Tuplet(count=3, group_id="t1")
    composer = ScoreComposer(LayoutConfig(chord_tuplet_vertical_spacing=spacing))
    composed = composer.compose(
        _score(_measure(*[Note(8, tuplet=triplet)] * 3, chord="Cmaj7#11"))
    )
    (number,) = composer.backend.ops_with_role("tuplet-number")
    assert isinstance(number, TextOp)
    return number.y - composed.placements[0].y


def test_tuplet_number_keeps_clear_of_the_chord_above() -> None:
    assert _tuplet_number_y(0.0) == 40.0
    assert _tuplet_number_y(12.0) == 42.0


# ── Repeat measures ───────────────────────────────────────────────────────────

def _with_repeat_measure() -> Score:
    quarters = [Note(4)] * 4
    return _score(
        _measure(*quarters, chord="G"),
        Measure(segments=[Segment("G", list(quarters))], is_repeat=True),
    )


def test_repeat_measure_drawn_as_a_sign() -> None:
    composer = ScoreComposer(LayoutConfig(display_repeat_symbol=True))
    composed = composer.compose(_with_repeat_measure())

    assert _roles(composer, "repeat-measure") == 1
    assert _roles(composer, "note-head") == 4
    assert _roles(composer, "chord") == 2
    assert composed.placements[1].width == 200.0


def test_repeat_measure_keeps_its_rhythm_by_default() -> None:
    composer = ScoreComposer()
    composer.compose(_with_repeat_measure())

    assert _roles(composer, "repeat-measure") == 0
    assert _roles(composer, "note-head") == 8


# ── Teaching marks ────────────────────────────────────────────────────────────

def test_measure_numbers_follow_start_and_interval() -> None:
    config = LayoutConfig(measure_numbers=True, measure_number_start=5, measure_number_interval=2)
    composer = ScoreComposer(config)
    composer.compose(_score(*[_measure(Note(1)) for _ in range(4)]))

    numbers = [op.text for op in composer.backend.ops_with_role("measure-number")]
    assert numbers == ["5", "7"]


def test_counting_labels_every_note() -> None:
    composer = ScoreComposer(LayoutConfig(counting=True))
    composer.compose(_score(_measure(*[Note(8)] * 8)))

    labels = [op.text for op in composer.backend.ops_with_role("counting")]
    assert labels == ["1", "&", "2", "&", "3", "&", "4", "&"]


def test_pick_strokes_drawn_for_each_attack() -> None:
    composer = ScoreComposer(LayoutConfig(strum_mode="pick"))
    composed = composer.compose(_score(_measure(*[Note(8)] * 4, Note(2))))

    assert [stroke.direction for stroke in composed.strokes] == ["down", "up", "down", "up", "down"]
    # three segments per down bow, two per up bow
    assert _roles(composer, "pick-stroke") == 3 + 2 + 3 + 2 + 3
    assert _roles(composer, "finger-symbol") == 0


def test_finger_symbols_drawn_in_the_chosen_language() -> None:
    composer = ScoreComposer(LayoutConfig(strum_mode="finger", finger_language="fr"))
    composer.compose(_score(_measure(*[Note(8)] * 4, Note(2))))

    symbols = [op.text for op in composer.backend.ops_with_role("finger-symbol")]
    assert symbols == ["pd", "pu", "md", "pu", "pd"]
    assert _roles(composer, "pick-stroke") == 0


def test_no_strokes_without_a_strum_mode() -> None:
    composer = ScoreComposer()
    composed = composer.compose(_score(_measure(*[Note(8)] * 4)))
    assert composed.strokes == []
    assert _roles(composer, "pick-stroke") == 0
