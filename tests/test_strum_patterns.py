"""Unit tests for pick-stroke and finger-symbol assignment."""

import pytest

from chordgrid.beam_analyzer import AnalyzedMeasure, BeamAnalyzer
from chordgrid.notation_models import Measure, Note, Segment, Tuplet, TupletPosition
from chordgrid.strum_patterns import (
    StrumPatternAssigner,
    detect_global_subdivision,
    normalize_finger_symbol,
)


def _analyze(*measures: list[Note]) -> list[AnalyzedMeasure]:
    analyzer = BeamAnalyzer()
    return [analyzer.analyze(Measure(segments=[Segment("C", notes)])) for notes in measures]


def _values(value: int, count: int) -> list[Note]:
    return [Note(value) for _ in range(count)]


def _directions(*measures: list[Note]) -> list[str]:
    return [stroke.direction for stroke in StrumPatternAssigner("pick").assign(_analyze(*measures))]


def _symbols(*measures: list[Note], language: str = "en") -> list[str]:
    strokes = StrumPatternAssigner("finger", language).assign(_analyze(*measures))
    return [stroke.symbol for stroke in strokes]


# ── Finger symbols ─────────────────────────────────────────────────────────────

@pytest.mark.parametrize(
    "symbol, english, french",
    [
        ("t", "td", "pd"),
        ("p", "td", "pd"),
        ("tu", "tu", "pu"),
        ("h", "hd", "md"),
        ("m", "hd", "md"),
        ("mu", "hu", "mu"),
    ],
)
def test_finger_symbols_normalize_to_long_form(symbol: str, english: str, french: str) -> None:
    assert normalize_finger_symbol(symbol) == english
    assert normalize_finger_symbol(symbol, "fr") == french


def test_unknown_finger_symbol_is_rejected() -> None:
    with pytest.raises(ValueError, match="unknown finger symbol 'x'"):
        normalize_finger_symbol("x")


def test_assigner_rejects_unknown_mode_and_language() -> None:
    with pytest.raises(ValueError, match="strum mode"):
        StrumPatternAssigner("slap")
    with pytest.raises(ValueError, match="finger language"):
        StrumPatternAssigner("finger", "de")


# ── Global subdivision ─────────────────────────────────────────────────────────

def test_global_subdivision_defaults_to_eighths() -> None:
    assert detect_global_subdivision(_analyze(_values(4, 4))) == 8


def test_global_subdivision_ignores_rests() -> None:
    notes = [Note(16, is_rest=True), Note(16), *_values(8, 7)]
    assert detect_global_subdivision(_analyze(notes[:1] + _values(8, 7))) == 8
    assert detect_global_subdivision(_analyze(notes)) == 16


def test_tuplet_counts_with_the_shortest_value_of_its_group() -> None:
    triplet = [
        Note(8, tuplet=Tuplet(3, "t1", TupletPosition.START)),
        Note(8, is_rest=True, tuplet=Tuplet(3, "t1")),
        Note(16, is_rest=True, tuplet=Tuplet(3, "t1", TupletPosition.END)),
    ]
    assert detect_global_subdivision(_analyze(triplet + _values(4, 3))) == 16


# ── Pick mode ──────────────────────────────────────────────────────────────────

def test_eighths_alternate_down_and_up() -> None:
    assert _directions(_values(8, 8)) == ["down", "up"] * 4


def test_quarter_notes_stay_on_the_down_stroke() -> None:
    notes = [Note(4), Note(8), Note(8), Note(4), Note(4)]
    assert _directions(notes) == ["down", "down", "up", "down", "down"]


def test_sixteenths_switch_the_grid_to_sixteenths() -> None:
    notes = [Note(8), Note(16), Note(16), Note(4), Note(2)]
    assert _directions(notes) == ["down", "down", "up", "down", "down"]


def test_dotted_values_advance_by_one_and_a_half() -> None:
    notes = [Note(4, dotted=True), Note(8), Note(2)]
    assert _directions(notes) == ["down", "up", "down"]


def test_rests_and_tied_continuations_take_no_stroke() -> None:
    notes = [
        Note(8, is_rest=True),
        Note(8),
        Note(8, tie_start=True),
        Note(8, tie_end=True),
        Note(2),
    ]
    strokes = StrumPatternAssigner().assign(_analyze(notes))

    assert [(s.reference.note_index, s.direction) for s in strokes] == [
        (1, "up"),
        (2, "down"),
        (4, "down"),
    ]


def test_timeline_runs_across_measures() -> None:
    first = [Note(4), Note(4), Note(4), Note(8)]
    strokes = StrumPatternAssigner().assign(_analyze(first, [Note(8)]))

    assert strokes[-1].measure_index == 1
    assert strokes[-1].direction == "up"


def test_beat_of_thirty_seconds_is_counted_in_its_own_step() -> None:
    notes = [*_values(32, 8), Note(4), Note(4), Note(4)]
    assert _directions(notes) == ["down", "up"] * 4 + ["down"] * 3


def test_explicit_pick_direction_wins() -> None:
    notes = [Note(8, pick_direction="up"), Note(8), Note(4), Note(2)]
    assert _directions(notes) == ["up", "up", "down", "down"]


# ── Finger mode ────────────────────────────────────────────────────────────────

def test_finger_pattern_on_eighths() -> None:
    assert _symbols(_values(8, 4)) == ["td", "tu", "hd", "tu"]


def test_finger_pattern_in_french() -> None:
    assert _symbols(_values(8, 4), language="fr") == ["pd", "pu", "md", "pu"]


def test_finger_pattern_restarts_each_beat_of_sixteenths() -> None:
    assert _symbols(_values(16, 8)) == ["td", "tu", "hd", "tu"] * 2


def test_finger_stroke_direction_follows_its_symbol() -> None:
    strokes = StrumPatternAssigner("finger").assign(_analyze(_values(8, 2)))
    assert [s.direction for s in strokes] == ["down", "up"]


def test_explicit_finger_symbol_wins_and_is_normalized() -> None:
    notes = [Note(8, finger_symbol="m"), Note(8), Note(4)]
    assert _symbols(notes) == ["hd", "tu", "hd"]
