"""Unit tests for LayoutConfig validation and line packing."""

import pytest

from chordgrid.layout import LayoutConfig, pack_lines, required_measure_width
from chordgrid.notation_models import Measure, Note, Segment


def _eighths(count: int = 4, line_break: bool = False) -> Measure:
    return Measure(segments=[Segment("C", [Note(8)] * count)], is_line_break=line_break)


@pytest.mark.parametrize(
    "overrides",
    [
        {"stems_direction": "sideways"},
        {"measures_per_line": 0},
        {"line_width": 0},
        {"min_spacing": -1},
        {"max_placement_attempts": -5},
        {"strum_mode": "slap"},
        {"finger_language": "de"},
        {"measure_number_interval": 0},
    ],
)
def test_invalid_config_is_rejected(overrides: dict) -> None:
    with pytest.raises(ValueError):
        LayoutConfig(**overrides)


def test_line_height_adds_the_gap() -> None:
    assert LayoutConfig().line_height == 140.0


def test_required_width_sums_note_spacing_and_padding() -> None:
    assert required_measure_width(_eighths()) == 136.0


def test_required_width_counts_visible_gaps() -> None:
    spaced = Measure(
        segments=[
            Segment("C", [Note(8), Note(8, has_leading_space=True)]),
            Segment("G", [Note(4)], leading_space=True),
        ]
    )
    # 40 padding + 24 + 6 + 24 + 12 + 28
    assert required_measure_width(spaced) == 134.0


def test_chord_only_segment_gets_room() -> None:
    measure = Measure(segments=[Segment("Am7", []), Segment("D7", [Note(4)])])
    # 40 padding + 40 for the empty segment + 28
    assert required_measure_width(measure) == 108.0


def test_repeat_measure_packs_at_minimum_width_when_drawn_as_a_sign() -> None:
    busy = Measure(segments=[Segment("C", [Note(32)] * 16)], is_repeat=True)
    plain = pack_lines([busy], LayoutConfig())
    shown = pack_lines([busy], LayoutConfig(display_repeat_symbol=True))
    assert plain[0][0].width > 200.0
    assert shown[0][0].width == 200.0


def test_measures_per_line_caps_a_line() -> None:
    lines = pack_lines([_eighths() for _ in range(5)], LayoutConfig(measures_per_line=2))
    assert [len(line) for line in lines] == [2, 2, 1]
    assert [slot.pos_in_line for slot in lines[1]] == [0, 1]
    assert lines[2][0].line_index == 2


def test_line_break_flag_closes_the_line() -> None:
    measures = [_eighths(line_break=True), _eighths(), _eighths()]
    lines = pack_lines(measures, LayoutConfig())
    assert [[slot.measure_index for slot in line] for line in lines] == [[0], [1, 2]]


def test_width_overflow_wraps() -> None:
    lines = pack_lines([_eighths() for _ in range(4)], LayoutConfig(line_width=450))
    assert [len(line) for line in lines] == [2, 2]


def test_over_wide_measure_gets_its_own_line() -> None:
    wide = Measure(segments=[Segment("C", [Note(16)] * 16)])
    lines = pack_lines([_eighths(), wide, _eighths()], LayoutConfig(line_width=400))
    assert [[slot.measure_index for slot in line] for line in lines] == [[0], [1], [2]]
    assert lines[1][0].width == 456.0


def test_no_measures_no_lines() -> None:
    assert pack_lines([], LayoutConfig()) == []
