"""Unit tests for ScoreLoader and the JSON score format."""

import json
from pathlib import Path

import pytest

from chordgrid.notation_models import BarlineType, GroupingMode, Note, TupletPosition
from chordgrid.score_loader import ScoreFormatError, ScoreLoader, load_score


def _document(*measures: dict, **extra: object) -> dict:
    return {"measures": list(measures), **extra}


def test_minimal_document_uses_defaults() -> None:
    score = ScoreLoader().parse(_document({"segments": [{"chord": "C", "notes": [4, 4, 4, 4]}]}))
    assert score.title == ""
    assert str(score.time_signature) == "4/4"
    assert score.time_signature.grouping_mode is GroupingMode.SPACE_BASED
    (measure,) = score.measures
    assert measure.barline is BarlineType.SINGLE
    assert measure.segments[0].notes == [Note(4)] * 4


def test_note_objects_map_their_flags() -> None:
    note = {
        "value": 8,
        "dotted": True,
        "tie_start": True,
        "leading_space": True,
        "forced_beam": True,
    }
    score = ScoreLoader().parse(_document({"segments": [{"chord": "A7", "notes": [note]}]}))
    parsed = score.measures[0].segments[0].notes[0]
    assert parsed == Note(
        8,
        dotted=True,
        tie_start=True,
        has_leading_space=True,
        forced_beam_through_tie=True,
    )


def test_tuplet_is_parsed() -> None:
    triplet = {"count": 3, "group": "t1", "position": "start"}
    quintuplet = {"count": 5, "group": "q", "ratio": [5, 4]}
    notes = [{"value": 8, "tuplet": triplet}, {"value": 16, "tuplet": quintuplet}]
    score = ScoreLoader().parse(_document({"segments": [{"chord": "C", "notes": notes}]}))
    first, second = score.measures[0].segments[0].notes
    assert first.tuplet.group_id == "t1"
    assert first.tuplet.position is TupletPosition.START
    assert first.tuplet.effective_ratio == (3, 2)
    assert second.tuplet.label == "5:4"


def test_measure_level_markings() -> None:
    measure = {
        "barline": ":||",
        "repeat_start": True,
        "repeat_count": 3,
        "line_break": True,
        "time_signature": "6/8",
        "grouping_mode": "auto-beam",
        "volta_start": {"numbers": [1, 2]},
        "volta_end": {"numbers": [1, 2], "text": "1-2.", "closed": False},
        "segments": [],
    }
    score = ScoreLoader().parse(_document(measure, title="Waltz"))
    parsed = score.measures[0]
    assert score.title == "Waltz"
    assert parsed.barline is BarlineType.REPEAT_END
    assert parsed.is_repeat_start and parsed.is_line_break
    assert parsed.repeat_count == 3
    assert str(parsed.time_signature) == "6/8"
    assert parsed.time_signature.grouping_mode is GroupingMode.AUTO_BEAM
    assert parsed.volta_start.text == "1,2."
    assert parsed.volta_end.is_closed is False


@pytest.mark.parametrize(
    ("document", "message"),
    [
        ({}, "missing 'measures'"),
        (_document(time_signature="4-4"), "invalid time signature"),
        (_document(time_signature="3/5"), "invalid time signature"),
        (_document(grouping_mode="swing"), "unknown grouping mode"),
        (_document({"barline": "|||"}), "unknown barline"),
        (_document({"segments": [{"notes": [12]}]}), "unknown note value"),
        (_document({"segments": [{"notes": [{"value": 8, "tuplet": {"count": 1}}]}]}), "count"),
        (_document({"repeat_count": 0}), "repeat_count"),
    ],
)
def test_malformed_documents_are_rejected(document: dict, message: str) -> None:
    with pytest.raises(ScoreFormatError, match=message):
        ScoreLoader().parse(document)


def test_format_error_is_a_value_error() -> None:
    assert issubclass(ScoreFormatError, ValueError)


def test_error_names_the_location() -> None:
    document = _document({}, {"segments": [{"notes": [4, "x"]}]})
    with pytest.raises(ScoreFormatError, match="measure 2, segment 1, note 2"):
        ScoreLoader().parse(document)


def test_load_reads_a_file(tmp_path: Path) -> None:
    path = tmp_path / "blues.json"
    path.write_text(json.dumps(_document({"segments": [{"chord": "A7", "notes": [2, 2]}]})))
    score = load_score(path)
    assert score.measures[0].segments[0].chord == "A7"


def test_load_rejects_invalid_json(tmp_path: Path) -> None:
    path = tmp_path / "broken.json"
    path.write_text("{not json")
    with pytest.raises(ScoreFormatError, match="invalid JSON"):
        load_score(path)


@pytest.mark.parametrize("value", [8.0, True, "8"])
def test_note_value_must_be_an_integer(value: object) -> None:
    document = _document({"segments": [{"notes": [{"value": value}]}]})
    with pytest.raises(ScoreFormatError, match="measure 1, segment 1, note 1: unknown note value"):
        ScoreLoader().parse(document)


def test_bare_boolean_is_not_a_note_shorthand() -> None:
    with pytest.raises(ScoreFormatError, match="note 1"):
        ScoreLoader().parse(_document({"segments": [{"notes": [True]}]}))


def test_flags_must_be_booleans() -> None:
    document = _document({"segments": [{"notes": [{"value": 4, "dotted": "yes"}]}]})
    with pytest.raises(ScoreFormatError, match="dotted"):
        ScoreLoader().parse(document)


def test_unknown_keys_are_rejected() -> None:
    with pytest.raises(ScoreFormatError, match="measure 1"):
        ScoreLoader().parse(_document({"segments": [], "bars": 2}))


def test_strum_markings_and_repeat_measures() -> None:
    notes = [{"value": 8, "pick": "u"}, {"value": 8, "finger": "pu"}, 4]
    score = ScoreLoader().parse(
        _document(
            {"segments": [{"chord": "G", "notes": notes}]},
            {"repeat": True, "source": "%", "segments": [{"chord": "G", "notes": [2, 2]}]},
        )
    )
    first, second, third = score.measures[0].segments[0].notes
    assert first.pick_direction == "up"
    assert second.finger_symbol == "pu"
    assert third.pick_direction is None and third.finger_symbol is None
    assert score.measures[1].is_repeat
    assert not score.measures[0].is_repeat


@pytest.mark.parametrize(
    ("note", "message"),
    [
        ({"value": 8, "pick": "x"}, "unknown pick direction"),
        ({"value": 8, "finger": "zz"}, "unknown finger symbol"),
        ({"value": 8, "tuplet": {"count": 3, "group": "t", "ratio": [3, 0]}}, "tuplet ratio"),
    ],
)
def test_malformed_strum_and_tuplet_fields(note: dict, message: str) -> None:
    with pytest.raises(ScoreFormatError, match=message):
        ScoreLoader().parse(_document({"segments": [{"notes": [note]}]}))
