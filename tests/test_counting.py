"""Unit tests for beat counting labels."""

from chordgrid.beam_analyzer import BeamAnalyzer
from chordgrid.counting import CountingLabel, count_measure
from chordgrid.notation_models import Measure, Note, Segment, TimeSignature


def _count(notes: list[Note], signature: TimeSignature | None = None) -> list[CountingLabel]:
    signature = signature or TimeSignature()
    analysis = BeamAnalyzer(signature).analyze(Measure(segments=[Segment("C", notes)]))
    return count_measure(analysis, signature)


def _texts(labels: list[CountingLabel]) -> list[str]:
    return [label.text for label in labels]


def test_quarters_count_beat_numbers() -> None:
    labels = _count([Note(4) for _ in range(4)])

    assert _texts(labels) == ["1", "2", "3", "4"]
    assert {label.size for label in labels} == {"t"}


def test_eighths_count_with_and() -> None:
    labels = _count([Note(8) for _ in range(8)])

    assert _texts(labels) == ["1", "&", "2", "&", "3", "&", "4", "&"]
    assert [label.size for label in labels[:2]] == ["t", "m"]


def test_sixteenths_count_positions_within_the_beat() -> None:
    notes = [Note(16) for _ in range(4)] + [Note(4) for _ in range(3)]

    labels = _count(notes)

    assert _texts(labels) == ["1", "2", "3", "4", "2", "3", "4"]
    assert [label.size for label in labels] == ["t", "m", "m", "m", "t", "t", "t"]


def test_rests_get_the_small_size() -> None:
    notes = [Note(4, is_rest=True), Note(4), Note(8), Note(8, is_rest=True), Note(4)]

    labels = _count(notes)

    assert [(label.text, label.size) for label in labels] == [
        ("1", "s"),
        ("2", "t"),
        ("3", "t"),
        ("&", "s"),
        ("4", "t"),
    ]


def test_note_starting_mid_beat_opens_the_next_count() -> None:
    labels = _count([Note(4, dotted=True), Note(8), Note(2)])
    assert _texts(labels) == ["1", "2", "3"]


def test_eighth_beat_in_six_eight() -> None:
    labels = _count([Note(8) for _ in range(6)], TimeSignature(6, 8))
    assert _texts(labels) == ["1", "2", "3", "4", "5", "6"]


def test_subdivision_longer_than_an_eighth_has_no_label() -> None:
    labels = _count([Note(4), Note(4), Note(2)], TimeSignature(2, 2))

    assert _texts(labels) == ["1", "", "2"]
    assert not labels[1].is_visible
    assert labels[0].reference.note_index == 0
