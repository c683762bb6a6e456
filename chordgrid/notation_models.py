"""Data models for parsed chord-grid notation."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from fractions import Fraction
from typing import Final, Literal

#: Rhythmic values accepted by the engine (1 = whole ... 64 = sixty-fourth).
NOTE_VALUES: Final[tuple[int, ...]] = (1, 2, 4, 8, 16, 32, 64)

PickDirection = Literal["down", "up"]


class BarlineType(str, Enum):
    """Barline drawn at the right edge of a measure."""

    SINGLE = "|"
    DOUBLE = "||"
    REPEAT_START = "||:"
    REPEAT_END = ":||"


class GroupingMode(str, Enum):
    """Beam grouping policy selected for a time signature."""

    SPACE_BASED = "space-based"
    AUTO_BEAM = "auto-beam"
    BINARY = "binary"
    TERNARY = "ternary"


class TupletPosition(str, Enum):
    START = "start"
    MIDDLE = "middle"
    END = "end"


def beam_level(value: int) -> int:
    """
    Number of beams a note value carries.

    Returns 0 for quarter notes and longer, 1 for eighths, up to 4 for
    sixty-fourths.
    """
    if value >= 64:
        return 4
    if value >= 32:
        return 3
    if value >= 16:
        return 2
    if value >= 8:
        return 1
    return 0


def default_tuplet_ratio(count: int) -> tuple[int, int]:
    """Return the conventional ratio for a tuplet of *count* notes (3 -> 3:2)."""
    if count == 2:
        return 2, 3
    normal = 1
    while normal * 2 < count:
        normal *= 2
    return count, max(normal, 1)


@dataclass(frozen=True)
class Tuplet:
    """
    Tuplet membership of a single note.

    Attributes:
        count:    Number of notes written in the tuplet (3 for a triplet).
        group_id: Identifier shared by every note of the same tuplet.
        position: Where the note sits in the group.
        ratio:    Explicit ``(numerator, denominator)``; ``None`` uses the default.
    """

    count: int
    group_id: str
    position: TupletPosition = TupletPosition.MIDDLE
    ratio: tuple[int, int] | None = None

    @property
    def effective_ratio(self) -> tuple[int, int]:
        return self.ratio if self.ratio is not None else default_tuplet_ratio(self.count)

    @property
    def label(self) -> str:
        if self.ratio is None:
            return str(self.count)
        return f"{self.ratio[0]}:{self.ratio[1]}"


@dataclass(frozen=True)
class Note:
    """
    A note or rest element.

    Rests are not expected to carry tie flags. ``pick_direction`` and
    ``finger_symbol`` override the automatic strum pattern for this attack.
    """

    value: int
    dotted: bool = False
    is_rest: bool = False
    tie_start: bool = False
    tie_end: bool = False
    tie_to_void: bool = False
    tie_from_void: bool = False
    tuplet: Tuplet | None = None
    has_leading_space: bool = False
    forced_beam_through_tie: bool = False
    pick_direction: PickDirection | None = None
    finger_symbol: str | None = None

    @property
    def level(self) -> int:
        return beam_level(self.value)

    @property
    def is_beamable(self) -> bool:
        return not self.is_rest and self.value >= 8

    def base_duration(self) -> Fraction:
        """Duration in quarter notes before any tuplet rescaling."""
        duration = Fraction(4, self.value)
        if self.dotted:
            duration *= Fraction(3, 2)
        return duration


@dataclass(frozen=True)
class Segment:
    """A chord label and the notes sounding under it."""

    chord: str
    notes: list[Note] = field(default_factory=list)
    leading_space: bool = False


@dataclass(frozen=True)
class VoltaInfo:
    """
    Multi-ending bracket label.

    ``is_closed`` brackets loop back into a repeat and get a right hook;
    open brackets simply continue.
    """

    numbers: tuple[int, ...]
    text: str
    is_closed: bool = True


@dataclass(frozen=True)
class TimeSignature:
    numerator: int = 4
    denominator: int = 4
    grouping_mode: GroupingMode = GroupingMode.SPACE_BASED

    def __str__(self) -> str:
        return f"{self.numerator}/{self.denominator}"

    @property
    def quarter_notes_per_bar(self) -> Fraction:
        return Fraction(self.numerator * 4, self.denominator)

    @property
    def is_compound(self) -> bool:
        return self.denominator == 8 and self.numerator > 3 and self.numerator % 3 == 0

    def beam_group_size(self) -> Fraction | None:
        """
        Length in quarter notes of one algorithmic beam group.

        Returns ``None`` when beams are driven by whitespace only: in
        space-based mode, and in auto-beam mode for irregular meters such as
        5/8 or 7/8.
        """
        mode = self.grouping_mode
        if mode is GroupingMode.BINARY:
            return Fraction(1)
        if mode is GroupingMode.TERNARY:
            return Fraction(3, 2)
        if mode is GroupingMode.AUTO_BEAM:
            if self.is_compound:
                return Fraction(3, 2)
            if self.denominator in (2, 4):
                return Fraction(1)
        return None


@dataclass(frozen=True)
class Measure:
    """
    One measure of the grid.

    Attributes:
        segments:       Chord segments in musical order.
        barline:        Barline drawn at the right edge.
        is_line_break:  Start a new rendering line after this measure.
        time_signature: Override of the score time signature.
        source:         Original source text (diagnostic only).
        is_repeat_start: Draw a repeat-start barline at the left edge.
        volta_start:    Bracket opening on this measure.
        volta_end:      Bracket closing on this measure.
        repeat_count:   Drawn as ``xN`` after a repeat-end barline.
        is_repeat:      Written as ``%``: repeats the previous measure.
    """

    segments: list[Segment] = field(default_factory=list)
    barline: BarlineType = BarlineType.SINGLE
    is_line_break: bool = False
    time_signature: TimeSignature | None = None
    source: str = ""
    is_repeat_start: bool = False
    volta_start: VoltaInfo | None = None
    volta_end: VoltaInfo | None = None
    repeat_count: int | None = None
    is_repeat: bool = False

    @property
    def note_count(self) -> int:
        return sum(len(segment.notes) for segment in self.segments)


@dataclass(frozen=True)
class Score:
    """A complete parsed grid ready for layout."""

    title: str
    time_signature: TimeSignature
    measures: list[Measure]
