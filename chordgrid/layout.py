"""Layout configuration and the measures-into-lines packing policy."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Final, Literal

from chordgrid.notation_models import Measure, Note

StemsDirection = Literal["up", "down"]
StrumMode = Literal["pick", "finger"]
FingerLanguage = Literal["en", "fr"]

STAFF_OFFSET: Final[float] = 80.0  # staff line distance below the measure top
SEGMENT_GAP: Final[float] = 12.0  # visible gap before a segment with a leading space
NOTE_GAP: Final[float] = 6.0  # whitespace between two notes of one segment
SEGMENT_PADDING: Final[float] = 20.0
HEAD_HALF_WIDTH: Final[float] = 6.0
EMPTY_SEGMENT_WIDTH: Final[float] = 40.0  # room for the chord of a segment without notes


@dataclass(frozen=True)
class LayoutConfig:
    """
    Settings recognised by the composition layer.

    Attributes:
        stems_direction:    ``"up"`` or ``"down"``.
        measures_per_line:  Upper bound of measures on one line.
        line_width:         Width budget of a line in layout units.
        measure_width:      Minimum width of a measure.
        measure_height:     Height of a measure (barline length).
        line_gap:           Vertical gap between lines.
        min_spacing:        Minimum distance kept between colliding glyphs.
        chord_tuplet_vertical_spacing: Lift of a tuplet number under a chord.
        max_placement_attempts: Attempt budget of the free-position search.
        strum_mode:         ``"pick"`` or ``"finger"`` strokes above attacks; ``None`` draws none.
        finger_language:    Spelling of finger symbols, ``"en"`` or ``"fr"``.
        counting:           Draw beat counting labels next to the note heads.
        display_repeat_symbol: Draw ``%`` measures as a repeat sign instead of their rhythm.
        measure_numbers:    Number measures above their left barline.
        measure_number_start: Number of the first measure.
        measure_number_interval: Number every n-th measure only.
        debug:              Emit diagnostic logging; never changes layout.
    """

    stems_direction: StemsDirection = "up"
    measures_per_line: int = 4
    line_width: float = 800.0
    measure_width: float = 200.0
    measure_height: float = 120.0
    line_gap: float = 20.0
    min_spacing: float = 2.0
    chord_tuplet_vertical_spacing: float = 8.0
    max_placement_attempts: int = 20
    debug: bool = False
    strum_mode: StrumMode | None = None
    finger_language: FingerLanguage = "en"
    counting: bool = False
    display_repeat_symbol: bool = False
    measure_numbers: bool = False
    measure_number_start: int = 1
    measure_number_interval: int = 1

    def __post_init__(self) -> None:
        if self.stems_direction not in ("up", "down"):
            raise ValueError(f"stems_direction must be 'up' or 'down', got '{self.stems_direction}'.")
        if self.measures_per_line < 1:
            raise ValueError("measures_per_line must be at least 1.")
        if self.measure_width <= 0 or self.line_width <= 0 or self.measure_height <= 0:
            raise ValueError("line_width, measure_width and measure_height must be positive.")
        if self.min_spacing < 0:
            raise ValueError("min_spacing must not be negative.")
        if self.max_placement_attempts < 0:
            raise ValueError("max_placement_attempts must not be negative.")
        if self.strum_mode not in (None, "pick", "finger"):
            raise ValueError(f"strum_mode must be 'pick' or 'finger', got '{self.strum_mode}'.")
        if self.finger_language not in ("en", "fr"):
            raise ValueError(f"finger_language must be 'en' or 'fr', got '{self.finger_language}'.")
        if self.measure_number_interval < 1:
            raise ValueError("measure_number_interval must be at least 1.")

    @property
    def line_height(self) -> float:
        return self.measure_height + self.line_gap


def note_spacing(note: Note) -> float:
    """Horizontal room a note or rest asks for."""
    if note.value >= 64:
        spacing = 16.0
    elif note.value >= 32:
        spacing = 20.0
    elif note.value >= 16:
        spacing = 26.0
    elif note.value >= 8:
        spacing = 24.0
    else:
        spacing = 28.0
    return spacing + 4.0 if note.is_rest else spacing


def required_measure_width(measure: Measure) -> float:
    """Width a measure needs to show every note without crowding."""
    width = 2 * SEGMENT_PADDING
    for index, segment in enumerate(measure.segments):
        if index > 0 and segment.leading_space:
            width += SEGMENT_GAP
        if not segment.notes:
            width += EMPTY_SEGMENT_WIDTH
        for position, note in enumerate(segment.notes):
            if position > 0 and note.has_leading_space:
                width += NOTE_GAP
            width += note_spacing(note)
    return width


@dataclass(frozen=True)
class LineSlot:
    measure_index: int
    line_index: int
    pos_in_line: int
    width: float


def pack_lines(measures: list[Measure], config: LayoutConfig) -> list[list[LineSlot]]:
    """
    Pack measures into rendering lines by running-width accumulation.

    A line closes when the next measure would overflow ``line_width``, when
    it already holds ``measures_per_line`` measures, or after a measure
    flagged ``is_line_break``. A single over-wide measure still gets a line.
    """
    lines: list[list[LineSlot]] = []
    current: list[LineSlot] = []
    running = 0.0

    for measure_index, measure in enumerate(measures):
        if config.display_repeat_symbol and measure.is_repeat:
            width = config.measure_width
        else:
            width = max(config.measure_width, required_measure_width(measure))
        overflow = current and (
            running + width > config.line_width or len(current) >= config.measures_per_line
        )
        if overflow:
            lines.append(current)
            current, running = [], 0.0

        current.append(LineSlot(measure_index, len(lines), len(current), width))
        running += width

        if measure.is_line_break:
            lines.append(current)
            current, running = [], 0.0

    if current:
        lines.append(current)
    return lines
