"""Strum patterns: pick strokes and finger symbols assigned to every attack."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Final, Iterable

from chordgrid.beam_analyzer import AnalyzedMeasure, NoteReference, NoteWithPosition
from chordgrid.layout import FingerLanguage, StrumMode
from chordgrid.notation_models import Note, PickDirection

logger = logging.getLogger(__name__)

#: Automatic finger pattern: thumb down, thumb up, hand down, thumb up.
FINGER_BASE_PATTERN: Final[tuple[str, ...]] = ("t", "tu", "h", "tu")

# Every accepted spelling, English or French, short or long.
_FINGER_LONG_FORM: Final[dict[str, str]] = {
    "t": "td",
    "td": "td",
    "tu": "tu",
    "h": "hd",
    "hd": "hd",
    "hu": "hu",
    "p": "td",
    "pd": "td",
    "pu": "tu",
    "m": "hd",
    "md": "hd",
    "mu": "hu",
}

_FRENCH: Final[dict[str, str]] = {"td": "pd", "tu": "pu", "hd": "md", "hu": "mu"}

FINGER_SYMBOLS: Final[frozenset[str]] = frozenset(_FINGER_LONG_FORM)


def normalize_finger_symbol(symbol: str, language: FingerLanguage = "en") -> str:
    """
    Return the long form of a finger symbol in *language*.

    ``"t"``, ``"p"`` and ``"pd"`` all become ``"td"`` in English and ``"pd"``
    in French.

    Raises:
        ValueError: If *symbol* is not a finger symbol.
    """
    long_form = _FINGER_LONG_FORM.get(symbol)
    if long_form is None:
        raise ValueError(f"unknown finger symbol '{symbol}'")
    return _FRENCH[long_form] if language == "fr" else long_form


def is_attack(note: Note) -> bool:
    """A struck note: neither a rest nor the continuation of a tie."""
    return not note.is_rest and not note.tie_end and not note.tie_from_void


def detect_global_subdivision(analyses: Iterable[AnalyzedMeasure]) -> int:
    """
    Smallest attacked note value across the score (8, 16, 32 or 64).

    A tuplet note counts with the shortest value of its group.
    """
    smallest = 8
    for analysis in analyses:
        shortest_in_group: dict[str, int] = {}
        for flat in analysis.notes:
            if flat.tuplet is not None:
                group_id = flat.tuplet.group_id
                shortest_in_group[group_id] = max(shortest_in_group.get(group_id, 0), flat.note.value)
        for flat in analysis.notes:
            if not is_attack(flat.note):
                continue
            value = flat.note.value
            if flat.tuplet is not None:
                value = max(value, shortest_in_group[flat.tuplet.group_id])
            smallest = max(smallest, value)
    return smallest


@dataclass(frozen=True)
class StrumStroke:
    """Stroke assigned to one attack; ``symbol`` is set in finger mode only."""

    measure_index: int
    reference: NoteReference
    direction: PickDirection
    symbol: str | None = None


class StrumPatternAssigner:
    """
    Assign a stroke to every attack of a score.

    Attacks are laid on one subdivision timeline running through the whole
    score. Its step is the global subdivision capped at sixteenths; a beat
    that holds 32nds or 64ths is counted in its own finer step. In pick mode
    strokes alternate down on even subdivisions and up on odd ones. In
    finger mode the base pattern ``t tu h tu`` spans two beats of eighths,
    or restarts on every beat once sixteenths or finer appear.

    An explicit ``pick_direction`` (pick mode) or ``finger_symbol`` (finger
    mode) on a note always wins over the timeline.
    """

    def __init__(self, mode: StrumMode = "pick", language: FingerLanguage = "en") -> None:
        if mode not in ("pick", "finger"):
            raise ValueError(f"strum mode must be 'pick' or 'finger', got '{mode}'.")
        if language not in ("en", "fr"):
            raise ValueError(f"finger language must be 'en' or 'fr', got '{language}'.")
        self.mode = mode
        self.language = language

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _fine_beat_steps(analysis: AnalyzedMeasure) -> dict[int, int]:
        """Per beat of the measure, the 32nd or 64th step its attacks need."""
        steps: dict[int, int] = {}
        for flat in analysis.notes:
            if is_attack(flat.note) and flat.note.value >= 32:
                beat = math.floor(flat.start)
                steps[beat] = max(steps.get(beat, 0), flat.note.value)
        return steps

    @staticmethod
    def _subdivisions(note: Note, step: int) -> int:
        count = step / note.value * (1.5 if note.dotted else 1.0)
        return math.floor(count + 0.5)

    def _stroke(
        self,
        measure_index: int,
        flat: NoteWithPosition,
        slot: int,
        global_step: int,
    ) -> StrumStroke:
        note = flat.note
        if self.mode == "pick":
            direction = note.pick_direction
            if direction is None:
                direction = "down" if slot % 2 == 0 else "up"
            return StrumStroke(measure_index, flat.reference, direction)

        raw = note.finger_symbol
        if raw is None:
            if global_step > 8:
                index = (slot % (global_step // 4)) % len(FINGER_BASE_PATTERN)
            else:
                index = slot % len(FINGER_BASE_PATTERN)
            raw = FINGER_BASE_PATTERN[index]
        symbol = normalize_finger_symbol(raw, self.language)
        direction = "up" if symbol.endswith("u") else "down"
        return StrumStroke(measure_index, flat.reference, direction, symbol)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def assign(self, analyses: list[AnalyzedMeasure]) -> list[StrumStroke]:
        """Strokes for every attack, in score order."""
        global_step = detect_global_subdivision(analyses)
        base_step = min(global_step, 16)
        strokes: list[StrumStroke] = []
        slot = 0

        for measure_index, analysis in enumerate(analyses):
            fine_steps = self._fine_beat_steps(analysis)
            for flat in analysis.notes:
                step = fine_steps.get(math.floor(flat.start), base_step)
                if is_attack(flat.note):
                    strokes.append(self._stroke(measure_index, flat, slot, global_step))
                slot += self._subdivisions(flat.note, step)

        logger.debug(f"Assigned {len(strokes)} {self.mode} strokes on a 1/{global_step} grid")
        return strokes
