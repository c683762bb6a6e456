"""BeamAnalyzer: derives beam groups for one measure of chord-grid notation."""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass
from enum import Enum
from fractions import Fraction
from typing import Final

from chordgrid.notation_models import Measure, Note, TimeSignature, Tuplet

logger = logging.getLogger(__name__)

MAX_BEAM_LEVEL: Final[int] = 4

#: Block level meaning "nothing blocks between these two notes".
NO_BLOCK: Final[int] = MAX_BEAM_LEVEL + 1


class BeamDirection(str, Enum):
    LEFT = "left"
    RIGHT = "right"


@dataclass(frozen=True, order=True)
class NoteReference:
    """Address of a note inside a measure: chord segment + index in that segment."""

    segment_index: int
    note_index: int


@dataclass(frozen=True)
class BeamGroup:
    """
    Notes connected by a beam at one nesting level.

    Attributes:
        level:      1 = eighth beam ... 4 = sixty-fourth beam.
        notes:      Ordered references of the connected notes.
        is_partial: True for a beamlet (single note).
        direction:  Beamlet direction; ``None`` for full groups.
    """

    level: int
    notes: tuple[NoteReference, ...]
    is_partial: bool = False
    direction: BeamDirection | None = None


@dataclass(frozen=True)
class NoteWithPosition:
    """A note flattened out of its segment, with its timing inside the measure."""

    note: Note
    segment_index: int
    note_index: int
    absolute_index: int
    start: Fraction
    duration: Fraction
    tuplet: Tuplet | None = None

    @property
    def reference(self) -> NoteReference:
        return NoteReference(self.segment_index, self.note_index)

    @property
    def level(self) -> int:
        return self.note.level

    @property
    def is_beamable(self) -> bool:
        return self.note.is_beamable

    def shares_tuplet_with(self, other: NoteWithPosition) -> bool:
        return (
            self.tuplet is not None
            and other.tuplet is not None
            and self.tuplet.group_id == other.tuplet.group_id
        )


@dataclass(frozen=True)
class AnalyzedMeasure:
    """A measure together with its flattened notes and beam groups."""

    measure: Measure
    notes: list[NoteWithPosition]
    beam_groups: list[BeamGroup]

    def level1_beamed(self) -> set[NoteReference]:
        """References connected by a full primary beam (these need no flag)."""
        return {
            ref
            for group in self.beam_groups
            if group.level == 1 and not group.is_partial
            for ref in group.notes
        }

    def groups_at(self, level: int) -> list[BeamGroup]:
        return [group for group in self.beam_groups if group.level == level]

    def group_for(self, reference: NoteReference, level: int) -> BeamGroup | None:
        return next(
            (g for g in self.beam_groups if g.level == level and reference in g.notes),
            None,
        )

    def tuplet_groups(self) -> dict[str, list[NoteWithPosition]]:
        """Valid tuplet groups keyed by group id, in musical order."""
        groups: dict[str, list[NoteWithPosition]] = {}
        for flat in self.notes:
            if flat.tuplet is not None:
                groups.setdefault(flat.tuplet.group_id, []).append(flat)
        return groups


@dataclass
class _HardSegment:
    elements: list[NoteWithPosition]
    soft_before: set[int]


class BeamAnalyzer:
    """
    Computes beam groups for a measure.

    Algorithm overview
    ------------------
    1. **Flatten** every note of every segment into one sequence with exact
       start times and durations in quarter notes (``Fraction``).

    2. **Hard segments** - the sequence is cut wherever no beam may cross:
       a chord segment preceded by a visible gap, explicit whitespace in
       space-based mode, a beat-group boundary in algorithmic modes, or a
       note longer than an eighth. A note flagged
       ``forced_beam_through_tie`` suppresses the cut right after it.

    3. **Block levels** - between two beamable notes of a hard segment a
       rest or an internal space (inside a tuplet) blocks beams from some
       level upward. Whitespace alone never breaks the primary beam.

    4. **Runs per level** - for each level the notes qualifying at that
       level are accumulated into runs; runs of two or more notes become
       full beam groups and single notes become beamlets.
    """

    def __init__(self, time_signature: TimeSignature | None = None) -> None:
        self.time_signature = time_signature or TimeSignature()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def analyze(
        self,
        measure: Measure,
        time_signature: TimeSignature | None = None,
    ) -> AnalyzedMeasure:
        """
        Analyse one measure.

        Args:
            measure:        Parsed measure.
            time_signature: Score time signature; a measure override wins.

        Returns:
            AnalyzedMeasure with the flattened notes and every beam group,
            ordered by hard segment then by level.
        """
        signature = measure.time_signature or time_signature or self.time_signature
        notes = self.flatten(measure)
        if not notes:
            return AnalyzedMeasure(measure=measure, notes=[], beam_groups=[])

        group_size = signature.beam_group_size()
        continuous = self._continuous_tuplets(notes)

        beam_groups: list[BeamGroup] = []
        for hard_segment in self._split_hard_segments(notes, measure, group_size):
            beam_groups.extend(self._beam_hard_segment(hard_segment, continuous))

        logger.debug(
            f"Analysed measure with {len(notes)} notes into {len(beam_groups)} beam groups "
            f"(group size: {group_size})"
        )
        return AnalyzedMeasure(measure=measure, notes=notes, beam_groups=beam_groups)

    def flatten(self, measure: Measure) -> list[NoteWithPosition]:
        """Flatten a measure into notes with cumulative start times."""
        group_sizes = Counter(
            note.tuplet.group_id
            for segment in measure.segments
            for note in segment.notes
            if note.tuplet is not None
        )

        flat: list[NoteWithPosition] = []
        start = Fraction(0)
        for segment_index, segment in enumerate(measure.segments):
            for note_index, note in enumerate(segment.notes):
                tuplet = note.tuplet
                if tuplet is not None and group_sizes[tuplet.group_id] < 2:
                    logger.debug(
                        f"Tuplet group '{tuplet.group_id}' has no sibling; "
                        "treating the note as untupled"
                    )
                    tuplet = None

                duration = note.base_duration()
                if tuplet is not None:
                    numerator, denominator = tuplet.effective_ratio
                    duration = duration * denominator / numerator

                flat.append(
                    NoteWithPosition(
                        note=note,
                        segment_index=segment_index,
                        note_index=note_index,
                        absolute_index=len(flat),
                        start=start,
                        duration=duration,
                        tuplet=tuplet,
                    )
                )
                start += duration
        return flat

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _continuous_tuplets(self, notes: list[NoteWithPosition]) -> set[str]:
        """Tuplet group ids written without inner spaces (second note unspaced)."""
        members: dict[str, list[NoteWithPosition]] = {}
        for flat in notes:
            if flat.tuplet is not None:
                members.setdefault(flat.tuplet.group_id, []).append(flat)
        return {
            group_id
            for group_id, group in members.items()
            if len(group) > 1 and not group[1].note.has_leading_space
        }

    def _segment_gap_before(
        self,
        previous: NoteWithPosition,
        current: NoteWithPosition,
        measure: Measure,
    ) -> bool:
        if current.segment_index == previous.segment_index:
            return False
        return any(
            measure.segments[index].leading_space
            for index in range(previous.segment_index + 1, current.segment_index + 1)
        )

    def _classify_boundary(
        self,
        previous: NoteWithPosition,
        current: NoteWithPosition,
        measure: Measure,
        group_size: Fraction | None,
    ) -> str | None:
        """Return ``"hard"``, ``"soft"`` or ``None`` for the gap before *current*."""
        if previous.note.forced_beam_through_tie:
            return None
        if self._segment_gap_before(previous, current, measure):
            return "hard"

        same_tuplet = previous.shares_tuplet_with(current)
        if group_size is None:
            if current.note.has_leading_space:
                return "soft" if same_tuplet else "hard"
            return None

        if not same_tuplet and current.start // group_size != previous.start // group_size:
            return "hard"
        return None

    def _split_hard_segments(
        self,
        notes: list[NoteWithPosition],
        measure: Measure,
        group_size: Fraction | None,
    ) -> list[_HardSegment]:
        segments: list[_HardSegment] = []
        current = _HardSegment(elements=[], soft_before=set())

        def flush() -> None:
            nonlocal current
            if any(element.is_beamable for element in current.elements):
                segments.append(current)
            current = _HardSegment(elements=[], soft_before=set())

        previous: NoteWithPosition | None = None
        for flat in notes:
            if previous is not None:
                boundary = self._classify_boundary(previous, flat, measure, group_size)
                if boundary == "hard":
                    flush()
                elif boundary == "soft":
                    current.soft_before.add(flat.absolute_index)
            previous = flat

            if not flat.note.is_rest and not flat.is_beamable:
                # quarter notes and longer interrupt every beam
                flush()
                continue
            current.elements.append(flat)

        flush()
        return segments

    def _rest_block(
        self,
        rest: NoteWithPosition,
        before: NoteWithPosition,
        after: NoteWithPosition,
        continuous: set[str],
    ) -> int:
        rest_level = rest.level
        surrounding = min(before.level, after.level)
        block = rest_level + 1 if rest_level == surrounding + 1 else rest_level
        if rest.tuplet is not None and rest.tuplet.group_id in continuous:
            block = max(block, 2)
        return block

    def _block_levels(self, segment: _HardSegment, continuous: set[str]) -> list[int]:
        """Block level between each pair of consecutive beamable notes."""
        elements = segment.elements
        positions = [index for index, element in enumerate(elements) if element.is_beamable]

        blocks: list[int] = []
        min_level = elements[positions[0]].level
        for a, b in zip(positions, positions[1:]):
            before, after = elements[a], elements[b]
            block = NO_BLOCK
            for between in elements[a + 1 : b]:
                block = min(block, self._rest_block(between, before, after, continuous))
            if any(element.absolute_index in segment.soft_before for element in elements[a + 1 : b + 1]):
                block = min(block, max(min_level, 2))
            blocks.append(block)
            min_level = min(min_level, after.level)
        return blocks

    def _runs(self, beamable: list[NoteWithPosition], blocks: list[int], level: int) -> list[list[int]]:
        runs: list[list[int]] = []
        current: list[int] = []
        for index, flat in enumerate(beamable):
            if flat.level < level:
                if current:
                    runs.append(current)
                    current = []
                continue
            if current and blocks[index - 1] <= level:
                runs.append(current)
                current = []
            current.append(index)
        if current:
            runs.append(current)
        return runs

    def _beam_hard_segment(self, segment: _HardSegment, continuous: set[str]) -> list[BeamGroup]:
        beamable = [element for element in segment.elements if element.is_beamable]
        blocks = self._block_levels(segment, continuous)
        max_level = max(flat.level for flat in beamable)
        primary_runs = self._runs(beamable, blocks, 1)

        groups: list[BeamGroup] = []
        for level in range(1, max_level + 1):
            for run in self._runs(beamable, blocks, level):
                references = tuple(beamable[index].reference for index in run)
                if len(run) >= 2:
                    groups.append(BeamGroup(level=level, notes=references))
                    continue

                enclosing = next(r for r in primary_runs if run[0] in r)
                direction = self._beamlet_direction(run[0], enclosing, beamable)
                groups.append(
                    BeamGroup(level=level, notes=references, is_partial=True, direction=direction)
                )
        return groups

    def _beamlet_direction(
        self,
        index: int,
        run: list[int],
        beamable: list[NoteWithPosition],
    ) -> BeamDirection:
        """
        Pick the side a beamlet points to.

        Rules, first match wins: whitespace before the note points right,
        whitespace before the next note points left, a dotted predecessor
        points left, a dotted successor points right, otherwise the beamlet
        points toward the centre of its run.
        """
        position = run.index(index)
        previous = beamable[run[position - 1]] if position > 0 else None
        following = beamable[run[position + 1]] if position < len(run) - 1 else None

        if beamable[index].note.has_leading_space:
            return BeamDirection.RIGHT
        if following is not None and following.note.has_leading_space:
            return BeamDirection.LEFT
        if previous is not None and previous.note.dotted:
            return BeamDirection.LEFT
        if following is not None and following.note.dotted:
            return BeamDirection.RIGHT

        centre = (len(run) - 1) / 2
        return BeamDirection.RIGHT if position < centre else BeamDirection.LEFT
