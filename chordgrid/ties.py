"""Tie resolution across measures and automatic line breaks."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Literal

logger = logging.getLogger(__name__)

TieKind = Literal["full", "to-void", "from-void"]


@dataclass
class NotePosition:
    """
    A rendered note as seen by the tie resolver.

    ``x``/``y`` is the tie anchor of the note head; ``measure_left_x`` and
    ``measure_right_x`` are the visual edges of the note's measure. The tie
    flags are mutable: line-crossing ties are reclassified in place.
    """

    x: float
    y: float
    measure_index: int
    segment_index: int
    note_index: int
    line_index: int
    measure_left_x: float
    measure_right_x: float
    tie_start: bool = False
    tie_end: bool = False
    tie_to_void: bool = False
    tie_from_void: bool = False


@dataclass(frozen=True)
class TieCurve:
    start_x: float
    start_y: float
    end_x: float
    end_y: float
    kind: TieKind
    measure_index: int
    cross_measure: bool = False


@dataclass(frozen=True)
class PendingTie:
    measure_index: int
    x: float
    y: float


class PendingTieQueue:
    """
    Half-ties drawn to a line's right edge, waiting for their continuation.

    A pending tie is consumed by the first ``from-void`` note found in a
    later measure.
    """

    def __init__(self) -> None:
        self._pending: list[PendingTie] = []

    def __len__(self) -> int:
        return len(self._pending)

    def add(self, measure_index: int, x: float, y: float) -> None:
        self._pending.append(PendingTie(measure_index, x, y))

    def resolve_for(self, measure_index: int) -> PendingTie | None:
        """Pop the earliest pending tie whose measure precedes *measure_index*."""
        for index, pending in enumerate(self._pending):
            if pending.measure_index < measure_index:
                return self._pending.pop(index)
        return None

    def clear(self) -> None:
        self._pending.clear()


class TieResolver:
    """
    Matches tie markers over the whole score once every line is placed.

    Phase 1 reclassifies ties whose end lies on another rendering line into
    a ``to-void``/``from-void`` pair. Phase 2 walks the notes left to right
    and emits one curve per same-line tie, or two half-curves anchored on
    the measure edges for a tie split by a line break.
    """

    def __init__(self, pending: PendingTieQueue | None = None) -> None:
        self.pending = pending if pending is not None else PendingTieQueue()

    def resolve(self, positions: list[NotePosition]) -> list[TieCurve]:
        self._reclassify_line_crossings(positions)
        return self._match(positions)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _reclassify_line_crossings(self, positions: list[NotePosition]) -> None:
        claimed: set[int] = set()
        for index, origin in enumerate(positions):
            if not origin.tie_start or origin.tie_to_void:
                continue
            match_index = next(
                (
                    j
                    for j in range(index + 1, len(positions))
                    if j not in claimed and (positions[j].tie_end or positions[j].tie_from_void)
                ),
                None,
            )
            if match_index is None:
                continue
            claimed.add(match_index)
            match = positions[match_index]
            if match.line_index == origin.line_index:
                continue
            logger.debug(
                f"Tie from measure {origin.measure_index} crosses to line {match.line_index}"
            )
            origin.tie_start = False
            origin.tie_to_void = True
            match.tie_end = False
            match.tie_from_void = True

    def _match(self, positions: list[NotePosition]) -> list[TieCurve]:
        curves: list[TieCurve] = []
        consumed: set[int] = set()
        reserved: set[int] = set()

        for index, note in enumerate(positions):
            if note.tie_from_void and index not in consumed:
                curves.append(self._from_void_half(note))

            if not (note.tie_start or note.tie_to_void):
                continue

            direct = next(
                (
                    j
                    for j in range(index + 1, len(positions))
                    if j not in consumed
                    and j not in reserved
                    and positions[j].tie_end
                    and positions[j].line_index == note.line_index
                ),
                None,
            )
            if direct is not None:
                consumed.add(direct)
                curves.append(self._full(note, positions[direct]))
                continue

            from_void = next(
                (
                    j
                    for j in range(index + 1, len(positions))
                    if j not in consumed and j not in reserved and positions[j].tie_from_void
                ),
                None,
            )
            if from_void is not None:
                target = positions[from_void]
                if target.line_index != note.line_index:
                    # the continuation half is drawn when the scan reaches the target
                    reserved.add(from_void)
                    curves.append(self._to_void_half(note))
                    self.pending.add(note.measure_index, note.measure_right_x, note.y)
                else:
                    consumed.add(from_void)
                    curves.append(self._full(note, target))
                continue

            if note.tie_to_void:
                curves.append(self._to_void_half(note))
            else:
                logger.warning(
                    f"Unmatched tie start in measure {note.measure_index + 1} "
                    f"(segment {note.segment_index}, note {note.note_index}); tie skipped"
                )
        return curves

    def _full(self, start: NotePosition, end: NotePosition) -> TieCurve:
        return TieCurve(
            start_x=start.x,
            start_y=start.y,
            end_x=end.x,
            end_y=end.y,
            kind="full",
            measure_index=start.measure_index,
            cross_measure=start.measure_index != end.measure_index,
        )

    def _to_void_half(self, note: NotePosition) -> TieCurve:
        return TieCurve(
            start_x=note.x,
            start_y=note.y,
            end_x=note.measure_right_x,
            end_y=note.y,
            kind="to-void",
            measure_index=note.measure_index,
        )

    def _from_void_half(self, note: NotePosition) -> TieCurve:
        pending = self.pending.resolve_for(note.measure_index)
        if pending is not None:
            logger.debug(
                f"Tie continued from measure {pending.measure_index} into measure {note.measure_index}"
            )
        return TieCurve(
            start_x=note.measure_left_x,
            start_y=note.y,
            end_x=note.x,
            end_y=note.y,
            kind="from-void",
            measure_index=note.measure_index,
        )
