"""Multi-ending (volta) brackets that may span several rendering lines."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Final

from chordgrid.element_registry import BarlineInfo
from chordgrid.notation_models import Measure

logger = logging.getLogger(__name__)

HOOK_HEIGHT: Final[float] = 15.0
TEXT_SIZE: Final[float] = 14.0


@dataclass(frozen=True)
class MeasurePlacement:
    """Where a measure ended up: its line, slot in the line and geometry."""

    measure: Measure
    line_index: int
    pos_in_line: int
    global_index: int
    x: float
    y: float
    width: float

    @property
    def right(self) -> float:
        return self.x + self.width


@dataclass(frozen=True)
class VoltaSegment:
    """
    One horizontal stretch of a bracket on a single rendering line.

    Only the first segment of a bracket carries the left hook and label;
    only the last one carries the right hook, and only for closed brackets.
    """

    text: str
    line_index: int
    start_x: float
    end_x: float
    y: float
    left_hook: bool
    right_hook: bool
    show_text: bool
    is_closed: bool
    measure_start_index: int
    measure_end_index: int
    hook_height: float = HOOK_HEIGHT


class VoltaResolver:
    """
    Accumulates measure placements and barline anchors over every line, then
    lays out the brackets with a global view of the score.

    The element registry is cleared between lines, so barline anchors must be
    handed over with :meth:`add_barlines` before each clear.
    """

    def __init__(self) -> None:
        self._placements: list[MeasurePlacement] = []
        self._barlines: list[BarlineInfo] = []

    def add_measure_placement(self, placement: MeasurePlacement) -> None:
        self._placements.append(placement)

    def add_barlines(self, barlines: list[BarlineInfo]) -> None:
        self._barlines.extend(barlines)

    def clear(self) -> None:
        self._placements = []
        self._barlines = []

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _barline(self, measure_index: int, side: str) -> BarlineInfo | None:
        return next(
            (b for b in self._barlines if b.measure_index == measure_index and b.side == side),
            None,
        )

    def _find_end(self, start: int) -> int | None:
        text = self._placements[start].measure.volta_start.text
        for index in range(start, len(self._placements)):
            volta_end = self._placements[index].measure.volta_end
            if volta_end is not None and volta_end.text == text:
                return index
        return None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def resolve(self) -> list[VoltaSegment]:
        """
        Lay out every bracket; call only after all lines have been placed.

        Returns:
            One VoltaSegment per bracket per line it touches, in score order.
        """
        placements = self._placements
        segments: list[VoltaSegment] = []

        for start, placement in enumerate(placements):
            volta = placement.measure.volta_start
            if volta is None:
                continue

            end = self._find_end(start)
            if end is None:
                logger.warning(
                    f"Volta '{volta.text}' opened in measure {placement.global_index + 1} "
                    "has no matching end; bracket skipped"
                )
                continue

            start_line = placement.line_index
            end_line = placements[end].line_index
            by_line: dict[int, list[MeasurePlacement]] = {}
            for spanned in placements[start : end + 1]:
                by_line.setdefault(spanned.line_index, []).append(spanned)

            for line_index, line_measures in by_line.items():
                first, last = line_measures[0], line_measures[-1]
                is_first_line = line_index == start_line
                is_last_line = line_index == end_line

                if is_first_line and start > 0 and placements[start - 1].line_index == start_line:
                    start_barline = self._barline(placements[start - 1].global_index, "right")
                    start_x = start_barline.exact_x if start_barline else first.x
                else:
                    start_barline = self._barline(first.global_index, "left")
                    start_x = start_barline.exact_x if start_barline else first.x

                end_barline = self._barline(last.global_index, "right")
                end_x = end_barline.visual_end_x if end_barline else last.right - 2
                y = start_barline.y if start_barline else first.y

                segments.append(
                    VoltaSegment(
                        text=volta.text,
                        line_index=line_index,
                        start_x=start_x,
                        end_x=end_x,
                        y=y,
                        left_hook=is_first_line,
                        right_hook=is_last_line and volta.is_closed,
                        show_text=is_first_line,
                        is_closed=volta.is_closed,
                        measure_start_index=first.global_index,
                        measure_end_index=last.global_index,
                    )
                )
        return segments
