"""ElementRegistry: spatial ledger of placed glyphs with collision queries."""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from enum import Enum
from typing import Final, Iterable, Literal

import numpy as np

logger = logging.getLogger(__name__)

AdjustmentDirection = Literal["horizontal", "vertical", "both"]


class ElementType(str, Enum):
    CHORD = "chord"
    TIME_SIGNATURE = "time-signature"
    NOTE = "note"
    STEM = "stem"
    BEAM = "beam"
    TIE = "tie"
    TUPLET_BRACKET = "tuplet-bracket"
    TUPLET_NUMBER = "tuplet-number"
    REST = "rest"
    BARLINE = "barline"
    DOUBLE_BAR = "double-bar"
    STAFF_LINE = "staff-line"
    REPEAT_COUNT = "repeat-count"
    REPEAT_SYMBOL = "repeat-symbol"
    VOLTA_BRACKET = "volta-bracket"
    VOLTA_TEXT = "volta-text"
    FLAG = "flag"
    DOT = "dot"
    PICK_STROKE = "pick-stroke"
    FINGER_SYMBOL = "finger-symbol"
    MEASURE_NUMBER = "measure-number"
    COUNTING = "counting"


class CollisionLayer(str, Enum):
    """Coarse vertical band a glyph kind lives in."""

    STRUCTURAL = "structural"
    STAFF = "staff"
    TUPLET_DECORATION = "tuplet-decoration"
    PICK_DECORATION = "pick-decoration"
    ABOVE_STAFF = "above-staff"
    ABOVE_MEASURE = "above-measure"


# ── Collision tables ─────────────────────────────────────────────────────────

LAYER_OF: Final[dict[ElementType, CollisionLayer]] = {
    ElementType.BARLINE: CollisionLayer.STRUCTURAL,
    ElementType.DOUBLE_BAR: CollisionLayer.STRUCTURAL,
    ElementType.TIME_SIGNATURE: CollisionLayer.STRUCTURAL,
    ElementType.STAFF_LINE: CollisionLayer.STRUCTURAL,
    ElementType.NOTE: CollisionLayer.STAFF,
    ElementType.STEM: CollisionLayer.STAFF,
    ElementType.BEAM: CollisionLayer.STAFF,
    ElementType.FLAG: CollisionLayer.STAFF,
    ElementType.DOT: CollisionLayer.STAFF,
    ElementType.REST: CollisionLayer.STAFF,
    ElementType.TIE: CollisionLayer.STAFF,
    ElementType.REPEAT_SYMBOL: CollisionLayer.STAFF,
    ElementType.TUPLET_BRACKET: CollisionLayer.TUPLET_DECORATION,
    ElementType.TUPLET_NUMBER: CollisionLayer.TUPLET_DECORATION,
    ElementType.PICK_STROKE: CollisionLayer.PICK_DECORATION,
    ElementType.FINGER_SYMBOL: CollisionLayer.PICK_DECORATION,
    ElementType.COUNTING: CollisionLayer.PICK_DECORATION,
    ElementType.CHORD: CollisionLayer.ABOVE_STAFF,
    ElementType.MEASURE_NUMBER: CollisionLayer.ABOVE_STAFF,
    ElementType.VOLTA_BRACKET: CollisionLayer.ABOVE_MEASURE,
    ElementType.VOLTA_TEXT: CollisionLayer.ABOVE_MEASURE,
    ElementType.REPEAT_COUNT: CollisionLayer.ABOVE_MEASURE,
}

#: Layer pairs allowed to collide although they differ. Staff and
#: above-staff are deliberately absent.
CROSS_LAYER_COLLISIONS: Final[frozenset[frozenset[CollisionLayer]]] = frozenset(
    {
        frozenset({CollisionLayer.ABOVE_STAFF, CollisionLayer.STRUCTURAL}),
        frozenset({CollisionLayer.TUPLET_DECORATION, CollisionLayer.STAFF}),
        frozenset({CollisionLayer.TUPLET_DECORATION, CollisionLayer.ABOVE_STAFF}),
        frozenset({CollisionLayer.ABOVE_MEASURE, CollisionLayer.ABOVE_STAFF}),
        frozenset({CollisionLayer.ABOVE_MEASURE, CollisionLayer.STRUCTURAL}),
        frozenset({CollisionLayer.PICK_DECORATION, CollisionLayer.STAFF}),
    }
)

#: Thin glyphs that other glyphs may overlap horizontally.
HORIZONTALLY_TRANSPARENT: Final[frozenset[ElementType]] = frozenset(
    {
        ElementType.STEM,
        ElementType.BEAM,
        ElementType.TIE,
        ElementType.STAFF_LINE,
        ElementType.FLAG,
    }
)

HORIZONTAL_MARGINS: Final[dict[ElementType, float]] = {
    ElementType.CHORD: 4.0,
    ElementType.TIME_SIGNATURE: 4.0,
    ElementType.NOTE: 2.0,
    ElementType.REST: 2.0,
    ElementType.DOT: 1.0,
    ElementType.TUPLET_NUMBER: 2.0,
    ElementType.REPEAT_COUNT: 3.0,
    ElementType.REPEAT_SYMBOL: 2.0,
    ElementType.VOLTA_TEXT: 2.0,
    ElementType.PICK_STROKE: 2.0,
    ElementType.FINGER_SYMBOL: 2.0,
    ElementType.COUNTING: 1.0,
    ElementType.MEASURE_NUMBER: 2.0,
}


def can_collide_vertically(a: ElementType, b: ElementType) -> bool:
    layer_a, layer_b = LAYER_OF[a], LAYER_OF[b]
    return layer_a is layer_b or frozenset({layer_a, layer_b}) in CROSS_LAYER_COLLISIONS


def can_collide_horizontally(a: ElementType, b: ElementType) -> bool:
    a_transparent = a in HORIZONTALLY_TRANSPARENT
    b_transparent = b in HORIZONTALLY_TRANSPARENT
    if a_transparent and b_transparent:
        return False
    if a_transparent:
        return HORIZONTAL_MARGINS.get(b, 0.0) > 0
    if b_transparent:
        return HORIZONTAL_MARGINS.get(a, 0.0) > 0
    return True


# ── Geometry ─────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class BoundingBox:
    x: float
    y: float
    width: float
    height: float

    @property
    def right(self) -> float:
        return self.x + self.width

    @property
    def bottom(self) -> float:
        return self.y + self.height

    def moved(self, dx: float = 0.0, dy: float = 0.0) -> BoundingBox:
        return replace(self, x=self.x + dx, y=self.y + dy)


@dataclass(frozen=True)
class Bounds:
    min_x: float
    min_y: float
    max_x: float
    max_y: float

    @property
    def width(self) -> float:
        return self.max_x - self.min_x

    @property
    def height(self) -> float:
        return self.max_y - self.min_y

    def union(self, other: Bounds | None) -> Bounds:
        if other is None:
            return self
        return Bounds(
            min(self.min_x, other.min_x),
            min(self.min_y, other.min_y),
            max(self.max_x, other.max_x),
            max(self.max_y, other.max_y),
        )


# ── Metadata payloads (one shape per element kind) ───────────────────────────

@dataclass(frozen=True)
class NoteHeadInfo:
    measure_index: int
    segment_index: int
    note_index: int
    exact_x: float
    exact_y: float
    value: int
    dotted: bool = False


@dataclass(frozen=True)
class StemInfo:
    measure_index: int
    segment_index: int
    note_index: int
    x: float
    top_y: float
    bottom_y: float


@dataclass(frozen=True)
class RestInfo:
    measure_index: int
    segment_index: int
    note_index: int
    value: int


@dataclass(frozen=True)
class ChordInfo:
    measure_index: int
    segment_index: int
    text: str
    anchor_x: float


@dataclass(frozen=True)
class BeamInfo:
    measure_index: int
    level: int
    is_partial: bool


@dataclass(frozen=True)
class TieInfo:
    measure_index: int
    start_x: float
    end_x: float
    kind: str


@dataclass(frozen=True)
class TupletInfo:
    measure_index: int
    group_id: str
    label: str


@dataclass(frozen=True)
class BarlineInfo:
    """Barline anchor; copied out of the registry before each line is cleared."""

    measure_index: int
    side: Literal["left", "right"]
    exact_x: float
    y: float
    visual_start_x: float
    visual_end_x: float


@dataclass(frozen=True)
class VoltaBracketInfo:
    text: str
    is_closed: bool
    measure_start_index: int
    measure_end_index: int
    line_index: int
    is_first_line: bool
    left_hook_x: float | None = None
    right_hook_x: float | None = None

    @property
    def measure_index(self) -> int:
        return self.measure_start_index


@dataclass(frozen=True)
class StrokeInfo:
    measure_index: int
    segment_index: int
    note_index: int
    direction: str
    symbol: str | None = None


@dataclass(frozen=True)
class MarkInfo:
    """Payload for simple glyphs: staff lines, dots, flags, repeat marks."""

    measure_index: int
    label: str = ""


ElementMetadata = (
    NoteHeadInfo
    | StemInfo
    | RestInfo
    | ChordInfo
    | BeamInfo
    | TieInfo
    | TupletInfo
    | BarlineInfo
    | VoltaBracketInfo
    | StrokeInfo
    | MarkInfo
)

METADATA_FOR: Final[dict[ElementType, tuple[type, ...]]] = {
    ElementType.NOTE: (NoteHeadInfo,),
    ElementType.STEM: (StemInfo,),
    ElementType.REST: (RestInfo,),
    ElementType.CHORD: (ChordInfo,),
    ElementType.BEAM: (BeamInfo,),
    ElementType.TIE: (TieInfo,),
    ElementType.TUPLET_BRACKET: (TupletInfo,),
    ElementType.TUPLET_NUMBER: (TupletInfo,),
    ElementType.BARLINE: (BarlineInfo,),
    ElementType.DOUBLE_BAR: (BarlineInfo,),
    ElementType.VOLTA_BRACKET: (VoltaBracketInfo,),
    ElementType.VOLTA_TEXT: (VoltaBracketInfo,),
    ElementType.PICK_STROKE: (StrokeInfo,),
    ElementType.FINGER_SYMBOL: (StrokeInfo,),
}


@dataclass(frozen=True)
class RegisteredElement:
    """
    A glyph known to the registry.

    ``priority`` ranges from 0 (immovable structure) to 10 (freely movable).
    """

    type: ElementType
    box: BoundingBox
    priority: int = 5
    metadata: ElementMetadata | None = None

    @property
    def layer(self) -> CollisionLayer:
        return LAYER_OF[self.type]

    @property
    def margin(self) -> float:
        return HORIZONTAL_MARGINS.get(self.type, 0.0)


class ElementRegistry:
    """
    Registry of every glyph placed on the current rendering line.

    The registry answers two questions for the composer: does a candidate
    box collide with something already placed, and where is the nearest
    free spot. Collisions are gated twice before any geometry is tested:

    - **vertically** by collision layer (a chord name above the staff never
      collides with a note head on it),
    - **horizontally** by transparency (stems, beams, ties, flags and the
      staff line may be overlapped by glyphs that declare no margin).

    Boxes that pass both gates are inflated by
    ``min_spacing + tested margin + registered margin`` and compared with an
    axis-aligned overlap test.
    """

    def __init__(
        self,
        min_spacing: float = 2.0,
        chord_tuplet_vertical_spacing: float = 8.0,
        debug: bool = False,
    ) -> None:
        self.min_spacing = min_spacing
        self.chord_tuplet_vertical_spacing = chord_tuplet_vertical_spacing
        self.debug = debug
        self._elements: list[RegisteredElement] = []

    def __len__(self) -> int:
        return len(self._elements)

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register(
        self,
        element_type: ElementType,
        box: BoundingBox,
        priority: int = 5,
        metadata: ElementMetadata | None = None,
    ) -> RegisteredElement:
        """
        Record a placed glyph.

        Raises:
            TypeError: If *metadata* is not the payload kind for *element_type*.
        """
        expected = METADATA_FOR.get(element_type)
        if metadata is not None and expected is not None and not isinstance(metadata, expected):
            raise TypeError(
                f"{type(metadata).__name__} is not valid metadata for '{element_type.value}'"
            )
        element = RegisteredElement(element_type, box, priority, metadata)
        self._elements.append(element)
        if self.debug:
            logger.debug(f"Registered {element_type.value} at {box}")
        return element

    def clear(self) -> None:
        self._elements = []
        if self.debug:
            logger.debug("Cleared all elements")

    def clear_type(self, element_type: ElementType) -> None:
        before = len(self._elements)
        self._elements = [e for e in self._elements if e.type is not element_type]
        if self.debug:
            logger.debug(f"Cleared {before - len(self._elements)} elements of type {element_type.value}")

    # ------------------------------------------------------------------
    # Collision queries
    # ------------------------------------------------------------------

    def _candidates(
        self,
        test_type: ElementType | None,
        exclude_types: Iterable[ElementType],
    ) -> tuple[list[RegisteredElement], np.ndarray]:
        """Elements passing both gates, with the spacing to inflate each by."""
        excluded = set(exclude_types)
        test_margin = HORIZONTAL_MARGINS.get(test_type, 0.0) if test_type is not None else 0.0

        candidates: list[RegisteredElement] = []
        spacings: list[float] = []
        for element in self._elements:
            if element.type in excluded:
                continue
            if test_type is not None:
                if not can_collide_vertically(test_type, element.type):
                    continue
                if not can_collide_horizontally(test_type, element.type):
                    continue
                spacings.append(self.min_spacing + test_margin + element.margin)
            else:
                spacings.append(self.min_spacing)
            candidates.append(element)
        return candidates, np.asarray(spacings, dtype=float)

    def _overlap_mask(
        self,
        box: BoundingBox,
        elements: list[RegisteredElement],
        spacings: np.ndarray,
    ) -> np.ndarray:
        if not elements:
            return np.zeros(0, dtype=bool)
        boxes = np.array(
            [(e.box.x, e.box.y, e.box.right, e.box.bottom) for e in elements],
            dtype=float,
        )
        separated = (
            (box.right + spacings < boxes[:, 0])
            | (boxes[:, 2] + spacings < box.x)
            | (box.bottom + spacings < boxes[:, 1])
            | (boxes[:, 3] + spacings < box.y)
        )
        return ~separated

    def find_collisions(
        self,
        box: BoundingBox,
        test_type: ElementType | None = None,
        exclude_types: Iterable[ElementType] = (),
    ) -> list[RegisteredElement]:
        candidates, spacings = self._candidates(test_type, exclude_types)
        mask = self._overlap_mask(box, candidates, spacings)
        return [element for element, hit in zip(candidates, mask) if hit]

    def has_collision(
        self,
        box: BoundingBox,
        test_type: ElementType | None = None,
        exclude_types: Iterable[ElementType] = (),
    ) -> bool:
        """
        Whether *box* collides with any registered glyph.

        Without *test_type* the layer and transparency gates are skipped and
        every registered glyph is tested with the base spacing.
        """
        candidates, spacings = self._candidates(test_type, exclude_types)
        return bool(self._overlap_mask(box, candidates, spacings).any())

    def find_free_position(
        self,
        box: BoundingBox,
        test_type: ElementType | None = None,
        direction: AdjustmentDirection = "vertical",
        exclude_types: Iterable[ElementType] = (),
        max_attempts: int = 20,
    ) -> BoundingBox | None:
        """
        Search around *box* for a collision-free position.

        Vertical search alternates up then down, horizontal search goes right
        then left, and ``"both"`` spirals through the four directions, each
        with a growing distance. Returns ``None`` when the attempt budget is
        exhausted; callers keep their original position in that case.
        """
        excluded = tuple(exclude_types)
        if not self.has_collision(box, test_type, excluded):
            return box

        step = self.min_spacing + 2
        for attempt in range(1, max_attempts + 1):
            half_up = -(-attempt // 2)
            half_down = attempt // 2
            if direction == "vertical":
                offset = -half_up * step if attempt % 2 == 1 else half_down * step
                candidate = box.moved(dy=offset)
            elif direction == "horizontal":
                offset = half_up * step if attempt % 2 == 1 else -half_down * step
                candidate = box.moved(dx=offset)
            else:
                quadrant = attempt % 4
                distance = -(-attempt // 4) * step
                if quadrant == 0:
                    candidate = box.moved(dy=-distance)
                elif quadrant == 1:
                    candidate = box.moved(dx=distance)
                elif quadrant == 2:
                    candidate = box.moved(dy=distance)
                else:
                    candidate = box.moved(dx=-distance)

            if not self.has_collision(candidate, test_type, excluded):
                if self.debug:
                    logger.debug(f"Found free position after {attempt} attempts: {candidate}")
                return candidate

        logger.warning(
            f"No free position for {test_type.value if test_type else 'box'} "
            f"after {max_attempts} attempts"
        )
        return None

    # ------------------------------------------------------------------
    # Auxiliary queries
    # ------------------------------------------------------------------

    def elements(self) -> list[RegisteredElement]:
        return list(self._elements)

    def elements_of_type(self, element_type: ElementType) -> list[RegisteredElement]:
        return [e for e in self._elements if e.type is element_type]

    def elements_for_measure(self, measure_index: int) -> list[RegisteredElement]:
        return [
            e
            for e in self._elements
            if e.metadata is not None and e.metadata.measure_index == measure_index
        ]

    def nearest_element(
        self,
        element_type: ElementType,
        target_y: float,
        span: tuple[float, float] | None = None,
    ) -> RegisteredElement | None:
        """
        Registered glyph of *element_type* whose top edge is closest to *target_y*.

        With *span*, only glyphs overlapping that horizontal range are considered.
        """
        matches = self.elements_of_type(element_type)
        if span is not None:
            left, right = span
            matches = [e for e in matches if e.box.x < right and e.box.right > left]
        if not matches:
            return None
        return min(matches, key=lambda e: abs(e.box.y - target_y))

    def suggest_vertical_offset(
        self,
        element_type: ElementType,
        reference_type: ElementType,
        default_y: float,
        span: tuple[float, float] | None = None,
    ) -> float:
        """
        Suggest a top edge for *element_type* that stays clear below *reference_type*.

        A *default_y* falling inside the nearest reference glyph, or too close
        under it, is pushed below its bottom edge. The clearance is
        ``chord_tuplet_vertical_spacing`` for a tuplet number under a chord
        and ``min_spacing`` otherwise.
        """
        closest = self.nearest_element(reference_type, default_y, span)
        if closest is None:
            return default_y
        if element_type is ElementType.TUPLET_NUMBER and reference_type is ElementType.CHORD:
            clearance = self.chord_tuplet_vertical_spacing
        else:
            clearance = self.min_spacing
        limit = closest.box.bottom + clearance
        if closest.box.y <= default_y < limit:
            return limit
        return default_y

    def barline_anchors(self) -> list[BarlineInfo]:
        """Snapshot of barline anchors, to be kept across :meth:`clear`."""
        return [
            e.metadata
            for e in self._elements
            if e.type in (ElementType.BARLINE, ElementType.DOUBLE_BAR)
            and isinstance(e.metadata, BarlineInfo)
        ]

    def global_bounds(self) -> Bounds | None:
        if not self._elements:
            return None
        boxes = np.array(
            [(e.box.x, e.box.y, e.box.right, e.box.bottom) for e in self._elements],
            dtype=float,
        )
        mins = boxes.min(axis=0)
        maxs = boxes.max(axis=0)
        return Bounds(float(mins[0]), float(mins[1]), float(maxs[2]), float(maxs[3]))

    def stats(self) -> dict[str, int]:
        counts: dict[str, int] = {}
        for element in self._elements:
            counts[element.type.value] = counts.get(element.type.value, 0) + 1
        return counts
