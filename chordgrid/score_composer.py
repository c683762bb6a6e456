"""ScoreComposer: lays a score out line by line and drives a rendering backend."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Final

from chordgrid.beam_analyzer import (
    AnalyzedMeasure,
    BeamAnalyzer,
    BeamDirection,
    BeamGroup,
    NoteReference,
    NoteWithPosition,
)
from chordgrid.element_registry import (
    BarlineInfo,
    BeamInfo,
    BoundingBox,
    Bounds,
    ChordInfo,
    ElementRegistry,
    ElementType,
    MarkInfo,
    NoteHeadInfo,
    RestInfo,
    StemInfo,
    StrokeInfo,
    TieInfo,
    TupletInfo,
    VoltaBracketInfo,
)
from chordgrid.counting import CountingSize, count_measure
from chordgrid.layout import (
    EMPTY_SEGMENT_WIDTH,
    HEAD_HALF_WIDTH,
    NOTE_GAP,
    SEGMENT_GAP,
    SEGMENT_PADDING,
    STAFF_OFFSET,
    LayoutConfig,
    note_spacing,
    pack_lines,
)
from chordgrid.notation_models import BarlineType, Measure, Score, TimeSignature
from chordgrid.render_backends import (
    CurveOp,
    LineOp,
    Point,
    PolygonOp,
    RenderBackend,
    SvgBackend,
    TextOp,
)
from chordgrid.strum_patterns import StrumPatternAssigner, StrumStroke
from chordgrid.ties import NotePosition, PendingTieQueue, TieCurve, TieResolver
from chordgrid.voltas import TEXT_SIZE, MeasurePlacement, VoltaResolver, VoltaSegment

logger = logging.getLogger(__name__)

PAGE_MARGIN: Final[float] = 20.0
TOP_MARGIN: Final[float] = 40.0
STEM_LENGTH: Final[float] = 30.0
BEAM_GAP: Final[float] = 6.0
BEAM_THICKNESS: Final[float] = 3.0
BEAMLET_LENGTH: Final[float] = 8.0
FLAG_LENGTH: Final[float] = 10.0
TIME_SIGNATURE_WIDTH: Final[float] = 18.0
CHORD_FONT_SIZE: Final[float] = 16.0
CHORD_BASELINE: Final[float] = 18.0  # below the measure top
TUPLET_CLEARANCE: Final[float] = 6.0  # between stem tips and the tuplet bracket
TIE_ANCHOR_OFFSET: Final[float] = 8.0
REPEAT_DOT_OFFSET: Final[float] = 12.0
VOLTA_LIFT: Final[float] = 10.0
REPEAT_MEASURE_OFFSET: Final[float] = 30.0  # chord of a % measure, from the left edge
MEASURE_NUMBER_SIZE: Final[float] = 10.0
COUNTING_MARGIN: Final[float] = 5.0
COUNTING_FONT_SIZES: Final[dict[CountingSize, float]] = {"t": 14.0, "m": 12.0, "s": 10.0}
STROKE_OFFSET: Final[float] = 28.0  # between the staff line and a pick stroke
STROKE_HEIGHT: Final[float] = 10.0


def _text_width(text: str, font_size: float) -> float:
    return len(text) * font_size * 0.6


def _square(x: float, y: float, half: float) -> tuple[Point, ...]:
    return ((x - half, y - half), (x + half, y - half), (x + half, y + half), (x - half, y + half))


@dataclass
class ComposedScore:
    """
    Everything the composer produced for one score.

    Attributes:
        width, height:   Canvas size in layout units.
        content:         Serialised backend output.
        line_bounds:     Global extent of each rendering line.
        analyses:        Beam analysis of every measure, in score order.
        placements:      Where every measure ended up.
        note_positions:  Rendered notes as handed to the tie resolver.
        tie_curves:      Resolved tie curves.
        volta_segments:  Resolved volta bracket segments.
        strokes:         Pick strokes or finger symbols, when a strum mode is set.
    """

    width: float
    height: float
    content: str
    line_bounds: list[Bounds] = field(default_factory=list)
    analyses: list[AnalyzedMeasure] = field(default_factory=list)
    placements: list[MeasurePlacement] = field(default_factory=list)
    note_positions: list[NotePosition] = field(default_factory=list)
    tie_curves: list[TieCurve] = field(default_factory=list)
    volta_segments: list[VoltaSegment] = field(default_factory=list)
    strokes: list[StrumStroke] = field(default_factory=list)

    @property
    def line_count(self) -> int:
        return len(self.line_bounds)


class ScoreComposer:
    """
    Walk a score in layout order and turn it into drawing operations.

    Each rendering line is placed against a fresh :class:`ElementRegistry`;
    barline anchors are copied out before the registry is cleared so that
    ties and volta brackets can be resolved once every line is known.

    Stems point up or down according to ``config.stems_direction``; ties are
    drawn on the opposite side and tuplet brackets beyond the stem tips.
    """

    def __init__(
        self,
        config: LayoutConfig | None = None,
        backend: RenderBackend | None = None,
    ) -> None:
        self.config = config or LayoutConfig()
        self.backend = backend or SvgBackend()
        self.registry = ElementRegistry(
            min_spacing=self.config.min_spacing,
            chord_tuplet_vertical_spacing=self.config.chord_tuplet_vertical_spacing,
            debug=self.config.debug,
        )
        self.analyzer = BeamAnalyzer()
        self.pending_ties = PendingTieQueue()
        self.tie_resolver = TieResolver(self.pending_ties)
        self.volta_resolver = VoltaResolver()
        self._stem_sign = -1.0 if self.config.stems_direction == "up" else 1.0
        self._strokes: dict[tuple[int, NoteReference], StrumStroke] = {}

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def compose(self, score: Score, title: str | None = None) -> ComposedScore:
        """
        Lay out *score* and render it with the configured backend.

        Args:
            score: Parsed score.
            title: Document title; defaults to ``score.title``.

        Returns:
            ComposedScore with the canvas size, the serialised output and the
            intermediate layout results.
        """
        self.backend.clear()
        self.registry.clear()
        self.pending_ties.clear()
        self.volta_resolver.clear()

        signatures = self._signatures(score)
        analyses = [
            self.analyzer.analyze(measure, signature)
            for measure, signature in zip(score.measures, signatures)
        ]
        strokes: list[StrumStroke] = []
        if self.config.strum_mode is not None:
            assigner = StrumPatternAssigner(self.config.strum_mode, self.config.finger_language)
            strokes = assigner.assign(analyses)
        self._strokes = {(stroke.measure_index, stroke.reference): stroke for stroke in strokes}

        placements: list[MeasurePlacement] = []
        positions: list[NotePosition] = []
        line_bounds: list[Bounds] = []
        shown_meter: tuple[int, int] | None = None

        for slots in pack_lines(score.measures, self.config):
            line_index = slots[0].line_index
            y = TOP_MARGIN + line_index * self.config.line_height
            x = PAGE_MARGIN

            for slot in slots:
                index = slot.measure_index
                signature = signatures[index]
                # a grouping-mode override alone is not a new meter
                meter = (signature.numerator, signature.denominator)
                show_signature = meter != shown_meter
                shown_meter = meter

                placement = MeasurePlacement(
                    measure=score.measures[index],
                    line_index=line_index,
                    pos_in_line=slot.pos_in_line,
                    global_index=index,
                    x=x,
                    y=y,
                    width=slot.width,
                )
                positions.extend(
                    self._place_measure(placement, analyses[index], signature, show_signature)
                )
                placements.append(placement)
                self.volta_resolver.add_measure_placement(placement)
                x += slot.width

            bounds = self.registry.global_bounds()
            if bounds is not None:
                line_bounds.append(bounds)
            self.volta_resolver.add_barlines(self.registry.barline_anchors())
            if self.config.debug:
                logger.debug(f"Line {line_index + 1} placed: {self.registry.stats()}")
            self.registry.clear()

        tie_curves = self.tie_resolver.resolve(positions)
        for curve in tie_curves:
            self._draw_tie(curve)
        if len(self.pending_ties):
            logger.warning(f"{len(self.pending_ties)} half-ties were never continued")
            self.pending_ties.clear()

        volta_segments = self.volta_resolver.resolve()
        for segment in volta_segments:
            self._draw_volta(segment)
        late_bounds = self.registry.global_bounds()
        self.registry.clear()

        total: Bounds | None = late_bounds
        for bounds in line_bounds:
            total = bounds.union(total)
        width = (total.max_x if total else 0.0) + PAGE_MARGIN
        height = (total.max_y if total else 0.0) + PAGE_MARGIN

        content = self.backend.render(
            title=score.title if title is None else title,
            width=width,
            height=height,
        )
        logger.debug(
            f"Composed {len(score.measures)} measures on {len(line_bounds)} lines "
            f"({width:.0f}x{height:.0f})"
        )
        return ComposedScore(
            width=width,
            height=height,
            content=content,
            line_bounds=line_bounds,
            analyses=analyses,
            placements=placements,
            note_positions=positions,
            tie_curves=tie_curves,
            volta_segments=volta_segments,
            strokes=strokes,
        )

    # ------------------------------------------------------------------
    # Measure placement
    # ------------------------------------------------------------------

    @staticmethod
    def _signatures(score: Score) -> list[TimeSignature]:
        """Time signature in force in each measure; an override persists."""
        signature = score.time_signature
        signatures: list[TimeSignature] = []
        for measure in score.measures:
            if measure.time_signature is not None:
                signature = measure.time_signature
            signatures.append(signature)
        return signatures

    def _place_measure(
        self,
        placement: MeasurePlacement,
        analysis: AnalyzedMeasure,
        signature: TimeSignature,
        show_signature: bool,
    ) -> list[NotePosition]:
        measure = placement.measure
        index = placement.global_index
        staff_y = placement.y + STAFF_OFFSET

        self._draw_left_barline(placement)
        self._draw_staff_line(placement, staff_y)
        if self.config.measure_numbers:
            self._draw_measure_number(placement)

        content_x = placement.x + SEGMENT_PADDING
        if show_signature:
            self._draw_time_signature(signature, content_x, staff_y, index)
            content_x += TIME_SIGNATURE_WIDTH

        if self.config.display_repeat_symbol and measure.is_repeat:
            self._draw_repeat_measure(placement, staff_y)
            self._draw_right_barline(placement, staff_y)
            return []

        xs, segment_xs = self._note_xs(measure, content_x, placement.right - SEGMENT_PADDING)

        beamed = analysis.level1_beamed()
        stems: dict[NoteReference, tuple[float, float]] = {}
        positions: list[NotePosition] = []
        tie_y = staff_y - self._stem_sign * TIE_ANCHOR_OFFSET

        for flat in analysis.notes:
            x = xs[flat.reference]
            if flat.note.is_rest:
                self._draw_rest(flat, x, staff_y, index)
                continue

            stem = self._draw_note(flat, x, staff_y, index)
            if stem is not None:
                stems[flat.reference] = stem
                if flat.is_beamable and flat.reference not in beamed:
                    self._draw_flags(flat, stem, index)

            note = flat.note
            positions.append(
                NotePosition(
                    x=x,
                    y=tie_y,
                    measure_index=index,
                    segment_index=flat.segment_index,
                    note_index=flat.note_index,
                    line_index=placement.line_index,
                    measure_left_x=placement.x,
                    measure_right_x=placement.right,
                    tie_start=note.tie_start,
                    tie_end=note.tie_end,
                    tie_to_void=note.tie_to_void,
                    tie_from_void=note.tie_from_void,
                )
            )

        self._draw_beams(analysis, stems, index)
        self._draw_chords(measure, segment_xs, stems, placement)
        self._draw_tuplets(analysis, xs, staff_y, index)
        if self.config.counting:
            self._draw_counting(analysis, signature, xs, staff_y, index)
        if self._strokes:
            self._draw_strokes(analysis, xs, staff_y, index)
        self._draw_right_barline(placement, staff_y)

        if self.config.debug:
            self._check_chord_alignment(index)
        return positions

    def _note_xs(
        self,
        measure: Measure,
        start: float,
        end: float,
    ) -> tuple[dict[NoteReference, float], list[float]]:
        """Note head centres and segment starts, spread over the room the measure was given."""
        offsets: dict[NoteReference, float] = {}
        segment_offsets: list[float] = []
        cursor = 0.0
        for segment_index, segment in enumerate(measure.segments):
            if segment_index > 0 and segment.leading_space:
                cursor += SEGMENT_GAP
            segment_offsets.append(cursor + HEAD_HALF_WIDTH)
            if not segment.notes:
                cursor += EMPTY_SEGMENT_WIDTH
            for note_index, note in enumerate(segment.notes):
                if note_index > 0 and note.has_leading_space:
                    cursor += NOTE_GAP
                offsets[NoteReference(segment_index, note_index)] = cursor + HEAD_HALF_WIDTH
                cursor += note_spacing(note)

        scale = max(1.0, (end - start) / cursor) if cursor > 0 else 1.0
        xs = {ref: start + offset * scale for ref, offset in offsets.items()}
        return xs, [start + offset * scale for offset in segment_offsets]

    # ------------------------------------------------------------------
    # Glyphs
    # ------------------------------------------------------------------

    def _polyline(self, points: list[Point], stroke_width: float, role: str) -> None:
        for (x1, y1), (x2, y2) in zip(points, points[1:]):
            self.backend.draw(LineOp(x1, y1, x2, y2, stroke_width=stroke_width, role=role))

    def _draw_staff_line(self, placement: MeasurePlacement, staff_y: float) -> None:
        self.backend.draw(
            LineOp(placement.x, staff_y, placement.right, staff_y, stroke_width=1.0, role="staff-line")
        )
        self.registry.register(
            ElementType.STAFF_LINE,
            BoundingBox(placement.x, staff_y - 0.5, placement.width, 1.0),
            priority=0,
            metadata=MarkInfo(placement.global_index),
        )

    def _draw_time_signature(
        self,
        signature: TimeSignature,
        x: float,
        staff_y: float,
        index: int,
    ) -> None:
        centre = x + TIME_SIGNATURE_WIDTH / 2 - 2
        for value, y in ((signature.numerator, staff_y - 4), (signature.denominator, staff_y + 16)):
            self.backend.draw(TextOp(centre, y, str(value), 16, "bold", "middle", role="time-signature"))
        self.registry.register(
            ElementType.TIME_SIGNATURE,
            BoundingBox(centre - 7, staff_y - 18, 14, 36),
            priority=0,
            metadata=MarkInfo(index, str(signature)),
        )

    def _draw_dot(self, x: float, y: float, index: int) -> None:
        self.backend.draw(
            PolygonOp(_square(x, y, 1.5), role="dot")
        )
        self.registry.register(
            ElementType.DOT,
            BoundingBox(x - 1.5, y - 1.5, 3.0, 3.0),
            priority=4,
            metadata=MarkInfo(index, "dot"),
        )

    def _draw_note(
        self,
        flat: NoteWithPosition,
        x: float,
        staff_y: float,
        index: int,
    ) -> tuple[float, float] | None:
        """Draw head, dot and stem; return ``(stem_x, tip_y)`` or None for stemless notes."""
        note = flat.note
        half = HEAD_HALF_WIDTH
        if note.value <= 2:
            diamond = (
                (x - half, staff_y),
                (x, staff_y - half),
                (x + half, staff_y),
                (x, staff_y + half),
            )
            self.backend.draw(PolygonOp(diamond, filled=False, stroke_width=1.5, role="note-head"))
        else:
            self.backend.draw(
                LineOp(x - 5, staff_y + 5, x + 5, staff_y - 5, stroke_width=4.0, role="note-head")
            )
        self.registry.register(
            ElementType.NOTE,
            BoundingBox(x - half, staff_y - half, 2 * half, 2 * half),
            priority=1,
            metadata=NoteHeadInfo(
                measure_index=index,
                segment_index=flat.segment_index,
                note_index=flat.note_index,
                exact_x=x,
                exact_y=staff_y,
                value=note.value,
                dotted=note.dotted,
            ),
        )
        if note.dotted:
            self._draw_dot(x + half + 4, staff_y + 3, index)

        if note.value == 1:
            return None

        sign = self._stem_sign
        stem_x = x - sign * 5
        base_y = staff_y + sign * 5
        tip_y = staff_y + sign * STEM_LENGTH
        self.backend.draw(LineOp(stem_x, base_y, stem_x, tip_y, stroke_width=1.5, role="stem"))
        top, bottom = min(base_y, tip_y), max(base_y, tip_y)
        self.registry.register(
            ElementType.STEM,
            BoundingBox(stem_x - 0.75, top, 1.5, bottom - top),
            priority=2,
            metadata=StemInfo(index, flat.segment_index, flat.note_index, stem_x, top, bottom),
        )
        return stem_x, tip_y

    def _draw_rest(self, flat: NoteWithPosition, x: float, staff_y: float, index: int) -> None:
        note = flat.note
        if note.value <= 2:
            # whole rests hang below the line, half rests sit on it
            top = staff_y if note.value == 1 else staff_y - 5
            block = ((x - 6, top), (x + 6, top), (x + 6, top + 5), (x - 6, top + 5))
            self.backend.draw(PolygonOp(block, role="rest"))
            box = BoundingBox(x - 6, top, 12, 5)
        elif note.value == 4:
            zigzag = [
                (x - 3, staff_y - 14),
                (x + 3, staff_y - 7),
                (x - 3, staff_y),
                (x + 3, staff_y + 7),
                (x - 2, staff_y + 13),
            ]
            self._polyline(zigzag, 2.0, "rest")
            box = BoundingBox(x - 4, staff_y - 14, 8, 28)
        else:
            self.backend.draw(
                LineOp(x + 4, staff_y - 10, x - 2, staff_y + 12, stroke_width=1.5, role="rest")
            )
            for hook in range(flat.level):
                hx, hy = x + 2 - hook * 1.5, staff_y - 9 + hook * 6
                hook_points = ((hx - 3, hy), (hx, hy - 1.5), (hx, hy + 1.5), (hx - 3, hy + 1.5))
                self.backend.draw(PolygonOp(hook_points, role="rest"))
            box = BoundingBox(x - 5, staff_y - 12, 10, 26)

        self.registry.register(
            ElementType.REST,
            box,
            priority=1,
            metadata=RestInfo(index, flat.segment_index, flat.note_index, note.value),
        )
        if note.dotted:
            self._draw_dot(x + HEAD_HALF_WIDTH + 4, staff_y - 3, index)

    def _draw_flags(self, flat: NoteWithPosition, stem: tuple[float, float], index: int) -> None:
        stem_x, tip_y = stem
        sign = self._stem_sign
        for count in range(flat.level):
            y = tip_y - sign * count * BEAM_GAP
            end_y = y - sign * FLAG_LENGTH
            self.backend.draw(LineOp(stem_x, y, stem_x + 8, end_y, stroke_width=1.5, role="flag"))
            self.registry.register(
                ElementType.FLAG,
                BoundingBox(stem_x, min(y, end_y), 8, FLAG_LENGTH),
                priority=3,
                metadata=MarkInfo(index, "flag"),
            )

    # ------------------------------------------------------------------
    # Beams and tuplets
    # ------------------------------------------------------------------

    def _draw_beams(
        self,
        analysis: AnalyzedMeasure,
        stems: dict[NoteReference, tuple[float, float]],
        index: int,
    ) -> None:
        beamed = analysis.level1_beamed()
        for group in analysis.beam_groups:
            anchors = [stems[ref] for ref in group.notes if ref in stems]
            if not anchors:
                continue
            if group.is_partial:
                # lone primary notes keep their flags
                if group.level == 1 or group.notes[0] not in beamed:
                    continue
                stem_x = anchors[0][0]
                reach = BEAMLET_LENGTH if group.direction is BeamDirection.RIGHT else -BEAMLET_LENGTH
                x1, x2 = sorted((stem_x, stem_x + reach))
            else:
                x1, x2 = anchors[0][0], anchors[-1][0]
            self._draw_beam(group, x1, x2, anchors[0][1], index)

    def _draw_beam(self, group: BeamGroup, x1: float, x2: float, tip_y: float, index: int) -> None:
        sign = self._stem_sign
        edge = tip_y - sign * (group.level - 1) * BEAM_GAP
        top = min(edge, edge - sign * BEAM_THICKNESS)
        bar = ((x1, top), (x2, top), (x2, top + BEAM_THICKNESS), (x1, top + BEAM_THICKNESS))
        self.backend.draw(PolygonOp(bar, role="beamlet" if group.is_partial else "beam"))
        self.registry.register(
            ElementType.BEAM,
            BoundingBox(x1, top, x2 - x1, BEAM_THICKNESS),
            priority=3,
            metadata=BeamInfo(index, group.level, group.is_partial),
        )

    def _draw_tuplets(
        self,
        analysis: AnalyzedMeasure,
        xs: dict[NoteReference, float],
        staff_y: float,
        index: int,
    ) -> None:
        sign = self._stem_sign
        bracket_y = staff_y + sign * (STEM_LENGTH + TUPLET_CLEARANCE)
        hook_y = bracket_y - sign * 5

        for group_id, members in analysis.tuplet_groups().items():
            tuplet = members[0].tuplet
            left = xs[members[0].reference] - HEAD_HALF_WIDTH
            right = xs[members[-1].reference] + HEAD_HALF_WIDTH
            self._polyline(
                [(left, hook_y), (left, bracket_y), (right, bracket_y), (right, hook_y)],
                1.0,
                "tuplet-bracket",
            )
            self.registry.register(
                ElementType.TUPLET_BRACKET,
                BoundingBox(left, min(bracket_y, hook_y), right - left, 5),
                priority=6,
                metadata=TupletInfo(index, group_id, tuplet.label),
            )

            label = tuplet.label
            width = _text_width(label, 11) + 2
            centre = (left + right) / 2
            number_y = self.registry.suggest_vertical_offset(
                ElementType.TUPLET_NUMBER,
                ElementType.CHORD,
                bracket_y - 14 if sign < 0 else bracket_y + 2,
                span=(centre - width / 2, centre + width / 2),
            )
            box = BoundingBox(centre - width / 2, number_y, width, 12)
            free = self.registry.find_free_position(
                box,
                ElementType.TUPLET_NUMBER,
                direction="vertical",
                exclude_types=(ElementType.TUPLET_BRACKET,),
                max_attempts=self.config.max_placement_attempts,
            )
            if free is None:
                free = box
            self.backend.draw(
                TextOp(centre, free.bottom - 2, label, 11, "bold", "middle", role="tuplet-number")
            )
            self.registry.register(
                ElementType.TUPLET_NUMBER,
                free,
                priority=7,
                metadata=TupletInfo(index, group_id, label),
            )

    # ------------------------------------------------------------------
    # Chords and barlines
    # ------------------------------------------------------------------

    def _place_chord(
        self,
        text: str,
        x: float,
        anchor: float,
        placement: MeasurePlacement,
        segment_index: int,
    ) -> None:
        baseline = placement.y + CHORD_BASELINE
        width = _text_width(text, CHORD_FONT_SIZE)
        box = BoundingBox(x - HEAD_HALF_WIDTH, baseline - CHORD_FONT_SIZE, width, CHORD_FONT_SIZE + 2)
        free = self.registry.find_free_position(
            box,
            ElementType.CHORD,
            direction="vertical",
            max_attempts=self.config.max_placement_attempts,
        )
        if free is None:
            free = box
        self.backend.draw(TextOp(free.x, free.bottom - 2, text, CHORD_FONT_SIZE, "bold", role="chord"))
        self.registry.register(
            ElementType.CHORD,
            free,
            priority=6,
            metadata=ChordInfo(placement.global_index, segment_index, text, anchor + free.x - box.x),
        )

    def _draw_chords(
        self,
        measure: Measure,
        segment_xs: list[float],
        stems: dict[NoteReference, tuple[float, float]],
        placement: MeasurePlacement,
    ) -> None:
        for segment_index, segment in enumerate(measure.segments):
            if not segment.chord:
                continue
            x = segment_xs[segment_index]
            first = NoteReference(segment_index, 0)
            anchor = stems[first][0] if first in stems else x
            self._place_chord(segment.chord, x, anchor, placement, segment_index)

    def _draw_repeat_measure(self, placement: MeasurePlacement, staff_y: float) -> None:
        """Draw a ``%`` measure as one repeat sign with its chord at the left."""
        centre = placement.x + placement.width / 2
        self.backend.draw(TextOp(centre, staff_y + 10, "%", 30, "bold", "middle", role="repeat-measure"))
        self.registry.register(
            ElementType.REPEAT_SYMBOL,
            BoundingBox(centre - 9, staff_y - 17, 18, 30),
            priority=5,
            metadata=MarkInfo(placement.global_index, "%"),
        )
        for segment_index, segment in enumerate(placement.measure.segments):
            if segment.chord:
                x = placement.x + REPEAT_MEASURE_OFFSET
                self._place_chord(segment.chord, x, x, placement, segment_index)
                break

    def _register_barline(
        self,
        placement: MeasurePlacement,
        side: str,
        exact_x: float,
        visual: tuple[float, float],
        element_type: ElementType = ElementType.BARLINE,
    ) -> None:
        start, end = visual
        self.registry.register(
            element_type,
            BoundingBox(start, placement.y, end - start, self.config.measure_height),
            priority=0,
            metadata=BarlineInfo(placement.global_index, side, exact_x, placement.y, start, end),
        )

    def _draw_repeat_dots(self, x: float, staff_y: float, index: int) -> None:
        for y in (staff_y - REPEAT_DOT_OFFSET, staff_y + REPEAT_DOT_OFFSET):
            self.backend.draw(PolygonOp(_square(x, y, 2.0), role="repeat-dot"))
        self.registry.register(
            ElementType.REPEAT_SYMBOL,
            BoundingBox(x - 2, staff_y - REPEAT_DOT_OFFSET - 2, 4, 2 * REPEAT_DOT_OFFSET + 4),
            priority=0,
            metadata=MarkInfo(index, "repeat"),
        )

    def _draw_repeat_start(self, placement: MeasurePlacement, x: float, side: str) -> None:
        top, bottom = placement.y, placement.y + self.config.measure_height
        self.backend.draw(LineOp(x + 1.5, top, x + 1.5, bottom, stroke_width=4.0, role="barline"))
        self.backend.draw(LineOp(x + 7, top, x + 7, bottom, stroke_width=1.5, role="barline"))
        self._draw_repeat_dots(x + 13, placement.y + STAFF_OFFSET, placement.global_index)
        self._register_barline(placement, side, x, (x - 0.5, x + 15), ElementType.DOUBLE_BAR)

    def _draw_left_barline(self, placement: MeasurePlacement) -> None:
        x = placement.x
        if placement.measure.is_repeat_start:
            self._draw_repeat_start(placement, x, "left")
        elif placement.pos_in_line == 0:
            bottom = placement.y + self.config.measure_height
            self.backend.draw(LineOp(x, placement.y, x, bottom, role="barline"))
            self._register_barline(placement, "left", x, (x - 0.75, x + 0.75))

    def _draw_right_barline(self, placement: MeasurePlacement, staff_y: float) -> None:
        measure = placement.measure
        x = placement.right
        top, bottom = placement.y, placement.y + self.config.measure_height

        if measure.barline is BarlineType.SINGLE:
            self.backend.draw(LineOp(x, top, x, bottom, role="barline"))
            self._register_barline(placement, "right", x, (x - 0.75, x + 0.75))
        elif measure.barline is BarlineType.DOUBLE:
            self.backend.draw(LineOp(x - 6, top, x - 6, bottom, role="barline"))
            self.backend.draw(LineOp(x - 1.5, top, x - 1.5, bottom, stroke_width=5.0, role="barline"))
            self._register_barline(placement, "right", x, (x - 7, x + 1), ElementType.DOUBLE_BAR)
        elif measure.barline is BarlineType.REPEAT_END:
            self._draw_repeat_dots(x - 14, staff_y, placement.global_index)
            self.backend.draw(LineOp(x - 7, top, x - 7, bottom, stroke_width=1.5, role="barline"))
            self.backend.draw(LineOp(x - 1.5, top, x - 1.5, bottom, stroke_width=4.0, role="barline"))
            self._register_barline(placement, "right", x, (x - 16, x + 0.5), ElementType.DOUBLE_BAR)
            if measure.repeat_count is not None:
                self._draw_repeat_count(placement, measure.repeat_count)
        else:
            self._draw_repeat_start(placement, x, "right")

    def _draw_repeat_count(self, placement: MeasurePlacement, count: int) -> None:
        label = f"x{count}"
        width = _text_width(label, 16)
        box = BoundingBox(placement.right - 8 - width, placement.y + 2, width, 18)
        free = self.registry.find_free_position(
            box,
            ElementType.REPEAT_COUNT,
            direction="vertical",
            max_attempts=self.config.max_placement_attempts,
        )
        if free is None:
            free = box
        self.backend.draw(TextOp(free.right, free.bottom - 2, label, 16, "bold", "end", "repeat-count"))
        self.registry.register(
            ElementType.REPEAT_COUNT,
            free,
            priority=5,
            metadata=MarkInfo(placement.global_index, label),
        )

    # ------------------------------------------------------------------
    # Late passes: ties and voltas
    # ------------------------------------------------------------------

    def _draw_tie(self, curve: TieCurve) -> None:
        sign = -self._stem_sign
        start = (curve.start_x, curve.start_y)
        end = (curve.end_x, curve.end_y)
        if curve.cross_measure:
            controls = (
                (curve.start_x + 30, curve.start_y + sign * 15),
                (curve.end_x - 30, curve.end_y + sign * 15),
            )
        else:
            mid_x = (curve.start_x + curve.end_x) / 2
            outer = max(curve.start_y, curve.end_y) if sign > 0 else min(curve.start_y, curve.end_y)
            controls = ((mid_x, outer + sign * 8),)
        role = "tie" if curve.kind == "full" else f"tie-{curve.kind}"
        self.backend.draw(CurveOp(start, controls, end, role=role))
        ys = [curve.start_y, curve.end_y, *(y for _, y in controls)]
        self.registry.register(
            ElementType.TIE,
            BoundingBox(curve.start_x, min(ys), curve.end_x - curve.start_x, max(ys) - min(ys)),
            priority=4,
            metadata=TieInfo(curve.measure_index, curve.start_x, curve.end_x, curve.kind),
        )

    def _draw_volta(self, segment: VoltaSegment) -> None:
        y = segment.y - VOLTA_LIFT
        hook_bottom = y + segment.hook_height
        self.backend.draw(LineOp(segment.start_x, y, segment.end_x, y, role="volta"))
        if segment.left_hook:
            self.backend.draw(LineOp(segment.start_x, y, segment.start_x, hook_bottom, role="volta"))
        if segment.right_hook:
            self.backend.draw(LineOp(segment.end_x, y, segment.end_x, hook_bottom, role="volta"))
        info = VoltaBracketInfo(
            text=segment.text,
            is_closed=segment.is_closed,
            measure_start_index=segment.measure_start_index,
            measure_end_index=segment.measure_end_index,
            line_index=segment.line_index,
            is_first_line=segment.show_text,
            left_hook_x=segment.start_x if segment.left_hook else None,
            right_hook_x=segment.end_x if segment.right_hook else None,
        )
        self.registry.register(
            ElementType.VOLTA_BRACKET,
            BoundingBox(segment.start_x, y, segment.end_x - segment.start_x, segment.hook_height),
            priority=0,
            metadata=info,
        )
        if segment.show_text:
            self.backend.draw(
                TextOp(segment.start_x + 5, y + TEXT_SIZE, segment.text, TEXT_SIZE, role="volta-text")
            )
            self.registry.register(
                ElementType.VOLTA_TEXT,
                BoundingBox(segment.start_x + 5, y, _text_width(segment.text, TEXT_SIZE), TEXT_SIZE + 2),
                priority=5,
                metadata=info,
            )

    # ------------------------------------------------------------------
    # Teaching marks: measure numbers, counting and strokes
    # ------------------------------------------------------------------

    def _draw_measure_number(self, placement: MeasurePlacement) -> None:
        index = placement.global_index
        if index % self.config.measure_number_interval:
            return
        label = str(self.config.measure_number_start + index)
        width = _text_width(label, MEASURE_NUMBER_SIZE)
        box = BoundingBox(placement.x + 3, placement.y + 1, width, MEASURE_NUMBER_SIZE + 1)
        free = self.registry.find_free_position(
            box,
            ElementType.MEASURE_NUMBER,
            direction="horizontal",
            max_attempts=self.config.max_placement_attempts,
        )
        if free is None:
            free = box
        self.backend.draw(
            TextOp(free.x, free.bottom - 1, label, MEASURE_NUMBER_SIZE, role="measure-number")
        )
        self.registry.register(
            ElementType.MEASURE_NUMBER,
            free,
            priority=5,
            metadata=MarkInfo(index, label),
        )

    def _draw_counting(
        self,
        analysis: AnalyzedMeasure,
        signature: TimeSignature,
        xs: dict[NoteReference, float],
        staff_y: float,
        index: int,
    ) -> None:
        """Counting labels sit under the heads when stems point up, above them otherwise."""
        for label in count_measure(analysis, signature):
            if not label.is_visible:
                continue
            size = COUNTING_FONT_SIZES[label.size]
            x = xs[label.reference]
            if self._stem_sign < 0:
                baseline = staff_y + HEAD_HALF_WIDTH + COUNTING_MARGIN + size * 0.75
            else:
                baseline = staff_y - HEAD_HALF_WIDTH - COUNTING_MARGIN
            weight = "bold" if label.size == "t" else "normal"
            self.backend.draw(TextOp(x, baseline, label.text, size, weight, "middle", role="counting"))
            width = _text_width(label.text, size)
            self.registry.register(
                ElementType.COUNTING,
                BoundingBox(x - width / 2, baseline - size * 0.75, width, size * 0.75),
                priority=6,
                metadata=MarkInfo(index, label.text),
            )

    def _draw_pick_stroke(self, direction: str, box: BoundingBox) -> None:
        left, right = box.x, box.right
        if direction == "down":
            points = [(left, box.bottom), (left, box.y), (right, box.y), (right, box.bottom)]
        else:
            points = [(left, box.y), ((left + right) / 2, box.bottom), (right, box.y)]
        self._polyline(points, 1.5, "pick-stroke")

    def _draw_strokes(
        self,
        analysis: AnalyzedMeasure,
        xs: dict[NoteReference, float],
        staff_y: float,
        index: int,
    ) -> None:
        if self._stem_sign < 0:
            top = staff_y + STROKE_OFFSET
        else:
            top = staff_y - STROKE_OFFSET - STROKE_HEIGHT

        for flat in analysis.notes:
            stroke = self._strokes.get((index, flat.reference))
            if stroke is None:
                continue
            x = xs[flat.reference]
            if stroke.symbol is None:
                element_type, width = ElementType.PICK_STROKE, 8.0
            else:
                element_type, width = ElementType.FINGER_SYMBOL, _text_width(stroke.symbol, 11)
            box = BoundingBox(x - width / 2, top, width, STROKE_HEIGHT)
            free = self.registry.find_free_position(
                box,
                element_type,
                direction="vertical",
                max_attempts=self.config.max_placement_attempts,
            )
            if free is None:
                free = box

            if stroke.symbol is None:
                self._draw_pick_stroke(stroke.direction, free)
            else:
                self.backend.draw(
                    TextOp(x, free.bottom, stroke.symbol, 11, "normal", "middle", role="finger-symbol")
                )
            self.registry.register(
                element_type,
                free,
                priority=5,
                metadata=StrokeInfo(
                    index, flat.segment_index, flat.note_index, stroke.direction, stroke.symbol
                ),
            )

    # ------------------------------------------------------------------
    # Diagnostics
    # ------------------------------------------------------------------

    def _check_chord_alignment(self, index: int) -> None:
        elements = self.registry.elements_for_measure(index)
        stems = {
            (e.metadata.segment_index, e.metadata.note_index): e.metadata
            for e in elements
            if isinstance(e.metadata, StemInfo)
        }
        for element in elements:
            info = element.metadata
            if not isinstance(info, ChordInfo):
                continue
            stem = stems.get((info.segment_index, 0))
            if stem is None:
                continue
            drift = abs(info.anchor_x - stem.x)
            if drift > 1.0:
                logger.debug(
                    f"Measure {index + 1}: chord '{info.text}' sits {drift:.1f} away from its stem"
                )
