"""ScoreLoader: reads a tokenized chord grid from its JSON hand-off format.

The document is validated against pydantic models that mirror its layout;
validated documents are then converted into the frozen notation models.
"""

from __future__ import annotations

import json
import re
from pathlib import Path
from typing import Annotated, Any, Final, Literal

from pydantic import (
    AfterValidator,
    BaseModel,
    ConfigDict,
    Field,
    PositiveInt,
    StrictBool,
    StrictInt,
    StrictStr,
    ValidationError,
    field_validator,
    model_validator,
)

from chordgrid.notation_models import (
    NOTE_VALUES,
    BarlineType,
    GroupingMode,
    Measure,
    Note,
    Score,
    Segment,
    TimeSignature,
    Tuplet,
    TupletPosition,
    VoltaInfo,
)
from chordgrid.strum_patterns import FINGER_SYMBOLS

_TIME_SIGNATURE_RE: Final[re.Pattern[str]] = re.compile(r"^(\d+)/(\d+)$")

# Error labels per document field, used to word validation errors.
_FIELD_LABELS: Final[dict[str, str]] = {
    "time_signature": "invalid time signature",
    "grouping_mode": "unknown grouping mode",
    "barline": "unknown barline",
    "value": "unknown note value",
    "count": "tuplet count",
    "ratio": "tuplet ratio",
    "position": "unknown tuplet position",
    "repeat_count": "repeat_count",
    "pick": "unknown pick direction",
    "finger": "unknown finger symbol",
}

_CONTAINERS: Final[dict[str, str]] = {
    "measures": "measure",
    "segments": "segment",
    "notes": "note",
}

_PICK_DIRECTIONS: Final[dict[str, str]] = {"d": "down", "down": "down", "u": "up", "up": "up"}

NoteValue = Literal[1, 2, 4, 8, 16, 32, 64]


class ScoreFormatError(ValueError):
    """Raised when a score document does not follow the expected layout."""


# ── Document models ──────────────────────────────────────────────────────────

class _Document(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)


class TupletDoc(_Document):
    count: StrictInt = Field(..., ge=2)
    group: StrictStr = Field(..., min_length=1)
    position: TupletPosition = TupletPosition.MIDDLE
    ratio: tuple[PositiveInt, PositiveInt] | None = None

    @field_validator("ratio", mode="before")
    @classmethod
    def _strict_ratio(cls, value: Any) -> Any:
        if isinstance(value, (list, tuple)) and not all(
            isinstance(part, int) and not isinstance(part, bool) for part in value
        ):
            raise ValueError("must be two positive integers")
        return value


class NoteDoc(_Document):
    """A note object; a bare integer is shorthand for ``{"value": n}``."""

    value: NoteValue
    dotted: StrictBool = False
    rest: StrictBool = False
    tie_start: StrictBool = False
    tie_end: StrictBool = False
    tie_to_void: StrictBool = False
    tie_from_void: StrictBool = False
    leading_space: StrictBool = False
    forced_beam: StrictBool = False
    tuplet: TupletDoc | None = None
    pick: Literal["d", "u", "down", "up"] | None = None
    finger: StrictStr | None = None

    @model_validator(mode="before")
    @classmethod
    def _expand_shorthand(cls, data: Any) -> Any:
        if isinstance(data, int) and not isinstance(data, bool):
            return {"value": data}
        return data

    @field_validator("value", mode="before")
    @classmethod
    def _integer_value(cls, value: Any) -> Any:
        # 8.0 and true would otherwise pass as 8 and 1
        if isinstance(value, bool) or not isinstance(value, int):
            raise ValueError(f"'{value}' is not one of {', '.join(str(v) for v in NOTE_VALUES)}")
        return value

    @field_validator("finger")
    @classmethod
    def _known_finger(cls, value: str | None) -> str | None:
        if value is not None and value not in FINGER_SYMBOLS:
            raise ValueError(f"'{value}'. Use one of: {', '.join(sorted(FINGER_SYMBOLS))}")
        return value


class SegmentDoc(_Document):
    chord: StrictStr = ""
    leading_space: StrictBool = False
    notes: list[NoteDoc] = Field(default_factory=list)


class VoltaDoc(_Document):
    numbers: list[StrictInt] = Field(default_factory=list)
    text: StrictStr | None = None
    closed: StrictBool = True


def _check_time_signature(text: str) -> str:
    match = _TIME_SIGNATURE_RE.match(text.strip())
    if not match or int(match.group(1)) < 1 or int(match.group(2)) not in NOTE_VALUES:
        raise ValueError(f"'{text}'")
    return text.strip()


TimeSignatureText = Annotated[StrictStr, AfterValidator(_check_time_signature)]


class MeasureDoc(_Document):
    segments: list[SegmentDoc] = Field(default_factory=list)
    barline: BarlineType = BarlineType.SINGLE
    line_break: StrictBool = False
    repeat_start: StrictBool = False
    repeat: StrictBool = False
    repeat_count: StrictInt | None = Field(None, ge=1)
    time_signature: TimeSignatureText | None = None
    grouping_mode: GroupingMode | None = None
    volta_start: VoltaDoc | None = None
    volta_end: VoltaDoc | None = None
    source: StrictStr = ""


class ScoreDoc(_Document):
    title: StrictStr = ""
    time_signature: TimeSignatureText = "4/4"
    grouping_mode: GroupingMode = GroupingMode.SPACE_BASED
    measures: list[MeasureDoc]


# ── Loader ───────────────────────────────────────────────────────────────────

class ScoreLoader:
    """
    Build a :class:`Score` from the JSON produced by the notation tokenizer.

    Document layout::

        {
          "title": "Blues in A",
          "time_signature": "4/4",
          "grouping_mode": "space-based",
          "measures": [
            {
              "barline": "|",
              "line_break": false,
              "repeat_start": false,
              "repeat": false,
              "repeat_count": 2,
              "time_signature": "6/8",
              "volta_start": {"numbers": [1], "text": "1.", "closed": true},
              "volta_end": {"numbers": [1], "text": "1."},
              "segments": [
                {"chord": "A7", "leading_space": false,
                 "notes": [8, {"value": 8, "dotted": true, "tie_start": true, "pick": "u"},
                           {"value": 8, "tuplet": {"count": 3, "group": "t1"}}]}
              ]
            }
          ]
        }

    A bare integer is shorthand for a plain note of that value.
    """

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _describe(error: dict[str, Any]) -> str:
        """Word one pydantic error as ``measure 2, segment 1, note 2: <problem>``."""
        places: list[str] = []
        fields: list[str] = []
        loc = list(error["loc"])
        position = 0
        while position < len(loc):
            part = loc[position]
            following = loc[position + 1] if position + 1 < len(loc) else None
            if part in _CONTAINERS and isinstance(following, int):
                places.append(f"{_CONTAINERS[part]} {following + 1}")
                position += 2
                continue
            if isinstance(part, str):
                fields.append(part)
            position += 1

        where = ", ".join(places) or "score"
        detail = str(error["msg"]).removeprefix("Value error, ")
        if error["type"] == "missing" and fields:
            return f"{where}: missing '{fields[-1]}'"
        if not fields:
            return f"{where}: {detail}"
        label = _FIELD_LABELS.get(fields[-1], ".".join(fields))
        return f"{where}: {label} ({detail})"

    @staticmethod
    def _time_signature(text: str, mode: GroupingMode) -> TimeSignature:
        numerator, denominator = (int(part) for part in text.split("/"))
        return TimeSignature(numerator, denominator, mode)

    @staticmethod
    def _note(doc: NoteDoc) -> Note:
        tuplet = None
        if doc.tuplet is not None:
            tuplet = Tuplet(
                count=doc.tuplet.count,
                group_id=doc.tuplet.group,
                position=doc.tuplet.position,
                ratio=doc.tuplet.ratio,
            )
        return Note(
            value=doc.value,
            dotted=doc.dotted,
            is_rest=doc.rest,
            tie_start=doc.tie_start,
            tie_end=doc.tie_end,
            tie_to_void=doc.tie_to_void,
            tie_from_void=doc.tie_from_void,
            tuplet=tuplet,
            has_leading_space=doc.leading_space,
            forced_beam_through_tie=doc.forced_beam,
            pick_direction=_PICK_DIRECTIONS[doc.pick] if doc.pick else None,
            finger_symbol=doc.finger,
        )

    @staticmethod
    def _volta(doc: VoltaDoc | None) -> VoltaInfo | None:
        if doc is None:
            return None
        numbers = tuple(doc.numbers)
        text = doc.text or ",".join(str(n) for n in numbers) + "."
        return VoltaInfo(numbers=numbers, text=text, is_closed=doc.closed)

    def _measure(self, doc: MeasureDoc, default_mode: GroupingMode) -> Measure:
        time_signature = None
        if doc.time_signature is not None:
            time_signature = self._time_signature(doc.time_signature, doc.grouping_mode or default_mode)
        return Measure(
            segments=[
                Segment(
                    chord=segment.chord,
                    notes=[self._note(note) for note in segment.notes],
                    leading_space=segment.leading_space,
                )
                for segment in doc.segments
            ],
            barline=doc.barline,
            is_line_break=doc.line_break,
            time_signature=time_signature,
            source=doc.source,
            is_repeat_start=doc.repeat_start,
            volta_start=self._volta(doc.volta_start),
            volta_end=self._volta(doc.volta_end),
            repeat_count=doc.repeat_count,
            is_repeat=doc.repeat,
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def parse(self, data: Any) -> Score:
        """
        Build a Score from an already decoded JSON document.

        Raises:
            ScoreFormatError: If the document is malformed. The message names
                the measure, segment and note of every problem.
        """
        try:
            doc = ScoreDoc.model_validate(data)
        except ValidationError as exc:
            problems = [self._describe(error) for error in exc.errors()]
            raise ScoreFormatError("; ".join(problems)) from exc

        time_signature = self._time_signature(doc.time_signature, doc.grouping_mode)
        return Score(
            title=doc.title,
            time_signature=time_signature,
            measures=[self._measure(measure, doc.grouping_mode) for measure in doc.measures],
        )

    def load(self, path: str | Path) -> Score:
        """
        Read and parse a score file.

        Raises:
            ScoreFormatError: If the file is not valid JSON or is malformed.
            OSError: If the file cannot be read.
        """
        with open(path, encoding="utf-8") as fh:
            try:
                data = json.load(fh)
            except json.JSONDecodeError as exc:
                raise ScoreFormatError(f"{path}: invalid JSON ({exc})") from exc
        return self.parse(data)


def load_score(path: str | Path) -> Score:
    return ScoreLoader().load(path)
