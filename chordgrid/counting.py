"""Beat counting labels ("1 & 2 &", "1 2 3 4") for teaching grids."""

from __future__ import annotations

import math
from dataclasses import dataclass
from fractions import Fraction
from typing import Literal

from chordgrid.beam_analyzer import AnalyzedMeasure, NoteReference, NoteWithPosition
from chordgrid.notation_models import TimeSignature

#: ``t`` beat start, ``m`` subdivision, ``s`` any rest.
CountingSize = Literal["t", "m", "s"]


@dataclass(frozen=True)
class CountingLabel:
    reference: NoteReference
    text: str
    size: CountingSize

    @property
    def is_visible(self) -> bool:
        return bool(self.text)


def count_measure(analysis: AnalyzedMeasure, time_signature: TimeSignature) -> list[CountingLabel]:
    """
    Label every note of a measure; counting restarts at 1 in each measure.

    Notes are grouped by the beat (one denominator unit) they start in. The
    first note of a beat gets the beat number. Later notes get ``&`` when
    the beat holds nothing shorter than eighths, ``2``, ``3``, ``4`` ... when
    it holds sixteenths or shorter, and an empty label otherwise.
    """
    beat_length = Fraction(4, time_signature.denominator)
    beats: dict[int, list[NoteWithPosition]] = {}
    for flat in analysis.notes:
        beats.setdefault(math.floor(flat.start / beat_length), []).append(flat)

    labels: list[CountingLabel] = []
    for beat_index in sorted(beats):
        members = beats[beat_index]
        smallest = max(4, max(flat.note.value for flat in members))
        for position, flat in enumerate(members):
            is_rest = flat.note.is_rest
            if position == 0:
                text = str(beat_index + 1)
                size: CountingSize = "s" if is_rest else "t"
            else:
                if smallest > 8:
                    text = str(position + 1)
                elif smallest == 8:
                    text = "&"
                else:
                    text = ""
                size = "s" if is_rest else "m"
            labels.append(CountingLabel(flat.reference, text, size))
    return labels
