"""Passive rendering backends: collect drawing operations and serialise them."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass

Point = tuple[float, float]


def _escape_html(text: str) -> str:
    """Escape the three characters that are unsafe in HTML text content."""
    return text.replace("&", "&amp;").replace("<", "&lt;").replace(">", "&gt;")


def _fmt(value: float) -> str:
    return f"{value:.2f}".rstrip("0").rstrip(".")


# ── Drawing operations ───────────────────────────────────────────────────────

@dataclass(frozen=True)
class LineOp:
    x1: float
    y1: float
    x2: float
    y2: float
    stroke_width: float = 1.5
    role: str = ""


@dataclass(frozen=True)
class CurveOp:
    """Quadratic curve with one control point, cubic with two."""

    start: Point
    controls: tuple[Point, ...]
    end: Point
    stroke_width: float = 1.5
    role: str = ""


@dataclass(frozen=True)
class PolygonOp:
    points: tuple[Point, ...]
    filled: bool = True
    stroke_width: float = 1.0
    role: str = ""


@dataclass(frozen=True)
class TextOp:
    x: float
    y: float
    text: str
    font_size: float = 14.0
    font_weight: str = "normal"
    anchor: str = "start"
    role: str = ""


DrawOp = LineOp | CurveOp | PolygonOp | TextOp


# ── Backends ─────────────────────────────────────────────────────────────────

class RenderBackend(ABC):
    """Abstract rendering backend; it only records what it is told to draw."""

    def __init__(self) -> None:
        self.operations: list[DrawOp] = []

    @property
    @abstractmethod
    def default_extension(self) -> str:
        """Default filename extension for this backend."""

    def draw(self, op: DrawOp) -> None:
        self.operations.append(op)

    def ops_with_role(self, role: str) -> list[DrawOp]:
        return [op for op in self.operations if op.role == role]

    def clear(self) -> None:
        self.operations = []

    @abstractmethod
    def render(self, *, title: str, width: float, height: float) -> str:
        """Serialise every recorded operation into a file content string."""


class SvgBackend(RenderBackend):
    """Serialise drawing operations to a standalone SVG document."""

    @property
    def default_extension(self) -> str:
        return ".svg"

    def render(self, *, title: str, width: float, height: float) -> str:
        return self.build_svg(title, width, height)

    def build_svg(self, title: str, width: float, height: float) -> str:
        w, h = _fmt(width), _fmt(height)
        body = "\n".join(f"  {self._element(op)}" for op in self.operations)
        title_tag = f"  <title>{_escape_html(title)}</title>\n" if title else ""
        return (
            f'<svg xmlns="http://www.w3.org/2000/svg" width="{w}" height="{h}" viewBox="0 0 {w} {h}">\n'
            f"{title_tag}"
            f'  <rect x="0" y="0" width="{w}" height="{h}" fill="white" />\n'
            f"{body}\n"
            "</svg>"
        )

    def _role(self, op: DrawOp) -> str:
        return f' data-role="{_escape_html(op.role)}"' if op.role else ""

    def _element(self, op: DrawOp) -> str:
        if isinstance(op, LineOp):
            return (
                f'<line x1="{_fmt(op.x1)}" y1="{_fmt(op.y1)}" x2="{_fmt(op.x2)}" y2="{_fmt(op.y2)}" '
                f'stroke="#000" stroke-width="{_fmt(op.stroke_width)}"{self._role(op)} />'
            )
        if isinstance(op, CurveOp):
            command = "Q" if len(op.controls) == 1 else "C"
            controls = ", ".join(f"{_fmt(x)} {_fmt(y)}" for x, y in op.controls)
            d = (
                f"M {_fmt(op.start[0])} {_fmt(op.start[1])} {command} {controls}, "
                f"{_fmt(op.end[0])} {_fmt(op.end[1])}"
            )
            return (
                f'<path d="{d}" stroke="#000" stroke-width="{_fmt(op.stroke_width)}" '
                f'fill="none"{self._role(op)} />'
            )
        if isinstance(op, PolygonOp):
            points = " ".join(f"{_fmt(x)},{_fmt(y)}" for x, y in op.points)
            fill = "#000" if op.filled else "none"
            return (
                f'<polygon points="{points}" fill="{fill}" stroke="#000" '
                f'stroke-width="{_fmt(op.stroke_width)}"{self._role(op)} />'
            )
        return (
            f'<text x="{_fmt(op.x)}" y="{_fmt(op.y)}" font-family="Arial, sans-serif" '
            f'font-size="{_fmt(op.font_size)}px" font-weight="{op.font_weight}" fill="#000" '
            f'text-anchor="{op.anchor}"{self._role(op)}>{_escape_html(op.text)}</text>'
        )


class HtmlBackend(SvgBackend):
    """SVG grid embedded in a standalone HTML page."""

    @property
    def default_extension(self) -> str:
        return ".html"

    def render(self, *, title: str, width: float, height: float) -> str:
        return self.build_html(title, self.build_svg("", width, height))

    def build_html(self, title: str, svg: str) -> str:
        title_safe = _escape_html(title)
        heading = f"  <h1>{title_safe}</h1>\n" if title else ""
        return f"""<!DOCTYPE html>
<html lang="en">
<head>
  <meta charset="UTF-8" />
  <title>{title_safe}</title>
  <style>
    body {{ font-family: Arial, sans-serif; margin: 1rem; }}
    h1 {{ font-size: 1.4rem; }}
    .page svg {{ max-width: 100%; height: auto; }}
    @media print {{ body {{ margin: 0; }} }}
  </style>
</head>
<body>
{heading}  <div class="page">{svg}</div>
</body>
</html>"""


def backend_for(output_format: str) -> RenderBackend:
    """
    Return the backend for *output_format* (``svg`` or ``html``).

    Raises:
        ValueError: If the format is unknown.
    """
    normalized = output_format.strip().lower()
    if normalized == "svg":
        return SvgBackend()
    if normalized == "html":
        return HtmlBackend()
    raise ValueError(f"Unsupported output format '{output_format}'. Use one of: html, svg.")
