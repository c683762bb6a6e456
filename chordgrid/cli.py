"""ChordGrid CLI entry point."""

import logging
import sys
from pathlib import Path

import click

from chordgrid import __version__
from chordgrid.beam_analyzer import BeamAnalyzer, BeamGroup
from chordgrid.layout import LayoutConfig
from chordgrid.render_backends import backend_for
from chordgrid.score_composer import ScoreComposer
from chordgrid.score_loader import ScoreFormatError, load_score


def _configure_logging(debug: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )


def _describe_group(group: BeamGroup) -> str:
    """Format a beam group as ``L1 [0:0 0:1]`` (segment:note references)."""
    refs = " ".join(f"{ref.segment_index}:{ref.note_index}" for ref in group.notes)
    text = f"L{group.level} [{refs}]"
    if group.is_partial:
        direction = group.direction.value if group.direction is not None else "?"
        text += f" beamlet {direction}"
    return text


# ── CLI group ──────────────────────────────────────────────────────────────────

@click.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.version_option(version=__version__, prog_name="chordgrid")
def main() -> None:
    """ChordGrid: rhythm and chord grid typesetter."""


# ── render subcommand ──────────────────────────────────────────────────────────

@main.command()
@click.argument("score_file", type=click.Path(exists=True, dir_okay=False, readable=True))
@click.option(
    "--output",
    "-o",
    default=None,
    metavar="PATH",
    help="Destination file path. Defaults to the score path with the format's extension.",
)
@click.option(
    "--format",
    "output_format",
    type=click.Choice(["svg", "html"], case_sensitive=False),
    default="svg",
    show_default=True,
    help="Output format: standalone SVG or printable HTML page.",
)
@click.option(
    "--title",
    default=None,
    metavar="TEXT",
    help="Document title. Defaults to the score's own title, then the file name stem.",
)
@click.option(
    "--stems",
    type=click.Choice(["up", "down"], case_sensitive=False),
    default="up",
    show_default=True,
    help="Stem direction.",
)
@click.option(
    "--measures-per-line",
    type=click.IntRange(1, 32),
    default=4,
    show_default=True,
    help="Maximum number of measures on one line.",
)
@click.option(
    "--line-width",
    type=click.FloatRange(100, 10000),
    default=800.0,
    show_default=True,
    metavar="PX",
    help="Width budget of a line before measures wrap.",
)
@click.option(
    "--min-spacing",
    type=click.FloatRange(0, 50),
    default=2.0,
    show_default=True,
    metavar="PX",
    help="Minimum distance kept between colliding glyphs.",
)
@click.option(
    "--strokes",
    type=click.Choice(["pick", "finger"], case_sensitive=False),
    default=None,
    help="Draw pick strokes or finger symbols under every attack.",
)
@click.option(
    "--finger-language",
    type=click.Choice(["en", "fr"], case_sensitive=False),
    default="en",
    show_default=True,
    help="Spelling of finger symbols (td/tu/hd/hu or pd/pu/md/mu).",
)
@click.option("--counting", is_flag=True, default=False, help="Draw beat counting labels.")
@click.option(
    "--repeat-symbol",
    is_flag=True,
    default=False,
    help="Draw measures written as % with a repeat sign instead of their rhythm.",
)
@click.option(
    "--measure-numbers",
    type=click.IntRange(0, 64),
    default=0,
    show_default=True,
    metavar="N",
    help="Number every N-th measure; 0 disables numbering.",
)
@click.option("--debug", is_flag=True, default=False, help="Log layout diagnostics to stderr.")
def render(
    score_file: str,
    output: str | None,
    output_format: str,
    title: str | None,
    stems: str,
    measures_per_line: int,
    line_width: float,
    min_spacing: float,
    strokes: str | None,
    finger_language: str,
    counting: bool,
    repeat_symbol: bool,
    measure_numbers: int,
    debug: bool,
) -> None:
    """
    Typeset a chord grid as SVG or HTML.

    SCORE_FILE is a JSON score produced by the notation tokenizer.

    \b
    Examples:
      chordgrid render blues.json
      chordgrid render blues.json -o blues.html --format html --title "Blues in A"
      chordgrid render blues.json --stems down --measures-per-line 2
      chordgrid render blues.json --strokes pick --counting --measure-numbers 1
    """
    _configure_logging(debug)

    score_path = Path(score_file)
    normalized_format = output_format.lower()
    backend = backend_for(normalized_format)
    resolved_output = (
        output if output is not None else str(score_path.with_suffix(backend.default_extension))
    )

    click.echo(f"chordgrid v{__version__}")
    click.echo(f"  Score  : {score_file}")
    click.echo(f"  Format : {normalized_format}")
    click.echo(f"  Output : {resolved_output}")
    click.echo()

    # ── Step 1: Load ────────────────────────────────────────────────────
    click.echo("[1/3] Loading score...")
    try:
        score = load_score(score_file)
    except ScoreFormatError as exc:
        click.echo(f"  ERROR: Invalid score: {exc}", err=True)
        sys.exit(1)
    except OSError as exc:
        click.echo(f"  ERROR: Could not read score: {exc}", err=True)
        sys.exit(1)

    resolved_title = title if title is not None else (score.title or score_path.stem.replace("_", " "))
    click.echo(f"      {len(score.measures)} measure(s) in {score.time_signature}")

    # ── Step 2: Lay out ─────────────────────────────────────────────────
    click.echo("[2/3] Laying out measures...")
    try:
        config = LayoutConfig(
            stems_direction=stems.lower(),
            measures_per_line=measures_per_line,
            line_width=line_width,
            min_spacing=min_spacing,
            strum_mode=strokes.lower() if strokes else None,
            finger_language=finger_language.lower(),
            counting=counting,
            display_repeat_symbol=repeat_symbol,
            measure_numbers=measure_numbers > 0,
            measure_number_interval=max(measure_numbers, 1),
            debug=debug,
        )
    except ValueError as exc:
        click.echo(f"  ERROR: Invalid layout settings: {exc}", err=True)
        sys.exit(1)

    composed = ScoreComposer(config, backend).compose(score, title=resolved_title)
    click.echo(
        f"      {composed.line_count} line(s), canvas {composed.width:.0f} x {composed.height:.0f}"
    )

    # ── Step 3: Write ───────────────────────────────────────────────────
    click.echo(f"[3/3] Writing {normalized_format.upper()} file → '{resolved_output}'...")
    try:
        with open(resolved_output, "w", encoding="utf-8") as fh:
            fh.write(composed.content)
    except OSError as exc:
        click.echo(f"  ERROR: Could not write output file: {exc}", err=True)
        sys.exit(1)

    click.echo()
    click.echo(f"Done!  Open '{resolved_output}' in any browser.")


# ── beams subcommand ───────────────────────────────────────────────────────────

@main.command()
@click.argument("score_file", type=click.Path(exists=True, dir_okay=False, readable=True))
@click.option("--debug", is_flag=True, default=False, help="Log analysis traces to stderr.")
def beams(score_file: str, debug: bool) -> None:
    """
    Print the beam groups computed for every measure.

    References are written SEGMENT:NOTE, both counted from zero.
    """
    _configure_logging(debug)

    try:
        score = load_score(score_file)
    except ScoreFormatError as exc:
        click.echo(f"  ERROR: Invalid score: {exc}", err=True)
        sys.exit(1)
    except OSError as exc:
        click.echo(f"  ERROR: Could not read score: {exc}", err=True)
        sys.exit(1)

    analyzer = BeamAnalyzer(score.time_signature)
    signature = score.time_signature
    for number, measure in enumerate(score.measures, start=1):
        if measure.time_signature is not None:
            signature = measure.time_signature
        analysis = analyzer.analyze(measure, signature)
        groups = ", ".join(_describe_group(group) for group in analysis.beam_groups)
        click.echo(f"{number:>3}  {groups or '-'}")
