"""Command-line interface for Notation Timeline.

Provides commands for:
- timeline: Build a timeline from ABC notation and show its notes
- meter: Show subdivision and beat structure of a time signature
- simulate: Play a tune through the reference engine with warp changes
- compare: Check that baseline and engine timelines agree
- export: Write MIDI, MusicXML or a preview image
"""

import json
import logging
from dataclasses import asdict
from pathlib import Path
from typing import Any, Dict, List, Optional

import numpy as np
import typer
from rich.console import Console
from rich.table import Table

from .analysis import MeterAnalyzer
from .core import Timeline, TimelineError

app = typer.Typer(
    name="notation-timeline",
    help="Tempo-invariant timelines for ABC notation playback",
    rich_markup_mode="markdown",
)
console = Console()


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _read_notation(input_file: Path) -> str:
    if not input_file.exists():
        console.print(f"[red]Error: File not found: {input_file}[/red]")
        raise typer.Exit(1)
    return input_file.read_text(encoding="utf-8")


def _engine_timeline(text: str):
    """Timeline, char map and tempo via the reference engine."""
    from .playback import PlaybackController, ReferenceEngine

    controller = PlaybackController(ReferenceEngine(), text)
    try:
        return controller.timeline, controller.char_map, controller.seconds_per_subdivision
    finally:
        controller.dispose()


def _build(text: str, source: str):
    from .timeline import BaselineTimelineBuilder

    if source == "baseline":
        result = BaselineTimelineBuilder().build(text)
        return result.timeline, result.char_map
    if source == "engine":
        timeline, char_map, _ = _engine_timeline(text)
        return timeline, char_map
    console.print(f"[red]Error: Unknown source '{source}' (use baseline or engine)[/red]")
    raise typer.Exit(1)


def _timeline_to_dict(timeline: Timeline) -> Dict[str, Any]:
    return {
        "notes": [asdict(note) for note in timeline.notes],
        "total_subdivisions": timeline.total_subdivisions,
        "subdivisions_per_measure": timeline.subdivisions_per_measure,
        "subdivision_unit": timeline.subdivision_unit,
        "subdivisions_per_beat": timeline.subdivisions_per_beat,
        "measure_boundaries": timeline.measure_boundaries,
        "seconds_per_subdivision": timeline.seconds_per_subdivision,
    }


@app.command()
def timeline(
    input_file: Path = typer.Argument(..., help="ABC notation file"),
    source: str = typer.Option(
        "baseline", "-s", "--source", help="Timeline source: baseline or engine"
    ),
    as_json: bool = typer.Option(False, "--json", help="Print the timeline as JSON"),
    verbose: bool = typer.Option(False, "-v", "--verbose", help="Verbose output"),
):
    """Build a tempo-invariant timeline from ABC notation.

    Examples:
        notation-timeline timeline tune.abc
        notation-timeline timeline tune.abc --source engine --json
    """
    _configure_logging(verbose)
    text = _read_notation(input_file)
    result, char_map = _build(text, source)

    if result is None or result.is_empty:
        console.print("[yellow]No notes found.[/yellow]")
        return

    if as_json:
        data = _timeline_to_dict(result)
        data["char_map"] = {str(k): v for k, v in sorted(char_map.items())}
        console.print_json(json.dumps(data))
        return

    console.print(f"\n[bold]Timeline:[/bold] {input_file.name} ({source})")
    console.print(
        f"  Meter: {result.subdivisions_per_measure}/{result.subdivision_unit}"
        f" ({result.subdivisions_per_beat} subdivision(s) per beat)"
    )
    console.print(f"  Notes: {len(result.notes)}")
    console.print(f"  Length: {result.total_subdivisions:.3f} subdivisions"
                  f" ({result.total_seconds:.2f}s)")
    console.print(f"  Tempo: {result.seconds_per_subdivision:.4f} s/subdivision")
    boundaries = ", ".join(f"{b:g}" for b in result.measure_boundaries[:12])
    console.print(f"  Measure boundaries: {boundaries or '-'}")
    _show_notes_table(result)


@app.command()
def meter(
    fraction: str = typer.Argument(..., help="Time signature, e.g. 6/8 or C"),
):
    """Show subdivision and beat structure of a time signature."""
    info = MeterAnalyzer().analyze(fraction)
    table = Table(title=f"Meter {fraction}")
    table.add_column("Property", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("Subdivisions per measure", str(info.subdivisions_per_measure))
    table.add_row("Subdivision unit", str(info.subdivision_unit))
    table.add_row("Subdivisions per beat", str(info.subdivisions_per_beat))
    table.add_row("Beats per measure", f"{info.beats_per_measure:g}")
    table.add_row("Compound", "yes" if info.is_compound else "no")
    console.print(table)


@app.command()
def simulate(
    input_file: Path = typer.Argument(..., help="ABC notation file"),
    warp: Optional[List[float]] = typer.Option(
        None, "-w", "--warp", help="Warp percentage to apply (repeatable)"
    ),
    verbose: bool = typer.Option(False, "-v", "--verbose", help="Verbose output"),
):
    """Apply warp changes with the reference engine and show the tempo.

    The displayed tempo is the engine's rounded reading; the precise QPM is
    the value the timeline actually uses.
    """
    from .playback import PlaybackCallbacks, PlaybackController, ReferenceEngine

    _configure_logging(verbose)
    text = _read_notation(input_file)
    if any(value <= 0 for value in warp or []):
        console.print("[red]Error: Warp must be positive[/red]")
        raise typer.Exit(1)

    events = []
    controller = PlaybackController(
        ReferenceEngine(),
        text,
        callbacks=PlaybackCallbacks(on_note_event=events.append),
    )
    try:
        if controller.timeline is None:
            console.print("[red]Error: Could not derive a timeline from the notation[/red]")
            raise typer.Exit(1)

        table = Table(title="Warp Changes")
        table.add_column("Warp %", style="cyan")
        table.add_column("s/subdivision", style="green")
        table.add_column("Precise QPM", style="yellow")
        table.add_column("Displayed QPM", style="magenta")

        def add_row(label: str) -> None:
            table.add_row(
                label,
                f"{controller.seconds_per_subdivision:.6f}",
                f"{controller.resynchronizer.precise_qpm():.3f}",
                str(controller.synth.current_tempo),
            )

        add_row("100")
        for value in warp or []:
            controller.set_warp(value)
            add_row(f"{value:g}")
        console.print(table)

        controller.play()
        clock = controller.timing_callbacks
        clock.advance_to(clock.total_ms)
        controller.finished()
        console.print(
            f"  Played {len(events)} note events; timeline unchanged "
            f"({len(controller.timeline.notes)} notes, "
            f"{controller.timeline.total_subdivisions:g} subdivisions)"
        )
    finally:
        controller.dispose()


@app.command()
def compare(
    input_file: Path = typer.Argument(..., help="ABC notation file"),
    verbose: bool = typer.Option(False, "-v", "--verbose", help="Verbose output"),
):
    """Compare the baseline timeline with the engine-derived one.

    Tied notes stay split in the engine timeline, so tunes with ties
    are expected to differ.
    """
    from .timeline import BaselineTimelineBuilder, create_roll_notes_result, timelines_match

    _configure_logging(verbose)
    text = _read_notation(input_file)

    baseline = BaselineTimelineBuilder().build(text).timeline
    engine_timeline, _, _ = _engine_timeline(text)
    result = create_roll_notes_result(baseline, engine_timeline)

    console.print(f"  Baseline notes: {len(baseline.notes)}")
    console.print(f"  Engine notes: {len(result.timeline.notes)}")
    console.print(f"  Baseline tempo: {result.baseline_seconds_per_subdivision:.4f} s/subdivision")
    console.print(f"  Playback tempo: {result.playback_seconds_per_subdivision:.4f} s/subdivision")

    if engine_timeline is not None and timelines_match(baseline, result.timeline):
        console.print("[green]Timelines match.[/green]")
    else:
        console.print("[yellow]Timelines differ.[/yellow]")
        raise typer.Exit(1)


@app.command()
def export(
    input_file: Path = typer.Argument(..., help="ABC notation file"),
    output: Path = typer.Option(
        ..., "-o", "--output", help="Output path (.mid, .musicxml/.xml or .npy preview)"
    ),
    warp: float = typer.Option(100.0, "-w", "--warp", help="Playback warp percentage"),
    width: int = typer.Option(960, "--width", help="Preview width in pixels"),
    height: int = typer.Option(120, "--height", help="Preview height in pixels"),
    verbose: bool = typer.Option(False, "-v", "--verbose", help="Verbose output"),
):
    """Export the baseline timeline to MIDI, MusicXML or a preview image."""
    from .output import TimelineMIDIExporter, TimelineMusicXMLExporter, render_preview
    from .timeline import BaselineTimelineBuilder

    _configure_logging(verbose)
    text = _read_notation(input_file)
    result = BaselineTimelineBuilder().build(text).timeline
    if result.is_empty:
        console.print("[red]Error: No notes to export[/red]")
        raise typer.Exit(1)
    if warp <= 0:
        console.print("[red]Error: Warp must be positive[/red]")
        raise typer.Exit(1)

    sps = result.seconds_per_subdivision * 100.0 / warp
    suffix = output.suffix.lower()
    try:
        if suffix in (".mid", ".midi"):
            TimelineMIDIExporter(seconds_per_subdivision=sps).export(result, str(output))
        elif suffix in (".musicxml", ".xml"):
            TimelineMusicXMLExporter(title=input_file.stem).export(result, str(output))
        elif suffix == ".npy":
            image = render_preview(result, width, height)
            output.parent.mkdir(parents=True, exist_ok=True)
            np.save(output, image)
        else:
            console.print(f"[red]Error: Unsupported output format '{suffix}'[/red]")
            raise typer.Exit(1)
    except (OSError, TimelineError) as e:
        console.print(f"[red]Export failed: {e}[/red]")
        raise typer.Exit(1)

    console.print(f"[green]Wrote {output}[/green]")


def _show_notes_table(result: Timeline):
    """Display notes in a table."""
    table = Table(title="Notes")
    table.add_column("Pitch", style="cyan")
    table.add_column("Start", style="green")
    table.add_column("Duration", style="yellow")
    table.add_column("Velocity", style="magenta")
    table.add_column("Chars", style="blue")

    for note in result.notes:
        source = note.source
        chars = "-"
        if source is not None and source.start_char is not None:
            chars = f"{source.start_char}-{source.end_char}"
        table.add_row(
            note.pitch_name,
            f"{note.start_subdivision:.3f}",
            f"{note.duration_subdivisions:.3f}",
            str(note.velocity),
            chars,
        )

    console.print(table)


def main():
    """Entry point."""
    app()


if __name__ == "__main__":
    main()
