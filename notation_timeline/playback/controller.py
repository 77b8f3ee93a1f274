"""Playback controller - glue between the engine and the invariant timeline.

The controller renders notation through the engine, builds the event-stream
timeline once, and afterwards only forwards tempo changes. It is the sole
owner of the current playback position.
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping, Optional

from ..core.constants import CHORD_ALIGNMENT_TOLERANCE, UNITY_WARP
from ..core.errors import EngineUnavailableError, TimingOrderError
from ..core.timeline import Timeline
from ..timeline.event_stream import EventStreamTimelineBuilder
from ..timeline.events import (
    NotePlaybackEvent,
    TimingDerivedData,
    TimingEvent,
    normalize_midi_pitches,
)
from .engine import RenderEngine, RenderedTune, SynthController, TimingCallbacks
from .frame_loop import FrameCallback, FrameLoop
from .highlight import NoteHighlighter
from .tempo import TempoCell, TempoResynchronizer

logger = logging.getLogger(__name__)


@dataclass
class PlaybackConfig:
    """Configuration for playback and visualization sync.

    Attributes:
        fps: Frame loop rate (default: 60)
        default_warp: Warp applied once the timeline is built (default: 100)
        chord_alignment_tolerance: Subdivisions within which chord notes
            count as simultaneous when highlighting (default: 0.01)
    """

    fps: float = 60.0
    default_warp: float = UNITY_WARP
    chord_alignment_tolerance: float = CHORD_ALIGNMENT_TOLERANCE


@dataclass
class PlaybackCallbacks:
    """Optional listeners for controller output."""

    on_current_time_change: Optional[Callable[[float], None]] = None
    on_playing_change: Optional[Callable[[bool], None]] = None
    on_note_event: Optional[Callable[[NotePlaybackEvent], None]] = None
    on_char_time_map_change: Optional[Callable[[Dict[int, float]], None]] = None
    on_timeline_change: Optional[Callable[[Optional[Timeline]], None]] = None
    on_seconds_per_subdivision_change: Optional[Callable[[float], None]] = None


def _emit(callback: Optional[Callable], *args: Any) -> None:
    if callback is not None:
        callback(*args)


class PlaybackController:
    """Drive an engine and expose the invariant timeline plus live tempo."""

    def __init__(
        self,
        engine: RenderEngine,
        notation: str,
        callbacks: Optional[PlaybackCallbacks] = None,
        tempo_cell: Optional[TempoCell] = None,
        config: Optional[PlaybackConfig] = None,
    ):
        """
        Initialize PlaybackController and render ``notation``.

        Args:
            engine: Rendering/playback engine
            notation: ABC text
            callbacks: Listeners for derived data and playback state
            tempo_cell: Shared tempo cell (a new one when omitted)
            config: Playback configuration
        """
        self.engine = engine
        self.notation = notation
        self.callbacks = callbacks or PlaybackCallbacks()
        self.tempo_cell = tempo_cell or TempoCell()
        self.config = config or PlaybackConfig()
        self.builder = EventStreamTimelineBuilder()

        self.tune: Optional[RenderedTune] = None
        self.timing_callbacks: Optional[TimingCallbacks] = None
        self.synth: Optional[SynthController] = None
        self.resynchronizer: Optional[TempoResynchronizer] = None
        self.derived: Optional[TimingDerivedData] = None
        self.frame_loop = FrameLoop(self.tempo_cell)

        self.current_subdivision = 0.0
        self._sequence = 0
        self._disposed = False

        logger.info("Constructing playback controller (%d chars)", len(notation or ""))
        self._initialize()

    # ------------------------------------------------------------------
    # Setup
    # ------------------------------------------------------------------

    @property
    def timeline(self) -> Optional[Timeline]:
        if self.derived is None or self.derived.timeline.is_empty:
            return None
        return self.derived.timeline

    @property
    def char_map(self) -> Dict[int, float]:
        return dict(self.derived.char_map) if self.derived is not None else {}

    @property
    def seconds_per_subdivision(self) -> float:
        return self.tempo_cell.seconds_per_subdivision

    @property
    def is_playing(self) -> bool:
        return bool(self.synth is not None and self.synth.is_started)

    def note_highlighter(self) -> Optional[NoteHighlighter]:
        """Highlighter for the derived timeline, or None without one.

        The char map was recorded at the build tempo, which a warp change
        does not alter.
        """
        if self.timeline is None:
            return None
        return NoteHighlighter(
            self.timeline,
            self.char_map,
            tolerance=self.config.chord_alignment_tolerance,
            char_map_seconds_per_subdivision=self.derived.seconds_per_subdivision,
        )

    def _initialize(self) -> None:
        if not self.notation or not self.notation.strip():
            self._reset_derived_data()
            return

        try:
            self.tune = self.engine.render(self.notation)
        except Exception as e:
            logger.error("Error rendering notation: %s", e)
            self._reset_derived_data()
            return

        if self.tune is None:
            self._reset_derived_data()
            return

        self.timing_callbacks = self.engine.timing_callbacks(
            self.tune, self._handle_timing_event
        )
        if self.timing_callbacks is None:
            logger.warning("Engine has no timing callbacks; playback timeline unavailable")
            self._reset_derived_data()
            return

        self.synth = self.engine.synth_controller()
        if self.synth is not None:
            self.synth.set_tune(self.tune, self.timing_callbacks)
            logger.info("Synth controller loaded")

        self._prepare_timing_data()

    def _prepare_timing_data(self) -> None:
        self.tune.set_up_audio()
        self.timing_callbacks.replace_target(self.tune)

        timings = self.timing_callbacks.note_timings
        if not timings:
            logger.warning("Timing data empty after preparation")
            self._reset_derived_data()
            return

        try:
            derived = self.builder.build(self.tune, timings)
        except TimingOrderError as e:
            logger.error("Discarding timing data: %s", e)
            self._reset_derived_data()
            return

        self.derived = derived
        timeline = derived.timeline
        self.resynchronizer = TempoResynchronizer(
            self.tempo_cell,
            timeline.subdivisions_per_measure,
            timeline.subdivision_unit,
            timeline=timeline,
        )
        self.resynchronizer.seed(derived.seconds_per_subdivision)
        self.frame_loop.total_subdivisions = timeline.total_subdivisions

        logger.info(
            "Derived timeline: %d notes, %.3f subdivisions, %.4f s/subdivision",
            len(timeline.notes),
            timeline.total_subdivisions,
            derived.seconds_per_subdivision,
        )
        self._emit_derived_data()

        if self.config.default_warp != UNITY_WARP:
            if self.synth is not None:
                self.set_warp(self.config.default_warp)
            else:
                self._refresh_timing_after_tempo_change(self.config.default_warp)

    def _emit_derived_data(self) -> None:
        _emit(
            self.callbacks.on_seconds_per_subdivision_change,
            self.tempo_cell.seconds_per_subdivision,
        )
        _emit(self.callbacks.on_char_time_map_change, self.char_map)
        if self.timeline is None:
            logger.warning("Derived timeline contained no notes")
        _emit(self.callbacks.on_timeline_change, self.timeline)

    def _reset_derived_data(self) -> None:
        logger.info("Resetting derived data")
        self.derived = None
        self.resynchronizer = None
        _emit(self.callbacks.on_char_time_map_change, {})
        _emit(self.callbacks.on_timeline_change, None)

    # ------------------------------------------------------------------
    # Timing events
    # ------------------------------------------------------------------

    def _handle_timing_event(self, raw: Any) -> None:
        if raw is None:
            return
        event = TimingEvent.from_raw(raw)
        if event.milliseconds is None:
            return

        # milliseconds are real elapsed time; the cell holds the warped tempo
        current_time = event.milliseconds / 1000
        _emit(self.callbacks.on_current_time_change, current_time)
        self._set_position(current_time / self.tempo_cell.seconds_per_subdivision)

        if isinstance(raw, Mapping):
            raw_pitches = raw.get("midiPitches")
        else:
            raw_pitches = getattr(raw, "midiPitches", None)
        midi_pitches = normalize_midi_pitches(raw_pitches)
        if not midi_pitches or self.callbacks.on_note_event is None:
            return

        self._sequence += 1
        self.callbacks.on_note_event(
            NotePlaybackEvent(
                sequence_id=self._sequence,
                time_seconds=current_time,
                duration_seconds=(
                    event.duration / 1000 if event.duration is not None else None
                ),
                midi_pitches=midi_pitches,
                start_char=event.start_char,
                end_char=event.end_char,
            )
        )

    def _set_position(self, subdivision: float) -> None:
        self.current_subdivision = subdivision
        self.frame_loop.reseed(subdivision)

    def _position_from_percent(self, percent: Optional[float]) -> float:
        timeline = self.timeline
        if timeline is None or percent is None:
            return 0.0
        return min(max(percent, 0.0), 1.0) * timeline.total_subdivisions

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def play(self) -> None:
        """Start (or toggle) playback and sync the timing clock."""
        if self.synth is None:
            return
        self.synth.play()
        playing = bool(self.synth.is_started)
        if self.timing_callbacks is not None:
            if playing:
                self.timing_callbacks.start(self.synth.percent)
            else:
                self.timing_callbacks.pause()
                if self.synth.percent is not None:
                    self.timing_callbacks.set_progress(self.synth.percent)
        self.frame_loop.set_playing(playing)
        _emit(self.callbacks.on_playing_change, playing)
        logger.info("Play resolved (playing=%s)", playing)

    def pause(self) -> None:
        if self.timing_callbacks is not None:
            self.timing_callbacks.pause()
            if self.synth is not None and self.synth.percent is not None:
                self.timing_callbacks.set_progress(self.synth.percent)
        self.frame_loop.set_playing(False)
        _emit(self.callbacks.on_playing_change, False)
        if self.synth is not None:
            self.synth.pause()

    def finished(self) -> Optional[str]:
        """End of tune. Loops when the synth asks to continue."""
        if self.synth is None:
            return None
        result = self.synth.finished()
        if result == "continue":
            if self.timing_callbacks is not None:
                self.timing_callbacks.set_progress(0)
                self.timing_callbacks.start(0)
            self._set_position(0.0)
            _emit(self.callbacks.on_playing_change, True)
            logger.info("Playback continued after finish")
        else:
            if self.timing_callbacks is not None:
                self.timing_callbacks.stop()
            self.frame_loop.set_playing(False)
            self._set_position(0.0)
            _emit(self.callbacks.on_playing_change, False)
            _emit(self.callbacks.on_current_time_change, 0.0)
            logger.info("Playback stopped after finish")
        return result

    def seek(self, percent: float, units: Optional[str] = None) -> None:
        if self.timing_callbacks is not None:
            self.timing_callbacks.set_progress(percent, units)
        if units is None:
            self._set_position(self._position_from_percent(percent))
        if self.synth is not None:
            self.synth.seek(percent, units)

    def restart(self) -> None:
        if self.timing_callbacks is not None:
            self.timing_callbacks.set_progress(0)
        self._set_position(0.0)
        if self.synth is not None:
            self.synth.restart()

    def reset(self) -> None:
        """Stop and rewind (the transport's reset button)."""
        if self.timing_callbacks is not None:
            self.timing_callbacks.stop()
            self.timing_callbacks.set_progress(0)
        self.frame_loop.set_playing(False)
        self._set_position(0.0)
        _emit(self.callbacks.on_current_time_change, 0.0)
        _emit(self.callbacks.on_playing_change, False)

    def set_warp(self, warp: float) -> float:
        """
        Change playback speed.

        Only the tempo factor changes; notes, total and boundaries stay as
        built.

        Returns:
            Active seconds per subdivision

        Raises:
            EngineUnavailableError: If the engine has no synth controller
        """
        if self.synth is None:
            raise EngineUnavailableError("Engine has no synth controller; warp is unavailable")
        self.synth.set_warp(warp)
        return self._refresh_timing_after_tempo_change(warp)

    def _refresh_timing_after_tempo_change(self, warp: float) -> float:
        if self.resynchronizer is None or self.tune is None:
            return self.tempo_cell.seconds_per_subdivision

        value = self.resynchronizer.resync(self.tune, warp)

        # Re-seed the cursor clock at the current position, not at zero
        if self.timing_callbacks is not None:
            percent = self.synth.percent if self.synth is not None else None
            if percent is not None:
                was_running = bool(self.synth.is_started)
                self.timing_callbacks.stop()
                self.timing_callbacks.set_progress(percent)
                if was_running:
                    self.timing_callbacks.start(percent)
            else:
                self.timing_callbacks.stop()
        self.frame_loop.reseed(self.current_subdivision)

        logger.info("Tempo changed (timeline unchanged): warp=%s, %.6f s/subdivision", warp, value)
        _emit(self.callbacks.on_seconds_per_subdivision_change, value)
        return value

    # ------------------------------------------------------------------
    # Frames and teardown
    # ------------------------------------------------------------------

    async def run_frame_loop(self, on_frame: Optional[FrameCallback] = None) -> None:
        """Run the frame loop, updating ``current_subdivision`` each frame."""

        def frame(position: float) -> None:
            self.current_subdivision = position
            if on_frame is not None:
                on_frame(position)

        await self.frame_loop.run(frame, self.config.fps)

    def dispose(self) -> None:
        """Stop timing, release the synth and cancel the frame loop."""
        if self._disposed:
            return
        self._disposed = True
        if self.timing_callbacks is not None:
            self.timing_callbacks.stop()
            self.timing_callbacks = None
        if self.synth is not None:
            self.synth.destroy()
            logger.info("Synth controller disposed")
            self.synth = None
        self.frame_loop.cancel()
