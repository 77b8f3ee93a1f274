"""Interfaces of the external rendering/playback engine.

The engine renders notation, reports timing events and plays audio. Only
the surface the controller touches is modelled here.
"""

from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional, Tuple

EventCallback = Callable[[Dict[str, Any]], None]


class RenderedTune(ABC):
    """Result of rendering one tune."""

    @abstractmethod
    def get_meter_fraction(self) -> Optional[Tuple[int, int]]:
        """Written meter as (numerator, denominator)."""
        pass

    @abstractmethod
    def milliseconds_per_measure(self) -> Optional[float]:
        """
        Duration of one measure at the notated tempo.

        Unaffected by warp.
        """
        pass

    def set_up_audio(self) -> None:
        """Prepare timing data ahead of playback (optional)."""


class TimingCallbacks(ABC):
    """Cursor clock that fires timing events during playback."""

    note_timings: List[Dict[str, Any]]
    qpm: Optional[float] = None

    @abstractmethod
    def start(self, offset_percent: Optional[float] = None) -> None:
        pass

    @abstractmethod
    def stop(self) -> None:
        pass

    @abstractmethod
    def pause(self) -> None:
        pass

    @abstractmethod
    def set_progress(self, percent: float, units: Optional[str] = None) -> None:
        pass

    def replace_target(self, tune: RenderedTune) -> None:
        """Recompute ``note_timings`` for ``tune``."""


class SynthController(ABC):
    """Audio transport with a speed (warp) control."""

    percent: Optional[float] = None  # playback progress, 0-1
    is_started: bool = False

    @property
    @abstractmethod
    def current_tempo(self) -> Optional[float]:
        """Displayed tempo in QPM, warp applied. Rounded by the engine."""
        pass

    @abstractmethod
    def set_tune(
        self, tune: RenderedTune, timing_callbacks: Optional[TimingCallbacks] = None
    ) -> None:
        pass

    @abstractmethod
    def play(self) -> None:
        pass

    @abstractmethod
    def pause(self) -> None:
        pass

    @abstractmethod
    def seek(self, percent: float, units: Optional[str] = None) -> None:
        pass

    @abstractmethod
    def restart(self) -> None:
        pass

    @abstractmethod
    def finished(self) -> Optional[str]:
        """Handle end of playback. Returns "continue" when looping."""
        pass

    @abstractmethod
    def set_warp(self, warp: float) -> None:
        pass

    def destroy(self) -> None:
        """Release audio resources."""


class RenderEngine(ABC):
    """Factory side of the engine."""

    @abstractmethod
    def render(self, text: str) -> Optional[RenderedTune]:
        """Render notation. None when the text holds no tune."""
        pass

    def timing_callbacks(
        self, tune: RenderedTune, event_callback: Optional[EventCallback] = None
    ) -> Optional[TimingCallbacks]:
        """Timing clock for ``tune``; None when the engine has none."""
        return None

    def synth_controller(self) -> Optional[SynthController]:
        """Audio transport; None when the engine has no audio."""
        return None
