"""
Movie mode.

``PlaybackSynchronizer`` walks the ordered scene list and drives three media
tracks (narration, background music, video). It never touches real media:
tracks satisfy ``MediaTrack`` and timers come from a scheduler exposing
``call_later(delay, callback)``. Every scene entry bumps ``cue``; ended
events carrying an older cue belong to media that is no longer current and
are ignored.
"""
import asyncio, logging
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Protocol

from .errors import ValidationError
from .models import Scene
from .settings import DEFAULT_SCENE_DURATION_S, TRANSITION_S

logger = logging.getLogger(__name__)


class PlaybackState(str, Enum):
    CLOSED = "closed"
    SHOWING = "showing"
    TRANSITIONING = "transitioning"


class MediaTrack(Protocol):
    src: Optional[str]
    playing: bool
    volume: float

    def load(self, src: str, loop: bool = False): ...

    def play(self): ...

    def pause(self): ...

    def set_volume(self, volume: float): ...

    def detach(self): ...


class TimerHandle(Protocol):
    def cancel(self): ...


class Scheduler(Protocol):
    def call_later(self, delay: float, callback: Callable[[], Any]) -> TimerHandle: ...


class LoopScheduler:
    """Schedules on whichever asyncio loop is running when the timer is armed."""

    def call_later(self, delay: float, callback: Callable[[], Any]) -> asyncio.TimerHandle:
        return asyncio.get_running_loop().call_later(delay, callback)


class CueTrack:
    """A track that keeps its own state and reports every command as a cue dict."""

    def __init__(self, name: str, emit: Callable[[Dict[str, Any]], None]):
        self.name = name
        self._emit = emit
        self.src: Optional[str] = None
        self.loop = False
        self.playing = False
        self.volume = 1.0

    def _cue(self, op: str, **extra):
        self._emit({"track": self.name, "op": op, **extra})

    def load(self, src: str, loop: bool = False):
        self.src = src
        self.loop = loop
        self.playing = False
        self._cue("load", src=src, loop=loop)

    def play(self):
        if self.src is None:
            return
        self.playing = True
        self._cue("play")

    def pause(self):
        if not self.playing:
            return
        self.playing = False
        self._cue("pause")

    def set_volume(self, volume: float):
        self.volume = volume
        self._cue("volume", volume=volume)

    def detach(self):
        if self.src is None and not self.playing:
            return
        self.playing = False
        self.src = None
        self.loop = False
        self._cue("detach")


class PlaybackSynchronizer:
    def __init__(
        self,
        narration: MediaTrack,
        music: MediaTrack,
        video: MediaTrack,
        scheduler: Optional[Scheduler] = None,
        on_close: Optional[Callable[[], None]] = None,
        fallback_s: float = DEFAULT_SCENE_DURATION_S,
        transition_s: float = TRANSITION_S,
    ):
        self.narration = narration
        self.music = music
        self.video = video
        self.scheduler = scheduler or LoopScheduler()
        self.on_close = on_close
        self.fallback_s = fallback_s
        self.transition_s = transition_s
        self.state = PlaybackState.CLOSED
        self.index = 0
        self.cue = 0
        self._scenes: List[Scene] = []
        self._fallback: Optional[TimerHandle] = None
        self._transition: Optional[TimerHandle] = None

    @property
    def current_scene(self) -> Optional[Scene]:
        if self.state == PlaybackState.CLOSED or not self._scenes:
            return None
        return self._scenes[self.index]

    def open(self, scenes: List[Scene]):
        """Start from the first scene. Callers check that every scene is narrated."""
        if self.state != PlaybackState.CLOSED:
            self._teardown()
        self._scenes = list(scenes)
        if not self._scenes:
            logger.info("Movie opened with no scenes, closing")
            self._closed()
            return
        logger.info(f"Movie opened with {len(self._scenes)} scenes")
        self._enter(0)

    def close(self):
        if self.state == PlaybackState.CLOSED:
            self._teardown()
            return
        self._teardown()
        self._closed()

    def _closed(self):
        logger.info("Movie closed")
        if self.on_close:
            self.on_close()

    def _teardown(self):
        self._cancel_timers()
        for track in (self.narration, self.music, self.video):
            track.pause()
            track.detach()
        self.state = PlaybackState.CLOSED
        self.index = 0
        self.cue += 1

    def _cancel_timers(self):
        if self._fallback is not None:
            self._fallback.cancel()
            self._fallback = None
        if self._transition is not None:
            self._transition.cancel()
            self._transition = None

    # --- scene entry ---

    def _enter(self, index: int):
        self.state = PlaybackState.SHOWING
        self.index = index
        self.cue += 1
        scene = self._scenes[index]
        logger.info(f"Showing scene {index + 1}/{len(self._scenes)} (id {scene.id})")

        if scene.has_music:
            if self.music.src != scene.background_music_url:
                self.music.load(scene.background_music_url, loop=True)
            self.music.set_volume(scene.music_volume / 100)
            if not self.music.playing:
                self.music.play()
        else:
            self.music.pause()
            self.music.detach()

        if scene.audio_url:
            self.narration.load(scene.audio_url)
            self.narration.set_volume(scene.speech_volume / 100)
            self.narration.play()
        else:
            self.narration.detach()

        if scene.video_url:
            self.video.load(scene.video_url)
            self.video.play()
        else:
            self.video.detach()

        if not scene.audio_url and not scene.video_url:
            cue = self.cue
            self._fallback = self.scheduler.call_later(self.fallback_s, lambda: self._on_fallback(cue))

    # --- events ---

    def _is_current(self, cue: Optional[int]) -> bool:
        return self.state == PlaybackState.SHOWING and (cue is None or cue == self.cue)

    def on_narration_ended(self, cue: Optional[int] = None):
        if not self._is_current(cue):
            return
        # Video end takes over when the scene has one
        if self._scenes[self.index].video_url:
            return
        self.advance()

    def on_video_ended(self, cue: Optional[int] = None):
        if not self._is_current(cue) or not self._scenes[self.index].video_url:
            return
        self.advance()

    def _on_fallback(self, cue: int):
        self._fallback = None
        if self._is_current(cue):
            self.advance()

    def advance(self):
        if self.state != PlaybackState.SHOWING:
            return
        self._cancel_timers()
        if self.index + 1 >= len(self._scenes):
            self.close()
            return
        # Current scene's media stops before anything of the next scene loads
        self.narration.pause()
        self.video.pause()
        self.state = PlaybackState.TRANSITIONING
        self.cue += 1
        cue = self.cue
        self._transition = self.scheduler.call_later(self.transition_s, lambda: self._finish_transition(cue))

    def _finish_transition(self, cue: int):
        self._transition = None
        if self.state != PlaybackState.TRANSITIONING or cue != self.cue:
            return
        self._enter(self.index + 1)


class MovieSession:
    """Cue-emitting tracks plus a synchronizer, drained by a browser client."""

    def __init__(self, scheduler: Optional[Scheduler] = None, on_close: Optional[Callable[[], None]] = None, **timing):
        self._cues: List[Dict[str, Any]] = []
        self.narration = CueTrack("narration", self._emit)
        self.music = CueTrack("music", self._emit)
        self.video = CueTrack("video", self._emit)
        self.synchronizer = PlaybackSynchronizer(
            self.narration, self.music, self.video, scheduler=scheduler, on_close=on_close, **timing
        )

    def _emit(self, cue: Dict[str, Any]):
        cue["cue"] = self.synchronizer.cue
        self._cues.append(cue)

    def open(self, scenes: List[Scene]):
        self._cues.clear()
        self.synchronizer.open(scenes)

    def close(self):
        self.synchronizer.close()

    def handle_event(self, event: str, cue: Optional[int] = None):
        if event == "narration_ended":
            self.synchronizer.on_narration_ended(cue)
        elif event == "video_ended":
            self.synchronizer.on_video_ended(cue)
        else:
            raise ValidationError(f"Unknown movie event '{event}'")

    def drain(self) -> List[Dict[str, Any]]:
        cues, self._cues = self._cues, []
        return cues

    def snapshot(self) -> Dict[str, Any]:
        sync = self.synchronizer
        scene = sync.current_scene
        return {
            "state": sync.state.value,
            "index": sync.index,
            "cue": sync.cue,
            "scene_id": scene.id if scene else None,
            "playing": [t.name for t in (self.narration, self.music, self.video) if t.playing],
        }
