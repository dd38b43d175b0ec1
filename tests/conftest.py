"""
Pytest Configuration and Fixtures

In-process fakes for the generation ports, media tracks and timers.
"""

import asyncio
import itertools
from typing import Any, Callable, Dict, List, Optional, Tuple

import pytest

from novel_movie.models import (
    Character, ImageResult, NarrationPart, PartKind, Scene, SceneSpec, VideoJob, VideoPoll,
)
from novel_movie.orchestrator import SceneOrchestrator
from novel_movie.store import ProjectStore


def pcm(samples: int, value: int = 1) -> bytes:
    """``samples`` frames of 16-bit little-endian mono PCM."""
    return value.to_bytes(2, "little", signed=True) * samples


def narration(text: str) -> NarrationPart:
    return NarrationPart(kind=PartKind.NARRATION, text=text)


def dialogue(speaker: str, text: str) -> NarrationPart:
    return NarrationPart(kind=PartKind.DIALOGUE, speaker=speaker, text=text)


def instruction(text: str) -> NarrationPart:
    return NarrationPart(kind=PartKind.INSTRUCTION, text=text)


class FakePorts:
    """Scriptable generation ports that record every call in order."""

    def __init__(self):
        self.calls: List[Tuple] = []
        self.characters = [Character(name="Ana", description="A detective"),
                           Character(name="Bruno", description="Her informant")]
        self.specs = [
            SceneSpec(parts=[narration("Rain over the harbour.")]),
            SceneSpec(parts=[dialogue("Ana", "Where were you?")]),
            SceneSpec(parts=[narration("The lights went out.")]),
        ]
        self.analyze_error: Optional[Exception] = None
        self.decompose_error: Optional[Exception] = None
        # first part text of a scene -> error raised by generate_image
        self.image_errors: Dict[str, Exception] = {}
        self.image_gate: Optional[asyncio.Event] = None
        # part text -> bytes, or an exception to raise
        self.segments: Dict[str, Any] = {}
        # job id -> remaining polls before done
        self.pending_polls: Dict[str, int] = {}
        self.video_media: Optional[str] = "https://cdn.example.com/clip.mp4"
        self._job_ids = itertools.count(1)

    async def analyze_characters(self, text):
        self.calls.append(("analyze", text))
        if self.analyze_error:
            raise self.analyze_error
        return list(self.characters)

    async def decompose_into_scenes(self, text):
        self.calls.append(("decompose", text))
        if self.decompose_error:
            raise self.decompose_error
        return list(self.specs)

    async def generate_image(self, parts, style, characters):
        key = parts[0].text if parts else ""
        self.calls.append(("image:start", key))
        if self.image_gate is not None:
            await self.image_gate.wait()
        await asyncio.sleep(0)
        self.calls.append(("image:end", key))
        if key in self.image_errors:
            raise self.image_errors[key]
        return ImageResult(image_url=f"https://img.example.com/{len(self.calls)}.png",
                           image_prompt=f"{style.image_style}: {key}")

    async def generate_narration_segment(self, text, voice):
        self.calls.append(("tts", text, voice))
        result = self.segments.get(text, pcm(240))
        if isinstance(result, Exception):
            raise result
        return result

    async def submit_video_job(self, parts, aspect_ratio, image_url):
        job = VideoJob(id=f"job-{next(self._job_ids)}")
        self.calls.append(("submit", job.id, aspect_ratio, image_url))
        self.pending_polls.setdefault(job.id, 0)
        return job

    async def poll_video_job(self, job):
        remaining = self.pending_polls.get(job.id, 0)
        done = remaining <= 0
        self.calls.append(("poll", job.id, done))
        if not done:
            self.pending_polls[job.id] = remaining - 1
            return VideoPoll(done=False)
        return VideoPoll(done=True, media=self.video_media)


class FakeTimer:
    def __init__(self, delay: float, callback: Callable[[], Any]):
        self.delay = delay
        self.callback = callback
        self.cancelled = False

    def cancel(self):
        self.cancelled = True


class FakeScheduler:
    """Collects timers; tests fire them explicitly."""

    def __init__(self):
        self.timers: List[FakeTimer] = []

    def call_later(self, delay, callback):
        timer = FakeTimer(delay, callback)
        self.timers.append(timer)
        return timer

    @property
    def pending(self) -> List[FakeTimer]:
        return [t for t in self.timers if not t.cancelled]

    def fire_next(self) -> FakeTimer:
        timer = self.pending[0]
        timer.cancelled = True
        timer.callback()
        return timer


class FakeTrack:
    def __init__(self, name: str):
        self.name = name
        self.src: Optional[str] = None
        self.loop = False
        self.playing = False
        self.volume = 1.0
        self.log: List[Tuple] = []

    def load(self, src, loop=False):
        self.src, self.loop, self.playing = src, loop, False
        self.log.append(("load", src))

    def play(self):
        self.playing = True
        self.log.append(("play", self.src))

    def pause(self):
        self.playing = False
        self.log.append(("pause", self.src))

    def set_volume(self, volume):
        self.volume = volume
        self.log.append(("volume", volume))

    def detach(self):
        self.src, self.playing = None, False
        self.log.append(("detach",))


@pytest.fixture
def ports() -> FakePorts:
    return FakePorts()


@pytest.fixture
def store() -> ProjectStore:
    return ProjectStore()


@pytest.fixture
def media_dir(tmp_path):
    path = tmp_path / "media"
    path.mkdir()
    return str(path)


@pytest.fixture
def orchestrator(store, ports, media_dir) -> SceneOrchestrator:
    return SceneOrchestrator(store, ports, media_dir=media_dir, access_key="secret", poll_interval=0)


@pytest.fixture
def scheduler() -> FakeScheduler:
    return FakeScheduler()


@pytest.fixture
def tracks() -> Dict[str, FakeTrack]:
    return {name: FakeTrack(name) for name in ("narration", "music", "video")}


def make_scene(scene_id: int, **fields) -> Scene:
    fields.setdefault("parts", [narration(f"Scene {scene_id}")])
    return Scene(id=scene_id, **fields)
