import asyncio, logging
from typing import Dict, List, Optional, Tuple
from pydantic import BaseModel, Field
from langgraph.graph import StateGraph, END

from . import actions as a
from .errors import BusyError, GenerationError, NarrationError, PartialNarrationError, ValidationError
from .media import decode_segment, concat_pcm, pcm_to_wav, save_narration, measure_wav_duration, with_access_key
from .models import (
    AssetKind, Character, NarrationPart, PartKind, Scene, Severity, StyleConfig, VideoJob,
)
from .ports import GenerationPorts
from .settings import MEDIA_DIR, VIDEO_ACCESS_KEY, VIDEO_POLL_INTERVAL_S, VOICE_NAMES
from .store import ProjectStore

logger = logging.getLogger(__name__)

EMPTY_SCRIPT_MESSAGE = "The script cannot be empty."


class SceneGenerationState(BaseModel):
    text: str
    style: StyleConfig
    characters: List[Character] = Field(default_factory=list)
    scene_ids: List[int] = Field(default_factory=list)
    error: Optional[str] = None


def _describe(e: Exception, fallback: str) -> str:
    return getattr(e, "message", None) or str(e) or fallback


def assign_default_voices(characters: List[Character]) -> List[Character]:
    return [
        c.model_copy(update={"voice": VOICE_NAMES[i % len(VOICE_NAMES)]})
        for i, c in enumerate(characters)
    ]


def voice_for_part(part: NarrationPart, characters: List[Character], narrator_voice: str) -> str:
    if part.kind == PartKind.DIALOGUE:
        for character in characters:
            if character.name == part.speaker and character.voice:
                return character.voice
    return narrator_voice


def speakable_parts(parts: List[NarrationPart]) -> List[Tuple[int, NarrationPart]]:
    return [(i, p) for i, p in enumerate(parts) if p.kind != PartKind.INSTRUCTION and p.text.strip()]


class SceneOrchestrator:
    """Runs the generation stages and writes every outcome through the store."""

    def __init__(
        self,
        store: ProjectStore,
        ports: GenerationPorts,
        media_dir: str = MEDIA_DIR,
        access_key: str = VIDEO_ACCESS_KEY,
        poll_interval: float = VIDEO_POLL_INTERVAL_S,
    ):
        self.store = store
        self.ports = ports
        self.media_dir = media_dir
        self.access_key = access_key
        self.poll_interval = poll_interval
        self._video_tasks: Dict[int, asyncio.Task] = {}
        self._graph = self._build_graph()
        store.subscribe(self._on_action)

    def _on_action(self, action: a.Action, state):
        # A loaded or reset project abandons every outstanding video job
        if isinstance(action, (a.LoadProject, a.ResetProject)):
            self.cancel_all_videos()

    # --- analyze ---

    async def analyze(self) -> Optional[List[Character]]:
        text = self.store.state.script_text
        if not text.strip():
            self.store.dispatch(a.SetError(error=EMPTY_SCRIPT_MESSAGE))
            raise ValidationError(EMPTY_SCRIPT_MESSAGE)
        self.store.dispatch(a.StartAnalysis())
        logger.info(f"Analyzing characters in a script of {len(text)} chars")
        try:
            characters = await self.ports.analyze_characters(text)
        except Exception as e:
            logger.error(f"Character analysis failed: {str(e)}")
            self.store.dispatch(a.AnalyzeFailure(error=_describe(e, "Character analysis failed")))
            return None
        voiced = assign_default_voices(characters)
        self.store.dispatch(a.AnalyzeSuccess(characters=voiced))
        logger.info(f"Identified {len(voiced)} characters")
        return voiced

    # --- decompose + populate images ---

    def _build_graph(self):
        g = StateGraph(SceneGenerationState)
        g.add_node("decompose", self._node_decompose)
        g.add_node("populate_images", self._node_populate_images)
        g.set_entry_point("decompose")
        g.add_conditional_edges(
            "decompose", self._route_after_decompose,
            {"populate_images": "populate_images", "end": END},
        )
        g.add_edge("populate_images", END)
        return g.compile()

    async def generate_scenes(self) -> List[int]:
        state = self.store.state
        if not state.script_text.strip():
            self.store.dispatch(a.SetError(error=EMPTY_SCRIPT_MESSAGE))
            raise ValidationError(EMPTY_SCRIPT_MESSAGE)
        self.store.dispatch(a.StartSceneGeneration())
        run = SceneGenerationState(
            text=state.script_text,
            style=state.style,
            characters=state.characters,
        )
        final_state = await self._graph.ainvoke(run)
        # Handle LangGraph's AddableValuesDict result
        scene_ids = final_state.get("scene_ids") if hasattr(final_state, "get") else final_state.scene_ids
        return list(scene_ids or [])

    async def _node_decompose(self, state: SceneGenerationState) -> dict:
        logger.info("Decomposing script into scenes")
        try:
            specs = await self.ports.decompose_into_scenes(state.text)
        except Exception as e:
            logger.error(f"Scene decomposition failed: {str(e)}")
            error = _describe(e, "Scene decomposition failed")
            self.store.dispatch(a.SceneGenerationFailure(error=error))
            return {"error": error}
        ids = self.store.allocate_scene_ids(len(specs))
        scenes = [Scene(id=scene_id, parts=spec.parts) for scene_id, spec in zip(ids, specs)]
        self.store.dispatch(a.SceneGenerationInitialize(scenes=scenes))
        logger.info(f"Initialized {len(scenes)} scenes")
        return {"scene_ids": ids}

    def _route_after_decompose(self, state: SceneGenerationState) -> str:
        return "end" if state.error else "populate_images"

    async def _node_populate_images(self, state: SceneGenerationState) -> dict:
        # One request at a time keeps the style stable across frames
        total = len(state.scene_ids)
        for i, scene_id in enumerate(state.scene_ids):
            scene = self.store.get_scene(scene_id)
            if scene is not None and (scene.is_generating(AssetKind.IMAGE) or scene.image_url):
                logger.info(f"Scene {scene_id} already has or is generating an image, skipping")
                continue
            logger.info(f"Generating image for scene {i + 1}/{total}")
            self.store.dispatch(a.SetStatusMessage(message=f"Painting scene {i + 1} of {total}..."))
            await self._run_image(scene_id, state.style, state.characters)
        self.store.dispatch(a.SceneGenerationComplete())
        return {}

    # --- per-scene stages ---

    def _require_idle(self, scene_id: int, kind: AssetKind) -> Scene:
        scene = self.store.get_scene(scene_id)
        if scene is None:
            raise ValidationError(f"Scene {scene_id} does not exist", {"scene_id": scene_id})
        if scene.is_generating(kind):
            raise BusyError(
                f"Scene {scene_id} is already generating its {kind.value}",
                {"scene_id": scene_id, "kind": kind.value},
            )
        return scene

    async def _run_image(self, scene_id: int, style: StyleConfig, characters: List[Character]) -> bool:
        scene = self.store.get_scene(scene_id)
        if scene is None:
            logger.info(f"Scene {scene_id} no longer exists, skipping image")
            return False
        self.store.dispatch(a.AssetGenerationStarted(scene_id=scene_id, kind=AssetKind.IMAGE))
        try:
            result = await self.ports.generate_image(scene.parts, style, characters)
        except Exception as e:
            logger.error(f"Image generation failed for scene {scene_id}: {str(e)}")
            self.store.dispatch(a.AssetGenerationFailed(
                scene_id=scene_id, kind=AssetKind.IMAGE, error=_describe(e, "Image generation failed"),
            ))
            return False
        self.store.dispatch(a.ImageGenerated(
            scene_id=scene_id, image_url=result.image_url, image_prompt=result.image_prompt,
        ))
        return True

    async def generate_image(self, scene_id: int) -> bool:
        self._require_idle(scene_id, AssetKind.IMAGE)
        state = self.store.state
        ok = await self._run_image(scene_id, state.style, state.characters)
        if ok:
            self.store.notify("Image synced with the global style", Severity.SUCCESS)
        return ok

    async def _synthesize(self, parts: List[NarrationPart], characters: List[Character],
                          narrator_voice: str) -> Tuple[bytes, List[int], int]:
        speakable = speakable_parts(parts)
        if not speakable:
            raise NarrationError("This scene has nothing to narrate.")
        chunks: List[bytes] = []
        failed: List[int] = []
        for index, part in speakable:
            voice = voice_for_part(part, characters, narrator_voice)
            try:
                chunk = decode_segment(await self.ports.generate_narration_segment(part.text, voice))
                if not chunk:
                    raise GenerationError("Empty audio segment")
            except Exception as e:
                logger.warning(f"TTS failed for part {index} ({voice}): {str(e)}")
                failed.append(index)
                continue
            chunks.append(chunk)
        if not chunks:
            raise NarrationError("Could not generate the audio.", {"failed_parts": failed})
        return concat_pcm(chunks), failed, len(speakable)

    async def narrate_scene(self, scene_id: int) -> Optional[str]:
        scene = self._require_idle(scene_id, AssetKind.AUDIO)
        state = self.store.state
        self.store.dispatch(a.AssetGenerationStarted(scene_id=scene_id, kind=AssetKind.AUDIO))
        try:
            pcm, failed, total = await self._synthesize(scene.parts, state.characters, state.style.narrator_voice)
            path, handle = save_narration(scene_id, pcm_to_wav(pcm), self.media_dir)
        except Exception as e:
            logger.error(f"Narration failed for scene {scene_id}: {str(e)}")
            self.store.dispatch(a.AssetGenerationFailed(
                scene_id=scene_id, kind=AssetKind.AUDIO, error=_describe(e, "Narration failed"),
            ))
            return None
        duration = measure_wav_duration(path)
        self.store.dispatch(a.AudioGenerated(scene_id=scene_id, audio_url=handle, duration=duration))
        logger.info(f"Narrated scene {scene_id}: {duration:.2f}s")
        if failed:
            partial = PartialNarrationError(failed, total)
            logger.warning(f"Scene {scene_id}: {partial}")
            self.store.notify(partial.message, Severity.INFO)
        return handle

    async def animate_scene(self, scene_id: int) -> Optional[asyncio.Task]:
        """Submit a video job; polling continues in a task owned by this scene."""
        scene = self._require_idle(scene_id, AssetKind.VIDEO)
        if not scene.image_url:
            raise ValidationError(f"Scene {scene_id} needs an image before it can be animated",
                                  {"scene_id": scene_id})
        self.store.dispatch(a.AssetGenerationStarted(scene_id=scene_id, kind=AssetKind.VIDEO))
        try:
            job = await self.ports.submit_video_job(scene.parts, self.store.state.style.aspect_ratio, scene.image_url)
        except Exception as e:
            logger.error(f"Video submission failed for scene {scene_id}: {str(e)}")
            self.store.dispatch(a.AssetGenerationFailed(
                scene_id=scene_id, kind=AssetKind.VIDEO, error=_describe(e, "Video submission failed"),
            ))
            return None
        logger.info(f"Video job {job.id} submitted for scene {scene_id}")
        task = asyncio.create_task(self._poll_video(scene_id, job))
        self._video_tasks[scene_id] = task
        task.add_done_callback(lambda t: self._forget_video_task(scene_id, t))
        return task

    def _forget_video_task(self, scene_id: int, task: asyncio.Task):
        if self._video_tasks.get(scene_id) is task:
            del self._video_tasks[scene_id]

    async def _poll_video(self, scene_id: int, job: VideoJob):
        try:
            while True:
                if self.store.get_scene(scene_id) is None:
                    logger.info(f"Scene {scene_id} was deleted, dropping video job {job.id}")
                    return
                status = await self.ports.poll_video_job(job)
                if status.done:
                    break
                await asyncio.sleep(self.poll_interval)
            if not status.media:
                raise GenerationError(f"Video job {job.id} finished without media")
        except Exception as e:
            logger.error(f"Video generation failed for scene {scene_id}: {str(e)}")
            self.store.dispatch(a.AssetGenerationFailed(
                scene_id=scene_id, kind=AssetKind.VIDEO, error=_describe(e, "Video generation failed"),
            ))
            return
        self.store.dispatch(a.VideoGenerated(scene_id=scene_id, video_url=with_access_key(status.media, self.access_key)))
        self.store.notify("Video ready", Severity.SUCCESS)

    def video_task(self, scene_id: int) -> Optional[asyncio.Task]:
        return self._video_tasks.get(scene_id)

    def cancel_video(self, scene_id: int) -> bool:
        task = self._video_tasks.pop(scene_id, None)
        if task is None or task.done():
            return False
        task.cancel()
        logger.info(f"Cancelled video polling for scene {scene_id}")
        return True

    def delete_scene(self, scene_id: int):
        self.cancel_video(scene_id)
        self.store.dispatch(a.DeleteScene(scene_id=scene_id))

    def cancel_all_videos(self) -> List[asyncio.Task]:
        tasks = list(self._video_tasks.values())
        self._video_tasks.clear()
        for task in tasks:
            task.cancel()
        if tasks:
            logger.info(f"Cancelled {len(tasks)} outstanding video job(s)")
        return tasks

    async def shutdown(self):
        await asyncio.gather(*self.cancel_all_videos(), return_exceptions=True)
