"""
Project store: the single authoritative project state.

State only changes through ``reduce(state, action)``, a pure function that
returns a new ``ProjectState``. ``ProjectStore`` wraps it as the one
serialization point for the asyncio event loop: every async stage funnels
its results through ``dispatch`` instead of editing state in place.
"""
import asyncio
import logging
import time
from typing import Callable, Dict, List, Optional, Type

from . import actions as a
from .models import (
    AppStep, AssetFlags, AssetKind, GenerationStatus, ProjectState, Scene,
    Severity, Toast,
)
from .settings import TOAST_TTL_S

logger = logging.getLogger(__name__)

Listener = Callable[[a.Action, ProjectState], None]


def _update(state: ProjectState, **fields) -> ProjectState:
    return state.model_copy(update=fields)


def _patch_scene(state: ProjectState, scene_id: int, patch: Callable[[Scene], Scene]) -> ProjectState:
    # Results landing on a deleted scene are dropped
    if state.find_scene(scene_id) is None:
        return state
    scenes = [patch(s) if s.id == scene_id else s for s in state.scenes]
    return _update(state, scenes=scenes)


def _with_status(scene: Scene, kind: AssetKind, status: GenerationStatus,
                 error: Optional[str] = None, **fields) -> Scene:
    flags = scene.flags.model_copy(update={kind.value: status})
    errors = scene.errors.model_copy(update={kind.value: error})
    return scene.model_copy(update={"flags": flags, "errors": errors, **fields})


def _idle_flags(scene: Scene) -> Scene:
    return scene.model_copy(update={"flags": AssetFlags()})


# --- handlers ---

def _set_step(state, action: a.SetStep):
    return _update(state, current_step=action.step)


def _set_script_text(state, action: a.SetScriptText):
    return _update(state, script_text=action.text)


def _set_status_message(state, action: a.SetStatusMessage):
    return _update(state, status_message=action.message)


def _set_error(state, action: a.SetError):
    return _update(state, error=action.error, status_message="")


def _set_api_key_status(state, action: a.SetApiKeyStatus):
    return _update(state, has_api_key=action.has_api_key)


def _set_config(state, action: a.SetConfig):
    changes = action.model_dump(exclude_none=True)
    return _update(state, style=state.style.model_copy(update=changes))


def _set_saving(state, action: a.SetSaving):
    return _update(state, is_saving=action.is_saving)


def _set_project_saved(state, action: a.SetProjectSaved):
    return _update(state, is_project_saved=action.is_project_saved)


def _start_analysis(state, action: a.StartAnalysis):
    return _update(state, status_message="Analyzing the soul of your story...", error="")


def _analyze_success(state, action: a.AnalyzeSuccess):
    return _update(state, characters=list(action.characters),
                   current_step=AppStep.CONFIG, status_message="")


def _analyze_failure(state, action: a.AnalyzeFailure):
    return _update(state, error=action.error, status_message="")


def _update_character_voice(state, action: a.UpdateCharacterVoice):
    characters = [
        c.model_copy(update={"voice": action.voice}) if c.name == action.character_name else c
        for c in state.characters
    ]
    return _update(state, characters=characters)


def _start_scene_generation(state, action: a.StartSceneGeneration):
    return _update(state, status_message="Building the visual storyboard...",
                   current_step=AppStep.SCENES, error="")


def _scene_generation_initialize(state, action: a.SceneGenerationInitialize):
    return _update(state, scenes=list(action.scenes))


def _scene_generation_complete(state, action: a.SceneGenerationComplete):
    return _update(state, status_message="")


def _scene_generation_failure(state, action: a.SceneGenerationFailure):
    return _update(state, error=action.error, status_message="")


def _asset_generation_started(state, action: a.AssetGenerationStarted):
    return _patch_scene(state, action.scene_id,
                        lambda s: _with_status(s, action.kind, GenerationStatus.IN_PROGRESS))


def _asset_generation_failed(state, action: a.AssetGenerationFailed):
    return _patch_scene(state, action.scene_id,
                        lambda s: _with_status(s, action.kind, GenerationStatus.IDLE, action.error))


def _image_generated(state, action: a.ImageGenerated):
    return _patch_scene(state, action.scene_id, lambda s: _with_status(
        s, AssetKind.IMAGE, GenerationStatus.IDLE,
        image_url=action.image_url, image_prompt=action.image_prompt,
    ))


def _audio_generated(state, action: a.AudioGenerated):
    return _patch_scene(state, action.scene_id, lambda s: _with_status(
        s, AssetKind.AUDIO, GenerationStatus.IDLE,
        audio_url=action.audio_url, duration=action.duration,
    ))


def _video_generated(state, action: a.VideoGenerated):
    def patch(scene: Scene) -> Scene:
        # A video is animated from the still frame and cannot outlive it
        if not scene.image_url:
            return _with_status(scene, AssetKind.VIDEO, GenerationStatus.IDLE,
                                "Scene image was removed before the video finished")
        return _with_status(scene, AssetKind.VIDEO, GenerationStatus.IDLE, video_url=action.video_url)
    return _patch_scene(state, action.scene_id, patch)


def _clear_scene_asset(state, action: a.ClearSceneAsset):
    def patch(scene: Scene) -> Scene:
        errors = scene.errors.model_copy(update={action.kind.value: None})
        if action.kind == AssetKind.IMAGE:
            fields = {"image_url": None, "image_prompt": None, "video_url": None}
        elif action.kind == AssetKind.VIDEO:
            fields = {"video_url": None}
        else:
            fields = {"audio_url": None, "duration": None}
        return scene.model_copy(update={**fields, "errors": errors})
    return _patch_scene(state, action.scene_id, patch)


def _update_scene_mix(state, action: a.UpdateSceneMix):
    changes = {}
    if "background_music_url" in action.model_fields_set:
        changes["background_music_url"] = action.background_music_url or None
    if action.music_volume is not None:
        changes["music_volume"] = action.music_volume
    if action.speech_volume is not None:
        changes["speech_volume"] = action.speech_volume
    return _patch_scene(state, action.scene_id, lambda s: s.model_copy(update=changes))


def _reorder_scenes(state, action: a.ReorderScenes):
    count = len(state.scenes)
    src, dst = action.from_index, action.to_index
    if src == dst or not (0 <= src < count) or not (0 <= dst < count):
        return state
    scenes = list(state.scenes)
    moved = scenes.pop(src)
    scenes.insert(dst, moved)
    return _update(state, scenes=scenes)


def _delete_scene(state, action: a.DeleteScene):
    return _update(state, scenes=[s for s in state.scenes if s.id != action.scene_id])


def _open_movie(state, action: a.OpenMovie):
    return _update(state, is_movie_open=True)


def _close_movie(state, action: a.CloseMovie):
    return _update(state, is_movie_open=False)


def _load_project(state, action: a.LoadProject):
    # In-flight work cannot survive a reload; it is abandoned, not resumed
    loaded = action.project
    return _update(
        loaded,
        scenes=[_idle_flags(s) for s in loaded.scenes],
        status_message="",
        is_saving=False,
        is_movie_open=False,
        is_project_saved=True,
        has_api_key=state.has_api_key,
        toasts=list(state.toasts),
    )


def _reset_project(state, action: a.ResetProject):
    return ProjectState()


def _add_toast(state, action: a.AddToast):
    toast = Toast(id=action.id, message=action.message, severity=action.severity)
    return _update(state, toasts=[*state.toasts, toast])


def _remove_toast(state, action: a.RemoveToast):
    return _update(state, toasts=[t for t in state.toasts if t.id != action.id])


_HANDLERS: Dict[Type[a.Action], Callable] = {
    a.SetStep: _set_step,
    a.SetScriptText: _set_script_text,
    a.SetStatusMessage: _set_status_message,
    a.SetError: _set_error,
    a.SetApiKeyStatus: _set_api_key_status,
    a.SetConfig: _set_config,
    a.SetSaving: _set_saving,
    a.SetProjectSaved: _set_project_saved,
    a.StartAnalysis: _start_analysis,
    a.AnalyzeSuccess: _analyze_success,
    a.AnalyzeFailure: _analyze_failure,
    a.UpdateCharacterVoice: _update_character_voice,
    a.StartSceneGeneration: _start_scene_generation,
    a.SceneGenerationInitialize: _scene_generation_initialize,
    a.SceneGenerationComplete: _scene_generation_complete,
    a.SceneGenerationFailure: _scene_generation_failure,
    a.AssetGenerationStarted: _asset_generation_started,
    a.AssetGenerationFailed: _asset_generation_failed,
    a.ImageGenerated: _image_generated,
    a.AudioGenerated: _audio_generated,
    a.VideoGenerated: _video_generated,
    a.ClearSceneAsset: _clear_scene_asset,
    a.UpdateSceneMix: _update_scene_mix,
    a.ReorderScenes: _reorder_scenes,
    a.DeleteScene: _delete_scene,
    a.OpenMovie: _open_movie,
    a.CloseMovie: _close_movie,
    a.LoadProject: _load_project,
    a.ResetProject: _reset_project,
    a.AddToast: _add_toast,
    a.RemoveToast: _remove_toast,
}


def reduce(state: ProjectState, action: a.Action) -> ProjectState:
    handler = _HANDLERS.get(type(action))
    if handler is None:
        return state
    return handler(state, action)


class MonotonicIds:
    """Timestamp-derived integer ids that never repeat within a session."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._last = 0

    def next(self) -> int:
        self._last = max(int(self._clock() * 1000), self._last + 1)
        return self._last

    def observe(self, used: int):
        self._last = max(self._last, used)


class ProjectStore:
    def __init__(self, state: Optional[ProjectState] = None, clock: Callable[[], float] = time.time):
        self._state = state or ProjectState()
        self._listeners: List[Listener] = []
        self._scene_ids = MonotonicIds(clock)
        self._toast_ids = MonotonicIds(clock)
        self._observe_scene_ids()

    @property
    def state(self) -> ProjectState:
        return self._state

    def dispatch(self, action: a.Action) -> ProjectState:
        self._state = reduce(self._state, action)
        if isinstance(action, a.LoadProject):
            self._observe_scene_ids()
        for listener in list(self._listeners):
            listener(action, self._state)
        return self._state

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)
        return unsubscribe

    def get_scene(self, scene_id: int) -> Optional[Scene]:
        return self._state.find_scene(scene_id)

    def allocate_scene_ids(self, count: int) -> List[int]:
        return [self._scene_ids.next() for _ in range(count)]

    def notify(self, message: str, severity: Severity = Severity.INFO) -> int:
        """Add a toast and schedule its expiry on the running loop."""
        toast_id = self._toast_ids.next()
        self.dispatch(a.AddToast(id=toast_id, message=message, severity=severity))
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug(f"No running loop, toast {toast_id} will not auto-expire")
            return toast_id
        loop.call_later(TOAST_TTL_S, self.dispatch, a.RemoveToast(id=toast_id))
        return toast_id

    def _observe_scene_ids(self):
        if self._state.scenes:
            self._scene_ids.observe(max(s.id for s in self._state.scenes))
