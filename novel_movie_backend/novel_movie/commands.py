"""Validated user triggers that map directly onto a single store action."""
import logging
from typing import Optional

from . import actions as a
from .errors import ValidationError
from .models import AppStep, AssetKind, ProjectState
from .settings import ASPECT_RATIOS, VOICE_NAMES
from .store import ProjectStore

logger = logging.getLogger(__name__)


def _check_voice(voice: str):
    if voice not in VOICE_NAMES:
        raise ValidationError(f"Unknown voice '{voice}'", {"voice": voice, "palette": VOICE_NAMES})


def _check_volume(field: str, value: Optional[int]):
    if value is None:
        return
    if isinstance(value, bool) or not isinstance(value, int) or not 0 <= value <= 100:
        raise ValidationError(f"{field} must be an integer between 0 and 100", {field: value})


def _check_scene(store: ProjectStore, scene_id: int):
    if store.get_scene(scene_id) is None:
        raise ValidationError(f"Scene {scene_id} does not exist", {"scene_id": scene_id})


def set_script_text(store: ProjectStore, text: str):
    store.dispatch(a.SetScriptText(text=text))


def set_step(store: ProjectStore, step: AppStep):
    store.dispatch(a.SetStep(step=step))


def configure(
    store: ProjectStore,
    image_style: Optional[str] = None,
    art_direction: Optional[str] = None,
    aspect_ratio: Optional[str] = None,
    include_text_in_image: Optional[bool] = None,
    narrator_voice: Optional[str] = None,
):
    if aspect_ratio is not None and aspect_ratio not in ASPECT_RATIOS:
        raise ValidationError(f"Unsupported aspect ratio '{aspect_ratio}'", {"allowed": list(ASPECT_RATIOS)})
    if narrator_voice is not None:
        _check_voice(narrator_voice)
    store.dispatch(a.SetConfig(
        image_style=image_style,
        art_direction=art_direction,
        aspect_ratio=aspect_ratio,
        include_text_in_image=include_text_in_image,
        narrator_voice=narrator_voice,
    ))


def assign_voice(store: ProjectStore, character_name: str, voice: str):
    _check_voice(voice)
    if store.state.find_character(character_name) is None:
        raise ValidationError(f"Unknown character '{character_name}'", {"character": character_name})
    store.dispatch(a.UpdateCharacterVoice(character_name=character_name, voice=voice))


def set_scene_mix(store: ProjectStore, scene_id: int, **changes):
    """Update background music and volumes; out-of-range volumes are rejected, never clamped."""
    _check_scene(store, scene_id)
    unknown = set(changes) - {"background_music_url", "music_volume", "speech_volume"}
    if unknown:
        raise ValidationError(f"Unknown scene mix fields: {sorted(unknown)}")
    _check_volume("music_volume", changes.get("music_volume"))
    _check_volume("speech_volume", changes.get("speech_volume"))
    store.dispatch(a.UpdateSceneMix(scene_id=scene_id, **changes))


def clear_scene_asset(store: ProjectStore, scene_id: int, kind: AssetKind):
    _check_scene(store, scene_id)
    store.dispatch(a.ClearSceneAsset(scene_id=scene_id, kind=kind))


def reorder_scenes(store: ProjectStore, from_index: int, to_index: int):
    count = len(store.state.scenes)
    if not (0 <= from_index < count and 0 <= to_index < count):
        raise ValidationError(
            f"Scene positions must be between 0 and {count - 1}",
            {"from_index": from_index, "to_index": to_index},
        )
    store.dispatch(a.ReorderScenes(from_index=from_index, to_index=to_index))


def can_open_movie(state: ProjectState) -> bool:
    return bool(state.scenes) and all(s.audio_url for s in state.scenes)


def open_movie(store: ProjectStore):
    if not can_open_movie(store.state):
        raise ValidationError("Every scene needs narration before the movie can play")
    store.dispatch(a.OpenMovie())


def remove_toast(store: ProjectStore, toast_id: int):
    store.dispatch(a.RemoveToast(id=toast_id))
