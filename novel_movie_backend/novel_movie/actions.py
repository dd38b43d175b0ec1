"""
Closed vocabulary of project state transitions.

Every mutation of the project goes through one of these actions and the
reducer in store.py. Payloads are validated when an action is built, so the
reducer never has to reject anything.
"""
from pydantic import BaseModel, ConfigDict, Field
from typing import List, Optional

from .models import (
    AppStep, AspectRatio, AssetKind, Character, ProjectState, Scene, Severity,
)


class Action(BaseModel):
    model_config = ConfigDict(frozen=True)


# --- UI / global ---

class SetStep(Action):
    step: AppStep


class SetScriptText(Action):
    text: str


class SetStatusMessage(Action):
    message: str


class SetError(Action):
    error: str


class SetApiKeyStatus(Action):
    has_api_key: bool


class SetConfig(Action):
    image_style: Optional[str] = None
    art_direction: Optional[str] = None
    aspect_ratio: Optional[AspectRatio] = None
    include_text_in_image: Optional[bool] = None
    narrator_voice: Optional[str] = None


class SetSaving(Action):
    is_saving: bool


class SetProjectSaved(Action):
    is_project_saved: bool


# --- analysis lifecycle ---

class StartAnalysis(Action):
    pass


class AnalyzeSuccess(Action):
    characters: List[Character]


class AnalyzeFailure(Action):
    error: str


class UpdateCharacterVoice(Action):
    character_name: str
    voice: str


# --- scene generation lifecycle ---

class StartSceneGeneration(Action):
    pass


class SceneGenerationInitialize(Action):
    scenes: List[Scene]


class SceneGenerationComplete(Action):
    pass


class SceneGenerationFailure(Action):
    error: str


# --- per-scene updates, one result type per asset kind ---

class AssetGenerationStarted(Action):
    scene_id: int
    kind: AssetKind


class AssetGenerationFailed(Action):
    scene_id: int
    kind: AssetKind
    error: str


class ImageGenerated(Action):
    scene_id: int
    image_url: str
    image_prompt: Optional[str] = None


class AudioGenerated(Action):
    scene_id: int
    audio_url: str
    duration: float


class VideoGenerated(Action):
    scene_id: int
    video_url: str


class ClearSceneAsset(Action):
    scene_id: int
    kind: AssetKind


class UpdateSceneMix(Action):
    scene_id: int
    background_music_url: Optional[str] = None
    music_volume: Optional[int] = Field(None, ge=0, le=100)
    speech_volume: Optional[int] = Field(None, ge=0, le=100)


class ReorderScenes(Action):
    from_index: int
    to_index: int


class DeleteScene(Action):
    scene_id: int


# --- movie mode ---

class OpenMovie(Action):
    pass


class CloseMovie(Action):
    pass


# --- project lifecycle ---

class LoadProject(Action):
    project: ProjectState


class ResetProject(Action):
    pass


# --- notifications ---

class AddToast(Action):
    id: int
    message: str
    severity: Severity = Severity.INFO


class RemoveToast(Action):
    id: int
