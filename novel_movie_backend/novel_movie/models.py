from enum import Enum
from pydantic import BaseModel, ConfigDict, Field
from typing import List, Literal, Optional

from .settings import (
    DEFAULT_ART_DIRECTION, DEFAULT_IMAGE_STYLE, DEFAULT_MUSIC_VOLUME,
    DEFAULT_NARRATOR_VOICE, DEFAULT_SPEECH_VOLUME,
)

AspectRatio = Literal["16:9", "9:16"]


class PartKind(str, Enum):
    NARRATION = "NARRATION"
    DIALOGUE = "DIALOGUE"
    INSTRUCTION = "INSTRUCTION"


class AssetKind(str, Enum):
    IMAGE = "image"
    VIDEO = "video"
    AUDIO = "audio"


class GenerationStatus(str, Enum):
    IDLE = "idle"
    IN_PROGRESS = "in_progress"


class AppStep(str, Enum):
    INPUT = "input"
    CONFIG = "config"
    SCENES = "scenes"


class Severity(str, Enum):
    SUCCESS = "success"
    ERROR = "error"
    INFO = "info"


class Character(BaseModel):
    name: str
    description: str = ""
    voice: Optional[str] = None


class NarrationPart(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: PartKind
    speaker: Optional[str] = None
    text: str


class SceneSpec(BaseModel):
    """One storyboard entry as returned by decomposition."""
    parts: List[NarrationPart]


class AssetFlags(BaseModel):
    image: GenerationStatus = GenerationStatus.IDLE
    video: GenerationStatus = GenerationStatus.IDLE
    audio: GenerationStatus = GenerationStatus.IDLE


class AssetErrors(BaseModel):
    image: Optional[str] = None
    video: Optional[str] = None
    audio: Optional[str] = None


class Scene(BaseModel):
    id: int
    parts: List[NarrationPart] = Field(default_factory=list)
    image_url: Optional[str] = None
    image_prompt: Optional[str] = None
    video_url: Optional[str] = None
    audio_url: Optional[str] = None
    background_music_url: Optional[str] = None
    music_volume: int = Field(DEFAULT_MUSIC_VOLUME, ge=0, le=100)
    speech_volume: int = Field(DEFAULT_SPEECH_VOLUME, ge=0, le=100)
    duration: Optional[float] = None
    flags: AssetFlags = Field(default_factory=AssetFlags)
    errors: AssetErrors = Field(default_factory=AssetErrors)

    def status(self, kind: AssetKind) -> GenerationStatus:
        return getattr(self.flags, kind.value)

    def is_generating(self, kind: AssetKind) -> bool:
        return self.status(kind) == GenerationStatus.IN_PROGRESS

    @property
    def has_music(self) -> bool:
        return bool(self.background_music_url and self.background_music_url.strip())


class StyleConfig(BaseModel):
    image_style: str = DEFAULT_IMAGE_STYLE
    art_direction: str = DEFAULT_ART_DIRECTION
    aspect_ratio: AspectRatio = "16:9"
    include_text_in_image: bool = False
    narrator_voice: str = DEFAULT_NARRATOR_VOICE


class Toast(BaseModel):
    id: int
    message: str
    severity: Severity = Severity.INFO


class ProjectState(BaseModel):
    current_step: AppStep = AppStep.INPUT
    script_text: str = ""
    characters: List[Character] = Field(default_factory=list)
    scenes: List[Scene] = Field(default_factory=list)
    style: StyleConfig = Field(default_factory=StyleConfig)
    status_message: str = ""
    error: str = ""
    has_api_key: bool = False
    is_saving: bool = False
    is_project_saved: bool = False
    is_movie_open: bool = False
    toasts: List[Toast] = Field(default_factory=list)

    def find_scene(self, scene_id: int) -> Optional[Scene]:
        for scene in self.scenes:
            if scene.id == scene_id:
                return scene
        return None

    def find_character(self, name: Optional[str]) -> Optional[Character]:
        if not name:
            return None
        for character in self.characters:
            if character.name == name:
                return character
        return None


class ImageResult(BaseModel):
    image_url: str
    image_prompt: Optional[str] = None


class VideoJob(BaseModel):
    """Opaque handle to a submitted video generation job."""
    id: str
    provider: str = "replicate"


class VideoPoll(BaseModel):
    done: bool
    media: Optional[str] = None
