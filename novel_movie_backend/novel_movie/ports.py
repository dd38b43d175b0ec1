"""
Asset generator ports.

The orchestrator only talks to ``GenerationPorts``. ``ProviderPorts`` is the
production adapter over OpenAI (text), Replicate (image, video) and
ElevenLabs (speech).
"""
from typing import List, Protocol

from . import elevenlabs_client, llm, replicate_client
from .models import (
    Character, ImageResult, NarrationPart, PartKind, SceneSpec, StyleConfig, VideoJob, VideoPoll,
)
from .prompts import VIDEO_PROMPT_TEMPLATE


class GenerationPorts(Protocol):
    async def analyze_characters(self, text: str) -> List[Character]: ...

    async def decompose_into_scenes(self, text: str) -> List[SceneSpec]: ...

    async def generate_image(self, parts: List[NarrationPart], style: StyleConfig,
                             characters: List[Character]) -> ImageResult: ...

    async def generate_narration_segment(self, text: str, voice: str) -> bytes: ...

    async def submit_video_job(self, parts: List[NarrationPart], aspect_ratio: str,
                               image_url: str) -> VideoJob: ...

    async def poll_video_job(self, job: VideoJob) -> VideoPoll: ...


def video_action_text(parts: List[NarrationPart], limit: int = 500) -> str:
    return " ".join(p.text for p in parts if p.kind != PartKind.INSTRUCTION)[:limit]


class ProviderPorts:
    async def analyze_characters(self, text: str) -> List[Character]:
        return await llm.identify_characters(text)

    async def decompose_into_scenes(self, text: str) -> List[SceneSpec]:
        return await llm.parse_storyboard(text)

    async def generate_image(self, parts, style, characters) -> ImageResult:
        prompt = await llm.compose_image_prompt(parts, style, characters)
        url = await replicate_client.create_and_wait_image(prompt, style.aspect_ratio)
        return ImageResult(image_url=url, image_prompt=prompt)

    async def generate_narration_segment(self, text: str, voice: str) -> bytes:
        return await elevenlabs_client.tts_to_pcm(text, voice)

    async def submit_video_job(self, parts, aspect_ratio, image_url) -> VideoJob:
        prompt = VIDEO_PROMPT_TEMPLATE.format(action=video_action_text(parts))
        pred_id = await replicate_client.submit_video(prompt, image_url, aspect_ratio)
        return VideoJob(id=pred_id)

    async def poll_video_job(self, job: VideoJob) -> VideoPoll:
        done, url = await replicate_client.check_video(job.id)
        return VideoPoll(done=done, media=url)
