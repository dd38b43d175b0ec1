import os, httpx, asyncio, logging
from typing import Optional
from .settings import ELEVENLABS_VOICE_MAP, NARRATION_SAMPLE_RATE

logger = logging.getLogger(__name__)

def _voice_id(voice: Optional[str] = None) -> str:
    # Palette names map to provider voice ids; anything unmapped falls back to the default voice
    if voice and voice in ELEVENLABS_VOICE_MAP:
        return ELEVENLABS_VOICE_MAP[voice]
    vid = os.getenv("ELEVENLABS_VOICE_ID", "")
    if not vid:
        raise RuntimeError("ELEVENLABS_VOICE_ID is not set; please configure your .env")
    return vid

def _headers():
    api_key = os.getenv("ELEVENLABS_API_KEY", "")
    if not api_key:
        raise RuntimeError("ELEVENLABS_API_KEY is not set; please configure your .env")
    return {
        "xi-api-key": api_key,
        "Content-Type": "application/json"
    }

async def tts_to_pcm(text: str, voice: Optional[str] = None, max_retries: int = 3) -> bytes:
    """Synthesize ``text`` as raw mono 16-bit little-endian PCM."""
    payload = {
        "text": text,
        "model_id": "eleven_multilingual_v2",
        "voice_settings": {"stability": 0.5, "similarity_boost": 0.75},
    }
    url = f"https://api.elevenlabs.io/v1/text-to-speech/{_voice_id(voice)}"
    params = {"output_format": f"pcm_{NARRATION_SAMPLE_RATE}"}

    for attempt in range(max_retries + 1):
        try:
            async with httpx.AsyncClient(timeout=60) as client:
                r = await client.post(url, headers=_headers(), params=params, json=payload)
                r.raise_for_status()
                return r.content
        except httpx.HTTPStatusError as e:
            if e.response.status_code == 429 and attempt < max_retries:
                # Exponential backoff: wait 2^attempt seconds
                wait_time = 2 ** attempt
                logger.warning(f"ElevenLabs rate limited (429). Retrying in {wait_time} seconds... (attempt {attempt + 1}/{max_retries + 1})")
                await asyncio.sleep(wait_time)
                continue
            if e.response.status_code == 429:
                logger.error(f"ElevenLabs rate limit exceeded after {max_retries + 1} attempts")
            raise
