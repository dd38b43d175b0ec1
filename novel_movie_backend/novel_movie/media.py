import os, io, base64, wave, uuid, logging
from typing import List, Tuple, Union
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit
from .settings import (
    MEDIA_DIR, MEDIA_URL_PREFIX, NARRATION_SAMPLE_RATE, NARRATION_CHANNELS, NARRATION_SAMPLE_WIDTH,
    DEFAULT_SCENE_DURATION_S,
)

logger = logging.getLogger(__name__)

def write_bytes(path: str, data: bytes):
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, "wb") as f:
        f.write(data)

def write_text(path: str, text: str):
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        f.write(text)

def decode_segment(raw: Union[bytes, str]) -> bytes:
    """Raw 16-bit PCM from a TTS response; base64 text payloads are decoded first."""
    pcm = base64.b64decode(raw) if isinstance(raw, str) else bytes(raw)
    # Drop a dangling half sample so segments stay frame aligned when joined
    if len(pcm) % NARRATION_SAMPLE_WIDTH:
        pcm = pcm[: len(pcm) - len(pcm) % NARRATION_SAMPLE_WIDTH]
    return pcm

def concat_pcm(chunks: List[bytes]) -> bytes:
    return b"".join(chunks)

def pcm_to_wav(pcm: bytes, sample_rate: int = NARRATION_SAMPLE_RATE) -> bytes:
    buf = io.BytesIO()
    with wave.open(buf, "wb") as wf:
        wf.setnchannels(NARRATION_CHANNELS)
        wf.setsampwidth(NARRATION_SAMPLE_WIDTH)
        wf.setframerate(sample_rate)
        wf.writeframes(pcm)
    return buf.getvalue()

def measure_wav_duration(path: str, default: float = DEFAULT_SCENE_DURATION_S) -> float:
    """Playable length of a WAV file in seconds, or ``default`` when it cannot be read."""
    try:
        with wave.open(path, "rb") as wf:
            frames = wf.getnframes()
            rate = wf.getframerate()
    except (OSError, EOFError, wave.Error) as e:
        logger.warning(f"Could not read WAV duration for {path}: {e}")
        return default
    if rate <= 0 or frames <= 0:
        return default
    return frames / rate

def save_narration(scene_id: int, wav: bytes, media_dir: str = MEDIA_DIR) -> Tuple[str, str]:
    """Write a narration WAV and return (local path, public media handle)."""
    filename = f"scene_{scene_id}_{uuid.uuid4().hex[:8]}.wav"
    path = os.path.join(media_dir, filename)
    write_bytes(path, wav)
    logger.info(f"Saved narration to {path}")
    return path, f"{MEDIA_URL_PREFIX}/{filename}"

def with_access_key(uri: str, key: str) -> str:
    """Append the access credential to a media URI as a ``key`` query parameter."""
    if not key:
        return uri
    parts = urlsplit(uri)
    query = [(k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True) if k != "key"]
    query.append(("key", key))
    return urlunsplit((parts.scheme, parts.netloc, parts.path, urlencode(query), parts.fragment))
