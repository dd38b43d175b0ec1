import os
import json
import tempfile
from dotenv import load_dotenv
import logging

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# Load .env file if it exists (for local development)
env_path = os.path.join(os.path.dirname(__file__), "..", ".env")
if os.path.exists(env_path):
    load_dotenv(env_path)
    logger.info("Loaded .env file for local development")
else:
    logger.info("No .env file found, using environment variables")

OPENAI_API_KEY = os.getenv("OPENAI_API_KEY", "")
OPENAI_MODEL = os.getenv("OPENAI_MODEL", "gpt-4o-mini")

REPLICATE_API_TOKEN = os.getenv("REPLICATE_API_TOKEN", "")
REPLICATE_IMAGE_MODEL = os.getenv("REPLICATE_IMAGE_MODEL", "black-forest-labs/flux-schnell")
REPLICATE_VIDEO_MODEL = os.getenv("REPLICATE_VIDEO_MODEL", "wavespeedai/wan-2.1-i2v-480p")
REPLICATE_POLL_INTERVAL_MS = int(os.getenv("REPLICATE_POLL_INTERVAL_MS", "1500"))
REPLICATE_POLL_TIMEOUT_S = int(os.getenv("REPLICATE_POLL_TIMEOUT_S", "120"))

ELEVENLABS_API_KEY = os.getenv("ELEVENLABS_API_KEY", "")
ELEVENLABS_VOICE_ID = os.getenv("ELEVENLABS_VOICE_ID", "")
# JSON object mapping palette voice names to ElevenLabs voice ids, e.g. {"Zephyr": "21m00Tcm4TlvDq8ikWAM"}
_voice_map_env = os.getenv("ELEVENLABS_VOICE_MAP", "").strip()
try:
    ELEVENLABS_VOICE_MAP = json.loads(_voice_map_env) if _voice_map_env else {}
except json.JSONDecodeError:
    logger.warning("ELEVENLABS_VOICE_MAP is not valid JSON, ignoring it")
    ELEVENLABS_VOICE_MAP = {}

# Credential appended to finished video URIs so the client can stream them
VIDEO_ACCESS_KEY = os.getenv("VIDEO_ACCESS_KEY", "") or REPLICATE_API_TOKEN
VIDEO_POLL_INTERVAL_S = float(os.getenv("VIDEO_POLL_INTERVAL_S", "8"))

# Narration audio: mono 16-bit linear PCM
NARRATION_SAMPLE_RATE = int(os.getenv("NARRATION_SAMPLE_RATE", "24000"))
NARRATION_CHANNELS = 1
NARRATION_SAMPLE_WIDTH = 2

# Movie playback timing (seconds)
DEFAULT_SCENE_DURATION_S = 6.0
TRANSITION_S = 0.6
TOAST_TTL_S = 5.0

DEFAULT_MUSIC_VOLUME = 40
DEFAULT_SPEECH_VOLUME = 100

VOICE_PALETTE = [
    ("Puck", "Female voice, energetic and youthful"),
    ("Zephyr", "Male voice, friendly and clear"),
    ("Kore", "Female voice, neutral and professional"),
    ("Charon", "Male voice, deep and epic"),
    ("Fenrir", "Male voice, deep and mysterious"),
    ("Achernar", "Male voice, calm and mature"),
    ("Alnilam", "Male voice, resonant and deep"),
    ("Callirrhoe", "Female voice, soft and melodic"),
    ("Gacrux", "Male voice, authoritative and mature"),
    ("Sadachbia", "Female voice, warm and conversational"),
    ("Vindemiatrix", "Female voice, elegant and sophisticated"),
    ("Zubenelgenubi", "Male voice, unique and distinctive"),
]
VOICE_NAMES = [name for name, _ in VOICE_PALETTE]

DEFAULT_NARRATOR_VOICE = "Zephyr"
DEFAULT_IMAGE_STYLE = "Cinematic"
DEFAULT_ART_DIRECTION = "Saturated colors, dramatic noir lighting"
ASPECT_RATIOS = ("16:9", "9:16")

DATA_DIR = os.getenv("NOVEL_MOVIE_DATA_DIR", os.path.join(tempfile.gettempdir(), "novel-movie"))
MEDIA_DIR = os.getenv("NOVEL_MOVIE_MEDIA_DIR", os.path.join(DATA_DIR, "media"))
MEDIA_URL_PREFIX = os.getenv("NOVEL_MOVIE_MEDIA_URL_PREFIX", "/media").rstrip("/")
PROJECT_NAME = os.getenv("NOVEL_MOVIE_PROJECT_NAME", "interactive-novel-project")
# Same order of magnitude as a browser's localStorage quota
PROJECT_MAX_BYTES = int(os.getenv("PROJECT_MAX_BYTES", str(5 * 1024 * 1024)))

# Comma-separated list of allowed origins for CORS (e.g., "https://app.vercel.app,https://www.example.com").
_allowed_origins_env = os.getenv("ALLOWED_ORIGINS", "").strip()
if _allowed_origins_env:
    ALLOWED_ORIGINS = [o.strip() for o in _allowed_origins_env.split(",") if o.strip()]
else:
    ALLOWED_ORIGINS = ["*"]

def has_all_keys() -> bool:
    keys_present = all([OPENAI_API_KEY, REPLICATE_API_TOKEN, ELEVENLABS_API_KEY])
    if not keys_present:
        missing = []
        if not OPENAI_API_KEY: missing.append("OPENAI_API_KEY")
        if not REPLICATE_API_TOKEN: missing.append("REPLICATE_API_TOKEN")
        if not ELEVENLABS_API_KEY: missing.append("ELEVENLABS_API_KEY")
        logger.warning(f"Missing API keys: {', '.join(missing)}")
    return keys_present
