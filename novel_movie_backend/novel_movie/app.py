import os
from contextlib import asynccontextmanager
from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import FileResponse, JSONResponse, Response
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel
import logging
import asyncio
from typing import Optional, Set

# Ensure .env is loaded before importing modules that initialize API clients
from .settings import has_all_keys, ALLOWED_ORIGINS, MEDIA_DIR
from . import actions as a
from . import commands
from .errors import BusyError, StorageError, ValidationError
from .kv_storage import KVStorage, load_saved_project, save_current_project
from .models import AppStep, AssetKind, Severity
from .orchestrator import SceneOrchestrator
from .playback import MovieSession
from .ports import ProviderPorts
from .store import ProjectStore

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    # Outstanding video polls must not outlive the server
    await orchestrator.shutdown()
    movie.close()


app = FastAPI(title="Novel Movie Backend", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS or ["*"],
    allow_credentials=True,
    allow_methods=["POST", "GET", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)

store = ProjectStore()
store.dispatch(a.SetApiKeyStatus(has_api_key=has_all_keys()))
storage = KVStorage()
orchestrator = SceneOrchestrator(store, ProviderPorts())


def _movie_closed():
    if store.state.is_movie_open:
        store.dispatch(a.CloseMovie())


movie = MovieSession(on_close=_movie_closed)

# Strong references so running stages are not garbage collected
_background: Set[asyncio.Task] = set()


def _task_finished(task: asyncio.Task):
    _background.discard(task)
    if task.cancelled():
        return
    e = task.exception()
    if e is not None and not isinstance(e, ValidationError):
        logger.error(f"Background stage {task.get_name()} failed: {e}")


async def _start(coro, name: str) -> asyncio.Task:
    """Run a stage in the background once its synchronous checks have passed."""
    task = asyncio.create_task(coro, name=name)
    _background.add(task)
    task.add_done_callback(_task_finished)
    # Let the stage validate and mark itself in progress before we answer
    await asyncio.sleep(0)
    if task.done() and not task.cancelled() and task.exception() is not None:
        raise task.exception()
    return task


@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError):
    status = 409 if isinstance(exc, BusyError) else 400
    return JSONResponse(status_code=status, content={"error": exc.message, "details": exc.details})


@app.exception_handler(StorageError)
async def storage_error_handler(request: Request, exc: StorageError):
    return JSONResponse(status_code=507, content={"error": exc.message, "details": exc.details})


# --- request bodies ---

class ScriptBody(BaseModel):
    text: str


class StepBody(BaseModel):
    step: AppStep


class ConfigBody(BaseModel):
    image_style: Optional[str] = None
    art_direction: Optional[str] = None
    aspect_ratio: Optional[str] = None
    include_text_in_image: Optional[bool] = None
    narrator_voice: Optional[str] = None


class VoiceBody(BaseModel):
    voice: str


class MixBody(BaseModel):
    # Range checks happen in commands so out-of-range values come back as 400
    background_music_url: Optional[str] = None
    music_volume: Optional[int] = None
    speech_volume: Optional[int] = None


class ClearBody(BaseModel):
    kind: AssetKind


class ReorderBody(BaseModel):
    from_index: int
    to_index: int


class MovieEventBody(BaseModel):
    event: str
    cue: Optional[int] = None


# --- project ---

@app.get("/health")
async def health():
    keys_ok = has_all_keys()
    logger.info(f"Health check: API keys present = {keys_ok}")
    return {"ok": True, "has_keys": keys_ok}


@app.get("/v1/project")
async def get_project():
    return store.state.model_dump(mode="json")


@app.post("/v1/project/script")
async def set_script(body: ScriptBody):
    commands.set_script_text(store, body.text)
    return {"ok": True}


@app.post("/v1/project/step")
async def set_step(body: StepBody):
    commands.set_step(store, body.step)
    return {"ok": True}


@app.post("/v1/project/config")
async def configure(body: ConfigBody):
    commands.configure(store, **body.model_dump(exclude_none=True))
    return store.state.style.model_dump(mode="json")


@app.post("/v1/characters/{name}/voice")
async def assign_voice(name: str, body: VoiceBody):
    commands.assign_voice(store, name, body.voice)
    return {"ok": True}


@app.post("/v1/project:analyze")
async def analyze():
    await _start(orchestrator.analyze(), "analyze")
    return {"status": "started"}


@app.post("/v1/project:generate-scenes")
async def generate_scenes():
    await _start(orchestrator.generate_scenes(), "generate-scenes")
    return {"status": "started"}


# --- scenes ---

@app.post("/v1/scenes/{scene_id}/image")
async def regenerate_image(scene_id: int):
    await _start(orchestrator.generate_image(scene_id), f"image-{scene_id}")
    return {"status": "started", "scene_id": scene_id}


@app.post("/v1/scenes/{scene_id}/narrate")
async def narrate_scene(scene_id: int):
    await _start(orchestrator.narrate_scene(scene_id), f"narrate-{scene_id}")
    return {"status": "started", "scene_id": scene_id}


@app.post("/v1/scenes/{scene_id}/animate")
async def animate_scene(scene_id: int):
    await _start(orchestrator.animate_scene(scene_id), f"animate-{scene_id}")
    return {"status": "started", "scene_id": scene_id}


@app.patch("/v1/scenes/{scene_id}/mix")
async def scene_mix(scene_id: int, body: MixBody):
    commands.set_scene_mix(store, scene_id, **body.model_dump(exclude_unset=True))
    return store.get_scene(scene_id).model_dump(mode="json")


@app.post("/v1/scenes/{scene_id}/clear")
async def clear_asset(scene_id: int, body: ClearBody):
    commands.clear_scene_asset(store, scene_id, body.kind)
    return {"ok": True}


@app.delete("/v1/scenes/{scene_id}")
async def delete_scene(scene_id: int):
    if store.get_scene(scene_id) is None:
        raise HTTPException(404, "scene not found")
    orchestrator.delete_scene(scene_id)
    return {"ok": True}


@app.post("/v1/scenes:reorder")
async def reorder_scenes(body: ReorderBody):
    commands.reorder_scenes(store, body.from_index, body.to_index)
    return {"order": [s.id for s in store.state.scenes]}


# --- persistence ---

@app.post("/v1/project:save")
async def save_project():
    await save_current_project(store, storage)
    return {"ok": True}


@app.post("/v1/project:load")
async def load_project():
    movie.close()
    loaded = await load_saved_project(store, storage)
    if not loaded:
        raise HTTPException(404, "no saved project")
    return {"ok": True}


@app.get("/v1/project:export")
async def export_project():
    exported = await storage.export_project()
    if exported is None:
        raise HTTPException(404, "no saved project")
    text, filename = exported
    store.notify("Project exported as JSON", Severity.SUCCESS)
    headers = {"Content-Disposition": f'attachment; filename="{filename}"'}
    return Response(content=text, media_type="application/json", headers=headers)


@app.post("/v1/project:reset")
async def reset_project():
    movie.close()
    await orchestrator.shutdown()
    store.dispatch(a.ResetProject())
    store.dispatch(a.SetApiKeyStatus(has_api_key=has_all_keys()))
    store.notify("Project reset.", Severity.INFO)
    return {"ok": True}


@app.delete("/v1/toasts/{toast_id}")
async def dismiss_toast(toast_id: int):
    commands.remove_toast(store, toast_id)
    return {"ok": True}


# --- media ---

@app.get("/media/{filename}")
async def media(filename: str):
    root = os.path.realpath(MEDIA_DIR)
    path = os.path.realpath(os.path.join(root, filename))
    if os.path.dirname(path) != root:
        raise HTTPException(400, "invalid media path")
    if not os.path.isfile(path):
        raise HTTPException(404, "media not found")
    return FileResponse(path, media_type="audio/wav")


# --- movie mode ---

def _movie_view():
    return {**movie.snapshot(), "cues": movie.drain()}


@app.post("/v1/movie:open")
async def open_movie():
    commands.open_movie(store)
    movie.open(store.state.scenes)
    return _movie_view()


@app.get("/v1/movie")
async def get_movie():
    return _movie_view()


@app.post("/v1/movie/events")
async def movie_event(body: MovieEventBody):
    movie.handle_event(body.event, body.cue)
    return _movie_view()


@app.post("/v1/movie:close")
async def close_movie():
    movie.close()
    _movie_closed()
    return _movie_view()
