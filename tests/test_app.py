"""Route tests with the FastAPI TestClient and fake ports."""

import os

import pytest
from fastapi.testclient import TestClient

from novel_movie import actions as a
from novel_movie import app as app_module
from novel_movie.kv_storage import KVStorage
from novel_movie.orchestrator import SceneOrchestrator
from novel_movie.playback import MovieSession
from novel_movie.store import ProjectStore

from conftest import make_scene


@pytest.fixture
def api(monkeypatch, tmp_path, ports, media_dir):
    monkeypatch.delenv("KV_REST_API_URL", raising=False)
    store = ProjectStore()
    monkeypatch.setattr(app_module, "store", store)
    monkeypatch.setattr(app_module, "storage", KVStorage(project_name="api", data_dir=str(tmp_path)))
    monkeypatch.setattr(app_module, "orchestrator",
                        SceneOrchestrator(store, ports, media_dir=media_dir, access_key="k", poll_interval=0))
    monkeypatch.setattr(app_module, "movie", MovieSession(on_close=app_module._movie_closed))
    monkeypatch.setattr(app_module, "MEDIA_DIR", media_dir)
    with TestClient(app_module.app) as client:
        yield client


def _seed(*scenes):
    app_module.store.dispatch(a.SceneGenerationInitialize(scenes=list(scenes)))


def test_health(api):
    r = api.get("/health")
    assert r.status_code == 200
    assert r.json()["ok"] is True


def test_analyze_flow(api, ports):
    api.post("/v1/project/script", json={"text": "Ana met Bruno at the docks."})
    r = api.post("/v1/project:analyze")
    assert r.status_code == 200
    project = api.get("/v1/project").json()
    assert [c["name"] for c in project["characters"]] == ["Ana", "Bruno"]
    assert project["current_step"] == "config"


def test_empty_script_is_bad_request(api, ports):
    assert api.post("/v1/project:analyze").status_code == 400
    assert api.post("/v1/project:generate-scenes").status_code == 400
    assert ports.calls == []


def test_config_and_voice_validation(api):
    r = api.post("/v1/project/config", json={"aspect_ratio": "9:16", "narrator_voice": "Kore"})
    assert r.status_code == 200
    assert r.json()["aspect_ratio"] == "9:16"
    assert api.post("/v1/project/config", json={"aspect_ratio": "1:1"}).status_code == 400
    app_module.store.dispatch(a.AnalyzeSuccess(characters=[]))
    assert api.post("/v1/characters/Ana/voice", json={"voice": "Kore"}).status_code == 400


def test_busy_scene_conflict(api, ports):
    import asyncio
    _seed(make_scene(1))
    ports.image_gate = asyncio.Event()
    assert api.post("/v1/scenes/1/image").status_code == 200
    r = api.post("/v1/scenes/1/image")
    assert r.status_code == 409
    assert r.json()["details"] == {"scene_id": 1, "kind": "image"}


def test_unknown_scene(api):
    assert api.post("/v1/scenes/5/narrate").status_code == 400
    assert api.delete("/v1/scenes/5").status_code == 404


def test_animate_requires_image(api):
    _seed(make_scene(1))
    assert api.post("/v1/scenes/1/animate").status_code == 400


def test_scene_mix(api):
    _seed(make_scene(1))
    r = api.patch("/v1/scenes/1/mix", json={"music_volume": 65})
    assert r.status_code == 200
    assert r.json()["music_volume"] == 65
    assert r.json()["speech_volume"] == 100
    assert api.patch("/v1/scenes/1/mix", json={"speech_volume": 140}).status_code == 400


def test_reorder_and_delete(api):
    _seed(make_scene(1), make_scene(2), make_scene(3))
    r = api.post("/v1/scenes:reorder", json={"from_index": 0, "to_index": 2})
    assert r.json()["order"] == [2, 3, 1]
    assert api.post("/v1/scenes:reorder", json={"from_index": 0, "to_index": 9}).status_code == 400
    assert api.delete("/v1/scenes/3").status_code == 200
    assert [s["id"] for s in api.get("/v1/project").json()["scenes"]] == [2, 1]


def test_save_export_load(api):
    _seed(make_scene(1, audio_url="/media/a.wav"))
    assert api.post("/v1/project:save").status_code == 200
    exported = api.get("/v1/project:export")
    assert exported.status_code == 200
    disposition = exported.headers["content-disposition"]
    assert 'filename="novel-project-' in disposition and disposition.endswith('.json"')

    api.post("/v1/project:reset")
    assert api.get("/v1/project").json()["scenes"] == []
    assert api.post("/v1/project:load").status_code == 200
    project = api.get("/v1/project").json()
    assert [s["id"] for s in project["scenes"]] == [1]
    assert project["is_project_saved"] is True


def test_load_without_save(api):
    assert api.post("/v1/project:load").status_code == 404
    assert api.get("/v1/project:export").status_code == 404


def test_storage_full(api, monkeypatch, tmp_path):
    monkeypatch.setattr(app_module, "storage",
                        KVStorage(project_name="tiny", data_dir=str(tmp_path), max_bytes=8))
    r = api.post("/v1/project:save")
    assert r.status_code == 507
    assert api.get("/v1/project").json()["is_saving"] is False


def test_media(api, media_dir):
    with open(os.path.join(media_dir, "scene_1_abc.wav"), "wb") as f:
        f.write(b"RIFF")
    r = api.get("/media/scene_1_abc.wav")
    assert r.status_code == 200
    assert r.content == b"RIFF"
    assert api.get("/media/missing.wav").status_code == 404
    assert api.get("/media/..%2F..%2Fetc%2Fpasswd").status_code != 200


def test_movie_lifecycle(api):
    _seed(make_scene(1))
    assert api.post("/v1/movie:open").status_code == 400

    app_module.store.dispatch(a.SceneGenerationInitialize(scenes=[
        make_scene(1, audio_url="/media/a.wav"), make_scene(2, audio_url="/media/b.wav"),
    ]))
    r = api.post("/v1/movie:open")
    assert r.status_code == 200
    body = r.json()
    assert body["state"] == "showing" and body["scene_id"] == 1
    assert {"track": "narration", "op": "load", "src": "/media/a.wav", "loop": False, "cue": body["cue"]} in body["cues"]
    assert api.get("/v1/project").json()["is_movie_open"] is True

    r = api.post("/v1/movie/events", json={"event": "narration_ended", "cue": body["cue"] - 1})
    assert r.json()["state"] == "showing"
    r = api.post("/v1/movie/events", json={"event": "narration_ended", "cue": body["cue"]})
    assert r.json()["state"] == "transitioning"

    r = api.post("/v1/movie:close")
    assert r.json()["state"] == "closed"
    assert r.json()["playing"] == []
    assert api.get("/v1/project").json()["is_movie_open"] is False
    assert api.post("/v1/movie/events", json={"event": "pause"}).status_code == 400
