"""Tests for the reducer and ProjectStore."""

import asyncio

import pytest

from novel_movie import actions as a
from novel_movie.models import (
    AppStep, AssetKind, GenerationStatus, ProjectState, Severity,
)
from novel_movie.store import MonotonicIds, ProjectStore, reduce

from conftest import make_scene


def _with_scenes(*ids) -> ProjectState:
    return ProjectState(scenes=[make_scene(i) for i in ids])


class TestMonotonicIds:

    def test_same_millisecond_still_unique(self):
        ids = MonotonicIds(clock=lambda: 1000.0)
        issued = [ids.next() for _ in range(50)]
        assert len(set(issued)) == 50
        assert issued == sorted(issued)

    def test_observe_skips_past_loaded_ids(self):
        ids = MonotonicIds(clock=lambda: 1.0)
        ids.observe(5_000)
        assert ids.next() == 5_001

    def test_store_never_reissues_loaded_scene_id(self):
        store = ProjectStore(clock=lambda: 1.0)
        store.dispatch(a.LoadProject(project=_with_scenes(9_000, 9_001)))
        assert store.allocate_scene_ids(2) == [9_002, 9_003]


class TestReducer:

    def test_unknown_action_returns_same_state(self):
        class Unknown(a.Action):
            pass
        state = ProjectState()
        assert reduce(state, Unknown()) is state

    def test_reduce_does_not_mutate_input(self):
        state = _with_scenes(1)
        reduce(state, a.AssetGenerationStarted(scene_id=1, kind=AssetKind.IMAGE))
        assert state.scenes[0].flags.image == GenerationStatus.IDLE

    @pytest.mark.parametrize("src,dst,expected", [
        (0, 2, [2, 3, 1]),
        (2, 0, [3, 1, 2]),
        (1, 1, [1, 2, 3]),
        (0, 3, [1, 2, 3]),
        (-1, 0, [1, 2, 3]),
    ])
    def test_reorder_is_a_permutation(self, src, dst, expected):
        state = reduce(_with_scenes(1, 2, 3), a.ReorderScenes(from_index=src, to_index=dst))
        assert [s.id for s in state.scenes] == expected

    def test_result_for_missing_scene_is_noop(self):
        state = _with_scenes(1)
        after = reduce(state, a.ImageGenerated(scene_id=42, image_url="x.png"))
        assert after is state

    def test_kinds_do_not_overwrite_each_other(self):
        state = _with_scenes(1)
        state = reduce(state, a.AssetGenerationStarted(scene_id=1, kind=AssetKind.IMAGE))
        state = reduce(state, a.AssetGenerationStarted(scene_id=1, kind=AssetKind.AUDIO))
        state = reduce(state, a.AudioGenerated(scene_id=1, audio_url="/media/a.wav", duration=2.5))
        scene = state.scenes[0]
        assert scene.audio_url == "/media/a.wav"
        assert scene.flags.audio == GenerationStatus.IDLE
        assert scene.flags.image == GenerationStatus.IN_PROGRESS

    def test_started_clears_previous_error(self):
        state = _with_scenes(1)
        state = reduce(state, a.AssetGenerationFailed(scene_id=1, kind=AssetKind.VIDEO, error="boom"))
        assert state.scenes[0].errors.video == "boom"
        state = reduce(state, a.AssetGenerationStarted(scene_id=1, kind=AssetKind.VIDEO))
        assert state.scenes[0].errors.video is None

    def test_clearing_image_drops_video(self):
        state = ProjectState(scenes=[make_scene(1, image_url="i.png", video_url="v.mp4", image_prompt="p")])
        state = reduce(state, a.ClearSceneAsset(scene_id=1, kind=AssetKind.IMAGE))
        scene = state.scenes[0]
        assert scene.image_url is None and scene.video_url is None and scene.image_prompt is None

    def test_video_without_image_is_rejected(self):
        state = _with_scenes(1)
        state = reduce(state, a.AssetGenerationStarted(scene_id=1, kind=AssetKind.VIDEO))
        state = reduce(state, a.VideoGenerated(scene_id=1, video_url="v.mp4"))
        scene = state.scenes[0]
        assert scene.video_url is None
        assert scene.flags.video == GenerationStatus.IDLE
        assert scene.errors.video

    def test_scene_mix_empty_music_url_clears_it(self):
        state = ProjectState(scenes=[make_scene(1, background_music_url="m.mp3")])
        state = reduce(state, a.UpdateSceneMix(scene_id=1, background_music_url="", music_volume=10))
        scene = state.scenes[0]
        assert scene.background_music_url is None
        assert scene.music_volume == 10
        assert scene.speech_volume == 100

    def test_load_resets_in_progress_flags(self):
        loaded = _with_scenes(1, 2)
        for kind in AssetKind:
            loaded = reduce(loaded, a.AssetGenerationStarted(scene_id=2, kind=kind))
        current = ProjectState(has_api_key=True, is_movie_open=True)
        state = reduce(current, a.LoadProject(project=loaded))
        for scene in state.scenes:
            assert all(not scene.is_generating(kind) for kind in AssetKind)
        assert state.has_api_key is True
        assert state.is_movie_open is False
        assert state.is_project_saved is True

    def test_analyze_success_moves_to_config(self):
        state = reduce(ProjectState(), a.StartAnalysis())
        assert state.status_message
        state = reduce(state, a.AnalyzeSuccess(characters=[]))
        assert state.current_step == AppStep.CONFIG
        assert state.status_message == ""

    def test_reset_returns_empty_project(self):
        state = _with_scenes(1).model_copy(update={"script_text": "abc"})
        assert reduce(state, a.ResetProject()) == ProjectState()


class TestProjectStore:

    def test_subscribers_see_every_dispatch(self, store):
        seen = []
        unsubscribe = store.subscribe(lambda action, state: seen.append(type(action).__name__))
        store.dispatch(a.SetScriptText(text="hello"))
        unsubscribe()
        store.dispatch(a.SetScriptText(text="bye"))
        assert seen == ["SetScriptText"]
        assert store.state.script_text == "bye"

    def test_notify_without_loop_keeps_toast(self, store):
        toast_id = store.notify("Saved", Severity.SUCCESS)
        assert [t.id for t in store.state.toasts] == [toast_id]

    @pytest.mark.asyncio
    async def test_notify_schedules_expiry(self, store, monkeypatch):
        monkeypatch.setattr("novel_movie.store.TOAST_TTL_S", 0)
        store.notify("Video ready")
        assert len(store.state.toasts) == 1
        await asyncio.sleep(0.01)
        assert store.state.toasts == []
