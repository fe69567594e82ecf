"""
Tests for CLI argument handling and edit application.
"""

import pytest

from conftest import FakeBackend, make_scene, make_story
from storyreel import cli
from storyreel.cli import apply_edits, main, parse_args, parse_voice_map
from storyreel.controller import SessionStore
from storyreel.models import PipelineState
from storyreel.session_io import load_state, save_state


def _finished_store() -> SessionStore:
    return SessionStore(
        PipelineState(
            step="finished",
            story=make_story(),
            scenes=(make_scene(1, "completed"), make_scene(2, "completed")),
            reference_image="ref.png",
        )
    )


def test_defaults():
    args = parse_args([])
    assert args.stage == "status"
    assert args.tts_provider == "openai"
    assert args.set_story == [] and args.set_scene == []


def test_scene_edit_invalidates_only_that_scene():
    store = _finished_store()
    apply_edits(store, parse_args(["--stage", "edit", "--scene", "2", "--set-scene", "text_en=New words."]))

    assert [s.status for s in store.state.scenes] == ["completed", "pending"]
    assert store.state.scenes[1].text_en == "New words."


def test_story_and_settings_edits():
    store = _finished_store()
    apply_edits(
        store,
        parse_args(["--set-story", "visual_style=pencil", "--resolution", "1080p"]),
    )

    assert store.state.story.visual_style == "pencil"
    assert store.state.reference_image is None
    assert store.state.step == "story-gen"
    assert store.state.settings.resolution == "1080p"


def test_delete_and_add_scene():
    store = _finished_store()
    apply_edits(store, parse_args(["--scene", "1", "--delete-scene"]))
    assert [s.id for s in store.state.scenes] == [1]

    apply_edits(store, parse_args(["--add-scene"]))
    assert [s.id for s in store.state.scenes] == [1, 2]
    assert store.state.scenes[1].status == "pending"


def test_scene_edit_requires_scene_id():
    with pytest.raises(SystemExit):
        apply_edits(_finished_store(), parse_args(["--set-scene", "text_en=x"]))


def test_main_edit_stage_persists_session(tmp_path, capsys):
    workdir = tmp_path / "work"
    save_state(_finished_store().state, str(workdir / "session.json"))

    main(["--stage", "edit", "--workdir", str(workdir), "--goto", "input"])

    assert load_state(str(workdir / "session.json")).step == "input"
    assert "Step: input" in capsys.readouterr().out


def test_repeating_current_settings_keeps_scenes():
    store = _finished_store()
    before = store.state
    apply_edits(store, parse_args(["--resolution", "720p", "--aspect-ratio", "16:9"]))

    assert store.state is before


class UnreachableBackend(FakeBackend):
    """Every request fails the way a dropped connection does."""

    async def adapt(self, title):
        raise ConnectionError("connection reset by peer")

    async def render_reference(self, story, settings):
        raise ConnectionError("connection reset by peer")


@pytest.mark.parametrize(
    "stage, logged",
    [
        ("story", "Error generating story: connection reset by peer"),
        ("reference", "Error generating reference image: connection reset by peer"),
    ],
)
def test_backend_failure_exits_cleanly(tmp_path, monkeypatch, stage, logged):
    """Provider errors end the stage with exit code 1 and a logged message."""
    workdir = tmp_path / "work"
    save_state(PipelineState(step="story-gen", story=make_story()), str(workdir / "session.json"))
    monkeypatch.setattr(cli, "build_backend", lambda args: UnreachableBackend())

    with pytest.raises(SystemExit) as exc:
        main(["--stage", stage, "--title", "Corduroy", "--workdir", str(workdir)])

    assert exc.value.code == 1
    state = load_state(str(workdir / "session.json"))
    assert state.logs[-1].endswith(logged)
    assert state.reference_image is None


def test_parse_voice_map():
    assert parse_voice_map("") == {}
    assert parse_voice_map("onyx=abc, Nova = def") == {"onyx": "abc", "nova": "def"}
    with pytest.raises(SystemExit):
        parse_voice_map("onyx")


def test_elevenlabs_synth_gets_voice_map(monkeypatch):
    seen = {}

    def fake_factory(api_key, voice_map, default_voice_id, model_id):
        seen.update(voice_map=voice_map, default_voice_id=default_voice_id)
        return None

    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    monkeypatch.setattr(cli, "make_synth_elevenlabs", fake_factory)
    args = parse_args(
        [
            "--tts-provider", "elevenlabs",
            "--elevenlabs-voice-id", "fallback",
            "--elevenlabs-voice-map", "onyx=dark,nova=bright",
        ]
    )
    cli.build_backend(args)

    assert seen == {"voice_map": {"onyx": "dark", "nova": "bright"}, "default_voice_id": "fallback"}
