"""
Shared fixtures: an in-memory fake backend and ready-made sessions.
"""

import asyncio

import pytest

from storyreel.controller import SessionStore
from storyreel.models import Narration, PipelineState, Scene, Story, SubtitleLine
from storyreel.services import MediaStore


def make_story(**overrides) -> Story:
    fields = dict(
        title="The Cat in the Hat",
        summary="A cat visits two bored children.",
        visual_style="bright gouache",
        character_description="a tall cat in a striped hat",
    )
    fields.update(overrides)
    return Story(**fields)


def make_scene(scene_id: int, status: str = "pending", **overrides) -> Scene:
    fields = dict(
        id=scene_id,
        text_en=f"Scene {scene_id} starts. Then it ends.",
        text_zh=f"第{scene_id}幕开始。然后结束。",
        visual_prompt=f"visual {scene_id}",
        voice_mood="calm",
        status=status,
    )
    if status == "completed":
        fields.update(
            video_ref=f"v{scene_id}.mp4",
            audio_ref=f"a{scene_id}.wav",
            audio_duration=2.0,
            subtitles=(SubtitleLine("Scene starts.", "开始。", 0.0, 2.0),),
        )
    fields.update(overrides)
    return Scene(**fields)


class FakeBackend:
    """Records calls; fails video for scene ids in fail_video, narration for texts in fail_audio."""

    def __init__(self, fail_video=(), durations=None, fail_audio=(), video_delay=1):
        self.fail_video = set(fail_video)
        self.fail_audio = set(fail_audio)
        self.video_delay = video_delay
        self.video_finished: list[tuple[int, str]] = []
        self.observed_busy: list[bool] = []
        self.durations = durations or {}
        self.video_calls: list[int] = []
        self.audio_calls: list[str] = []
        self.observed_status: list[str] = []
        self.store: SessionStore | None = None

    async def adapt(self, title):
        return make_story(title=title), [make_scene(1), make_scene(2)]

    async def render_reference(self, story, settings):
        return b"png"

    async def render_video(self, scene, reference_image, settings):
        if self.store is not None:
            current = self.store.state.scenes[scene.id - 1]
            self.observed_status.append(current.status)
            self.observed_busy.append(self.store.is_busy)
        self.video_calls.append(scene.id)
        for _ in range(self.video_delay):
            await asyncio.sleep(0)
        if scene.id in self.fail_video:
            raise RuntimeError(f"video backend refused scene {scene.id}")
        if self.store is not None:
            # status of the scene at the moment this request settles
            self.video_finished.append((scene.id, self.store.state.scenes[scene.id - 1].status))
        return f"video-{scene.id}".encode()

    async def synthesize(self, text_en, text_zh, mood):
        self.audio_calls.append(text_en)
        await asyncio.sleep(0)
        if text_en in self.fail_audio:
            raise RuntimeError("narration provider returned no audio")
        duration = self.durations.get(text_en, 1.5)
        return Narration(
            audio=b"RIFFfake",
            duration=duration,
            subtitles=(SubtitleLine(text_en, text_zh, 0.0, duration),),
        )


@pytest.fixture
def media(tmp_path) -> MediaStore:
    return MediaStore(str(tmp_path / "media"))


@pytest.fixture
def ready_store() -> SessionStore:
    """Session with a story, three pending scenes and a reference image."""
    state = PipelineState(
        step="ref-image-gen",
        book_name="The Cat in the Hat",
        story=make_story(),
        scenes=tuple(make_scene(i) for i in (1, 2, 3)),
        reference_image="ref.png",
    )
    return SessionStore(state)
