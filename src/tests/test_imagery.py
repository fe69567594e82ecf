"""
Tests for video job polling and reference image rendering.
"""

import asyncio
import base64
from types import SimpleNamespace

import pytest

from conftest import make_scene, make_story
from storyreel.errors import GenerationError
from storyreel.imagery import (
    OpenAIVideoRenderer,
    effective_video_size,
    render_reference_image,
    scene_prompt,
)
from storyreel.models import VideoSettings


class FakeClock:
    def __init__(self):
        self.now = 0.0
        self.sleeps: list[float] = []

    def __call__(self):
        return self.now

    async def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


def _videos_client(statuses, error=None):
    """Fake client whose retrieve() walks through the given statuses."""
    remaining = list(statuses)

    async def retrieve(video_id):
        status = remaining.pop(0) if remaining else statuses[-1]
        return SimpleNamespace(id=video_id, status=status, error=error)

    return SimpleNamespace(videos=SimpleNamespace(retrieve=retrieve))


def test_wait_polls_until_completed():
    clock = FakeClock()
    client = _videos_client(["in_progress", "in_progress", "completed"])
    renderer = OpenAIVideoRenderer(client, poll_interval=5.0, sleep=clock.sleep, clock=clock)

    job = asyncio.run(renderer.wait(SimpleNamespace(id="vid_1", status="queued")))

    assert job.status == "completed"
    assert clock.sleeps == [5.0, 5.0, 5.0]


def test_wait_reports_backend_failure():
    clock = FakeClock()
    client = _videos_client(["failed"], error=SimpleNamespace(message="moderation blocked"))
    renderer = OpenAIVideoRenderer(client, sleep=clock.sleep, clock=clock)

    with pytest.raises(GenerationError, match="moderation blocked"):
        asyncio.run(renderer.wait(SimpleNamespace(id="vid_2", status="queued")))


def test_wait_is_bounded_by_timeout():
    clock = FakeClock()
    client = _videos_client(["in_progress"])
    renderer = OpenAIVideoRenderer(
        client, poll_interval=5.0, timeout=20.0, sleep=clock.sleep, clock=clock
    )

    with pytest.raises(GenerationError, match="timed out"):
        asyncio.run(renderer.wait(SimpleNamespace(id="vid_3", status="queued")))
    assert len(clock.sleeps) == 4


def test_reference_clamps_video_size():
    tall = VideoSettings(resolution="1080p", aspect_ratio="9:16")
    assert effective_video_size(tall, with_reference=True) == (1280, 720)
    assert effective_video_size(tall, with_reference=False) == (720, 1280)


def test_scene_prompt():
    assert scene_prompt(make_scene(1)) == "visual 1. Cinematic, high quality."


def test_render_reference_image_decodes_png():
    seen = {}

    async def generate(**kwargs):
        seen.update(kwargs)
        item = SimpleNamespace(b64_json=base64.b64encode(b"\x89PNG").decode())
        return SimpleNamespace(data=[item])

    client = SimpleNamespace(images=SimpleNamespace(generate=generate))
    data = asyncio.run(render_reference_image(client, make_story(), VideoSettings()))

    assert data == b"\x89PNG"
    assert "a tall cat in a striped hat" in seen["prompt"]
    assert seen["size"] == "1536x1024"


def test_render_reference_image_without_image_fails():
    async def generate(**kwargs):
        return SimpleNamespace(data=[SimpleNamespace(b64_json=None)])

    client = SimpleNamespace(images=SimpleNamespace(generate=generate))
    with pytest.raises(GenerationError):
        asyncio.run(render_reference_image(client, make_story(), VideoSettings()))
