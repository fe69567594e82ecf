"""
Collaborator contracts consumed by the pipeline, the default OpenAI backend
and on-disk media storage.
"""

import hashlib
import logging
import re
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Protocol

from .imagery import OpenAIVideoRenderer, render_reference_image
from .models import Narration, Scene, Story, VideoSettings
from .narration import synthesize_narration
from .story import adapt_story

logger = logging.getLogger("storyreel")

MOVIE_EXTENSION = ".mp4"


class StoryAdapter(Protocol):
    async def adapt(self, title: str) -> tuple[Story, list[Scene]]: ...


class ReferenceRenderer(Protocol):
    async def render_reference(self, story: Story, settings: VideoSettings) -> bytes: ...


class SceneVideoRenderer(Protocol):
    async def render_video(
        self, scene: Scene, reference_image: str, settings: VideoSettings
    ) -> bytes: ...


class NarrationSynth(Protocol):
    async def synthesize(self, text_en: str, text_zh: str, mood: str) -> Narration: ...


class Backend(StoryAdapter, ReferenceRenderer, SceneVideoRenderer, NarrationSynth, Protocol):
    """Everything the pipeline needs from the generative services."""


class OpenAIBackend:
    """Backend using OpenAI for text, images and video, and a pluggable speech synth."""

    def __init__(
        self,
        client,
        synth: Callable[[str, str], Awaitable[bytes]],
        *,
        text_model: str = "gpt-4o-mini",
        image_model: str = "gpt-image-1",
        video_renderer: OpenAIVideoRenderer | None = None,
        scene_count: int = 3,
    ) -> None:
        self.client = client
        self.synth = synth
        self.text_model = text_model
        self.image_model = image_model
        self.video_renderer = video_renderer or OpenAIVideoRenderer(client)
        self.scene_count = scene_count

    async def adapt(self, title: str) -> tuple[Story, list[Scene]]:
        return await adapt_story(self.client, title, self.text_model, self.scene_count)

    async def render_reference(self, story: Story, settings: VideoSettings) -> bytes:
        return await render_reference_image(self.client, story, settings, self.image_model)

    async def render_video(
        self, scene: Scene, reference_image: str, settings: VideoSettings
    ) -> bytes:
        return await self.video_renderer.render(scene, reference_image, settings)

    async def synthesize(self, text_en: str, text_zh: str, mood: str) -> Narration:
        return await synthesize_narration(text_en, text_zh, mood, self.synth)


class MediaStore:
    """Writes generated media under a root directory and returns file paths."""

    def __init__(self, root: str) -> None:
        self.root = Path(root)

    def save(self, kind: str, stem: str, data: bytes, suffix: str) -> str:
        # Content hash in the name so stale references never point at new bytes.
        sig = hashlib.sha1(data).hexdigest()[:12]
        path = self.root / kind / f"{stem}_{sig}{suffix}"
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
        logger.debug("Saved %s (%d bytes)", path, len(data))
        return str(path)

    def save_reference(self, data: bytes) -> str:
        return self.save("reference", "reference", data, ".png")

    def save_video(self, scene_id: int, data: bytes) -> str:
        return self.save("video", f"scene_{scene_id:02d}", data, ".mp4")

    def save_audio(self, scene_id: int, data: bytes) -> str:
        return self.save("audio", f"scene_{scene_id:02d}", data, ".wav")


def movie_filename(title: str | None) -> str:
    """Deterministic download name derived from the story title."""
    stem = re.sub(r"[^a-z0-9]", "_", title or "", flags=re.I).lower()
    return f"{stem or 'story'}_full_movie{MOVIE_EXTENSION}"
