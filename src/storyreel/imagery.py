"""
Reference image and scene video generation with OpenAI image/video models.
"""

import asyncio
import base64
import logging
import tempfile
import time
from collections.abc import Awaitable, Callable
from pathlib import Path

from .errors import GenerationError
from .io_ffmpeg import fit_image
from .models import Scene, Story, VideoSettings

logger = logging.getLogger("storyreel")

# Optional OpenAI SDK
try:
    from openai import AsyncOpenAI
except ImportError:
    AsyncOpenAI = None

# Scene videos conditioned on a reference image are only produced at this size.
REFERENCE_VIDEO_SIZE = (1280, 720)

_IMAGE_SIZES = {"16:9": "1536x1024", "9:16": "1024x1536"}
_VIDEO_SIZES = {"16:9": (1280, 720), "9:16": (720, 1280)}


def reference_prompt(story: Story) -> str:
    return (
        f"Character sheet, full body shot. {story.character_description}. "
        f"Art style: {story.visual_style}. White background, consistent lighting. "
        "High quality, detailed."
    )


def scene_prompt(scene: Scene) -> str:
    return f"{scene.visual_prompt}. Cinematic, high quality."


def effective_video_size(settings: VideoSettings, with_reference: bool) -> tuple[int, int]:
    """Size the backend will actually produce for the requested settings."""
    if with_reference:
        return REFERENCE_VIDEO_SIZE
    return _VIDEO_SIZES[settings.aspect_ratio]


async def render_reference_image(
    client: AsyncOpenAI, story: Story, settings: VideoSettings, model: str = "gpt-image-1"
) -> bytes:
    """Generate the character/style reference sheet as PNG bytes."""
    if client is None:
        raise RuntimeError("OpenAI client is not initialized (missing OPENAI_API_KEY)")

    quality = "high" if settings.resolution == "1080p" else "medium"
    result = await client.images.generate(
        model=model,
        prompt=reference_prompt(story),
        size=_IMAGE_SIZES[settings.aspect_ratio],
        quality=quality,
        n=1,
    )
    for item in result.data or []:
        if getattr(item, "b64_json", None):
            return base64.b64decode(item.b64_json)
    raise GenerationError("Failed to generate reference image")


class OpenAIVideoRenderer:
    """Scene video generation: submit a job, poll until it settles, download."""

    def __init__(
        self,
        client: AsyncOpenAI,
        model: str = "sora-2",
        seconds: int = 8,
        poll_interval: float = 5.0,
        timeout: float = 600.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.client = client
        self.model = model
        self.seconds = seconds
        self.poll_interval = poll_interval
        self.timeout = timeout
        self._sleep = sleep
        self._clock = clock

    async def _prepare_reference(self, reference_image: str, size: tuple[int, int]) -> bytes:
        # The backend wants the reference at exactly the output size.
        with tempfile.TemporaryDirectory(prefix="storyreel_ref_") as tmp:
            out = str(Path(tmp) / "reference.png")
            await asyncio.to_thread(fit_image, reference_image, out, *size)
            return Path(out).read_bytes()

    async def wait(self, video):
        """Poll a video job until completed or failed, bounded by the timeout."""
        deadline = self._clock() + self.timeout
        while video.status not in ("completed", "failed"):
            if self._clock() >= deadline:
                raise GenerationError(
                    f"Video generation timed out after {self.timeout:.0f}s (job {video.id})"
                )
            await self._sleep(self.poll_interval)
            video = await self.client.videos.retrieve(video.id)
            logger.debug("Video job %s: %s", video.id, video.status)
        if video.status == "failed":
            err = getattr(video, "error", None)
            msg = getattr(err, "message", None) or "unknown error"
            raise GenerationError(f"Video generation failed: {msg}")
        return video

    async def render(self, scene: Scene, reference_image: str, settings: VideoSettings) -> bytes:
        if self.client is None:
            raise RuntimeError("OpenAI client is not initialized (missing OPENAI_API_KEY)")

        width, height = effective_video_size(settings, with_reference=True)
        if (width, height) != settings.dimensions:
            logger.info(
                f"Scene {scene.id}: requested {settings.resolution} {settings.aspect_ratio}, "
                f"backend produces {width}x{height} with a reference image"
            )
        ref_bytes = await self._prepare_reference(reference_image, (width, height))
        video = await self.client.videos.create(
            model=self.model,
            prompt=scene_prompt(scene),
            size=f"{width}x{height}",
            seconds=str(self.seconds),
            input_reference=("reference.png", ref_bytes, "image/png"),
        )
        video = await self.wait(video)
        content = await self.client.videos.download_content(video.id, variant="video")
        data = content.content
        if not data:
            raise GenerationError("Video generation failed: empty download")
        return data
