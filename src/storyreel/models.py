"""
Data models for the storyreel pipeline.
"""

from dataclasses import dataclass, field, replace

SCENE_STATUSES = ("pending", "generating", "completed", "error")
RESOLUTIONS = ("720p", "1080p")
ASPECT_RATIOS = ("16:9", "9:16")

# Total order of pipeline steps
STEPS = ("input", "story-gen", "ref-image-gen", "video-gen", "finished")

CRITICAL_STORY_FIELDS = ("visual_style", "character_description")
STORY_FIELDS = ("title", "summary", "visual_style", "character_description")
SCENE_FIELDS = ("text_en", "text_zh", "visual_prompt", "voice_mood")
SETTINGS_FIELDS = ("resolution", "aspect_ratio")

_DIMENSIONS = {
    ("720p", "16:9"): (1280, 720),
    ("720p", "9:16"): (720, 1280),
    ("1080p", "16:9"): (1920, 1080),
    ("1080p", "9:16"): (1080, 1920),
}


def step_index(step: str) -> int:
    """Position of a step in the pipeline order."""
    try:
        return STEPS.index(step)
    except ValueError:
        raise ValueError(f"Unknown pipeline step: {step!r}") from None


@dataclass(frozen=True)
class Story:
    """Adapted story metadata; visual_style and character_description are critical."""

    title: str
    summary: str
    visual_style: str
    character_description: str
    sources: tuple[str, ...] = ()


@dataclass(frozen=True)
class SubtitleLine:
    """One caption, active over [start_time, end_time) of the scene narration."""

    text_en: str
    text_zh: str
    start_time: float  # seconds
    end_time: float  # seconds

    def contains(self, t: float) -> bool:
        return self.start_time <= t < self.end_time


@dataclass(frozen=True)
class Scene:
    """A narrated video segment and its generated assets."""

    id: int
    text_en: str
    text_zh: str
    visual_prompt: str
    voice_mood: str
    status: str = "pending"
    video_ref: str | None = None
    audio_ref: str | None = None
    audio_duration: float | None = None
    subtitles: tuple[SubtitleLine, ...] | None = None

    def __post_init__(self) -> None:
        if self.status not in SCENE_STATUSES:
            raise ValueError(f"Invalid scene status: {self.status!r}")

    @property
    def is_completed(self) -> bool:
        return self.status == "completed"

    @property
    def has_assets(self) -> bool:
        return (
            self.video_ref is not None
            and self.audio_ref is not None
            and self.audio_duration is not None
            and self.subtitles is not None
        )

    def cleared(self, status: str | None = None) -> "Scene":
        """Copy without any generated asset, optionally with a new status."""
        return replace(
            self,
            status=status or self.status,
            video_ref=None,
            audio_ref=None,
            audio_duration=None,
            subtitles=None,
        )


@dataclass(frozen=True)
class VideoSettings:
    """Requested output resolution and aspect ratio."""

    resolution: str = "720p"
    aspect_ratio: str = "16:9"

    def __post_init__(self) -> None:
        if self.resolution not in RESOLUTIONS:
            raise ValueError(f"Invalid resolution: {self.resolution!r}")
        if self.aspect_ratio not in ASPECT_RATIOS:
            raise ValueError(f"Invalid aspect ratio: {self.aspect_ratio!r}")

    @property
    def dimensions(self) -> tuple[int, int]:
        """Requested (width, height) in pixels."""
        return _DIMENSIONS[(self.resolution, self.aspect_ratio)]


@dataclass(frozen=True)
class Narration:
    """Synthesized narration: WAV bytes, total duration and timed captions."""

    audio: bytes
    duration: float
    subtitles: tuple[SubtitleLine, ...]


@dataclass(frozen=True)
class PipelineState:
    """The whole session as one immutable value."""

    step: str = "input"
    book_name: str = ""
    story: Story | None = None
    scenes: tuple[Scene, ...] = ()
    reference_image: str | None = None
    settings: VideoSettings = field(default_factory=VideoSettings)
    logs: tuple[str, ...] = ()


def validate_scene(scene: Scene) -> list[str]:
    """Return a list of invariant violations for a scene (empty when valid)."""
    problems: list[str] = []
    if scene.status == "completed" and not scene.has_assets:
        problems.append(f"scene {scene.id}: completed without all assets")
    if scene.status == "error" and any(
        v is not None
        for v in (scene.video_ref, scene.audio_ref, scene.audio_duration, scene.subtitles)
    ):
        problems.append(f"scene {scene.id}: error status retains assets")
    prev_end = 0.0
    prev_start: float | None = None
    for line in scene.subtitles or ():
        if line.end_time < line.start_time:
            problems.append(f"scene {scene.id}: caption ends before it starts")
        if prev_start is not None and line.start_time <= prev_start:
            problems.append(f"scene {scene.id}: captions not strictly ascending")
        if line.start_time < prev_end:
            problems.append(f"scene {scene.id}: captions overlap")
        prev_start, prev_end = line.start_time, line.end_time
    return problems
