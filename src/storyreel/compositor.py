"""
Movie export: plays each completed scene's clip against its narration,
overlays the active bilingual caption and joins everything into one file.

Composition is split into a frame producer (plan_frames), which decides on a
fixed clock what each output frame shows, and an encoder sink
(SegmentEncoder), which turns those frames into an ffmpeg render per scene.
"""

import itertools
import logging
import math
import shutil
import tempfile
from collections.abc import Callable, Iterator
from dataclasses import dataclass
from pathlib import Path

from .errors import ExportError, PreconditionError
from .io_ffmpeg import concat_segments, ensure_dir, escape_filter_value, probe_video_size, run
from .models import Scene, SubtitleLine, VideoSettings
from .services import movie_filename

logger = logging.getLogger("storyreel")

DEFAULT_FPS = 30


@dataclass(frozen=True)
class Frame:
    """One output frame of a scene segment."""

    index: int
    time: float  # seconds into the narration
    subtitle: SubtitleLine | None


@dataclass(frozen=True)
class Placement:
    """Where a scaled video frame lands on the surface (offsets may be negative)."""

    scale: float
    x: int
    y: int
    width: int
    height: int


@dataclass(frozen=True)
class SubtitleStyle:
    """Caption styling at a 720 px reference height."""

    en_size: int = 24
    zh_size: int = 20
    bottom_margin: int = 80
    line_gap: int = 40
    en_color: str = "white"
    zh_color: str = "0xfde047"
    shadow_color: str = "black"
    shadow_offset: int = 2
    font_file: str | None = None
    zh_font_file: str | None = None
    base_height: int = 720


@dataclass(frozen=True)
class SubtitleLayout:
    en_size: int
    zh_size: int
    en_baseline: int
    zh_baseline: int


def subtitle_at(subtitles: tuple[SubtitleLine, ...] | None, t: float) -> SubtitleLine | None:
    """The caption whose [start, end) interval contains t, if any."""
    for line in subtitles or ():
        if line.contains(t):
            return line
    return None


def cover_fit(surface_w: int, surface_h: int, video_w: int, video_h: int) -> Placement:
    """Aspect-preserving scale that fills the surface, centered, overflow clipped."""
    if video_w <= 0 or video_h <= 0:
        raise ValueError(f"Invalid video size {video_w}x{video_h}")
    scale = max(surface_w / video_w, surface_h / video_h)
    width = max(surface_w, round(video_w * scale))
    height = max(surface_h, round(video_h * scale))
    return Placement(
        scale=scale,
        x=(surface_w - width) // 2,
        y=(surface_h - height) // 2,
        width=width,
        height=height,
    )


def subtitle_layout(surface_h: int, style: SubtitleStyle = SubtitleStyle()) -> SubtitleLayout:
    """Font sizes and baselines scaled to the surface height; target language below."""
    k = surface_h / style.base_height
    margin = round(style.bottom_margin * k)
    gap = round(style.line_gap * k)
    return SubtitleLayout(
        en_size=round(style.en_size * k),
        zh_size=round(style.zh_size * k),
        en_baseline=surface_h - margin,
        zh_baseline=surface_h - (margin - gap),
    )


def plan_frames(scene: Scene, fps: int = DEFAULT_FPS) -> Iterator[Frame]:
    """Produce the frames of one scene on a fixed 1/fps clock until its narration ends."""
    duration = float(scene.audio_duration or 0.0)
    count = math.ceil(duration * fps - 1e-9)
    for i in range(count):
        t = i / fps
        yield Frame(index=i, time=t, subtitle=subtitle_at(scene.subtitles, t))


def caption_windows(frames) -> list[tuple[int, int, SubtitleLine]]:
    """Collapse consecutive frames showing the same caption into (first, last, line)."""
    windows = []
    for line, group in itertools.groupby(frames, key=lambda f: f.subtitle):
        group = list(group)
        if line is not None:
            windows.append((group[0].index, group[-1].index, line))
    return windows


def progress_percent(done: int, total: int) -> int:
    return round(done / total * 100) if total else 0


class SegmentEncoder:
    """Renders one scene segment per call with ffmpeg on a fixed-size surface."""

    def __init__(
        self,
        surface: tuple[int, int],
        work_dir: str,
        fps: int = DEFAULT_FPS,
        style: SubtitleStyle = SubtitleStyle(),
    ) -> None:
        self.width, self.height = surface
        self.work_dir = Path(work_dir)
        self.fps = fps
        self.style = style
        self.layout = subtitle_layout(self.height, style)

    def _drawtext(self, text_file: Path, size: int, color: str, baseline: int,
                  font_file: str | None, first: int, last: int) -> str:
        opts = [
            f"textfile={escape_filter_value(str(text_file))}",
            "expansion=none",
            f"fontsize={size}",
            f"fontcolor={color}",
            f"shadowcolor={self.style.shadow_color}",
            f"shadowx={self.style.shadow_offset}",
            f"shadowy={self.style.shadow_offset}",
            "x=(w-text_w)/2",
            f"y={baseline}-ascent",
            f"enable='between(n,{first},{last})'",
        ]
        if font_file:
            opts.insert(0, f"fontfile={escape_filter_value(font_file)}")
        return "drawtext=" + ":".join(opts)

    def filter_chain(self, scene: Scene, video_size: tuple[int, int], frames) -> str:
        duration = float(scene.audio_duration or 0.0)
        place = cover_fit(self.width, self.height, *video_size)
        chain = [
            # hold the last frame when the clip is shorter than the narration
            f"tpad=stop_mode=clone:stop_duration={duration:.3f}",
            f"scale={place.width}:{place.height}",
            f"crop={self.width}:{self.height}:{-place.x}:{-place.y}",
            f"fps={self.fps}",
            "setsar=1",
        ]
        lay = self.layout
        for w, (first, last, line) in enumerate(caption_windows(frames)):
            stem = f"scene_{scene.id:02d}_cap_{w:03d}"
            en_file = self.work_dir / f"{stem}_en.txt"
            zh_file = self.work_dir / f"{stem}_zh.txt"
            en_file.write_text(line.text_en, encoding="utf-8")
            zh_file.write_text(line.text_zh, encoding="utf-8")
            chain.append(self._drawtext(en_file, lay.en_size, self.style.en_color,
                                        lay.en_baseline, self.style.font_file, first, last))
            if line.text_zh:
                chain.append(self._drawtext(zh_file, lay.zh_size, self.style.zh_color,
                                            lay.zh_baseline,
                                            self.style.zh_font_file or self.style.font_file,
                                            first, last))
        return ",".join(chain)

    def encode(self, scene: Scene, video_size: tuple[int, int], frames) -> str:
        out = str(self.work_dir / f"segment_{scene.id:02d}.mp4")
        duration = float(scene.audio_duration or 0.0)
        chain = self.filter_chain(scene, video_size, list(frames))
        run(
            [
                "ffmpeg",
                "-y",
                "-i",
                scene.video_ref,
                "-i",
                scene.audio_ref,
                "-filter_complex",
                f"[0:v]{chain}[v]",
                "-map",
                "[v]",
                "-map",
                "1:a:0",
                "-t",
                f"{duration:.3f}",
                "-c:v",
                "libx264",
                "-preset",
                "veryfast",
                "-crf",
                "20",
                "-pix_fmt",
                "yuv420p",
                "-c:a",
                "aac",
                "-b:a",
                "192k",
                "-ar",
                "48000",
                "-ac",
                "2",
                out,
            ]
        )
        return out


def resolve_surface(scenes: list[Scene], settings: VideoSettings) -> tuple[int, int]:
    """Size actually produced by generation, falling back to the requested one."""
    for scene in scenes:
        if scene.video_ref:
            try:
                w, h = probe_video_size(scene.video_ref)
            except RuntimeError as e:
                logger.warning(f"Could not probe {scene.video_ref}: {e}")
                break
            return w - w % 2, h - h % 2
    w, h = settings.dimensions
    return w, h


def export_movie(
    scenes: list[Scene] | tuple[Scene, ...],
    settings: VideoSettings,
    out_dir: str,
    title: str | None = None,
    on_progress: Callable[[int], None] | None = None,
    fps: int = DEFAULT_FPS,
    style: SubtitleStyle = SubtitleStyle(),
) -> str:
    """Composite all completed scenes into one movie file and return its path."""
    scenes = list(scenes)
    if not scenes:
        raise PreconditionError("Nothing to export: story has no scenes")
    pending = [s.id for s in scenes if not s.is_completed]
    if pending:
        raise PreconditionError(f"Cannot export: scenes not completed: {pending}")

    ensure_dir(out_dir)
    target = Path(out_dir) / movie_filename(title)
    surface = resolve_surface(scenes, settings)
    logger.info(f"Exporting {len(scenes)} scenes at {surface[0]}x{surface[1]} -> {target}")

    with tempfile.TemporaryDirectory(prefix="storyreel_export_") as tmp:
        encoder = SegmentEncoder(surface, tmp, fps=fps, style=style)
        segments: list[str] = []
        try:
            for i, scene in enumerate(scenes):
                if not scene.is_completed or not scene.video_ref or not scene.audio_ref:
                    continue
                if on_progress:
                    on_progress(progress_percent(i, len(scenes)))
                for ref in (scene.video_ref, scene.audio_ref):
                    if not Path(ref).is_file():
                        raise ExportError(f"Scene {scene.id}: media not found: {ref}")
                video_size = probe_video_size(scene.video_ref)
                segments.append(encoder.encode(scene, video_size, plan_frames(scene, fps)))
                logger.debug(f"Scene {scene.id} segment rendered ({scene.audio_duration:.2f}s)")

            joined = str(Path(tmp) / f"movie{target.suffix}")
            concat_segments(segments, str(Path(tmp) / "segments.txt"), joined)
            shutil.move(joined, target)
        except ExportError:
            raise
        except (RuntimeError, OSError) as e:
            raise ExportError(f"Export failed: {e}") from e

    logger.info(f"Movie exported -> {target}")
    return str(target)
