"""
Audio and video processing utilities using ffmpeg/ffprobe.
"""

import logging
import re
import subprocess
from pathlib import Path

logger = logging.getLogger("storyreel")

_OPTION_SPECIALS = re.compile(r"[\\':]")
_GRAPH_SPECIALS = re.compile(r"[\\'\[\],;]")


def run(cmd: list[str], *, check: bool = True) -> str:
    """Run a shell command and return stdout."""
    logger.debug("Running: %s", " ".join(map(str, cmd)))
    proc = subprocess.run(
        cmd, stdout=subprocess.PIPE, stderr=subprocess.STDOUT, text=True, check=False
    )
    if proc.returncode != 0 and check:
        logger.error("Command failed with code %d: %s", proc.returncode, proc.stdout)
        msg = f"Command failed with code {proc.returncode}"
        raise RuntimeError(msg)
    return proc.stdout


def ensure_dir(path: str) -> None:
    """Ensure directory exists."""
    if path:
        Path(path).mkdir(parents=True, exist_ok=True)


def probe_video_size(input_video: str) -> tuple[int, int]:
    """Get (width, height) of the first video stream."""
    out = run(
        [
            "ffprobe",
            "-v",
            "error",
            "-select_streams",
            "v:0",
            "-show_entries",
            "stream=width,height",
            "-of",
            "csv=s=x:p=0",
            input_video,
        ]
    )
    try:
        w, h = out.strip().splitlines()[0].split("x")[:2]
        return int(w), int(h)
    except (IndexError, ValueError):
        raise RuntimeError(f"Could not read video size of {input_video}: {out.strip()!r}") from None


def fit_image(in_image: str, out_image: str, width: int, height: int) -> None:
    """Letterbox an image onto an exact width x height canvas."""
    ensure_dir(str(Path(out_image).parent))
    vf = (
        f"scale={width}:{height}:force_original_aspect_ratio=decrease,"
        f"pad={width}:{height}:(ow-iw)/2:(oh-ih)/2:color=white"
    )
    run(["ffmpeg", "-y", "-i", in_image, "-vf", vf, "-frames:v", "1", out_image])


def escape_filter_value(value: str) -> str:
    """Escape a filter option value for a filtergraph string (unquoted).

    ffmpeg unescapes twice: once for the option value and once for the
    filtergraph description.
    """
    value = _OPTION_SPECIALS.sub(r"\\\g<0>", value)
    return _GRAPH_SPECIALS.sub(r"\\\g<0>", value)


def concat_segments(segments: list[str], list_path: str, output_video: str) -> None:
    """Join same-codec segments with the concat demuxer (no re-encode)."""
    lines = []
    for seg in segments:
        p = str(Path(seg).resolve()).replace("'", "'\\''")
        lines.append(f"file '{p}'")
    Path(list_path).write_text("\n".join(lines) + "\n", encoding="utf-8")
    run(
        [
            "ffmpeg",
            "-y",
            "-f",
            "concat",
            "-safe",
            "0",
            "-i",
            list_path,
            "-c",
            "copy",
            "-movflags",
            "+faststart",
            output_video,
        ]
    )
