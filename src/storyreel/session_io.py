"""
Session manifest read/write so CLI stages can resume across runs.
"""

import json
import logging
from dataclasses import asdict, replace
from pathlib import Path

from .models import PipelineState, Scene, Story, SubtitleLine, VideoSettings

logger = logging.getLogger("storyreel")


def state_to_dict(state: PipelineState) -> dict:
    return asdict(state)


def state_from_dict(data: dict) -> PipelineState:
    story = data.get("story")
    scenes = []
    for s in data.get("scenes") or []:
        subs = s.get("subtitles")
        scenes.append(
            Scene(
                **{
                    **s,
                    "subtitles": None if subs is None else tuple(SubtitleLine(**x) for x in subs),
                }
            )
        )
    return PipelineState(
        step=data.get("step", "input"),
        book_name=data.get("book_name", ""),
        story=None if story is None else Story(**{**story, "sources": tuple(story.get("sources") or ())}),
        scenes=tuple(scenes),
        reference_image=data.get("reference_image"),
        settings=VideoSettings(**(data.get("settings") or {})),
        logs=tuple(data.get("logs") or ()),
    )


def save_state(state: PipelineState, path: str) -> None:
    """Write the session manifest to JSON."""
    Path(path).parent.mkdir(parents=True, exist_ok=True)
    tmp = Path(path).with_suffix(".tmp")
    tmp.write_text(json.dumps(state_to_dict(state), ensure_ascii=False, indent=2), encoding="utf-8")
    tmp.replace(path)


def load_state(path: str) -> PipelineState:
    """Read a session manifest; a missing file is a fresh session."""
    p = Path(path)
    if not p.exists():
        return PipelineState()
    state = state_from_dict(json.loads(p.read_text(encoding="utf-8")))
    # A run that died mid-generation leaves scenes marked generating.
    stale = [s.id for s in state.scenes if s.status == "generating"]
    if stale:
        logger.warning(f"Scenes {stale} were interrupted while generating; marking pending")
        state = replace(
            state,
            scenes=tuple(s.cleared("pending") if s.status == "generating" else s for s in state.scenes),
        )
    return state
