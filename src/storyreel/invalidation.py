"""
Pure state transitions: each edit returns a new session with exactly the
derived invalidations applied.
"""

import datetime
from dataclasses import replace

from .models import (
    CRITICAL_STORY_FIELDS,
    SCENE_FIELDS,
    SETTINGS_FIELDS,
    STORY_FIELDS,
    PipelineState,
    Scene,
    Story,
    VideoSettings,
    step_index,
)

DEFAULT_SCENE_MOOD = "calm"


def append_log(
    state: PipelineState, message: str, now: datetime.datetime | None = None
) -> PipelineState:
    """Append a timestamped entry to the activity log."""
    stamp = (now or datetime.datetime.now()).strftime("%H:%M:%S")
    return replace(state, logs=state.logs + (f"[{stamp}] {message}",))


def set_step(state: PipelineState, step: str) -> PipelineState:
    step_index(step)
    return replace(state, step=step)


def set_scene(state: PipelineState, index: int, scene: Scene) -> PipelineState:
    scenes = list(state.scenes)
    scenes[index] = scene
    return replace(state, scenes=tuple(scenes))


def story_loaded(
    state: PipelineState, story: Story, scenes: list[Scene], book_name: str = ""
) -> PipelineState:
    """A freshly adapted story replaces all scenes and needs a new reference."""
    fresh = tuple(
        replace(s.cleared("pending"), id=i) for i, s in enumerate(scenes, 1)
    )
    return replace(
        state,
        book_name=book_name or state.book_name,
        story=story,
        scenes=fresh,
        reference_image=None,
        step="story-gen",
    )


def reference_ready(state: PipelineState, image_ref: str) -> PipelineState:
    return replace(state, reference_image=image_ref, step="ref-image-gen")


def on_story_field_edited(state: PipelineState, field: str, value: str) -> PipelineState:
    """Edit a story field; critical fields drop the reference image."""
    if field not in STORY_FIELDS:
        raise ValueError(f"Unknown story field: {field!r}")
    if state.story is None:
        return state

    story = replace(state.story, **{field: value})
    if field not in CRITICAL_STORY_FIELDS:
        return replace(state, story=story)

    step = state.step
    if step in ("video-gen", "finished"):
        step = "story-gen"
    return replace(state, story=story, reference_image=None, step=step)


def on_scene_field_edited(
    state: PipelineState, index: int, field: str, value: str
) -> PipelineState:
    """Edit a scene field; a real change makes the scene pending and drops its assets."""
    if field not in SCENE_FIELDS:
        raise ValueError(f"Unknown scene field: {field!r}")
    if not 0 <= index < len(state.scenes):
        raise IndexError(f"Scene index out of range: {index}")

    old = state.scenes[index]
    if getattr(old, field) == value:
        return state
    scene = replace(old.cleared("pending"), **{field: value})
    return set_scene(state, index, scene)


def on_settings_changed(state: PipelineState, field: str, value: str) -> PipelineState:
    """Change a video setting; every generated video and the reference go stale.

    Narration audio and subtitles do not depend on the settings and are kept.
    """
    if field not in SETTINGS_FIELDS:
        raise ValueError(f"Unknown settings field: {field!r}")

    settings = replace(state.settings, **{field: value})
    scenes = tuple(
        replace(
            s,
            status="pending" if s.status in ("completed", "error") else s.status,
            video_ref=None,
        )
        for s in state.scenes
    )
    step = state.step
    if step in ("ref-image-gen", "video-gen", "finished"):
        step = "story-gen"
    return replace(
        state, settings=settings, scenes=scenes, reference_image=None, step=step
    )


def replace_settings(state: PipelineState, settings: VideoSettings) -> PipelineState:
    """Apply a whole settings value field by field, skipping unchanged fields."""
    for name in SETTINGS_FIELDS:
        value = getattr(settings, name)
        if getattr(state.settings, name) != value:
            state = on_settings_changed(state, name, value)
    return state


def add_scene(state: PipelineState) -> PipelineState:
    scene = Scene(
        id=len(state.scenes) + 1,
        text_en="",
        text_zh="",
        visual_prompt="",
        voice_mood=DEFAULT_SCENE_MOOD,
    )
    return replace(state, scenes=state.scenes + (scene,))


def delete_scene(
    state: PipelineState, index: int, active_index: int = 0
) -> tuple[PipelineState, int]:
    """Remove a scene, renumber ids 1..N and clamp the active scene index."""
    if not 0 <= index < len(state.scenes):
        raise IndexError(f"Scene index out of range: {index}")

    remaining = [s for i, s in enumerate(state.scenes) if i != index]
    scenes = tuple(replace(s, id=i) for i, s in enumerate(remaining, 1))
    if active_index >= len(scenes):
        active_index = max(0, len(scenes) - 1)
    return replace(state, scenes=scenes), active_index
