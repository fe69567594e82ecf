"""
Tests for pipeline step gating and the session store.
"""

from dataclasses import replace

import pytest

from conftest import make_story
from storyreel.controller import SessionStore, jump_to
from storyreel.errors import PreconditionError
from storyreel.invalidation import set_step
from storyreel.models import PipelineState


def test_backward_jump_always_allowed():
    state = PipelineState(step="finished", story=make_story(), reference_image="ref.png")

    assert jump_to(state, "input").step == "input"
    assert jump_to(state, "story-gen").step == "story-gen"


def test_forward_jump_requires_prerequisites():
    empty = PipelineState()
    assert jump_to(empty, "story-gen").step == "input"
    assert jump_to(empty, "ref-image-gen").step == "input"

    with_story = replace(empty, story=make_story())
    assert jump_to(with_story, "ref-image-gen").step == "ref-image-gen"
    assert jump_to(with_story, "video-gen").step == "input"
    assert jump_to(with_story, "finished").step == "input"

    with_ref = replace(with_story, reference_image="ref.png")
    assert jump_to(with_ref, "video-gen").step == "video-gen"


def test_jump_rejected_while_busy():
    state = PipelineState(step="finished", story=make_story(), reference_image="ref.png")
    assert jump_to(state, "input", busy=True) is state


def test_jump_to_unknown_step_raises():
    with pytest.raises(ValueError):
        jump_to(PipelineState(), "publishing")


def test_store_rejects_transitions_during_long_operation():
    store = SessionStore(PipelineState(step="finished", story=make_story(), reference_image="r"))

    with store.busy("export"):
        assert store.is_busy
        assert store.jump_to("input").step == "finished"
    assert not store.is_busy
    assert store.jump_to("input").step == "input"


def test_store_allows_one_long_operation_at_a_time():
    store = SessionStore()
    with store.busy("scene generation"):
        with pytest.raises(PreconditionError):
            with store.busy("export"):
                pass
    # Released even after the nested failure
    with store.busy("export"):
        pass


def test_store_log_appends_entries_in_order():
    store = SessionStore()
    store.log("first")
    store.update(set_step, "input")
    store.log("second")

    assert len(store.state.logs) == 2
    assert store.state.logs[0].endswith("] first")
    assert store.state.logs[1].endswith("] second")
