"""
Pipeline step gating and the serialized session store.
"""

import contextlib
import logging
import threading
from collections.abc import Callable, Iterator
from dataclasses import replace

from .errors import PreconditionError
from .invalidation import append_log
from .models import PipelineState, step_index

logger = logging.getLogger("storyreel")


def can_enter(state: PipelineState, target: str) -> bool:
    """Whether the entity prerequisite for a step is present."""
    idx = step_index(target)
    if idx >= step_index("video-gen"):
        return state.story is not None and state.reference_image is not None
    if idx >= step_index("story-gen"):
        return state.story is not None
    return True


def jump_to(state: PipelineState, target: str, busy: bool = False) -> PipelineState:
    """Move to a step: backward always, forward only with prerequisites, never while busy."""
    target_idx = step_index(target)
    if busy:
        return state
    if target_idx < step_index(state.step):
        return replace(state, step=target)
    if not can_enter(state, target):
        return state
    return replace(state, step=target)


class SessionStore:
    """Holds the current session; every mutation goes through update()."""

    def __init__(self, state: PipelineState | None = None) -> None:
        self._state = state or PipelineState()
        self._lock = threading.Lock()
        self._busy: str | None = None

    @property
    def state(self) -> PipelineState:
        return self._state

    @property
    def is_busy(self) -> bool:
        return self._busy is not None

    def update(self, reducer: Callable[..., PipelineState], *args, **kwargs) -> PipelineState:
        """Apply a pure reducer to the current state and publish the result."""
        with self._lock:
            self._state = reducer(self._state, *args, **kwargs)
            return self._state

    def log(self, message: str, level: int = logging.INFO) -> None:
        logger.log(level, message)
        self.update(append_log, message)

    def jump_to(self, target: str) -> PipelineState:
        if self.is_busy:
            logger.debug("Step change to %s rejected: %s in progress", target, self._busy)
        return self.update(jump_to, target, self.is_busy)

    @contextlib.contextmanager
    def busy(self, operation: str) -> Iterator[None]:
        """Mark a long-running operation; only one may run at a time."""
        with self._lock:
            if self._busy is not None:
                raise PreconditionError(
                    f"Cannot start {operation}: {self._busy} already in progress"
                )
            self._busy = operation
        try:
            yield
        finally:
            with self._lock:
                self._busy = None
