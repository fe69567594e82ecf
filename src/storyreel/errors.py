"""
Error taxonomy for the storyreel pipeline.
"""


class StoryreelError(RuntimeError):
    """Base class for pipeline errors."""


class StoryParseError(StoryreelError):
    """Generated content is missing or cannot be parsed into the story schema."""


class GenerationError(StoryreelError):
    """A single generated asset (image, video, narration) failed."""


class PreconditionError(StoryreelError):
    """An operation was invoked without a required upstream asset or state."""


class ExportError(StoryreelError):
    """Decoding, compositing or capture failed during movie export."""
