from __future__ import annotations


class LiveDetectError(Exception):
    """Base class for errors raised by the frame analysis pipeline."""


class InvalidInputError(LiveDetectError, ValueError):
    """
    Malformed image dimensions, zero-sized input or a shape mismatch between stages.

    Contained to the current frame: the frame is dropped and the next one is processed.
    """


class UnsupportedShapeError(LiveDetectError, ValueError):
    """Network output does not follow the `[batch, 4 + num_classes, num_boxes]` layout."""


class ModelLoadError(LiveDetectError, RuntimeError):
    """The inference engine could not load a model on any execution path."""


class ResourceReleaseError(LiveDetectError, RuntimeError):
    """Releasing a native resource failed. Logged, never stops the rest of cleanup."""
