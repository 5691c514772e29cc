"""Exception hierarchy for imgcls.

Configuration problems surface at construction time, preprocessing problems
when a batch violates the pipeline's invariants, and engine problems at the
inference boundary with the engine's own exception chained as ``__cause__``.
"""

from __future__ import annotations


class ImgclsError(Exception):
    """Base class for all imgcls errors."""


class ConfigError(ImgclsError, ValueError):
    """Invalid classifier, pipeline, or model configuration."""


class InvalidLayout(ConfigError):
    """Unrecognized tensor layout tag."""

    def __init__(self, tag: object) -> None:
        super().__init__(f"Invalid layout {tag!r}; expected 'bchw' or 'bhwc'")
        self.tag = tag


class LabelsUnavailable(ConfigError):
    """A label query was made on an output head without configured labels."""

    def __init__(self, output_name: str) -> None:
        super().__init__(f"Output '{output_name}' has no labels configured")
        self.output_name = output_name


class PreprocessError(ImgclsError):
    """An image batch violates the preprocessing pipeline's invariants."""


class EmptyBatch(PreprocessError):
    def __init__(self) -> None:
        super().__init__("Cannot preprocess an empty image batch")


class DimensionMismatch(PreprocessError):
    """Images in a batch do not share one post-transform size."""

    def __init__(self, message: str, *, image_index: int | None = None) -> None:
        super().__init__(message)
        self.image_index = image_index


class ModelLoadError(ImgclsError):
    """The model could not be located, parsed, or bound to its tensor names."""


class InferenceError(ImgclsError):
    """The inference engine failed to run a batch."""
