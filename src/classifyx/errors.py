"""Exception hierarchy for the classification pipeline."""

from __future__ import annotations


class ClassifyXError(Exception):
    """Base class for all ClassifyX errors."""


# Model lifecycle. Fatal for the inference engine, not for the process.


class ModelNotFoundError(ClassifyXError):
    """The model artifact does not exist at the configured location."""


class ModelIOError(ClassifyXError):
    """The model artifact exists but could not be read or fetched."""


class ModelLoadError(ClassifyXError):
    """The inference engine could not be constructed from the model artifact."""


# Per-request failures. Caught at the orchestrator boundary.


class DecodeError(ClassifyXError):
    """The image reference could not be resolved to pixel data."""


class ShapeMismatchError(ClassifyXError):
    """The input tensor does not match the model's declared input signature."""


class InferenceError(ClassifyXError):
    """The runtime failed while executing the model."""


class EmptyOutputError(ClassifyXError):
    """The model produced an empty output tensor."""


# Orchestration


class EngineUnavailableError(ClassifyXError):
    """A classification was requested but the engine failed to initialize."""


class RequestRejectedError(ClassifyXError):
    """A classification was requested while another one is still running."""
