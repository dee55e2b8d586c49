"""Exception hierarchy for the classification pipeline."""

from __future__ import annotations


class LeafCheckError(Exception):
    """Base class for all LeafCheck errors."""


class ResourceError(LeafCheckError):
    """A label or model resource could not be read."""


class ModelLoadError(LeafCheckError):
    """The inference engine rejected the model artifact."""


class ModelResourceError(ResourceError, ModelLoadError):
    """The model artifact could not be found, read or downloaded."""


class NotReadyError(LeafCheckError):
    """An operation needed a loaded model but the handle is not ready."""


class UnsupportedTypeError(LeafCheckError):
    """A tensor declares an element type outside float32/uint8."""


class UnsupportedOutputShapeError(LeafCheckError):
    """The output tensor is neither [N] nor [1, N]."""


class UnsupportedBatchError(LeafCheckError):
    """The input tensor declares a batch size other than 1."""


class UnsupportedInputShapeError(LeafCheckError):
    """The input tensor is not [1, H, W, C] with C in {1, 3}."""


class DecodeError(LeafCheckError):
    """Image bytes could not be decoded."""
