"""Output postprocessing: decode the raw output tensor and rank labels."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from operator import attrgetter
from typing import TYPE_CHECKING, Any

import numpy as np

from leafcheck.errors import UnsupportedOutputShapeError, UnsupportedTypeError
from leafcheck.ml.model_handle import UNKNOWN_DIM, ElementType

if TYPE_CHECKING:
    from numpy.typing import ArrayLike, NDArray

    from leafcheck.ml.model_handle import TensorDescriptor

logger = logging.getLogger(__name__)

UNKNOWN_LABEL_TEMPLATE = "Unknown Disease {number}"

_OUTPUT_DTYPES: dict[ElementType, type[np.generic]] = {
    ElementType.FLOAT32: np.float32,
    ElementType.UINT8: np.uint8,
}


@dataclass(frozen=True)
class ClassificationResult:
    """A single classification prediction."""

    label: str
    confidence: float


def decode_output(buffer: ArrayLike, descriptor: TensorDescriptor) -> NDArray[np.float64]:
    """Flatten a model output into one probability per class.

    Supported declared shapes are ``[N]`` and ``[1, N]``. Integer outputs are
    promoted to float without rescaling.

    Raises:
        UnsupportedOutputShapeError: For any other rank/shape, or when the
            buffer does not hold N values.
        UnsupportedTypeError: If the element type is neither float32 nor uint8.
    """
    shape = descriptor.shape
    if len(shape) == 1:
        num_classes = shape[0]
    elif len(shape) == 2 and shape[0] == 1:
        num_classes = shape[1]
    else:
        raise UnsupportedOutputShapeError(f"Unsupported output shape: {list(shape)}")

    array = np.asarray(buffer)
    if num_classes != UNKNOWN_DIM and array.size != num_classes:
        raise UnsupportedOutputShapeError(
            f"Output buffer has {array.size} values, declared shape {list(shape)} needs {num_classes}"
        )

    try:
        dtype = _OUTPUT_DTYPES[descriptor.element_type]
    except KeyError:
        raise UnsupportedTypeError(f"Unsupported output type: {descriptor.element_type}") from None

    probabilities = array.astype(dtype, copy=False).astype(np.float64).reshape(-1)
    logger.debug("Probabilities: %s", probabilities.tolist())
    return probabilities


def rank_results(probabilities: Sequence[float] | NDArray[Any], labels: Sequence[str]) -> list[ClassificationResult]:
    """Pair each probability with its label and sort by confidence, highest first.

    Channels beyond the label list get an ``Unknown Disease <n>`` placeholder
    (n is 1-based). Equal confidences keep their channel order.
    """
    results: list[ClassificationResult] = []
    for index, probability in enumerate(probabilities):
        if index < len(labels):
            label = labels[index]
        else:
            label = UNKNOWN_LABEL_TEMPLATE.format(number=index + 1)
        results.append(ClassificationResult(label=label, confidence=float(probability)))

    if len(results) > len(labels):
        logger.warning("More probabilities than labels (%d > %d)", len(results), len(labels))

    results.sort(key=attrgetter("confidence"), reverse=True)
    return results
