"""Classification service: the single entry point for classifying plant photos.

Owns the model handle and the label catalog. A call waits for the model (and
labels) to be ready, asks the picker for a photo, then decodes, encodes, runs
and ranks in the inference pool.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path
from typing import TYPE_CHECKING

from leafcheck.ml.acquisition import DirectoryImagePicker
from leafcheck.ml.inference import InferencePool
from leafcheck.ml.labels import LabelCatalog
from leafcheck.ml.model_handle import ModelHandle
from leafcheck.ml.postprocessing import ClassificationResult, decode_output, rank_results
from leafcheck.ml.preprocessing import decode_image, encode_image

if TYPE_CHECKING:
    from collections.abc import Callable
    from types import TracebackType

    from leafcheck.config import Settings
    from leafcheck.ml.acquisition import ImagePicker, ImageSource

logger = logging.getLogger(__name__)


class ClassificationStatus(StrEnum):
    CLASSIFIED = "classified"
    NO_IMAGE = "no_image"
    FAILED = "failed"


@dataclass(frozen=True)
class ClassificationOutcome:
    """Result of one classification request."""

    status: ClassificationStatus
    results: list[ClassificationResult] | None = None
    image_path: Path | None = None
    error: Exception | None = None

    @property
    def top(self) -> ClassificationResult | None:
        """Highest-confidence result, if any."""
        return self.results[0] if self.results else None

    def is_confident(self, threshold: float) -> bool:
        """True when the top confidence is strictly above ``threshold``."""
        top = self.top
        return top is not None and top.confidence > threshold


class ClassificationService:
    """Orchestrates label loading, model loading, acquisition and inference."""

    def __init__(
        self,
        settings: Settings,
        picker: ImagePicker | None = None,
        model: ModelHandle | None = None,
        pool: InferencePool | None = None,
        on_failure: Callable[[Exception], None] | None = None,
    ) -> None:
        self._settings = settings
        self._picker: ImagePicker = picker or DirectoryImagePicker(settings.camera_dir, settings.gallery_dir)
        self._model = model or ModelHandle(settings)
        self._owns_pool = pool is None
        self._pool = pool or InferencePool(settings)
        self._on_failure = on_failure
        self._labels = LabelCatalog()
        self._warmup: asyncio.Task[None] | None = None

    # -- Public API ---------------------------------------------------------

    @property
    def model(self) -> ModelHandle:
        return self._model

    @property
    def labels(self) -> LabelCatalog:
        return self._labels

    @property
    def pool(self) -> InferencePool:
        return self._pool

    def start(self) -> None:
        """Begin loading the model and labels in the background."""
        if self._warmup is None:
            self._warmup = asyncio.get_running_loop().create_task(self.ensure_ready())
            self._warmup.add_done_callback(_log_warmup_result)

    async def ensure_ready(self) -> None:
        """Load the model (or wait for an in-flight load), then the labels.

        Raises:
            ResourceError: If the label or model resource cannot be read.
            ModelLoadError: If the engine rejects the model.
        """
        await self._model.load(self._settings.model_path)
        if not self._labels:
            self._labels = await asyncio.to_thread(LabelCatalog.load, self._settings.labels_path)

    async def classify(self, source: ImageSource) -> list[ClassificationResult] | None:
        """Classify a photo from ``source``.

        Returns the ranked results, or None when no image was selected or
        classification failed. Use :meth:`classify_outcome` to tell those apart.
        """
        outcome = await self.classify_outcome(source)
        return outcome.results

    async def classify_outcome(self, source: ImageSource) -> ClassificationOutcome:
        """Classify a photo from ``source`` and report how the request ended."""
        await self.ensure_ready()

        image_path = await self._picker.pick_image(source)
        if image_path is None:
            logger.info("No image selected from %s", source)
            return ClassificationOutcome(status=ClassificationStatus.NO_IMAGE)

        try:
            image_bytes = await asyncio.to_thread(Path(image_path).read_bytes)
        except OSError as exc:
            return self._failed(exc, image_path)
        return await self._classify_loaded(image_bytes, image_path)

    async def classify_bytes(self, image_bytes: bytes, image_path: Path | None = None) -> ClassificationOutcome:
        """Classify already-acquired image bytes."""
        await self.ensure_ready()
        return await self._classify_loaded(image_bytes, image_path)

    async def close(self) -> None:
        """Release the model session and, if owned, the inference pool."""
        if self._warmup is not None and not self._warmup.done():
            self._warmup.cancel()
        self._model.close()
        if self._owns_pool:
            await asyncio.to_thread(self._pool.shutdown)

    async def __aenter__(self) -> ClassificationService:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()

    # -- Internal -----------------------------------------------------------

    async def _classify_loaded(self, image_bytes: bytes, image_path: Path | None) -> ClassificationOutcome:
        try:
            results = await self._pool.run(self._infer, image_bytes)
        except Exception as exc:
            return self._failed(exc, image_path)
        return ClassificationOutcome(
            status=ClassificationStatus.CLASSIFIED,
            results=results,
            image_path=image_path,
        )

    def _infer(self, image_bytes: bytes) -> list[ClassificationResult]:
        image = decode_image(image_bytes, max_pixels=self._settings.max_image_pixels)

        input_descriptor = self._model.input_descriptor()
        output_descriptor = self._model.output_descriptor()
        logger.debug("Input tensor: %s %s", input_descriptor.shape, input_descriptor.element_type)
        logger.debug("Output tensor: %s %s", output_descriptor.shape, output_descriptor.element_type)

        input_tensor = encode_image(image, input_descriptor)
        logger.debug("Running inference...")
        raw_output = self._model.run(input_tensor)
        probabilities = decode_output(raw_output, output_descriptor)
        return rank_results(probabilities, self._labels.labels)

    def _failed(self, exc: Exception, image_path: Path | None) -> ClassificationOutcome:
        logger.exception("Error during classification of %s", image_path or "uploaded image")
        if self._on_failure is not None:
            try:
                self._on_failure(exc)
            except Exception:
                logger.exception("Failure callback raised")
        return ClassificationOutcome(status=ClassificationStatus.FAILED, image_path=image_path, error=exc)


def _log_warmup_result(task: asyncio.Task[None]) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error("Background model load failed, will retry on next request: %s", exc)
    else:
        logger.info("Classifier ready")
