"""Model handle: resolve, load, introspect, run and release one ONNX model.

The handle owns a single InferenceSession and a small state machine
(unloaded -> loading -> ready -> closed). Concurrent ``load()`` callers share
one in-flight load task instead of polling for readiness.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path
from typing import TYPE_CHECKING, Any

from huggingface_hub import hf_hub_download
from onnxruntime import InferenceSession, SessionOptions
from onnxruntime.capi.onnxruntime_pybind11_state import ExecutionMode

from leafcheck.errors import ModelLoadError, ModelResourceError, NotReadyError, UnsupportedTypeError

if TYPE_CHECKING:
    from types import TracebackType

    import numpy as np
    from numpy.typing import NDArray

    from leafcheck.config import Settings

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Tensor contract
# ---------------------------------------------------------------------------


class ElementType(StrEnum):
    FLOAT32 = "float32"
    UINT8 = "uint8"

    @classmethod
    def from_onnx(cls, onnx_type: str) -> ElementType:
        """Map an ONNX type string such as ``tensor(float)`` to an ElementType."""
        try:
            return _ONNX_ELEMENT_TYPES[onnx_type]
        except KeyError:
            raise UnsupportedTypeError(f"Unsupported tensor type: {onnx_type}") from None


_ONNX_ELEMENT_TYPES: dict[str, ElementType] = {
    "tensor(float)": ElementType.FLOAT32,
    "tensor(uint8)": ElementType.UINT8,
}

UNKNOWN_DIM = -1


@dataclass(frozen=True)
class TensorDescriptor:
    """Declared shape and element type of a model input or output."""

    name: str
    shape: tuple[int, ...]
    element_type: ElementType

    @classmethod
    def from_node(cls, node: Any) -> TensorDescriptor:
        """Build a descriptor from an onnxruntime NodeArg.

        On tensors of rank 2 or more a symbolic leading (batch) dimension
        resolves to 1; any other symbolic dimension, including the only axis
        of a rank-1 output, becomes ``UNKNOWN_DIM``.
        """
        shape: list[int] = []
        for axis, dim in enumerate(node.shape):
            if isinstance(dim, int) and dim > 0:
                shape.append(dim)
            elif axis == 0 and len(node.shape) > 1:
                shape.append(1)
            else:
                shape.append(UNKNOWN_DIM)
        return cls(name=node.name, shape=tuple(shape), element_type=ElementType.from_onnx(node.type))


class ModelState(StrEnum):
    UNLOADED = "unloaded"
    LOADING = "loading"
    READY = "ready"
    CLOSED = "closed"


# ---------------------------------------------------------------------------
# Resource resolution
# ---------------------------------------------------------------------------


def resolve_model_resource(resource: str | Path, settings: Settings) -> Path:
    """Return a local path for the model artifact, downloading it if configured.

    Raises:
        ModelResourceError: If the artifact is missing and cannot be downloaded.
    """
    path = Path(resource)
    if path.is_file():
        return path

    if settings.model_repo_id is None:
        raise ModelResourceError(f"Model file not found: {path}")

    try:
        downloaded = Path(
            hf_hub_download(
                repo_id=settings.model_repo_id,
                filename=path.name,
                local_dir=str(settings.models_dir),
            )
        )
    except Exception as exc:
        raise ModelResourceError(f"Cannot download {path.name} from {settings.model_repo_id}: {exc}") from exc

    logger.info("Downloaded %s to %s", path.name, downloaded)
    return downloaded


# ---------------------------------------------------------------------------
# Handle
# ---------------------------------------------------------------------------


class ModelHandle:
    """Owns one ONNX InferenceSession and its lifecycle."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._session: InferenceSession | None = None
        self._state = ModelState.UNLOADED
        self._pending: asyncio.Task[None] | None = None
        self._loading_resource: Path | None = None

        self._providers = self._build_providers()
        self._session_options = self._build_session_options()

    # -- Public API ---------------------------------------------------------

    @property
    def state(self) -> ModelState:
        return self._state

    @property
    def is_ready(self) -> bool:
        return self._state is ModelState.READY

    async def load(self, resource: str | Path | None = None) -> None:
        """Load the model, or wait for a load already in flight.

        Loading a ready handle is a no-op. A failed load leaves the handle
        unloaded so the next call retries. Asking for a different resource
        while another one is loading is an error.

        Raises:
            ModelResourceError: If the artifact cannot be found or read.
            ModelLoadError: If the engine rejects the artifact, or a different
                resource is already loading.
        """
        if self._state is ModelState.READY:
            logger.debug("Model already loaded")
            return

        requested = Path(resource or self._settings.model_path)
        pending = self._pending
        if pending is None or pending.done():
            self._loading_resource = requested
            pending = asyncio.get_running_loop().create_task(self._load(requested))
            pending.add_done_callback(_mark_retrieved)
            self._pending = pending
        elif requested != self._loading_resource:
            raise ModelLoadError(f"Cannot load {requested}: {self._loading_resource} is already loading")
        try:
            await asyncio.shield(pending)
        finally:
            if pending.done() and self._pending is pending:
                self._pending = None

    def input_descriptor(self) -> TensorDescriptor:
        """Describe input tensor 0."""
        return TensorDescriptor.from_node(self._require_session().get_inputs()[0])

    def output_descriptor(self) -> TensorDescriptor:
        """Describe output tensor 0."""
        return TensorDescriptor.from_node(self._require_session().get_outputs()[0])

    def run(self, input_tensor: NDArray[Any]) -> NDArray[np.generic]:
        """Execute one forward pass and return output tensor 0."""
        session = self._require_session()
        input_name = session.get_inputs()[0].name
        output_name = session.get_outputs()[0].name
        outputs = session.run([output_name], {input_name: input_tensor})
        return outputs[0]  # type: ignore[no-any-return]

    def close(self) -> None:
        """Release the session. Safe to call on an unloaded or closed handle."""
        if self._state in (ModelState.UNLOADED, ModelState.CLOSED):
            return
        self._session = None
        self._state = ModelState.CLOSED
        logger.info("Model session released")

    def __enter__(self) -> ModelHandle:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    # -- Internal -----------------------------------------------------------

    async def _load(self, resource: str | Path) -> None:
        self._state = ModelState.LOADING
        try:
            session = await asyncio.to_thread(self._create_session, resource)
        except BaseException:
            if self._state is ModelState.LOADING:
                self._state = ModelState.UNLOADED
            raise

        if self._state is not ModelState.LOADING:
            # close() ran while the session was being built.
            raise NotReadyError("Model handle was closed while loading")

        self._session = session
        self._state = ModelState.READY
        logger.info("Model loaded successfully from %s", resource)

    def _create_session(self, resource: str | Path) -> InferenceSession:
        model_path = resolve_model_resource(resource, self._settings)
        try:
            return InferenceSession(
                str(model_path),
                sess_options=self._session_options,
                providers=self._providers,
            )
        except Exception as exc:
            raise ModelLoadError(f"Failed to load model {model_path}: {exc}") from exc

    def _require_session(self) -> InferenceSession:
        if self._state is not ModelState.READY or self._session is None:
            raise NotReadyError(f"Model is not ready (state={self._state})")
        return self._session

    def _build_providers(self) -> list[str | tuple[str, dict[str, object]]]:
        device = self._settings.device
        if device == "cuda":
            return [
                (
                    "CUDAExecutionProvider",
                    {
                        "device_id": 0,
                        "gpu_mem_limit": self._settings.gpu_mem_limit,
                        "arena_extend_strategy": "kSameAsRequested",
                    },
                ),
                "CPUExecutionProvider",
            ]
        if device == "openvino":
            return [
                ("OpenVINOExecutionProvider", {"device_type": "CPU"}),
                "CPUExecutionProvider",
            ]
        return ["CPUExecutionProvider"]

    def _build_session_options(self) -> SessionOptions:
        opts = SessionOptions()
        opts.intra_op_num_threads = self._settings.intra_op_threads
        opts.inter_op_num_threads = self._settings.inter_op_threads
        opts.execution_mode = ExecutionMode.ORT_SEQUENTIAL
        opts.enable_mem_pattern = True
        opts.enable_mem_reuse = True

        if self._settings.device == "openvino":
            # OpenVINO does its own graph optimization
            from onnxruntime import GraphOptimizationLevel

            opts.graph_optimization_level = GraphOptimizationLevel.ORT_DISABLE_ALL
        return opts


def _mark_retrieved(task: asyncio.Task[None]) -> None:
    # All awaiters may have been cancelled; a failed load is retried on the next call.
    if not task.cancelled():
        task.exception()
