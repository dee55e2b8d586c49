"""Shared fixtures: settings, fake ONNX sessions and in-memory images."""

from __future__ import annotations

import io
from pathlib import Path
from types import SimpleNamespace
from typing import TYPE_CHECKING
from unittest.mock import MagicMock, patch

import numpy as np
import pytest
from PIL import Image

from leafcheck.config import Settings

if TYPE_CHECKING:
    from collections.abc import Iterator, Sequence


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def make_settings(**overrides: object) -> Settings:
    defaults: dict[str, object] = {
        "device": "cpu",
        "model_path": "/tmp/leafcheck_test_models/model.onnx",
        "labels_path": "/tmp/leafcheck_test_models/labels.txt",
        "models_dir": "/tmp/leafcheck_test_models",
        "intra_op_threads": 0,
        "inter_op_threads": 1,
        "max_concurrent": 1,
    }
    defaults.update(overrides)
    return Settings(**defaults)  # type: ignore[arg-type]


def make_node(name: str, shape: Sequence[int | str | None], onnx_type: str = "tensor(float)") -> SimpleNamespace:
    """Stand-in for an onnxruntime NodeArg."""
    return SimpleNamespace(name=name, shape=list(shape), type=onnx_type)


def make_session(
    input_shape: Sequence[int | str | None] = (1, 96, 96, 3),
    output_shape: Sequence[int | str | None] = (1, 3),
    output: Sequence[float] | np.ndarray = (0.05, 0.9, 0.05),
    input_type: str = "tensor(float)",
    output_type: str = "tensor(float)",
) -> MagicMock:
    """Build a mock InferenceSession whose run() returns ``output``."""
    out_dtype = np.uint8 if output_type == "tensor(uint8)" else np.float32
    out_array = np.asarray(output, dtype=out_dtype)
    if len(output_shape) == 2:
        out_array = out_array.reshape(1, -1)

    session = MagicMock()
    session.get_inputs.return_value = [make_node("input", input_shape, input_type)]
    session.get_outputs.return_value = [make_node("output", output_shape, output_type)]
    session.run.return_value = [out_array]
    return session


def image_bytes(width: int = 100, height: int = 100, color: tuple[int, int, int] = (40, 160, 60)) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", (width, height), color).save(buffer, format="PNG")
    return buffer.getvalue()


class StaticPicker:
    """Picker that always returns the same path and records requests."""

    def __init__(self, path: Path | None) -> None:
        self.path = path
        self.requests: list[str] = []

    async def pick_image(self, source: str) -> Path | None:
        self.requests.append(source)
        return self.path


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def model_file(tmp_path: Path) -> Path:
    path = tmp_path / "model.onnx"
    path.write_bytes(b"onnx")
    return path


@pytest.fixture()
def labels_file(tmp_path: Path) -> Path:
    path = tmp_path / "labels.txt"
    path.write_text("Blight;\nHealthy;\nRust;\n", encoding="utf-8")
    return path


@pytest.fixture()
def settings(model_file: Path, labels_file: Path) -> Settings:
    return make_settings(model_path=str(model_file), labels_path=str(labels_file), models_dir=str(model_file.parent))


@pytest.fixture()
def photo(tmp_path: Path) -> Path:
    path = tmp_path / "leaf.png"
    path.write_bytes(image_bytes())
    return path


@pytest.fixture()
def session() -> MagicMock:
    return make_session()


@pytest.fixture()
def session_cls(session: MagicMock) -> Iterator[MagicMock]:
    """Patch InferenceSession so every load returns ``session``."""
    with patch("leafcheck.ml.model_handle.InferenceSession", return_value=session) as mock_cls:
        yield mock_cls
