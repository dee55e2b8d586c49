"""Environment-based configuration for LeafCheck."""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from LEAFCHECK_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="LEAFCHECK_",
        case_sensitive=False,
        protected_namespaces=("settings_",),
    )

    # Server
    host: str = "0.0.0.0"  # noqa: S104
    port: int = 8082
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    # Authentication (None = disabled)
    api_key: str | None = None

    # ML device
    device: Literal["cpu", "cuda", "openvino"] = "cpu"

    # Model and label resources
    model_path: Path = Path("assets/model/model_unquant.onnx")
    labels_path: Path = Path("assets/model/labels.txt")
    model_repo_id: str | None = None
    models_dir: Path = Path("models")
    preload_model: bool = True

    # ONNX Runtime threading
    intra_op_threads: int = Field(default=0, ge=0)
    inter_op_threads: int = Field(default=1, ge=1)
    gpu_mem_limit: int = Field(default=2_147_483_648, ge=0)

    # Concurrency (one worker: inference is never run in parallel)
    max_concurrent: int = Field(default=1, ge=1)

    # Input limits
    max_image_pixels: int = Field(default=16_777_216, ge=1)
    max_file_size: int = Field(default=20_971_520, ge=1)

    # Results above this top confidence are reported as confident
    confidence_threshold: float = Field(default=0.8, ge=0.0)

    # Image acquisition
    camera_dir: Path | None = None
    gallery_dir: Path | None = None


def get_settings() -> Settings:
    """Create and return application settings."""
    return Settings()
