"""Environment-based configuration for ClassifyX."""

from __future__ import annotations

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from CLASSIFYX_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="CLASSIFYX_",
        case_sensitive=False,
        protected_namespaces=("settings_",),
    )

    # Server
    host: str = "0.0.0.0"  # noqa: S104
    port: int = 8082
    log_level: str = "INFO"

    # Authentication (None = disabled)
    api_key: str | None = None

    # ML device
    device: Literal["cpu", "cuda", "openvino"] = "cpu"

    # ONNX Runtime threading
    intra_op_threads: int = Field(default=0, ge=0)
    inter_op_threads: int = Field(default=1, ge=1)

    # Model artifact
    models_dir: str = "models"
    model_filename: str = "classifier.onnx"
    model_repo_id: str | None = None
    labels_filename: str | None = None
    eager_load: bool = False

    # Model input
    input_width: int = Field(default=224, ge=1)
    input_height: int = Field(default=224, ge=1)
    pixel_scale: Literal["unit", "raw", "symmetric"] = "unit"

    # Input limits
    max_image_pixels: int = Field(default=16_777_216, ge=1)
    max_file_size: int = Field(default=209_715_200, ge=1)

    # Request handling
    request_policy: Literal["supersede", "reject", "concurrent"] = "supersede"
    max_workers: int = Field(default=2, ge=1)


def get_settings() -> Settings:
    """Create and return application settings."""
    return Settings()
