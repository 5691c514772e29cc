"""Environment-based configuration for imgcls."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ProviderSettings(BaseModel):
    """An ONNX Runtime execution provider toggle plus its provider options."""

    enabled: bool = False
    options: dict[str, str] = Field(default_factory=dict)


class OutputSettings(BaseModel):
    """One model output head. Unset name/dim are discovered from the model."""

    name: str | None = None
    dim: int | None = Field(default=None, ge=1)
    labels: list[str] | None = None


class Settings(BaseSettings):
    """Application settings loaded from IMGCLS_* environment variables.

    Nested values use ``__`` (``IMGCLS_CUDA__ENABLED=true``); lists and tuples
    are given as JSON (``IMGCLS_OUTPUTS='[{"name": "output", "dim": 2}]'``).
    """

    model_config = SettingsConfigDict(
        env_prefix="IMGCLS_",
        env_nested_delimiter="__",
        case_sensitive=False,
        protected_namespaces=(),
    )

    # Authentication (None = disabled)
    api_key: str | None = None

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    # Model location: a local file, or a file in a Hugging Face Hub repo
    model_path: str | None = None
    model_repo_id: str | None = None
    model_filename: str = "model.onnx"
    model_subfolder: str | None = None
    models_dir: str = "models"

    # Model tensors (None = discover from the model file)
    input_name: str | None = None
    outputs: list[OutputSettings] = Field(default_factory=list)

    # Preprocessing
    layout: str = "bchw"
    image_size: int = Field(default=384, ge=1)
    interpolation: Literal["nearest", "bilinear", "bicubic", "area", "lanczos"] = "bilinear"
    padding: bool = False
    padding_interpolation: Literal["nearest", "bilinear", "bicubic", "area", "lanczos"] = "bicubic"
    padding_color: tuple[int, int, int] = (0, 0, 0)
    color_order: Literal["rgb", "bgr"] = "rgb"
    rescale: bool = True
    normalize_mean: float | None = 0.5
    normalize_std: float | None = 0.5
    preprocess_workers: int = Field(default=1, ge=1)

    # ONNX Runtime providers (CPU is always appended last)
    tensorrt: ProviderSettings = Field(default_factory=ProviderSettings)
    cuda: ProviderSettings = Field(default_factory=ProviderSettings)
    coreml: ProviderSettings = Field(default_factory=ProviderSettings)
    directml: ProviderSettings = Field(default_factory=ProviderSettings)
    openvino: ProviderSettings = Field(default_factory=ProviderSettings)

    # ONNX Runtime session
    intra_op_threads: int = Field(default=0, ge=0)
    inter_op_threads: int = Field(default=0, ge=0)
    cpu_mem_arena: bool | None = None
    mem_pattern: bool | None = None

    # Concurrency
    max_concurrent: int = Field(default=1, ge=1)

    @field_validator("log_level", mode="before")
    @classmethod
    def _upper_log_level(cls, value: object) -> object:
        return value.upper() if isinstance(value, str) else value

    @field_validator("padding_color")
    @classmethod
    def _check_padding_color(cls, value: tuple[int, int, int]) -> tuple[int, int, int]:
        if any(not 0 <= c <= 255 for c in value):
            raise ValueError("padding_color values must be within 0-255")
        return value


def get_settings() -> Settings:
    """Create and return application settings."""
    return Settings()
