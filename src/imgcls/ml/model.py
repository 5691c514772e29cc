"""Model description: where the model lives and which tensors it reads and writes."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from pathlib import Path

from huggingface_hub import hf_hub_download

from imgcls.errors import ConfigError, ModelLoadError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OutputSpec:
    """One output head of the model.

    ``name`` and ``dimension`` may be None to be filled in from the model file.
    When ``labels`` is given its length must equal ``dimension``.
    """

    name: str | None = None
    dimension: int | None = None
    labels: tuple[str, ...] | None = None

    def __post_init__(self) -> None:
        if self.labels is not None:
            object.__setattr__(self, "labels", tuple(self.labels))
        if self.dimension is not None and self.dimension < 1:
            raise ConfigError(f"Output '{self.name}' dimension must be positive, got {self.dimension}")

    def validate(self) -> None:
        """Check that the label list, if any, matches the dimension."""
        if self.labels is None or self.dimension is None:
            return
        if len(self.labels) != self.dimension:
            raise ConfigError(
                f"Output '{self.name}' has {len(self.labels)} labels but dimension {self.dimension}"
            )


@dataclass(frozen=True)
class ModelSpec:
    """Static description of a classification model.

    The model file is either ``path`` or ``filename`` inside the Hugging Face
    Hub repository ``repo_id``. Leaving ``input_name`` unset binds the model's
    first input; leaving ``outputs`` empty binds every model output.
    """

    input_name: str | None = None
    outputs: tuple[OutputSpec, ...] = ()
    path: str | None = None
    repo_id: str | None = None
    filename: str = "model.onnx"
    subfolder: str | None = None
    revision: str | None = field(default=None, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "outputs", tuple(self.outputs))

    def validate(self) -> None:
        for output in self.outputs:
            output.validate()
        names = [o.name for o in self.outputs if o.name is not None]
        if len(names) != len(set(names)):
            raise ConfigError(f"Duplicate output names: {names}")

    def with_bindings(self, input_name: str, outputs: list[OutputSpec]) -> ModelSpec:
        """Return a copy with every tensor name and dimension filled in."""
        return replace(self, input_name=input_name, outputs=tuple(outputs))


def ensure_downloaded(spec: ModelSpec, models_dir: str | Path = "models") -> Path:
    """Return a local path to the model, downloading it from the Hub if needed.

    Raises:
        ConfigError: If the model spec names neither a path nor a repository.
        ModelLoadError: If the local file is missing or the download fails.
    """
    if spec.path is not None:
        path = Path(spec.path)
        if not path.is_file():
            raise ModelLoadError(f"Model file not found: {path}")
        return path

    if spec.repo_id is None:
        raise ConfigError("Model spec needs either a path or a repo_id")

    models_dir = Path(models_dir)
    models_dir.mkdir(parents=True, exist_ok=True)
    try:
        downloaded = Path(
            hf_hub_download(
                repo_id=spec.repo_id,
                filename=spec.filename,
                subfolder=spec.subfolder,
                revision=spec.revision,
                local_dir=str(models_dir),
            )
        )
    except Exception as exc:
        raise ModelLoadError(f"Failed to download {spec.repo_id}/{spec.filename}: {exc}") from exc

    logger.info("Downloaded %s/%s to %s", spec.repo_id, spec.filename, downloaded)
    return downloaded
