"""Shared fixtures: a stub inference engine and small image helpers."""

from __future__ import annotations

from typing import TYPE_CHECKING

import cv2
import numpy as np
import pytest

from imgcls.config import Settings
from imgcls.errors import ModelLoadError
from imgcls.ml.image import Image

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence
    from pathlib import Path

    from numpy.typing import NDArray


class StubEngine:
    """In-memory stand-in for an ONNX session.

    ``results`` maps each output name to the rows it returns, one per image.
    """

    def __init__(
        self,
        results: Mapping[str, Sequence[Sequence[float]]],
        *,
        inputs: Sequence[str] = ("input",),
        output_shapes: Mapping[str, list[int | str | None]] | None = None,
        error: Exception | None = None,
    ) -> None:
        self.results = {name: np.asarray(rows, dtype=np.float32) for name, rows in results.items()}
        self.available_inputs = list(inputs)
        self.available_outputs = list(results)
        self.output_shapes = dict(output_shapes or {name: ["batch", rows.shape[1]] for name, rows in self.results.items()})
        self.error = error
        self.requested: tuple[Sequence[str] | None, Sequence[str] | None] | None = None
        self.model_path: Path | None = None
        self.calls: list[tuple[str, NDArray[np.float32], dict[str, tuple[int, ...]]]] = []
        self.close_calls = 0

    def factory(
        self,
        model_path: Path,
        input_names: Sequence[str] | None,
        output_names: Sequence[str] | None,
    ) -> StubEngine:
        self.model_path = model_path
        self.requested = (input_names, output_names)
        for name in input_names or ():
            if name not in self.available_inputs:
                raise ModelLoadError(f"no input {name}")
        for name in output_names or ():
            if name not in self.available_outputs:
                raise ModelLoadError(f"no output {name}")
        return self

    @property
    def input_names(self) -> list[str]:
        requested = self.requested[0] if self.requested else None
        return list(requested) if requested is not None else list(self.available_inputs)

    @property
    def output_names(self) -> list[str]:
        requested = self.requested[1] if self.requested else None
        return list(requested) if requested is not None else list(self.available_outputs)

    def output_shape(self, name: str) -> list[int | str | None]:
        return list(self.output_shapes[name])

    def run(
        self,
        input_name: str,
        input_tensor: NDArray[np.float32],
        outputs: Mapping[str, NDArray[np.float32]],
    ) -> None:
        self.calls.append((input_name, input_tensor.copy(), {k: v.shape for k, v in outputs.items()}))
        if self.error is not None:
            raise self.error
        for name, array in outputs.items():
            array[...] = self.results[name][: array.shape[0]]

    def close(self) -> None:
        self.close_calls += 1


def solid_image(width: int, height: int, rgb: tuple[int, int, int] = (10, 20, 30)) -> Image:
    array = np.empty((height, width, 3), dtype=np.uint8)
    array[:, :] = rgb
    return Image.from_array(array)


def random_image(width: int, height: int, seed: int = 0) -> Image:
    rng = np.random.default_rng(seed)
    return Image.from_array(rng.integers(0, 256, size=(height, width, 3), dtype=np.uint8))


def png_bytes(rgb_array: NDArray[np.uint8]) -> bytes:
    ok, encoded = cv2.imencode(".png", cv2.cvtColor(rgb_array, cv2.COLOR_RGB2BGR))
    assert ok
    return encoded.tobytes()


@pytest.fixture()
def model_file(tmp_path: Path) -> Path:
    path = tmp_path / "model.onnx"
    path.write_bytes(b"onnx")
    return path


@pytest.fixture()
def settings(tmp_path: Path, model_file: Path) -> Settings:
    return Settings(models_dir=str(tmp_path / "models"), model_path=str(model_file))
