"""Image classifier: preprocessing, engine invocation, and output mapping.

A Classifier owns a ModelSpec, a PipelineConfig and one inference engine
handle for its whole lifetime. Each ``run_raw`` call allocates its own input
and output tensors; nothing is shared between calls except the engine.

The engine is not assumed to be re-entrant: callers that need concurrent
inference should serialize calls to one Classifier or create one per worker.
"""

from __future__ import annotations

import functools
import logging
import time
from typing import TYPE_CHECKING

import numpy as np

from imgcls.config import get_settings
from imgcls.errors import DimensionMismatch, ImgclsError, InferenceError, ModelLoadError
from imgcls.ml.engine import OnnxInferenceEngine
from imgcls.ml.layout import Layout, LayoutStrategy
from imgcls.ml.model import ModelSpec, OutputSpec, ensure_downloaded
from imgcls.ml.preprocessing import PipelineConfig, PreprocessingPipeline
from imgcls.ml.results import ClassificationResult
from imgcls.ml.transforms import (
    ColorOrder,
    Interpolation,
    Normalize,
    Rescale,
    Resize,
    ResizeWithPadding,
)

if TYPE_CHECKING:
    from collections.abc import Sequence
    from types import TracebackType

    from numpy.typing import NDArray

    from imgcls.config import Settings
    from imgcls.ml.engine import EngineFactory, InferenceEngine
    from imgcls.ml.image import Image
    from imgcls.ml.transforms import ChannelTransform, ImageTransform

logger = logging.getLogger(__name__)


class Classifier:
    """Runs a batch of images through a classification model.

    Args:
        model: Model location and output heads.
        preprocess: How images become the input tensor.
        engine_factory: Creates the inference engine; defaults to ONNX Runtime
            configured from ``settings``.
        settings: Provider, threading and download settings for the default
            engine; read from the environment when omitted.

    Raises:
        ConfigError: If an output's labels do not match its dimension.
        ModelLoadError: If the model cannot be loaded or its tensors bound.
    """

    def __init__(
        self,
        model: ModelSpec,
        preprocess: PipelineConfig,
        *,
        engine_factory: EngineFactory | None = None,
        settings: Settings | None = None,
    ) -> None:
        model.validate()
        self._pipeline = PreprocessingPipeline(preprocess)

        settings = settings or get_settings()
        if engine_factory is None:
            engine_factory = functools.partial(OnnxInferenceEngine.create, settings=settings)

        model_path = ensure_downloaded(model, settings.models_dir)
        try:
            engine = engine_factory(model_path, *_requested_names(model))
        except ImgclsError:
            raise
        except Exception as exc:
            raise ModelLoadError(f"Failed to load model {model_path}: {exc}") from exc
        try:
            self._model = _bind_model(model, engine)
        except Exception:
            engine.close()
            raise
        self._engine: InferenceEngine | None = engine

        logger.info(
            "Classifier ready (input=%s, outputs=%s, layout=%s, size=%d)",
            self._model.input_name,
            [(o.name, o.dimension) for o in self._model.outputs],
            preprocess.layout.layout,
            preprocess.layout.size,
        )

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        engine_factory: EngineFactory | None = None,
    ) -> Classifier:
        """Build the model spec and pipeline described by ``settings``."""
        model = ModelSpec(
            input_name=settings.input_name,
            outputs=tuple(
                OutputSpec(
                    name=o.name,
                    dimension=o.dim,
                    labels=tuple(o.labels) if o.labels is not None else None,
                )
                for o in settings.outputs
            ),
            path=settings.model_path,
            repo_id=settings.model_repo_id,
            filename=settings.model_filename,
            subfolder=settings.model_subfolder,
        )
        return cls(
            model,
            pipeline_config_from_settings(settings),
            engine_factory=engine_factory,
            settings=settings,
        )

    # -- Public API ---------------------------------------------------------

    @property
    def model(self) -> ModelSpec:
        """The model spec with every tensor name and dimension resolved."""
        return self._model

    @property
    def pipeline_config(self) -> PipelineConfig:
        return self._pipeline.config

    @property
    def closed(self) -> bool:
        return self._engine is None

    def run(self, images: Sequence[Image]) -> list[ClassificationResult]:
        """Classify ``images`` and return one result per output head."""
        raw = self.run_raw(images)
        return [
            ClassificationResult(name=output.name, raw=vectors, labels=output.labels)
            for output, vectors in zip(self._model.outputs, raw, strict=True)
        ]

    def run_raw(self, images: Sequence[Image]) -> list[list[NDArray[np.float32]]]:
        """Classify ``images`` and return raw vectors grouped by head, then image.

        Raises:
            EmptyBatch: If ``images`` is empty.
            DimensionMismatch: If the images do not all reach the layout size.
            InferenceError: If the engine fails or the classifier is closed.
        """
        engine = self._require_engine()
        start = time.perf_counter()

        buffer = self._pipeline.preprocess(images)
        layout = self._pipeline.config.layout
        if buffer.height != layout.size or buffer.width != layout.size:
            raise DimensionMismatch(
                f"Images are {buffer.width}x{buffer.height} after transforms, "
                f"but the model input is {layout.size}x{layout.size}"
            )

        batch = buffer.batch
        input_tensor = buffer.data.reshape(layout.shape(batch))
        outputs = {
            output.name: np.zeros((batch, output.dimension), dtype=np.float32)
            for output in self._model.outputs
        }

        try:
            engine.run(self._model.input_name, input_tensor, outputs)
        except ImgclsError:
            raise
        except Exception as exc:
            raise InferenceError(f"Inference failed for batch of {batch}: {exc}") from exc

        logger.debug("Classified %d images in %.1f ms", batch, (time.perf_counter() - start) * 1000)
        return [list(outputs[output.name]) for output in self._model.outputs]

    def close(self) -> None:
        """Release the inference engine. Safe to call more than once."""
        if self._engine is None:
            return
        engine, self._engine = self._engine, None
        engine.close()

    def __enter__(self) -> Classifier:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    # -- Internal -----------------------------------------------------------

    def _require_engine(self) -> InferenceEngine:
        if self._engine is None:
            raise InferenceError("Classifier has been closed")
        return self._engine


def _requested_names(model: ModelSpec) -> tuple[list[str] | None, list[str] | None]:
    inputs = [model.input_name] if model.input_name is not None else None
    names = [o.name for o in model.outputs]
    outputs = names if names and all(n is not None for n in names) else None
    return inputs, outputs


def _bind_model(model: ModelSpec, engine: InferenceEngine) -> ModelSpec:
    """Fill unnamed tensors and unknown dimensions from the loaded model."""
    available_inputs = engine.input_names
    if model.input_name is not None:
        input_name = model.input_name
    elif available_inputs:
        input_name = available_inputs[0]
    else:
        raise ModelLoadError("Model declares no inputs")

    available_outputs = engine.output_names
    specs = model.outputs or tuple(OutputSpec() for _ in available_outputs)
    if not specs:
        raise ModelLoadError("Model declares no outputs")

    # Unnamed heads take the model outputs no named head claims, in order.
    claimed = {spec.name for spec in specs if spec.name is not None}
    unclaimed = iter([name for name in available_outputs if name not in claimed])

    bound: list[OutputSpec] = []
    for position, spec in enumerate(specs):
        name = spec.name
        if name is None:
            name = next(unclaimed, None)
            if name is None:
                raise ModelLoadError(f"Model has no unclaimed output left for head {position}")
        elif name not in available_outputs:
            raise ModelLoadError(f"Model has no output named '{name}'; available: {available_outputs}")

        dimension = spec.dimension
        if dimension is None:
            shape = engine.output_shape(name)
            if len(shape) != 2 or not isinstance(shape[1], int):
                raise ModelLoadError(
                    f"Cannot infer dimension of output '{name}' from shape {shape}; set it explicitly"
                )
            dimension = shape[1]

        output = OutputSpec(name=name, dimension=dimension, labels=spec.labels)
        output.validate()
        bound.append(output)

    resolved = model.with_bindings(input_name, bound)
    resolved.validate()
    return resolved


def pipeline_config_from_settings(settings: Settings) -> PipelineConfig:
    """Translate flat preprocessing settings into a PipelineConfig."""
    size = settings.image_size

    image_transforms: list[ImageTransform] = []
    if settings.padding:
        padding_interpolation = Interpolation(settings.padding_interpolation)
        image_transforms.append(ResizeWithPadding(size, settings.padding_color, padding_interpolation))
    else:
        image_transforms.append(Resize(size, Interpolation(settings.interpolation)))

    channel_transforms: list[ChannelTransform] = []
    if settings.rescale:
        channel_transforms.append(Rescale())
    if settings.normalize_mean is not None and settings.normalize_std is not None:
        channel_transforms.append(Normalize(settings.normalize_mean, settings.normalize_std))

    return PipelineConfig(
        layout=LayoutStrategy(Layout.parse(settings.layout), size),
        image_transforms=tuple(image_transforms),
        channel_transforms=tuple(channel_transforms),
        color_order=ColorOrder(settings.color_order),
        workers=settings.preprocess_workers,
    )
