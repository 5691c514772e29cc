"""Inference engine boundary and its ONNX Runtime implementation.

The classifier only needs an engine that reports its tensor names and fills
caller-allocated output arrays. ``OnnxInferenceEngine`` does this with an IO
binding per call, so output tensors are written in place and the binding is
cleared on every exit path.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Protocol

import numpy as np
from onnxruntime import (
    ExecutionMode,
    InferenceSession,
    SessionOptions,
    get_available_providers,
)

from imgcls.errors import InferenceError, ModelLoadError

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence
    from pathlib import Path

    from numpy.typing import NDArray

    from imgcls.config import Settings

logger = logging.getLogger(__name__)

ProviderEntry = str | tuple[str, dict[str, str]]


# ---------------------------------------------------------------------------
# Protocols (implemented by OnnxInferenceEngine and by test stubs)
# ---------------------------------------------------------------------------


class InferenceEngine(Protocol):
    """A loaded model bound to named input and output tensors."""

    @property
    def input_names(self) -> list[str]:
        """Names of the bound input tensors."""
        ...

    @property
    def output_names(self) -> list[str]:
        """Names of the bound output tensors."""
        ...

    def output_shape(self, name: str) -> list[int | str | None]:
        """Declared shape of an output; symbolic or unknown dims are str/None."""
        ...

    def run(
        self,
        input_name: str,
        input_tensor: NDArray[np.float32],
        outputs: Mapping[str, NDArray[np.float32]],
    ) -> None:
        """Run the model, writing each output into the matching preallocated array."""
        ...

    def close(self) -> None:
        """Release the native session."""
        ...


class EngineFactory(Protocol):
    def __call__(
        self,
        model_path: Path,
        input_names: Sequence[str] | None,
        output_names: Sequence[str] | None,
    ) -> InferenceEngine: ...


# ---------------------------------------------------------------------------
# ONNX Runtime
# ---------------------------------------------------------------------------

_PROVIDER_NAMES: dict[str, str] = {
    "tensorrt": "TensorrtExecutionProvider",
    "cuda": "CUDAExecutionProvider",
    "coreml": "CoreMLExecutionProvider",
    "directml": "DmlExecutionProvider",
    "openvino": "OpenVINOExecutionProvider",
}


def build_providers(settings: Settings) -> list[ProviderEntry]:
    """Return the provider list in priority order, always ending with CPU."""
    providers: list[ProviderEntry] = []
    for key, provider_name in _PROVIDER_NAMES.items():
        conf = getattr(settings, key)
        if not conf.enabled:
            continue
        providers.append((provider_name, dict(conf.options)) if conf.options else provider_name)
    providers.append("CPUExecutionProvider")
    return providers


def build_session_options(settings: Settings) -> SessionOptions:
    opts = SessionOptions()
    opts.intra_op_num_threads = settings.intra_op_threads
    opts.inter_op_num_threads = settings.inter_op_threads
    opts.execution_mode = ExecutionMode.ORT_SEQUENTIAL

    if settings.cpu_mem_arena is not None:
        opts.enable_cpu_mem_arena = settings.cpu_mem_arena
    if settings.mem_pattern is not None:
        opts.enable_mem_pattern = settings.mem_pattern
    elif settings.directml.enabled:
        # DirectML does not support memory pattern optimizations
        opts.enable_mem_pattern = False
    return opts


def _provider_name(entry: ProviderEntry) -> str:
    return entry if isinstance(entry, str) else entry[0]


def _bind(kind: str, requested: Sequence[str] | None, available: list[str]) -> list[str]:
    if requested is None:
        return list(available)
    missing = [name for name in requested if name not in available]
    if missing:
        raise ModelLoadError(f"Model has no {kind} named {missing}; available: {available}")
    return list(requested)


class OnnxInferenceEngine:
    """An ONNX Runtime InferenceSession bound to named inputs and outputs."""

    def __init__(
        self,
        session: InferenceSession,
        input_names: Sequence[str] | None = None,
        output_names: Sequence[str] | None = None,
    ) -> None:
        self._session: InferenceSession | None = session
        self._input_names = _bind("input", input_names, [i.name for i in session.get_inputs()])
        self._output_names = _bind("output", output_names, [o.name for o in session.get_outputs()])
        self._output_shapes: dict[str, list[int | str | None]] = {
            o.name: list(o.shape) for o in session.get_outputs()
        }

    @classmethod
    def create(
        cls,
        model_path: Path,
        input_names: Sequence[str] | None = None,
        output_names: Sequence[str] | None = None,
        *,
        settings: Settings,
    ) -> OnnxInferenceEngine:
        """Load ``model_path`` with the providers and threading from ``settings``.

        Raises:
            ModelLoadError: If the model cannot be parsed or a name cannot be bound.
        """
        providers = build_providers(settings)
        available = set(get_available_providers())
        for entry in providers:
            if _provider_name(entry) not in available:
                logger.warning("Execution provider %s is not available in this build", _provider_name(entry))

        try:
            session = InferenceSession(
                str(model_path),
                sess_options=build_session_options(settings),
                providers=providers,
            )
        except Exception as exc:
            raise ModelLoadError(f"Failed to load model {model_path}: {exc}") from exc

        engine = cls(session, input_names, output_names)
        logger.info(
            "Loaded %s (inputs=%s, outputs=%s, providers=%s)",
            model_path,
            engine.input_names,
            engine.output_names,
            session.get_providers(),
        )
        return engine

    @property
    def input_names(self) -> list[str]:
        return list(self._input_names)

    @property
    def output_names(self) -> list[str]:
        return list(self._output_names)

    @property
    def providers(self) -> list[str]:
        """Providers the session actually runs on."""
        return self._require_session().get_providers()

    def output_shape(self, name: str) -> list[int | str | None]:
        return list(self._output_shapes[name])

    def run(
        self,
        input_name: str,
        input_tensor: NDArray[np.float32],
        outputs: Mapping[str, NDArray[np.float32]],
    ) -> None:
        session = self._require_session()
        binding = session.io_binding()
        try:
            binding.bind_cpu_input(input_name, input_tensor)
            for name, array in outputs.items():
                binding.bind_output(
                    name,
                    device_type="cpu",
                    device_id=0,
                    element_type=np.float32,
                    shape=list(array.shape),
                    buffer_ptr=array.ctypes.data,
                )
            session.run_with_iobinding(binding)
        except Exception as exc:
            raise InferenceError(f"Inference failed: {exc}") from exc
        finally:
            binding.clear_binding_inputs()
            binding.clear_binding_outputs()

    def close(self) -> None:
        if self._session is None:
            return
        self._session = None
        logger.info("Released inference session")

    def _require_session(self) -> InferenceSession:
        if self._session is None:
            raise InferenceError("Inference session has been closed")
        return self._session
