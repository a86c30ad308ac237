"""Inference engine: a single ONNX Runtime session over the mapped model.

The engine is built once from a ``ModelHandle`` and exposes a synchronous
``run`` over a fixed-shape float32 tensor. Session calls are serialized with
a lock; the session is not used concurrently.
"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING

import numpy as np
from onnxruntime import GraphOptimizationLevel, InferenceSession, SessionOptions
from onnxruntime.capi.onnxruntime_pybind11_state import ExecutionMode

from classifyx.errors import InferenceError, ModelIOError, ModelLoadError, ModelNotFoundError, ShapeMismatchError

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from classifyx.config import Settings
    from classifyx.ml.model_loader import ModelHandle, ModelLoader

logger = logging.getLogger(__name__)

Dim = int | str | None

_FLOAT_TENSOR = "tensor(float)"


def build_providers(settings: Settings) -> list[str | tuple[str, dict[str, object]]]:
    """Return the ONNX Runtime execution providers for the configured device."""
    device = settings.device
    if device == "cuda":
        return [
            (
                "CUDAExecutionProvider",
                {
                    "device_id": 0,
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


def build_session_options(settings: Settings) -> SessionOptions:
    """Return session options tuned for one-request-at-a-time inference."""
    opts = SessionOptions()
    opts.intra_op_num_threads = settings.intra_op_threads
    opts.inter_op_num_threads = settings.inter_op_threads
    opts.execution_mode = ExecutionMode.ORT_SEQUENTIAL
    opts.enable_mem_pattern = True
    opts.enable_mem_reuse = True

    if settings.device == "openvino":
        # OpenVINO does its own graph optimization
        opts.graph_optimization_level = GraphOptimizationLevel.ORT_DISABLE_ALL
    return opts


def _dims_match(expected: list[Dim], actual: tuple[int, ...]) -> bool:
    if len(expected) != len(actual):
        return False
    # Symbolic or unknown dimensions accept any size.
    return all(not isinstance(want, int) or want == got for want, got in zip(expected, actual, strict=True))


class InferenceEngine:
    """Runs the classification model on preprocessed input tensors."""

    def __init__(self, handle: ModelHandle, settings: Settings) -> None:
        if handle.closed:
            raise ModelLoadError(f"Model handle for {handle.name} is closed")

        try:
            # The Python binding accepts a path or bytes; the mapped region is
            # handed over once here and not retained by the engine.
            self._session = InferenceSession(
                handle.region[:],
                sess_options=build_session_options(settings),
                providers=build_providers(settings),
            )
        except Exception as exc:  # noqa: BLE001
            raise ModelLoadError(f"Cannot create inference session for {handle.name}: {exc}") from exc

        inputs = self._session.get_inputs()
        outputs = self._session.get_outputs()
        if len(inputs) != 1 or not outputs:
            raise ModelLoadError(
                f"Model {handle.name} must have exactly one input and at least one output "
                f"(got {len(inputs)} inputs, {len(outputs)} outputs)"
            )

        self._model_name = handle.name
        self._input_name: str = inputs[0].name
        self._input_shape: list[Dim] = list(inputs[0].shape)
        self._input_type: str = inputs[0].type
        self._output_shape: list[Dim] = list(outputs[0].shape)
        self._lock = threading.Lock()

        logger.info(
            "Inference engine ready for %s (input=%s %s, output=%s)",
            self._model_name,
            self._input_name,
            self._input_shape,
            self._output_shape,
        )

    @classmethod
    def from_loader(cls, loader: ModelLoader, settings: Settings) -> InferenceEngine:
        """Load the model artifact and build the engine.

        Raises:
            ModelLoadError: If the artifact is missing, unreadable, or not a valid model.
        """
        try:
            handle = loader.load()
        except (ModelNotFoundError, ModelIOError) as exc:
            raise ModelLoadError(str(exc)) from exc
        return cls(handle, settings)

    @property
    def model_name(self) -> str:
        return self._model_name

    @property
    def input_name(self) -> str:
        return self._input_name

    @property
    def input_shape(self) -> list[Dim]:
        return list(self._input_shape)

    @property
    def output_shape(self) -> list[Dim]:
        return list(self._output_shape)

    @property
    def num_classes(self) -> int | None:
        """Class count from the output signature, if it is static."""
        last = self._output_shape[-1] if self._output_shape else None
        return last if isinstance(last, int) else None

    def run(self, tensor: NDArray[np.float32]) -> NDArray[np.float32]:
        """Run the model on a single input tensor and return the first output.

        Raises:
            ShapeMismatchError: If the tensor shape or dtype does not match the model input.
            InferenceError: If the runtime fails.
        """
        if not isinstance(tensor, np.ndarray) or tensor.dtype != np.float32 or self._input_type != _FLOAT_TENSOR:
            dtype = getattr(tensor, "dtype", type(tensor).__name__)
            raise ShapeMismatchError(f"Expected float32 input for {self._input_type}, got {dtype}")
        if not _dims_match(self._input_shape, tensor.shape):
            raise ShapeMismatchError(f"Expected input shape {self._input_shape}, got {list(tensor.shape)}")

        with self._lock:
            try:
                outputs = self._session.run(None, {self._input_name: tensor})
            except Exception as exc:  # noqa: BLE001
                raise InferenceError(f"Inference failed for {self._model_name}: {exc}") from exc

        return np.asarray(outputs[0], dtype=np.float32)
