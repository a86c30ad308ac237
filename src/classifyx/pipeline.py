"""Pipeline orchestrator: preprocess -> infer -> interpret, off the caller's thread.

Architecture:
    classify(ref) -> publish RUNNING -> ThreadPoolExecutor -> publish COMPLETED | FAILED

``classify`` returns immediately with a ``PendingClassification``; the outcome is delivered
through the ``StateStore``. How overlapping requests are handled depends on
the configured request policy:

    supersede   every request is accepted; only the newest one may publish
    reject      a request arriving while another is running is refused
    concurrent  every request is accepted; the last one to finish wins
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

from classifyx.errors import ClassifyXError, EngineUnavailableError, RequestRejectedError
from classifyx.ml.image_classifier import ClassificationResult, interpret, load_labels
from classifyx.ml.inference import InferenceEngine
from classifyx.ml.model_loader import ModelLoader
from classifyx.ml.preprocessing import ImagePreprocessor, ImageReference
from classifyx.state import PipelineStatus, StateStore

if TYPE_CHECKING:
    from collections.abc import Callable

    import numpy as np
    from numpy.typing import NDArray

    from classifyx.config import Settings

logger = logging.getLogger(__name__)


class ClassificationEngine(Protocol):
    """What the orchestrator needs from an inference engine."""

    def run(self, tensor: NDArray[np.float32]) -> NDArray[np.float32]:
        """Run the model on one preprocessed tensor."""
        ...


@dataclass(frozen=True)
class InitResult:
    """Outcome of engine initialization."""

    ok: bool
    error: str | None = None


@dataclass(frozen=True)
class PendingClassification:
    """A dispatched request. ``future`` resolves to the result, or ``None`` on failure."""

    request_id: int
    future: Future[ClassificationResult | None]


class PipelineOrchestrator:
    """Coordinates classification requests and publishes their outcomes."""

    def __init__(
        self,
        settings: Settings,
        *,
        loader: ModelLoader | None = None,
        engine_factory: Callable[[], ClassificationEngine] | None = None,
        preprocessor: Callable[[ImageReference], NDArray[np.float32]] | None = None,
        store: StateStore | None = None,
    ) -> None:
        self._settings = settings
        self._policy = settings.request_policy
        self._loader = loader if loader is not None else ModelLoader(settings)
        self._engine_factory = engine_factory or (lambda: InferenceEngine.from_loader(self._loader, settings))
        self._preprocess = preprocessor if preprocessor is not None else ImagePreprocessor(settings)
        self.state = store if store is not None else StateStore()

        self._executor = ThreadPoolExecutor(
            max_workers=settings.max_workers,
            thread_name_prefix="classify",
        )

        self._init_lock = threading.Lock()
        self._init_result: InitResult | None = None
        self._engine: ClassificationEngine | None = None
        self._labels: list[str] | None = None

        # Guards request ids and the in-flight count; observers are notified after release.
        self._request_lock = threading.Lock()
        self._last_request_id = 0
        self._in_flight = 0

    # -- Lifecycle ----------------------------------------------------------

    def initialize(self) -> InitResult:
        """Build the inference engine once; later calls return the cached outcome."""
        with self._init_lock:
            if self._init_result is not None:
                return self._init_result

            try:
                self._engine = self._engine_factory()
            except ClassifyXError as exc:
                logger.error("Inference engine unavailable: %s", exc)
                self._init_result = InitResult(ok=False, error=str(exc))
                return self._init_result

            self._labels = self._load_labels()
            self._init_result = InitResult(ok=True)
            logger.info("Classification pipeline initialized (policy=%s)", self._policy)
            return self._init_result

    def shutdown(self) -> None:
        """Wait for running requests, then release the model mapping."""
        self._executor.shutdown(wait=True)
        self._loader.close()

    # -- Requests -----------------------------------------------------------

    def classify(self, reference: ImageReference | None) -> PendingClassification | None:
        """Dispatch a classification request to the background executor.

        Returns ``None`` when no image was selected. Failures inside the run
        are published as ``failed`` and never raised from the future.

        Raises:
            EngineUnavailableError: If the model could not be loaded, or the
                orchestrator has been shut down.
            RequestRejectedError: If the ``reject`` policy is active and a request is running.
        """
        if reference is None:
            logger.debug("No image selected, nothing to classify")
            return None

        init = self.initialize()
        if not init.ok:
            raise EngineUnavailableError(f"Classification unavailable: {init.error}")

        with self._request_lock:
            if self._policy == "reject" and self._in_flight > 0:
                raise RequestRejectedError("A classification is already running")
            self._last_request_id += 1
            request_id = self._last_request_id
            self._in_flight += 1
            snapshot = self.state.swap(PipelineStatus.RUNNING, request_id=request_id)
        self.state.notify(snapshot)

        logger.info("Classification %d dispatched for %s", request_id, reference.uri)
        try:
            future = self._executor.submit(self._run, request_id, reference)
        except RuntimeError as exc:
            # Executor already shut down.
            logger.error("Classification %d not dispatched: %s", request_id, exc)
            self._finish(request_id, PipelineStatus.FAILED, error="Pipeline is shut down")
            raise EngineUnavailableError("Classification unavailable: pipeline is shut down") from exc
        return PendingClassification(request_id=request_id, future=future)

    @property
    def in_flight(self) -> int:
        """Number of dispatched requests that have not finished."""
        with self._request_lock:
            return self._in_flight

    @property
    def engine(self) -> ClassificationEngine | None:
        return self._engine

    @property
    def labels(self) -> list[str] | None:
        return self._labels

    @property
    def init_result(self) -> InitResult | None:
        return self._init_result

    # -- Internal -----------------------------------------------------------

    def _run(self, request_id: int, reference: ImageReference) -> ClassificationResult | None:
        try:
            engine = self._engine
            if engine is None:
                raise EngineUnavailableError("Inference engine is not initialized")
            tensor = self._preprocess(reference)
            output = engine.run(tensor)
            result = interpret(output, self._labels)
        except Exception as exc:  # noqa: BLE001
            logger.exception("Classification %d failed for %s", request_id, reference.uri)
            self._finish(request_id, PipelineStatus.FAILED, error=str(exc) or type(exc).__name__)
            return None

        logger.info(
            "Classification %d: class=%d score=%.4f",
            request_id,
            result.predicted_class_index,
            result.score,
        )
        self._finish(request_id, PipelineStatus.COMPLETED, result=result)
        return result

    def _finish(
        self,
        request_id: int,
        status: PipelineStatus,
        *,
        result: ClassificationResult | None = None,
        error: str | None = None,
    ) -> None:
        with self._request_lock:
            self._in_flight -= 1
            if self._policy == "supersede" and request_id != self._last_request_id:
                logger.debug("Classification %d superseded by %d, not published", request_id, self._last_request_id)
                return
            snapshot = self.state.swap(status, request_id=request_id, result=result, error=error)
        self.state.notify(snapshot)

    def _load_labels(self) -> list[str] | None:
        filename = self._settings.labels_filename
        if filename is None:
            return None
        path = Path(self._settings.models_dir) / filename
        try:
            labels = load_labels(path)
        except (OSError, UnicodeDecodeError) as exc:
            logger.warning("Labels file %s unreadable, reporting class indices only: %s", path, exc)
            return None
        logger.info("Loaded %d labels from %s", len(labels), path)
        return labels
