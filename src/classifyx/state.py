"""Published pipeline state: a single-slot, versioned snapshot.

Each publish swaps in a new immutable ``PipelineState`` under a lock and bumps
its version, so readers can tell whether what they hold is stale. Observers
are notified with every published snapshot, outside the store lock.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from enum import StrEnum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from classifyx.ml.image_classifier import ClassificationResult

logger = logging.getLogger(__name__)


class PipelineStatus(StrEnum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class PipelineState:
    """Most recent outcome of the classification pipeline."""

    status: PipelineStatus = PipelineStatus.IDLE
    result: ClassificationResult | None = None
    error: str | None = None
    request_id: int | None = None
    version: int = 0
    updated_at: float = field(default_factory=time.time)


Observer = Callable[[PipelineState], None]


class StateStore:
    """Holds the current ``PipelineState`` and fans out updates."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._state = PipelineState()
        self._observers: list[Observer] = []

    @property
    def current(self) -> PipelineState:
        with self._lock:
            return self._state

    def publish(
        self,
        status: PipelineStatus,
        *,
        request_id: int | None = None,
        result: ClassificationResult | None = None,
        error: str | None = None,
    ) -> PipelineState:
        """Replace the current state and notify observers."""
        snapshot = self.swap(status, request_id=request_id, result=result, error=error)
        self.notify(snapshot)
        return snapshot

    def swap(
        self,
        status: PipelineStatus,
        *,
        request_id: int | None = None,
        result: ClassificationResult | None = None,
        error: str | None = None,
    ) -> PipelineState:
        """Replace the current state without notifying observers.

        Callers that must order the swap under their own lock use this and
        call ``notify`` once that lock is released.
        """
        with self._lock:
            self._state = replace(
                self._state,
                status=status,
                result=result,
                error=error,
                request_id=request_id,
                version=self._state.version + 1,
                updated_at=time.time(),
            )
            return self._state

    def notify(self, snapshot: PipelineState) -> None:
        """Hand ``snapshot`` to every observer; observer errors are logged."""
        with self._lock:
            observers = list(self._observers)

        for observer in observers:
            try:
                observer(snapshot)
            except Exception:  # noqa: BLE001
                logger.exception("State observer %r failed", observer)

    def subscribe(self, observer: Observer) -> Callable[[], None]:
        """Register an observer; returns a callable that unregisters it."""
        with self._lock:
            self._observers.append(observer)

        def unsubscribe() -> None:
            with self._lock:
                if observer in self._observers:
                    self._observers.remove(observer)

        return unsubscribe
