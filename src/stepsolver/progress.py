"""Progress events published while a solve is in flight."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Protocol

logger = logging.getLogger(__name__)


class Phase(str, Enum):
    UNDERSTANDING_PROBLEM = "understanding_problem"
    GENERATING_TEXTUAL_SOLUTION = "generating_textual_solution"
    GENERATING_VERIFICATION_CODE = "generating_verification_code"
    SEQUENTIAL_SOLVING = "sequential_solving"


@dataclass(frozen=True)
class ProgressEvent:
    current_step: int
    total_steps: int
    step_description: str
    phase: Phase
    streamed_content: str | None = None

    def to_dict(self) -> dict[str, object]:
        payload: dict[str, object] = {
            "currentStep": self.current_step,
            "totalSteps": self.total_steps,
            "stepDescription": self.step_description,
            "phase": self.phase.value,
        }
        if self.streamed_content is not None:
            payload["streamedContent"] = self.streamed_content
        return payload


ProgressCallback = Callable[["ProgressEvent | None"], None]


class ProgressReporter(Protocol):
    """Sink the orchestrators push progress to. ``None`` means idle."""

    def publish(self, event: ProgressEvent | None) -> None:
        ...


class NullProgress:
    """Reporter that drops every event."""

    def publish(self, event: ProgressEvent | None) -> None:
        return None


class ProgressChannel:
    """Fan-out channel: orchestrators publish, observers subscribe."""

    def __init__(self) -> None:
        self._subscribers: list[ProgressCallback] = []
        self._lock = threading.Lock()

    def subscribe(self, callback: ProgressCallback) -> Callable[[], None]:
        """Register an observer and return a function that removes it."""

        with self._lock:
            self._subscribers.append(callback)

        def _unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return _unsubscribe

    def publish(self, event: ProgressEvent | None) -> None:
        with self._lock:
            subscribers = list(self._subscribers)
        for callback in subscribers:
            try:
                callback(event)
            except Exception:
                logger.exception("Progress subscriber raised; event dropped for it")


class RecordingProgress:
    """Reporter that keeps every event, mostly for tests and traces."""

    def __init__(self) -> None:
        self.events: list[ProgressEvent | None] = []

    def publish(self, event: ProgressEvent | None) -> None:
        self.events.append(event)

    @property
    def phases(self) -> list[Phase]:
        return [event.phase for event in self.events if event is not None]
