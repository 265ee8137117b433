"""Fan-out of detection events to registered observers."""

import threading
from typing import Callable, List, Union

from .interfaces import DetectionSink
from ..models.detection import DetectionEvent
from ..logging_config import get_logger

logger = get_logger("dispatcher")

Observer = Union[DetectionSink, Callable[[DetectionEvent], None]]


class DetectionDispatcher:
    """Delivers each event to every observer; one failing observer does not block the rest."""

    def __init__(self):
        self._observers: List[Observer] = []
        self._lock = threading.Lock()
        self.delivered_events = 0
        self.observer_errors = 0

    def add_observer(self, observer: Observer) -> None:
        with self._lock:
            if observer not in self._observers:
                self._observers.append(observer)

    def remove_observer(self, observer: Observer) -> bool:
        with self._lock:
            if observer in self._observers:
                self._observers.remove(observer)
                return True
        return False

    @property
    def observer_count(self) -> int:
        return len(self._observers)

    def dispatch(self, event: DetectionEvent) -> int:
        """Deliver an event and return how many observers handled it cleanly."""
        with self._lock:
            observers = list(self._observers)

        handled = 0
        for observer in observers:
            callback = observer.on_detection if isinstance(observer, DetectionSink) else observer
            try:
                callback(event)
                handled += 1
            except Exception as e:
                self.observer_errors += 1
                logger.error(f"Observer {observer!r} failed: {e}", exc_info=True)

        self.delivered_events += 1
        return handled
