"""Service interfaces and abstract base classes."""

from abc import ABC, abstractmethod
from typing import List, Optional

import numpy as np

from ..models.detection import Frame, Region, ClassificationVerdict, DetectionEvent, PestSpeciesRef


class FrameSource(ABC):
    """Interface for anything that can hand out a still frame."""

    @abstractmethod
    async def capture(self) -> Frame:
        """Capture one frame; raises CaptureUnavailable or CaptureFailed."""
        pass

    def is_available(self) -> bool:
        """Check if the source is ready to capture."""
        return True

    def open(self) -> None:
        """Acquire the underlying device or stream."""

    def close(self) -> None:
        """Release the underlying device or stream."""

    def reopen(self) -> None:
        """Release and reacquire the device, e.g. after repeated capture failures."""
        self.close()
        self.open()


class Localizer(ABC):
    """Interface for coarse object detectors."""

    @abstractmethod
    async def detect(self, frame: Frame) -> List[Region]:
        """Propose regions; raises LocalizerUnavailable on any failure."""
        pass


class Classifier(ABC):
    """Interface for the fine-grained pest classifier."""

    @abstractmethod
    async def classify(self, tensor: np.ndarray) -> ClassificationVerdict:
        """Classify a preprocessed (1, S, S, 3) tensor."""
        pass

    @abstractmethod
    async def ensure_loaded(self) -> None:
        """Load the model if it has not been loaded yet."""
        pass


class DetectionSink(ABC):
    """Interface for consumers of detection events."""

    @abstractmethod
    def on_detection(self, event: DetectionEvent) -> None:
        """Handle one detection event."""
        pass


class PestCatalog(ABC):
    """Interface for species metadata lookup."""

    @abstractmethod
    def lookup(self, label: str) -> Optional[PestSpeciesRef]:
        """Find the species for a classifier label."""
        pass

    @abstractmethod
    def all_species(self) -> List[PestSpeciesRef]:
        """List every known species."""
        pass
