"""Detection data models."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, List, Optional, Tuple
import itertools

import numpy as np

_frame_ids = itertools.count(1)


@dataclass
class Frame:
    """A captured image owned by a single scan iteration.

    ``data`` holds either a decoded BGR array, encoded image bytes or a path
    to an image file. ``width``/``height`` stay at 0 until the pixels have
    been decoded.
    """
    data: Any
    width: int = 0
    height: int = 0
    timestamp: datetime = field(default_factory=datetime.now)
    source_uri: Optional[str] = None
    frame_id: int = field(default_factory=lambda: next(_frame_ids))
    released: bool = False

    @property
    def is_decoded(self) -> bool:
        return isinstance(self.data, np.ndarray)

    def release(self) -> None:
        """Drop the pixel buffer so it can be reclaimed."""
        self.data = None
        self.released = True


@dataclass
class Region:
    """Axis-aligned box (top-left origin) in the coordinate space of its frame."""
    x: float
    y: float
    width: float
    height: float
    source_label: str = ""
    source_score: float = 0.0

    def area(self) -> float:
        """Calculate the area of the region."""
        return self.width * self.height

    def center(self) -> Tuple[float, float]:
        """Get the center point of the region."""
        return (self.x + self.width / 2, self.y + self.height / 2)

    def to_dict(self) -> dict:
        return {
            "x": self.x,
            "y": self.y,
            "width": self.width,
            "height": self.height,
            "source_label": self.source_label,
            "source_score": self.source_score,
        }


@dataclass
class ClassificationVerdict:
    """Output of the pest classifier for one tensor."""
    label: str
    confidence: int
    raw_scores: List[float]
    labels: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class PestSpeciesRef:
    """Catalog entry describing a known pest species."""
    name: str
    scientific_name: str = ""
    description: str = ""
    symptoms: str = ""
    treatment: str = ""
    danger_level: str = "medium"  # low, medium, high
    image_uri: Optional[str] = None
    pesticide_image_uri: Optional[str] = None

    @property
    def treatment_steps(self) -> List[str]:
        from ..utils import split_treatment_steps
        return split_treatment_steps(self.treatment)

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "scientific_name": self.scientific_name,
            "description": self.description,
            "symptoms": self.symptoms,
            "treatment": self.treatment,
            "treatment_steps": self.treatment_steps,
            "danger_level": self.danger_level,
            "image_uri": self.image_uri,
            "pesticide_image_uri": self.pesticide_image_uri,
        }


@dataclass(frozen=True)
class DetectionEvent:
    """Canonical result of one reconciliation, delivered to observers."""
    detected: bool
    pest_type: Optional[str] = None
    confidence: Optional[int] = None
    regions: Tuple[Region, ...] = ()
    species: Optional[PestSpeciesRef] = None
    recommendations: Tuple[str, ...] = ()
    timestamp: datetime = field(default_factory=datetime.now)
    raw_scores: Tuple[float, ...] = ()
    image_width: int = 0
    image_height: int = 0
    source_uri: Optional[str] = None

    def __post_init__(self):
        if self.detected and not self.pest_type:
            raise ValueError("A detected event must carry a pest type")
        if self.confidence is not None and not 0 <= self.confidence <= 100:
            raise ValueError(f"Confidence out of range: {self.confidence}")
        # Accept lists from callers but keep the stored value immutable
        object.__setattr__(self, "regions", tuple(self.regions))
        object.__setattr__(self, "recommendations", tuple(self.recommendations))
        object.__setattr__(self, "raw_scores", tuple(self.raw_scores))

    def to_dict(self) -> dict:
        return {
            "detected": self.detected,
            "pest_type": self.pest_type,
            "confidence": self.confidence,
            "regions": [region.to_dict() for region in self.regions],
            "species": self.species.to_dict() if self.species else None,
            "recommendations": list(self.recommendations),
            "timestamp": self.timestamp.isoformat(),
            "image_width": self.image_width,
            "image_height": self.image_height,
            "source_uri": self.source_uri,
        }


@dataclass
class DetectionRecord:
    """Historical detection record for storage."""
    pest_type: str
    confidence: int
    timestamp: datetime
    location: Optional[str] = None
    image_uri: Optional[str] = None
    notes: Optional[str] = None
    record_id: Optional[int] = None
