"""Data models for the rice pest detection system."""

from .detection import (
    Frame,
    Region,
    ClassificationVerdict,
    PestSpeciesRef,
    DetectionEvent,
    DetectionRecord,
)
from .config import SystemConfig

__all__ = ['Frame', 'Region', 'ClassificationVerdict', 'PestSpeciesRef', 'DetectionEvent',
           'DetectionRecord', 'SystemConfig']
