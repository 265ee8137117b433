"""Configuration components for the rice pest detection system."""

from .defaults import (
    DEFAULT_CONFIG,
    SYSTEM_CONSTANTS,
    DEFAULT_PATHS,
    MODEL_SETTINGS,
    COCO_LABELS,
    DEFAULT_PEST_SPECIES,
    REJECTED_RECOMMENDATIONS,
    FALLBACK_RECOMMENDATIONS,
)

__all__ = [
    'DEFAULT_CONFIG',
    'SYSTEM_CONSTANTS',
    'DEFAULT_PATHS',
    'MODEL_SETTINGS',
    'COCO_LABELS',
    'DEFAULT_PEST_SPECIES',
    'REJECTED_RECOMMENDATIONS',
    'FALLBACK_RECOMMENDATIONS',
]
