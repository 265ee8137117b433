"""Services for the rice pest detection system."""

from .interfaces import (
    FrameSource,
    Localizer,
    Classifier,
    DetectionSink,
    PestCatalog
)
from .error_handler import (
    PestDetectionError,
    CaptureUnavailable,
    CaptureFailed,
    PreprocessFailed,
    LocalizerUnavailable,
    ClassifierUnavailable,
    ReconciliationInputInvalid,
    StageTimeout
)

__all__ = [
    'FrameSource',
    'Localizer',
    'Classifier',
    'DetectionSink',
    'PestCatalog',
    'PestDetectionError',
    'CaptureUnavailable',
    'CaptureFailed',
    'PreprocessFailed',
    'LocalizerUnavailable',
    'ClassifierUnavailable',
    'ReconciliationInputInvalid',
    'StageTimeout'
]
