"""
Rice Pest Detection System

Continuous camera scanning and single-image analysis that classifies rice
field pests, rejects uncertain results and emits detection events to
storage, notification and UI observers.
"""

__version__ = "1.0.0"
__author__ = "Rice Pest Detection System"

# Import core components
from .config_manager import ConfigManager
from .models import (
    Frame,
    Region,
    ClassificationVerdict,
    PestSpeciesRef,
    DetectionEvent,
    DetectionRecord,
    SystemConfig
)
from .services import (
    FrameSource,
    Localizer,
    Classifier,
    DetectionSink,
    PestCatalog,
    PestDetectionError,
    CaptureUnavailable,
    CaptureFailed,
    PreprocessFailed,
    LocalizerUnavailable,
    ClassifierUnavailable,
    ReconciliationInputInvalid,
    StageTimeout
)
from .scan_controller import ScanController
from . import utils

__all__ = [
    # Core management
    'ConfigManager',
    'ScanController',

    # Data models
    'Frame',
    'Region',
    'ClassificationVerdict',
    'PestSpeciesRef',
    'DetectionEvent',
    'DetectionRecord',
    'SystemConfig',

    # Service interfaces
    'FrameSource',
    'Localizer',
    'Classifier',
    'DetectionSink',
    'PestCatalog',

    # Errors
    'PestDetectionError',
    'CaptureUnavailable',
    'CaptureFailed',
    'PreprocessFailed',
    'LocalizerUnavailable',
    'ClassifierUnavailable',
    'ReconciliationInputInvalid',
    'StageTimeout',

    # Utilities
    'utils'
]
