"""Composition root exposing scanning and single-image analysis to callers."""

import asyncio
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

import numpy as np

from .config_manager import ConfigManager
from .detection_pipeline import DetectionPipeline, StageTimeouts
from .scan_loop import ScanLoop
from .models.config import SystemConfig
from .models.detection import DetectionEvent, Frame
from .services.classifier import TFLiteClassifier
from .services.dispatcher import DetectionDispatcher, Observer
from .services.error_handler import ErrorHandler
from .services.frame_capture import OpenCVFrameSource
from .services.interfaces import Classifier, DetectionSink, FrameSource, Localizer, PestCatalog
from .services.localizer import LocalLocalizer, RemoteLocalizer
from .services.notification_service import NotificationConfig, NotificationService
from .services.pest_catalog import StaticPestCatalog
from .services.preprocessor import ImagePreprocessor
from .services.reconciliation import ReconciliationEngine
from .services.resources import ResourceScope
from .services.storage_service import StorageService
from .logging_config import get_logger

logger = get_logger("scan_controller")

ImageHandle = Union[Frame, bytes, bytearray, str, np.ndarray]


def build_localizer(config: SystemConfig, preprocessor: ImagePreprocessor) -> Optional[Localizer]:
    """Create the localizer selected by ``localizer_strategy``."""
    if config.localizer_strategy == "remote":
        return RemoteLocalizer(
            endpoint=config.remote_endpoint,
            api_key=config.remote_api_key,
            box_format=config.remote_box_format,
            preprocessor=preprocessor
        )
    if config.localizer_strategy == "local":
        return LocalLocalizer(
            model_path=config.local_model_path,
            allowed_labels=config.local_allowed_labels,
            min_score=config.local_min_score,
            preprocessor=preprocessor,
            max_attempts=config.model_load_attempts,
            retry_delay=config.model_load_backoff_seconds,
            num_threads=config.num_threads
        )
    return None


def build_sinks(config: SystemConfig) -> List[DetectionSink]:
    """Create the storage and notification sinks enabled in the config."""
    sinks: List[DetectionSink] = []
    if config.storage_enabled:
        sinks.append(StorageService(config.database_path, location=config.default_location))
    if config.push_notifications_enabled:
        sinks.append(NotificationService(NotificationConfig(
            push_enabled=True,
            webhook_url=config.notification_webhook_url,
            cooldown_minutes=config.notification_cooldown_minutes,
            max_per_hour=config.notification_max_per_hour
        )))
    return sinks


def to_frame(handle: ImageHandle) -> Frame:
    """Wrap an image handle in a Frame."""
    if isinstance(handle, Frame):
        return handle
    if isinstance(handle, np.ndarray):
        height, width = handle.shape[:2]
        return Frame(data=handle, width=width, height=height)
    if isinstance(handle, (bytes, bytearray)):
        return Frame(data=bytes(handle))
    if isinstance(handle, str):
        return Frame(data=handle, source_uri=handle)
    raise TypeError(f"Unsupported image handle: {type(handle).__name__}")


class ScanController:
    """Wires frame source, pipeline, scan loop and sinks together."""

    def __init__(self,
                 config: Optional[SystemConfig] = None,
                 config_manager: Optional[ConfigManager] = None,
                 classifier: Optional[Classifier] = None,
                 localizer: Optional[Localizer] = None,
                 catalog: Optional[PestCatalog] = None,
                 frame_source: Optional[FrameSource] = None,
                 sinks: Optional[List[DetectionSink]] = None,
                 error_handler: Optional[ErrorHandler] = None,
                 sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep):
        self.config_manager = config_manager
        if config is None:
            config = config_manager.get_config() if config_manager else SystemConfig()
        self.config = config

        self.error_handler = error_handler or ErrorHandler()
        self.preprocessor = ImagePreprocessor(config.target_size)

        if catalog is None:
            catalog = (StaticPestCatalog.from_json(config.species_catalog_path)
                       if config.species_catalog_path else StaticPestCatalog())
        self.catalog = catalog

        self.classifier = classifier or TFLiteClassifier(
            model_path=config.classifier_model_path,
            labels_path=config.classifier_labels_path,
            max_attempts=config.model_load_attempts,
            retry_delay=config.model_load_backoff_seconds,
            num_threads=config.num_threads
        )
        self.localizer = localizer if localizer is not None else build_localizer(config, self.preprocessor)

        self.engine = ReconciliationEngine(
            catalog=self.catalog,
            min_confidence=config.min_confidence,
            min_margin=config.min_margin,
            no_pest_label=config.no_pest_label,
            region_score_threshold=config.region_score_threshold,
            debounce_seconds=config.debounce_seconds
        )

        timeouts = StageTimeouts(
            capture=config.capture_timeout_seconds,
            localizer=config.localizer_timeout_seconds,
            preprocess=config.preprocess_timeout_seconds,
            classifier=config.classifier_timeout_seconds
        )
        self.pipeline = DetectionPipeline(
            preprocessor=self.preprocessor,
            classifier=self.classifier,
            engine=self.engine,
            localizer=self.localizer,
            timeouts=timeouts,
            target_size=config.target_size
        )

        self.dispatcher = DetectionDispatcher()
        self.sinks = build_sinks(config) if sinks is None else list(sinks)
        for sink in self.sinks:
            self.dispatcher.add_observer(sink)

        self.scan_loop = ScanLoop(
            pipeline=self.pipeline,
            dispatcher=self.dispatcher,
            error_handler=self.error_handler,
            interval_ms=config.scan_interval_ms,
            timeouts=timeouts,
            recovery_threshold=config.capture_recovery_threshold,
            sleep=sleep
        )
        self.frame_source = frame_source
        self.single_image_count = 0

        self.error_handler.register_component("single_image")
        if self.config_manager is not None:
            self.config_manager.register_change_callback(self._on_config_changed)

        logger.info("Scan controller initialized", extra={
            'context': {
                'localizer': type(self.localizer).__name__ if self.localizer else "none",
                'sinks': len(self.sinks),
                'species': len(self.catalog.all_species())
            }
        })

    @property
    def is_scanning(self) -> bool:
        return self.scan_loop.is_scanning

    def add_observer(self, observer: Observer) -> None:
        self.dispatcher.add_observer(observer)

    def remove_observer(self, observer: Observer) -> bool:
        return self.dispatcher.remove_observer(observer)

    def start_continuous_scanning(self, frame_source: Optional[FrameSource] = None) -> bool:
        """Start scanning; a second call while running is a no-op returning False.

        Must be called on the thread running the event loop.
        """
        if self.scan_loop.is_scanning:
            return False

        source = frame_source or self.frame_source
        if source is None:
            source = OpenCVFrameSource(self.config.camera_source, self.config.camera_resolution)
        if isinstance(source, OpenCVFrameSource) and not source.is_available():
            source.open()
        self.frame_source = source

        return self.scan_loop.start(source)

    def stop_continuous_scanning(self) -> bool:
        """Stop scanning; a call while idle is a no-op returning False."""
        return self.scan_loop.stop()

    async def analyze_single_image(self, handle: ImageHandle) -> DetectionEvent:
        """Classify a whole image once, bypassing the scheduler and localizer.

        The event is delivered to observers and returned. Failures propagate.
        """
        frame = to_frame(handle)
        with ResourceScope() as scope:
            scope.track(frame)
            try:
                events = await self.pipeline.process(frame, scope, use_localizer=False)
            except Exception as e:
                self.error_handler.handle_error("single_image", e)
                raise

        event = events[0]
        self.single_image_count += 1
        self.dispatcher.dispatch(event)
        return event

    async def warm_up(self) -> None:
        """Load the classifier ahead of the first scan.

        Also the manual retry after scanning halted on an unloadable model.
        """
        await self.classifier.ensure_loaded()

    async def shutdown(self) -> None:
        """Stop scanning, let the last iteration finish and release devices."""
        self.stop_continuous_scanning()
        await self.scan_loop.wait_idle()
        if self.frame_source is not None:
            self.frame_source.close()
        for sink in self.sinks:
            if isinstance(sink, NotificationService):
                sink.stop_processing()
        logger.info("Scan controller shut down")

    def _on_config_changed(self, config: SystemConfig) -> None:
        self.config = config
        self.engine.update_thresholds(
            min_confidence=config.min_confidence,
            min_margin=config.min_margin,
            region_score_threshold=config.region_score_threshold,
            debounce_seconds=config.debounce_seconds
        )
        self.engine.no_pest_label = config.no_pest_label
        self.scan_loop.interval_ms = config.scan_interval_ms
        self.scan_loop.recovery_threshold = max(1, config.capture_recovery_threshold)

    def get_status(self) -> Dict[str, Any]:
        """Get controller status."""
        return {
            "scanning": self.is_scanning,
            "classifier_loaded": getattr(self.classifier, "is_loaded", None),
            "localizer": type(self.localizer).__name__ if self.localizer else None,
            "observers": self.dispatcher.observer_count,
            "observer_errors": self.dispatcher.observer_errors,
            "single_image_analyses": self.single_image_count,
            "scan_loop": self.scan_loop.get_status(),
            "pipeline": self.pipeline.get_status(),
            "reconciliation": self.engine.get_reconciliation_stats(),
            "health": {name: status.value
                       for name, status in self.error_handler.get_component_health().items()},
            "errors": self.error_handler.get_error_summary()
        }
