"""Stage chain shared by continuous scanning and single-image analysis."""

import asyncio
from dataclasses import dataclass
from typing import Awaitable, List, Optional, TypeVar

import numpy as np

from .services.interfaces import Classifier, Localizer
from .services.preprocessor import ImagePreprocessor
from .services.reconciliation import ReconciliationEngine
from .services.resources import ResourceScope
from .services.error_handler import LocalizerUnavailable, StageTimeout
from .services.error_decorators import log_execution_time
from .models.detection import ClassificationVerdict, DetectionEvent, Frame, Region
from .logging_config import get_logger

logger = get_logger("detection_pipeline")

T = TypeVar("T")


@dataclass
class StageTimeouts:
    """Per-stage time budgets in seconds; None leaves a stage unbounded."""
    capture: Optional[float] = 10.0
    localizer: Optional[float] = 15.0
    preprocess: Optional[float] = 10.0
    classifier: Optional[float] = 20.0


async def run_stage(awaitable: Awaitable[T], timeout: Optional[float], stage: str) -> T:
    """Await one stage, turning an exceeded budget into StageTimeout."""
    try:
        return await asyncio.wait_for(awaitable, timeout)
    except asyncio.TimeoutError as e:
        raise StageTimeout(f"{stage} did not finish within {timeout}s") from e


class DetectionPipeline:
    """Localize, preprocess, classify and reconcile one frame."""

    def __init__(self,
                 preprocessor: ImagePreprocessor,
                 classifier: Classifier,
                 engine: ReconciliationEngine,
                 localizer: Optional[Localizer] = None,
                 timeouts: Optional[StageTimeouts] = None,
                 target_size: int = 224):
        self.preprocessor = preprocessor
        self.classifier = classifier
        self.engine = engine
        self.localizer = localizer
        self.timeouts = timeouts or StageTimeouts()
        self.target_size = target_size

        self.frames_processed = 0
        self.regions_classified = 0
        self.localizer_failures = 0

    @log_execution_time("detection_pipeline", performance=True)
    async def process(self, frame: Frame, scope: ResourceScope,
                      use_localizer: bool = True) -> List[DetectionEvent]:
        """Run every stage on a frame and return the resulting events.

        Without a localizer the whole frame is one region and exactly one
        event comes back. With a localizer, each region scoring at least the
        threshold yields one event; if none qualifies a single rejected event
        is returned and the classifier is not called.
        """
        self.frames_processed += 1

        if self.localizer is None or not use_localizer:
            verdict = await self._classify_region(frame, None, scope)
            return [self.engine.reconcile(verdict, frame=frame)]

        regions = await self._localize(frame)
        qualifying = self.engine.qualifying_regions(regions)
        if not qualifying:
            logger.debug(f"No qualifying regions out of {len(regions)} proposals")
            return [self.engine.no_detection(frame)]

        events = []
        for region in qualifying:
            verdict = await self._classify_region(frame, region, scope)
            events.append(self.engine.reconcile(verdict, region=region, frame=frame))
        return events

    async def _localize(self, frame: Frame) -> List[Region]:
        try:
            return await run_stage(self.localizer.detect(frame), self.timeouts.localizer, "localizer")
        except (LocalizerUnavailable, StageTimeout) as e:
            self.localizer_failures += 1
            logger.warning(f"Localizer unavailable, treating frame as empty: {e}")
            return []

    async def _classify_region(self, frame: Frame, region: Optional[Region],
                               scope: ResourceScope) -> ClassificationVerdict:
        tensor: np.ndarray = scope.track(await run_stage(
            asyncio.to_thread(self.preprocessor.prepare, frame, self.target_size, region),
            self.timeouts.preprocess,
            "preprocess"
        ))
        verdict = await run_stage(self.classifier.classify(tensor), self.timeouts.classifier, "classifier")
        self.regions_classified += 1
        return verdict

    def get_status(self) -> dict:
        return {
            "localizer": type(self.localizer).__name__ if self.localizer else None,
            "frames_processed": self.frames_processed,
            "regions_classified": self.regions_classified,
            "localizer_failures": self.localizer_failures,
        }
