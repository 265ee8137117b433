"""Reconciliation of classifier verdicts into detection events."""

import time
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from .interfaces import PestCatalog
from .error_handler import ReconciliationInputInvalid
from ..config.defaults import REJECTED_RECOMMENDATIONS, FALLBACK_RECOMMENDATIONS
from ..models.detection import (
    ClassificationVerdict, DetectionEvent, Frame, PestSpeciesRef, Region
)
from ..utils import round_percent, top_two
from ..logging_config import get_logger

logger = get_logger("reconciliation")


class ReconciliationEngine:
    """Applies the sentinel, confidence and margin rules to classifier verdicts."""

    def __init__(self,
                 catalog: PestCatalog,
                 min_confidence: int = 90,
                 min_margin: int = 10,
                 no_pest_label: str = "no pest",
                 region_score_threshold: float = 0.5,
                 debounce_seconds: float = 0.0,
                 clock: Callable[[], float] = time.monotonic):
        """
        Initialize reconciliation engine.

        Args:
            catalog: Species lookup used for accepted detections
            min_confidence: Minimum top-1 percentage for a detection
            min_margin: Minimum gap in percentage points between top-1 and top-2
            no_pest_label: Labels containing this text (any case) never count as pests
            region_score_threshold: Minimum localizer score for a region to be classified
            debounce_seconds: Window for suppressing repeats of the same pest, 0 disables
            clock: Monotonic time source used by the debouncer
        """
        self.catalog = catalog
        self.min_confidence = min_confidence
        self.min_margin = min_margin
        self.no_pest_label = no_pest_label
        self.region_score_threshold = region_score_threshold
        self.debounce_seconds = debounce_seconds
        self._clock = clock

        self._last_delivered: Dict[str, float] = {}
        self.stats = {
            "verdicts": 0,
            "accepted": 0,
            "rejected_sentinel": 0,
            "rejected_confidence": 0,
            "rejected_margin": 0,
            "empty_frames": 0,
            "suppressed_duplicates": 0,
        }

    def top_two(self, verdict: ClassificationVerdict) -> Tuple[str, int, int]:
        """Return (label, top-1 percentage, top-2 percentage) for a verdict.

        When the verdict carries its label list, the label is the one at the
        argmax of the scores rather than whatever the classifier reported.
        """
        if len(verdict.raw_scores) < 2:
            raise ReconciliationInputInvalid(
                f"Expected at least 2 class scores, got {len(verdict.raw_scores)}"
            )
        best, highest, second = top_two(verdict.raw_scores)

        label = verdict.label
        if verdict.labels:
            if len(verdict.labels) != len(verdict.raw_scores):
                raise ReconciliationInputInvalid(
                    f"Score vector has {len(verdict.raw_scores)} entries for {len(verdict.labels)} labels"
                )
            label = verdict.labels[best]
            if label != verdict.label:
                logger.warning(f"Classifier reported {verdict.label!r} but scores favour {label!r}")
        return label, round_percent(highest), round_percent(second)

    def reconcile(self, verdict: ClassificationVerdict, region: Optional[Region] = None,
                  frame: Optional[Frame] = None) -> DetectionEvent:
        """Build the event for one verdict, optionally scoped to the region it came from."""
        label, max_confidence, second_confidence = self.top_two(verdict)
        margin = max_confidence - second_confidence
        self.stats["verdicts"] += 1

        regions = (region,) if region is not None else ()
        frame_fields = self._frame_fields(frame)

        if not (self._passes_sentinel_filter(label)
                and self._passes_confidence_filter(max_confidence)
                and self._passes_margin_filter(margin)):
            logger.debug(f"Rejected {label!r}: confidence={max_confidence} margin={margin}")
            return DetectionEvent(
                detected=False,
                pest_type=None,
                confidence=max_confidence,
                regions=regions,
                recommendations=REJECTED_RECOMMENDATIONS,
                raw_scores=verdict.raw_scores,
                **frame_fields
            )

        species, recommendations = self.recommendations_for(label)
        self.stats["accepted"] += 1
        logger.info(f"Detected {label} ({max_confidence}%, margin {margin})")
        return DetectionEvent(
            detected=True,
            pest_type=label,
            confidence=max_confidence,
            regions=regions,
            species=species,
            recommendations=recommendations,
            raw_scores=verdict.raw_scores,
            **frame_fields
        )

    def no_detection(self, frame: Optional[Frame] = None) -> DetectionEvent:
        """Event for a frame in which no region qualified for classification."""
        self.stats["empty_frames"] += 1
        return DetectionEvent(
            detected=False,
            recommendations=REJECTED_RECOMMENDATIONS,
            **self._frame_fields(frame)
        )

    def qualifying_regions(self, regions: Sequence[Region]) -> List[Region]:
        """Regions whose localizer score reaches the threshold."""
        return [r for r in regions if r.source_score >= self.region_score_threshold]

    def recommendations_for(self, label: str) -> Tuple[Optional[PestSpeciesRef], List[str]]:
        """Catalog entry and treatment steps for an accepted label."""
        species = self.catalog.lookup(label)
        if species is not None:
            steps = species.treatment_steps
            if steps:
                return species, steps
        return species, list(FALLBACK_RECOMMENDATIONS)

    def is_duplicate(self, event: DetectionEvent) -> bool:
        """True when the same pest was delivered within the debounce window.

        Rejected events are never duplicates. A delivered event restarts the
        window for its pest type.
        """
        if not event.detected or self.debounce_seconds <= 0:
            return False

        now = self._clock()
        last = self._last_delivered.get(event.pest_type)
        if last is not None and now - last < self.debounce_seconds:
            self.stats["suppressed_duplicates"] += 1
            logger.debug(f"Suppressed repeat detection of {event.pest_type}")
            return True

        self._last_delivered[event.pest_type] = now
        return False

    def reset_debounce(self) -> None:
        self._last_delivered.clear()

    def _passes_sentinel_filter(self, label: str) -> bool:
        if self.no_pest_label and self.no_pest_label.lower() in label.lower():
            self.stats["rejected_sentinel"] += 1
            return False
        return True

    def _passes_confidence_filter(self, confidence: int) -> bool:
        if confidence < self.min_confidence:
            self.stats["rejected_confidence"] += 1
            return False
        return True

    def _passes_margin_filter(self, margin: int) -> bool:
        if margin < self.min_margin:
            self.stats["rejected_margin"] += 1
            return False
        return True

    @staticmethod
    def _frame_fields(frame: Optional[Frame]) -> dict:
        if frame is None:
            return {}
        return {
            "timestamp": frame.timestamp,
            "image_width": frame.width,
            "image_height": frame.height,
            "source_uri": frame.source_uri,
        }

    def update_thresholds(self, min_confidence: Optional[int] = None,
                          min_margin: Optional[int] = None,
                          region_score_threshold: Optional[float] = None,
                          debounce_seconds: Optional[float] = None) -> None:
        """Update reconciliation thresholds in place."""
        if min_confidence is not None:
            self.min_confidence = min_confidence
        if min_margin is not None:
            self.min_margin = min_margin
        if region_score_threshold is not None:
            self.region_score_threshold = region_score_threshold
        if debounce_seconds is not None:
            self.debounce_seconds = debounce_seconds
        logger.info(f"Reconciliation thresholds: confidence>={self.min_confidence} "
                    f"margin>={self.min_margin} region>={self.region_score_threshold}")

    def get_reconciliation_stats(self) -> Dict[str, object]:
        """Get reconciliation statistics."""
        return {
            "min_confidence": self.min_confidence,
            "min_margin": self.min_margin,
            "no_pest_label": self.no_pest_label,
            "region_score_threshold": self.region_score_threshold,
            "debounce_seconds": self.debounce_seconds,
            **self.stats,
        }
