"""Error taxonomy and component error tracking."""

import traceback
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from ..logging_config import get_logger

logger = get_logger("error_handler")


class PestDetectionError(Exception):
    """Base class for all detection pipeline failures."""


class CaptureUnavailable(PestDetectionError):
    """The frame source is not ready or has been closed."""


class CaptureFailed(PestDetectionError):
    """The frame source was ready but the capture call failed."""


class PreprocessFailed(PestDetectionError):
    """The frame could not be decoded, cropped or resized."""


class LocalizerUnavailable(PestDetectionError):
    """The localizer could not produce regions for this frame."""


class ClassifierUnavailable(PestDetectionError):
    """The classifier model could not be loaded or run."""


class ClassifierLoadFailed(ClassifierUnavailable):
    """The classifier model could not be loaded within its retry budget."""


class ReconciliationInputInvalid(ClassifierUnavailable):
    """The classifier produced a score vector that cannot be reconciled."""


class StageTimeout(PestDetectionError):
    """A pipeline stage did not finish within its time budget."""


class ErrorSeverity(Enum):
    """Error severity levels."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ComponentStatus(Enum):
    """Component status levels."""
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    FAILED = "failed"
    UNKNOWN = "unknown"


# Consecutive failures before severity is raised one level
ESCALATION_THRESHOLD = 5

_SEVERITY_ORDER = [ErrorSeverity.LOW, ErrorSeverity.MEDIUM, ErrorSeverity.HIGH, ErrorSeverity.CRITICAL]


@dataclass
class ErrorRecord:
    """Record of an error occurrence."""
    component_name: str
    error: Exception
    severity: ErrorSeverity
    timestamp: datetime = field(default_factory=datetime.now)
    traceback_str: str = ""
    recovery_attempted: bool = False
    recovery_successful: bool = False


class ErrorHandler:
    """Tracks errors per component and runs registered recovery callbacks."""

    def __init__(self, max_records: int = 1000):
        self.max_records = max_records
        self.error_records: List[ErrorRecord] = []
        self.component_error_counts: Dict[str, int] = {}
        self.consecutive_failures: Dict[str, int] = {}
        self.component_status: Dict[str, ComponentStatus] = {}
        self.recovery_callbacks: Dict[str, List[Callable[[], Any]]] = {}
        self.component_recovery_attempts: Dict[str, int] = {}
        self.component_max_recovery_attempts: Dict[str, int] = {}

    def register_component(self, component_name: str, max_recovery_attempts: int = 3) -> None:
        """Register a component for error handling."""
        self.component_error_counts.setdefault(component_name, 0)
        self.consecutive_failures.setdefault(component_name, 0)
        self.component_recovery_attempts.setdefault(component_name, 0)
        self.component_max_recovery_attempts[component_name] = max_recovery_attempts
        self.recovery_callbacks.setdefault(component_name, [])
        self.component_status[component_name] = ComponentStatus.HEALTHY
        logger.debug(f"Component registered: {component_name}")

    def register_recovery_callback(self, component_name: str, callback: Callable[[], Any]) -> None:
        """Register a recovery callback for a component."""
        self.recovery_callbacks.setdefault(component_name, []).append(callback)
        logger.debug(f"Recovery callback registered for {component_name}")

    def handle_error(self, component_name: str, error: Exception,
                     severity: ErrorSeverity = ErrorSeverity.MEDIUM) -> ErrorSeverity:
        """Record an error and return the severity it was filed under."""
        consecutive = self.consecutive_failures.get(component_name, 0) + 1
        self.consecutive_failures[component_name] = consecutive

        if consecutive >= ESCALATION_THRESHOLD and consecutive % ESCALATION_THRESHOLD == 0:
            severity = self._escalate(severity)

        tb = "".join(traceback.format_exception(type(error), error, error.__traceback__))
        record = ErrorRecord(
            component_name=component_name,
            error=error,
            severity=severity,
            traceback_str=tb if error.__traceback__ else ""
        )
        self.error_records.append(record)
        if len(self.error_records) > self.max_records:
            del self.error_records[:len(self.error_records) - self.max_records]

        self.component_error_counts[component_name] = self.component_error_counts.get(component_name, 0) + 1

        if severity == ErrorSeverity.CRITICAL:
            self.component_status[component_name] = ComponentStatus.FAILED
        elif severity in (ErrorSeverity.HIGH, ErrorSeverity.MEDIUM):
            self.component_status[component_name] = ComponentStatus.DEGRADED

        logger.error(f"Error in {component_name}: {error} (Severity: {severity.value})")
        return severity

    def record_success(self, component_name: str) -> None:
        """Clear the failure streak and recovery budget after a successful operation."""
        if self.consecutive_failures.get(component_name) or self.component_recovery_attempts.get(component_name):
            self.consecutive_failures[component_name] = 0
            self.component_recovery_attempts[component_name] = 0
            self.component_status[component_name] = ComponentStatus.HEALTHY

    def _escalate(self, severity: ErrorSeverity) -> ErrorSeverity:
        index = _SEVERITY_ORDER.index(severity)
        return _SEVERITY_ORDER[min(index + 1, len(_SEVERITY_ORDER) - 1)]

    def attempt_recovery(self, component_name: str) -> bool:
        """Run the recovery callbacks for one component."""
        attempts = self.component_recovery_attempts.get(component_name, 0)
        max_attempts = self.component_max_recovery_attempts.get(component_name, 3)
        if attempts >= max_attempts:
            logger.warning(f"Max recovery attempts reached for {component_name}")
            return False

        self.component_recovery_attempts[component_name] = attempts + 1
        callbacks = self.recovery_callbacks.get(component_name, [])
        if not callbacks:
            return False

        recent = [r for r in self.error_records if r.component_name == component_name]
        try:
            for callback in callbacks:
                callback()
        except Exception as e:
            logger.error(f"Recovery failed for {component_name}: {e}")
            if recent:
                recent[-1].recovery_attempted = True
            return False

        if recent:
            recent[-1].recovery_attempted = True
            recent[-1].recovery_successful = True
        self.component_status[component_name] = ComponentStatus.HEALTHY
        self.consecutive_failures[component_name] = 0
        logger.info(f"Recovery attempted for {component_name} (Attempt {attempts + 1})")
        return True

    def get_error_stats(self) -> Dict[str, Any]:
        """Get error statistics."""
        return {
            "total_errors": len(self.error_records),
            "component_error_counts": dict(self.component_error_counts),
            "consecutive_failures": dict(self.consecutive_failures),
            "component_recovery_attempts": dict(self.component_recovery_attempts),
            "component_status": {name: status.value for name, status in self.component_status.items()},
        }

    def get_component_health(self) -> Dict[str, ComponentStatus]:
        """Get health status of all registered components."""
        return dict(self.component_status)

    def reset_error_counts(self, component_name: Optional[str] = None) -> None:
        """Reset error counts for a component or all components."""
        names = [component_name] if component_name else list(self.component_error_counts)
        for name in names:
            self.component_error_counts[name] = 0
            self.consecutive_failures[name] = 0
            self.component_recovery_attempts[name] = 0
            self.component_status[name] = ComponentStatus.HEALTHY

    def get_error_summary(self, hours: int = 24) -> Dict[str, Any]:
        """Get summary of errors in the last N hours."""
        cutoff_time = datetime.now() - timedelta(hours=hours)
        recent_errors = [e for e in self.error_records if e.timestamp >= cutoff_time]

        component_counts: Dict[str, int] = {}
        severity_counts = {severity.value: 0 for severity in ErrorSeverity}
        error_types: Dict[str, int] = {}

        for error in recent_errors:
            component_counts[error.component_name] = component_counts.get(error.component_name, 0) + 1
            severity_counts[error.severity.value] += 1
            name = type(error.error).__name__
            error_types[name] = error_types.get(name, 0) + 1

        return {
            "total_errors": len(recent_errors),
            "component_counts": component_counts,
            "severity_counts": severity_counts,
            "error_types": error_types,
            "time_period_hours": hours
        }
