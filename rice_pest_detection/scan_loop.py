"""Cooperative scheduler driving continuous scanning."""

import asyncio
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional

from .detection_pipeline import DetectionPipeline, StageTimeouts, run_stage
from .services.dispatcher import DetectionDispatcher
from .services.error_handler import (
    CaptureUnavailable, ClassifierLoadFailed, ErrorHandler, ErrorSeverity, PestDetectionError
)
from .services.interfaces import FrameSource
from .services.reconciliation import ReconciliationEngine
from .services.resources import ResourceScope
from .models.detection import DetectionEvent
from .logging_config import get_logger, log_performance

logger = get_logger("scan_loop")

COMPONENT_NAME = "scan_loop"
FRAME_SOURCE_COMPONENT = "frame_source"


@dataclass
class ScanSession:
    """One start/stop cycle of continuous scanning."""
    frame_source: FrameSource
    session_id: str = field(default_factory=lambda: uuid.uuid4().hex[:8])
    started_at: datetime = field(default_factory=datetime.now)
    running: bool = True
    ticker: Optional[asyncio.Task] = None


class ScanLoop:
    """Samples a frame source on a fixed cadence, one iteration at a time.

    A tick that arrives while the previous iteration is still unresolved is
    skipped. The in-flight iteration is tracked here rather than on the
    session, so a quick stop/start never produces two overlapping
    iterations. Stage failures are logged, reported and the tick emits
    nothing. Iterations still running when ``stop()`` is called finish and
    release their buffers, but their events are dropped.

    After ``recovery_threshold`` consecutive capture failures the frame
    source is reopened through the error handler's recovery callbacks. A
    classifier model that cannot be loaded ends the session; scanning stays
    halted until it is started again.
    """

    def __init__(self,
                 pipeline: DetectionPipeline,
                 dispatcher: DetectionDispatcher,
                 engine: Optional[ReconciliationEngine] = None,
                 error_handler: Optional[ErrorHandler] = None,
                 interval_ms: int = 1000,
                 timeouts: Optional[StageTimeouts] = None,
                 recovery_threshold: int = 3,
                 sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep):
        self.pipeline = pipeline
        self.dispatcher = dispatcher
        self.engine = engine or pipeline.engine
        self.error_handler = error_handler or ErrorHandler()
        self.interval_ms = interval_ms
        self.timeouts = timeouts or pipeline.timeouts
        self.recovery_threshold = max(1, recovery_threshold)
        self._sleep = sleep

        self.session: Optional[ScanSession] = None
        self._inflight: Optional[asyncio.Task] = None

        self.stats = {
            "sessions": 0,
            "ticks": 0,
            "skipped_ticks": 0,
            "iterations": 0,
            "failed_iterations": 0,
            "events_delivered": 0,
            "suppressed_duplicates": 0,
            "dropped_after_stop": 0,
            "released_buffers": 0,
            "source_recoveries": 0,
            "halts": 0,
        }
        self.last_error: Optional[str] = None
        self.last_event: Optional[DetectionEvent] = None
        self.halt_reason: Optional[str] = None

        self.error_handler.register_component(COMPONENT_NAME, max_recovery_attempts=3)
        self.error_handler.register_component(FRAME_SOURCE_COMPONENT, max_recovery_attempts=3)
        self.error_handler.register_recovery_callback(FRAME_SOURCE_COMPONENT, self._reopen_frame_source)

    @property
    def is_scanning(self) -> bool:
        return self.session is not None and self.session.running

    @property
    def iteration_in_flight(self) -> bool:
        return self._inflight is not None and not self._inflight.done()

    def start(self, frame_source: FrameSource) -> bool:
        """Begin scanning; returns False if a session is already running.

        Must be called from the thread running the event loop.
        """
        if self.is_scanning:
            logger.debug("Scan already running, start ignored")
            return False

        self.halt_reason = None
        session = ScanSession(frame_source=frame_source)
        self.session = session
        session.ticker = asyncio.ensure_future(self._run_ticker(session))
        self.stats["sessions"] += 1

        logger.info(f"Continuous scanning started (session {session.session_id})", extra={
            'context': {'interval_ms': self.interval_ms, 'source': type(frame_source).__name__}
        })
        return True

    def stop(self) -> bool:
        """End the current session; returns False if nothing was running."""
        session = self.session
        if session is None or not session.running:
            return False

        session.running = False
        if session.ticker is not None:
            session.ticker.cancel()
        self.session = None

        logger.info(f"Continuous scanning stopped (session {session.session_id})")
        return True

    async def wait_idle(self) -> None:
        """Wait until no iteration is in flight."""
        task = self._inflight
        if task is not None and not task.done():
            await asyncio.wait({task})

    async def _run_ticker(self, session: ScanSession) -> None:
        interval = self.interval_ms / 1000.0
        while session.running:
            await self._sleep(interval)
            if not session.running:
                break
            self._on_tick(session)

    def _on_tick(self, session: ScanSession) -> None:
        # Check-and-set without awaiting, so no other tick can interleave
        self.stats["ticks"] += 1
        if self.iteration_in_flight:
            self.stats["skipped_ticks"] += 1
            logger.debug("Previous iteration still running, tick skipped")
            return
        self._inflight = asyncio.ensure_future(self._run_iteration(session))

    async def _run_iteration(self, session: ScanSession) -> None:
        loop = asyncio.get_running_loop()
        started = loop.time()
        self.stats["iterations"] += 1
        events: List[DetectionEvent] = []

        scope = ResourceScope()
        try:
            with scope:
                frame = scope.track(await self._capture(session))
                events = await self.pipeline.process(frame, scope)
        except ClassifierLoadFailed as e:
            self._record_failure(e, ErrorSeverity.CRITICAL)
            self._halt(session, e)
            return
        except PestDetectionError as e:
            self._record_failure(e, ErrorSeverity.MEDIUM)
            return
        except Exception as e:
            self._record_failure(e, ErrorSeverity.HIGH)
            return
        finally:
            self.stats["released_buffers"] += scope.released

        self.error_handler.record_success(COMPONENT_NAME)
        self._deliver(session, events)

        log_performance("Scan iteration completed", {
            "session": session.session_id,
            "duration_ms": round((loop.time() - started) * 1000, 2),
            "events": len(events)
        })

    async def _capture(self, session: ScanSession):
        try:
            frame = await run_stage(session.frame_source.capture(), self.timeouts.capture, "capture")
        except PestDetectionError as e:
            self._on_capture_failure(e)
            raise
        self.error_handler.record_success(FRAME_SOURCE_COMPONENT)
        return frame

    def _on_capture_failure(self, error: PestDetectionError) -> None:
        self.error_handler.handle_error(FRAME_SOURCE_COMPONENT, error, ErrorSeverity.MEDIUM)
        failures = self.error_handler.consecutive_failures.get(FRAME_SOURCE_COMPONENT, 0)
        if failures < self.recovery_threshold:
            return

        logger.warning(f"{failures} consecutive capture failures, reopening frame source")
        if self.error_handler.attempt_recovery(FRAME_SOURCE_COMPONENT):
            self.stats["source_recoveries"] += 1

    def _reopen_frame_source(self) -> None:
        session = self.session
        if session is None:
            raise CaptureUnavailable("No scan session to recover")
        session.frame_source.reopen()

    def _halt(self, session: ScanSession, error: Exception) -> None:
        self.halt_reason = f"{type(error).__name__}: {error}"
        self.stats["halts"] += 1
        logger.error(f"Continuous scanning halted until restarted: {self.halt_reason}")
        if self.session is session:
            self.stop()

    def _deliver(self, session: ScanSession, events: List[DetectionEvent]) -> None:
        if not session.running:
            self.stats["dropped_after_stop"] += len(events)
            logger.debug(f"Dropped {len(events)} events from an iteration that outlived its session")
            return

        # Debounce applies across iterations; every region of an admitted pest is delivered
        admitted: Dict[str, bool] = {}
        for event in events:
            if event.detected:
                if event.pest_type not in admitted:
                    admitted[event.pest_type] = not self.engine.is_duplicate(event)
                if not admitted[event.pest_type]:
                    self.stats["suppressed_duplicates"] += 1
                    continue
            self.last_event = event
            self.dispatcher.dispatch(event)
            self.stats["events_delivered"] += 1

    def _record_failure(self, error: Exception, severity: ErrorSeverity) -> None:
        self.stats["failed_iterations"] += 1
        self.last_error = f"{type(error).__name__}: {error}"
        logger.warning(f"Scan iteration skipped: {self.last_error}")
        self.error_handler.handle_error(COMPONENT_NAME, error, severity)

    def get_status(self) -> Dict[str, Any]:
        """Get scan loop status."""
        session = self.session
        return {
            "scanning": self.is_scanning,
            "session_id": session.session_id if session else None,
            "session_started_at": session.started_at.isoformat() if session else None,
            "interval_ms": self.interval_ms,
            "iteration_in_flight": self.iteration_in_flight,
            "last_error": self.last_error,
            "halt_reason": self.halt_reason,
            "recovery_threshold": self.recovery_threshold,
            "last_event": self.last_event.to_dict() if self.last_event else None,
            **self.stats,
        }
