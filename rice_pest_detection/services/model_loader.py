"""Lazy, single-flight model loading with retry."""

import asyncio
from typing import Any, Callable, Optional, Type

from .error_decorators import retry_async
from .error_handler import PestDetectionError, ClassifierUnavailable
from ..config.defaults import SYSTEM_CONSTANTS
from ..logging_config import get_logger, log_performance

logger = get_logger("model_loader")


class SingleFlightLoader:
    """Loads a model at most once, no matter how many callers ask concurrently.

    Concurrent first callers await one shared load task. A load that fails
    after every attempt is forgotten, so the next ``get()`` starts over.
    """

    def __init__(self, load_fn: Callable[[], Any], name: str = "model",
                 max_attempts: int = 3, delay: float = 0.5,
                 backoff_factor: Optional[float] = None,
                 unavailable_error: Type[PestDetectionError] = ClassifierUnavailable):
        self.load_fn = load_fn
        self.name = name
        self.max_attempts = max(1, max_attempts)
        self.delay = delay
        self.backoff_factor = backoff_factor or SYSTEM_CONSTANTS["MODEL_LOAD_BACKOFF_FACTOR"]
        self.unavailable_error = unavailable_error

        self._model: Any = None
        self._task: Optional[asyncio.Task] = None
        self.loads = 0
        self.load_attempts = 0
        self.failed_loads = 0

    @property
    def is_loaded(self) -> bool:
        return self._model is not None

    async def get(self) -> Any:
        """Return the loaded model, loading it on first use."""
        if self._model is not None:
            return self._model

        if self._task is None:
            self._task = asyncio.ensure_future(self._load_with_retry())
        task = self._task

        try:
            # A caller timing out must not cancel the load other callers share
            return await asyncio.shield(task)
        except PestDetectionError:
            if self._task is task:
                self._task = None
            raise

    async def _load_with_retry(self) -> Any:
        attempt_load = retry_async(
            max_attempts=self.max_attempts,
            delay=self.delay,
            backoff_factor=self.backoff_factor
        )(self._load_once)

        loop = asyncio.get_running_loop()
        started = loop.time()
        try:
            model = await attempt_load()
        except Exception as e:
            self.failed_loads += 1
            logger.error(f"{self.name} unavailable after {self.max_attempts} attempts: {e}")
            raise self.unavailable_error(
                f"{self.name} failed to load after {self.max_attempts} attempts: {e}"
            ) from e

        self._model = model
        self.loads += 1
        log_performance(f"{self.name} loaded", {
            "duration_ms": round((loop.time() - started) * 1000, 2),
            "attempts": self.load_attempts
        })
        logger.info(f"{self.name} loaded")
        return model

    async def _load_once(self) -> Any:
        self.load_attempts += 1
        return await asyncio.to_thread(self.load_fn)

    def reset(self) -> None:
        """Forget the loaded model so the next get() loads it again."""
        self._model = None
        if self._task is not None and self._task.done():
            self._task = None
