"""Background asyncio loop for driving the scanner from synchronous code."""

import asyncio
import threading
from typing import Any, Callable, Coroutine, Optional

from .logging_config import get_logger

logger = get_logger("event_loop")


class BackgroundEventLoop:
    """Runs an event loop in a daemon thread and accepts work from other threads."""

    def __init__(self, name: str = "pest-scan-loop"):
        self.name = name
        self.loop: Optional[asyncio.AbstractEventLoop] = None
        self._thread: Optional[threading.Thread] = None
        self._ready = threading.Event()

    @property
    def is_running(self) -> bool:
        return self.loop is not None and self.loop.is_running()

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._ready.clear()
        self._thread = threading.Thread(target=self._run, name=self.name, daemon=True)
        self._thread.start()
        self._ready.wait(timeout=5.0)
        logger.debug("Background event loop started")

    def _run(self) -> None:
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
        self.loop = loop
        loop.call_soon(self._ready.set)
        try:
            loop.run_forever()
        finally:
            loop.run_until_complete(loop.shutdown_asyncgens())
            loop.close()

    def run(self, coro: Coroutine[Any, Any, Any], timeout: Optional[float] = None) -> Any:
        """Run a coroutine on the loop and block for its result."""
        if not self.is_running:
            coro.close()
            raise RuntimeError("Background event loop is not running")
        future = asyncio.run_coroutine_threadsafe(coro, self.loop)
        return future.result(timeout)

    def call(self, func: Callable[..., Any], *args: Any, timeout: Optional[float] = None) -> Any:
        """Call a plain function on the loop thread and block for its result."""
        async def _invoke():
            return func(*args)
        return self.run(_invoke(), timeout=timeout)

    def stop(self) -> None:
        if not self.is_running:
            return
        self.loop.call_soon_threadsafe(self.loop.stop)
        if self._thread is not None:
            self._thread.join(timeout=5.0)
        logger.debug("Background event loop stopped")
