"""Frame sources backed by OpenCV video capture or still images."""

import asyncio
import concurrent.futures
import os
import threading
from typing import Optional, Tuple, Union

import cv2

from .interfaces import FrameSource
from .error_handler import CaptureUnavailable, CaptureFailed
from ..models.detection import Frame
from ..logging_config import get_logger

logger = get_logger("frame_capture")


def _parse_source(source: Union[str, int]) -> Union[str, int]:
    """Device indices arrive as strings from config files."""
    if isinstance(source, str) and source.isdigit():
        return int(source)
    return source


class OpenCVFrameSource(FrameSource):
    """Live camera, video file or network stream read through cv2.VideoCapture.

    Reads run on a dedicated single worker thread. A read that never returns
    occupies only that thread: later captures fail fast with
    CaptureUnavailable until it resolves or the source is reopened.
    """

    def __init__(self, source: Union[str, int] = 0,
                 resolution: Optional[Tuple[int, int]] = (640, 480)):
        self.source = _parse_source(source)
        self.resolution = resolution
        self.camera = None
        self._lock = threading.Lock()
        self._executor: Optional[concurrent.futures.ThreadPoolExecutor] = None
        self._pending_read: Optional[concurrent.futures.Future] = None
        self.frames_captured = 0
        self.capture_errors = 0
        self.abandoned_reads = 0

        logger.info("Frame source initialized", extra={
            'context': {
                'source': self.source,
                'resolution': f"{resolution[0]}x{resolution[1]}" if resolution else "native"
            }
        })

    def open(self) -> None:
        """Open the capture device."""
        with self._lock:
            if self.camera is not None and self.camera.isOpened():
                return

            camera = cv2.VideoCapture(self.source)
            if not camera.isOpened():
                camera.release()
                raise CaptureUnavailable(f"Unable to open video source {self.source!r}")

            if self.resolution:
                camera.set(cv2.CAP_PROP_FRAME_WIDTH, self.resolution[0])
                camera.set(cv2.CAP_PROP_FRAME_HEIGHT, self.resolution[1])

            self.camera = camera
            self._executor = concurrent.futures.ThreadPoolExecutor(
                max_workers=1,
                thread_name_prefix="frame-capture",
            )
            self._pending_read = None
            logger.info(f"Opened video source {self.source!r}")

    def is_available(self) -> bool:
        return self.camera is not None and self.camera.isOpened()

    @property
    def read_pending(self) -> bool:
        return self._pending_read is not None and not self._pending_read.done()

    async def capture(self) -> Frame:
        camera, executor = self.camera, self._executor
        if camera is None or executor is None or not camera.isOpened():
            raise CaptureUnavailable(f"Video source {self.source!r} is not open")
        if self.read_pending:
            raise CaptureUnavailable(f"Previous read from {self.source!r} has not returned")

        self._pending_read = executor.submit(self._read_frame, camera)
        return await asyncio.wrap_future(self._pending_read)

    def _read_frame(self, camera) -> Frame:
        try:
            ok, image = camera.read()
        except cv2.error as e:
            self.capture_errors += 1
            raise CaptureFailed(f"Capture call failed: {e}") from e

        if not ok or image is None or image.size == 0:
            self.capture_errors += 1
            raise CaptureFailed(f"No frame returned from {self.source!r}")

        self.frames_captured += 1
        height, width = image.shape[:2]
        return Frame(data=image, width=width, height=height, source_uri=str(self.source))

    def close(self) -> None:
        with self._lock:
            if self.read_pending:
                self.abandoned_reads += 1
                logger.warning(f"Closing {self.source!r} with a read still pending")
            if self._executor is not None:
                self._executor.shutdown(wait=False)
                self._executor = None
            self._pending_read = None
            if self.camera is not None:
                self.camera.release()
                self.camera = None
                logger.info(f"Closed video source {self.source!r}")


class StillImageSource(FrameSource):
    """Hands out the same still image, as a fresh Frame, on every capture."""

    def __init__(self, image: Union[str, bytes], source_uri: Optional[str] = None):
        self.image = image
        if source_uri is None and isinstance(image, str):
            source_uri = image
        self.source_uri = source_uri

    def is_available(self) -> bool:
        if isinstance(self.image, str):
            return os.path.exists(self.image)
        return bool(self.image)

    async def capture(self) -> Frame:
        if not self.is_available():
            raise CaptureUnavailable(f"Image not available: {self.source_uri or '<bytes>'}")
        if isinstance(self.image, str):
            try:
                data = await asyncio.to_thread(self._read_file, self.image)
            except OSError as e:
                raise CaptureFailed(f"Unable to read {self.image}: {e}") from e
        else:
            data = bytes(self.image)
        return Frame(data=data, source_uri=self.source_uri)

    @staticmethod
    def _read_file(path: str) -> bytes:
        with open(path, "rb") as f:
            return f.read()
