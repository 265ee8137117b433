"""Unit tests for frame sources."""

import asyncio
import os
import shutil
import sys
import tempfile
import threading
import unittest
from unittest.mock import patch

import cv2

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from rice_pest_detection.detection_pipeline import run_stage
from rice_pest_detection.services.error_handler import (
    CaptureFailed, CaptureUnavailable, StageTimeout
)
from rice_pest_detection.services.frame_capture import OpenCVFrameSource, StillImageSource
from fakes import make_image


class TestStillImageSource(unittest.IsolatedAsyncioTestCase):
    """Test cases for StillImageSource."""

    def setUp(self):
        """Set up test fixtures."""
        self.test_dir = tempfile.mkdtemp()
        self.image_path = os.path.join(self.test_dir, "field.jpg")
        cv2.imwrite(self.image_path, make_image())

    def tearDown(self):
        """Clean up test fixtures."""
        shutil.rmtree(self.test_dir, ignore_errors=True)

    async def test_capture_from_file(self):
        """Each capture returns a fresh frame of the file bytes."""
        source = StillImageSource(self.image_path)

        first = await source.capture()
        second = await source.capture()

        self.assertIsNot(first, second)
        self.assertEqual(first.source_uri, self.image_path)
        self.assertEqual(first.data[:2], b"\xff\xd8")

    async def test_capture_from_bytes(self):
        """Byte images are handed out directly."""
        source = StillImageSource(b"\xff\xd8data", source_uri="upload")

        frame = await source.capture()

        self.assertEqual(frame.data, b"\xff\xd8data")
        self.assertEqual(frame.source_uri, "upload")

    async def test_missing_file(self):
        """A missing image is unavailable."""
        source = StillImageSource(os.path.join(self.test_dir, "missing.jpg"))

        with self.assertRaises(CaptureUnavailable):
            await source.capture()


class TestOpenCVFrameSource(unittest.IsolatedAsyncioTestCase):
    """Test cases for OpenCVFrameSource with a mocked VideoCapture."""

    @patch('rice_pest_detection.services.frame_capture.cv2.VideoCapture')
    async def test_capture_frame(self, mock_capture):
        """Frames read from the device carry their size."""
        camera = mock_capture.return_value
        camera.isOpened.return_value = True
        camera.read.return_value = (True, make_image(64, 48))

        source = OpenCVFrameSource("0", (64, 48))
        source.open()
        frame = await source.capture()

        mock_capture.assert_called_once_with(0)
        self.assertEqual((frame.width, frame.height), (64, 48))
        self.assertEqual(source.frames_captured, 1)

    @patch('rice_pest_detection.services.frame_capture.cv2.VideoCapture')
    async def test_open_failure(self, mock_capture):
        """A device that will not open is unavailable."""
        mock_capture.return_value.isOpened.return_value = False

        with self.assertRaises(CaptureUnavailable):
            OpenCVFrameSource("video.mp4").open()

    async def test_capture_before_open(self):
        """Capturing from a source that was never opened is unavailable."""
        with self.assertRaises(CaptureUnavailable):
            await OpenCVFrameSource(0).capture()

    @patch('rice_pest_detection.services.frame_capture.cv2.VideoCapture')
    async def test_empty_read(self, mock_capture):
        """A read that returns no data fails the capture."""
        camera = mock_capture.return_value
        camera.isOpened.return_value = True
        camera.read.return_value = (False, None)

        source = OpenCVFrameSource(0)
        source.open()

        with self.assertRaises(CaptureFailed):
            await source.capture()
        self.assertEqual(source.capture_errors, 1)

    @patch('rice_pest_detection.services.frame_capture.cv2.VideoCapture')
    async def test_close_releases_device(self, mock_capture):
        """Closing releases the capture handle."""
        camera = mock_capture.return_value
        camera.isOpened.return_value = True

        source = OpenCVFrameSource(0)
        source.open()
        source.close()

        camera.release.assert_called_once()
        self.assertFalse(source.is_available())


class TestHungCameraRead(unittest.IsolatedAsyncioTestCase):
    """Test cases for a camera whose read call never returns."""

    def setUp(self):
        """Set up test fixtures."""
        self.release_read = threading.Event()
        self.reads = 0
        patcher = patch('rice_pest_detection.services.frame_capture.cv2.VideoCapture')
        self.mock_capture = patcher.start()
        self.addCleanup(patcher.stop)

        self.camera = self.mock_capture.return_value
        self.camera.isOpened.return_value = True
        self.camera.read.side_effect = self.blocking_read

        self.source = OpenCVFrameSource(0)
        self.source.open()

    async def asyncTearDown(self):
        """Clean up test fixtures."""
        self.release_read.set()
        self.source.close()

    def blocking_read(self):
        self.reads += 1
        self.release_read.wait(timeout=5)
        return True, make_image(32, 24)

    async def test_timed_out_read_is_not_queued_again(self):
        """While a read hangs, later captures fail fast instead of queueing threads."""
        with self.assertRaises(StageTimeout):
            await run_stage(self.source.capture(), 0.05, "capture")

        for _ in range(3):
            with self.assertRaises(CaptureUnavailable):
                await run_stage(self.source.capture(), 0.05, "capture")

        self.assertEqual(self.reads, 1)
        self.assertTrue(self.source.read_pending)

    async def test_captures_resume_after_read_returns(self):
        """Once the stuck read returns, the next capture reads again."""
        with self.assertRaises(StageTimeout):
            await run_stage(self.source.capture(), 0.05, "capture")

        self.release_read.set()
        for _ in range(100):
            if not self.source.read_pending:
                break
            await asyncio.sleep(0.01)

        frame = await run_stage(self.source.capture(), 1.0, "capture")

        self.assertEqual((frame.width, frame.height), (32, 24))
        self.assertEqual(self.reads, 2)

    async def test_worker_threads_stay_free(self):
        """A stuck read does not hold up other blocking work."""
        with self.assertRaises(StageTimeout):
            await run_stage(self.source.capture(), 0.05, "capture")

        result = await asyncio.wait_for(asyncio.to_thread(sum, [1, 2, 3]), 1.0)

        self.assertEqual(result, 6)

    async def test_reopen_abandons_stuck_read(self):
        """Reopening the source drops the stuck read and captures again."""
        with self.assertRaises(StageTimeout):
            await run_stage(self.source.capture(), 0.05, "capture")

        self.camera.read.side_effect = None
        self.camera.read.return_value = (True, make_image(16, 8))
        self.source.reopen()
        frame = await run_stage(self.source.capture(), 1.0, "capture")

        self.assertEqual(self.source.abandoned_reads, 1)
        self.assertEqual(self.mock_capture.call_count, 2)
        self.assertEqual((frame.width, frame.height), (16, 8))


if __name__ == '__main__':
    unittest.main()
