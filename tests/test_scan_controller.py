"""Unit tests for the scan controller."""

import os
import shutil
import sys
import tempfile
import unittest
from unittest.mock import patch

import cv2

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from rice_pest_detection.config_manager import ConfigManager
from rice_pest_detection.models.config import SystemConfig
from rice_pest_detection.models.detection import Frame
from rice_pest_detection.scan_controller import (
    ScanController, build_localizer, build_sinks, to_frame
)
from rice_pest_detection.services.error_handler import CaptureUnavailable, PreprocessFailed
from rice_pest_detection.services.localizer import LocalLocalizer, RemoteLocalizer
from rice_pest_detection.services.notification_service import NotificationService
from rice_pest_detection.services.preprocessor import ImagePreprocessor
from rice_pest_detection.services.storage_service import StorageService
from fakes import (
    FakeFrameSource, FakeLocalizer, FakeTicker, RecordingSink, StaticClassifier, make_image
)


class TestScanController(unittest.IsolatedAsyncioTestCase):
    """Test cases for ScanController."""

    def setUp(self):
        """Set up test fixtures."""
        self.config = SystemConfig(storage_enabled=False, debounce_seconds=10.0, target_size=32)
        self.classifier = StaticClassifier()
        self.sink = RecordingSink()
        self.ticker = FakeTicker()

    def build_controller(self, **kwargs):
        options = dict(config=self.config, classifier=self.classifier,
                       sinks=[self.sink], sleep=self.ticker.sleep)
        options.update(kwargs)
        self.controller = ScanController(**options)
        return self.controller

    async def asyncTearDown(self):
        """Clean up test fixtures."""
        if hasattr(self, "controller"):
            await self.controller.shutdown()

    async def test_analyze_single_image(self):
        """A whole image is classified and delivered once."""
        controller = self.build_controller()

        event = await controller.analyze_single_image(make_image(80, 60))

        self.assertTrue(event.detected)
        self.assertEqual(event.pest_type, "Rice Black Bug")
        self.assertEqual(event.image_width, 80)
        self.assertEqual(self.sink.events, [event])
        self.assertEqual(controller.single_image_count, 1)

    async def test_analyze_bypasses_localizer(self):
        """Single-image analysis never calls the localizer."""
        localizer = FakeLocalizer([])
        controller = self.build_controller(localizer=localizer)

        event = await controller.analyze_single_image(make_image())

        self.assertTrue(event.detected)
        self.assertEqual(localizer.calls, 0)

    async def test_analyze_is_not_debounced(self):
        """Every explicit analysis is delivered."""
        controller = self.build_controller()

        await controller.analyze_single_image(make_image())
        await controller.analyze_single_image(make_image())

        self.assertEqual(len(self.sink.events), 2)

    async def test_analyze_releases_frame(self):
        """The analyzed frame is released afterwards."""
        controller = self.build_controller()
        frame = Frame(data=make_image())

        await controller.analyze_single_image(frame)

        self.assertTrue(frame.released)

    async def test_analyze_from_jpeg_bytes(self):
        """Encoded uploads are decoded before classification."""
        controller = self.build_controller()
        ok, encoded = cv2.imencode(".jpg", make_image(64, 48))

        event = await controller.analyze_single_image(encoded.tobytes())

        self.assertEqual((event.image_width, event.image_height), (64, 48))

    async def test_analyze_failure_propagates(self):
        """Errors reach the caller and are recorded; nothing is delivered."""
        controller = self.build_controller()

        with self.assertRaises(PreprocessFailed):
            await controller.analyze_single_image(b"not an image")

        self.assertEqual(self.sink.events, [])
        self.assertEqual(controller.error_handler.component_error_counts["single_image"], 1)

    async def test_start_and_stop_are_idempotent(self):
        """Repeated start and stop calls are no-ops."""
        controller = self.build_controller()
        source = FakeFrameSource()

        self.assertTrue(controller.start_continuous_scanning(source))
        self.assertFalse(controller.start_continuous_scanning(source))
        self.assertTrue(controller.is_scanning)
        self.assertTrue(controller.stop_continuous_scanning())
        self.assertFalse(controller.stop_continuous_scanning())

    async def test_continuous_scanning_delivers_events(self):
        """Ticks flow through the pipeline to observers."""
        controller = self.build_controller(frame_source=FakeFrameSource())
        controller.start_continuous_scanning()

        await self.ticker.tick()
        await controller.scan_loop.wait_idle()

        self.assertEqual(len(self.sink.events), 1)
        self.assertTrue(self.sink.events[0].detected)

    @patch('rice_pest_detection.services.frame_capture.cv2.VideoCapture')
    async def test_start_without_camera(self, mock_capture):
        """A camera that cannot be opened prevents scanning from starting."""
        mock_capture.return_value.isOpened.return_value = False
        controller = self.build_controller()

        with self.assertRaises(CaptureUnavailable):
            controller.start_continuous_scanning()
        self.assertFalse(controller.is_scanning)

    async def test_shutdown_closes_source(self):
        """Shutdown stops scanning and closes the frame source."""
        controller = self.build_controller()
        source = FakeFrameSource()
        controller.start_continuous_scanning(source)

        await controller.shutdown()

        self.assertFalse(controller.is_scanning)
        self.assertTrue(source.closed)

    async def test_observers(self):
        """Observers can be added and removed at runtime."""
        controller = self.build_controller()
        extra = RecordingSink()
        controller.add_observer(extra)

        await controller.analyze_single_image(make_image())
        self.assertTrue(controller.remove_observer(extra))
        await controller.analyze_single_image(make_image())

        self.assertEqual(len(extra.events), 1)
        self.assertEqual(len(self.sink.events), 2)

    async def test_warm_up(self):
        """Warm up loads the classifier."""
        controller = self.build_controller()

        await controller.warm_up()

    @patch('rice_pest_detection.services.classifier.load_tflite_classifier')
    async def test_classifier_uses_configured_threads(self, mock_load):
        """The configured thread count reaches the classifier loader."""
        mock_load.return_value = object()
        self.config.num_threads = 4
        controller = self.build_controller(classifier=None)

        await controller.warm_up()

        mock_load.assert_called_once_with(
            self.config.classifier_model_path, self.config.classifier_labels_path, num_threads=4
        )

    async def test_restart_after_model_halt(self):
        """Starting again after an unloadable model halt is allowed."""
        controller = self.build_controller()
        source = FakeFrameSource()
        controller.start_continuous_scanning(source)
        controller.scan_loop._halt(controller.scan_loop.session, RuntimeError("model gone"))

        self.assertFalse(controller.is_scanning)
        self.assertIn("model gone", controller.get_status()["scan_loop"]["halt_reason"])
        self.assertTrue(controller.start_continuous_scanning(source))

    async def test_status(self):
        """Status gathers every component."""
        controller = self.build_controller()

        status = controller.get_status()

        self.assertFalse(status["scanning"])
        self.assertIsNone(status["localizer"])
        self.assertEqual(status["observers"], 1)
        self.assertIn("scan_loop", status)
        self.assertIn("reconciliation", status)
        self.assertEqual(status["errors"]["total_errors"], 0)
        self.assertEqual(status["health"]["frame_source"], "healthy")


class TestScanControllerConfig(unittest.TestCase):
    """Test cases for configuration driven wiring."""

    def setUp(self):
        """Set up test fixtures."""
        self.test_dir = tempfile.mkdtemp()

    def tearDown(self):
        """Clean up test fixtures."""
        shutil.rmtree(self.test_dir, ignore_errors=True)

    def test_config_changes_update_thresholds(self):
        """Updating the config retunes the engine and scan cadence."""
        manager = ConfigManager(os.path.join(self.test_dir, "config.json"))
        manager.update_config(storage_enabled=False)
        controller = ScanController(config_manager=manager, classifier=StaticClassifier())

        manager.update_config(min_confidence=70, min_margin=5, scan_interval_ms=250, capture_recovery_threshold=5)

        self.assertEqual(controller.engine.min_confidence, 70)
        self.assertEqual(controller.engine.min_margin, 5)
        self.assertEqual(controller.scan_loop.interval_ms, 250)
        self.assertEqual(controller.scan_loop.recovery_threshold, 5)

    def test_build_localizer(self):
        """The configured strategy selects the localizer."""
        preprocessor = ImagePreprocessor()

        self.assertIsNone(build_localizer(SystemConfig(), preprocessor))
        remote = build_localizer(SystemConfig(localizer_strategy="remote",
                                              remote_endpoint="https://detect.example.com",
                                              remote_box_format="top_left"), preprocessor)
        self.assertIsInstance(remote, RemoteLocalizer)
        self.assertEqual(remote.box_format, "top_left")
        self.assertIsInstance(build_localizer(SystemConfig(localizer_strategy="local"), preprocessor),
                              LocalLocalizer)

    @patch('rice_pest_detection.services.localizer.load_tflite_ssd')
    def test_local_localizer_uses_configured_threads(self, mock_load):
        """The configured thread count reaches the on-device detector loader."""
        localizer = build_localizer(SystemConfig(localizer_strategy="local", num_threads=3),
                                    ImagePreprocessor())

        localizer.loader.load_fn()

        mock_load.assert_called_once_with(localizer.model_path, num_threads=3)

    def test_build_sinks(self):
        """Storage and notification sinks follow their switches."""
        config = SystemConfig(database_path=os.path.join(self.test_dir, "detections.db"),
                              push_notifications_enabled=True)

        sinks = build_sinks(config)
        try:
            self.assertEqual([type(s) for s in sinks], [StorageService, NotificationService])
        finally:
            sinks[1].stop_processing()

        self.assertEqual(build_sinks(SystemConfig(storage_enabled=False)), [])

    def test_catalog_from_file(self):
        """A configured species file extends the catalog."""
        path = os.path.join(self.test_dir, "species.json")
        with open(path, "w") as f:
            f.write('[{"name": "Stem Borer"}]')
        config = SystemConfig(storage_enabled=False, species_catalog_path=path)

        controller = ScanController(config=config, classifier=StaticClassifier())

        self.assertIsNotNone(controller.catalog.lookup("Stem Borer"))

    def test_to_frame(self):
        """Handles of every supported kind become frames."""
        image = make_image(20, 10)

        self.assertEqual(to_frame(image).width, 20)
        self.assertEqual(to_frame(b"\xff\xd8").data, b"\xff\xd8")
        self.assertEqual(to_frame("/tmp/field.jpg").source_uri, "/tmp/field.jpg")
        with self.assertRaises(TypeError):
            to_frame(42)


if __name__ == '__main__':
    unittest.main()
