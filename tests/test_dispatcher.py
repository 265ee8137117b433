"""Unit tests for detection event dispatch."""

import os
import sys
import unittest
from unittest.mock import Mock

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from rice_pest_detection.models.detection import DetectionEvent
from rice_pest_detection.services.dispatcher import DetectionDispatcher
from rice_pest_detection.services.interfaces import DetectionSink
from fakes import RecordingSink


class TestDetectionDispatcher(unittest.TestCase):
    """Test cases for DetectionDispatcher."""

    def setUp(self):
        """Set up test fixtures."""
        self.dispatcher = DetectionDispatcher()
        self.event = DetectionEvent(detected=True, pest_type="Grasshoppers", confidence=95)

    def test_sinks_and_callables_receive_events(self):
        """Both sink objects and plain callbacks are supported."""
        sink = RecordingSink()
        callback = Mock()
        self.dispatcher.add_observer(sink)
        self.dispatcher.add_observer(callback)

        handled = self.dispatcher.dispatch(self.event)

        self.assertEqual(handled, 2)
        self.assertEqual(sink.events, [self.event])
        callback.assert_called_once_with(self.event)

    def test_failing_observer_is_isolated(self):
        """An observer that raises does not keep the event from the others."""
        first = RecordingSink()
        broken = Mock(spec=DetectionSink)
        broken.on_detection.side_effect = RuntimeError("UI closed")
        last = RecordingSink()
        for observer in (first, broken, last):
            self.dispatcher.add_observer(observer)

        handled = self.dispatcher.dispatch(self.event)

        self.assertEqual(handled, 2)
        self.assertEqual(len(first.events), 1)
        self.assertEqual(len(last.events), 1)
        self.assertEqual(self.dispatcher.observer_errors, 1)

    def test_observer_added_once(self):
        """Registering the same observer twice delivers once."""
        sink = RecordingSink()
        self.dispatcher.add_observer(sink)
        self.dispatcher.add_observer(sink)

        self.dispatcher.dispatch(self.event)

        self.assertEqual(len(sink.events), 1)
        self.assertEqual(self.dispatcher.observer_count, 1)

    def test_remove_observer(self):
        """Removed observers no longer receive events."""
        sink = RecordingSink()
        self.dispatcher.add_observer(sink)

        self.assertTrue(self.dispatcher.remove_observer(sink))
        self.assertFalse(self.dispatcher.remove_observer(sink))
        self.dispatcher.dispatch(self.event)

        self.assertEqual(sink.events, [])

    def test_dispatch_without_observers(self):
        """Dispatching with nobody listening is harmless."""
        self.assertEqual(self.dispatcher.dispatch(self.event), 0)
        self.assertEqual(self.dispatcher.delivered_events, 1)


if __name__ == '__main__':
    unittest.main()
