"""Unit tests for the classifier and single-flight model loading."""

import asyncio
import json
import os
import shutil
import sys
import tempfile
import threading
import time
import unittest

import numpy as np

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from rice_pest_detection.services.classifier import TFLiteClassifier, build_verdict, load_labels
from rice_pest_detection.services.error_handler import (
    ClassifierLoadFailed, ClassifierUnavailable, ReconciliationInputInvalid
)
from rice_pest_detection.services.model_loader import SingleFlightLoader
from fakes import FakeModel, LABELS


class CountingLoader:
    """Slow blocking loader that counts how often it runs."""

    def __init__(self, failures: int = 0, delay: float = 0.05):
        self.failures = failures
        self.delay = delay
        self.calls = 0
        self._lock = threading.Lock()

    def __call__(self):
        with self._lock:
            self.calls += 1
            call = self.calls
        time.sleep(self.delay)
        if call <= self.failures:
            raise OSError(f"load failure {call}")
        return FakeModel()


class BrokenModel(FakeModel):
    """Model whose inference always fails."""

    def predict(self, tensor):
        raise RuntimeError("bad tensor")


class TestBuildVerdict(unittest.TestCase):
    """Test cases for build_verdict."""

    def test_verdict_from_scores(self):
        """The argmax label and its rounded confidence are reported."""
        verdict = build_verdict(np.array([0.1, 0.85, 0.05]), ["a", "b", "c"])

        self.assertEqual(verdict.label, "b")
        self.assertEqual(verdict.confidence, 85)
        self.assertEqual(verdict.labels, ["a", "b", "c"])
        self.assertEqual(len(verdict.raw_scores), 3)

    def test_single_score_rejected(self):
        """One class is not enough to measure a margin."""
        with self.assertRaises(ReconciliationInputInvalid):
            build_verdict([0.99], ["a"])

    def test_label_count_mismatch_rejected(self):
        """Scores and labels must line up."""
        with self.assertRaises(ReconciliationInputInvalid):
            build_verdict([0.5, 0.3, 0.2], ["a", "b"])


class TestLoadLabels(unittest.TestCase):
    """Test cases for label file parsing."""

    def setUp(self):
        """Set up test fixtures."""
        self.test_dir = tempfile.mkdtemp()

    def tearDown(self):
        """Clean up test fixtures."""
        shutil.rmtree(self.test_dir, ignore_errors=True)

    def test_metadata_json(self):
        """Labels are read from the metadata labels list."""
        path = os.path.join(self.test_dir, "metadata.json")
        with open(path, "w") as f:
            json.dump({"labels": LABELS}, f)

        self.assertEqual(load_labels(path), LABELS)

    def test_indexed_text_file(self):
        """Leading indices are stripped from text label files."""
        path = os.path.join(self.test_dir, "labels.txt")
        with open(path, "w") as f:
            f.write("0 Golden Apple Snail\n1 no pest\n\nGrasshoppers\n")

        self.assertEqual(load_labels(path), ["Golden Apple Snail", "no pest", "Grasshoppers"])

    def test_missing_file(self):
        """A missing labels file raises FileNotFoundError."""
        with self.assertRaises(FileNotFoundError):
            load_labels(os.path.join(self.test_dir, "missing.json"))


class TestSingleFlightLoader(unittest.IsolatedAsyncioTestCase):
    """Test cases for SingleFlightLoader."""

    async def test_concurrent_callers_share_one_load(self):
        """Callers arriving during a load wait for it instead of starting another."""
        load_fn = CountingLoader()
        loader = SingleFlightLoader(load_fn, name="test", delay=0)

        models = await asyncio.gather(loader.get(), loader.get(), loader.get())

        self.assertEqual(load_fn.calls, 1)
        self.assertIs(models[0], models[1])
        self.assertIs(models[1], models[2])
        self.assertTrue(loader.is_loaded)

    async def test_loaded_model_is_reused(self):
        """Later calls do not load again."""
        load_fn = CountingLoader(delay=0)
        loader = SingleFlightLoader(load_fn, name="test", delay=0)

        await loader.get()
        await loader.get()

        self.assertEqual(load_fn.calls, 1)
        self.assertEqual(loader.loads, 1)

    async def test_transient_failures_are_retried(self):
        """Two failures followed by a success still load the model."""
        load_fn = CountingLoader(failures=2, delay=0)
        loader = SingleFlightLoader(load_fn, name="test", max_attempts=3, delay=0)

        model = await loader.get()

        self.assertIsInstance(model, FakeModel)
        self.assertEqual(loader.load_attempts, 3)

    async def test_exhausted_retries_raise_unavailable(self):
        """Every attempt failing raises the configured error."""
        load_fn = CountingLoader(failures=100, delay=0)
        loader = SingleFlightLoader(load_fn, name="test", max_attempts=3, delay=0)

        with self.assertRaises(ClassifierUnavailable):
            await loader.get()

        self.assertEqual(load_fn.calls, 3)
        self.assertEqual(loader.failed_loads, 1)
        self.assertFalse(loader.is_loaded)

    async def test_failed_load_is_retried_on_next_call(self):
        """A failed load is not cached."""
        load_fn = CountingLoader(failures=3, delay=0)
        loader = SingleFlightLoader(load_fn, name="test", max_attempts=3, delay=0)

        with self.assertRaises(ClassifierUnavailable):
            await loader.get()
        model = await loader.get()

        self.assertIsInstance(model, FakeModel)
        self.assertEqual(load_fn.calls, 4)

    async def test_reset_forces_reload(self):
        """After reset the next call loads again."""
        load_fn = CountingLoader(delay=0)
        loader = SingleFlightLoader(load_fn, name="test", delay=0)

        await loader.get()
        loader.reset()
        await loader.get()

        self.assertEqual(load_fn.calls, 2)


class TestTFLiteClassifier(unittest.IsolatedAsyncioTestCase):
    """Test cases for TFLiteClassifier with a stand-in model."""

    async def test_classify_returns_verdict(self):
        """Scores from the model become a verdict over its labels."""
        classifier = TFLiteClassifier(loader=FakeModel, retry_delay=0)

        verdict = await classifier.classify(np.zeros((1, 224, 224, 3), dtype=np.float32))

        self.assertEqual(verdict.label, "Rice Black Bug")
        self.assertEqual(verdict.confidence, 95)
        self.assertEqual(classifier.inference_count, 1)

    async def test_concurrent_first_classifications_load_once(self):
        """Two scans racing on a cold classifier share the model load."""
        load_fn = CountingLoader()
        classifier = TFLiteClassifier(loader=load_fn, retry_delay=0)
        tensor = np.zeros((1, 224, 224, 3), dtype=np.float32)

        first, second = await asyncio.gather(classifier.classify(tensor), classifier.classify(tensor))

        self.assertEqual(load_fn.calls, 1)
        self.assertEqual(first.label, second.label)

    async def test_unloadable_model_raises_load_failed(self):
        """A model that never loads surfaces ClassifierLoadFailed after every attempt."""
        load_fn = CountingLoader(failures=100, delay=0)
        classifier = TFLiteClassifier(loader=load_fn, retry_delay=0)

        with self.assertRaises(ClassifierLoadFailed):
            await classifier.classify(np.zeros((1, 224, 224, 3), dtype=np.float32))
        self.assertEqual(load_fn.calls, 3)

    async def test_inference_error_raises_unavailable(self):
        """Exceptions from the interpreter are wrapped."""
        classifier = TFLiteClassifier(loader=BrokenModel, retry_delay=0)

        with self.assertRaises(ClassifierUnavailable) as ctx:
            await classifier.classify(np.zeros((1, 224, 224, 3), dtype=np.float32))
        self.assertNotIsInstance(ctx.exception, ClassifierLoadFailed)

    async def test_single_class_model_output_is_invalid(self):
        """A one-class model cannot be reconciled."""
        classifier = TFLiteClassifier(loader=lambda: FakeModel([0.9], ["a"]), retry_delay=0)

        with self.assertRaises(ReconciliationInputInvalid):
            await classifier.classify(np.zeros((1, 224, 224, 3), dtype=np.float32))

    async def test_missing_model_file(self):
        """The default loader fails cleanly when the model file does not exist."""
        classifier = TFLiteClassifier(model_path="/nonexistent/model.tflite",
                                      labels_path="/nonexistent/metadata.json",
                                      max_attempts=1, retry_delay=0)

        with self.assertRaises(ClassifierUnavailable):
            await classifier.ensure_loaded()
        self.assertFalse(classifier.is_loaded)


if __name__ == '__main__':
    unittest.main()
