"""Fine-grained pest classifier running a TFLite image classification model."""

import asyncio
import json
import os
import re
from typing import Any, Callable, List, Optional, Sequence

import numpy as np

from .interfaces import Classifier
from .model_loader import SingleFlightLoader
from .error_handler import (
    ClassifierLoadFailed, ClassifierUnavailable, ReconciliationInputInvalid, PestDetectionError
)
from ..config.defaults import MODEL_SETTINGS
from ..models.detection import ClassificationVerdict
from ..utils import round_percent
from ..logging_config import get_logger

logger = get_logger("classifier")

_INDEXED_LABEL = re.compile(r"^\d+\s+(.+)$")


def load_labels(labels_path: str) -> List[str]:
    """Read class labels from a metadata.json or a newline separated labels file.

    Lines of the form ``"0 Golden Apple Snail"`` have their index stripped.
    """
    if not os.path.exists(labels_path):
        raise FileNotFoundError(f"Labels file not found: {labels_path}")

    with open(labels_path, "r", encoding="utf-8") as f:
        content = f.read()

    if labels_path.endswith(".json"):
        metadata = json.loads(content)
        labels = metadata.get("labels") if isinstance(metadata, dict) else metadata
        if not isinstance(labels, list):
            raise ValueError(f"No label list in {labels_path}")
        return [str(label) for label in labels]

    labels = []
    for line in content.splitlines():
        line = line.strip()
        if not line:
            continue
        match = _INDEXED_LABEL.match(line)
        labels.append(match.group(1) if match else line)
    return labels


class TFLiteClassificationModel:
    """Loaded TFLite interpreter plus its label list."""

    def __init__(self, interpreter, labels: List[str]):
        self.interp = interpreter
        self.labels = labels

        # Get input details
        io = self.interp.get_input_details()[0]
        self.in_idx = io["index"]
        self.input_t = io["dtype"]
        self.in_scale, self.in_zero_point = io.get("quantization", (0.0, 0))

        out = self.interp.get_output_details()[0]
        self.out_idx = out["index"]
        self.out_scale, self.out_zero_point = out.get("quantization", (0.0, 0))

    def predict(self, tensor: np.ndarray) -> np.ndarray:
        """Run inference on a normalized float tensor and return class probabilities."""
        if self.input_t in (np.uint8, np.int8) and self.in_scale:
            # Quantized models expect raw pixel values
            pixels = (tensor + 1.0) * 127.5
            inp = np.clip(np.round(pixels / self.in_scale + self.in_zero_point),
                          np.iinfo(self.input_t).min, np.iinfo(self.input_t).max).astype(self.input_t)
        else:
            inp = tensor.astype(self.input_t)

        self.interp.set_tensor(self.in_idx, inp)
        self.interp.invoke()
        scores = self.interp.get_tensor(self.out_idx)[0]

        if self.out_scale:
            scores = (scores.astype(np.float32) - self.out_zero_point) * self.out_scale
        return np.asarray(scores, dtype=np.float32)


def load_tflite_classifier(model_path: str, labels_path: str,
                           num_threads: int = MODEL_SETTINGS["num_threads"]) -> TFLiteClassificationModel:
    """Blocking loader for the on-device classifier."""
    if not os.path.exists(model_path):
        raise FileNotFoundError(f"Model file not found: {model_path}")

    from tflite_runtime.interpreter import Interpreter

    logger.info(f"Loading TFLite classifier from: {model_path}")
    labels = load_labels(labels_path)
    interpreter = Interpreter(model_path=model_path, num_threads=num_threads)
    interpreter.allocate_tensors()
    return TFLiteClassificationModel(interpreter, labels)


def build_verdict(scores: Sequence[float], labels: Sequence[str]) -> ClassificationVerdict:
    """Turn a probability vector into a verdict."""
    raw_scores = [float(s) for s in np.asarray(scores, dtype=np.float64).ravel()]
    if len(raw_scores) < 2:
        raise ReconciliationInputInvalid(
            f"Expected at least 2 class scores, got {len(raw_scores)}"
        )
    if len(raw_scores) != len(labels):
        raise ReconciliationInputInvalid(
            f"Score vector has {len(raw_scores)} entries for {len(labels)} labels"
        )

    best = int(np.argmax(raw_scores))
    return ClassificationVerdict(
        label=labels[best],
        confidence=max(0, min(100, round_percent(raw_scores[best]))),
        raw_scores=raw_scores,
        labels=list(labels)
    )


class TFLiteClassifier(Classifier):
    """Classifier whose model is loaded lazily and exactly once."""

    def __init__(self, model_path: Optional[str] = None, labels_path: Optional[str] = None,
                 loader: Optional[Callable[[], Any]] = None, max_attempts: int = 3,
                 retry_delay: float = 0.5, num_threads: int = MODEL_SETTINGS["num_threads"]):
        self.model_path = model_path or MODEL_SETTINGS["classifier_model_path"]
        self.labels_path = labels_path or MODEL_SETTINGS["classifier_labels_path"]
        self.num_threads = num_threads

        load_fn = loader or (lambda: load_tflite_classifier(
            self.model_path, self.labels_path, num_threads=self.num_threads
        ))
        self.loader = SingleFlightLoader(
            load_fn,
            name="classifier",
            max_attempts=max_attempts,
            delay=retry_delay,
            unavailable_error=ClassifierLoadFailed
        )
        self.inference_count = 0

    @property
    def is_loaded(self) -> bool:
        return self.loader.is_loaded

    async def ensure_loaded(self) -> None:
        await self.loader.get()

    async def classify(self, tensor: np.ndarray) -> ClassificationVerdict:
        model = await self.loader.get()
        try:
            scores = await asyncio.to_thread(model.predict, tensor)
        except PestDetectionError:
            raise
        except Exception as e:
            raise ClassifierUnavailable(f"Inference failed: {e}") from e

        self.inference_count += 1
        verdict = build_verdict(scores, model.labels)
        logger.debug(f"Classified as {verdict.label} ({verdict.confidence}%)")
        return verdict
