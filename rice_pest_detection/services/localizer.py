"""Coarse localizers: a hosted detection endpoint and an on-device SSD model."""

import asyncio
import base64
import os
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

import cv2
import numpy as np
import requests

from .interfaces import Localizer
from .model_loader import SingleFlightLoader
from .preprocessor import ImagePreprocessor
from .error_handler import LocalizerUnavailable, PestDetectionError
from ..config.defaults import COCO_LABELS, MODEL_SETTINGS, SYSTEM_CONSTANTS
from ..models.detection import Frame, Region
from ..utils import center_to_top_left
from ..logging_config import get_logger

logger = get_logger("localizer")

BOX_FORMATS = ("center", "top_left")


class RemoteLocalizer(Localizer):
    """Posts the frame as base64 JPEG to a hosted object detection workflow."""

    def __init__(self, endpoint: str, api_key: str = "", box_format: str = "center",
                 timeout: Optional[float] = None,
                 preprocessor: Optional[ImagePreprocessor] = None):
        if box_format not in BOX_FORMATS:
            raise ValueError(f"Unknown box format: {box_format}")
        self.endpoint = endpoint
        self.api_key = api_key
        self.box_format = box_format
        self.timeout = timeout or SYSTEM_CONSTANTS["REMOTE_REQUEST_TIMEOUT_SECONDS"]
        self.preprocessor = preprocessor or ImagePreprocessor()
        self.request_count = 0
        self.failure_count = 0

    async def detect(self, frame: Frame) -> List[Region]:
        if not self.endpoint:
            raise LocalizerUnavailable("No localizer endpoint configured")

        try:
            image_bytes = await asyncio.to_thread(self.preprocessor.encode_jpeg, frame)
        except PestDetectionError as e:
            raise LocalizerUnavailable(f"Unable to encode frame: {e}") from e

        payload = {
            "api_key": self.api_key,
            "inputs": {
                "image": {
                    "type": "base64",
                    "value": base64.b64encode(image_bytes).decode("ascii")
                }
            }
        }

        body = await asyncio.to_thread(self._post, payload)
        regions = self.parse_predictions(body)
        logger.debug(f"Remote localizer returned {len(regions)} regions")
        return regions

    def _post(self, payload: Dict[str, Any]) -> Any:
        self.request_count += 1
        try:
            response = requests.post(self.endpoint, json=payload, timeout=self.timeout)
            response.raise_for_status()
            return response.json()
        except requests.RequestException as e:
            self.failure_count += 1
            raise LocalizerUnavailable(f"Localizer request failed: {e}") from e
        except ValueError as e:
            self.failure_count += 1
            raise LocalizerUnavailable(f"Localizer returned invalid JSON: {e}") from e

    def parse_predictions(self, body: Any) -> List[Region]:
        """Normalize either response shape into top-left Regions."""
        predictions = self._extract_predictions(body)

        regions = []
        for prediction in predictions:
            try:
                regions.append(self._to_region(prediction))
            except (KeyError, TypeError, ValueError) as e:
                raise LocalizerUnavailable(f"Malformed prediction {prediction!r}: {e}") from e
        return regions

    @staticmethod
    def _extract_predictions(body: Any) -> List[Dict[str, Any]]:
        if not isinstance(body, dict):
            raise LocalizerUnavailable("Localizer response is not an object")

        predictions = body.get("predictions")
        if predictions is None:
            outputs = body.get("outputs")
            if isinstance(outputs, list) and outputs and isinstance(outputs[0], dict):
                nested = outputs[0].get("predictions")
                predictions = nested.get("predictions") if isinstance(nested, dict) else nested

        if not isinstance(predictions, list):
            raise LocalizerUnavailable("Localizer response has no prediction list")
        return predictions

    def _to_region(self, prediction: Dict[str, Any]) -> Region:
        width = float(prediction["width"])
        height = float(prediction["height"])

        if "centerX" in prediction:
            x, y, width, height = center_to_top_left(
                float(prediction["centerX"]), float(prediction["centerY"]), width, height
            )
        elif self.box_format == "center":
            x, y, width, height = center_to_top_left(
                float(prediction["x"]), float(prediction["y"]), width, height
            )
        else:
            x, y = float(prediction["x"]), float(prediction["y"])

        label = prediction.get("class") or prediction.get("label") or ""
        score = float(prediction.get("confidence", prediction.get("score", 0.0)))
        return Region(x=x, y=y, width=width, height=height,
                      source_label=str(label), source_score=score)


class TFLiteSSDModel:
    """SSD detector returning normalized [ymin, xmin, ymax, xmax] boxes."""

    def __init__(self, interpreter):
        self.interp = interpreter

        io = self.interp.get_input_details()[0]
        self.in_idx = io["index"]
        self.input_h = io["shape"][1]
        self.input_w = io["shape"][2]
        self.input_t = io["dtype"]
        self.scale, self.zero_point = io.get("quantization", (0.0, 0))

        out_details = self.interp.get_output_details()
        self.out_idx = {
            "boxes": out_details[0]["index"],
            "classes": out_details[1]["index"],
            "scores": out_details[2]["index"],
            "count": out_details[3]["index"],
        }

    def detect(self, image: np.ndarray) -> List[Tuple[Tuple[float, float, float, float], int, float]]:
        img = cv2.resize(image, (self.input_w, self.input_h))
        rgb = cv2.cvtColor(img, cv2.COLOR_BGR2RGB)

        if self.input_t == np.float32:
            inp = (rgb.astype(np.float32) / 127.5) - 1.0
        elif self.scale:
            inp = (rgb / self.scale + self.zero_point).astype(self.input_t)
        else:
            inp = rgb.astype(self.input_t)

        self.interp.set_tensor(self.in_idx, inp[None, ...])
        self.interp.invoke()

        boxes = self.interp.get_tensor(self.out_idx["boxes"])[0]
        classes = self.interp.get_tensor(self.out_idx["classes"])[0]
        scores = self.interp.get_tensor(self.out_idx["scores"])[0]
        count = int(self.interp.get_tensor(self.out_idx["count"])[0])

        return [
            (tuple(float(v) for v in boxes[i]), int(classes[i]), float(scores[i]))
            for i in range(count)
        ]


def load_tflite_ssd(model_path: str, num_threads: int = MODEL_SETTINGS["num_threads"]) -> TFLiteSSDModel:
    """Blocking loader for the on-device SSD localizer."""
    if not os.path.exists(model_path):
        raise FileNotFoundError(f"Model file not found: {model_path}")

    from tflite_runtime.interpreter import Interpreter

    logger.info(f"Loading TFLite localizer from: {model_path}")
    interpreter = Interpreter(model_path=model_path, num_threads=num_threads)
    interpreter.allocate_tensors()
    return TFLiteSSDModel(interpreter)


class LocalLocalizer(Localizer):
    """General-purpose on-device detector filtered to a set of proxy labels."""

    def __init__(self, model_path: Optional[str] = None,
                 allowed_labels: Optional[Iterable[str]] = None,
                 min_score: float = 0.4,
                 loader: Optional[Callable[[], Any]] = None,
                 label_map: Optional[Dict[int, str]] = None,
                 preprocessor: Optional[ImagePreprocessor] = None,
                 max_attempts: int = 3, retry_delay: float = 0.5,
                 num_threads: int = MODEL_SETTINGS["num_threads"]):
        self.model_path = model_path or MODEL_SETTINGS["local_model_path"]
        self.num_threads = num_threads
        self.allowed_labels = {label.lower() for label in allowed_labels} if allowed_labels else None
        self.min_score = min_score
        self.label_map = label_map or COCO_LABELS
        self.preprocessor = preprocessor or ImagePreprocessor()

        load_fn = loader or (lambda: load_tflite_ssd(self.model_path, num_threads=self.num_threads))
        self.loader = SingleFlightLoader(
            load_fn,
            name="localizer",
            max_attempts=max_attempts,
            delay=retry_delay,
            unavailable_error=LocalizerUnavailable
        )

    async def detect(self, frame: Frame) -> List[Region]:
        model = await self.loader.get()
        try:
            image = await asyncio.to_thread(self.preprocessor.decode, frame)
            raw = await asyncio.to_thread(model.detect, image)
        except LocalizerUnavailable:
            raise
        except Exception as e:
            raise LocalizerUnavailable(f"On-device localizer failed: {e}") from e

        height, width = image.shape[:2]
        regions = []
        for (ymin, xmin, ymax, xmax), class_id, score in raw:
            if score < self.min_score:
                continue
            label = self.label_map.get(class_id, str(class_id))
            if self.allowed_labels is not None and label.lower() not in self.allowed_labels:
                continue

            x1, y1 = max(0.0, xmin * width), max(0.0, ymin * height)
            x2, y2 = min(float(width), xmax * width), min(float(height), ymax * height)
            if x2 <= x1 or y2 <= y1:
                continue
            regions.append(Region(x=x1, y=y1, width=x2 - x1, height=y2 - y1,
                                  source_label=label, source_score=score))

        logger.debug(f"On-device localizer kept {len(regions)} of {len(raw)} boxes")
        return regions
