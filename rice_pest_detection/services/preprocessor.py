"""Image decoding, cropping, resizing and normalization for the classifier."""

from typing import Optional

import cv2
import numpy as np

from .error_handler import PreprocessFailed
from ..config.defaults import SYSTEM_CONSTANTS
from ..models.detection import Frame, Region
from ..utils import clamp_box
from ..logging_config import get_logger

logger = get_logger("preprocessor")


class ImagePreprocessor:
    """Turns frames into (1, S, S, 3) float32 tensors in [-1, 1]."""

    def __init__(self, target_size: int = 224):
        self.target_size = target_size
        self.scale = SYSTEM_CONSTANTS["NORMALIZATION_SCALE"]
        self.offset = SYSTEM_CONSTANTS["NORMALIZATION_OFFSET"]

    def decode(self, frame: Frame) -> np.ndarray:
        """Decode a frame to a BGR pixel array, caching the result on the frame."""
        if frame.released or frame.data is None:
            raise PreprocessFailed("Frame has already been released")

        if isinstance(frame.data, np.ndarray):
            image = frame.data
        elif isinstance(frame.data, (bytes, bytearray, memoryview)):
            buffer = np.frombuffer(frame.data, dtype=np.uint8)
            if buffer.size == 0:
                raise PreprocessFailed("Empty image buffer")
            image = cv2.imdecode(buffer, cv2.IMREAD_COLOR)
        elif isinstance(frame.data, str):
            image = cv2.imread(frame.data, cv2.IMREAD_COLOR)
        else:
            raise PreprocessFailed(f"Unsupported frame data type: {type(frame.data).__name__}")

        if image is None or image.size == 0:
            raise PreprocessFailed(f"Unable to decode image {frame.source_uri or ''}".strip())

        if image.ndim == 2:
            image = cv2.cvtColor(image, cv2.COLOR_GRAY2BGR)
        elif image.shape[2] == 4:
            image = cv2.cvtColor(image, cv2.COLOR_BGRA2BGR)

        frame.data = image
        frame.height, frame.width = image.shape[:2]
        return image

    def crop(self, image: np.ndarray, region: Region) -> np.ndarray:
        """Crop a region, clamped to the image bounds."""
        height, width = image.shape[:2]
        x1, y1, x2, y2 = clamp_box(region.x, region.y, region.width, region.height, width, height)
        if x2 <= x1 or y2 <= y1:
            raise PreprocessFailed(f"Region {region} lies outside the {width}x{height} image")
        return image[y1:y2, x1:x2]

    def prepare(self, frame: Frame, target_size: Optional[int] = None,
                region: Optional[Region] = None) -> np.ndarray:
        """Build the classifier input tensor for a frame or one of its regions."""
        size = target_size or self.target_size
        image = self.decode(frame)

        if region is not None:
            image = self.crop(image, region)

        try:
            resized = cv2.resize(image, (size, size), interpolation=cv2.INTER_LINEAR)
            rgb = cv2.cvtColor(resized, cv2.COLOR_BGR2RGB)
        except cv2.error as e:
            raise PreprocessFailed(f"Resize failed: {e}") from e

        tensor = rgb.astype(np.float32) / self.scale - self.offset
        return tensor[np.newaxis, ...]

    def encode_jpeg(self, frame: Frame, quality: Optional[int] = None) -> bytes:
        """Encode the frame as JPEG bytes, reusing the original bytes when possible."""
        if isinstance(frame.data, (bytes, bytearray)) and bytes(frame.data[:2]) == b"\xff\xd8":
            return bytes(frame.data)

        image = self.decode(frame)
        quality = quality or SYSTEM_CONSTANTS["JPEG_QUALITY"]
        ok, encoded = cv2.imencode(".jpg", image, [int(cv2.IMWRITE_JPEG_QUALITY), quality])
        if not ok:
            raise PreprocessFailed("JPEG encoding failed")
        return encoded.tobytes()
