# core/face_locator.py

import logging
import os
from abc import ABC, abstractmethod
from typing import List, Optional

import cv2
import numpy as np
from PIL import Image

from core.errors import DetectorError
from core.models import BoundingBox, FaceRegion
from utils.image_utils import pil_to_gray

logger = logging.getLogger(__name__)

DEFAULT_PADDING = 20


class FaceLocator(ABC):
    """
    Finds face regions in a full image.

    Implementations must return boxes in source-image pixel coordinates
    and be deterministic for a given image and model. Resources held by
    a locator are released by close(), or by using it as a context manager.
    """

    @abstractmethod
    def detect(self, image: Image.Image) -> List[FaceRegion]:
        """Detect faces; raises DetectorError on internal failure"""

    def close(self):
        pass

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False


class HaarCascadeFaceLocator(FaceLocator):
    """
    OpenCV Haar cascade face detector.

    Frontal cascade only, so head pose angles are reported as 0.
    With classify=True the smile and eye cascades fill the smiling and
    eyes-open probabilities (coarse 0 / 0.5 / 1 values).
    """

    FACE_CASCADE = 'haarcascade_frontalface_default.xml'
    SMILE_CASCADE = 'haarcascade_smile.xml'
    EYE_CASCADE = 'haarcascade_eye.xml'

    def __init__(self,
                 min_face_size: float = 0.15,
                 scale_factor: float = 1.1,
                 min_neighbors: int = 5,
                 classify: bool = True):
        self.min_face_size = min_face_size
        self.scale_factor = scale_factor
        self.min_neighbors = min_neighbors
        self.classify = classify

        self._face_cascade = self._load_cascade(self.FACE_CASCADE)
        self._smile_cascade = None
        self._eye_cascade = None
        if classify:
            self._smile_cascade = self._load_cascade(self.SMILE_CASCADE)
            self._eye_cascade = self._load_cascade(self.EYE_CASCADE)

    @staticmethod
    def _load_cascade(file_name: str):
        cascade_path = os.path.join(cv2.data.haarcascades, file_name)
        cascade = cv2.CascadeClassifier(cascade_path)
        if cascade.empty():
            raise DetectorError(f"Cannot load cascade: {cascade_path}")
        return cascade

    def detect(self, image: Image.Image) -> List[FaceRegion]:
        gray = pil_to_gray(image)
        height, width = gray.shape[:2]
        min_side = max(1, int(min(width, height) * self.min_face_size))

        try:
            boxes = self._face_cascade.detectMultiScale(
                gray,
                scaleFactor=self.scale_factor,
                minNeighbors=self.min_neighbors,
                minSize=(min_side, min_side)
            )
        except cv2.error as e:
            raise DetectorError(f"Face detection failed: {e}") from e

        regions = []
        for (x, y, w, h) in sorted((tuple(int(v) for v in box) for box in boxes),
                                   key=lambda b: (b[1], b[0])):
            region = FaceRegion(bounding_box=BoundingBox.from_xywh(x, y, w, h))
            if self.classify:
                face_gray = gray[y:y + h, x:x + w]
                region.smiling_probability = self._smiling(face_gray)
                region.eyes_open_probability = self._eyes_open(face_gray)
            regions.append(region)

        logger.debug("Detected %d faces in %dx%d image", len(regions), width, height)
        return regions

    def _smiling(self, face_gray: np.ndarray) -> Optional[float]:
        h = face_gray.shape[0]
        lower = face_gray[h // 2:, :]
        if lower.size == 0:
            return None
        try:
            smiles = self._smile_cascade.detectMultiScale(
                lower, scaleFactor=1.2, minNeighbors=20, minSize=(20, 20)
            )
        except cv2.error as e:
            raise DetectorError(f"Smile classification failed: {e}") from e
        return 1.0 if len(smiles) > 0 else 0.0

    def _eyes_open(self, face_gray: np.ndarray) -> Optional[float]:
        h = face_gray.shape[0]
        upper = face_gray[:max(1, h * 3 // 5), :]
        if upper.size == 0:
            return None
        try:
            eyes = self._eye_cascade.detectMultiScale(
                upper, scaleFactor=1.1, minNeighbors=10
            )
        except cv2.error as e:
            raise DetectorError(f"Eye classification failed: {e}") from e
        return min(len(eyes), 2) / 2.0

    def close(self):
        self._face_cascade = None
        self._smile_cascade = None
        self._eye_cascade = None


def extract_region(image: Image.Image,
                   box: BoundingBox,
                   padding: int = DEFAULT_PADDING) -> Optional[Image.Image]:
    """
    Crop a face with padding, clamped to the image bounds.

    Returns None when the clamped region has no area.
    """
    width, height = image.size
    left = max(0, box.left - padding)
    top = max(0, box.top - padding)
    right = min(width, box.right + padding)
    bottom = min(height, box.bottom + padding)

    if right <= left or bottom <= top:
        return None

    return image.crop((left, top, right, bottom))
