"""
Image utility functions
"""

import cv2
import numpy as np
from PIL import Image
from typing import Tuple


def pil_to_gray(image: Image.Image) -> np.ndarray:
    """Convert a PIL image to an 8-bit grayscale array for OpenCV"""
    return np.asarray(image.convert('L'), dtype=np.uint8)


def bgr_to_pil(frame: np.ndarray) -> Image.Image:
    """Convert an OpenCV BGR frame to an RGB PIL image"""
    rgb = cv2.cvtColor(frame, cv2.COLOR_BGR2RGB)
    return Image.fromarray(rgb)


def bounded_size(width: int, height: int, max_dimension: int) -> Tuple[int, int]:
    """Size that fits within max_dimension on the long edge, keeping aspect"""
    if max(width, height) <= max_dimension:
        return width, height

    scale = max_dimension / max(width, height)
    return max(1, int(round(width * scale))), max(1, int(round(height * scale)))


def resize_maintain_aspect(frame: np.ndarray, max_dimension: int) -> np.ndarray:
    """Resize an OpenCV frame so its long edge fits max_dimension"""
    h, w = frame.shape[:2]
    new_w, new_h = bounded_size(w, h, max_dimension)
    if (new_w, new_h) == (w, h):
        return frame

    return cv2.resize(frame, (new_w, new_h), interpolation=cv2.INTER_AREA)
