# core/image_decoder.py

import logging
from pathlib import Path
from typing import Tuple

import cv2
from PIL import Image, ImageOps, UnidentifiedImageError

from core.errors import DecodeError
from utils.file_utils import is_video_file
from utils.image_utils import bgr_to_pil, resize_maintain_aspect

logger = logging.getLogger(__name__)

# Header pixel count above which a file is refused before decoding
DEFAULT_MAX_PIXELS = 200_000_000


class BoundedImageDecoder:
    """
    Decode media at a bounded size with minimal peak memory.

    JPEGs are decoded through Pillow's draft mode, which lets libjpeg
    subsample by 1/2, 1/4 or 1/8 before the full bitmap exists. The
    result is then thumbnailed to the exact bound. Videos yield a single
    representative frame taken from the middle of the clip.

    Files whose header declares more than max_pixels pixels are refused
    before any pixel data is read. Pillow's own decompression-bomb check
    still applies on top of it.
    """

    def __init__(self, resample: Image.Resampling = Image.Resampling.LANCZOS,
                 max_pixels: int = DEFAULT_MAX_PIXELS):
        self.resample = resample
        self.max_pixels = max_pixels

    def decode_bounded(self, path: str, max_dimension: int = 1024) -> Image.Image:
        """
        Return an RGB image whose long edge is at most max_dimension.

        Raises DecodeError for missing, unreadable or corrupt files.
        """
        if max_dimension <= 0:
            raise ValueError(f"max_dimension must be positive: {max_dimension}")

        if is_video_file(path):
            return self._decode_video_frame(path, max_dimension)
        return self._decode_image(path, max_dimension)

    def _decode_image(self, path: str, max_dimension: int) -> Image.Image:
        try:
            with Image.open(path) as img:
                width, height = img.size
                if width * height > self.max_pixels:
                    raise DecodeError(
                        path, f"{width}x{height} exceeds {self.max_pixels} pixels"
                    )
                # Request subsampled decode: target twice the bound so the
                # final resize still has enough pixels to filter from
                img.draft('RGB', (max_dimension * 2, max_dimension * 2))
                img.load()
                oriented = ImageOps.exif_transpose(img)
                rgb = oriented.convert('RGB')
            rgb.thumbnail((max_dimension, max_dimension), self.resample)
            return rgb
        except FileNotFoundError as e:
            raise DecodeError(path, "file not found") from e
        except (UnidentifiedImageError, Image.DecompressionBombError) as e:
            raise DecodeError(path, str(e)) from e
        except (OSError, SyntaxError, ValueError) as e:
            raise DecodeError(path, str(e)) from e

    def _decode_video_frame(self, path: str, max_dimension: int) -> Image.Image:
        if not Path(path).exists():
            raise DecodeError(path, "file not found")

        cap = cv2.VideoCapture(path)
        try:
            if not cap.isOpened():
                raise DecodeError(path, "cannot open video")

            frame_count = int(cap.get(cv2.CAP_PROP_FRAME_COUNT) or 0)
            if frame_count > 1:
                cap.set(cv2.CAP_PROP_POS_FRAMES, frame_count // 2)

            ret, frame = cap.read()
            if not ret or frame is None:
                raise DecodeError(path, "no decodable frame")

            frame = resize_maintain_aspect(frame, max_dimension)
            return bgr_to_pil(frame)
        except cv2.error as e:
            raise DecodeError(path, str(e)) from e
        finally:
            cap.release()


def read_dimensions(path: str) -> Tuple[int, int]:
    """Read width/height from the file header without decoding pixels"""
    if is_video_file(path):
        cap = cv2.VideoCapture(path)
        try:
            if not cap.isOpened():
                raise DecodeError(path, "cannot open video")
            return (int(cap.get(cv2.CAP_PROP_FRAME_WIDTH)),
                    int(cap.get(cv2.CAP_PROP_FRAME_HEIGHT)))
        finally:
            cap.release()

    try:
        with Image.open(path) as img:
            return img.size
    except (OSError, UnidentifiedImageError, Image.DecompressionBombError) as e:
        raise DecodeError(path, str(e)) from e
