# tests/conftest.py

import cv2
import numpy as np
import pytest

from core.database import GalleryDatabase
from core.errors import DetectorError
from core.face_locator import FaceLocator
from core.labeling import ImageLabeler
from core.models import BoundingBox, FaceRegion, Label
from core.text_recognition import RecognizedText, TextRecognizer


def ramp_image(width=90, height=80, reverse=False):
    """Horizontal BGR gradient; dHash of it is all ones (or zeros reversed)"""
    row = np.linspace(0, 255, width).astype(np.uint8)
    if reverse:
        row = row[::-1]
    gray = np.tile(row, (height, 1))
    return cv2.cvtColor(gray, cv2.COLOR_GRAY2BGR)


def checkerboard_image(size=96, cell=12):
    ys, xs = np.indices((size, size))
    gray = (((ys // cell) + (xs // cell)) % 2 * 255).astype(np.uint8)
    return cv2.cvtColor(gray, cv2.COLOR_GRAY2BGR)


@pytest.fixture
def image_dir(tmp_path):
    """Directory with two identical ramps, a reversed ramp and a checkerboard"""
    directory = tmp_path / "library"
    directory.mkdir()

    cv2.imwrite(str(directory / "a_ramp.png"), ramp_image())
    cv2.imwrite(str(directory / "b_ramp_copy.png"), ramp_image())
    cv2.imwrite(str(directory / "c_reverse.png"), ramp_image(reverse=True))
    cv2.imwrite(str(directory / "d_checker.png"), checkerboard_image())
    return directory


@pytest.fixture
def database():
    db = GalleryDatabase(":memory:")
    yield db
    db.close()


@pytest.fixture
def library(database, image_dir):
    """Database with every image of image_dir registered, ascending ids"""
    for path in sorted(image_dir.glob("*.png")):
        database.add_item(str(path), 90, 80)
    return database


class FakeLocator(FaceLocator):
    """Returns the configured regions, or raises the configured error"""

    def __init__(self, regions=None, error=None):
        self.regions = regions if regions is not None else [
            FaceRegion(bounding_box=BoundingBox(10, 10, 40, 40), confidence=0.9)
        ]
        self.error = error
        self.calls = 0

    def detect(self, image):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return list(self.regions)


class FakeLabeler(ImageLabeler):

    def __init__(self, predictions=None, confidence_threshold=0.7):
        super().__init__(confidence_threshold)
        self.predictions = predictions if predictions is not None else [
            ("sky", 0.8), ("dog", 0.95), ("cat", 0.3)
        ]
        self.calls = 0

    def _predict(self, image):
        self.calls += 1
        return [Label(text=text, confidence=conf) for text, conf in self.predictions]


class FakeRecognizer(TextRecognizer):

    def __init__(self, text="", min_words=10, error=None):
        super().__init__(min_words)
        self.text = text
        self.error = error

    def recognize(self, image):
        if self.error is not None:
            raise self.error
        return RecognizedText(full_text=self.text)


class FakeMemoryMonitor:

    def __init__(self, pressure=False):
        self.pressure = pressure

    def under_pressure(self):
        return self.pressure


@pytest.fixture
def fake_locator():
    return FakeLocator()


@pytest.fixture
def failing_locator():
    return FakeLocator(error=DetectorError("model unavailable"))


@pytest.fixture
def fake_labeler():
    return FakeLabeler()


@pytest.fixture
def receipt_recognizer():
    return FakeRecognizer(
        text="TOTAL $12.50\nThank you for shopping with us today please come\nagain soon"
    )


@pytest.fixture
def memory_ok():
    return FakeMemoryMonitor(pressure=False)
