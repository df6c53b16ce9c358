# core/models.py

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

import numpy as np


class ProcessingStage(Enum):
    """Per-item analysis stages whose results are persisted independently"""
    FACES = "faces"
    LABELS = "labels"
    DUPLICATES = "duplicates"
    TEXT = "text"


class AnnotationKind(Enum):
    """Kind tag stored alongside each annotation row"""
    LABEL = "label"
    TEXT = "text"


@dataclass(frozen=True)
class BoundingBox:
    """Face rectangle in source-image pixel coordinates"""
    left: int
    top: int
    right: int
    bottom: int

    @property
    def width(self) -> int:
        return self.right - self.left

    @property
    def height(self) -> int:
        return self.bottom - self.top

    @property
    def area(self) -> int:
        return max(0, self.width) * max(0, self.height)

    def to_string(self) -> str:
        return f"{self.left},{self.top},{self.right},{self.bottom}"

    @classmethod
    def from_string(cls, value: str) -> 'BoundingBox':
        left, top, right, bottom = (int(part) for part in value.split(','))
        return cls(left, top, right, bottom)

    @classmethod
    def from_xywh(cls, x: int, y: int, w: int, h: int) -> 'BoundingBox':
        return cls(int(x), int(y), int(x + w), int(y + h))


@dataclass
class MediaItem:
    """
    A photo or video known to the library.

    Created when the library is scanned. The perceptual hash is filled in
    by the processing run and stored as 16 hex digits.
    """
    id: int
    path: str
    width: Optional[int] = None
    height: Optional[int] = None
    is_video: bool = False
    perceptual_hash: Optional[str] = None


@dataclass
class FaceRegion:
    """Detector output for a single face"""
    bounding_box: BoundingBox
    tracking_id: Optional[int] = None
    head_euler_x: float = 0.0
    head_euler_y: float = 0.0
    head_euler_z: float = 0.0
    smiling_probability: Optional[float] = None
    eyes_open_probability: Optional[float] = None
    confidence: float = 1.0


@dataclass
class FaceRecord:
    """
    Persisted face belonging to exactly one media item.

    person_id is a weak label assigned by clustering outside this package.
    """
    media_id: int
    bounding_box: BoundingBox
    embedding: np.ndarray
    confidence: float = 1.0
    person_id: Optional[int] = None
    id: Optional[int] = None

    def __post_init__(self):
        # Own a private copy so the working buffer is never aliased
        self.embedding = np.array(self.embedding, dtype=np.float32, copy=True)


@dataclass
class Label:
    """Object/scene tag or extracted text attached to a media item"""
    text: str
    confidence: float
    kind: AnnotationKind = AnnotationKind.LABEL
    media_id: Optional[int] = None

    def __post_init__(self):
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"Label confidence out of range: {self.confidence}")


@dataclass
class DuplicateGroup:
    """
    Near-duplicate group computed on demand; never persisted.

    similarity is the threshold that qualified membership, not a pair score.
    """
    representative_id: int
    member_ids: List[int] = field(default_factory=list)
    similarity: float = 0.0

    @property
    def all_ids(self) -> List[int]:
        return [self.representative_id] + list(self.member_ids)

    def __len__(self) -> int:
        return 1 + len(self.member_ids)
