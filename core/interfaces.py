# core/interfaces.py
# Collaborator contracts consumed by the processing run. GalleryDatabase,
# DirectoryMediaStore and BoundedImageDecoder are the bundled implementations.

from typing import List, Optional, Protocol

from PIL import Image

from core.models import FaceRecord, Label, MediaItem, ProcessingStage


class MediaStore(Protocol):
    """Library enumerator with stable item ids"""

    def list_all_items(self) -> List[MediaItem]:
        """All known items, ascending id"""

    def get_item(self, item_id: int) -> Optional[MediaItem]:
        """A single item, or None if unknown"""


class ResultStore(Protocol):
    """Per-item, per-stage persistence; each save is atomic"""

    def get_stage_result(self, item_id: int, stage: ProcessingStage) -> bool:
        """True if the stage already has results for the item"""

    def save_hash(self, item_id: int, perceptual_hash: str) -> None:
        """Store the item's fingerprint"""

    def save_faces(self, item_id: int, faces: List[FaceRecord]) -> None:
        """Replace the item's faces"""

    def save_labels(self, item_id: int, labels: List[Label], replace: bool = False) -> None:
        """Append labels (replace=True overwrites)"""

    def save_text(self, item_id: int, texts: List[Label], replace: bool = False) -> None:
        """Append extracted text (replace=True overwrites)"""


class ImageDecoder(Protocol):

    def decode_bounded(self, path: str, max_dimension: int) -> Image.Image:
        """Decode at most max_dimension on the long edge; raises DecodeError"""


class ProgressCallback(Protocol):

    def __call__(self, update) -> None:
        """Receives a ProgressUpdate after every item"""
