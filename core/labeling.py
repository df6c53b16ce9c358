# core/labeling.py

import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import List, Optional, Sequence

from PIL import Image

from core.errors import DetectorError
from core.models import Label

logger = logging.getLogger(__name__)

CONFIDENCE_THRESHOLD = 0.7

DEFAULT_CANDIDATE_LABELS = [
    "person", "people", "portrait", "dog", "cat", "pet", "animal",
    "food", "meal", "dish", "nature", "landscape", "mountain", "tree",
    "flower", "plant", "beach", "travel", "city", "building", "car",
    "document", "receipt", "text", "screenshot", "sky", "water", "snow",
    "night", "party",
]


class PhotoCategory(Enum):
    """Photo categories for organization"""
    PEOPLE = "people"
    PETS = "pets"
    FOOD = "food"
    NATURE = "nature"
    TRAVEL = "travel"
    DOCUMENTS = "documents"
    SCREENSHOTS = "screenshots"
    OTHER = "other"
    UNCATEGORIZED = "uncategorized"


_CATEGORY_KEYWORDS = [
    (PhotoCategory.PEOPLE, ("person", "people", "human", "portrait")),
    (PhotoCategory.PETS, ("dog", "cat", "pet", "animal")),
    (PhotoCategory.FOOD, ("food", "meal", "dish", "cuisine")),
    (PhotoCategory.NATURE, ("nature", "landscape", "mountain", "tree", "flower", "plant")),
    (PhotoCategory.TRAVEL, ("travel", "beach", "vacation", "tourism")),
    (PhotoCategory.DOCUMENTS, ("document", "text", "receipt", "paper")),
    (PhotoCategory.SCREENSHOTS, ("screenshot", "screen", "interface")),
]

_ALBUM_KEYWORDS = [
    ("Food", ("food",)),
    ("Pets", ("pet", "dog", "cat")),
    ("Travel", ("travel", "beach")),
    ("Nature", ("nature", "landscape")),
    ("Documents", ("document", "receipt")),
]


def categorize_photo(labels: Sequence[Label]) -> PhotoCategory:
    """Category of a photo from its highest-confidence label"""
    if not labels:
        return PhotoCategory.UNCATEGORIZED

    top_label = max(labels, key=lambda label: label.confidence).text.lower()
    for category, keywords in _CATEGORY_KEYWORDS:
        if any(keyword in top_label for keyword in keywords):
            return category
    return PhotoCategory.OTHER


def suggest_albums(labels: Sequence[Label]) -> List[str]:
    """Smart album names suggested by any of the labels"""
    suggestions = []
    for label in labels:
        text = label.text.lower()
        for album, keywords in _ALBUM_KEYWORDS:
            if any(k in text for k in keywords):
                if album not in suggestions:
                    suggestions.append(album)
                break
    return suggestions


class ImageLabeler(ABC):
    """
    Object/scene tagger.

    label() returns labels above the confidence threshold, highest first.
    """

    def __init__(self, confidence_threshold: float = CONFIDENCE_THRESHOLD):
        self.confidence_threshold = confidence_threshold

    @abstractmethod
    def _predict(self, image: Image.Image) -> List[Label]:
        """Raw predictions for the image"""

    def label(self, image: Image.Image) -> List[Label]:
        predictions = self._predict(image)
        labels = [p for p in predictions if p.confidence >= self.confidence_threshold]
        return sorted(labels, key=lambda label: label.confidence, reverse=True)

    def close(self):
        pass

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False


class CLIPImageLabeler(ImageLabeler):
    """
    Zero-shot labeler using a locally cached CLIP model.

    Each candidate label becomes a "a photo of a ..." prompt; the softmax
    over image-text logits is the label confidence.
    """

    def __init__(self,
                 model_name: str = "openai/clip-vit-base-patch32",
                 candidate_labels: Optional[Sequence[str]] = None,
                 confidence_threshold: float = CONFIDENCE_THRESHOLD,
                 device: str = 'cpu'):
        super().__init__(confidence_threshold)
        import torch
        from transformers import CLIPModel, CLIPProcessor

        self._torch = torch
        self.device = device
        self.candidate_labels = list(candidate_labels or DEFAULT_CANDIDATE_LABELS)
        self.prompts = [f"a photo of a {label}" for label in self.candidate_labels]

        # local_files_only: processing never reaches the network
        self.model = CLIPModel.from_pretrained(model_name, local_files_only=True)
        self.processor = CLIPProcessor.from_pretrained(model_name, local_files_only=True)
        self.model.to(device)
        self.model.eval()

    def _predict(self, image: Image.Image) -> List[Label]:
        try:
            with self._torch.no_grad():
                inputs = self.processor(text=self.prompts, images=image.convert('RGB'),
                                        return_tensors="pt", padding=True)
                inputs = {k: v.to(self.device) for k, v in inputs.items()}
                outputs = self.model(**inputs)
                probs = outputs.logits_per_image.softmax(dim=-1)[0].cpu().numpy()
        except RuntimeError as e:
            raise DetectorError(f"CLIP labeling failed: {e}") from e

        return [Label(text=label, confidence=float(min(1.0, max(0.0, p))))
                for label, p in zip(self.candidate_labels, probs)]

    def close(self):
        self.model = None
        self.processor = None
