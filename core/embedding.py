# core/embedding.py

from abc import ABC, abstractmethod
from typing import Iterable, List, Optional

import numpy as np
from PIL import Image

from core.errors import EmbeddingError

EMBEDDING_DIM = 128
SAME_PERSON_THRESHOLD = 0.70


def cosine_similarity(embedding_a, embedding_b) -> float:
    """
    Cosine similarity between two equal-length vectors.

    Mismatched or empty vectors raise EmbeddingError. When either vector
    is all zeros the similarity is 0.0.
    """
    a = np.asarray(embedding_a, dtype=np.float64)
    b = np.asarray(embedding_b, dtype=np.float64)

    if a.ndim != 1 or b.ndim != 1:
        raise EmbeddingError("Embeddings must be one-dimensional")
    if a.size == 0 or b.size == 0:
        raise EmbeddingError("Embedding is empty")
    if a.shape != b.shape:
        raise EmbeddingError(
            f"Embedding length mismatch: {a.size} vs {b.size}"
        )

    denominator = np.linalg.norm(a) * np.linalg.norm(b)
    if denominator == 0:
        return 0.0

    return float(np.clip(np.dot(a, b) / denominator, -1.0, 1.0))


def embedding_to_bytes(embedding: np.ndarray) -> bytes:
    """Serialize as little-endian float32"""
    return np.asarray(embedding, dtype='<f4').tobytes()


def embedding_from_bytes(blob: bytes) -> np.ndarray:
    return np.frombuffer(blob, dtype='<f4').astype(np.float32)


class EmbeddingGenerator(ABC):
    """
    Fixed-length face embedding with cosine-similarity matching.

    Subclasses implement _extract(); embed() validates that every output
    has exactly `dim` components, so a trained model can replace the
    default extractor without touching callers.
    """

    name: str = "base"
    dim: int = EMBEDDING_DIM
    same_person_threshold: float = SAME_PERSON_THRESHOLD

    @abstractmethod
    def _extract(self, face_image: Image.Image) -> np.ndarray:
        """Return the raw feature vector for a face crop"""

    def embed(self, face_image: Image.Image) -> np.ndarray:
        vector = np.asarray(self._extract(face_image), dtype=np.float32).ravel()
        if vector.size != self.dim:
            raise EmbeddingError(
                f"{self.name} produced {vector.size} components, expected {self.dim}"
            )
        return vector

    def embed_many(self, face_images: Iterable[Image.Image]) -> List[np.ndarray]:
        return [self.embed(face) for face in face_images]

    def cosine_similarity(self, embedding_a, embedding_b) -> float:
        return cosine_similarity(embedding_a, embedding_b)

    def is_same_person(self, embedding_a, embedding_b,
                       threshold: Optional[float] = None) -> bool:
        """Fixed-threshold decision; callers cluster pairwise themselves"""
        if threshold is None:
            threshold = self.same_person_threshold
        return self.cosine_similarity(embedding_a, embedding_b) > threshold


class GridSamplingEmbedder(EmbeddingGenerator):
    """
    Placeholder extractor: coarse colour sampling, not a trained recogniser.

    The crop is resized to a square canvas and sampled every `stride`
    pixels in raster order; each sample is the mean of its RGB channels
    scaled to [0, 1]. Components beyond the available samples stay zero.
    """

    name = "grid_sampling"

    def __init__(self, canvas_size: int = 112, stride: int = 8,
                 dim: int = EMBEDDING_DIM,
                 same_person_threshold: float = SAME_PERSON_THRESHOLD):
        self.canvas_size = canvas_size
        self.stride = stride
        self.dim = dim
        self.same_person_threshold = same_person_threshold

    def _extract(self, face_image: Image.Image) -> np.ndarray:
        canvas = face_image.convert('RGB').resize(
            (self.canvas_size, self.canvas_size), Image.Resampling.BILINEAR
        )
        pixels = np.asarray(canvas, dtype=np.float32) / 255.0
        samples = pixels[::self.stride, ::self.stride].mean(axis=2).ravel()

        features = np.zeros(self.dim, dtype=np.float32)
        count = min(self.dim, samples.size)
        features[:count] = samples[:count]
        return features
