# core/errors.py


class GalleryError(Exception):
    """Base class for all media-intelligence errors"""


class DecodeError(GalleryError):
    """
    Image or video could not be read or decoded.
    The item is skipped for the current run.
    """

    def __init__(self, path: str, reason: str = ""):
        self.path = path
        self.reason = reason
        message = f"Cannot decode {path}"
        if reason:
            message += f": {reason}"
        super().__init__(message)


class DetectorError(GalleryError):
    """Face detector, labeler or OCR engine failed internally"""


class ComparisonError(GalleryError, ValueError):
    """Invalid input to a similarity comparison"""


class HashError(ComparisonError):
    """Empty, malformed or mismatched perceptual hash"""


class EmbeddingError(ComparisonError):
    """Empty or mismatched embedding vector"""


class OutOfMemory(GalleryError):
    """
    Memory pressure the run cannot recover from.
    Terminal for the run: the orchestrator reports failure without retry.
    """
