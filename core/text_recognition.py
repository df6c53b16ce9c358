# core/text_recognition.py

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
from PIL import Image

from core.errors import DetectorError

SIGNIFICANT_WORD_COUNT = 10

_DATE_PATTERN = re.compile(r'\d{1,2}[-/]\d{1,2}[-/]\d{2,4}')
_PRICE_PATTERN = re.compile(r'\$?\d+\.\d{2}')
_PHONE_PATTERN = re.compile(r'\(?\d{3}\)?[-.\s]?\d{3}[-.\s]?\d{4}')
_EMAIL_PATTERN = re.compile(r'[\w.-]+@[\w.-]+\.\w+')


@dataclass
class TextBlock:
    text: str
    bounding_box: Optional[Tuple[int, int, int, int]] = None
    confidence: float = 0.0


@dataclass
class RecognizedText:
    full_text: str
    blocks: List[TextBlock] = field(default_factory=list)

    @property
    def word_count(self) -> int:
        return len(self.full_text.split())


def normalize_text(text: str) -> str:
    """Collapse newlines and runs of whitespace into single spaces"""
    return re.sub(r'\s+', ' ', text).strip()


def extract_key_info(recognized: RecognizedText) -> Dict[str, str]:
    """Pull dates, amounts, phone numbers and e-mail addresses from text"""
    info = {}
    text = recognized.full_text

    date = _DATE_PATTERN.search(text)
    if date:
        info['date'] = date.group()

    prices = _PRICE_PATTERN.findall(text)
    if prices:
        info['amounts'] = ', '.join(prices)

    phone = _PHONE_PATTERN.search(text)
    if phone:
        info['phone'] = phone.group()

    email = _EMAIL_PATTERN.search(text)
    if email:
        info['email'] = email.group()

    return info


class TextRecognizer(ABC):
    """OCR engine producing plain text for search indexing"""

    def __init__(self, min_words: int = SIGNIFICANT_WORD_COUNT):
        self.min_words = min_words

    @abstractmethod
    def recognize(self, image: Image.Image) -> RecognizedText:
        """Recognize text; raises DetectorError on engine failure"""

    def extract_searchable_text(self, image: Image.Image) -> str:
        return normalize_text(self.recognize(image).full_text)

    def has_significant_text(self, image: Image.Image) -> bool:
        """More than min_words words suggests a document or screenshot"""
        return self.is_significant(self.recognize(image))

    def is_significant(self, recognized: RecognizedText) -> bool:
        return recognized.word_count > self.min_words

    def close(self):
        pass


class EasyOCRTextRecognizer(TextRecognizer):
    """TextRecognizer backed by EasyOCR with locally stored models"""

    def __init__(self, languages: Sequence[str] = ('en',), gpu: bool = False,
                 min_words: int = SIGNIFICANT_WORD_COUNT):
        super().__init__(min_words)
        import easyocr

        self.reader = easyocr.Reader(list(languages), gpu=gpu, verbose=False,
                                     download_enabled=False)

    def recognize(self, image: Image.Image) -> RecognizedText:
        try:
            results = self.reader.readtext(np.asarray(image.convert('RGB')))
        except (RuntimeError, ValueError) as e:
            raise DetectorError(f"OCR failed: {e}") from e

        blocks = []
        for corners, text, confidence in results:
            xs = [int(point[0]) for point in corners]
            ys = [int(point[1]) for point in corners]
            blocks.append(TextBlock(
                text=text,
                bounding_box=(min(xs), min(ys), max(xs), max(ys)),
                confidence=float(confidence)
            ))

        return RecognizedText(
            full_text='\n'.join(block.text for block in blocks),
            blocks=blocks
        )

    def close(self):
        self.reader = None
