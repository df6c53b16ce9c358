# core/perceptual_hasher.py

import math
import re
from typing import Union

import imagehash
import numpy as np
from PIL import Image

from core.errors import HashError

HashLike = Union[imagehash.ImageHash, str]

_HEX_PATTERN = re.compile(r'^[0-9a-fA-F]+$')


class PerceptualHasher:
    """
    Difference hash (dHash) fingerprints compared by Hamming distance.

    The image is reduced to a (N+1) x N grid, converted to luminance and
    each bit records whether a pixel is darker than its right neighbour.
    With N = 8 this yields 64 bits, rendered as 16 hex digits.

    Stateless: a single instance can be shared across items.
    """

    DEFAULT_THRESHOLD = 0.90

    def __init__(self, hash_size: int = 8,
                 resample: Image.Resampling = Image.Resampling.BOX):
        if hash_size < 2 or (hash_size * hash_size) % 4:
            raise ValueError(f"Unsupported hash size: {hash_size}")
        self.hash_size = hash_size
        self.resample = resample

    @property
    def bit_count(self) -> int:
        return self.hash_size * self.hash_size

    def hash(self, image: Image.Image) -> imagehash.ImageHash:
        """Compute the difference hash of a decoded image"""
        resized = image.convert('RGB').resize(
            (self.hash_size + 1, self.hash_size), self.resample
        )
        pixels = np.asarray(resized, dtype=np.float64)
        luminance = (0.299 * pixels[..., 0]
                     + 0.587 * pixels[..., 1]
                     + 0.114 * pixels[..., 2])

        diff = luminance[:, :-1] < luminance[:, 1:]
        return imagehash.ImageHash(diff)

    def hash_file(self, path: str, decoder, max_dimension: int = 1024) -> imagehash.ImageHash:
        """Decode a file with a bounded decoder and hash it"""
        image = decoder.decode_bounded(path, max_dimension)
        try:
            return self.hash(image)
        finally:
            image.close()

    def hamming_distance(self, hash_a: HashLike, hash_b: HashLike) -> int:
        """Number of differing bits between two hashes"""
        a = self.coerce(hash_a)
        b = self.coerce(hash_b)
        return int(a - b)

    def similarity(self, hash_a: HashLike, hash_b: HashLike) -> float:
        """
        Similarity in [0, 1]: 1 - hamming / bits

        Raises HashError for empty, malformed or mismatched hashes.
        """
        return 1.0 - self.hamming_distance(hash_a, hash_b) / self.bit_count

    def are_near_duplicates(self, hash_a: HashLike, hash_b: HashLike,
                            threshold: float = DEFAULT_THRESHOLD) -> bool:
        return self.similarity(hash_a, hash_b) >= threshold

    def max_distance(self, threshold: float = DEFAULT_THRESHOLD) -> int:
        """Largest Hamming distance that still satisfies the threshold"""
        if not 0.0 <= threshold <= 1.0:
            raise ValueError(f"Threshold must be in [0, 1]: {threshold}")
        return min(self.bit_count,
                   int(math.floor((1.0 - threshold) * self.bit_count + 1e-9)))

    def coerce(self, value: HashLike) -> imagehash.ImageHash:
        """Validate a hash given as ImageHash or hex text"""
        if value is None:
            raise HashError("Hash is empty")

        if isinstance(value, imagehash.ImageHash):
            if value.hash.size != self.bit_count:
                raise HashError(
                    f"Hash has {value.hash.size} bits, expected {self.bit_count}"
                )
            return value

        if not isinstance(value, str):
            raise HashError(f"Unsupported hash type: {type(value).__name__}")

        text = value.strip()
        if not text:
            raise HashError("Hash is empty")
        if not _HEX_PATTERN.match(text):
            raise HashError(f"Hash is not hexadecimal: {value!r}")
        if len(text) * 4 != self.bit_count:
            raise HashError(
                f"Hash has {len(text) * 4} bits, expected {self.bit_count}"
            )

        bits = format(int(text, 16), f'0{self.bit_count}b')
        array = np.array([bit == '1' for bit in bits], dtype=bool)
        return imagehash.ImageHash(array.reshape(self.hash_size, self.hash_size))
