# core/duplicate_detection.py

import logging
from abc import ABC, abstractmethod
from collections import defaultdict
from typing import Dict, Iterable, List, Optional, Sequence

import imagehash
import numpy as np
from tqdm import tqdm

from core.errors import HashError
from core.models import DuplicateGroup, MediaItem
from core.perceptual_hasher import PerceptualHasher

logger = logging.getLogger(__name__)


class CandidateStrategy(ABC):
    """
    Chooses which items are compared against a seed.

    A strategy may only prune pairs that cannot reach the threshold, so
    every strategy yields the same groups.
    """

    @abstractmethod
    def prepare(self, hashes: Dict[int, imagehash.ImageHash],
                hasher: PerceptualHasher, threshold: float):
        """Index the hashes of one grouping pass"""

    @abstractmethod
    def candidates(self, seed_id: int) -> Iterable[int]:
        """Ids that may be near-duplicates of the seed"""


class ExhaustiveCandidates(CandidateStrategy):
    """
    Compare every pair: O(n^2)
    """

    def __init__(self):
        self._ids: List[int] = []

    def prepare(self, hashes, hasher, threshold):
        self._ids = sorted(hashes)

    def candidates(self, seed_id: int) -> Iterable[int]:
        return self._ids


class PrefixBucketCandidates(CandidateStrategy):
    """
    Band the hash bits into max_distance + 1 segments.

    Two hashes within max_distance bits of each other agree exactly on at
    least one segment, so only items sharing a segment are compared.
    """

    def __init__(self):
        self._bands: List[np.ndarray] = []
        self._keys: Dict[int, List[tuple]] = {}
        self._buckets: Dict[tuple, List[int]] = defaultdict(list)

    def prepare(self, hashes, hasher, threshold):
        max_distance = hasher.max_distance(threshold)
        if max_distance >= hasher.bit_count:
            # Every pair qualifies: no segment is guaranteed to agree
            self._bands = []
        else:
            self._bands = np.array_split(np.arange(hasher.bit_count), max_distance + 1)
        n_bands = len(self._bands)
        self._keys = {}
        self._buckets = defaultdict(list)

        for item_id in sorted(hashes):
            bits = hashes[item_id].hash.ravel()
            keys = [(band_index, bits[band].tobytes())
                    for band_index, band in enumerate(self._bands)] or [('all',)]
            self._keys[item_id] = keys
            for key in keys:
                self._buckets[key].append(item_id)

        logger.debug("Bucketed %d hashes into %d bands (%d buckets)",
                     len(hashes), n_bands, len(self._buckets))

    def candidates(self, seed_id: int) -> Iterable[int]:
        found = set()
        for key in self._keys.get(seed_id, []):
            found.update(self._buckets[key])
        return sorted(found)


STRATEGIES = {
    'exhaustive': ExhaustiveCandidates,
    'prefix_bucket': PrefixBucketCandidates,
}


def create_strategy(name: str) -> CandidateStrategy:
    if name not in STRATEGIES:
        raise ValueError(f"Unknown grouping strategy: {name}")
    return STRATEGIES[name]()


class DuplicateGrouper:
    """
    Partition hashed media items into near-duplicate groups.

    Single greedy pass in ascending id order: each unprocessed seed claims
    every other unprocessed item whose similarity reaches the threshold.
    Singletons produce no group and items without a hash are ignored.
    """

    def __init__(self,
                 threshold: float = PerceptualHasher.DEFAULT_THRESHOLD,
                 strategy: Optional[CandidateStrategy] = None,
                 hasher: Optional[PerceptualHasher] = None,
                 show_progress: bool = False):
        self.threshold = threshold
        self.strategy = strategy or ExhaustiveCandidates()
        self.hasher = hasher or PerceptualHasher()
        self.show_progress = show_progress

    def group_duplicates(self, items: Sequence[MediaItem]) -> List[DuplicateGroup]:
        hashes = self._collect_hashes(items)
        self.strategy.prepare(hashes, self.hasher, self.threshold)

        groups = []
        processed = set()

        for seed_id in tqdm(sorted(hashes), desc="Grouping duplicates",
                            disable=not self.show_progress):
            if seed_id in processed:
                continue
            processed.add(seed_id)

            seed_hash = hashes[seed_id]
            matches = [
                other_id for other_id in self.strategy.candidates(seed_id)
                if other_id != seed_id
                and other_id not in processed
                and self.hasher.are_near_duplicates(seed_hash, hashes[other_id],
                                                    self.threshold)
            ]

            if matches:
                processed.update(matches)
                groups.append(DuplicateGroup(
                    representative_id=seed_id,
                    member_ids=sorted(matches),
                    similarity=self.threshold
                ))

        logger.info("Found %d duplicate groups among %d hashed items",
                    len(groups), len(hashes))
        return groups

    def _collect_hashes(self, items: Sequence[MediaItem]) -> Dict[int, imagehash.ImageHash]:
        hashes = {}
        for item in items:
            if not item.perceptual_hash:
                continue
            try:
                hashes[item.id] = self.hasher.coerce(item.perceptual_hash)
            except HashError as e:
                logger.warning("Ignoring item %s with invalid hash: %s", item.id, e)
        return hashes
