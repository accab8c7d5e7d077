# core/similarity.py

import logging
import math
from dataclasses import dataclass
from typing import Iterable, Optional, Tuple

import imagehash
import numpy as np

from core.hash_codec import HASH_BITS, HashCodecError, hex_to_bits
from core.models import MatchTier

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TierThresholds:
    """Minimum similarity for each match tier"""
    exact: int = 98
    very_similar: int = 90
    similar: int = 80

    @classmethod
    def from_config(cls, similarity_config) -> 'TierThresholds':
        return cls(
            exact=similarity_config.tier_exact,
            very_similar=similarity_config.tier_very_similar,
            similar=similarity_config.tier_similar
        )


DEFAULT_TIERS = TierThresholds()


def _comparable(hash1: Optional[str], hash2: Optional[str]) -> bool:
    return bool(hash1) and bool(hash2) and len(hash1) == len(hash2)


def hash_bits(hash1: Optional[str], hash2: Optional[str]) -> int:
    """Nominal bit length of a comparison (4 bits per hex digit)"""
    longest = max(len(hash1 or ''), len(hash2 or ''))
    return longest * 4 if longest else HASH_BITS


def hamming_distance(hash1: Optional[str], hash2: Optional[str]) -> int:
    """
    Number of differing bits between two hex fingerprints.

    Missing, malformed or unequal-length hashes are not comparable and
    get the maximal distance for their nominal length.
    """
    max_distance = hash_bits(hash1, hash2)
    if not _comparable(hash1, hash2):
        return max_distance

    try:
        bits1 = hex_to_bits(hash1.lower())
        bits2 = hex_to_bits(hash2.lower())
    except HashCodecError as e:
        logger.debug(f"Treating malformed hash as no match: {e}")
        return max_distance

    return int(imagehash.ImageHash(bits1) - imagehash.ImageHash(bits2))


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def similarity_from_distance(distance: int, bits: int) -> int:
    """Similarity percentage for ``distance`` differing bits out of ``bits``"""
    return max(0, min(100, round_half_up((1 - distance / bits) * 100)))


def compare_fingerprints(hash1: Optional[str], hash2: Optional[str]) -> Tuple[int, int]:
    """(distance, similarity) of two fingerprints, decoding each only once"""
    distance = hamming_distance(hash1, hash2)
    if not _comparable(hash1, hash2):
        return distance, 0
    return distance, similarity_from_distance(distance, hash_bits(hash1, hash2))


def similarity_score(hash1: Optional[str], hash2: Optional[str]) -> int:
    """Similarity percentage (0-100, 100 = identical fingerprints)"""
    return compare_fingerprints(hash1, hash2)[1]


_POPCOUNT = np.array([bin(i).count('1') for i in range(256)], dtype=np.int64)


class FingerprintMatrix:
    """
    A batch of fingerprints decoded once into packed bit rows.

    Used for one-to-many scans: ``distances(i)`` and ``similarities(i)``
    compare row ``i`` against every row with the same results as
    ``hamming_distance`` and ``similarity_score`` on the hex strings,
    including the no-match rules for missing, malformed and
    unequal-length fingerprints.
    """

    def __init__(self, fingerprints: Iterable[Optional[str]]):
        fingerprints = list(fingerprints)
        self.size = len(fingerprints)
        self.hex_lengths = np.array([len(fp or '') for fp in fingerprints], dtype=np.int64)
        self.valid = np.zeros(self.size, dtype=bool)

        width = int(self.hex_lengths.max()) * 4 if self.size else 0
        bits = np.zeros((self.size, max(width, 8)), dtype=bool)
        for i, fingerprint in enumerate(fingerprints):
            if not fingerprint:
                continue
            try:
                decoded = hex_to_bits(fingerprint.lower())
            except HashCodecError as e:
                logger.debug(f"Treating malformed hash as no match: {e}")
                continue
            bits[i, :len(decoded)] = decoded
            self.valid[i] = True

        self.packed = np.packbits(bits, axis=1)

    def __len__(self) -> int:
        return self.size

    def _compare(self, index: int):
        differing = _POPCOUNT[np.bitwise_xor(self.packed, self.packed[index])].sum(axis=1)

        nominal = np.maximum(self.hex_lengths, self.hex_lengths[index]) * 4
        nominal = np.where(nominal > 0, nominal, HASH_BITS)
        comparable = self.valid & self.valid[index] & (self.hex_lengths == self.hex_lengths[index])

        distances = np.where(comparable, differing, nominal)
        return distances, nominal, comparable

    def distances(self, index: int) -> np.ndarray:
        """Hamming distance from row ``index`` to every row"""
        return self._compare(index)[0]

    def similarities(self, index: int) -> np.ndarray:
        """Similarity percentage from row ``index`` to every row"""
        return self.scan(index)[1]

    def scan(self, index: int) -> Tuple[np.ndarray, np.ndarray]:
        """(distances, similarities) from row ``index`` in one pass"""
        distances, nominal, comparable = self._compare(index)
        scores = np.clip(np.floor((1 - distances / nominal) * 100 + 0.5), 0, 100)
        return distances, np.where(comparable, scores, 0).astype(np.int64)


def match_tier(similarity: float,
               thresholds: TierThresholds = DEFAULT_TIERS) -> MatchTier:
    if similarity >= thresholds.exact:
        return MatchTier.EXACT
    if similarity >= thresholds.very_similar:
        return MatchTier.VERY_SIMILAR
    if similarity >= thresholds.similar:
        return MatchTier.SIMILAR
    return MatchTier.SOMEWHAT_SIMILAR
