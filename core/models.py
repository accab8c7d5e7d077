# core/models.py

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional


class MediaKind(str, Enum):
    """Content kind of a media record"""
    VIDEO = "video"
    IMAGE = "image"
    GIF = "gif"


class MatchTier(str, Enum):
    """Discrete match-quality tier derived from a similarity score"""
    EXACT = "exact"
    VERY_SIMILAR = "very_similar"
    SIMILAR = "similar"
    SOMEWHAT_SIMILAR = "somewhat_similar"


@dataclass
class MediaRecord:
    """A media item as stored by the record store"""
    id: str
    kind: MediaKind
    path: str
    duration_sec: Optional[float] = None
    fingerprint: Optional[str] = None
    content_hash: Optional[str] = None
    size: int = 0
    added_at: int = 0  # epoch milliseconds
    unusable: bool = False
    rating: Optional[int] = None
    view_count: int = 0


@dataclass
class SimilarityMatch:
    """Container for a single similarity result"""
    target_id: str
    candidate_id: str
    distance: Optional[int]  # None for tag-based matches
    similarity: int
    tier: MatchTier
    source: str = "fingerprint"  # or "tags" for the recommendation fallback

    def to_dict(self) -> dict:
        return {
            'target_id': self.target_id,
            'candidate_id': self.candidate_id,
            'distance': self.distance,
            'similarity': self.similarity,
            'tier': self.tier.value,
            'source': self.source
        }


@dataclass
class DuplicateGroup:
    """
    Items linked by the perceptual clustering pass.

    The first member is the seed of the group. ``similarity`` is the mean
    similarity of the links that admitted each non-seed member.
    """
    media_ids: List[str]
    similarity: int
    threshold: int

    @property
    def count(self) -> int:
        return len(self.media_ids)

    def to_dict(self) -> dict:
        return {
            'media_ids': list(self.media_ids),
            'count': self.count,
            'similarity': self.similarity,
            'threshold': self.threshold
        }


@dataclass
class ExactDuplicateGroup:
    """Items whose file contents hash to the same strong digest"""
    content_hash: str
    media_ids: List[str]
    total_size: int = 0
    savings_if_reduced: int = 0

    @property
    def count(self) -> int:
        return len(self.media_ids)

    def to_dict(self) -> dict:
        return {
            'content_hash': self.content_hash,
            'media_ids': list(self.media_ids),
            'count': self.count,
            'total_size': self.total_size,
            'savings_if_reduced': self.savings_if_reduced
        }


@dataclass
class CandidateDuplicateGroup:
    """
    Items that are probably copies by a cheap metadata match.

    ``match_type`` is "size" (identical byte size) or "name" (same file
    name, compared case-insensitively). Unlike ``ExactDuplicateGroup``
    the contents are not verified.
    """
    key: str
    match_type: str
    media_ids: List[str]
    total_size: int = 0
    savings_if_reduced: int = 0

    @property
    def count(self) -> int:
        return len(self.media_ids)

    def to_dict(self) -> dict:
        return {
            'key': self.key,
            'match_type': self.match_type,
            'media_ids': list(self.media_ids),
            'count': self.count,
            'total_size': self.total_size,
            'savings_if_reduced': self.savings_if_reduced
        }


@dataclass
class Comparison:
    """Result of comparing two specific media items"""
    similar: bool
    similarity: int
    distance: int
    tier: MatchTier


@dataclass
class BackfillResult:
    processed: int = 0
    failed: int = 0
    failed_ids: List[str] = field(default_factory=list)


@dataclass
class CoverageStats:
    total_media: int
    hashed_media: int
    unhashed: int
    percent_complete: int


@dataclass
class DuplicateStats:
    duplicate_groups: int
    total_duplicates: int
    potential_savings_bytes: int
