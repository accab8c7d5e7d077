# components/visual_similarity.py

from typing import List, Optional, Tuple

from config import SystemConfig
from core.backfill import FingerprintBackfill, ProgressCallback
from core.database import MediaDatabase
from core.exact_duplicates import ExactDuplicateFinder
from core.frame_sampler import PixelSampler
from core.models import (BackfillResult, CandidateDuplicateGroup, Comparison,
                         CoverageStats, DuplicateGroup, DuplicateStats,
                         ExactDuplicateGroup, SimilarityMatch)
from core.similarity_search import SimilaritySearchEngine


class VisualSimilarityService:
    """
    Entry point for fingerprinting, similarity search and duplicate detection.

    Perceptual results (``find_similar``, ``find_all_duplicate_groups``)
    and exact byte-level results (``find_exact_duplicates``) are kept as
    separate operations with separate result types.
    """

    def __init__(self, store, sampler: PixelSampler,
                 config: SystemConfig = None, tag_store=None):
        self.config = config or SystemConfig()
        self.store = store

        self.search = SimilaritySearchEngine(store, tag_store, self.config.similarity)
        self.backfiller = FingerprintBackfill(
            store, sampler, self.config.backfill, self.config.sampling.algorithm
        )
        self.exact = ExactDuplicateFinder(store)

    @classmethod
    def from_config(cls, config: SystemConfig) -> 'VisualSimilarityService':
        store = MediaDatabase(config.database_path)
        sampler = PixelSampler.from_config(config.sampling)
        return cls(store, sampler, config)

    # Fingerprints

    def update_hash(self, media_id: str) -> Optional[str]:
        return self.backfiller.update_hash(media_id)

    def batch_backfill(self, batch_limit: Optional[int] = None,
                       on_progress: Optional[ProgressCallback] = None) -> BackfillResult:
        return self.backfiller.backfill(batch_limit, on_progress)

    def get_coverage_stats(self) -> CoverageStats:
        return self.backfiller.get_stats()

    # Perceptual similarity

    def find_similar(self, media_id: str,
                     min_similarity: Optional[int] = None,
                     limit: Optional[int] = None,
                     same_kind_only: bool = False) -> List[SimilarityMatch]:
        return self.search.find_similar(media_id, min_similarity, limit, same_kind_only)

    def find_near_duplicates(self, media_id: str) -> List[SimilarityMatch]:
        return self.search.find_near_duplicates(media_id)

    def compare_media(self, media_id1: str, media_id2: str) -> Optional[Comparison]:
        return self.search.compare_media(media_id1, media_id2)

    def find_all_duplicate_groups(self,
                                  min_similarity: Optional[int] = None,
                                  min_group_size: Optional[int] = None,
                                  order: Optional[str] = None) -> List[DuplicateGroup]:
        return self.search.find_all_duplicate_groups(min_similarity, min_group_size, order)

    def get_more_like_this(self, media_id: str, limit: int = 10) -> List[SimilarityMatch]:
        return self.search.get_more_like_this(media_id, limit)

    # Exact duplicates

    def compute_missing_content_hashes(self, limit: Optional[int] = None) -> int:
        if limit is None:
            limit = self.config.backfill.content_hash_limit
        return self.exact.compute_missing_content_hashes(
            limit, self.config.backfill.content_hash_max_size
        )

    def clear_content_hashes(self) -> int:
        return self.exact.clear_content_hashes()

    def find_exact_duplicates(self, compute_missing: bool = False) -> List[ExactDuplicateGroup]:
        """Read-only unless ``compute_missing`` asks for a hashing pass first"""
        if compute_missing:
            self.compute_missing_content_hashes()
        return self.exact.find_exact_duplicates()

    def find_size_duplicates(self) -> List[CandidateDuplicateGroup]:
        return self.exact.find_size_duplicates()

    def find_name_duplicates(self) -> List[CandidateDuplicateGroup]:
        return self.exact.find_name_duplicates()

    def get_duplicate_stats(self) -> DuplicateStats:
        return self.exact.get_duplicate_stats()

    def suggest_keep(self, media_ids: List[str]) -> Optional[Tuple[str, str]]:
        return self.exact.suggest_keep(media_ids)

    def close(self):
        if hasattr(self.store, 'close'):
            self.store.close()
