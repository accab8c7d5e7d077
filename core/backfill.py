# core/backfill.py

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, List, Optional

from tqdm import tqdm

from config import BackfillConfig
from core.frame_sampler import PixelSampler
from core.hash_codec import DHASH, HashCodecError, encode
from core.models import BackfillResult, CoverageStats, MediaRecord
from core.similarity import round_half_up

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int, str], None]


class FingerprintBackfill:
    """
    Incrementally fingerprint media that do not have one yet.

    Only items lacking a fingerprint are ever selected, so repeated
    batches drain the backlog without redoing work.
    """

    def __init__(self, store, sampler: PixelSampler,
                 config: BackfillConfig = None,
                 algorithm: str = DHASH):
        self.store = store
        self.sampler = sampler
        self.config = config or BackfillConfig()
        self.algorithm = algorithm

    def _fingerprint(self, media: MediaRecord) -> Optional[str]:
        """Sample and encode one item; None when no fingerprint can be made"""
        grid = self.sampler.sample(media.path, media.kind, media.duration_sec)
        if grid is None:
            return None

        try:
            return encode(grid, self.algorithm)
        except HashCodecError as e:
            logger.warning(f"Could not encode fingerprint for {media.id}: {e}")
            return None

    def _fingerprint_isolated(self, media: MediaRecord) -> Optional[str]:
        try:
            return self._fingerprint(media)
        except Exception:
            logger.exception(f"Unexpected error fingerprinting {media.id} ({media.path})")
            return None

    def update_hash(self, media_id: str) -> Optional[str]:
        """
        Compute and store the fingerprint of one item, replacing any
        existing one. Store errors propagate to the caller.
        """
        media = self.store.get_media_by_id(media_id)
        if media is None:
            logger.warning(f"No media record with id {media_id}")
            return None

        fingerprint = self._fingerprint(media)
        if fingerprint is None:
            return None

        self.store.set_fingerprint(media_id, fingerprint)
        return fingerprint

    def get_unhashed(self, limit: int = 100) -> List[MediaRecord]:
        return self.store.list_unhashed(limit)

    def backfill(self,
                 batch_limit: Optional[int] = None,
                 on_progress: Optional[ProgressCallback] = None) -> BackfillResult:
        """
        Fingerprint up to ``batch_limit`` unhashed items.

        Items are handled one at a time; with ``n_workers > 1`` only the
        sampling stage runs in a thread pool and results are still stored
        in selection order. A failing item never aborts the batch.
        """
        if batch_limit is None:
            batch_limit = self.config.batch_limit

        items = self.get_unhashed(batch_limit)
        result = BackfillResult()
        total = len(items)

        if total == 0:
            logger.info("No unhashed media to backfill")
            return result

        logger.info(f"Backfilling fingerprints for {total} items")

        executor = None
        if self.config.n_workers > 1:
            executor = ThreadPoolExecutor(max_workers=self.config.n_workers)
            fingerprints = executor.map(self._fingerprint_isolated, items)
        else:
            fingerprints = map(self._fingerprint_isolated, items)

        try:
            for i, (media, fingerprint) in enumerate(tqdm(zip(items, fingerprints),
                                                          total=total,
                                                          desc="Fingerprinting",
                                                          disable=not self.config.show_progress)):
                if self._store_result(media, fingerprint):
                    result.processed += 1
                else:
                    result.failed += 1
                    result.failed_ids.append(media.id)

                if on_progress:
                    on_progress(i + 1, total, media.id)
        finally:
            if executor is not None:
                executor.shutdown(wait=True)

        logger.info(f"Backfill finished: {result.processed} processed, {result.failed} failed")
        return result

    def _store_result(self, media: MediaRecord, fingerprint: Optional[str]) -> bool:
        try:
            if fingerprint is None:
                if self.config.mark_failed_unusable:
                    self.store.mark_unusable(media.id)
                logger.warning(f"No fingerprint for {media.id} ({media.path})")
                return False

            self.store.set_fingerprint(media.id, fingerprint)
            return True
        except Exception:
            logger.exception(f"Failed to store fingerprint for {media.id}")
            return False

    def get_stats(self) -> CoverageStats:
        """Fingerprint coverage over usable media"""
        total = self.store.count_media()
        hashed = self.store.count_fingerprinted()

        return CoverageStats(
            total_media=total,
            hashed_media=hashed,
            unhashed=total - hashed,
            percent_complete=round_half_up(hashed / total * 100) if total > 0 else 0
        )
