# core/exact_duplicates.py

import hashlib
import logging
from pathlib import Path
from typing import List, Optional, Tuple

from core.models import CandidateDuplicateGroup, DuplicateStats, ExactDuplicateGroup

logger = logging.getLogger(__name__)

CHUNK_SIZE = 1024 * 1024


def hash_file(file_path: str) -> str:
    """SHA-256 of a file's bytes, read in chunks"""
    digest = hashlib.sha256()
    with open(file_path, 'rb') as f:
        for chunk in iter(lambda: f.read(CHUNK_SIZE), b''):
            digest.update(chunk)
    return digest.hexdigest()


class ExactDuplicateFinder:
    """
    Byte-identical duplicate detection by strong content hash.

    Kept apart from perceptual similarity: a group reported by
    ``find_exact_duplicates`` always has identical file contents. The
    size and name scans are cheaper, unverified candidates.
    """

    def __init__(self, store):
        self.store = store

    def update_content_hash(self, media_id: str) -> Optional[str]:
        """
        Hash one file and store the digest. A file that is gone or
        unreadable is flagged so later passes move on to other records.
        """
        media = self.store.get_media_by_id(media_id)
        if media is None:
            return None

        if not Path(media.path).is_file():
            logger.warning(f"Media file not found: {media.path}")
            self.store.mark_content_hash_failed(media_id)
            return None

        try:
            content_hash = hash_file(media.path)
        except OSError as e:
            logger.warning(f"Could not read {media.path}: {e}")
            self.store.mark_content_hash_failed(media_id)
            return None

        self.store.set_content_hash(media_id, content_hash)
        return content_hash

    def compute_missing_content_hashes(self, limit: int = 100,
                                       max_size: Optional[int] = 100_000_000) -> int:
        """Hash files that have no content hash yet; returns how many were hashed"""
        missing = self.store.list_missing_content_hash(limit, max_size)
        hashed = 0

        for media in missing:
            if self.update_content_hash(media.id):
                hashed += 1

        logger.info(f"Computed content hashes for {hashed}/{len(missing)} files")
        return hashed

    def clear_content_hashes(self) -> int:
        """Drop stored content hashes so the next pass recomputes them"""
        cleared = self.store.clear_content_hashes()
        logger.info(f"Cleared content hashes on {cleared} records")
        return cleared

    def find_exact_duplicates(self) -> List[ExactDuplicateGroup]:
        """Groups of items with identical content, largest first"""
        groups = []

        for content_hash, records in self.store.group_by_content_hash().items():
            total_size = sum(r.size for r in records)
            groups.append(ExactDuplicateGroup(
                content_hash=content_hash,
                media_ids=[r.id for r in records],
                total_size=total_size,
                savings_if_reduced=records[0].size * (len(records) - 1)
            ))

        groups.sort(key=lambda g: (-g.count, g.content_hash))
        return groups

    def find_size_duplicates(self) -> List[CandidateDuplicateGroup]:
        """Quick scan: items with the same non-zero byte size"""
        groups = []

        for size, records in self.store.group_by_size().items():
            groups.append(CandidateDuplicateGroup(
                key=f"size-{size}",
                match_type="size",
                media_ids=[r.id for r in records],
                total_size=size * len(records),
                savings_if_reduced=size * (len(records) - 1)
            ))

        groups.sort(key=lambda g: (-g.count, g.key))
        return groups

    def find_name_duplicates(self) -> List[CandidateDuplicateGroup]:
        """Items sharing a file name, ignoring case and directory"""
        groups = []

        for name, records in self.store.group_by_filename().items():
            total_size = sum(r.size for r in records)
            groups.append(CandidateDuplicateGroup(
                key=f"name-{name}",
                match_type="name",
                media_ids=[r.id for r in records],
                total_size=total_size,
                savings_if_reduced=total_size - max(r.size for r in records)
            ))

        groups.sort(key=lambda g: (-g.count, g.key))
        return groups

    def get_duplicate_stats(self) -> DuplicateStats:
        """Storage that could be reclaimed by keeping one copy per group"""
        groups = self.find_exact_duplicates()

        return DuplicateStats(
            duplicate_groups=len(groups),
            total_duplicates=sum(g.count - 1 for g in groups),
            potential_savings_bytes=sum(g.savings_if_reduced for g in groups)
        )

    def suggest_keep(self, media_ids: List[str]) -> Optional[Tuple[str, str]]:
        """
        Pick which copy of a duplicate group to keep.

        Priority: highest rating, then most views, then first added.
        Returns (media_id, reason), or None if no ids are known.
        """
        media = self.store.get_media_many(media_ids)
        if not media:
            return None

        media.sort(key=lambda m: (-(m.rating or 0), -m.view_count, m.added_at, m.id))
        best = media[0]

        if (best.rating or 0) > 0:
            reason = "highest rating"
        elif best.view_count > 0:
            reason = "most viewed"
        else:
            reason = "first added"

        return best.id, reason
