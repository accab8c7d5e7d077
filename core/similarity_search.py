# core/similarity_search.py

import logging
from collections import Counter
from typing import List, Optional, Set

import numpy as np

from config import SimilarityConfig
from core.models import Comparison, DuplicateGroup, MediaRecord, SimilarityMatch
from core.similarity import (FingerprintMatrix, TierThresholds, compare_fingerprints,
                             match_tier, round_half_up)

logger = logging.getLogger(__name__)


class SimilaritySearchEngine:
    """
    Fingerprint-based similarity search and near-duplicate grouping.

    Every operation is a read-only scan over the fingerprints held by the
    record store. Items without a fingerprint, or flagged unusable, never
    take part in a scan. Each scan decodes the fingerprints once into a
    ``FingerprintMatrix`` and compares one row against all others at a time.
    """

    def __init__(self, store, tag_store=None, config: SimilarityConfig = None):
        self.store = store
        self.tag_store = tag_store if tag_store is not None else store
        self.config = config or SimilarityConfig()
        self.tiers = TierThresholds.from_config(self.config)

    def _target(self, media_id: str) -> Optional[MediaRecord]:
        target = self.store.get_media_by_id(media_id)
        if target is None or not target.fingerprint or target.unusable:
            return None
        return target

    def _candidates(self, target: MediaRecord,
                    same_kind_only: bool = False) -> List[MediaRecord]:
        return [
            media for media in self.store.list_fingerprinted(order='id')
            if media.id != target.id and (not same_kind_only or media.kind == target.kind)
        ]

    def _match(self, target_id: str, candidate_id: str,
               distance: int, similarity: int) -> SimilarityMatch:
        return SimilarityMatch(
            target_id=target_id,
            candidate_id=candidate_id,
            distance=distance,
            similarity=similarity,
            tier=match_tier(similarity, self.tiers)
        )

    def _scan(self, target: MediaRecord, candidates: List[MediaRecord]):
        """Yield (candidate, distance, similarity) for every candidate"""
        matrix = FingerprintMatrix([target.fingerprint] + [c.fingerprint for c in candidates])
        distances, similarities = matrix.scan(0)
        for row, candidate in enumerate(candidates, start=1):
            yield candidate, int(distances[row]), int(similarities[row])

    def find_similar(self,
                     media_id: str,
                     min_similarity: Optional[int] = None,
                     limit: Optional[int] = None,
                     same_kind_only: bool = False) -> List[SimilarityMatch]:
        """
        Find media visually similar to one item

        Args:
            media_id: Target item
            min_similarity: Minimum similarity (0-100) to keep a candidate
            limit: Maximum number of results
            same_kind_only: Only consider candidates of the target's kind

        Returns:
            Matches sorted by similarity (highest first), ties by id
        """
        if min_similarity is None:
            min_similarity = self.config.min_similarity
        if limit is None:
            limit = self.config.result_limit

        target = self._target(media_id)
        if target is None:
            return []

        matches = [
            self._match(target.id, candidate.id, distance, similarity)
            for candidate, distance, similarity
            in self._scan(target, self._candidates(target, same_kind_only))
            if similarity >= min_similarity
        ]

        matches.sort(key=lambda m: (-m.similarity, m.candidate_id))
        return matches[:limit]

    def find_near_duplicates(self, media_id: str,
                             max_distance: Optional[int] = None) -> List[SimilarityMatch]:
        """Matches within a small number of differing bits, closest first"""
        if max_distance is None:
            max_distance = self.config.near_duplicate_distance

        target = self._target(media_id)
        if target is None:
            return []

        matches = [
            self._match(target.id, candidate.id, distance, similarity)
            for candidate, distance, similarity
            in self._scan(target, self._candidates(target))
            if distance <= max_distance
        ]
        matches.sort(key=lambda m: (m.distance, m.candidate_id))
        return matches

    def compare_media(self, media_id1: str, media_id2: str) -> Optional[Comparison]:
        """Compare two specific items; None if either lacks a fingerprint"""
        media1 = self.store.get_media_by_id(media_id1)
        media2 = self.store.get_media_by_id(media_id2)

        if media1 is None or media2 is None or not media1.fingerprint or not media2.fingerprint:
            return None

        distance, similarity = compare_fingerprints(media1.fingerprint, media2.fingerprint)

        return Comparison(
            similar=similarity > 0 and distance <= self.config.compare_max_distance,
            similarity=similarity,
            distance=distance,
            tier=match_tier(similarity, self.tiers)
        )

    def find_all_duplicate_groups(self,
                                  min_similarity: Optional[int] = None,
                                  min_group_size: Optional[int] = None,
                                  order: Optional[str] = None) -> List[DuplicateGroup]:
        """
        Group near-duplicates across the whole library.

        One greedy pass in a stable order: each unassigned item seeds a
        group, then the later unassigned items are visited once, in order,
        and an item joins when it is similar enough to any member already
        in the group. An item whose only link is to a member that joined
        after it was visited stays out, so results depend on scan order.

        ``best`` holds, for every row, its highest similarity to the
        members so far and is widened with one row scan per new member.
        """
        if min_similarity is None:
            min_similarity = self.config.group_min_similarity
        if min_group_size is None:
            min_group_size = self.config.min_group_size
        if order is None:
            order = self.config.group_order

        items = self.store.list_fingerprinted(order=order)
        logger.info(f"Grouping {len(items)} fingerprinted items at >= {min_similarity}% similarity")

        matrix = FingerprintMatrix(m.fingerprint for m in items)
        positions = np.arange(len(items))
        assigned = np.zeros(len(items), dtype=bool)
        groups = []

        for seed in range(len(items)):
            if assigned[seed]:
                continue

            members = [seed]
            link_scores = []
            best = matrix.similarities(seed)
            current = seed

            while True:
                joining = np.flatnonzero(
                    (best >= min_similarity) & ~assigned & (positions > current)
                )
                if joining.size == 0:
                    break
                current = int(joining[0])
                members.append(current)
                link_scores.append(int(best[current]))
                best = np.maximum(best, matrix.similarities(current))

            if len(members) >= min_group_size:
                similarity = round_half_up(sum(link_scores) / len(link_scores)) if link_scores else 100
                groups.append(DuplicateGroup(
                    media_ids=[items[i].id for i in members],
                    similarity=similarity,
                    threshold=min_similarity
                ))
                assigned[members] = True

        # Largest groups first; sort is stable so scan order breaks ties
        groups.sort(key=lambda g: -g.count)

        logger.info(f"Found {len(groups)} groups covering {int(assigned.sum())} items")
        return groups

    def get_more_like_this(self, media_id: str,
                           limit: int = 10) -> List[SimilarityMatch]:
        """
        Recommendations for one item.

        Visual matches come first; when there are too few of them (sparse
        fingerprint coverage) the list is topped up with items sharing
        tags with the target.
        """
        target = self.store.get_media_by_id(media_id)
        if target is None or target.unusable:
            return []

        similar = self.find_similar(
            media_id,
            min_similarity=self.config.more_like_this_similarity,
            limit=limit * 2
        )

        if len(similar) >= limit:
            return similar[:limit]

        existing_ids = {m.candidate_id for m in similar}
        tag_based = self._find_by_tag_similarity(media_id, limit - len(similar), existing_ids)

        return (similar + tag_based)[:limit]

    def _find_by_tag_similarity(self, media_id: str, limit: int,
                                exclude: Set[str]) -> List[SimilarityMatch]:
        if limit <= 0:
            return []

        shared = Counter()
        for tag_id in self.tag_store.tags_of(media_id):
            for other_id in self.tag_store.items_sharing_tag(tag_id):
                if other_id != media_id and other_id not in exclude:
                    shared[other_id] += 1

        if not shared:
            return []

        usable = {m.id for m in self.store.get_media_many(list(shared)) if not m.unusable}
        ranked = sorted(
            (item for item in shared.items() if item[0] in usable),
            key=lambda item: (-item[1], item[0])
        )

        matches = []
        for other_id, count in ranked[:limit]:
            similarity = min(count * self.config.tag_similarity_per_tag,
                             self.config.tag_similarity_cap)
            matches.append(SimilarityMatch(
                target_id=media_id,
                candidate_id=other_id,
                distance=None,
                similarity=similarity,
                tier=match_tier(similarity, self.tiers),
                source="tags"
            ))

        return matches
