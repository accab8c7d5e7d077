# tests/test_duplicate_detection.py

import random
import time

import pytest

from components.visual_similarity import VisualSimilarityService
from core.exact_duplicates import ExactDuplicateFinder, hash_file
from core.frame_sampler import PixelSampler
from core.models import MediaRecord
from core.similarity import similarity_score
from core.similarity_search import SimilaritySearchEngine
from conftest import SyntheticFrameSource, fingerprint_with_bits


@pytest.fixture
def chained_library(db):
    """
    1, 2, 3 are mutually >= 90% similar, 4 is >= 90% similar to 3 only,
    5 is unrelated.
    """
    fingerprints = {
        "1": fingerprint_with_bits([]),
        "2": fingerprint_with_bits([0, 1]),
        "3": fingerprint_with_bits([2, 3, 4, 5]),
        "4": fingerprint_with_bits(range(2, 11)),
        "5": fingerprint_with_bits(range(32, 64)),
    }
    for i, (media_id, fp) in enumerate(sorted(fingerprints.items())):
        # newest first under recency order is 5, 4, 3, 2, 1
        db.add_media(f"/m/{media_id}.jpg", "image", media_id=media_id,
                     added_at=i, fingerprint=fp)
    return db, fingerprints


def test_chained_library_preconditions(chained_library):
    _, fp = chained_library
    assert similarity_score(fp["1"], fp["2"]) >= 90
    assert similarity_score(fp["1"], fp["3"]) >= 90
    assert similarity_score(fp["2"], fp["3"]) >= 90
    assert similarity_score(fp["3"], fp["4"]) >= 90
    assert similarity_score(fp["1"], fp["4"]) < 90
    assert similarity_score(fp["2"], fp["4"]) < 90


def test_single_link_group_in_id_order(chained_library):
    db, _ = chained_library
    groups = SimilaritySearchEngine(db).find_all_duplicate_groups(90, 2, order="id")

    assert len(groups) == 1
    assert groups[0].media_ids == ["1", "2", "3", "4"]
    assert groups[0].threshold == 90
    assert 90 <= groups[0].similarity <= 100


def test_grouping_is_order_dependent_not_transitive(db):
    # 2 links only to 3, which joins the group after 2 was visited
    db.add_media("/m/1.jpg", "image", media_id="1", fingerprint=fingerprint_with_bits([]))
    db.add_media("/m/2.jpg", "image", media_id="2", fingerprint=fingerprint_with_bits(range(10)))
    db.add_media("/m/3.jpg", "image", media_id="3", fingerprint=fingerprint_with_bits(range(5)))

    groups = SimilaritySearchEngine(db).find_all_duplicate_groups(90, 2, order="id")

    assert [g.media_ids for g in groups] == [["1", "3"]]


def test_recency_order_changes_seeds(chained_library):
    db, _ = chained_library
    groups = SimilaritySearchEngine(db).find_all_duplicate_groups(90, 2, order="recent")

    # 5 seeds nothing; 4 seeds and picks up 3, then 2 and 1 through 3
    assert [g.media_ids for g in groups] == [["4", "3", "2", "1"]]


def test_min_group_size_filters_small_groups(chained_library):
    db, _ = chained_library
    engine = SimilaritySearchEngine(db)

    assert engine.find_all_duplicate_groups(90, 5, order="id") == []
    singles = engine.find_all_duplicate_groups(100, 1, order="id")
    assert [g.media_ids for g in singles] == [["1"], ["2"], ["3"], ["4"], ["5"]]
    assert all(g.similarity == 100 for g in singles)


def test_groups_are_largest_first(db):
    base = fingerprint_with_bits([])
    far = fingerprint_with_bits(range(32, 64))
    db.add_media("/m/a.jpg", "image", media_id="a", fingerprint=far)
    db.add_media("/m/b.jpg", "image", media_id="b", fingerprint=far)
    for media_id in ("c", "d", "e"):
        db.add_media(f"/m/{media_id}.jpg", "image", media_id=media_id, fingerprint=base)

    groups = SimilaritySearchEngine(db).find_all_duplicate_groups(95, 2, order="id")
    assert [g.media_ids for g in groups] == [["c", "d", "e"], ["a", "b"]]


def test_grouping_is_deterministic(chained_library):
    db, _ = chained_library
    engine = SimilaritySearchEngine(db)
    first = [g.to_dict() for g in engine.find_all_duplicate_groups(85, 2)]
    second = [g.to_dict() for g in engine.find_all_duplicate_groups(85, 2)]
    assert first == second


def test_mismatched_fingerprint_lengths_never_group(db):
    db.add_media("/m/a.jpg", "image", media_id="a", fingerprint="ff00ff00ff00ff00")
    db.add_media("/m/b.jpg", "image", media_id="b", fingerprint="ff00ff00")

    assert SimilaritySearchEngine(db).find_all_duplicate_groups(1, 2, order="id") == []


def _reference_groups(records, min_similarity, min_group_size):
    """Straightforward pairwise version of the single-link pass"""
    assigned = set()
    groups = []
    for i, seed in enumerate(records):
        if seed.id in assigned:
            continue
        members = [seed]
        for other in records[i + 1:]:
            if other.id in assigned:
                continue
            if max(similarity_score(m.fingerprint, other.fingerprint) for m in members) >= min_similarity:
                members.append(other)
        if len(members) >= min_group_size:
            groups.append([m.id for m in members])
            assigned.update(groups[-1])
    groups.sort(key=len, reverse=True)
    return groups


class ListStore:
    """Minimal store serving a fixed list of fingerprinted records"""

    def __init__(self, records):
        self.records = records

    def list_fingerprinted(self, order='recent'):
        return list(self.records)


def _clustered_records(count, seed):
    rng = random.Random(seed)
    centres = [rng.getrandbits(64) for _ in range(count // 6 + 1)]
    records = []
    for i in range(count):
        value = rng.choice(centres)
        for bit in rng.sample(range(64), rng.randint(0, 8)):
            value ^= 1 << bit
        records.append(MediaRecord(id=f"{i:05d}", kind="image", path=f"/m/{i}.jpg",
                                   fingerprint=f"{value:016x}"))
    return records


@pytest.mark.parametrize("min_similarity,min_group_size", [(90, 2), (85, 3), (95, 2)])
def test_grouping_matches_pairwise_reference(min_similarity, min_group_size):
    records = _clustered_records(120, seed=min_similarity)
    records.append(MediaRecord(id="short", kind="image", path="/m/short.jpg", fingerprint="ff00"))
    records.append(MediaRecord(id="junk", kind="image", path="/m/junk.jpg", fingerprint="zz" * 8))

    groups = SimilaritySearchEngine(ListStore(records)).find_all_duplicate_groups(
        min_similarity, min_group_size, order="id"
    )

    assert [g.media_ids for g in groups] == _reference_groups(records, min_similarity, min_group_size)


def test_grouping_scales_to_large_libraries():
    records = _clustered_records(3000, seed=7)
    engine = SimilaritySearchEngine(ListStore(records))

    start = time.perf_counter()
    groups = engine.find_all_duplicate_groups(90, 2, order="id")
    elapsed = time.perf_counter() - start

    assert groups
    # roughly 4.5 million pairs
    assert elapsed < 20


@pytest.fixture
def duplicate_files(db, media_file):
    """Two byte-identical files and one different file"""
    original = media_file("original.jpg", b"A" * 1000)
    copy = media_file("copy.jpg", b"A" * 1000)
    other = media_file("other.jpg", b"B" * 500)

    db.add_media(original, "image", media_id="orig", size=1000, added_at=1, rating=4)
    db.add_media(copy, "image", media_id="copy", size=1000, added_at=2, view_count=9)
    db.add_media(other, "image", media_id="other", size=500, added_at=3)
    return db


def test_hash_file_is_sha256(media_file):
    path = media_file("x.bin", b"abc")
    assert hash_file(path) == "ba7816bf8f01cfea414140de5dae2223b00361a396177a9cb410ff61f20015ad"


def test_find_exact_duplicates(duplicate_files):
    finder = ExactDuplicateFinder(duplicate_files)
    assert finder.compute_missing_content_hashes() == 3

    groups = finder.find_exact_duplicates()

    assert len(groups) == 1
    assert sorted(groups[0].media_ids) == ["copy", "orig"]
    assert groups[0].total_size == 2000
    assert groups[0].savings_if_reduced == 1000


def test_duplicate_stats(duplicate_files, media_file):
    third = media_file("third.jpg", b"A" * 1000)
    duplicate_files.add_media(third, "image", media_id="third", size=1000, added_at=4)

    finder = ExactDuplicateFinder(duplicate_files)
    finder.compute_missing_content_hashes()
    stats = finder.get_duplicate_stats()

    assert stats.duplicate_groups == 1
    assert stats.total_duplicates == 2
    assert stats.potential_savings_bytes == 2000


def test_exact_duplicates_ignore_perceptual_fingerprints(db, media_file):
    fp = fingerprint_with_bits([])
    db.add_media(media_file("a.jpg", b"one"), "image", media_id="a", fingerprint=fp)
    db.add_media(media_file("b.jpg", b"two"), "image", media_id="b", fingerprint=fp)

    finder = ExactDuplicateFinder(db)
    finder.compute_missing_content_hashes()

    assert finder.find_exact_duplicates() == []


def test_large_files_are_skipped(duplicate_files):
    finder = ExactDuplicateFinder(duplicate_files)
    assert finder.compute_missing_content_hashes(max_size=800) == 1


def test_missing_file_has_no_content_hash(db):
    db.add_media("/nowhere/file.jpg", "image", media_id="gone")
    assert ExactDuplicateFinder(db).update_content_hash("gone") is None


def test_suggest_keep(duplicate_files):
    finder = ExactDuplicateFinder(duplicate_files)

    assert finder.suggest_keep(["orig", "copy"]) == ("orig", "highest rating")
    assert finder.suggest_keep(["copy", "other"]) == ("copy", "most viewed")
    assert finder.suggest_keep(["other"]) == ("other", "first added")
    assert finder.suggest_keep([]) is None


def test_unreadable_files_do_not_block_hashing(db, media_file):
    db.add_media(media_file("real1.jpg", b"same"), "image", media_id="real1", size=4, added_at=1)
    db.add_media(media_file("real2.jpg", b"same"), "image", media_id="real2", size=4, added_at=2)
    for i in range(3):
        # newest records, selected first
        db.add_media(f"/nowhere/gone{i}.jpg", "image", media_id=f"gone{i}", size=4, added_at=10 + i)

    finder = ExactDuplicateFinder(db)
    assert finder.compute_missing_content_hashes(limit=3) == 0
    assert finder.compute_missing_content_hashes(limit=3) == 2
    assert finder.compute_missing_content_hashes(limit=3) == 0

    groups = finder.find_exact_duplicates()
    assert [sorted(g.media_ids) for g in groups] == [["real1", "real2"]]
    assert db.list_missing_content_hash() == []


def test_clear_content_hashes_forces_recompute(duplicate_files):
    duplicate_files.add_media("/nowhere/gone.jpg", "image", media_id="gone")
    finder = ExactDuplicateFinder(duplicate_files)
    finder.compute_missing_content_hashes()

    assert finder.clear_content_hashes() == 4
    assert finder.find_exact_duplicates() == []
    assert len(duplicate_files.list_missing_content_hash()) == 4
    assert finder.compute_missing_content_hashes() == 3


def test_find_size_duplicates(duplicate_files, media_file):
    duplicate_files.add_media(media_file("empty1.jpg", b""), "image", media_id="e1", size=0)
    duplicate_files.add_media(media_file("empty2.jpg", b""), "image", media_id="e2", size=0)

    groups = ExactDuplicateFinder(duplicate_files).find_size_duplicates()

    # zero-byte records are never grouped by size
    assert len(groups) == 1
    assert groups[0].key == "size-1000"
    assert groups[0].match_type == "size"
    assert groups[0].media_ids == ["orig", "copy"]
    assert groups[0].total_size == 2000
    assert groups[0].savings_if_reduced == 1000


def test_find_name_duplicates(db):
    db.add_media("/a/Holiday.JPG", "image", media_id="n1", size=300, added_at=1)
    db.add_media("/b/holiday.jpg", "image", media_id="n2", size=500, added_at=2)
    db.add_media("/c/HOLIDAY.jpg", "image", media_id="n3", size=200, added_at=3)
    db.add_media("/a/beach.jpg", "image", media_id="b1", size=100, added_at=4)
    db.add_media("/b/beach.jpeg", "image", media_id="b2", size=100, added_at=5)

    groups = ExactDuplicateFinder(db).find_name_duplicates()

    assert [g.to_dict() for g in groups] == [{
        'key': "name-holiday.jpg",
        'match_type': "name",
        'media_ids': ["n1", "n2", "n3"],
        'count': 3,
        'total_size': 1000,
        'savings_if_reduced': 500,
    }]


def test_service_exact_lookup_is_read_only(duplicate_files):
    service = VisualSimilarityService(duplicate_files, PixelSampler(SyntheticFrameSource()))

    assert service.find_exact_duplicates() == []
    assert len(duplicate_files.list_missing_content_hash()) == 3

    assert service.compute_missing_content_hashes() == 3
    assert len(service.find_exact_duplicates()) == 1
