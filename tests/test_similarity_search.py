# tests/test_similarity_search.py

import pytest

from config import SimilarityConfig
from core.models import MatchTier
from core.similarity_search import SimilaritySearchEngine
from conftest import fingerprint_with_bits


@pytest.fixture
def library(db):
    """
    Small library:
      a  - reference
      b  - 2 bits from a (97%)
      c  - 6 bits from a (91%)
      d  - 20 bits from a (69%)
      v  - video, 1 bit from a
      x  - no fingerprint
    """
    db.add_media("/m/a.jpg", "image", media_id="a", added_at=1,
                 fingerprint=fingerprint_with_bits([]))
    db.add_media("/m/b.jpg", "image", media_id="b", added_at=2,
                 fingerprint=fingerprint_with_bits([0, 1]))
    db.add_media("/m/c.jpg", "image", media_id="c", added_at=3,
                 fingerprint=fingerprint_with_bits(range(6)))
    db.add_media("/m/d.jpg", "image", media_id="d", added_at=4,
                 fingerprint=fingerprint_with_bits(range(20)))
    db.add_media("/m/v.mp4", "video", media_id="v", added_at=5,
                 fingerprint=fingerprint_with_bits([63]))
    db.add_media("/m/x.jpg", "image", media_id="x", added_at=6)
    return db


@pytest.fixture
def engine(library):
    return SimilaritySearchEngine(library)


def test_find_similar_sorted_and_thresholded(engine):
    results = engine.find_similar("a", min_similarity=70, limit=10)

    assert [m.candidate_id for m in results] == ["v", "b", "c"]
    assert [m.similarity for m in results] == [98, 97, 91]
    assert results[0].tier == MatchTier.EXACT
    assert results[2].tier == MatchTier.VERY_SIMILAR
    assert all(m.target_id == "a" and m.source == "fingerprint" for m in results)


def test_find_similar_respects_limit(engine):
    assert [m.candidate_id for m in engine.find_similar("a", min_similarity=0, limit=2)] == ["v", "b"]


def test_find_similar_ties_broken_by_id(db):
    fp = fingerprint_with_bits([])
    for media_id in ("z", "m", "k"):
        db.add_media(f"/m/{media_id}.jpg", "image", media_id=media_id, fingerprint=fp)

    results = SimilaritySearchEngine(db).find_similar("z", min_similarity=0)
    assert [m.candidate_id for m in results] == ["k", "m"]


def test_find_similar_same_kind_only(engine):
    results = engine.find_similar("a", min_similarity=70, same_kind_only=True)
    assert "v" not in [m.candidate_id for m in results]


def test_find_similar_without_fingerprint_is_empty(engine):
    assert engine.find_similar("x", min_similarity=0) == []
    assert engine.find_similar("does-not-exist") == []


def test_find_similar_uses_configured_defaults(library):
    engine = SimilaritySearchEngine(library, config=SimilarityConfig(min_similarity=95, result_limit=1))
    assert [m.candidate_id for m in engine.find_similar("a")] == ["v"]


def test_unusable_items_never_appear(library):
    library.mark_unusable("b")
    engine = SimilaritySearchEngine(library)

    assert "b" not in [m.candidate_id for m in engine.find_similar("a", min_similarity=0)]
    assert engine.find_similar("b", min_similarity=0) == []
    for group in engine.find_all_duplicate_groups(min_similarity=50):
        assert "b" not in group.media_ids


def test_find_near_duplicates(engine):
    results = engine.find_near_duplicates("a")
    assert [(m.candidate_id, m.distance) for m in results] == [("v", 1), ("b", 2)]


def test_compare_media(engine):
    result = engine.compare_media("a", "c")
    assert result.distance == 6
    assert result.similarity == 91
    assert result.similar is True
    assert result.tier == MatchTier.VERY_SIMILAR

    assert engine.compare_media("a", "d").similar is False
    assert engine.compare_media("a", "x") is None


def test_more_like_this_prefers_visual_matches(engine):
    results = engine.get_more_like_this("a", limit=2)
    assert [m.candidate_id for m in results] == ["v", "b"]


def test_more_like_this_falls_back_to_tags(db):
    db.add_media("/m/t.jpg", "image", media_id="t")
    for media_id in ("p", "q", "r", "s"):
        db.add_media(f"/m/{media_id}.jpg", "image", media_id=media_id)

    for tag in ("beach", "sunset", "dog"):
        db.add_tag("t", tag)
    db.add_tag("p", "beach")
    db.add_tag("q", "beach")
    db.add_tag("q", "sunset")
    db.add_tag("r", "beach")
    db.add_tag("r", "sunset")
    db.add_tag("r", "dog")
    db.add_tag("s", "cats")

    results = SimilaritySearchEngine(db).get_more_like_this("t", limit=10)

    assert [m.candidate_id for m in results] == ["r", "q", "p"]
    assert [m.similarity for m in results] == [45, 30, 15]
    assert all(m.similarity <= 90 and m.source == "tags" for m in results)
    assert all(m.distance is None for m in results)


def test_tag_similarity_is_capped(db):
    db.add_media("/m/t.jpg", "image", media_id="t")
    db.add_media("/m/u.jpg", "image", media_id="u")
    for i in range(10):
        db.add_tag("t", f"tag{i}")
        db.add_tag("u", f"tag{i}")

    results = SimilaritySearchEngine(db).get_more_like_this("t")
    assert results[0].similarity == 90


def test_more_like_this_dedupes_and_skips_unusable(library):
    library.add_tag("a", "holiday")
    library.add_tag("b", "holiday")
    library.add_tag("x", "holiday")
    library.add_tag("d", "holiday")
    library.mark_unusable("d")

    results = SimilaritySearchEngine(library).get_more_like_this("a", limit=10)
    ids = [m.candidate_id for m in results]

    assert ids == ["v", "b", "c", "x"]
    assert len(ids) == len(set(ids))
    assert results[-1].source == "tags"


def test_more_like_this_for_unusable_or_unknown_target(db):
    db.add_media("/m/t.jpg", "image", media_id="t")
    db.add_media("/m/p.jpg", "image", media_id="p")
    db.add_tag("t", "beach")
    db.add_tag("p", "beach")
    engine = SimilaritySearchEngine(db)
    assert [m.candidate_id for m in engine.get_more_like_this("t")] == ["p"]

    db.mark_unusable("t")

    assert engine.get_more_like_this("t") == []
    assert engine.get_more_like_this("missing") == []
