from dataclasses import dataclass, field
from typing import List
import yaml
from pathlib import Path

@dataclass
class SamplingConfig:
    """Configuration for frame sampling"""
    hash_size: int = 8  # 8x8 grid -> 64-bit fingerprint
    frame_source: str = "ffmpeg"  # Options: ffmpeg, opencv
    ffmpeg_path: str = "ffmpeg"
    ffprobe_path: str = "ffprobe"
    timeout_seconds: float = 10.0
    video_fractions: List[float] = field(
        default_factory=lambda: [0.1, 0.25, 0.5, 0.75]
    )
    fallback_timestamps: List[float] = field(
        default_factory=lambda: [1.0, 5.0, 15.0, 30.0]
    )
    algorithm: str = "dhash"  # Options: dhash, ahash


@dataclass
class SimilarityConfig:
    """Configuration for similarity search and grouping"""
    min_similarity: int = 70
    result_limit: int = 20
    group_min_similarity: int = 85
    min_group_size: int = 2
    group_order: str = "recent"  # Options: recent, id
    more_like_this_similarity: int = 60
    tag_similarity_per_tag: int = 15
    tag_similarity_cap: int = 90
    near_duplicate_distance: int = 5
    compare_max_distance: int = 10

    # Match tiers (minimum similarity for each)
    tier_exact: int = 98
    tier_very_similar: int = 90
    tier_similar: int = 80


@dataclass
class BackfillConfig:
    """Configuration for fingerprint backfill"""
    batch_limit: int = 50
    n_workers: int = 1  # 1 = strictly sequential sampling
    mark_failed_unusable: bool = True
    show_progress: bool = True
    content_hash_limit: int = 100
    content_hash_max_size: int = 100_000_000


@dataclass
class SystemConfig:
    """System-wide configuration"""
    database_path: str = "data/media.db"
    log_dir: str = "logs"
    log_level: str = "INFO"
    structured_logs: bool = False

    # Frame sampling
    sampling: SamplingConfig = field(
        default_factory=SamplingConfig
    )

    # Similarity search
    similarity: SimilarityConfig = field(
        default_factory=SimilarityConfig
    )

    # Backfill
    backfill: BackfillConfig = field(
        default_factory=BackfillConfig
    )

    def save(self, path: str = "config.yaml"):
        """Save configuration to YAML file"""
        config_dict = {
            'database_path': self.database_path,
            'log_dir': self.log_dir,
            'log_level': self.log_level,
            'structured_logs': self.structured_logs,
            'sampling': {
                'hash_size': self.sampling.hash_size,
                'frame_source': self.sampling.frame_source,
                'ffmpeg_path': self.sampling.ffmpeg_path,
                'ffprobe_path': self.sampling.ffprobe_path,
                'timeout_seconds': self.sampling.timeout_seconds,
                'video_fractions': list(self.sampling.video_fractions),
                'fallback_timestamps': list(self.sampling.fallback_timestamps),
                'algorithm': self.sampling.algorithm
            },
            'similarity': {
                'min_similarity': self.similarity.min_similarity,
                'result_limit': self.similarity.result_limit,
                'group_min_similarity': self.similarity.group_min_similarity,
                'min_group_size': self.similarity.min_group_size,
                'group_order': self.similarity.group_order,
                'more_like_this_similarity': self.similarity.more_like_this_similarity,
                'tag_similarity_per_tag': self.similarity.tag_similarity_per_tag,
                'tag_similarity_cap': self.similarity.tag_similarity_cap,
                'near_duplicate_distance': self.similarity.near_duplicate_distance,
                'compare_max_distance': self.similarity.compare_max_distance,
                'tier_exact': self.similarity.tier_exact,
                'tier_very_similar': self.similarity.tier_very_similar,
                'tier_similar': self.similarity.tier_similar
            },
            'backfill': {
                'batch_limit': self.backfill.batch_limit,
                'n_workers': self.backfill.n_workers,
                'mark_failed_unusable': self.backfill.mark_failed_unusable,
                'show_progress': self.backfill.show_progress,
                'content_hash_limit': self.backfill.content_hash_limit,
                'content_hash_max_size': self.backfill.content_hash_max_size
            }
        }

        with open(path, 'w') as f:
            yaml.dump(config_dict, f, default_flow_style=False, indent=2)

    @classmethod
    def load(cls, path: str = "config.yaml") -> 'SystemConfig':
        """Load configuration from YAML file"""
        if not Path(path).exists():
            return cls()  # Return default config

        with open(path, 'r') as f:
            config_dict = yaml.safe_load(f) or {}

        config = cls()

        # Load system settings
        config.database_path = config_dict.get('database_path', config.database_path)
        config.log_dir = config_dict.get('log_dir', config.log_dir)
        config.log_level = config_dict.get('log_level', config.log_level)
        config.structured_logs = config_dict.get('structured_logs', config.structured_logs)

        # Load sampling settings
        if 'sampling' in config_dict:
            sp = config_dict['sampling']
            config.sampling = SamplingConfig(
                hash_size=sp.get('hash_size', config.sampling.hash_size),
                frame_source=sp.get('frame_source', config.sampling.frame_source),
                ffmpeg_path=sp.get('ffmpeg_path', config.sampling.ffmpeg_path),
                ffprobe_path=sp.get('ffprobe_path', config.sampling.ffprobe_path),
                timeout_seconds=sp.get('timeout_seconds', config.sampling.timeout_seconds),
                video_fractions=sp.get('video_fractions', config.sampling.video_fractions),
                fallback_timestamps=sp.get('fallback_timestamps', config.sampling.fallback_timestamps),
                algorithm=sp.get('algorithm', config.sampling.algorithm)
            )

        # Load similarity settings
        if 'similarity' in config_dict:
            sm = config_dict['similarity']
            defaults = config.similarity
            config.similarity = SimilarityConfig(
                min_similarity=sm.get('min_similarity', defaults.min_similarity),
                result_limit=sm.get('result_limit', defaults.result_limit),
                group_min_similarity=sm.get('group_min_similarity', defaults.group_min_similarity),
                min_group_size=sm.get('min_group_size', defaults.min_group_size),
                group_order=sm.get('group_order', defaults.group_order),
                more_like_this_similarity=sm.get('more_like_this_similarity', defaults.more_like_this_similarity),
                tag_similarity_per_tag=sm.get('tag_similarity_per_tag', defaults.tag_similarity_per_tag),
                tag_similarity_cap=sm.get('tag_similarity_cap', defaults.tag_similarity_cap),
                near_duplicate_distance=sm.get('near_duplicate_distance', defaults.near_duplicate_distance),
                compare_max_distance=sm.get('compare_max_distance', defaults.compare_max_distance),
                tier_exact=sm.get('tier_exact', defaults.tier_exact),
                tier_very_similar=sm.get('tier_very_similar', defaults.tier_very_similar),
                tier_similar=sm.get('tier_similar', defaults.tier_similar)
            )

        # Load backfill settings
        if 'backfill' in config_dict:
            bf = config_dict['backfill']
            config.backfill = BackfillConfig(
                batch_limit=bf.get('batch_limit', config.backfill.batch_limit),
                n_workers=bf.get('n_workers', config.backfill.n_workers),
                mark_failed_unusable=bf.get('mark_failed_unusable', config.backfill.mark_failed_unusable),
                show_progress=bf.get('show_progress', config.backfill.show_progress),
                content_hash_limit=bf.get('content_hash_limit', config.backfill.content_hash_limit),
                content_hash_max_size=bf.get('content_hash_max_size', config.backfill.content_hash_max_size)
            )

        return config
