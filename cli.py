# cli.py

import argparse
import json
import logging
import os

from components.visual_similarity import VisualSimilarityService
from config import SystemConfig
from core.frame_sampler import probe_duration
from utils.file_utils import format_file_size, get_media_files
from utils.logging_config import setup_logging

logger = logging.getLogger(__name__)


def _write_json(data, output_path: str):
    with open(output_path, 'w') as f:
        json.dump(data, f, indent=2)
    print(f"\nResults saved to: {output_path}")


def import_command(service: VisualSimilarityService, config: SystemConfig, args):
    """Register media files from a directory"""
    print(f"Importing media from: {args.directory}")

    added = 0
    for path, kind in get_media_files(args.directory):
        if service.store.get_media_by_path(path):
            continue

        duration = None
        if kind == 'video' and args.probe:
            duration = probe_duration(
                path, config.sampling.ffprobe_path, config.sampling.timeout_seconds
            )

        service.store.add_media(path, kind, size=os.path.getsize(path), duration_sec=duration)
        added += 1

    print(f"Added {added} new media files")


def backfill_command(service: VisualSimilarityService, config: SystemConfig, args):
    """Compute fingerprints for media that lack one"""
    result = service.batch_backfill(args.limit)
    stats = service.get_coverage_stats()

    print(f"Processed: {result.processed}, failed: {result.failed}")
    print(f"Coverage: {stats.hashed_media}/{stats.total_media} ({stats.percent_complete}%)")


def similar_command(service: VisualSimilarityService, config: SystemConfig, args):
    """Find media similar to one item"""
    if args.more_like_this:
        results = service.get_more_like_this(args.media_id, limit=args.limit or 10)
    else:
        results = service.find_similar(
            args.media_id,
            min_similarity=args.min_similarity,
            limit=args.limit,
            same_kind_only=args.same_kind
        )

    if not results:
        print("No similar media found.")
        return

    print(f"\nTop {len(results)} similar items:")
    for i, match in enumerate(results, 1):
        media = service.store.get_media_by_id(match.candidate_id)
        path = media.path if media else match.candidate_id
        print(f"{i}. {path} (similarity: {match.similarity}%, {match.tier.value}, via {match.source})")

    if args.output:
        _write_json([m.to_dict() for m in results], args.output)


def groups_command(service: VisualSimilarityService, config: SystemConfig, args):
    """Group visually near-duplicate media across the library"""
    groups = service.find_all_duplicate_groups(
        min_similarity=args.min_similarity,
        min_group_size=args.min_group_size,
        order=args.order
    )

    total = sum(g.count for g in groups)
    print(f"\nFound {len(groups)} similar groups with {total} items")

    for i, group in enumerate(groups, 1):
        print(f"\nGroup {i} (avg similarity {group.similarity}%):")
        for media in service.store.get_media_many(group.media_ids):
            print(f"    - {media.path}")

    if args.output:
        _write_json([g.to_dict() for g in groups], args.output)


def exact_command(service: VisualSimilarityService, config: SystemConfig, args):
    """Find byte-identical duplicates, or cheap size/name candidates"""
    if args.by != 'content':
        _candidate_report(service, args)
        return

    if args.rehash:
        service.clear_content_hashes()
    hashed = service.compute_missing_content_hashes(args.limit)
    print(f"Hashed {hashed} files")

    groups = service.find_exact_duplicates()
    stats = service.get_duplicate_stats()

    print(f"\nFound {stats.duplicate_groups} exact duplicate groups "
          f"({stats.total_duplicates} redundant copies)")
    print(f"Potential space savings: {format_file_size(stats.potential_savings_bytes)}")

    for i, group in enumerate(groups, 1):
        keep = service.suggest_keep(group.media_ids)
        print(f"\nGroup {i} [{group.content_hash[:12]}]:")
        for media in service.store.get_media_many(group.media_ids):
            marker = " (keep)" if keep and media.id == keep[0] else ""
            print(f"    - {media.path}{marker}")

    if args.output:
        _write_json([g.to_dict() for g in groups], args.output)


def _candidate_report(service: VisualSimilarityService, args):
    if args.by == 'size':
        groups = service.find_size_duplicates()
    else:
        groups = service.find_name_duplicates()

    savings = sum(g.savings_if_reduced for g in groups)
    print(f"\nFound {len(groups)} groups with matching {args.by} (contents not verified)")
    print(f"Potential space savings: {format_file_size(savings)}")

    for i, group in enumerate(groups, 1):
        print(f"\nGroup {i} [{group.key}]:")
        for media in service.store.get_media_many(group.media_ids):
            print(f"    - {media.path}")

    if args.output:
        _write_json([g.to_dict() for g in groups], args.output)


def stats_command(service: VisualSimilarityService, config: SystemConfig, args):
    """Show fingerprint coverage"""
    stats = service.get_coverage_stats()
    print(f"Total media:  {stats.total_media}")
    print(f"Fingerprinted: {stats.hashed_media}")
    print(f"Remaining:    {stats.unhashed}")
    print(f"Complete:     {stats.percent_complete}%")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Media Similarity - perceptual fingerprints and duplicate detection"
    )
    parser.add_argument('-c', '--config', default='config.yaml',
                        help='Path to YAML configuration')
    parser.add_argument('--db', help='Override database path')
    subparsers = parser.add_subparsers(dest='command', help='Commands')

    # Import command
    import_parser = subparsers.add_parser('import', help='Register media files from a directory')
    import_parser.add_argument('directory', help='Directory containing media')
    import_parser.add_argument('--probe', action='store_true',
                               help='Probe video durations with ffprobe')
    import_parser.set_defaults(func=import_command)

    # Backfill command
    backfill_parser = subparsers.add_parser('backfill', help='Fingerprint unhashed media')
    backfill_parser.add_argument('-n', '--limit', type=int, default=None,
                                 help='Maximum items to process')
    backfill_parser.set_defaults(func=backfill_command)

    # Similarity search command
    similar_parser = subparsers.add_parser('similar', help='Find media similar to an item')
    similar_parser.add_argument('media_id', help='Id of the target media')
    similar_parser.add_argument('-s', '--min-similarity', type=int, default=None,
                                help='Minimum similarity (0-100)')
    similar_parser.add_argument('-k', '--limit', type=int, default=None,
                                help='Number of results to return')
    similar_parser.add_argument('--same-kind', action='store_true',
                                help='Only match media of the same kind')
    similar_parser.add_argument('--more-like-this', action='store_true',
                                help='Recommendations with tag-based fallback')
    similar_parser.add_argument('-o', '--output', help='Output JSON file for results')
    similar_parser.set_defaults(func=similar_command)

    # Group command
    groups_parser = subparsers.add_parser('groups', help='Group near-duplicate media')
    groups_parser.add_argument('-s', '--min-similarity', type=int, default=None,
                               help='Minimum similarity (0-100)')
    groups_parser.add_argument('-m', '--min-group-size', type=int, default=None,
                               help='Smallest group to report')
    groups_parser.add_argument('--order', choices=['recent', 'id'], default=None,
                               help='Scan order for grouping')
    groups_parser.add_argument('-o', '--output', help='Output JSON file for results')
    groups_parser.set_defaults(func=groups_command)

    # Exact duplicate command
    exact_parser = subparsers.add_parser('exact', help='Find byte-identical duplicates')
    exact_parser.add_argument('--by', choices=['content', 'size', 'name'], default='content',
                              help='Match on content hash, byte size or file name')
    exact_parser.add_argument('-n', '--limit', type=int, default=None,
                              help='Maximum files to hash in this run')
    exact_parser.add_argument('--rehash', action='store_true',
                              help='Forget stored content hashes and hash again')
    exact_parser.add_argument('-o', '--output', help='Output JSON file for results')
    exact_parser.set_defaults(func=exact_command)

    # Stats command
    stats_parser = subparsers.add_parser('stats', help='Show fingerprint coverage')
    stats_parser.set_defaults(func=stats_command)

    return parser


def main_cli(argv=None):
    """Main CLI entry point"""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return

    config = SystemConfig.load(args.config)
    if args.db:
        config.database_path = args.db

    setup_logging(config)
    logger.info(f"Running '{args.command}' against {config.database_path}")

    service = VisualSimilarityService.from_config(config)
    try:
        args.func(service, config, args)
    finally:
        service.close()


if __name__ == "__main__":
    main_cli()
