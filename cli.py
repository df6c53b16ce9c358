# cli.py

import argparse
import logging
import sys

from config import SystemConfig
from core.batch_processor import (BatchProcessingOrchestrator, ProcessType,
                                  RunOutcome)
from core.database import GalleryDatabase
from core.duplicate_detection import DuplicateGrouper, STRATEGIES, create_strategy
from core.embedding import GridSamplingEmbedder
from core.errors import GalleryError
from core.face_locator import HaarCascadeFaceLocator
from core.image_decoder import BoundedImageDecoder
from core.media_store import DirectoryMediaStore
from core.perceptual_hasher import PerceptualHasher
from utils.logging_config import setup_logging
from utils.performance_monitor import MemoryMonitor
from utils.report_generator import DuplicateReportGenerator, save_groups_json

logger = logging.getLogger(__name__)

EXIT_SUCCESS = 0
EXIT_FAILURE = 1
EXIT_TEMPFAIL = 75  # sysexits EX_TEMPFAIL: ask the scheduler to retry

EXIT_CODES = {
    RunOutcome.SUCCESS: EXIT_SUCCESS,
    RunOutcome.CANCELLED: EXIT_SUCCESS,
    RunOutcome.FAILURE: EXIT_FAILURE,
    RunOutcome.RETRY: EXIT_TEMPFAIL,
}


def build_orchestrator(config: SystemConfig, database: GalleryDatabase) -> BatchProcessingOrchestrator:
    """Wire the configured engines around a database"""
    faces = config.faces
    labeling = config.labeling
    processing = config.processing

    labeler = None
    if labeling.enable_labels:
        from core.labeling import CLIPImageLabeler
        labeler = CLIPImageLabeler(
            model_name=labeling.model_name,
            candidate_labels=labeling.candidate_labels,
            confidence_threshold=labeling.confidence_threshold
        )

    recognizer = None
    if labeling.enable_ocr:
        from core.text_recognition import EasyOCRTextRecognizer
        recognizer = EasyOCRTextRecognizer(
            languages=labeling.ocr_languages,
            min_words=labeling.min_words
        )

    return BatchProcessingOrchestrator(
        store=database,
        results=database,
        decoder=BoundedImageDecoder(),
        hasher=PerceptualHasher(config.duplicate_detection.hash_size),
        locator=HaarCascadeFaceLocator(min_face_size=faces.min_face_size,
                                       classify=faces.classify),
        embedder=GridSamplingEmbedder(canvas_size=faces.canvas_size,
                                      stride=faces.stride,
                                      same_person_threshold=faces.same_person_threshold),
        labeler=labeler,
        text_recognizer=recognizer,
        batch_size=processing.batch_size,
        max_dimension=processing.max_dimension,
        yield_every=processing.yield_every,
        batch_delay=processing.batch_delay_seconds,
        face_padding=faces.padding,
        memory_monitor=MemoryMonitor(processing.memory_limit_percent),
        show_progress=processing.show_progress
    )


def scan_command(args, config: SystemConfig) -> int:
    """Register new media files from a directory"""
    database = GalleryDatabase(config.database_path)
    try:
        store = DirectoryMediaStore(database, args.directory,
                                    recursive=not args.no_recursive,
                                    include_videos=not args.no_videos)
        added = store.scan(show_progress=config.processing.show_progress)
        print(f"Registered {len(added)} new media items")
    finally:
        database.close()
    return EXIT_SUCCESS


def process_command(args, config: SystemConfig) -> int:
    """Run the background processing pass"""
    if args.batch_size:
        config.processing.batch_size = args.batch_size

    database = GalleryDatabase(config.database_path)
    orchestrator = None
    try:
        orchestrator = build_orchestrator(config, database)
        report = orchestrator.run(item_id=args.item_id,
                                  process_type=ProcessType(args.type),
                                  force=args.force)
    finally:
        if orchestrator is not None:
            orchestrator.close()
        database.close()

    print(f"Run {report.state.value}: {report.processed} processed, "
          f"{report.skipped} skipped, {report.failed} failed of {report.total}")
    if report.error:
        print(f"Error: {report.error}")
    for stage, stats in report.timings.items():
        print(f"  {stage}: {stats['count']} x {stats['mean'] * 1000:.1f} ms")

    return EXIT_CODES[report.outcome]


def duplicate_command(args, config: SystemConfig) -> int:
    """Group stored fingerprints into near-duplicate groups"""
    threshold = args.threshold if args.threshold is not None \
        else config.duplicate_detection.similarity_threshold
    strategy = args.strategy or config.duplicate_detection.strategy

    database = GalleryDatabase(config.database_path)
    try:
        items = database.items_with_hash()
    finally:
        database.close()

    grouper = DuplicateGrouper(
        threshold=threshold,
        strategy=create_strategy(strategy),
        hasher=PerceptualHasher(config.duplicate_detection.hash_size),
        show_progress=config.processing.show_progress
    )
    groups = grouper.group_duplicates(items)
    paths = {item.id: item.path for item in items}

    total_dups = sum(len(g.member_ids) for g in groups)
    print(f"Found {len(groups)} duplicate groups with {total_dups} total duplicates")

    if args.output:
        save_groups_json(groups, paths, args.output)
        print(f"Groups saved to: {args.output}")

    if args.report:
        DuplicateReportGenerator().generate_report(groups, paths, args.report)
        print(f"Report saved to: {args.report}")

    if not args.output and not args.report:
        for i, group in enumerate(groups, 1):
            print(f"\nGroup {i}:")
            print(f"  Representative: {paths[group.representative_id]}")
            print(f"  Duplicates ({len(group.member_ids)}):")
            for member_id in group.member_ids:
                print(f"    - {paths[member_id]}")

    return EXIT_SUCCESS


def compare_command(args, config: SystemConfig) -> int:
    """Compare two images by perceptual hash"""
    hasher = PerceptualHasher(config.duplicate_detection.hash_size)
    decoder = BoundedImageDecoder()
    threshold = args.threshold if args.threshold is not None \
        else config.duplicate_detection.similarity_threshold

    hash_a = hasher.hash_file(args.image1, decoder, config.processing.max_dimension)
    hash_b = hasher.hash_file(args.image2, decoder, config.processing.max_dimension)
    similarity = hasher.similarity(hash_a, hash_b)

    print(f"{args.image1}: {hash_a}")
    print(f"{args.image2}: {hash_b}")
    print(f"Hamming distance: {hasher.hamming_distance(hash_a, hash_b)}")
    print(f"Similarity: {similarity:.4f}")
    print("Near duplicates" if similarity >= threshold else "Different images")
    return EXIT_SUCCESS


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Gallery Intelligence - offline media analysis"
    )
    parser.add_argument('-c', '--config', default='config.yaml',
                        help='Path to YAML configuration file')
    subparsers = parser.add_subparsers(dest='command', help='Commands')

    # Scan command
    scan_parser = subparsers.add_parser('scan', help='Register media files from a directory')
    scan_parser.add_argument('directory', help='Directory containing media')
    scan_parser.add_argument('--no-recursive', action='store_true',
                             help='Do not descend into subdirectories')
    scan_parser.add_argument('--no-videos', action='store_true',
                             help='Skip video files')
    scan_parser.set_defaults(func=scan_command)

    # Process command
    process_parser = subparsers.add_parser('process', help='Analyse registered media')
    process_parser.add_argument('--item-id', type=int,
                                help='Process a single media item')
    process_parser.add_argument('--type', default=ProcessType.ALL.value,
                                choices=[t.value for t in ProcessType],
                                help='Stages to run')
    process_parser.add_argument('--batch-size', type=int,
                                help='Items per batch')
    process_parser.add_argument('--force', action='store_true',
                                help='Recompute stages that already have results')
    process_parser.set_defaults(func=process_command)

    # Duplicate detection command
    duplicate_parser = subparsers.add_parser('duplicates',
                                             help='Group near-duplicate media')
    duplicate_parser.add_argument('-t', '--threshold', type=float,
                                  help='Similarity threshold in [0, 1]')
    duplicate_parser.add_argument('-s', '--strategy', choices=sorted(STRATEGIES),
                                  help='Candidate search strategy')
    duplicate_parser.add_argument('-o', '--output', help='Output JSON file for groups')
    duplicate_parser.add_argument('-r', '--report', help='Output HTML report path')
    duplicate_parser.set_defaults(func=duplicate_command)

    # Compare command
    compare_parser = subparsers.add_parser('compare', help='Compare two images')
    compare_parser.add_argument('image1')
    compare_parser.add_argument('image2')
    compare_parser.add_argument('-t', '--threshold', type=float,
                                help='Similarity threshold in [0, 1]')
    compare_parser.set_defaults(func=compare_command)

    return parser


def main_cli(argv=None) -> int:
    """Main CLI entry point"""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return EXIT_SUCCESS

    config = SystemConfig.load(args.config)
    setup_logging(config.log_level, config.log_dir, config.structured_logs)

    try:
        return args.func(args, config)
    except (GalleryError, ValueError) as e:
        logger.error("%s failed: %s", args.command, e)
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_FAILURE


if __name__ == "__main__":
    sys.exit(main_cli())
