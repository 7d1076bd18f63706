# Copyright 2026 Zsolt Kulcsar and Contributors. Licensed under the EUPL-1.2 or later
"""Command line entry points for the collection, analysis, labeling and build stages."""

import argparse
import logging
import sys
from pathlib import Path
from typing import Callable, TextIO

from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from bid.artifacts import (
    COLLECTION_ARTIFACT,
    FEATURE_ARTIFACT,
    LABEL_ARTIFACT,
    TRAINING_ARTIFACT,
    ArtifactError,
    ArtifactMissingError,
    collection_payload,
    feature_payload,
    load_collected_files,
    load_feature_records,
    training_payload,
    write_json_atomic,
)
from bid.collection import (
    DEFAULT_MAX_SIZE_BYTES,
    DEFAULT_MIN_SIZE_BYTES,
    CollectionOptions,
    CollectionStore,
    DiscoveryResult,
    assess_quality,
    default_roots,
    default_skip_patterns,
    validate_collection,
)
from bid.dataset import DUPLICATE_POLICIES, DatasetBuilder, DatasetBuildResult
from bid.features import (
    DEFAULT_MAX_STRING_LENGTH,
    DEFAULT_MAX_STRINGS,
    DEFAULT_MIN_STRING_LENGTH,
    ExtractionOptions,
    FeatureExtractor,
)
from bid.labeling import LabelingSession
from bid.labels import LabelStore
from bid.model import FeatureRecord
from bid.tools import (
    DEFAULT_MAX_OUTPUT_BYTES,
    DEFAULT_TOOL_TIMEOUT_SECONDS,
    SubprocessToolRunner,
)

logger = logging.getLogger(__name__)

DEFAULT_COLLECT_COUNT: int = 30
DEFAULT_DATA_DIR: str = "data"
SAMPLE_FILE_COUNT: int = 5


def configure_logging(level: int = logging.INFO) -> None:
    """Configure application logging with Rich handler.

    Args:
        level: Logging severity threshold.
    """
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
    )


def build_parser() -> argparse.ArgumentParser:
    """Build the top-level CLI parser.

    Returns:
        Configured argument parser instance.
    """
    parser = argparse.ArgumentParser(prog="bid")
    parser.add_argument(
        "--verbose", action="store_true", help="Enable debug logging."
    )
    subparsers = parser.add_subparsers(dest="command", required=True)
    stage_parent = argparse.ArgumentParser(add_help=False)
    stage_parent.add_argument(
        "--verbose",
        action="store_true",
        default=argparse.SUPPRESS,
        help="Enable debug logging.",
    )

    collect_parser = subparsers.add_parser("collect", parents=[stage_parent])
    collect_parser.add_argument(
        "count",
        nargs="?",
        type=int,
        default=DEFAULT_COLLECT_COUNT,
        help="Maximum number of files to collect.",
    )
    collect_parser.add_argument(
        "--root",
        action="append",
        dest="roots",
        help="Directory to scan; repeatable. Defaults depend on the platform.",
    )
    collect_parser.add_argument(
        "--skip-pattern",
        action="append",
        dest="skip_patterns",
        help="Case-insensitive file name regex to skip; repeatable.",
    )
    collect_parser.add_argument(
        "--min-size", type=int, default=DEFAULT_MIN_SIZE_BYTES, help="Minimum bytes."
    )
    collect_parser.add_argument(
        "--max-size", type=int, default=DEFAULT_MAX_SIZE_BYTES, help="Maximum bytes."
    )
    collect_parser.add_argument(
        "--no-architecture",
        action="store_true",
        help="Skip architecture detection with the `file` tool.",
    )
    _add_common_arguments(collect_parser)

    analyze_parser = subparsers.add_parser("analyze", parents=[stage_parent])
    analyze_parser.add_argument(
        "--min-string-length", type=int, default=DEFAULT_MIN_STRING_LENGTH
    )
    analyze_parser.add_argument(
        "--max-string-length", type=int, default=DEFAULT_MAX_STRING_LENGTH
    )
    analyze_parser.add_argument("--max-strings", type=int, default=DEFAULT_MAX_STRINGS)
    analyze_parser.add_argument(
        "--max-output-bytes",
        type=int,
        default=DEFAULT_MAX_OUTPUT_BYTES,
        help="Maximum output accepted from one tool invocation.",
    )
    _add_common_arguments(analyze_parser)

    label_parser = subparsers.add_parser("label", parents=[stage_parent])
    label_parser.add_argument("--data-dir", default=DEFAULT_DATA_DIR)

    dataset_parser = subparsers.add_parser("build", parents=[stage_parent])
    dataset_parser.add_argument(
        "--duplicate-policy",
        choices=DUPLICATE_POLICIES,
        default="first",
        help="How labels on duplicated content hashes are joined.",
    )
    dataset_parser.add_argument("--data-dir", default=DEFAULT_DATA_DIR)
    return parser


def _add_common_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--data-dir", default=DEFAULT_DATA_DIR, help="Root of the artifact tree."
    )
    parser.add_argument(
        "--tool-timeout",
        type=float,
        default=DEFAULT_TOOL_TIMEOUT_SECONDS,
        help="Seconds allowed per external tool invocation.",
    )


def run(
    argv: list[str],
    stdout: TextIO,
    stderr: TextIO,
    read_input: Callable[[str], str] | None = None,
) -> int:
    """Run CLI command.

    Args:
        argv: CLI arguments.
        stdout: Standard output stream.
        stderr: Standard error stream.
        read_input: Prompt reader for the label command; defaults to the
            console's own input.

    Returns:
        Exit code.
    """
    parser = build_parser()
    try:
        args = parser.parse_args(argv)
    except SystemExit:
        logger.warning(f"Argument parsing failed (argv={argv})")
        return 2
    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    data_dir = Path(args.data_dir)
    try:
        if args.command == "collect":
            return _run_collect(args=args, data_dir=data_dir, stdout=stdout, stderr=stderr)
        if args.command == "analyze":
            return _run_analyze(args=args, data_dir=data_dir, stdout=stdout, stderr=stderr)
        if args.command == "label":
            return _run_label(
                data_dir=data_dir, stdout=stdout, stderr=stderr, read_input=read_input
            )
        if args.command == "build":
            return _run_build(args=args, data_dir=data_dir, stdout=stdout, stderr=stderr)
    except ValueError as exc:
        logger.warning(f"Invalid option (command={args.command} error={exc})")
        stderr.write(f"Invalid option: {exc}\n")
        return 2

    logger.warning(f"Unsupported command (command={args.command})")
    stderr.write(f"Unsupported command: {args.command}\n")
    return 2


def _run_collect(
    args: argparse.Namespace, data_dir: Path, stdout: TextIO, stderr: TextIO
) -> int:
    """Run collect command.

    Args:
        args: Parsed CLI arguments.
        data_dir: Artifact tree root.
        stdout: Standard output stream.
        stderr: Standard error stream.

    Returns:
        Exit code.
    """
    roots = args.roots or default_roots()
    skip_patterns = (
        args.skip_patterns if args.skip_patterns is not None else default_skip_patterns()
    )
    store = CollectionStore(
        options=CollectionOptions(
            min_size_bytes=args.min_size,
            max_size_bytes=args.max_size,
            detect_architecture=not args.no_architecture,
        ),
        tool_runner=SubprocessToolRunner(timeout_seconds=args.tool_timeout),
    )
    logger.info(f"Collection started (count={args.count} roots={roots})")
    result = store.discover(roots, args.count, skip_patterns)
    for error in result.errors:
        stderr.write(f"scan_error: {error.path}: {error.message}\n")

    issues = validate_collection(result.files)
    for issue in issues:
        logger.warning(f"Collection quality issue ({issue})")
    quality = assess_quality(result.files)

    output_path = data_dir / COLLECTION_ARTIFACT
    try:
        write_json_atomic(
            collection_payload(result.files, platform=sys.platform, quality=quality),
            output_path,
        )
    except OSError as exc:
        logger.warning(
            f"Failed to write collection artifact (output_path={output_path} error={exc})"
        )
        stderr.write(f"Failed to write collection artifact: {output_path}\n")
        return 2
    _write_collection_summary(result=result, quality=quality, stdout=stdout)
    stdout.write(f"Saved file list to: {output_path}\n")
    return 0


def _run_analyze(
    args: argparse.Namespace, data_dir: Path, stdout: TextIO, stderr: TextIO
) -> int:
    """Run analyze command.

    Args:
        args: Parsed CLI arguments.
        data_dir: Artifact tree root.
        stdout: Standard output stream.
        stderr: Standard error stream.

    Returns:
        Exit code.
    """
    input_path = data_dir / COLLECTION_ARTIFACT
    try:
        files = load_collected_files(input_path)
    except ArtifactMissingError:
        logger.warning(f"Collected files not found (path={input_path})")
        stderr.write(
            f"Collected files not found at {input_path}. Run `bid collect` first.\n"
        )
        return 2
    except ArtifactError as exc:
        stderr.write(f"{exc}\n")
        return 2

    extractor = FeatureExtractor(
        tool_runner=SubprocessToolRunner(
            timeout_seconds=args.tool_timeout,
            max_output_bytes=args.max_output_bytes,
        ),
        options=ExtractionOptions(
            min_string_length=args.min_string_length,
            max_string_length=args.max_string_length,
            max_strings=args.max_strings,
        ),
    )
    records = extractor.extract_all(files)

    output_path = data_dir / FEATURE_ARTIFACT
    try:
        write_json_atomic(feature_payload(records), output_path)
    except OSError as exc:
        logger.warning(
            f"Failed to write analysis artifact (output_path={output_path} error={exc})"
        )
        stderr.write(f"Failed to write analysis artifact: {output_path}\n")
        return 2
    _write_analysis_summary(records=records, stdout=stdout)
    stdout.write(f"Saved analysis results to: {output_path}\n")
    return 0


def _run_label(
    data_dir: Path,
    stdout: TextIO,
    stderr: TextIO,
    read_input: Callable[[str], str] | None,
) -> int:
    """Run label command.

    Args:
        data_dir: Artifact tree root.
        stdout: Standard output stream.
        stderr: Standard error stream.
        read_input: Prompt reader.

    Returns:
        Exit code.
    """
    input_path = data_dir / FEATURE_ARTIFACT
    label_path = data_dir / LABEL_ARTIFACT
    try:
        binaries = load_feature_records(input_path)
        labels = LabelStore().load(label_path)
    except ArtifactMissingError:
        logger.warning(f"Analysis file not found (path={input_path})")
        stderr.write(f"Analysis file not found at {input_path}. Run `bid analyze` first.\n")
        return 2
    except ArtifactError as exc:
        stderr.write(f"{exc}\n")
        return 2

    console = Console(file=stdout)
    console.print("Binary Intent Labeling Tool")
    already = sum(1 for b in binaries if b.content_hash in labels)
    console.print(f"Progress: {already}/{len(binaries)} labeled")
    session = LabelingSession(
        binaries=binaries,
        labels=labels,
        label_path=label_path,
        console=console,
        read_input=read_input,
    )
    try:
        session.run()
    except OSError as exc:
        logger.warning(f"Failed to save labels (path={label_path} error={exc})")
        stderr.write(f"Failed to save labels: {label_path}\n")
        return 2
    return 0


def _run_build(
    args: argparse.Namespace, data_dir: Path, stdout: TextIO, stderr: TextIO
) -> int:
    """Run build command.

    Args:
        args: Parsed CLI arguments.
        data_dir: Artifact tree root.
        stdout: Standard output stream.
        stderr: Standard error stream.

    Returns:
        Exit code.
    """
    analysis_path = data_dir / FEATURE_ARTIFACT
    labels_path = data_dir / LABEL_ARTIFACT
    builder = DatasetBuilder(duplicate_policy=args.duplicate_policy)
    try:
        result = builder.build_from_artifacts(analysis_path, labels_path)
    except ArtifactMissingError as exc:
        stderr.write(f"{exc}\n")
        if not labels_path.exists():
            stderr.write("Run `bid label` first to label binaries.\n")
        return 2
    except ArtifactError as exc:
        stderr.write(f"{exc}\n")
        return 2

    output_path = data_dir / TRAINING_ARTIFACT
    try:
        write_json_atomic(
            training_payload(result.examples, result.label_distribution), output_path
        )
    except OSError as exc:
        logger.warning(
            f"Failed to write training artifact (output_path={output_path} error={exc})"
        )
        stderr.write(f"Failed to write training artifact: {output_path}\n")
        return 2
    _write_build_summary(result=result, stdout=stdout)
    stdout.write(f"Training dataset saved to: {output_path}\n")
    return 0


def _write_collection_summary(
    result: DiscoveryResult, quality: str, stdout: TextIO
) -> None:
    """Write collection counters, distributions and a sample of files."""
    console = Console(file=stdout, force_terminal=False, color_system="truecolor")
    files = result.files
    table = Table(title="Collection Summary", show_header=True)
    table.add_column("metric")
    table.add_column("value", justify="right")
    table.add_row("collected", str(len(files)))
    table.add_row("executables", str(sum(1 for f in files if f.kind == "executable")))
    table.add_row(
        "shared libraries", str(sum(1 for f in files if f.kind == "shared_library"))
    )
    table.add_row("skipped by pattern", str(result.skipped_by_pattern))
    table.add_row("skipped by size", str(result.skipped_by_size))
    table.add_row("skipped by format", str(result.skipped_by_format))
    table.add_row("skipped not regular", str(result.skipped_not_regular))
    table.add_row("access errors", str(len(result.errors)))
    table.add_row("quality", quality)
    if files:
        sizes = [f.size_bytes for f in files]
        table.add_row(
            "size range",
            f"{round(min(sizes) / 1024)}KB - {round(max(sizes) / 1024)}KB",
        )
        table.add_row("average size", f"{round(sum(sizes) / len(sizes) / 1024)}KB")
    console.print(table)

    architectures: dict[str, int] = {}
    for collected in files:
        architectures[collected.architecture] = (
            architectures.get(collected.architecture, 0) + 1
        )
    for architecture, count in architectures.items():
        console.print(f"  {architecture}: {count}", markup=False)
    for collected in files[:SAMPLE_FILE_COUNT]:
        console.print(
            f"  - {collected.filename} ({round(collected.size_bytes / 1024)}KB, "
            f"{collected.architecture})",
            markup=False,
        )
    if len(files) > SAMPLE_FILE_COUNT:
        console.print(f"  ... and {len(files) - SAMPLE_FILE_COUNT} more")


def _write_analysis_summary(records: list[FeatureRecord], stdout: TextIO) -> None:
    """Write per-binary analysis results and totals."""
    console = Console(file=stdout, force_terminal=False, color_system="truecolor")
    table = Table(title="Analysis Summary", show_header=True, expand=True)
    table.add_column("filename", overflow="fold")
    table.add_column("symbols", justify="right")
    table.add_column("strings", justify="right")
    table.add_column("functions", justify="right")
    table.add_column("instructions", justify="right")
    table.add_column("status", overflow="fold")
    for record in records:
        table.add_row(
            record.filename,
            str(len(record.imported_symbols)),
            str(len(record.extracted_strings)),
            str(record.function_count),
            str(record.instruction_count),
            "ok" if record.extraction_succeeded else f"failed: {record.error}",
        )
    console.print(table)
    succeeded = sum(1 for r in records if r.extraction_succeeded)
    console.print(
        f"Total: {len(records)}  Successful: {succeeded}  Failed: {len(records) - succeeded}"
    )


def _write_build_summary(result: DatasetBuildResult, stdout: TextIO) -> None:
    """Write label distribution and join diagnostics."""
    console = Console(file=stdout, force_terminal=False, color_system="truecolor")
    table = Table(title="Dataset distribution", show_header=True)
    table.add_column("intent_category")
    table.add_column("examples", justify="right")
    for category, count in result.label_distribution.items():
        table.add_row(category, str(count))
    console.print(table)
    console.print(f"Total examples: {len(result.examples)}")
    console.print(f"Unmatched labels: {len(result.unmatched_labels)}")
    for label in result.unmatched_labels:
        console.print(
            f"  - {label.filename or '?'} ({label.content_hash})", markup=False
        )
    if result.duplicate_hashes:
        console.print(f"Duplicate content hashes: {len(result.duplicate_hashes)}")
    if result.excluded_labels:
        console.print(f"Excluded duplicate labels: {len(result.excluded_labels)}")


def main(argv: list[str] | None = None) -> None:
    """Run the CLI application and exit."""
    configure_logging()
    exit_code = run(
        sys.argv[1:] if argv is None else argv, stdout=sys.stdout, stderr=sys.stderr
    )
    raise SystemExit(exit_code)


def collect_main() -> None:
    """Run the collect stage as a standalone command."""
    main(["collect", *sys.argv[1:]])


def analyze_main() -> None:
    """Run the analyze stage as a standalone command."""
    main(["analyze", *sys.argv[1:]])


def label_main() -> None:
    """Run the label stage as a standalone command."""
    main(["label", *sys.argv[1:]])


def build_main() -> None:
    """Run the build stage as a standalone command."""
    main(["build", *sys.argv[1:]])


if __name__ == "__main__":
    main()
