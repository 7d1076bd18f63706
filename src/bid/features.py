# Copyright 2026 Zsolt Kulcsar and Contributors. Licensed under the EUPL-1.2 or later
"""Feature extraction from external analysis tool output."""

import logging
import re
from dataclasses import dataclass

from bid.collection import find_duplicate_hashes
from bid.model import CollectedFile, FeatureRecord
from bid.tools import ToolInvocationError, ToolRunner

logger = logging.getLogger(__name__)

DEFAULT_MIN_STRING_LENGTH: int = 4
DEFAULT_MAX_STRING_LENGTH: int = 99
DEFAULT_MAX_STRINGS: int = 50

# Line-pattern heuristics over `objdump -d` text, not a semantic disassembly.
FUNCTION_LABEL_RE = re.compile(r"^[0-9a-f]+ <.*>:")
INSTRUCTION_LINE_RE = re.compile(r"^\s*[0-9a-f]+:")


@dataclass(frozen=True)
class ExtractionOptions:
    """Describe string retention limits.

    Attributes:
        min_string_length: Shortest retained fragment, inclusive.
        max_string_length: Longest retained fragment, inclusive.
        max_strings: Maximum number of retained fragments.
    """

    min_string_length: int = DEFAULT_MIN_STRING_LENGTH
    max_string_length: int = DEFAULT_MAX_STRING_LENGTH
    max_strings: int = DEFAULT_MAX_STRINGS


class FeatureExtractor:
    """Build feature records by shelling out to `nm`, `strings` and `objdump`."""

    def __init__(
        self, tool_runner: ToolRunner, options: ExtractionOptions | None = None
    ) -> None:
        """Initialize extractor.

        Args:
            tool_runner: Runner used for every external tool call.
            options: String retention limits.

        Raises:
            ValueError: If the string window or cap is invalid.
        """
        self._tool_runner = tool_runner
        self._options = options or ExtractionOptions()
        if self._options.min_string_length < 1:
            raise ValueError("min_string_length must be > 0")
        if self._options.max_string_length < self._options.min_string_length:
            raise ValueError("max_string_length must be >= min_string_length")
        if self._options.max_strings < 0:
            raise ValueError("max_strings must be >= 0")

    def extract(self, collected: CollectedFile) -> FeatureRecord:
        """Extract features for one file.

        Every sub-extraction runs even when an earlier one failed; the record
        is marked successful only when all of them completed.

        Args:
            collected: File to analyze.

        Returns:
            Feature record, never omitted on failure.
        """
        errors: list[str] = []
        symbols: list[str] = []
        strings: list[str] = []
        function_count = 0
        instruction_count = 0

        try:
            symbols = normalize_symbols(
                self._tool_runner.run(["nm", "-u", collected.path])
            )
        except ToolInvocationError as exc:
            errors.append(f"symbols: {exc}")
        try:
            strings = filter_strings(
                self._tool_runner.run(["strings", collected.path]),
                min_length=self._options.min_string_length,
                max_length=self._options.max_string_length,
                limit=self._options.max_strings,
            )
        except ToolInvocationError as exc:
            errors.append(f"strings: {exc}")
        try:
            function_count, instruction_count = count_disassembly(
                self._tool_runner.run(["objdump", "-d", collected.path])
            )
        except ToolInvocationError as exc:
            errors.append(f"disassembly: {exc}")

        if errors:
            logger.warning(
                f"Feature extraction degraded (path={collected.path} errors={errors})"
            )
        return FeatureRecord(
            content_hash=collected.content_hash,
            filename=collected.filename,
            path=collected.path,
            size_bytes=collected.size_bytes,
            architecture=collected.architecture,
            imported_symbols=symbols,
            extracted_strings=strings,
            function_count=function_count,
            instruction_count=instruction_count,
            extraction_succeeded=not errors,
            error="; ".join(errors) if errors else None,
        )

    def extract_all(self, files: list[CollectedFile]) -> list[FeatureRecord]:
        """Extract features for every file, one at a time.

        Args:
            files: Collected files in artifact order.

        Returns:
            One record per input file, in input order.
        """
        for digest, paths in find_duplicate_hashes(files).items():
            logger.warning(
                f"Duplicate content hash in collection (content_hash={digest} paths={paths})"
            )
        records: list[FeatureRecord] = []
        failed = 0
        total = len(files)
        for collected in files:
            record = self.extract(collected)
            if not record.extraction_succeeded:
                failed += 1
            records.append(record)
            self._log_progress(completed=len(records), total=total, failed=failed)
        return records

    def _log_progress(self, completed: int, total: int, failed: int) -> None:
        percent = 100.0 if total == 0 else (completed / total) * 100.0
        logger.info(
            "feature_extraction_progress completed=%s total=%s failed=%s percent=%.2f",
            completed,
            total,
            failed,
            percent,
        )


def normalize_symbols(output: str) -> list[str]:
    """Normalize undefined-symbol listing output.

    Handles both bare-name listings and the ``U name`` column layout, drops
    ELF symbol-version suffixes and one leading underscore, and removes
    duplicates keeping first-seen order.

    Args:
        output: Raw `nm -u` output.

    Returns:
        Normalized symbol names.
    """
    seen: dict[str, None] = {}
    for line in output.splitlines():
        stripped = line.strip()
        if not stripped:
            continue
        name = stripped.split()[-1]
        name = name.split("@", 1)[0]
        if name.startswith("_"):
            name = name[1:]
        if name:
            seen.setdefault(name, None)
    return list(seen)


def filter_strings(
    output: str,
    min_length: int = DEFAULT_MIN_STRING_LENGTH,
    max_length: int = DEFAULT_MAX_STRING_LENGTH,
    limit: int = DEFAULT_MAX_STRINGS,
) -> list[str]:
    """Keep printable fragments within the length window, first-seen order."""
    kept: list[str] = []
    for line in output.splitlines():
        if len(kept) >= limit:
            break
        fragment = line.strip()
        if min_length <= len(fragment) <= max_length:
            kept.append(fragment)
    return kept


def count_disassembly(output: str) -> tuple[int, int]:
    """Count function labels and instruction lines in a disassembly listing.

    Returns:
        ``(function_count, instruction_count)``.
    """
    functions = 0
    instructions = 0
    for line in output.splitlines():
        if FUNCTION_LABEL_RE.match(line):
            functions += 1
        elif INSTRUCTION_LINE_RE.match(line):
            instructions += 1
    return functions, instructions
