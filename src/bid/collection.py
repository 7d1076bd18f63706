# Copyright 2026 Zsolt Kulcsar and Contributors. Licensed under the EUPL-1.2 or later
"""Discovery of executable binaries in filesystem directories."""

import hashlib
import logging
import re
import stat
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Literal, Sequence

from bid.model import BinaryKind, CollectedFile
from bid.tools import ToolInvocationError, ToolRunner

logger = logging.getLogger(__name__)

DEFAULT_MIN_SIZE_BYTES: int = 5 * 1024
DEFAULT_MAX_SIZE_BYTES: int = 10 * 1024 * 1024
MEANINGFUL_SIZE_BYTES: int = 10 * 1024
HASH_CHUNK_BYTES: int = 1024 * 1024

SHARED_LIBRARY_SUFFIXES: frozenset[str] = frozenset({".dll", ".dylib", ".so"})

# Leading bytes of the executable formats accepted by discovery.
BINARY_SIGNATURES: tuple[bytes, ...] = (
    b"\x7fELF",
    b"\xfe\xed\xfa\xce",
    b"\xfe\xed\xfa\xcf",
    b"\xca\xfe\xba\xbe",
    b"\xce\xfa\xed\xfe",
    b"\xcf\xfa\xed\xfe",
    b"MZ",
)

WINDOWS_ROOTS: tuple[str, ...] = (
    "C:\\Windows\\System32",
    "C:\\Windows\\SysWOW64",
    "C:\\Program Files\\Windows NT\\Accessories",
    "C:\\Program Files (x86)\\Windows NT\\Accessories",
)
WINDOWS_SKIP_PATTERNS: tuple[str, ...] = (
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}_",
    r"^api-ms-win-",
    r"^ext-ms-win-",
)
MACOS_ROOTS: tuple[str, ...] = ("/bin", "/usr/bin", "/usr/sbin", "/sbin")
UNIX_ROOTS: tuple[str, ...] = ("/usr/bin", "/bin", "/usr/sbin", "/sbin")
UNIX_SKIP_PATTERNS: tuple[str, ...] = (
    r"^perl",
    r"^python",
    r"^ruby",
    r"\d+\.\d+",
)

_STUB_NAME_RE = re.compile(r"^[0-9a-f-]{36}")

CollectionQuality = Literal["excellent", "good", "fair", "poor"]


def default_roots(platform: str = sys.platform) -> list[str]:
    """Return the default scan roots for a platform."""
    if platform == "win32":
        return list(WINDOWS_ROOTS)
    if platform == "darwin":
        return list(MACOS_ROOTS)
    return list(UNIX_ROOTS)


def default_skip_patterns(platform: str = sys.platform) -> list[str]:
    """Return the default file name skip patterns for a platform."""
    if platform == "win32":
        return list(WINDOWS_SKIP_PATTERNS)
    return list(UNIX_SKIP_PATTERNS)


@dataclass(frozen=True)
class CollectionOptions:
    """Describe discovery filters.

    Attributes:
        min_size_bytes: Smallest accepted file size, inclusive.
        max_size_bytes: Largest accepted file size, inclusive.
        detect_architecture: Whether to ask the format identifier for a CPU tag.
    """

    min_size_bytes: int = DEFAULT_MIN_SIZE_BYTES
    max_size_bytes: int = DEFAULT_MAX_SIZE_BYTES
    detect_architecture: bool = True


@dataclass(frozen=True)
class ScanError:
    """Represent a recoverable scan failure for one path."""

    path: str
    message: str


@dataclass(frozen=True)
class DiscoveryResult:
    """Represent the outcome of one discovery run.

    Attributes:
        files: Accepted files in priority order.
        errors: Entries or roots that could not be read.
        skipped_by_pattern: Entries rejected by a skip pattern.
        skipped_by_size: Entries outside the size window.
        skipped_by_format: Entries without a known executable signature.
        skipped_not_regular: Symlinks, directories and special files.
    """

    files: list[CollectedFile]
    errors: list[ScanError]
    skipped_by_pattern: int = 0
    skipped_by_size: int = 0
    skipped_by_format: int = 0
    skipped_not_regular: int = 0


@dataclass
class _ScanAccumulator:
    max_count: int
    files: list[CollectedFile] = field(default_factory=list)
    errors: list[ScanError] = field(default_factory=list)
    skipped_by_pattern: int = 0
    skipped_by_size: int = 0
    skipped_by_format: int = 0
    skipped_not_regular: int = 0

    @property
    def full(self) -> bool:
        return len(self.files) >= self.max_count

    def to_result(self) -> DiscoveryResult:
        return DiscoveryResult(
            files=list(self.files),
            errors=list(self.errors),
            skipped_by_pattern=self.skipped_by_pattern,
            skipped_by_size=self.skipped_by_size,
            skipped_by_format=self.skipped_by_format,
            skipped_not_regular=self.skipped_not_regular,
        )


class CollectionStore:
    """Discover and fingerprint executable binaries."""

    def __init__(
        self,
        options: CollectionOptions | None = None,
        tool_runner: ToolRunner | None = None,
    ) -> None:
        """Initialize discovery configuration.

        Args:
            options: Size and detection options.
            tool_runner: Runner for the format identifier; architecture is
                reported as ``"unknown"`` when omitted.

        Raises:
            ValueError: If the size window is empty or negative.
        """
        self._options = options or CollectionOptions()
        if self._options.min_size_bytes < 0:
            raise ValueError("min_size_bytes must be >= 0")
        if self._options.max_size_bytes < self._options.min_size_bytes:
            raise ValueError("max_size_bytes must be >= min_size_bytes")
        self._tool_runner = tool_runner

    def discover(
        self,
        root_directories: Sequence[str | Path],
        max_count: int,
        skip_patterns: Iterable[str | re.Pattern[str]] = (),
    ) -> DiscoveryResult:
        """Scan root directories non-recursively for binaries.

        Roots are visited in the given order and entries within a root in
        name order; the scan stops as soon as ``max_count`` files have been
        accepted.

        Args:
            root_directories: Directories to scan, highest priority first.
            max_count: Maximum number of files to accept overall.
            skip_patterns: File name patterns to reject before any file I/O.

        Returns:
            Accepted files plus skip counters and recoverable errors.

        Raises:
            ValueError: If ``max_count`` is not greater than zero or a
                pattern is not a valid regular expression.
        """
        if max_count <= 0:
            raise ValueError("max_count must be > 0")
        compiled = compile_skip_patterns(skip_patterns)
        accumulator = _ScanAccumulator(max_count=max_count)
        for root in root_directories:
            if accumulator.full:
                break
            before = len(accumulator.files)
            self._scan_directory(Path(root), compiled, accumulator)
            logger.info(
                f"Scanned directory (root={root} accepted={len(accumulator.files) - before})"
            )
        return accumulator.to_result()

    def _scan_directory(
        self,
        root: Path,
        skip_patterns: list[re.Pattern[str]],
        accumulator: _ScanAccumulator,
    ) -> None:
        try:
            entries = sorted(root.iterdir(), key=lambda entry: entry.name)
        except OSError as exc:
            logger.warning(f"Cannot access directory (root={root} error={exc})")
            accumulator.errors.append(ScanError(path=str(root), message=str(exc)))
            return

        for entry in entries:
            if accumulator.full:
                return
            if any(pattern.search(entry.name) for pattern in skip_patterns):
                accumulator.skipped_by_pattern += 1
                continue
            try:
                collected = self._inspect(entry, accumulator)
            except OSError as exc:
                logger.warning(
                    f"Skipping file due to access failure (path={entry} error={exc})"
                )
                accumulator.errors.append(ScanError(path=str(entry), message=str(exc)))
                continue
            if collected is not None:
                accumulator.files.append(collected)
                logger.debug(
                    f"Collected file (path={entry} size_bytes={collected.size_bytes} "
                    f"architecture={collected.architecture})"
                )

    def _inspect(
        self, entry: Path, accumulator: _ScanAccumulator
    ) -> CollectedFile | None:
        """Apply size and format filters, then hash the accepted file."""
        info = entry.lstat()
        if not stat.S_ISREG(info.st_mode):
            accumulator.skipped_not_regular += 1
            return None
        size = info.st_size
        if size < self._options.min_size_bytes or size > self._options.max_size_bytes:
            accumulator.skipped_by_size += 1
            return None
        if not has_binary_signature(entry):
            accumulator.skipped_by_format += 1
            return None
        absolute = entry.resolve()
        return CollectedFile(
            filename=entry.name,
            path=str(absolute),
            content_hash=sha256_file(entry),
            size_bytes=size,
            kind=classify_kind(entry.name),
            architecture=self._architecture(absolute),
        )

    def _architecture(self, path: Path) -> str:
        if self._tool_runner is None or not self._options.detect_architecture:
            return "unknown"
        try:
            description = self._tool_runner.run(["file", "-b", str(path)])
        except ToolInvocationError as exc:
            logger.debug(f"Architecture detection failed (path={path} error={exc})")
            return "unknown"
        return architecture_from_description(description)


def compile_skip_patterns(
    patterns: Iterable[str | re.Pattern[str]],
) -> list[re.Pattern[str]]:
    """Compile skip patterns as case-insensitive regular expressions.

    Raises:
        ValueError: If a pattern string is not a valid regular expression.
    """
    compiled: list[re.Pattern[str]] = []
    for pattern in patterns:
        if isinstance(pattern, re.Pattern):
            compiled.append(pattern)
            continue
        try:
            compiled.append(re.compile(pattern, re.IGNORECASE))
        except re.error as exc:
            raise ValueError(f"Invalid skip pattern {pattern!r}: {exc}") from exc
    return compiled


def has_binary_signature(path: Path) -> bool:
    """Check whether a file starts with a known executable-format signature."""
    with path.open("rb") as handle:
        header = handle.read(4)
    return any(header.startswith(signature) for signature in BINARY_SIGNATURES)


def sha256_file(path: Path) -> str:
    """Return the SHA-256 hex digest of a file's full content."""
    digest = hashlib.sha256()
    with path.open("rb") as handle:
        for chunk in iter(lambda: handle.read(HASH_CHUNK_BYTES), b""):
            digest.update(chunk)
    return digest.hexdigest()


def classify_kind(filename: str) -> BinaryKind:
    """Classify a file as executable or shared library by its name."""
    lowered = filename.lower()
    if Path(lowered).suffix in SHARED_LIBRARY_SUFFIXES or ".so." in lowered:
        return "shared_library"
    return "executable"


def architecture_from_description(description: str) -> str:
    """Map format identifier output to a CPU tag."""
    lowered = description.lower()
    if "universal binary" in lowered:
        return "universal"
    if "arm64" in lowered or "aarch64" in lowered:
        return "arm64"
    if "x86-64" in lowered or "x86_64" in lowered:
        return "x86_64"
    if "i386" in lowered or "80386" in lowered:
        return "i386"
    return "unknown"


def find_duplicate_hashes(files: Iterable[CollectedFile]) -> dict[str, list[str]]:
    """Group paths that share a content hash.

    Args:
        files: Collected files in discovery order.

    Returns:
        Mapping of duplicated content hash to all its paths, discovery order.
    """
    paths_by_hash: dict[str, list[str]] = {}
    for collected in files:
        paths_by_hash.setdefault(collected.content_hash, []).append(collected.path)
    return {digest: paths for digest, paths in paths_by_hash.items() if len(paths) > 1}


def is_stub_like(filename: str) -> bool:
    """Check whether a name looks like an OS forwarding stub."""
    return (
        "api-ms-" in filename
        or "ext-ms-" in filename
        or _STUB_NAME_RE.match(filename) is not None
    )


def validate_collection(files: list[CollectedFile]) -> list[str]:
    """Describe quality issues of a collection; empty when none are found."""
    issues: list[str] = []
    duplicates = find_duplicate_hashes(files)
    duplicate_count = sum(len(paths) - 1 for paths in duplicates.values())
    if duplicate_count:
        issues.append(f"Found {duplicate_count} duplicate files")
    tiny = [f for f in files if f.size_bytes < MEANINGFUL_SIZE_BYTES]
    if tiny:
        issues.append(f"{len(tiny)} files are very small (< 10KB) - might be stubs")
    suspicious = [f for f in files if is_stub_like(f.filename)]
    if suspicious:
        issues.append(f"{len(suspicious)} files look like system stubs")
    return issues


def assess_quality(files: list[CollectedFile]) -> CollectionQuality:
    """Grade a collection by its share of meaningful files."""
    if not files:
        return "poor"
    meaningful = sum(
        1
        for f in files
        if f.size_bytes >= MEANINGFUL_SIZE_BYTES and not is_stub_like(f.filename)
    )
    ratio = meaningful / len(files)
    if ratio >= 0.9:
        return "excellent"
    if ratio >= 0.7:
        return "good"
    if ratio >= 0.5:
        return "fair"
    return "poor"
