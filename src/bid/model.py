# Copyright 2026 Zsolt Kulcsar and Contributors. Licensed under the EUPL-1.2 or later
"""Domain models for collection, feature and label artifacts."""

from dataclasses import dataclass, field
from typing import Literal

BinaryKind = Literal["executable", "shared_library"]
IntentCategory = Literal[
    "file_reader",
    "file_writer",
    "directory_ops",
    "file_manipulator",
    "archive_tool",
    "system_utility",
    "unknown",
]
Confidence = Literal["high", "medium", "low"]

# Menu key -> category, in the order offered to the reviewer.
INTENT_CATEGORIES: dict[str, IntentCategory] = {
    "1": "file_reader",
    "2": "file_writer",
    "3": "directory_ops",
    "4": "file_manipulator",
    "5": "archive_tool",
    "6": "system_utility",
    "0": "unknown",
}

INTENT_DESCRIPTIONS: dict[IntentCategory, str] = {
    "file_reader": "Reads file contents",
    "file_writer": "Writes/creates files",
    "directory_ops": "Manages directories (ls, mkdir, etc.)",
    "file_manipulator": "Moves/renames/deletes files",
    "archive_tool": "Compression/archiving",
    "system_utility": "System operations (ps, kill, etc.)",
    "unknown": "Not sure / other",
}

CONFIDENCE_LEVELS: tuple[Confidence, ...] = ("high", "medium", "low")


@dataclass(frozen=True)
class CollectedFile:
    """Represent one binary accepted during discovery.

    Attributes:
        filename: Base name at discovery time.
        path: Absolute path at discovery time.
        content_hash: SHA-256 hex digest of the file bytes.
        size_bytes: File size at discovery time.
        kind: Coarse binary classification.
        architecture: Best-effort target CPU tag, ``"unknown"`` if undetermined.
    """

    filename: str
    path: str
    content_hash: str
    size_bytes: int
    kind: BinaryKind
    architecture: str = "unknown"


@dataclass(frozen=True)
class FeatureRecord:
    """Represent the tool-derived summary of one collected binary.

    Attributes:
        content_hash: Join key back to the collected file.
        filename: Base name of the analyzed file.
        path: Path the tools were run against.
        size_bytes: File size recorded at discovery.
        architecture: Architecture tag recorded at discovery.
        imported_symbols: Undefined symbol names, normalized, first-seen order.
        extracted_strings: Printable fragments within the length window.
        function_count: Function labels in the disassembly listing.
        instruction_count: Address-prefixed lines in the disassembly listing.
        extraction_succeeded: ``True`` only when every sub-extraction completed.
        error: Diagnostic for failed sub-extractions.
    """

    content_hash: str
    filename: str
    path: str
    size_bytes: int
    architecture: str
    imported_symbols: list[str] = field(default_factory=list)
    extracted_strings: list[str] = field(default_factory=list)
    function_count: int = 0
    instruction_count: int = 0
    extraction_succeeded: bool = False
    error: str | None = None


@dataclass(frozen=True)
class LabelEntry:
    """Represent one human-assigned label.

    Attributes:
        content_hash: Join key.
        intent_category: Assigned intent category.
        confidence: Reviewer confidence.
        filename: Name shown to the reviewer, informational only.
        notes: Free-text annotation.
    """

    content_hash: str
    intent_category: IntentCategory
    confidence: Confidence = "medium"
    filename: str = ""
    notes: str = ""


@dataclass(frozen=True)
class TrainingExample:
    """Represent one joined feature record and label entry."""

    content_hash: str
    filename: str
    path: str
    size_bytes: int
    architecture: str
    imported_symbols: list[str]
    extracted_strings: list[str]
    function_count: int
    instruction_count: int
    extraction_succeeded: bool
    error: str | None
    intent_category: IntentCategory
    confidence: Confidence
    notes: str
