# Copyright 2026 Zsolt Kulcsar and Contributors. Licensed under the EUPL-1.2 or later
"""JSON artifact reading and writing."""

import json
import logging
import os
import tempfile
from dataclasses import asdict
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from bid.model import (
    CONFIDENCE_LEVELS,
    INTENT_CATEGORIES,
    CollectedFile,
    FeatureRecord,
    LabelEntry,
    TrainingExample,
)

logger = logging.getLogger(__name__)

COLLECTION_ARTIFACT: Path = Path("raw") / "collected-files.json"
FEATURE_ARTIFACT: Path = Path("processed") / "binary-analysis.json"
LABEL_ARTIFACT: Path = Path("labeled") / "labeled-binaries.json"
TRAINING_ARTIFACT: Path = Path("training") / "ml-dataset.json"


class ArtifactError(RuntimeError):
    """Represent an unreadable or malformed artifact."""


class ArtifactMissingError(ArtifactError):
    """Represent a required input artifact that does not exist."""


def utc_now() -> str:
    """Return the current UTC time as an ISO-8601 string."""
    return datetime.now(tz=timezone.utc).isoformat()


def read_json(path: Path) -> dict[str, Any]:
    """Read one JSON object artifact.

    Args:
        path: Artifact path.

    Returns:
        Parsed top-level object.

    Raises:
        ArtifactMissingError: If the file does not exist.
        ArtifactError: If the file cannot be read or is not a JSON object.
    """
    if not path.exists():
        raise ArtifactMissingError(f"Artifact not found: {path}")
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
        logger.warning(f"Failed to read artifact (path={path} error={exc})")
        raise ArtifactError(f"Cannot read artifact {path}: {exc}") from exc
    if not isinstance(payload, dict):
        raise ArtifactError(f"Artifact {path} is not a JSON object")
    return payload


def write_json_atomic(payload: dict[str, Any], path: Path) -> None:
    """Write a JSON artifact as a complete snapshot.

    The payload is written to a temporary file in the target directory,
    flushed to disk, then moved over the target, so readers only ever see
    the previous or the new complete file.

    Args:
        payload: JSON-serializable object.
        path: Target path.

    Raises:
        OSError: If the directory cannot be created or the write fails.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    handle = tempfile.NamedTemporaryFile(
        mode="w",
        encoding="utf-8",
        dir=path.parent,
        prefix=f".{path.name}.",
        suffix=".tmp",
        delete=False,
    )
    temp_path = Path(handle.name)
    try:
        with handle:
            json.dump(payload, handle, indent=2)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(temp_path, path)
    except BaseException:
        temp_path.unlink(missing_ok=True)
        raise


def _items(payload: dict[str, Any], *keys: str) -> list[dict[str, Any]]:
    for key in keys:
        items = payload.get(key)
        if items is None:
            continue
        if not isinstance(items, list) or not all(isinstance(i, dict) for i in items):
            raise ArtifactError(f"Artifact field '{key}' must be a list of objects")
        return items
    return []


def collection_payload(
    files: list[CollectedFile], platform: str, quality: str
) -> dict[str, Any]:
    """Build the collection artifact payload."""
    return {
        "platform": platform,
        "collection_date": utc_now(),
        "total_files": len(files),
        "collection_quality": quality,
        "files": [asdict(f) for f in files],
    }


def load_collected_files(path: Path) -> list[CollectedFile]:
    """Load collected files from a collection artifact."""
    payload = read_json(path)
    try:
        return [CollectedFile(**item) for item in _items(payload, "files")]
    except TypeError as exc:
        raise ArtifactError(f"Malformed collected file in {path}: {exc}") from exc


def feature_payload(records: list[FeatureRecord]) -> dict[str, Any]:
    """Build the feature artifact payload."""
    return {
        "analysis_date": utc_now(),
        "total_binaries": len(records),
        "successful_analyses": sum(1 for r in records if r.extraction_succeeded),
        "binaries": [asdict(r) for r in records],
    }


def load_feature_records(path: Path) -> list[FeatureRecord]:
    """Load feature records from a feature artifact."""
    payload = read_json(path)
    try:
        return [FeatureRecord(**item) for item in _items(payload, "binaries")]
    except TypeError as exc:
        raise ArtifactError(f"Malformed feature record in {path}: {exc}") from exc


def label_payload(
    labels: dict[str, LabelEntry], total_binaries: int | None = None
) -> dict[str, Any]:
    """Build the label artifact payload."""
    return {
        "last_updated": utc_now(),
        "total_binaries": len(labels) if total_binaries is None else total_binaries,
        "labeled_count": len(labels),
        "labels": [asdict(entry) for entry in labels.values()],
    }


def label_entries_from_payload(payload: dict[str, Any]) -> list[LabelEntry]:
    """Parse label entries, accepting a ``labels`` or ``binaries`` list.

    Raises:
        ArtifactError: If an entry lacks a hash or carries an unknown
            category or confidence.
    """
    entries: list[LabelEntry] = []
    categories = set(INTENT_CATEGORIES.values())
    for item in _items(payload, "labels", "binaries"):
        content_hash = item.get("content_hash")
        category = item.get("intent_category")
        confidence = item.get("confidence") or "medium"
        if not isinstance(content_hash, str) or not content_hash:
            raise ArtifactError(f"Label entry without content_hash: {item!r}")
        if category not in categories:
            raise ArtifactError(
                f"Unknown intent category (content_hash={content_hash} category={category!r})"
            )
        if confidence not in CONFIDENCE_LEVELS:
            raise ArtifactError(
                f"Unknown confidence (content_hash={content_hash} confidence={confidence!r})"
            )
        entries.append(
            LabelEntry(
                content_hash=content_hash,
                intent_category=category,
                confidence=confidence,
                filename=str(item.get("filename") or ""),
                notes=str(item.get("notes") or ""),
            )
        )
    return entries


def training_payload(
    examples: list[TrainingExample], label_distribution: dict[str, int]
) -> dict[str, Any]:
    """Build the training artifact payload."""
    return {
        "created_at": utc_now(),
        "total_examples": len(examples),
        "label_distribution": dict(label_distribution),
        "examples": [asdict(example) for example in examples],
    }
