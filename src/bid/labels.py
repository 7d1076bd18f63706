# Copyright 2026 Zsolt Kulcsar and Contributors. Licensed under the EUPL-1.2 or later
"""Persistent label store keyed by content hash."""

import logging
from pathlib import Path

from bid.artifacts import (
    ArtifactMissingError,
    label_entries_from_payload,
    label_payload,
    read_json,
    write_json_atomic,
)
from bid.model import LabelEntry

logger = logging.getLogger(__name__)


class LabelStore:
    """Load, merge and save label snapshots."""

    def load(self, path: Path) -> dict[str, LabelEntry]:
        """Load labels from an artifact.

        A missing artifact is an empty store. When an artifact lists the same
        hash twice, the later entry wins.

        Args:
            path: Label artifact path.

        Returns:
            Labels keyed by content hash, in artifact order.

        Raises:
            ArtifactError: If the artifact exists but is malformed.
        """
        try:
            payload = read_json(path)
        except ArtifactMissingError:
            logger.info(f"No existing labels found (path={path})")
            return {}
        labels: dict[str, LabelEntry] = {}
        for entry in label_entries_from_payload(payload):
            labels[entry.content_hash] = entry
        logger.info(f"Loaded existing labels (path={path} count={len(labels)})")
        return labels

    def merge(
        self, existing: dict[str, LabelEntry], incoming: dict[str, LabelEntry]
    ) -> dict[str, LabelEntry]:
        """Merge two label mappings without mutating either.

        Incoming entries replace existing entries for the same hash as a
        whole; existing-only entries keep their position.

        Args:
            existing: Previously persisted labels.
            incoming: Newly assigned labels.

        Returns:
            Merged labels.
        """
        merged = dict(existing)
        for content_hash, entry in incoming.items():
            merged[content_hash] = entry
        return merged

    def save(
        self,
        labels: dict[str, LabelEntry],
        path: Path,
        total_binaries: int | None = None,
    ) -> None:
        """Write the full label mapping as one snapshot.

        Args:
            labels: Complete label mapping.
            path: Label artifact path.
            total_binaries: Number of binaries under review, for progress.

        Raises:
            OSError: If the snapshot cannot be written.
        """
        write_json_atomic(label_payload(labels, total_binaries=total_binaries), path)
        logger.debug(f"Saved labels (path={path} count={len(labels)})")
