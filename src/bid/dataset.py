# Copyright 2026 Zsolt Kulcsar and Contributors. Licensed under the EUPL-1.2 or later
"""Training dataset join of feature records and labels."""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Literal

from bid.artifacts import ArtifactMissingError, load_feature_records
from bid.labels import LabelStore
from bid.model import FeatureRecord, LabelEntry, TrainingExample

logger = logging.getLogger(__name__)

DuplicatePolicy = Literal["first", "exclude"]
DUPLICATE_POLICIES: tuple[DuplicatePolicy, ...] = ("first", "exclude")


@dataclass(frozen=True)
class DatasetBuildResult:
    """Represent the joined dataset and its diagnostics.

    Attributes:
        examples: Training examples in label order.
        unmatched_labels: Labels whose hash has no feature record.
        duplicate_hashes: Hashes carried by more than one feature record.
        excluded_labels: Labels dropped because their hash is duplicated
            and the policy is ``exclude``.
        label_distribution: Example count per category, first-seen order.
    """

    examples: list[TrainingExample]
    unmatched_labels: list[LabelEntry]
    duplicate_hashes: list[str]
    excluded_labels: list[LabelEntry]
    label_distribution: dict[str, int]


class DatasetBuilder:
    """Join feature records and labels on content hash."""

    def __init__(self, duplicate_policy: DuplicatePolicy = "first") -> None:
        """Initialize builder.

        Args:
            duplicate_policy: ``first`` joins a duplicated hash against its
                first feature record; ``exclude`` leaves it out of the output.

        Raises:
            ValueError: If the policy is unknown.
        """
        if duplicate_policy not in DUPLICATE_POLICIES:
            raise ValueError(f"Unsupported duplicate policy: {duplicate_policy}")
        self._duplicate_policy = duplicate_policy

    def build(
        self, features: list[FeatureRecord], labels: dict[str, LabelEntry]
    ) -> DatasetBuildResult:
        """Build training examples for hashes present in both inputs.

        Args:
            features: Feature records in artifact order.
            labels: Labels keyed by content hash.

        Returns:
            Examples in label iteration order plus diagnostics.
        """
        by_hash: dict[str, FeatureRecord] = {}
        duplicate_hashes: list[str] = []
        for record in features:
            if record.content_hash in by_hash:
                if record.content_hash not in duplicate_hashes:
                    duplicate_hashes.append(record.content_hash)
                continue
            by_hash[record.content_hash] = record
        for content_hash in duplicate_hashes:
            logger.warning(
                f"Duplicate content hash in feature records "
                f"(content_hash={content_hash} policy={self._duplicate_policy})"
            )

        examples: list[TrainingExample] = []
        unmatched: list[LabelEntry] = []
        excluded: list[LabelEntry] = []
        distribution: dict[str, int] = {}
        for label in labels.values():
            record = by_hash.get(label.content_hash)
            if record is None:
                logger.warning(
                    f"No analysis found for label (filename={label.filename} "
                    f"content_hash={label.content_hash})"
                )
                unmatched.append(label)
                continue
            if (
                self._duplicate_policy == "exclude"
                and label.content_hash in duplicate_hashes
            ):
                excluded.append(label)
                continue
            examples.append(_join(record, label))
            distribution[label.intent_category] = (
                distribution.get(label.intent_category, 0) + 1
            )

        return DatasetBuildResult(
            examples=examples,
            unmatched_labels=unmatched,
            duplicate_hashes=duplicate_hashes,
            excluded_labels=excluded,
            label_distribution=distribution,
        )

    def build_from_artifacts(
        self, analysis_path: Path, labels_path: Path
    ) -> DatasetBuildResult:
        """Load both input artifacts and build the dataset.

        Raises:
            ArtifactMissingError: If either artifact does not exist.
            ArtifactError: If either artifact is malformed.
        """
        for path in (analysis_path, labels_path):
            if not path.exists():
                logger.warning(f"Required artifact is missing (path={path})")
                raise ArtifactMissingError(f"Artifact not found: {path}")
        features = load_feature_records(analysis_path)
        labels = LabelStore().load(labels_path)
        logger.info(
            f"Dataset inputs loaded (analyzed={len(features)} labeled={len(labels)})"
        )
        return self.build(features=features, labels=labels)


def _join(record: FeatureRecord, label: LabelEntry) -> TrainingExample:
    return TrainingExample(
        content_hash=record.content_hash,
        filename=record.filename,
        path=record.path,
        size_bytes=record.size_bytes,
        architecture=record.architecture,
        imported_symbols=list(record.imported_symbols),
        extracted_strings=list(record.extracted_strings),
        function_count=record.function_count,
        instruction_count=record.instruction_count,
        extraction_succeeded=record.extraction_succeeded,
        error=record.error,
        intent_category=label.intent_category,
        confidence=label.confidence,
        notes=label.notes,
    )
