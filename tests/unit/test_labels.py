# Copyright 2026 Zsolt Kulcsar and Contributors. Licensed under the EUPL-1.2 or later
import json
from pathlib import Path

import pytest

import bid.artifacts as artifacts
from bid.artifacts import ArtifactError
from bid.labels import LabelStore
from bid.model import LabelEntry


def _entry(
    content_hash: str = "h1",
    category: str = "file_reader",
    confidence: str = "medium",
    notes: str = "",
) -> LabelEntry:
    return LabelEntry(
        content_hash=content_hash,
        intent_category=category,  # type: ignore[arg-type]
        confidence=confidence,  # type: ignore[arg-type]
        filename=f"{content_hash}.bin",
        notes=notes,
    )


def test_lab_001_load_treats_missing_artifact_as_empty(tmp_path: Path) -> None:
    assert LabelStore().load(tmp_path / "labeled" / "labels.json") == {}


def test_lab_002_relabel_in_second_session_keeps_one_latest_entry(
    tmp_path: Path,
) -> None:
    path = tmp_path / "labeled" / "labels.json"
    LabelStore().save({"h1": _entry(category="file_reader")}, path)

    second_session = LabelStore()
    existing = second_session.load(path)
    merged = second_session.merge(
        existing, {"h1": _entry(category="archive_tool", confidence="high")}
    )
    second_session.save(merged, path)

    reloaded = LabelStore().load(path)
    assert list(reloaded) == ["h1"]
    assert reloaded["h1"].intent_category == "archive_tool"
    assert reloaded["h1"].confidence == "high"
    payload = json.loads(path.read_text(encoding="utf-8"))
    assert payload["labeled_count"] == 1
    assert len(payload["labels"]) == 1


def test_lab_003_merge_replaces_whole_entries_and_keeps_existing_only() -> None:
    existing = {
        "h1": _entry("h1", notes="keep me"),
        "h2": _entry("h2", category="file_writer"),
    }
    incoming = {"h1": _entry("h1", category="directory_ops"), "h3": _entry("h3")}

    merged = LabelStore().merge(existing, incoming)

    assert list(merged) == ["h1", "h2", "h3"]
    assert merged["h1"].intent_category == "directory_ops"
    assert merged["h1"].notes == ""
    assert merged["h2"].intent_category == "file_writer"
    assert existing["h1"].notes == "keep me"


def test_lab_004_interrupted_save_leaves_previous_snapshot_intact(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    path = tmp_path / "labels.json"
    store = LabelStore()
    store.save({"h1": _entry("h1")}, path)

    def _crash_mid_write(payload, handle, **kwargs) -> None:
        handle.write('{"labels": [')
        raise OSError(28, "No space left on device")

    monkeypatch.setattr(artifacts.json, "dump", _crash_mid_write)
    with pytest.raises(OSError):
        store.save({"h1": _entry("h1"), "h2": _entry("h2")}, path)
    monkeypatch.undo()

    assert list(LabelStore().load(path)) == ["h1"]
    assert [p.name for p in tmp_path.iterdir()] == ["labels.json"]


def test_lab_005_every_save_is_a_parseable_full_snapshot(tmp_path: Path) -> None:
    path = tmp_path / "labels.json"
    store = LabelStore()
    labels: dict[str, LabelEntry] = {}

    for index in range(3):
        labels[f"h{index}"] = _entry(f"h{index}")
        store.save(labels, path, total_binaries=5)
        payload = json.loads(path.read_text(encoding="utf-8"))
        assert payload["labeled_count"] == index + 1
        assert payload["total_binaries"] == 5
        assert payload["labels"][-1]["content_hash"] == f"h{index}"


def test_lab_006_load_accepts_binaries_key_and_last_duplicate_wins(
    tmp_path: Path,
) -> None:
    path = tmp_path / "labels.json"
    path.write_text(
        json.dumps(
            {
                "binaries": [
                    {"content_hash": "h1", "intent_category": "file_reader"},
                    {
                        "content_hash": "h1",
                        "intent_category": "system_utility",
                        "confidence": "low",
                        "notes": "kill",
                    },
                ]
            }
        ),
        encoding="utf-8",
    )

    labels = LabelStore().load(path)

    assert list(labels) == ["h1"]
    assert labels["h1"].intent_category == "system_utility"
    assert labels["h1"].confidence == "low"
    assert labels["h1"].notes == "kill"


@pytest.mark.parametrize(
    "item",
    [
        {"content_hash": "h1", "intent_category": "malware"},
        {"content_hash": "h1", "intent_category": "file_reader", "confidence": "sure"},
        {"intent_category": "file_reader"},
    ],
)
def test_lab_007_load_rejects_malformed_entries(tmp_path: Path, item: dict) -> None:
    path = tmp_path / "labels.json"
    path.write_text(json.dumps({"labels": [item]}), encoding="utf-8")

    with pytest.raises(ArtifactError):
        LabelStore().load(path)


def test_lab_008_load_rejects_unparseable_artifact(tmp_path: Path) -> None:
    path = tmp_path / "labels.json"
    path.write_text('{"labels": [', encoding="utf-8")

    with pytest.raises(ArtifactError):
        LabelStore().load(path)
