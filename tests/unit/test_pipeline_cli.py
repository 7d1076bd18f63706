# Copyright 2026 Zsolt Kulcsar and Contributors. Licensed under the EUPL-1.2 or later
"""Unit tests for the pipeline CLI stages."""

import io
import json
import logging
from pathlib import Path
from typing import Callable

import pytest

import cli.pipeline_cli as pipeline_cli
from cli.pipeline_cli import run

KB = 1024


class _FakeSubprocessToolRunner:
    def __init__(self, **kwargs: object) -> None:
        self.kwargs = kwargs

    def run(self, args: list[str]) -> str:
        if args[0] == "nm":
            return "_fopen\n_fread\n"
        if args[0] == "strings":
            return "usage: tool [file]\nabc\n"
        if args[0] == "objdump":
            return "0000000000001139 <main>:\n    1139:\t55\tpush   %rbp\n"
        return "ELF 64-bit LSB executable, ARM aarch64"


def _scripted(answers: list[str]) -> Callable[[str], str]:
    remaining = iter(answers)

    def _read(prompt: str) -> str:
        try:
            return next(remaining)
        except StopIteration:
            raise EOFError from None

    return _read


def _invoke(argv: list[str], **kwargs) -> tuple[int, str, str]:
    stdout = io.StringIO()
    stderr = io.StringIO()
    exit_code = run(argv, stdout=stdout, stderr=stderr, **kwargs)
    return exit_code, stdout.getvalue(), stderr.getvalue()


def _collect(tmp_path: Path, write_binary, data_dir: Path) -> tuple[int, str, str]:
    root = tmp_path / "bin"
    write_binary(root / "stub-a.bin", 2 * KB)
    write_binary(root / "ok-b.bin", 50 * KB)
    write_binary(root / "ok-c.bin", 20 * KB)
    write_binary(root / "tiny-d.bin", 10)
    return _invoke(
        [
            "collect",
            "2",
            "--root",
            str(root),
            "--skip-pattern",
            "^stub-",
            "--min-size",
            "1024",
            "--no-architecture",
            "--data-dir",
            str(data_dir),
        ]
    )


def test_cli_001_requires_a_command() -> None:
    exit_code, _, _ = _invoke([])

    assert exit_code == 2


def test_cli_002_collect_writes_collection_artifact(
    tmp_path: Path, write_binary
) -> None:
    data_dir = tmp_path / "data"

    exit_code, stdout, _ = _collect(tmp_path, write_binary, data_dir)

    assert exit_code == 0
    payload = json.loads(
        (data_dir / "raw" / "collected-files.json").read_text(encoding="utf-8")
    )
    assert payload["total_files"] == 2
    assert [f["filename"] for f in payload["files"]] == ["ok-b.bin", "ok-c.bin"]
    assert {"collection_date", "collection_quality", "platform"} <= set(payload)
    assert "Collection Summary" in stdout


def test_cli_003_collect_rejects_non_positive_count(tmp_path: Path) -> None:
    exit_code, _, stderr = _invoke(
        ["collect", "0", "--root", str(tmp_path), "--data-dir", str(tmp_path)]
    )

    assert exit_code == 2
    assert "max_count must be > 0" in stderr


def test_cli_004_analyze_requires_collection_artifact(tmp_path: Path) -> None:
    exit_code, _, stderr = _invoke(["analyze", "--data-dir", str(tmp_path)])

    assert exit_code == 2
    assert "Collected files not found" in stderr
    assert not (tmp_path / "processed").exists()


def test_cli_005_full_pipeline_collect_analyze_label_build(
    tmp_path: Path, write_binary, monkeypatch: pytest.MonkeyPatch
) -> None:
    data_dir = tmp_path / "data"
    monkeypatch.setattr(
        pipeline_cli, "SubprocessToolRunner", _FakeSubprocessToolRunner
    )
    assert _collect(tmp_path, write_binary, data_dir)[0] == 0

    exit_code, stdout, _ = _invoke(["analyze", "--data-dir", str(data_dir)])
    assert exit_code == 0
    analysis = json.loads(
        (data_dir / "processed" / "binary-analysis.json").read_text(encoding="utf-8")
    )
    assert analysis["total_binaries"] == 2
    assert analysis["successful_analyses"] == 2
    assert analysis["binaries"][0]["imported_symbols"] == ["fopen", "fread"]
    assert analysis["binaries"][0]["function_count"] == 1
    assert "Successful: 2" in stdout

    exit_code, _, _ = _invoke(
        ["label", "--data-dir", str(data_dir)],
        read_input=_scripted(["1", "h", "s"]),
    )
    assert exit_code == 0

    exit_code, stdout, _ = _invoke(["build", "--data-dir", str(data_dir)])
    assert exit_code == 0
    training = json.loads(
        (data_dir / "training" / "ml-dataset.json").read_text(encoding="utf-8")
    )
    assert training["total_examples"] == 1
    assert training["label_distribution"] == {"file_reader": 1}
    assert training["examples"][0]["filename"] == "ok-b.bin"
    assert "Unmatched labels: 0" in stdout


def test_cli_006_label_requires_analysis_artifact(tmp_path: Path) -> None:
    exit_code, _, stderr = _invoke(
        ["label", "--data-dir", str(tmp_path)], read_input=_scripted([])
    )

    assert exit_code == 2
    assert "Analysis file not found" in stderr


def test_cli_007_build_requires_labels_and_writes_nothing(tmp_path: Path) -> None:
    processed = tmp_path / "processed"
    processed.mkdir()
    (processed / "binary-analysis.json").write_text(
        json.dumps({"binaries": []}), encoding="utf-8"
    )

    exit_code, _, stderr = _invoke(["build", "--data-dir", str(tmp_path)])

    assert exit_code == 2
    assert "Run `bid label` first" in stderr
    assert not (tmp_path / "training").exists()


def test_cli_008_build_reports_unmatched_labels(tmp_path: Path) -> None:
    (tmp_path / "processed").mkdir()
    (tmp_path / "labeled").mkdir()
    (tmp_path / "processed" / "binary-analysis.json").write_text(
        json.dumps({"binaries": []}), encoding="utf-8"
    )
    (tmp_path / "labeled" / "labeled-binaries.json").write_text(
        json.dumps(
            {
                "labels": [
                    {
                        "content_hash": "abc",
                        "filename": "ghost",
                        "intent_category": "unknown",
                    }
                ]
            }
        ),
        encoding="utf-8",
    )

    exit_code, stdout, _ = _invoke(
        ["build", "--data-dir", str(tmp_path), "--duplicate-policy", "exclude"]
    )

    assert exit_code == 0
    assert "Unmatched labels: 1" in stdout
    assert "ghost (abc)" in stdout


@pytest.mark.parametrize(
    "argv",
    [
        ["analyze", "--verbose"],
        ["--verbose", "analyze"],
    ],
)
def test_cli_009_verbose_is_accepted_before_or_after_the_stage(
    tmp_path: Path, argv: list[str]
) -> None:
    root_logger = logging.getLogger()
    previous_level = root_logger.level
    try:
        exit_code, _, stderr = _invoke([*argv, "--data-dir", str(tmp_path)])

        assert exit_code == 2
        assert "Collected files not found" in stderr
        assert root_logger.level == logging.DEBUG
    finally:
        root_logger.setLevel(previous_level)
