# Copyright 2026 Zsolt Kulcsar and Contributors. Licensed under the EUPL-1.2 or later
"""Interactive labeling session driven as a finite-state loop."""

import logging
from enum import Enum
from pathlib import Path
from typing import Callable

from rich.console import Console
from rich.table import Table
from rich.text import Text

from bid.labels import LabelStore
from bid.model import (
    INTENT_CATEGORIES,
    INTENT_DESCRIPTIONS,
    Confidence,
    FeatureRecord,
    IntentCategory,
    LabelEntry,
)
from bid.suggestion import suggest_label

logger = logging.getLogger(__name__)

CONFIDENCE_KEYS: dict[str, Confidence] = {"h": "high", "m": "medium", "l": "low"}
MAX_DISPLAY_SYMBOLS: int = 20
MAX_DISPLAY_STRINGS: int = 10
MAX_STRING_DISPLAY_LENGTH: int = 60


class SessionState(Enum):
    """Labeling loop states."""

    PROMPTING = "prompting"
    AWAITING_CATEGORY = "awaiting_category"
    AWAITING_CONFIDENCE = "awaiting_confidence"
    REVIEWING = "reviewing"
    DONE = "done"


class LabelingSession:
    """Walk a reviewer through feature records and persist each label."""

    def __init__(
        self,
        binaries: list[FeatureRecord],
        labels: dict[str, LabelEntry],
        label_path: Path,
        console: Console,
        read_input: Callable[[str], str] | None = None,
        store: LabelStore | None = None,
    ) -> None:
        """Initialize the session.

        Args:
            binaries: Records to review, in presentation order.
            labels: Previously persisted labels; entries for hashes not under
                review are kept untouched.
            label_path: Label artifact written after every assignment.
            console: Console used for rendering.
            read_input: Prompt reader; raises ``EOFError`` when input ends.
                Defaults to the console prompt.
            store: Label persistence backend.
        """
        self._binaries = binaries
        self._labels = dict(labels)
        self._label_path = label_path
        self._console = console
        self._read_input = read_input or self._console_input
        self._store = store or LabelStore()
        self._index = 0
        self._pending_category: IntentCategory | None = None

    @property
    def labels(self) -> dict[str, LabelEntry]:
        """Return a copy of the current labels."""
        return dict(self._labels)

    @property
    def index(self) -> int:
        """Return the position of the binary under review."""
        return self._index

    def run(self) -> dict[str, LabelEntry]:
        """Run the loop until the reviewer quits or every binary is seen.

        Returns:
            Final labels, as persisted.
        """
        state = SessionState.PROMPTING
        while state is not SessionState.DONE:
            state = self.step(state)
        self._save()
        labeled = self._labeled_count()
        self._console.print(f"Labeled: {labeled}/{len(self._binaries)}")
        self._console.print(f"Saved to: {self._label_path}")
        logger.info(
            f"Labeling session finished (labeled={labeled} total={len(self._binaries)})"
        )
        return self.labels

    def step(self, state: SessionState) -> SessionState:
        """Perform one transition.

        Args:
            state: Current state.

        Returns:
            Next state.
        """
        if state is SessionState.PROMPTING:
            return self._prompt()
        if state is SessionState.AWAITING_CATEGORY:
            return self._await_category()
        if state is SessionState.AWAITING_CONFIDENCE:
            return self._await_confidence()
        if state is SessionState.REVIEWING:
            return self._await_review_exit()
        return SessionState.DONE

    def _prompt(self) -> SessionState:
        if self._index >= len(self._binaries):
            self._console.print("All binaries reviewed!")
            return SessionState.DONE
        self._render_binary(self._binaries[self._index])
        return SessionState.AWAITING_CATEGORY

    def _await_category(self) -> SessionState:
        answer = self._read("Your choice: ")
        if answer is None or answer == "q":
            return SessionState.DONE
        if answer == "s":
            self._index += 1
            return SessionState.PROMPTING
        if answer == "b":
            self._index = max(0, self._index - 1)
            return SessionState.PROMPTING
        if answer == "r":
            self._render_review()
            return SessionState.REVIEWING
        if answer in INTENT_CATEGORIES:
            self._pending_category = INTENT_CATEGORIES[answer]
            return SessionState.AWAITING_CONFIDENCE
        self._console.print("Invalid input. Please try again.")
        return SessionState.AWAITING_CATEGORY

    def _await_confidence(self) -> SessionState:
        answer = self._read("Confidence (h/m/l) [default: m]: ")
        category = self._pending_category
        self._pending_category = None
        if answer is None or category is None:
            return SessionState.DONE
        confidence = CONFIDENCE_KEYS.get(answer, "medium")
        binary = self._binaries[self._index]
        self._labels[binary.content_hash] = LabelEntry(
            content_hash=binary.content_hash,
            intent_category=category,
            confidence=confidence,
            filename=binary.filename,
        )
        self._save()
        logger.debug(
            f"Label assigned (filename={binary.filename} category={category} "
            f"confidence={confidence})"
        )
        self._index += 1
        return SessionState.PROMPTING

    def _await_review_exit(self) -> SessionState:
        if self._read("Press Enter to continue labeling...") is None:
            return SessionState.DONE
        return SessionState.PROMPTING

    def _read(self, prompt: str) -> str | None:
        """Read one answer; ``None`` means the reviewer left the session."""
        try:
            return self._read_input(prompt).strip().lower()
        except (EOFError, KeyboardInterrupt):
            logger.info("Input closed; saving and leaving labeling session")
            return None

    def _console_input(self, prompt: str) -> str:
        return self._console.input(Text(prompt))

    def _save(self) -> None:
        self._store.save(
            self._labels, self._label_path, total_binaries=len(self._binaries)
        )

    def _labeled_count(self) -> int:
        return sum(1 for b in self._binaries if b.content_hash in self._labels)

    def _render_binary(self, binary: FeatureRecord) -> None:
        console = self._console
        console.rule(f"BINARY {self._index + 1}/{len(self._binaries)}")
        console.print(f"Name:         {binary.filename}", markup=False)
        console.print(f"Size:         {round(binary.size_bytes / 1024)}KB")
        console.print(f"Architecture: {binary.architecture}")
        current = self._labels.get(binary.content_hash)
        if current is not None:
            console.print(
                f"CURRENT LABEL: {current.intent_category} [{current.confidence}]",
                markup=False,
            )
            if current.notes:
                console.print(f"Notes: {current.notes}", markup=False)
        console.print(f"SUGGESTED:    {suggest_label(binary)}")

        console.rule("IMPORTED SYMBOLS")
        symbols = [s for s in binary.imported_symbols if not s.startswith("__")]
        grid = Table.grid(padding=(0, 2))
        for _ in range(4):
            grid.add_column()
        shown = symbols[:MAX_DISPLAY_SYMBOLS]
        for start in range(0, len(shown), 4):
            row = shown[start : start + 4]
            grid.add_row(*(Text(symbol) for symbol in row), *[""] * (4 - len(row)))
        console.print(grid)

        console.rule(f"STRINGS (Top {MAX_DISPLAY_STRINGS})")
        for text in binary.extracted_strings[:MAX_DISPLAY_STRINGS]:
            if len(text) > MAX_STRING_DISPLAY_LENGTH:
                text = text[: MAX_STRING_DISPLAY_LENGTH - 3] + "..."
            console.print(f"  {text}", markup=False, highlight=False)

        console.rule("LABEL OPTIONS")
        for key, category in INTENT_CATEGORIES.items():
            console.print(
                f"  {key}) {category:<18}- {INTENT_DESCRIPTIONS[category]}",
                markup=False,
            )
        console.print("  s) skip   b) back   q) quit & save   r) review all", markup=False)

    def _render_review(self) -> None:
        console = self._console
        console.rule("REVIEW ALL LABELS")
        by_category: dict[str, list[str]] = {}
        for entry in self._labels.values():
            by_category.setdefault(entry.intent_category, []).append(
                entry.filename or entry.content_hash
            )
        table = Table(show_header=True)
        table.add_column("category")
        table.add_column("count", justify="right")
        table.add_column("files", overflow="fold")
        for category, names in by_category.items():
            table.add_row(category, str(len(names)), Text(", ".join(names)))
        console.print(table)
        labeled = self._labeled_count()
        console.print(f"Total labeled: {labeled}/{len(self._binaries)}")
        console.print(f"Unlabeled: {len(self._binaries) - labeled}")
