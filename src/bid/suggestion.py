"""Advisory label suggestion from imported symbol names."""

from bid.model import FeatureRecord, IntentCategory

# Keyword lists are matched as substrings of lower-cased symbol names.
SUGGESTION_KEYWORDS: dict[IntentCategory, tuple[str, ...]] = {
    "file_reader": ("read", "fread", "fgets", "getc", "recv"),
    "file_writer": ("write", "fwrite", "fprintf", "fputs", "send"),
    "directory_ops": ("opendir", "readdir", "mkdir", "rmdir", "chdir"),
    "file_manipulator": ("rename", "unlink", "remove", "link", "copy"),
    "archive_tool": ("compress", "uncompress", "inflate", "deflate"),
}


def score_categories(symbols: list[str]) -> dict[IntentCategory, int]:
    """Count, per category, the keywords found in any symbol name."""
    lowered = [symbol.lower() for symbol in symbols]
    return {
        category: sum(
            1 for keyword in keywords if any(keyword in name for name in lowered)
        )
        for category, keywords in SUGGESTION_KEYWORDS.items()
    }


def suggest_label(record: FeatureRecord) -> IntentCategory:
    """Suggest a category for display; never persisted as a label.

    Ties go to the category listed first in ``SUGGESTION_KEYWORDS``.
    """
    scores = score_categories(record.imported_symbols)
    best = max(scores.values(), default=0)
    if best == 0:
        return "unknown"
    return next(category for category, score in scores.items() if score == best)
