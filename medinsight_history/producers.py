"""
Helpers for the workflow modules that record history.

The analysis steps themselves live outside this package. These
helpers keep the labels and summaries they write consistent, so
the history view can group and display them.
"""

import enum
from typing import Any, Mapping, Sequence

HISTORY_SUMMARY_MAX_LENGTH = 150


class WorkflowModule(str, enum.Enum):
    """Module labels used by the built-in analysis steps."""
    IMAGE_ANALYSIS = "Medical Image Analysis"
    PDF_EXTRACTION = "PDF Data Extraction"
    NOTE_SUMMARIZATION = "Clinical Text Understanding"
    DIAGNOSIS = "Intelligent Diagnosis"


def truncate_for_history(
    text: str | None, max_length: int = HISTORY_SUMMARY_MAX_LENGTH
) -> str | None:
    """Shorten free text for an input/output summary, marking the cut with '...'."""
    if text is None or len(text) <= max_length:
        return text
    return text[:max_length] + "..."


def format_file_size(size: int) -> str:
    """Human readable file size for event details, e.g. '1.5 MB'."""
    if size < 1024:
        return f"{size} B"
    value = size / 1024
    for unit in ("KB", "MB"):
        if value < 1024:
            return f"{value:.1f} {unit}"
        value /= 1024
    return f"{value:.1f} GB"


def summarize_diagnosis_suggestions(
    suggestions: Sequence[Mapping[str, Any]],
) -> str:
    """
    One-line output summary for a list of diagnosis suggestions.

    Each suggestion carries a code, a description and a confidence
    between 0 and 1; the most confident one is named.
    """
    if not suggestions:
        return "No suggestions were generated."
    main = max(suggestions, key=lambda s: s.get("confidence", 0))
    confidence = round(main.get("confidence", 0) * 100)
    return (
        f"{len(suggestions)} suggestion(s) generated. "
        f"Main: {main.get('description')} ({main.get('code')} - {confidence}%)."
    )
