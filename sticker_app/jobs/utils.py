"""
Job Utilities

Small helpers shared by the job manager, the runner and storage.
"""

import json
from typing import Any, Iterable, List, Optional


def chunk_list(lst: List[Any], chunk_size: int) -> List[List[Any]]:
    """Split a list into chunks."""
    if chunk_size <= 0:
        raise ValueError("chunk_size must be positive")
    return [lst[i:i + chunk_size] for i in range(0, len(lst), chunk_size)]


def normalize_subjects(raw: Any) -> List[str]:
    """
    Turn a stored subject list into clean subject strings.

    Non-list values yield no subjects; entries are stringified and trimmed,
    and blank entries are dropped.
    """
    if not isinstance(raw, list):
        return []
    subjects = []
    for value in raw:
        text = "" if value is None else str(value).strip()
        if text:
            subjects.append(text)
    return subjects


def truncate(text: str, limit: int = 800) -> str:
    if len(text) <= limit:
        return text
    return text[:limit]


def error_message(exc: BaseException) -> str:
    """Message stored on rows for a failed attempt."""
    return str(exc) or type(exc).__name__


def parse_json_payload(value: Any) -> Any:
    """Decode a JSON string payload; other values pass through unchanged."""
    if isinstance(value, (str, bytes)):
        try:
            return json.loads(value)
        except ValueError:
            return value
    return value


def first_row(data: Optional[Iterable[Any]]) -> Optional[Any]:
    rows = list(data or [])
    return rows[0] if rows else None
