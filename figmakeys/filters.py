"""Heuristics that drop non-localizable text before key generation."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import List, Sequence

from .structures import FilterResult, FilterStats, TextRecord

EXCLUDE_PATTERNS = {
    "single_char": re.compile(r"^.$", re.DOTALL),
    "numbers_only": re.compile(r"^[\d\s,.]+$"),
    "icon_text": re.compile(r"^[→←↑↓✓✗×+\-=<>]+$"),
    "special_chars_only": re.compile(r"^[!@#$%^&*()_+\-=\[\]{};':\"\\|,.<>/?]+$"),
    "currency_only": re.compile(r"^[$€¥£₹]+$"),
    "emoji_only": re.compile(r"^[\U0001F300-\U0001F9FF]+$"),
    "dots_only": re.compile(r"^[.…]+$"),
    "placeholder": re.compile(r"^(lorem ipsum|placeholder|test|example|xxx|000)", re.IGNORECASE),
    "version": re.compile(r"^v?\d+\.\d+(\.\d+)?$"),
}

EXCLUDE_FRAME_KEYWORDS = (
    "icon",
    "logo",
    "badge",
    "avatar",
    "image",
    "img",
    "decoration",
    "divider",
    "spacer",
    "line",
    "dot",
    "bullet",
    "marker",
)

COMMON_REPETITIVE_TEXT = frozenset({"•", "/", "|", "-", "—", "–", "+", "×"})

ROOT_CONTEXT = "root"


@dataclass
class FilterOptions:
    """Switches and bounds for :func:`filter_text_nodes`."""

    min_length: int = 2
    max_length: int = 500
    exclude_by_content: bool = True
    exclude_by_frame_name: bool = True
    remove_duplicates: bool = True
    context_aware_duplicates: bool = True


def should_exclude_by_content(text: str) -> bool:
    """Check whether the text looks like an icon, number or placeholder."""

    trimmed = text.strip()
    if len(trimmed) < 2:
        return True

    for pattern in EXCLUDE_PATTERNS.values():
        if pattern.search(trimmed):
            return True

    return trimmed in COMMON_REPETITIVE_TEXT


def should_exclude_by_frame_name(frame_path: Sequence[str]) -> bool:
    """Check whether any container on the path names a decorative element."""

    joined = " ".join(frame_path).lower()
    return any(keyword in joined for keyword in EXCLUDE_FRAME_KEYWORDS)


def _context_key(record: TextRecord) -> str:
    depth = len(record.frame_path)
    if depth >= 2:
        context = " > ".join(record.frame_path[-2:])
    elif depth == 1:
        context = record.frame_path[0]
    else:
        context = ROOT_CONTEXT
    return f"{context}::{record.text}"


def remove_duplicate_texts(
    records: Sequence[TextRecord],
    context_aware: bool = True,
) -> List[TextRecord]:
    """Drop repeated texts, keeping the first occurrence.

    With ``context_aware`` the same text is only considered a duplicate when
    it also shares the last two container segments, so "Option 1 > Body" and
    "Option 2 > Body" keep their own copies of an identical label.
    """

    seen: set[str] = set()
    kept: List[TextRecord] = []
    for record in records:
        key = _context_key(record) if context_aware else record.text
        if key in seen:
            continue
        seen.add(key)
        kept.append(record)
    return kept


def filter_text_nodes(
    records: Sequence[TextRecord],
    options: FilterOptions | None = None,
) -> FilterResult:
    """Apply every enabled filter stage and count what each one removed."""

    options = options or FilterOptions()
    result = list(records)
    stats = FilterStats()

    if options.exclude_by_content:
        before = len(result)
        result = [record for record in result if not should_exclude_by_content(record.text)]
        stats.by_content = before - len(result)

    if options.exclude_by_frame_name:
        before = len(result)
        result = [
            record for record in result if not should_exclude_by_frame_name(record.frame_path)
        ]
        stats.by_frame_name = before - len(result)

    before = len(result)
    result = [
        record
        for record in result
        if options.min_length <= len(record.text.strip()) <= options.max_length
    ]
    stats.by_length = before - len(result)

    if options.remove_duplicates:
        before = len(result)
        result = remove_duplicate_texts(result, options.context_aware_duplicates)
        stats.duplicates = before - len(result)

    return FilterResult(filtered=result, excluded=stats)


def get_filtering_summary(stats: FilterStats) -> str:
    """Render filter statistics as a short human-readable sentence."""

    parts: List[str] = []
    if stats.by_content > 0:
        parts.append(f"{stats.by_content} icons/symbols")
    if stats.by_frame_name > 0:
        parts.append(f"{stats.by_frame_name} decorative elements")
    if stats.by_length > 0:
        parts.append(f"{stats.by_length} invalid length")
    if stats.duplicates > 0:
        parts.append(f"{stats.duplicates} exact duplicates")

    if not parts:
        return "No texts filtered out"
    return "Filtered out: " + ", ".join(parts)
