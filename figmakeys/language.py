"""Japanese text detection."""

from __future__ import annotations

import re
from typing import List, Sequence

from langdetect import DetectorFactory, LangDetectException, detect

from .structures import TextRecord

# Hiragana, Katakana and CJK unified ideographs.
JAPANESE_PATTERN = re.compile(r"[\u3040-\u309F\u30A0-\u30FF\u4E00-\u9FAF]")
ENGLISH_PATTERN = re.compile(r"^[a-zA-Z0-9\s.,!?;:'\"()\-]+$")

DISPLAYED_CODES = frozenset({"ja", "en"})

DetectorFactory.seed = 0


def is_japanese(text: str) -> bool:
    """Return True when the text contains at least one Japanese character."""

    return bool(JAPANESE_PATTERN.search(text))


def is_english(text: str) -> bool:
    """Return True when the trimmed text is plain ASCII letters and punctuation."""

    return bool(ENGLISH_PATTERN.match(text.strip()))


def filter_japanese_text(records: Sequence[TextRecord]) -> List[TextRecord]:
    """Keep the records whose text qualifies as Japanese UI copy."""

    kept: List[TextRecord] = []
    for record in records:
        text = record.text
        if not text:
            continue
        if is_english(text):
            continue
        if is_japanese(text):
            kept.append(record)
    return kept


def detect_language(text: str) -> str:
    """Best-effort language code for display purposes only."""

    if not text or not text.strip():
        return "unknown"
    try:
        code = detect(text)
    except LangDetectException:
        return "unknown"
    return code if code in DISPLAYED_CODES else "unknown"
