"""
Relevance selection: pick the paragraphs worth sending to the model.

Pure functions of (text, keywords, budget). Same input, same excerpt.
"""

import re
from typing import Iterable, List

from minutes_digest.config import EXCERPT_MAX_CHARS
from minutes_digest.lexicon import HOUSING_KEYWORDS, mentions_topic
from minutes_digest.models import RelevantExcerpt


_BLANK_LINE_RE = re.compile(r"\n\s*\n")


def split_paragraphs(text: str) -> List[str]:
    """
    Split extracted text on blank lines into trimmed, non-empty paragraphs.
    """
    if not text:
        return []
    return [chunk.strip() for chunk in _BLANK_LINE_RE.split(text) if chunk.strip()]


def is_relevant_paragraph(paragraph: str, keywords: Iterable[str] = HOUSING_KEYWORDS) -> bool:
    return mentions_topic(paragraph, keywords)


def select_relevant(
    text: str,
    keywords: Iterable[str] = HOUSING_KEYWORDS,
    max_chars: int = EXCERPT_MAX_CHARS,
) -> RelevantExcerpt:
    """
    Keep matching paragraphs, in order, until the character budget would be
    exceeded.

    The paragraph that would push the total over budget is NOT truncated:
    it is omitted and selection stops there. Later (possibly shorter)
    paragraphs are not considered either, so the excerpt is always a prefix
    of the matching paragraphs.
    """
    keywords = frozenset(k.lower() for k in keywords)
    selected = []
    total = 0
    for paragraph in split_paragraphs(text):
        if not is_relevant_paragraph(paragraph, keywords):
            continue
        if total + len(paragraph) > max_chars:
            break
        selected.append(paragraph)
        total += len(paragraph)
    return RelevantExcerpt(paragraphs=tuple(selected))
