"""
Centralized lexical rules for the topic of interest.

The relevance selector and the summarizer prompt both describe "housing";
keeping the vocabulary in one place stops them drifting apart.
"""

from __future__ import annotations

import re


TOPIC_NAME = "housing"

# Matched as lowercase substrings. Short abbreviations (ADU, LIHTC) are left
# out on purpose: "adu" matches "graduate", "schedule", ...
HOUSING_KEYWORDS = frozenset({
    "housing",
    "affordable",
    "homeless",
    "unhoused",
    "shelter",
    "residential",
    "dwelling",
    "apartment",
    "condominium",
    "townhome",
    "tenant",
    "landlord",
    "eviction",
    "rental",
    "zoning",
    "rezon",
    "subdivision",
    "short-term rental",
    "workforce housing",
    "mixed-use",
})

# Topics named in the summarizer instructions.
PROMPT_TOPICS = (
    "housing",
    "affordable housing",
    "homelessness",
    "zoning for residential areas",
    "property development for residential purposes",
)

# Exact phrase the model must return when nothing is on topic.
NO_TOPIC_SENTINEL = "No housing topics found."

# Prefix used for summaries that failed at the provider.
ERROR_MARKER = "Error:"


def normalize_for_match(value: object) -> str:
    if isinstance(value, bytes):
        value = value.decode("utf-8", errors="ignore")
    if not isinstance(value, str):
        return ""
    return re.sub(r"\s+", " ", value).strip().lower()


def mentions_topic(text: str, keywords=HOUSING_KEYWORDS) -> bool:
    normalized = normalize_for_match(text)
    if not normalized:
        return False
    return any(keyword in normalized for keyword in keywords)


def is_no_topic_sentinel(summary: str) -> bool:
    return normalize_for_match(summary) == NO_TOPIC_SENTINEL.lower()
