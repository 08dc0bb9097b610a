"""
Data carried between pipeline stages.

Nothing here is persisted: every run re-discovers, re-downloads and
re-summarizes. One CandidateLink yields at most one of each later object.
"""

from __future__ import annotations

import datetime
import enum
from dataclasses import dataclass, field
from typing import Tuple


class LinkKind(enum.Enum):
    DIRECT_BINARY = "direct_binary"
    GATED_SHARE = "gated_share"


@dataclass(frozen=True)
class CandidateLink:
    source_date: datetime.date
    raw_url: str
    link_kind: LinkKind = LinkKind.DIRECT_BINARY


@dataclass(frozen=True)
class ResolvedDocument:
    content: bytes = field(repr=False)
    content_type: str
    url: str = ""


@dataclass(frozen=True)
class RelevantExcerpt:
    paragraphs: Tuple[str, ...] = ()

    @property
    def text(self) -> str:
        return "\n\n".join(self.paragraphs)

    @property
    def total_chars(self) -> int:
        return sum(len(p) for p in self.paragraphs)

    def __bool__(self) -> bool:
        return bool(self.paragraphs)


@dataclass(frozen=True)
class MeetingSummary:
    date: str
    summary: str
    original_url: str

    def to_dict(self) -> dict:
        # Key names are the public JSON contract consumed by the frontend.
        return {"date": self.date, "summary": self.summary, "originalUrl": self.original_url}
