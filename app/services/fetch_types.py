"""
Shared dataclasses used across the EPG merge pipeline.
"""
from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import Literal


class OutputFormat(str, enum.Enum):
    """Encoding of the merged feed returned to clients."""
    PLAIN = "xml"
    GZIP = "gz"


PLAIN_CONTENT_TYPE = "application/xml; charset=utf-8"
GZIP_CONTENT_TYPE = "application/gzip"
DEFAULT_GENERATOR_NAME = "merged-by-epg-merge-service"


@dataclass(frozen=True, slots=True)
class ChannelRecord:
    """A verbatim <channel> fragment and its trimmed identifier."""
    xmltv_id: str
    fragment: str


@dataclass(frozen=True, slots=True)
class ProgrammeRecord:
    """A verbatim <programme> fragment keyed by channel and start token."""
    channel: str
    start: str
    fragment: str

    @property
    def key(self) -> tuple[str, str]:
        """Uniqueness key. The start token is opaque: two spellings of one instant differ."""
        return (self.channel, self.start)


@dataclass(frozen=True, slots=True)
class MergedFeed:
    """Deduplicated channels followed by deduplicated programmes."""
    channels: tuple[ChannelRecord, ...] = ()
    programmes: tuple[ProgrammeRecord, ...] = ()
    generator_name: str = DEFAULT_GENERATOR_NAME


@dataclass(frozen=True, slots=True)
class CacheKey:
    output_format: OutputFormat
    ttl_seconds: int


@dataclass(frozen=True, slots=True)
class CacheEntry:
    """Finished response payload stored in the feed cache."""
    payload: bytes
    content_type: str
    content_encoding: str | None
    created_at: float
    ttl_seconds: int

    def age(self, now: float) -> float:
        return max(0.0, now - self.created_at)

    def is_fresh(self, now: float) -> bool:
        return self.age(now) < self.ttl_seconds


@dataclass(slots=True)
class SourceSummary:
    """Outcome of fetching one configured source during a pipeline run."""
    index: int
    source_url: str
    sanitized_url: str
    started_at: datetime
    completed_at: datetime
    status: Literal["success", "failed"]
    compressed: bool = False
    bytes_received: int = 0
    error: str | None = None
    document: str | None = field(default=None, repr=False)

    @property
    def duration_seconds(self) -> float:
        return max(0.0, (self.completed_at - self.started_at).total_seconds())

    def to_dict(self) -> dict:
        payload = {
            "source_index": self.index,
            "sanitized_url": self.sanitized_url,
            "status": self.status,
            "compressed": self.compressed,
            "bytes_received": self.bytes_received,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat(),
            "duration_seconds": self.duration_seconds,
        }
        if self.error:
            payload["error"] = self.error
        return payload


__all__ = [
    "OutputFormat",
    "PLAIN_CONTENT_TYPE",
    "GZIP_CONTENT_TYPE",
    "DEFAULT_GENERATOR_NAME",
    "ChannelRecord",
    "ProgrammeRecord",
    "MergedFeed",
    "CacheKey",
    "CacheEntry",
    "SourceSummary",
]
