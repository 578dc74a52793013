"""
EPG Merge Service

Combines decoded source documents into one deduplicated feed and renders
the XMLTV envelope around the retained fragments.
"""
import logging
from collections.abc import Sequence
from xml.sax.saxutils import quoteattr

from app.services.fetch_types import (
    DEFAULT_GENERATOR_NAME,
    ChannelRecord,
    MergedFeed,
    ProgrammeRecord,
)
from app.services.xmltv_parser_service import extract_records
from app.utils.data_merging import merge_channels, merge_programmes
from app.utils.logging_helpers import log_merge_summary


logger = logging.getLogger(__name__)

XML_HEADER = '<?xml version="1.0" encoding="UTF-8"?>\n'


def merge_documents(
    documents: Sequence[str | None],
    generator_name: str = DEFAULT_GENERATOR_NAME
) -> MergedFeed:
    """
    Merge documents in the order supplied

    Absent documents (None) contribute nothing. Within a document records
    keep document order; duplicates are resolved first-seen-wins.

    Args:
        documents: Decoded documents, in source configuration order
        generator_name: Value for the envelope's generator-info-name attribute

    Returns:
        MergedFeed with all retained channels and programmes
    """
    channels: dict[str, ChannelRecord] = {}
    programmes: dict[tuple[str, str], ProgrammeRecord] = {}

    for position, document in enumerate(documents, start=1):
        if document is None:
            continue

        found_channels, found_programmes = extract_records(document)
        _, new_channels = merge_channels(channels, found_channels)
        _, new_programmes = merge_programmes(programmes, found_programmes)
        logger.info(
            "Document %s: %s channels (%s new), %s programmes (%s new)",
            position,
            len(found_channels),
            new_channels,
            len(found_programmes),
            new_programmes,
        )

    log_merge_summary(logger, len(channels), len(programmes))

    return MergedFeed(
        channels=tuple(channels.values()),
        programmes=tuple(programmes.values()),
        generator_name=generator_name,
    )


def render_feed(feed: MergedFeed) -> str:
    """Render the feed as an XMLTV document, fragments emitted verbatim."""
    parts = [XML_HEADER, f"<tv generator-info-name={quoteattr(feed.generator_name)}>\n"]
    parts.extend(f"{channel.fragment}\n" for channel in feed.channels)
    parts.extend(f"{programme.fragment}\n" for programme in feed.programmes)
    parts.append("</tv>")
    return "".join(parts)
