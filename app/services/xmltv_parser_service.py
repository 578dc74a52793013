"""
XMLTV fragment extraction

Scans raw XMLTV text for structurally complete <channel> and <programme>
elements and keeps each one verbatim. Fragments are located by a tokenizer
that understands tags, quoted attribute values, comments, CDATA sections,
processing instructions and DOCTYPE declarations. Attributes are then read
with a recovering lxml parser. Local malformation skips the affected
fragment; it never aborts the document.
"""
import logging
import re
from collections.abc import Iterable, Iterator

from lxml import etree  # type: ignore

from app.services.fetch_types import ChannelRecord, ProgrammeRecord

logger = logging.getLogger(__name__)

CHANNEL_TAG = "channel"
PROGRAMME_TAG = "programme"

_TOKEN_RE = re.compile(
    r"""
      (?P<comment><!--.*?-->)
    | (?P<cdata><!\[CDATA\[.*?\]\]>)
    | (?P<pi><\?.*?\?>)
    | (?P<doctype><!DOCTYPE(?:[^\[>]|\[.*?\])*>)
    | </(?P<end>[^\s<>/]+)\s*>
    | <(?P<start>[A-Za-z_:][^\s<>/]*)
       (?:[^<>"']|"[^"]*"|'[^']*')*?
       (?P<selfclose>/?)>
    """,
    re.DOTALL | re.VERBOSE,
)


def new_fragment_parser() -> etree.XMLParser:
    """Create a lenient parser for single fragments (not shareable across threads)."""
    return etree.XMLParser(
        recover=True,
        resolve_entities=False,
        no_network=True,
        remove_comments=True,
    )


def iter_fragments(
    text: str,
    tags: Iterable[str] = (CHANNEL_TAG, PROGRAMME_TAG)
) -> Iterator[tuple[str, str]]:
    """
    Yield ``(tag, fragment)`` for every complete element named in ``tags``

    An element counts as complete when its start tag and matching end tag
    (or a self-closing start tag) are both present. An element interrupted
    by another tracked start tag or by a mismatched end tag is skipped, and
    an element still open at the end of the text is dropped.
    """
    tracked = frozenset(tags)
    current: str | None = None
    fragment_start = 0
    depth = 0
    skipped = 0

    for match in _TOKEN_RE.finditer(text):
        start_tag = match.group("start")
        end_tag = match.group("end")

        if start_tag is not None:
            self_closing = bool(match.group("selfclose"))
            if start_tag in tracked:
                if current is not None:
                    skipped += 1
                if self_closing:
                    current = None
                    yield start_tag, match.group(0)
                else:
                    current = start_tag
                    fragment_start = match.start()
                    depth = 0
            elif current is not None and not self_closing:
                depth += 1

        elif end_tag is not None and current is not None:
            if depth > 0:
                depth -= 1
            elif end_tag == current:
                yield current, text[fragment_start:match.end()]
                current = None
            else:
                skipped += 1
                current = None

    if current is not None:
        skipped += 1

    if skipped:
        logger.debug("Skipped %s incomplete fragment(s)", skipped)


def parse_channel_fragment(fragment: str, parser: etree.XMLParser) -> ChannelRecord | None:
    """Build a ChannelRecord, or None if the fragment has no usable id."""
    element = _parse_fragment(fragment, parser)
    if element is None or element.tag != CHANNEL_TAG:
        return None

    xmltv_id = (element.get("id") or "").strip()
    if not xmltv_id:
        logger.debug("Skipping channel with missing ID attribute")
        return None

    return ChannelRecord(xmltv_id=xmltv_id, fragment=fragment)


def parse_programme_fragment(fragment: str, parser: etree.XMLParser) -> ProgrammeRecord | None:
    """Build a ProgrammeRecord, or None if channel or start is missing."""
    element = _parse_fragment(fragment, parser)
    if element is None or element.tag != PROGRAMME_TAG:
        return None

    channel_id = element.get("channel")
    start_str = element.get("start")

    # Skip if missing required fields
    if not channel_id or not start_str:
        logger.debug("Skipping programme without channel/start attributes")
        return None

    return ProgrammeRecord(channel=channel_id, start=start_str, fragment=fragment)


def extract_records(text: str) -> tuple[list[ChannelRecord], list[ProgrammeRecord]]:
    """
    Extract channel and programme records from one XMLTV document

    Args:
        text: Decoded document text

    Returns:
        Tuple of (channels, programmes), each in document order
    """
    parser = new_fragment_parser()
    channels: list[ChannelRecord] = []
    programmes: list[ProgrammeRecord] = []
    discarded = 0

    for tag, fragment in iter_fragments(text):
        if tag == CHANNEL_TAG:
            channel = parse_channel_fragment(fragment, parser)
            if channel is None:
                discarded += 1
            else:
                channels.append(channel)
        else:
            programme = parse_programme_fragment(fragment, parser)
            if programme is None:
                discarded += 1
            else:
                programmes.append(programme)

    if discarded:
        logger.debug("Discarded %s fragment(s) without required attributes", discarded)

    return channels, programmes


def _parse_fragment(fragment: str, parser: etree.XMLParser) -> etree._Element | None:
    try:
        return etree.fromstring(fragment, parser)
    except (etree.XMLSyntaxError, ValueError) as e:
        logger.debug(f"Unparseable fragment: {e}")
        return None
