"""
Data merging utilities

This module handles first-seen-wins merging of channels and programmes from
multiple sources.
"""
import logging
from collections.abc import MutableMapping, Sequence

from app.services.fetch_types import ChannelRecord, ProgrammeRecord

logger = logging.getLogger(__name__)


def merge_channels(
    existing_channels: MutableMapping[str, ChannelRecord],
    new_channels: Sequence[ChannelRecord]
) -> tuple[MutableMapping[str, ChannelRecord], int]:
    """
    Merge new channels into existing channel dictionary.

    The first fragment recorded for an identifier wins; later duplicates are
    dropped. Insertion order of the mapping is the retention order.

    Args:
        existing_channels: Dictionary of retained channels (xmltv_id -> ChannelRecord)
        new_channels: Channel records in discovery order

    Returns:
        Tuple of (updated_channels_dict, count_of_new_channels_added)
    """
    new_count = 0

    for channel in new_channels:
        if channel.xmltv_id not in existing_channels:
            existing_channels[channel.xmltv_id] = channel
            new_count += 1
        else:
            logger.debug("Skipping duplicate channel: %s", channel.xmltv_id)

    return existing_channels, new_count


def merge_programmes(
    existing_programmes: MutableMapping[tuple[str, str], ProgrammeRecord],
    new_programmes: Sequence[ProgrammeRecord]
) -> tuple[MutableMapping[tuple[str, str], ProgrammeRecord], int]:
    """
    Merge new programmes into existing programme dictionary.

    Args:
        existing_programmes: Dictionary of retained programmes (programme_key -> ProgrammeRecord)
        new_programmes: Programme records in discovery order

    Returns:
        Tuple of (updated_programmes_dict, count_of_new_programmes_added)
    """
    new_count = 0

    for programme in new_programmes:
        programme_key = programme.key
        if programme_key not in existing_programmes:
            existing_programmes[programme_key] = programme
            new_count += 1
        else:
            logger.debug(
                "Skipping duplicate programme on %s starting %s",
                programme.channel,
                programme.start,
            )

    return existing_programmes, new_count
