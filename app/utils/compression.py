"""
Compression and text decoding utilities

Detects gzip-compressed EPG payloads from several independent signals and
turns raw response bytes into text.
"""
import codecs
import gzip
import logging
import re
import zlib
from urllib.parse import urlsplit


logger = logging.getLogger(__name__)

GZIP_MAGIC = b"\x1f\x8b"
GZIP_MEDIA_TYPES = ("application/gzip", "application/x-gzip")

_XML_DECLARATION_RE = re.compile(
    rb"""^<\?xml[^>]*?\bencoding\s*=\s*["']([A-Za-z0-9._\-]+)["']"""
)


class DecompressionError(ValueError):
    """Raised when a payload flagged as compressed cannot be decompressed."""


def is_gzip_payload(
    url: str,
    content_encoding: str | None = None,
    content_type: str | None = None,
    data: bytes | None = None,
) -> bool:
    """
    Decide whether a response body is gzip-compressed.

    Upstream servers are inconsistent about which signal they set, so any one
    of the URL suffix, Content-Encoding, Content-Type or the gzip magic bytes
    is enough.

    Args:
        url: Source URL (only the path is inspected)
        content_encoding: Value of the Content-Encoding response header
        content_type: Value of the Content-Type response header
        data: Response body

    Returns:
        True if any compression signal is present
    """
    path = urlsplit(url).path.lower()
    if path.endswith(".gz"):
        return True

    if content_encoding and "gzip" in content_encoding.lower():
        return True

    if content_type:
        media_type = content_type.split(";", 1)[0].strip().lower()
        if media_type in GZIP_MEDIA_TYPES:
            return True

    return bool(data) and data[:2] == GZIP_MAGIC


def decompress_payload(data: bytes) -> bytes:
    """
    Reverse gzip (or raw zlib) compression of a payload.

    Bodies that cannot be inflated but already look like markup are returned
    unchanged: the HTTP client has already undone a gzip Content-Encoding.

    Raises:
        DecompressionError: If the payload is corrupt
    """
    if data[:2] == GZIP_MAGIC:
        try:
            return gzip.decompress(data)
        except (OSError, EOFError, zlib.error) as exc:
            raise DecompressionError(f"Corrupt gzip stream: {exc}") from exc

    try:
        return zlib.decompress(data)
    except zlib.error as exc:
        if _looks_like_markup(data):
            logger.debug("Payload already decoded in transit, using it as-is")
            return data
        raise DecompressionError(f"Cannot inflate payload: {exc}") from exc


def decode_document(data: bytes) -> str:
    """
    Decode XML bytes to text.

    Honours a byte order mark first, then the encoding named in the XML
    declaration, and falls back to UTF-8 with replacement characters.
    """
    for bom, encoding in (
        (codecs.BOM_UTF8, "utf-8"),
        (codecs.BOM_UTF16_LE, "utf-16-le"),
        (codecs.BOM_UTF16_BE, "utf-16-be"),
    ):
        if data.startswith(bom):
            return data[len(bom):].decode(encoding, errors="replace")

    match = _XML_DECLARATION_RE.match(data[:256])
    if match:
        declared = match.group(1).decode("ascii")
        # Unknown names and bytes-to-bytes codecs (zip, base64) both raise LookupError
        try:
            return data.decode(declared, errors="replace")
        except LookupError:
            logger.debug("Declared encoding %s is not a text encoding, falling back to UTF-8", declared)

    return data.decode("utf-8", errors="replace")


def gzip_text(text: str) -> bytes:
    """Encode text as UTF-8 and gzip it."""
    return gzip.compress(text.encode("utf-8"))


def _looks_like_markup(data: bytes) -> bool:
    head = data[:64].lstrip()
    if head.startswith(codecs.BOM_UTF8):
        head = head[len(codecs.BOM_UTF8):]
    return head.startswith(b"<")
