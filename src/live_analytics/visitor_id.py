"""
Visitor ID encoding.

Visitor IDs are stored as raw bytes in log tables and exchanged as
lowercase hex strings (16 hex characters for an 8 byte ID).
"""
import logging
import re

logger = logging.getLogger(__name__)

_HEX_RE = re.compile(r"^(?:[0-9a-fA-F]{2})+$")


def decode_visitor_id(value: str | None) -> bytes | None:
    """Decode a hex visitor ID to bytes.

    Malformed input is tolerated: it decodes to None so callers can skip
    the visitor filter instead of failing the whole query.
    """
    if not value:
        return None
    if not _HEX_RE.match(value):
        logger.debug(f"Ignoring malformed visitor id {value!r}")
        return None
    return bytes.fromhex(value)


def encode_visitor_id(raw: bytes | None) -> str:
    """Encode raw visitor ID bytes as lowercase hex ("" for no ID)."""
    if not raw:
        return ""
    return bytes(raw).hex()
