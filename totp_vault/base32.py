"""
Base32 decoding for TOTP seed material (RFC 4648 alphabet).

Seeds come from untrusted card data, so malformed input is an expected
condition: ``decode`` returns ``None`` instead of raising.
"""
import logging
from typing import Optional

logger = logging.getLogger("totp_vault")

ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZ234567"
PADDING = "="

_LOOKUP = {char: index for index, char in enumerate(ALPHABET)}


def decode(text: str) -> Optional[bytes]:
    """Decode Base32 text into raw bytes.

    Decoding is case-insensitive and trailing padding is ignored. Bits left
    over after the last full byte are discarded.

    Args:
        text: Base32 encoded string.

    Returns:
        Decoded bytes (``b""`` for empty input), or None when ``text``
        contains a character outside the Base32 alphabet.
    """
    if not isinstance(text, str):
        return None
    if not text.isascii():
        # str.upper() would fold some non-ASCII letters onto the alphabet
        logger.debug("Base32 decode rejected non-ASCII input")
        return None
    buffer = 0
    bits_left = 0
    result = bytearray()
    for char in text.upper().rstrip(PADDING):
        value = _LOOKUP.get(char)
        if value is None:
            # never log the character itself, it is part of a secret
            logger.debug("Base32 decode rejected a character outside the alphabet")
            return None
        buffer = ((buffer << 5) | value) & 0xFFFF
        bits_left += 5
        if bits_left >= 8:
            result.append((buffer >> (bits_left - 8)) & 0xFF)
            bits_left -= 8
    return bytes(result)
