#!/usr/bin/env python3
"""
save_envelope.py - Text envelope around raw save records

A save string looks like ``$NNs<data>$e`` where ``NN`` is a two digit
version and ``<data>`` is base64 of the zlib-deflated record, XORed with a
fixed repeating key before compression.

    raw = unwrap('$00seJwrLi0GAAK5AVw=$e')     # b'\\x07\\x1d\\x16'
    text = wrap(raw, version=0)                # '$00seJwrLi0GAAK5AVw=$e'

Records written by the game carry a big-endian CRC32 of the record as a
4 byte trailer inside the envelope; see append_checksum/split_checksum.
"""

import base64
import binascii
import logging
import re
import struct
import zlib
from itertools import cycle
from typing import Tuple

logger = logging.getLogger(__name__)

CIPHER_KEY = b"therealmisalie"
COMPRESSION_LEVEL = 6
SAVE_PATTERN = re.compile(r'\$([0-9]{2})s(.*)\$e', re.DOTALL)

_CRC = struct.Struct('>I')


class EnvelopeError(Exception):
    """Base class for save string problems."""


class InvalidSaveStringError(EnvelopeError):
    def __init__(self, message: str = "save string not in a known format"):
        super().__init__(message)


class InvalidBase64Error(EnvelopeError):
    def __init__(self, message: str = "save data not valid base64"):
        super().__init__(message)


class CompressionError(EnvelopeError):
    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"save data compression error: {reason}")


def apply_cipher(data: bytes) -> bytes:
    """XOR data with the repeating key; applying it twice is a no-op."""
    return bytes(b ^ k for b, k in zip(data, cycle(CIPHER_KEY)))


def parse_envelope(save: str) -> Tuple[int, bytes]:
    """
    Decode a save string.

    Returns: (version, raw record bytes)
    """
    match = SAVE_PATTERN.fullmatch(save.strip())
    if not match:
        raise InvalidSaveStringError()
    version, data = int(match.group(1)), match.group(2)

    try:
        compressed = base64.b64decode(data, validate=True)
    except (binascii.Error, ValueError):
        raise InvalidBase64Error() from None

    try:
        ciphered = zlib.decompress(compressed)
    except zlib.error as e:
        raise CompressionError(str(e)) from e

    logger.debug("Save envelope v%02d: %d compressed, %d raw bytes",
                 version, len(compressed), len(ciphered))
    return version, apply_cipher(ciphered)


def unwrap(save: str) -> bytes:
    """Decode a save string to raw record bytes."""
    return parse_envelope(save)[1]


def wrap(raw: bytes, version: int = 0) -> str:
    """Encode raw record bytes as a save string."""
    if not 0 <= version <= 99:
        raise ValueError(f"save version must be 0-99, got {version}")
    try:
        compressed = zlib.compress(apply_cipher(raw), COMPRESSION_LEVEL)
    except zlib.error as e:
        raise CompressionError(str(e)) from e
    data = base64.b64encode(compressed).decode('ascii')
    return f"${version:02d}s{data}$e"


def append_checksum(raw: bytes) -> bytes:
    """Append the big-endian CRC32 trailer."""
    return raw + _CRC.pack(zlib.crc32(raw) & 0xFFFFFFFF)


def split_checksum(raw: bytes) -> Tuple[bytes, bool]:
    """
    Split off the CRC32 trailer.

    Returns: (record bytes, whether the trailer matches)
    """
    if len(raw) < _CRC.size:
        return raw, False
    payload, trailer = raw[:-_CRC.size], raw[-_CRC.size:]
    valid = _CRC.unpack(trailer)[0] == zlib.crc32(payload) & 0xFFFFFFFF
    if not valid:
        logger.warning("Save checksum mismatch")
    return payload, valid
