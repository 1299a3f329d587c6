# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""RFC 6455 single-frame codec for the DevTools WebSocket.

Pure functions, no socket. The transport hands ``decode_frame`` a
``read(n)`` callable; tests hand it a ``BytesIO.read``.

Only what CDP traffic needs: one final text frame per message, client
frames masked (§5.3), 7/16/64-bit payload lengths (§5.2). No fragmentation,
no ping/pong/close handling.
"""

from __future__ import annotations

import os
import struct
from collections.abc import Callable

OPCODE_TEXT = 0x1
FIN_BIT = 0x80
MASK_BIT = 0x80

MAX_INLINE_LENGTH = 125
MAX_16BIT_LENGTH = 0xFFFF
LENGTH_16BIT = 126
LENGTH_64BIT = 127

Reader = Callable[[int], bytes]


def apply_mask(data: bytes, mask: bytes) -> bytes:
    """XOR *data* with the repeating 4-byte *mask* (masking and unmasking are the same)."""
    if not data:
        return b""
    n = len(data)
    key = (mask * (n // 4 + 1))[:n]
    return (int.from_bytes(data, "big") ^ int.from_bytes(key, "big")).to_bytes(n, "big")


def length_header(length: int, *, masked: bool) -> bytes:
    """Second header byte plus the extended payload length, if any."""
    mask_flag = MASK_BIT if masked else 0
    if length <= MAX_INLINE_LENGTH:
        return bytes([mask_flag | length])
    if length <= MAX_16BIT_LENGTH:
        return bytes([mask_flag | LENGTH_16BIT]) + struct.pack("!H", length)
    return bytes([mask_flag | LENGTH_64BIT]) + struct.pack("!Q", length)


def encode_text_frame(payload: bytes, *, mask: bytes | None = None) -> bytes:
    """Encode *payload* as one masked, final text frame.

    A fresh random mask is drawn per frame unless one is passed in (tests).
    """
    if mask is None:
        mask = os.urandom(4)
    elif len(mask) != 4:
        raise ValueError("WebSocket mask must be exactly 4 bytes")
    head = bytes([FIN_BIT | OPCODE_TEXT]) + length_header(len(payload), masked=True)
    return head + mask + apply_mask(payload, mask)


def _read_exact(read: Reader, n: int) -> bytes | None:
    """Read exactly *n* bytes, or None on a short/closed/timed-out read."""
    chunks: list[bytes] = []
    remaining = n
    while remaining > 0:
        chunk = read(remaining)
        if not chunk:
            return None
        chunks.append(chunk)
        remaining -= len(chunk)
    return b"".join(chunks)


def decode_frame(read: Reader) -> bytes:
    """Read one frame through *read* and return its payload.

    Returns ``b""`` when the header or payload cannot be read completely;
    callers treat that as "no message yet" and poll again until their own
    deadline. Masked frames are unmasked.
    """
    header = _read_exact(read, 2)
    if header is None:
        return b""

    masked = bool(header[1] & MASK_BIT)
    length = header[1] & 0x7F

    if length == LENGTH_16BIT:
        ext = _read_exact(read, 2)
        if ext is None:
            return b""
        (length,) = struct.unpack("!H", ext)
    elif length == LENGTH_64BIT:
        ext = _read_exact(read, 8)
        if ext is None:
            return b""
        (length,) = struct.unpack("!Q", ext)

    mask = b""
    if masked:
        mask = _read_exact(read, 4)
        if mask is None:
            return b""

    if length == 0:
        return b""

    payload = _read_exact(read, length)
    if payload is None:
        return b""
    return apply_mask(payload, mask) if masked else payload
