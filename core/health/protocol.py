"""Wire format of the socket heartbeat.

A prober sends one arbitrary byte; the server answers with the heartbeat as an
unsigned 64-bit count of seconds since the epoch. The byte order is pinned to
little-endian so prober and server may run on different architectures.
"""

from __future__ import annotations

from enum import StrEnum

from core.health.errors import MalformedReplyError

PING = b"\x01"
REPLY_SIZE = 8
BYTE_ORDER = "little"

_MAX_SECONDS = 2**64 - 1


class ReadOutcome(StrEnum):
    """Result of reading the query byte from an accepted connection."""

    CLOSED = "closed"
    NOT_READY = "not_ready"
    PING = "ping"


def encode_timestamp(timestamp: float) -> bytes:
    seconds = min(max(int(timestamp), 0), _MAX_SECONDS)
    return seconds.to_bytes(REPLY_SIZE, BYTE_ORDER, signed=False)


def decode_timestamp(data: bytes) -> int:
    if len(data) != REPLY_SIZE:
        raise MalformedReplyError(
            f"expected {REPLY_SIZE} byte heartbeat reply, got {len(data)}"
        )
    return int.from_bytes(data, BYTE_ORDER, signed=False)
