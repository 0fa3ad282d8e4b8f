"""Compact, roughly time-ordered record identifiers."""

from __future__ import annotations

import random
import struct
import threading
import time

# 2000-01-01T00:00:00Z as a Unix timestamp.
EPOCH_2000 = 946684800


class IdGenerator:
    """Generates 6-byte identifiers.

    Layout (big-endian): 4 bytes of seconds since 2000-01-01 UTC, 1 byte of a
    rolling per-generator counter, 1 random byte.
    """

    def __init__(self) -> None:
        self._counter = 0
        self._lock = threading.Lock()

    @classmethod
    def create(cls) -> IdGenerator:
        return cls()

    def generate(self) -> bytes:
        timestamp = int(time.time()) - EPOCH_2000
        with self._lock:
            counter = self._counter
            self._counter += 1
        return struct.pack(">IBB", timestamp, counter % 256, random.randrange(256))

    def generate_hex(self) -> str:
        return self.generate().hex()
