"""Block context sources.

Registries never read a blockchain directly. They ask a ``BlockSource`` for
the current height and timestamp, which stamps events, records request
creation heights and feeds token derivation.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Optional, Protocol


DEFAULT_BLOCK_TIME_SECONDS = 12.0


@dataclass(frozen=True)
class BlockContext:
    number: int
    timestamp: int


class BlockSource(Protocol):
    def current_block(self) -> BlockContext: ...


class ManualChain:
    """Height advanced explicitly by the caller. Used by tests and the demo."""

    def __init__(
        self,
        height: int = 1,
        timestamp: Optional[int] = None,
        block_time_seconds: int = 12,
    ):
        if height < 0:
            raise ValueError("height must be >= 0")
        self._height = height
        self._timestamp = int(time.time()) if timestamp is None else int(timestamp)
        self._block_time = int(block_time_seconds)
        self._lock = threading.Lock()

    def current_block(self) -> BlockContext:
        with self._lock:
            return BlockContext(number=self._height, timestamp=self._timestamp)

    def mine(self, blocks: int = 1) -> BlockContext:
        if blocks < 0:
            raise ValueError("blocks must be >= 0")
        with self._lock:
            self._height += blocks
            self._timestamp += blocks * self._block_time
            return BlockContext(number=self._height, timestamp=self._timestamp)

    def advance_to(self, height: int) -> BlockContext:
        current = self.current_block().number
        if height < current:
            raise ValueError(f"Cannot rewind chain from {current} to {height}")
        return self.mine(height - current)


class WallClockChain:
    """Height derived from wall-clock time, so separate processes agree on it."""

    def __init__(
        self,
        block_time_seconds: float = DEFAULT_BLOCK_TIME_SECONDS,
        genesis_timestamp: int = 0,
    ):
        if block_time_seconds <= 0:
            raise ValueError("block_time_seconds must be > 0")
        self.block_time_seconds = block_time_seconds
        self.genesis_timestamp = genesis_timestamp

    def current_block(self) -> BlockContext:
        now = int(time.time())
        number = int(max(0, now - self.genesis_timestamp) // self.block_time_seconds)
        return BlockContext(number=number, timestamp=now)
