"""
Append-only event log for registry state changes.

Each committed mutation emits one event carrying its key identifiers for
off-chain indexers. Events form an HMAC hash chain so a tampered log is
detected on read. The log lives in memory, or in a JSONL file when a path is
given.
"""

from __future__ import annotations

import fcntl
import hashlib
import hmac
import json
import logging
import os
import secrets
import threading
from dataclasses import asdict, dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Optional

from .chain import BlockContext
from .encoding import canonical_json_bytes
from .storage import ensure_private_dir, ensure_private_file

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    AGENT_REGISTERED = "agent_registered"
    AGENT_UPDATED = "agent_updated"
    AUTH_FEEDBACK = "auth_feedback"
    VALIDATION_REQUESTED = "validation_requested"
    VALIDATION_RESPONDED = "validation_responded"


@dataclass
class RegistryEvent:
    """A single emitted event."""

    event_type: str
    registry: str
    block_number: int
    timestamp: int
    args: dict[str, Any] = field(default_factory=dict)
    sequence: int = 0
    prev_hash: Optional[str] = None
    event_hash: Optional[str] = None

    def to_json(self) -> str:
        d = {k: v for k, v in asdict(self).items() if v is not None}
        return json.dumps(d, separators=(",", ":"))


EventHandler = Callable[[RegistryEvent], None]


class EventLog:
    """Tamper-evident append-only event log with synchronous subscribers."""

    def __init__(
        self,
        path: Optional[Path] = None,
        key_path: Optional[Path] = None,
    ):
        self.path = path
        self.key_path = key_path
        self._lock = threading.Lock()
        self._events: list[RegistryEvent] = []
        self._subscriptions: list[tuple[Optional[EventType], EventHandler]] = []
        # (file size, last hash, last sequence) after this instance's last write
        self._tail_cache: Optional[tuple[int, str, int]] = None

        if self.path is not None:
            self.key_path = key_path or self.path.parent / "event_hmac.key"
            ensure_private_dir(self.path.parent)
            ensure_private_dir(self.key_path.parent)
            ensure_private_file(self.path)
            ensure_private_file(self.key_path)

        self._hmac_key = self._load_or_create_key()

    def _load_or_create_key(self) -> bytes:
        env_key = os.getenv("ERC8004_EVENT_HMAC_KEY")
        if env_key:
            return env_key.encode()
        if self.key_path is None:
            return secrets.token_hex(32).encode()
        if self.key_path.exists() and self.key_path.stat().st_size > 0:
            return self.key_path.read_bytes().strip()
        key = secrets.token_hex(32).encode()
        self.key_path.write_bytes(key)
        ensure_private_file(self.key_path)
        return key

    def _event_hash(self, event_payload: dict, prev_hash: str) -> str:
        canonical = canonical_json_bytes(event_payload).decode("utf-8")
        digest = hmac.new(self._hmac_key, f"{prev_hash}|{canonical}".encode(), hashlib.sha256)
        return digest.hexdigest()

    def _tail(self, f) -> tuple[str, int]:
        """Return (last event hash, last sequence) of the locked backing file.

        The scan is skipped while the file size still matches the last write
        made through this instance.
        """
        size = os.fstat(f.fileno()).st_size
        if self._tail_cache is not None and self._tail_cache[0] == size:
            return self._tail_cache[1], self._tail_cache[2]
        return self._scan_tail(f)

    def _scan_tail(self, f) -> tuple[str, int]:
        last_hash, last_seq = "", 0
        f.seek(0)
        for line in f:
            if not line.strip():
                continue
            raw = json.loads(line)
            last_hash = raw.get("event_hash", "")
            last_seq = int(raw.get("sequence", 0))
        return last_hash, last_seq

    def append(
        self,
        event_type: EventType,
        *,
        registry: str,
        block: BlockContext,
        args: dict[str, Any],
    ) -> RegistryEvent:
        """Chain and record an event without notifying subscribers.

        Registries call this while still holding their store lock so the log
        order matches the commit order, then ``notify`` once the lock is
        released.
        """
        with self._lock:
            if self.path is None:
                prev_hash = self._events[-1].event_hash if self._events else ""
                sequence = len(self._events) + 1
                event = self._build(event_type, registry, block, args, prev_hash, sequence)
                self._events.append(event)
                return event

            with open(self.path, "a+") as f:
                fcntl.flock(f.fileno(), fcntl.LOCK_EX)
                try:
                    prev_hash, last_seq = self._tail(f)
                    event = self._build(event_type, registry, block, args, prev_hash, last_seq + 1)
                    f.write(event.to_json() + "\n")
                    f.flush()
                    os.fsync(f.fileno())
                    self._tail_cache = (os.fstat(f.fileno()).st_size, event.event_hash, event.sequence)
                finally:
                    fcntl.flock(f.fileno(), fcntl.LOCK_UN)
            return event

    def notify(self, event: RegistryEvent) -> None:
        """Call the subscribers matching ``event``.

        The event is already recorded, so a failing handler is logged and
        never propagated to the operation that produced it.
        """
        with self._lock:
            handlers = [
                handler
                for wanted, handler in self._subscriptions
                if wanted is None or wanted.value == event.event_type
            ]

        for handler in handlers:
            try:
                handler(event)
            except Exception:
                logger.exception("Event handler %r failed for %s #%s", handler, event.event_type, event.sequence)

    def emit(
        self,
        event_type: EventType,
        *,
        registry: str,
        block: BlockContext,
        args: dict[str, Any],
    ) -> RegistryEvent:
        event = self.append(event_type, registry=registry, block=block, args=args)
        self.notify(event)
        return event

    def _build(
        self,
        event_type: EventType,
        registry: str,
        block: BlockContext,
        args: dict[str, Any],
        prev_hash: str,
        sequence: int,
    ) -> RegistryEvent:
        payload = {
            "event_type": event_type.value,
            "registry": registry,
            "block_number": block.number,
            "timestamp": block.timestamp,
            "args": dict(args),
            "sequence": sequence,
        }
        return RegistryEvent(
            **payload,
            prev_hash=prev_hash or None,
            event_hash=self._event_hash(payload, prev_hash),
        )

    def subscribe(self, handler: EventHandler, event_type: Optional[EventType] = None) -> None:
        """Register a handler called synchronously for each new event."""
        with self._lock:
            self._subscriptions.append((event_type, handler))

    def unsubscribe(self, handler: EventHandler) -> None:
        with self._lock:
            self._subscriptions = [(t, h) for t, h in self._subscriptions if h != handler]

    def read_events(
        self,
        event_type: Optional[EventType] = None,
        registry: Optional[str] = None,
        limit: int = 100,
    ) -> list[RegistryEvent]:
        if self.path is None:
            with self._lock:
                events = list(self._events)
        else:
            events = self._read_file()

        if event_type is not None:
            events = [e for e in events if e.event_type == event_type.value]
        if registry is not None:
            events = [e for e in events if e.registry == registry]
        return events[-limit:]

    def _read_file(self) -> list[RegistryEvent]:
        if not self.path.exists():
            return []

        events: list[RegistryEvent] = []
        expected_prev = ""
        with open(self.path, "r") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                raw = json.loads(line)

                payload = {
                    k: v
                    for k, v in raw.items()
                    if k not in {"prev_hash", "event_hash"}
                }
                prev_hash = raw.get("prev_hash", "") or ""
                event_hash = raw.get("event_hash", "") or ""
                if prev_hash != expected_prev:
                    raise RuntimeError("Event chain broken: previous hash mismatch")
                expected_hash = self._event_hash(payload, prev_hash)
                if not hmac.compare_digest(expected_hash, event_hash):
                    raise RuntimeError("Event chain broken: event hash mismatch")
                expected_prev = event_hash

                events.append(
                    RegistryEvent(
                        **{
                            k: v
                            for k, v in raw.items()
                            if k in RegistryEvent.__dataclass_fields__
                        }
                    )
                )
        return events
