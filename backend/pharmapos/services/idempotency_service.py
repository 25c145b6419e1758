# Overview: Service-layer duplicate-submission guard for sale creation.

"""
Idempotency Guard

WHY: Mobile/POS clients retry on flaky networks. Without a guard a retried
POST /api/sales records the same sale twice and deducts stock twice.

DESIGN:
- IdempotencyStore is the interface the sale engine depends on; the default
  InMemoryIdempotencyStore is process-local and lives on the Flask app
  (app.extensions["idempotency_store"]), never in module scope.
- Entries expire after a fixed TTL (IDEMPOTENCY_TTL_SECONDS, default 60).
  Expiry is checked lazily on every lookup and a daemon thread sweeps the map
  every IDEMPOTENCY_SWEEP_INTERVAL_SECONDS.
- A process restart forgets every key. Durable idempotency is not a goal.
"""

from __future__ import annotations

import hashlib
import json
import threading
import time
from abc import ABC, abstractmethod
from typing import Callable

from flask import current_app

from pharmapos.time_utils import utcnow


EXTENSION_KEY = "idempotency_store"


class IdempotencyStore(ABC):
    """Key registry consulted before any sale work is done."""

    @abstractmethod
    def should_reject(self, key: str) -> bool:
        """True if the key is registered and not yet expired."""

    @abstractmethod
    def mark_in_flight(self, key: str) -> None:
        """Register (or refresh) the key unconditionally."""

    @abstractmethod
    def claim(self, key: str) -> bool:
        """Atomic check-and-set. Returns False if another request holds the key."""

    @abstractmethod
    def release(self, key: str) -> None:
        """Forget the key."""

    @abstractmethod
    def sweep(self) -> int:
        """Drop expired keys, returning how many were removed."""


class InMemoryIdempotencyStore(IdempotencyStore):
    def __init__(self, ttl_seconds: float = 60, clock: Callable[[], float] = time.monotonic):
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be > 0")
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: dict[str, float] = {}
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._sweeper: threading.Thread | None = None

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def _is_live(self, key: str, now: float) -> bool:
        # Caller holds self._lock
        registered_at = self._entries.get(key)
        if registered_at is None:
            return False
        if now - registered_at > self.ttl_seconds:
            del self._entries[key]
            return False
        return True

    def should_reject(self, key: str) -> bool:
        with self._lock:
            return self._is_live(key, self._clock())

    def mark_in_flight(self, key: str) -> None:
        with self._lock:
            self._entries[key] = self._clock()

    def claim(self, key: str) -> bool:
        with self._lock:
            now = self._clock()
            if self._is_live(key, now):
                return False
            self._entries[key] = now
            return True

    def release(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def sweep(self) -> int:
        with self._lock:
            now = self._clock()
            expired = [k for k, ts in self._entries.items() if now - ts > self.ttl_seconds]
            for k in expired:
                del self._entries[k]
            return len(expired)

    def start_sweeper(self, interval_seconds: float) -> None:
        if self._sweeper is not None and self._sweeper.is_alive():
            return
        self._stop.clear()

        def _run():
            while not self._stop.wait(interval_seconds):
                self.sweep()

        self._sweeper = threading.Thread(target=_run, name="idempotency-sweeper", daemon=True)
        self._sweeper.start()

    def stop_sweeper(self) -> None:
        self._stop.set()
        if self._sweeper is not None:
            self._sweeper.join(timeout=1)
            self._sweeper = None


def init_app(app, store: IdempotencyStore | None = None) -> IdempotencyStore:
    if store is None:
        store = InMemoryIdempotencyStore(ttl_seconds=app.config["IDEMPOTENCY_TTL_SECONDS"])
        if app.config.get("IDEMPOTENCY_SWEEPER_ENABLED", True):
            store.start_sweeper(app.config["IDEMPOTENCY_SWEEP_INTERVAL_SECONDS"])
    app.extensions[EXTENSION_KEY] = store
    return store


def get_store() -> IdempotencyStore:
    return current_app.extensions[EXTENSION_KEY]


def fallback_key(actor_id: int, request) -> str:
    """
    Key for requests without a client-supplied idempotency_key.

    Derived from the cashier, the line payload and the time the request was
    received, so it only catches the same submission being processed twice.
    Clients that retry must send their own key.
    """
    received_at = request.received_at or utcnow()
    payload = {
        "actor_id": actor_id,
        "lines": [line.canonical() for line in request.lines],
        "received_at": received_at.isoformat(),
    }
    digest = hashlib.sha256(json.dumps(payload, sort_keys=True).encode("utf-8")).hexdigest()
    return f"auto:{digest}"


def resolve_key(request, actor_id: int) -> str:
    if request.idempotency_key:
        return f"client:{actor_id}:{request.idempotency_key}"
    return fallback_key(actor_id, request)
