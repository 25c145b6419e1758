"""
Tests for the duplicate-submission guard.

The store is exercised directly with a controllable clock; the sale engine
integration is covered in test_sales_service.py.
"""

import threading
import time
from datetime import datetime, timedelta

import pytest

from pharmapos.services.idempotency_service import InMemoryIdempotencyStore, fallback_key, resolve_key
from pharmapos.validation import SaleLineRequest, SaleRequest


RECEIVED = datetime(2026, 10, 19, 9, 30, 0)


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def _request(**overrides) -> SaleRequest:
    fields = {
        "lines": (SaleLineRequest(medicine_id=1, quantity=2),),
        "payment_method": "CASH",
        "discount_cents": 0,
    }
    fields.update(overrides)
    return SaleRequest(**fields)


class TestInMemoryStore:
    def test_claimed_key_is_rejected_until_ttl_passes(self):
        clock = FakeClock()
        store = InMemoryIdempotencyStore(ttl_seconds=60, clock=clock)

        assert store.claim("k1") is True
        assert store.should_reject("k1") is True

        clock.advance(59)
        assert store.should_reject("k1") is True

        clock.advance(2)
        assert store.should_reject("k1") is False
        assert len(store) == 0

    def test_second_claim_fails(self):
        store = InMemoryIdempotencyStore(ttl_seconds=60, clock=FakeClock())
        assert store.claim("k1") is True
        assert store.claim("k1") is False

    def test_mark_in_flight_and_release(self):
        store = InMemoryIdempotencyStore(ttl_seconds=60, clock=FakeClock())
        store.mark_in_flight("k1")
        assert store.should_reject("k1")

        store.release("k1")
        assert not store.should_reject("k1")
        assert store.claim("k1")

    def test_sweep_removes_only_expired_entries(self):
        clock = FakeClock()
        store = InMemoryIdempotencyStore(ttl_seconds=60, clock=clock)
        store.claim("old")
        clock.advance(45)
        store.claim("new")
        clock.advance(30)

        assert store.sweep() == 1
        assert len(store) == 1
        assert store.should_reject("new")

    def test_rejects_non_positive_ttl(self):
        with pytest.raises(ValueError):
            InMemoryIdempotencyStore(ttl_seconds=0)

    def test_background_sweeper_evicts_expired_keys(self):
        store = InMemoryIdempotencyStore(ttl_seconds=0.01)
        store.claim("k1")
        store.start_sweeper(0.01)
        try:
            deadline = time.monotonic() + 2
            while len(store) and time.monotonic() < deadline:
                time.sleep(0.02)
        finally:
            store.stop_sweeper()
        assert len(store) == 0

    def test_concurrent_claims_admit_exactly_one(self):
        store = InMemoryIdempotencyStore(ttl_seconds=60)
        barrier = threading.Barrier(16)
        results = []
        lock = threading.Lock()

        def _worker():
            barrier.wait()
            won = store.claim("same-key")
            with lock:
                results.append(won)

        threads = [threading.Thread(target=_worker) for _ in range(16)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert results.count(True) == 1
        assert results.count(False) == 15


class TestKeyResolution:
    def test_fallback_key_is_stable_for_one_submission(self):
        request = _request(received_at=RECEIVED)
        assert fallback_key(7, request) == fallback_key(7, request)

    def test_fallback_key_includes_receipt_time(self):
        later = RECEIVED + timedelta(milliseconds=1)
        assert fallback_key(7, _request(received_at=RECEIVED)) != fallback_key(7, _request(received_at=later))

    def test_fallback_key_differs_by_actor_and_lines(self):
        base = fallback_key(7, _request(received_at=RECEIVED))
        assert fallback_key(8, _request(received_at=RECEIVED)) != base
        lines = (SaleLineRequest(medicine_id=1, quantity=3),)
        assert fallback_key(7, _request(lines=lines, received_at=RECEIVED)) != base

    def test_client_key_takes_precedence(self):
        key = resolve_key(_request(idempotency_key="abc-123"), 7)
        assert key == "client:7:abc-123"

    def test_client_keys_are_scoped_per_actor(self):
        request = _request(idempotency_key="abc-123")
        assert resolve_key(request, 7) != resolve_key(request, 8)
