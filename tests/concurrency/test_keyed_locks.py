"""
Tests for KeyedLockRegistry: per-key serialization, sorted acquisition,
re-entrancy, bounded waits and eviction of idle keys.
"""

import threading
import time
from concurrent.futures import ThreadPoolExecutor

import pytest

from rental_kernel.db.locks import (
    KeyedLockRegistry,
    gateway_key,
    maintenance_key,
    property_key,
    tenant_key,
)
from rental_kernel.exceptions import LockTimeoutError


class TestKeyedLockRegistry:
    def test_key_helpers(self):
        assert property_key("p1") == "property:p1"
        assert tenant_key("t1") == "tenant:t1"
        assert gateway_key("QKX81HJ2TB") == "gateway:QKX81HJ2TB"
        assert maintenance_key("m1") == "maintenance:m1"

    def test_reentrant_in_same_thread(self):
        locks = KeyedLockRegistry(timeout_seconds=0.1)

        with locks.hold("tenant:1"):
            with locks.hold("tenant:1", "property:1"):
                entered = True

        assert entered

    def test_same_key_serializes_threads(self):
        locks = KeyedLockRegistry(timeout_seconds=5)
        inside = 0
        peak = 0
        guard = threading.Lock()

        def work(_):
            nonlocal inside, peak
            with locks.hold("tenant:1"):
                with guard:
                    inside += 1
                    peak = max(peak, inside)
                time.sleep(0.01)
                with guard:
                    inside -= 1

        with ThreadPoolExecutor(max_workers=4) as executor:
            list(executor.map(work, range(8)))

        assert peak == 1

    def test_independent_keys_do_not_contend(self):
        locks = KeyedLockRegistry(timeout_seconds=0.05)
        held = threading.Event()
        release = threading.Event()

        def holder():
            with locks.hold("tenant:1"):
                held.set()
                release.wait(5)

        thread = threading.Thread(target=holder)
        thread.start()
        held.wait(5)
        try:
            with locks.hold("tenant:2"):
                acquired_other = True
        finally:
            release.set()
            thread.join()

        assert acquired_other

    def test_timeout_raises_and_releases_partial_holds(self, captured_logs):
        locks = KeyedLockRegistry(timeout_seconds=0.05)
        held = threading.Event()
        release = threading.Event()

        def holder():
            with locks.hold("tenant:1"):
                held.set()
                release.wait(5)

        thread = threading.Thread(target=holder)
        thread.start()
        held.wait(5)
        try:
            # "property:1" sorts first and is taken, then "tenant:1" times out.
            with pytest.raises(LockTimeoutError) as exc_info:
                with locks.hold("tenant:1", "property:1"):
                    pass
        finally:
            release.set()
            thread.join()

        assert exc_info.value.key == "tenant:1"
        assert any(r["message"] == "lock_timeout" for r in captured_logs())

        acquired = []

        def take_property():
            with locks.hold("property:1", timeout=1):
                acquired.append(True)

        other = threading.Thread(target=take_property)
        other.start()
        other.join()
        assert acquired == [True]
        assert locks.tracked_keys() == 0

    def test_idle_keys_are_evicted(self):
        locks = KeyedLockRegistry(timeout_seconds=1)

        with locks.hold("tenant:1", "property:1"):
            with locks.hold("tenant:1"):
                assert locks.tracked_keys() == 2
            assert locks.tracked_keys() == 2

        assert locks.tracked_keys() == 0

    def test_many_keys_leave_nothing_behind(self):
        locks = KeyedLockRegistry(timeout_seconds=5)

        def work(i):
            with locks.hold(f"tenant:{i % 7}", f"gateway:{i}"):
                time.sleep(0.001)

        with ThreadPoolExecutor(max_workers=4) as executor:
            list(executor.map(work, range(50)))

        assert locks.tracked_keys() == 0

    def test_opposite_orders_do_not_deadlock(self):
        locks = KeyedLockRegistry(timeout_seconds=2)

        def forward(_):
            with locks.hold("tenant:1", "property:1"):
                time.sleep(0.001)

        def backward(_):
            with locks.hold("property:1", "tenant:1"):
                time.sleep(0.001)

        with ThreadPoolExecutor(max_workers=4) as executor:
            futures = [executor.submit(forward if i % 2 else backward, i) for i in range(20)]
            for future in futures:
                future.result()
