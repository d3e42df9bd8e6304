"""
Critical Path Testing

Tests for behaviour that must hold after any change: the full session
lifecycle and mutual exclusion between concurrent requests for the same
session.
"""

import threading
import time

import pytest

from sessiondb.core.utils.session_handler import SessionHandler
from tests.utils.helpers import lock_rows, make_session_id, wait_for_condition

pytestmark = pytest.mark.critical


class TestSessionLifecycle:
    """A session from first request to garbage collection"""

    def test_full_lifecycle(self, store, clock, test_engine):
        sid = "a" * 32

        with store.open(sid) as lease:
            assert lease.data == ""
            assert lease.write("k=1") is True

        lease = store.open(sid)
        assert lease.data == "k=1"
        assert lease.write("k=2") is True
        assert store.fetch(sid) == "k=2"

        clock.advance(301)
        assert store.garbage_collect(300) == 1
        assert store.fetch(sid) == ""
        assert lock_rows(test_engine) == 0

    def test_destroyed_session_starts_fresh(self, store):
        sid = make_session_id()
        store.write(sid, "user=1")
        store.destroy(sid)

        with store.open(sid) as lease:
            assert lease.data == ""


@pytest.mark.concurrency
class TestMutualExclusion:
    """Concurrent requests for one session must not lose updates"""

    def test_second_request_waits_for_first_write(self, store):
        sid = make_session_id()
        store.write(sid, "0")
        first = store.open(sid)

        started = threading.Event()
        seen = []
        errors = []

        def second_request():
            started.set()
            try:
                lease = store.open(sid)
                seen.append(lease.data)
                lease.write(lease.data + ",b")
            except Exception as e:  # surfaced to the main thread below
                errors.append(e)

        worker = threading.Thread(target=second_request)
        worker.start()
        assert started.wait(5)

        time.sleep(0.3)
        assert seen == [], "second request read the session while it was locked"

        first.write(first.data + ",a")
        worker.join(timeout=10)

        assert not worker.is_alive()
        assert errors == []
        assert seen == ["0,a"]
        assert store.fetch(sid) == "0,a,b"

    def test_other_sessions_are_not_blocked(self, store):
        held = store.open(make_session_id())
        other = make_session_id()

        done = threading.Event()

        def unrelated_request():
            with store.open(other) as lease:
                lease.write("k=1")
            done.set()

        worker = threading.Thread(target=unrelated_request)
        worker.start()

        assert wait_for_condition(done.is_set, timeout=3)
        worker.join(timeout=5)
        held.release()
        assert store.fetch(other) == "k=1"

    def test_concurrent_increments_are_serialized(self, store_factory):
        store = store_factory(SESSION_LOCK_WAIT_SECONDS=30)
        sid = make_session_id()
        store.write(sid, "0")
        errors = []

        def request_loop():
            try:
                for _ in range(5):
                    with SessionHandler(store) as handler:
                        value = int(handler.read(sid) or 0)
                        handler.write(sid, str(value + 1))
            except Exception as e:  # surfaced to the main thread below
                errors.append(e)

        workers = [threading.Thread(target=request_loop) for _ in range(3)]
        for worker in workers:
            worker.start()
        for worker in workers:
            worker.join(timeout=60)

        assert errors == []
        assert store.fetch(sid) == "15"
