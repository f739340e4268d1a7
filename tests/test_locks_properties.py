"""
Tests for the thread coordination primitives.
"""

import threading
import time

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from service_kit.locks import ReadWriteLock, WaitGroup


class TestReadWriteLockProperty:
    """Tests for ReadWriteLock."""

    def test_readers_share_the_lock(self) -> None:
        lock = ReadWriteLock()
        inside = threading.Barrier(3, timeout=5)

        def reader() -> None:
            with lock.read():
                inside.wait()

        threads = [threading.Thread(target=reader) for _ in range(3)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=5)
        assert not any(thread.is_alive() for thread in threads)

    def test_writer_excludes_readers(self) -> None:
        lock = ReadWriteLock()
        events: list[str] = []
        writer_in = threading.Event()

        def writer() -> None:
            with lock.write():
                writer_in.set()
                time.sleep(0.1)
                events.append("write-done")

        def reader() -> None:
            writer_in.wait()
            with lock.read():
                events.append("read")

        threads = [threading.Thread(target=writer), threading.Thread(target=reader)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=5)

        assert events == ["write-done", "read"]

    @given(threads=st.integers(min_value=2, max_value=8), rounds=st.integers(min_value=1, max_value=50))
    @settings(max_examples=20, deadline=None)
    def test_writes_are_not_lost(self, threads: int, rounds: int) -> None:
        """
        Property: Increments made under the write lock are never lost.

        *For any* number of threads and rounds, the counter SHALL equal
        threads * rounds.
        """
        lock = ReadWriteLock()
        counter = [0]

        def work() -> None:
            for _ in range(rounds):
                with lock.write():
                    value = counter[0]
                    counter[0] = value + 1
                with lock.read():
                    assert counter[0] >= 1

        workers = [threading.Thread(target=work) for _ in range(threads)]
        for worker in workers:
            worker.start()
        for worker in workers:
            worker.join()

        assert counter[0] == threads * rounds


class TestWaitGroupProperty:
    """Tests for WaitGroup."""

    def test_wait_returns_when_all_done(self) -> None:
        group = WaitGroup()
        group.add(3)
        for _ in range(3):
            threading.Timer(0.05, group.done).start()
        assert group.wait(timeout=5)
        assert group.count == 0

    def test_wait_times_out(self) -> None:
        group = WaitGroup()
        group.add(1)
        assert group.wait(timeout=0.05) is False
        group.done()
        assert group.wait(timeout=0.05) is True

    def test_zero_counter_does_not_block(self) -> None:
        assert WaitGroup().wait(timeout=0)

    def test_negative_counter(self) -> None:
        with pytest.raises(ValueError):
            WaitGroup().done()
