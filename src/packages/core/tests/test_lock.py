"""Tests for the expiring advisory lock."""
from dbdump_core.lock import Semaphore


class Sleeper:
    def __init__(self, clock):
        self.clock = clock
        self.calls = 0

    def __call__(self, seconds):
        self.calls += 1
        self.clock.advance(seconds)


def test_first_acquire_creates_row(clock):
    lock = Semaphore("create_dump", clock=clock)
    assert lock.acquire()
    assert lock.acquired


def test_second_holder_is_refused(clock):
    first = Semaphore("create_dump", locked_for=300, clock=clock)
    second = Semaphore("create_dump", locked_for=300, clock=clock)
    assert first.acquire()
    assert not second.acquire()
    assert first.acquire()


def test_release_lets_others_in(clock):
    first = Semaphore("create_dump", clock=clock)
    second = Semaphore("create_dump", clock=clock)
    first.acquire()
    assert first.release()
    assert not first.release()
    assert second.acquire()


def test_lock_expires(clock):
    first = Semaphore("create_dump", locked_for=60, clock=clock)
    second = Semaphore("create_dump", locked_for=60, clock=clock)
    first.acquire()
    clock.advance(61)
    assert second.acquire()


def test_retries_sleep_one_second_each(clock):
    sleeper = Sleeper(clock)
    Semaphore("create_dump", locked_for=2, clock=clock).acquire()
    waiting = Semaphore("create_dump", locked_for=2, clock=clock, sleep=sleeper)
    assert waiting.acquire(retries=5)
    assert sleeper.calls == 3


def test_retries_are_bounded(clock):
    sleeper = Sleeper(clock)
    Semaphore("create_dump", locked_for=300, clock=clock).acquire()
    waiting = Semaphore("create_dump", clock=clock, sleep=sleeper)
    assert not waiting.acquire(retries=2)
    assert sleeper.calls == 2


def test_force_clear(clock):
    first = Semaphore("create_dump", clock=clock)
    first.acquire()
    first.force_clear()
    assert not first.acquired
    assert Semaphore("create_dump", clock=clock).acquire()


def test_names_are_independent(clock):
    assert Semaphore("a", clock=clock).acquire()
    assert Semaphore("b", clock=clock).acquire()
