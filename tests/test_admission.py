import threading

import pytest

from admission import AdmissionController


class ManualClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return ManualClock()


def test_global_cap_admits_up_to_the_limit(clock):
    admission = AdmissionController(request_limit=2, address_window=30, clock=clock)

    assert admission.try_admit("10.0.0.1")
    assert admission.try_admit("10.0.0.2")
    assert not admission.try_admit("10.0.0.3")
    assert admission.in_flight == 2


def test_same_address_is_rejected_inside_its_window(clock):
    admission = AdmissionController(request_limit=100, address_window=30, clock=clock)

    assert admission.try_admit("10.0.0.1")
    clock.now += 29
    assert not admission.try_admit("10.0.0.1")
    assert admission.in_flight == 1


def test_missing_address_is_rejected(clock):
    admission = AdmissionController(clock=clock)
    assert not admission.try_admit(None)
    assert not admission.try_admit("")
    assert admission.in_flight == 0


def test_tick_leaks_one_unit(clock):
    admission = AdmissionController(request_limit=2, address_window=30, clock=clock)
    admission.try_admit("a")
    admission.try_admit("b")
    assert not admission.try_admit("c")

    admission.tick()

    assert admission.in_flight == 1
    assert admission.try_admit("c")
    assert not admission.try_admit("d")


def test_tick_never_goes_below_zero(clock):
    admission = AdmissionController(clock=clock)
    admission.tick()
    admission.tick()
    assert admission.in_flight == 0


def test_tick_prunes_only_the_expired_prefix(clock):
    admission = AdmissionController(request_limit=100, address_window=30, clock=clock)
    admission.try_admit("first")
    clock.now += 10
    admission.try_admit("second")
    clock.now += 10
    admission.try_admit("third")

    clock.now += 15  # first expired, second and third still live
    admission.tick()

    assert len(admission) == 2
    assert admission.try_admit("first")
    assert not admission.try_admit("second")


def test_address_is_readmitted_after_its_window(clock):
    admission = AdmissionController(request_limit=100, address_window=30, clock=clock)
    admission.try_admit("a")
    admission.try_admit("b")

    clock.now += 30
    assert admission.try_admit("a")

    # "a" moved behind "b", so pruning stops at "a" after removing "b".
    clock.now += 1
    admission.tick()
    assert len(admission) == 1
    assert not admission.try_admit("a")


def test_same_address_race_admits_once(clock):
    admission = AdmissionController(request_limit=100, address_window=30, clock=clock)
    barrier = threading.Barrier(16)
    results = []

    def worker():
        barrier.wait()
        results.append(admission.try_admit("10.9.8.7"))

    threads = [threading.Thread(target=worker) for _ in range(16)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert results.count(True) == 1
    assert admission.in_flight == 1
