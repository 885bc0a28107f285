import sys, pathlib
sys.path.append(str(pathlib.Path(__file__).resolve().parents[1]))

from services import netlimit
from services.netlimit import TokenBucket


def test_bucket_drains_and_refills(monkeypatch):
    now = [0.0]
    monkeypatch.setattr(netlimit.time, "monotonic", lambda: now[0])
    bucket = TokenBucket(rate_per_sec=2.0, capacity=3)

    assert all(bucket.try_acquire() for _ in range(3))
    assert not bucket.try_acquire()

    now[0] += 1.0
    assert bucket.try_acquire(2)
    assert not bucket.try_acquire()


def test_acquire_times_out_without_refill():
    bucket = TokenBucket(rate_per_sec=0.0, capacity=1)
    assert bucket.acquire(timeout=0.1)
    assert not bucket.acquire(timeout=0.05)


def test_from_config():
    bucket = TokenBucket.from_config({'rate_per_sec': 7.5, 'rate_capacity': 12})
    assert bucket.rate == 7.5
    assert bucket.capacity == 12
    assert bucket.tokens == 12
