from buddian.plugins.rate_limit import RateLimiter
from buddian.plugins.types import RateLimitPolicy


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


def test_bucket_allows_burst_then_blocks():
    clock = FakeClock()
    limiter = RateLimiter(max_tokens=2, refill_rate=1.0, clock=clock)

    assert limiter.allow("u") is True
    assert limiter.allow("u") is True
    assert limiter.allow("u") is False


def test_bucket_refills_over_time():
    clock = FakeClock()
    limiter = RateLimiter(max_tokens=1, refill_rate=0.5, clock=clock)

    assert limiter.allow("u") is True
    assert limiter.allow("u") is False
    clock.now += 2.0
    assert limiter.allow("u") is True


def test_from_policy_and_reset():
    clock = FakeClock()
    limiter = RateLimiter.from_policy(RateLimitPolicy(requests=3, window_ms=60_000), clock=clock)

    assert limiter.max_tokens == 3
    assert limiter.refill_rate == 0.05
    for _ in range(3):
        assert limiter.allow("a")
    assert limiter.allow("a") is False
    assert limiter.allow("b") is True

    limiter.reset("a")
    assert limiter.allow("a") is True


def test_refilled_buckets_are_pruned():
    clock = FakeClock()
    limiter = RateLimiter(max_tokens=2, refill_rate=1.0, clock=clock, prune_interval=60.0)

    for user in ("a", "b", "c"):
        assert limiter.allow(user) is True
    assert limiter.bucket_count == 3

    clock.now += 30.0
    limiter.allow("a")
    assert limiter.bucket_count == 3

    clock.now += 31.0
    assert limiter.allow("d") is True
    assert limiter.bucket_count == 1

    assert limiter.allow("d") is True
    assert limiter.allow("d") is False
