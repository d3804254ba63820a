from services.rate_limiter import InMemoryWindowStore, RateLimiter


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


def make_limiter(max_requests=3, window_sec=60.0):
    clock = FakeClock()
    store = InMemoryWindowStore()
    return RateLimiter(max_requests=max_requests, window_sec=window_sec, store=store, clock=clock), clock, store


def test_allows_up_to_the_limit_then_denies_with_retry_after():
    limiter, clock, _ = make_limiter()
    for _ in range(3):
        assert limiter.check("user-1").allowed
        clock.advance(10)

    decision = limiter.check("user-1")
    assert not decision.allowed
    # Oldest request was at t=0, so the window frees up at t=60; now is t=30
    assert decision.retry_after == 30


def test_window_slides_as_old_requests_expire():
    limiter, clock, _ = make_limiter(max_requests=2)
    assert limiter.check("u").allowed
    clock.advance(30)
    assert limiter.check("u").allowed
    assert not limiter.check("u").allowed

    clock.advance(31)
    assert limiter.check("u").allowed
    assert not limiter.check("u").allowed


def test_denied_requests_do_not_consume_capacity():
    limiter, clock, _ = make_limiter(max_requests=1)
    assert limiter.check("u").allowed
    for _ in range(5):
        assert not limiter.check("u").allowed
    clock.advance(60)
    assert limiter.check("u").allowed


def test_identities_are_independent():
    limiter, _, _ = make_limiter(max_requests=1)
    assert limiter.check("a").allowed
    assert limiter.check("b").allowed
    assert not limiter.check("a").allowed


def test_retry_after_is_at_least_one_second():
    limiter, clock, _ = make_limiter(max_requests=1, window_sec=1.0)
    limiter.check("u")
    clock.advance(0.999)
    assert limiter.check("u").retry_after == 1


def test_idle_identities_are_pruned_once_per_window():
    limiter, clock, store = make_limiter()
    limiter.check("idle")
    limiter.check("active")
    assert len(store) == 2

    clock.advance(61)
    limiter.check("active")
    assert len(store) == 1
