from datetime import datetime, timedelta, timezone

from redis.exceptions import ConnectionError as RedisConnectionError

from growi_api.services.rate_limiter import RedisRateLimiter
from fakes import FakeRedis


class UnreachableRedis:
    def __getattr__(self, name):
        def fail(*args, **kwargs):
            raise RedisConnectionError("connection refused")
        return fail


def _limiter(client=None):
    return RedisRateLimiter(client or FakeRedis(), max_attempts=5, window_seconds=600)


def test_key_is_scoped_by_identifier_and_ip():
    assert RedisRateLimiter.build_key("login", "10.0.0.1") == "rate_limit:login:10.0.0.1"


def test_allows_up_to_max_attempts_then_denies():
    limiter = _limiter()
    key = limiter.build_key("login", "10.0.0.1")

    results = [limiter.check_and_increment(key) for _ in range(5)]
    assert all(result.allowed for result in results)
    assert [result.remaining_attempts for result in results] == [4, 3, 2, 1, 0]

    denied = limiter.check_and_increment(key)
    assert not denied.allowed
    assert denied.remaining_attempts == 0


def test_denial_reports_window_end():
    limiter = _limiter()
    key = limiter.build_key("login", "10.0.0.2")
    for _ in range(5):
        limiter.check_and_increment(key)

    before = datetime.now(timezone.utc)
    denied = limiter.check_and_increment(key)
    assert before + timedelta(seconds=590) <= denied.reset_time <= before + timedelta(seconds=601)


def test_window_starts_with_first_attempt_only():
    client = FakeRedis()
    limiter = _limiter(client)
    key = limiter.build_key("login", "10.0.0.3")

    limiter.check_and_increment(key)
    client.ttls[key] = 120
    limiter.check_and_increment(key)

    assert client.ttls[key] == 120


def test_counter_without_expiry_gets_a_fresh_window():
    client = FakeRedis()
    limiter = _limiter(client)
    key = limiter.build_key("login", "10.0.0.4")
    client.values[key] = 2

    result = limiter.check_and_increment(key)

    assert result.allowed
    assert client.ttls[key] == 600


def test_ips_are_counted_independently():
    limiter = _limiter()
    blocked = limiter.build_key("login", "10.0.0.5")
    for _ in range(6):
        limiter.check_and_increment(blocked)

    assert limiter.check_and_increment(limiter.build_key("login", "10.0.0.6")).allowed


def test_reset_clears_the_counter():
    limiter = _limiter()
    key = limiter.build_key("login", "10.0.0.7")
    for _ in range(6):
        limiter.check_and_increment(key)

    limiter.reset(key)

    result = limiter.check_and_increment(key)
    assert result.allowed
    assert result.remaining_attempts == 4


def test_fails_open_when_redis_is_unreachable():
    limiter = _limiter(UnreachableRedis())
    key = limiter.build_key("login", "10.0.0.8")

    for _ in range(10):
        assert limiter.check_and_increment(key).allowed
    limiter.reset(key)
    assert limiter.ping() is False


def test_reset_time_is_utc_aware():
    limiter = _limiter()
    result = limiter.check_and_increment(limiter.build_key("login", "10.0.0.9"))
    assert result.reset_time.utcoffset() == timedelta(0)
