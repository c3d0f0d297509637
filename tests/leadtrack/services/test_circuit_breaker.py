"""Tests for leadtrack.services.circuit_breaker — state machine, Redis outages, registry."""
import time
from unittest.mock import MagicMock, patch

import pytest
import redis

from leadtrack.services.circuit_breaker import (
    CLOSED, HALF_OPEN, OPEN, CircuitBreaker, CircuitOpenError, _registry,
    get_all_breakers, get_breaker, init_breakers,
)


class FakeRedis:
    """In-memory stand-in for the handful of Redis commands the breaker uses."""

    def __init__(self):
        self.values = {}
        self.hashes = {}

    def get(self, key):
        return self.values.get(key)

    def set(self, key, value):
        self.values[key] = str(value)

    def incr(self, key):
        self.values[key] = str(int(self.values.get(key, 0)) + 1)
        return int(self.values[key])

    def delete(self, *keys):
        for key in keys:
            self.values.pop(key, None)

    def hset(self, key, field, value):
        self.hashes.setdefault(key, {})[field] = str(value)

    def hincrby(self, key, field, amount):
        current = int(self.hashes.setdefault(key, {}).get(field, 0))
        self.hashes[key][field] = str(current + amount)

    def hgetall(self, key):
        return dict(self.hashes.get(key, {}))

    def pipeline(self):
        return FakePipeline(self)


class FakePipeline:
    """Queues commands and replays them against FakeRedis on execute()."""

    def __init__(self, fake):
        self._fake = fake
        self._ops = []

    def __getattr__(self, name):
        def queue(*args):
            self._ops.append((name, args))
            return self
        return queue

    def execute(self):
        for name, args in self._ops:
            getattr(self._fake, name)(*args)
        self._ops = []


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def breaker(fake_redis):
    return CircuitBreaker('clarity', fake_redis, failure_threshold=3, reset_timeout=600)


def failing():
    raise ConnectionError('upstream down')


class TestStateMachine:

    def test_starts_closed(self, breaker):
        assert breaker.state == CLOSED
        assert breaker.failure_count == 0

    def test_success_passes_result_through(self, breaker):
        assert breaker.call(lambda x: x * 2, 21) == 42

    def test_opens_after_threshold(self, breaker):
        for _ in range(3):
            with pytest.raises(ConnectionError):
                breaker.call(failing)
        assert breaker.state == OPEN
        with pytest.raises(CircuitOpenError) as exc_info:
            breaker.call(lambda: 'never')
        assert exc_info.value.name == 'clarity'
        assert 0 < exc_info.value.retry_after <= 600

    def test_below_threshold_stays_closed(self, breaker):
        for _ in range(2):
            with pytest.raises(ConnectionError):
                breaker.call(failing)
        assert breaker.state == CLOSED
        assert breaker.failure_count == 2

    def test_success_resets_failures(self, breaker):
        with pytest.raises(ConnectionError):
            breaker.call(failing)
        breaker.call(lambda: None)
        assert breaker.failure_count == 0

    def test_half_open_after_timeout(self, breaker, fake_redis):
        for _ in range(3):
            with pytest.raises(ConnectionError):
                breaker.call(failing)
        fake_redis.set('cb:clarity:opened_at', time.time() - 601)
        assert breaker.state == HALF_OPEN
        assert breaker.call(lambda: 'trial') == 'trial'
        assert breaker.state == CLOSED

    def test_reset(self, breaker):
        for _ in range(3):
            with pytest.raises(ConnectionError):
                breaker.call(failing)
        breaker.reset()
        assert breaker.state == CLOSED
        assert breaker.failure_count == 0

    def test_protect_decorator(self, breaker):
        @breaker.protect
        def fetch(n):
            return n + 1
        assert fetch(1) == 2
        assert fetch.__name__ == 'fetch'


class TestHealth:

    def test_counts_successes_and_failures(self, breaker):
        breaker.call(lambda: None)
        with pytest.raises(ConnectionError):
            breaker.call(failing)
        health = breaker.get_health()
        assert health['name'] == 'clarity'
        assert health['total_success'] == 1
        assert health['total_failure'] == 1
        assert health['last_error'] == 'upstream down'
        assert health['last_success'] is not None


class TestRedisOutage:
    """Unreachable Redis must never block the call itself."""

    def _broken(self):
        client = MagicMock()
        client.get.side_effect = redis.exceptions.ConnectionError('refused')
        client.incr.side_effect = redis.exceptions.ConnectionError('refused')
        client.pipeline.side_effect = redis.exceptions.ConnectionError('refused')
        client.set.side_effect = redis.exceptions.ConnectionError('refused')
        client.hgetall.side_effect = redis.exceptions.ConnectionError('refused')
        return client

    def test_call_still_runs(self):
        breaker = CircuitBreaker('clarity', self._broken())
        assert breaker.state == CLOSED
        assert breaker.call(lambda: 'ok') == 'ok'

    def test_failure_still_raises_original_error(self):
        breaker = CircuitBreaker('clarity', self._broken())
        with pytest.raises(ConnectionError):
            breaker.call(failing)

    def test_health_reports_unknown(self):
        health = CircuitBreaker('clarity', self._broken()).get_health()
        assert health['state'] == 'unknown'
        assert health['total_success'] == 0


class TestRegistry:

    @pytest.fixture(autouse=True)
    def _clean_registry(self):
        saved = dict(_registry)
        _registry.clear()
        yield
        _registry.clear()
        _registry.update(saved)

    def test_init_registers_analytics_breakers(self, fake_redis):
        breakers = init_breakers(fake_redis)
        assert set(breakers) == {'clarity', 'google_analytics'}
        assert breakers['google_analytics'].reset_timeout == 300
        assert breakers['clarity'].failure_threshold == 3
        assert breakers['clarity'].reset_timeout == 600
        assert get_all_breakers()['clarity'] is breakers['clarity']

    def test_get_breaker_creates_once(self, fake_redis):
        first = get_breaker('other', fake_redis, failure_threshold=5)
        assert get_breaker('other') is first
        assert first.failure_threshold == 5

    def test_get_breaker_defaults_to_app_redis(self, fake_redis):
        with patch('leadtrack.extensions.redis_client', fake_redis):
            breaker = get_breaker('clarity')
        assert breaker.redis is fake_redis
