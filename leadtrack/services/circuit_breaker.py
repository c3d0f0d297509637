"""
Redis-backed circuit breaker for outbound analytics APIs.

State lives in Redis so every gunicorn worker sees the same breaker:
  - CLOSED    → calls pass through
  - OPEN      → `failure_threshold` consecutive failures; calls raise
                CircuitOpenError until `reset_timeout` seconds pass
  - HALF_OPEN → one trial call; success closes, failure reopens

Redis trouble never blocks a call: unreadable state counts as CLOSED.
"""
import logging
import time
from functools import wraps

import redis

logger = logging.getLogger('services.circuit_breaker')

CLOSED = 'closed'
OPEN = 'open'
HALF_OPEN = 'half_open'


class CircuitOpenError(Exception):
    """Raised instead of calling a service whose breaker is open."""
    def __init__(self, name, retry_after=None):
        self.name = name
        self.retry_after = retry_after
        super().__init__(f"Circuit breaker '{name}' is open, service unavailable")


class CircuitBreaker:
    """
    Usage:
        breaker = CircuitBreaker('clarity', redis_client, failure_threshold=3, reset_timeout=600)
        payload = breaker.call(fetch_export, num_of_days)
    """

    PREFIX = 'cb'

    def __init__(self, name, redis_client, failure_threshold=3, reset_timeout=300):
        self.name = name
        self.redis = redis_client
        self.failure_threshold = failure_threshold
        self.reset_timeout = reset_timeout

    def _key(self, suffix):
        return f'{self.PREFIX}:{self.name}:{suffix}'

    def _read(self, suffix, default=None):
        try:
            value = self.redis.get(self._key(suffix))
        except redis.exceptions.RedisError as e:
            logger.debug("Breaker '%s' state unreadable: %s", self.name, e)
            return default
        return default if value is None else value

    def _since_last_failure(self):
        last = self._read('opened_at')
        return time.time() - float(last) if last else None

    @property
    def state(self):
        current = self._read('state', CLOSED)
        if current == OPEN:
            elapsed = self._since_last_failure()
            if elapsed is not None and elapsed > self.reset_timeout:
                self._write_state(HALF_OPEN)
                return HALF_OPEN
        return current

    @property
    def failure_count(self):
        return int(self._read('failures', 0) or 0)

    def _write_state(self, new_state):
        try:
            self.redis.set(self._key('state'), new_state)
        except redis.exceptions.RedisError as e:
            logger.debug("Breaker '%s' state not saved: %s", self.name, e)

    def retry_after(self):
        elapsed = self._since_last_failure()
        if elapsed is None:
            return None
        return max(0, self.reset_timeout - elapsed)

    def call(self, func, *args, **kwargs):
        if self.state == OPEN:
            raise CircuitOpenError(self.name, retry_after=self.retry_after())
        try:
            result = func(*args, **kwargs)
        except Exception as e:
            self._on_failure(e)
            raise
        self._on_success()
        return result

    def protect(self, func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            return self.call(func, *args, **kwargs)
        return wrapper

    def _on_success(self):
        try:
            pipe = self.redis.pipeline()
            pipe.set(self._key('state'), CLOSED)
            pipe.set(self._key('failures'), 0)
            pipe.hincrby(self._key('health'), 'success', 1)
            pipe.hset(self._key('health'), 'last_success', str(time.time()))
            pipe.execute()
        except redis.exceptions.RedisError as e:
            logger.debug("Breaker '%s' success not recorded: %s", self.name, e)

    def _on_failure(self, error):
        try:
            failures = self.redis.incr(self._key('failures'))
            pipe = self.redis.pipeline()
            pipe.set(self._key('opened_at'), str(time.time()))
            pipe.hincrby(self._key('health'), 'failure', 1)
            pipe.hset(self._key('health'), 'last_error', str(error)[:200])
            pipe.execute()
        except redis.exceptions.RedisError as e:
            logger.debug("Breaker '%s' failure not recorded: %s", self.name, e)
            return
        if failures >= self.failure_threshold:
            self._write_state(OPEN)
            logger.warning("Circuit '%s' opened after %d failures: %s", self.name, failures, error)
        else:
            logger.info("Circuit '%s' failure %d/%d: %s",
                        self.name, failures, self.failure_threshold, error)

    def reset(self):
        try:
            pipe = self.redis.pipeline()
            pipe.set(self._key('state'), CLOSED)
            pipe.set(self._key('failures'), 0)
            pipe.delete(self._key('opened_at'))
            pipe.execute()
        except redis.exceptions.RedisError as e:
            logger.error("Failed to reset circuit '%s': %s", self.name, e)
            return
        logger.info("Circuit '%s' reset to closed", self.name)

    def get_health(self):
        """State plus success/failure totals, for /api/health."""
        try:
            data = self.redis.hgetall(self._key('health')) or {}
            state = self.state
        except redis.exceptions.RedisError:
            data, state = {}, 'unknown'
        return {
            'name': self.name,
            'state': state,
            'failure_count': self.failure_count,
            'failure_threshold': self.failure_threshold,
            'reset_timeout': self.reset_timeout,
            'total_success': int(data.get('success', 0)),
            'total_failure': int(data.get('failure', 0)),
            'last_success': float(data['last_success']) if data.get('last_success') else None,
            'last_error': data.get('last_error', ''),
        }


# ── Registry ────────────────────────────────────────────────────────────────

_registry = {}

BREAKER_SETTINGS = {
    'clarity': {'failure_threshold': 3, 'reset_timeout': 600},
    'google_analytics': {'failure_threshold': 3, 'reset_timeout': 300},
}


def get_breaker(name, redis_client=None, **kwargs):
    """Named breaker, created on first use."""
    if name not in _registry:
        if redis_client is None:
            from leadtrack.extensions import redis_client
        settings = {**BREAKER_SETTINGS.get(name, {}), **kwargs}
        _registry[name] = CircuitBreaker(name, redis_client, **settings)
    return _registry[name]


def get_all_breakers():
    return dict(_registry)


def init_breakers(redis_client):
    """Register the breakers for every external API the app calls."""
    breakers = {
        name: CircuitBreaker(name, redis_client, **settings)
        for name, settings in BREAKER_SETTINGS.items()
    }
    _registry.update(breakers)
    return breakers
