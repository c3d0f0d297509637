"""
Per-identity postback locks.

Two postbacks for the same lead racing through resolve-then-write can both
see "not found" and both insert. hold() serializes them by identity key:

  - 'local' backend: striped threading.Locks, one process
  - 'redis' backend: redis-py distributed Lock, across gunicorn workers

Locks fail open. If the lock cannot be taken (Redis down, wait exceeded) the
postback is processed unlocked and a warning is logged: a rare duplicate is
better than a dropped postback.
"""
import hashlib
import logging
import threading
from contextlib import contextmanager
from typing import Optional

import redis

from leadtrack.config import POSTBACK_LOCK_BACKEND, POSTBACK_LOCK_TIMEOUT, POSTBACK_LOCK_WAIT

logger = logging.getLogger('services.locks')

LOCK_PREFIX = 'lock:postback'
STRIPES = 64


def identity_key(postback) -> Optional[str]:
    """Lock key for a NormalizedPostback: lead_id, else offer_id, else full hierarchy."""
    if postback.lead_id:
        return f'lead:{postback.lead_id}'
    if postback.offer_id:
        return f'offer:{postback.offer_id}'
    if all(v is not None for v in postback.hierarchy):
        return 'hierarchy:' + '|'.join(postback.hierarchy)
    return None


class LocalLockBackend:
    """Fixed pool of threading.Locks; keys hash onto a stripe."""

    def __init__(self, stripes=STRIPES, wait=POSTBACK_LOCK_WAIT):
        self._locks = [threading.Lock() for _ in range(stripes)]
        self.wait = wait

    def _stripe(self, key):
        digest = hashlib.md5(key.encode('utf-8')).digest()
        return self._locks[int.from_bytes(digest[:4], 'big') % len(self._locks)]

    @contextmanager
    def hold(self, key):
        lock = self._stripe(key)
        acquired = lock.acquire(timeout=self.wait)
        if not acquired:
            logger.warning("Lock wait exceeded for %s, processing unlocked", key)
        try:
            yield acquired
        finally:
            if acquired:
                lock.release()


class RedisLockBackend:
    """redis-py Lock per key. Expires after `timeout` so a crashed worker cannot wedge a lead."""

    def __init__(self, redis_client, timeout=POSTBACK_LOCK_TIMEOUT, wait=POSTBACK_LOCK_WAIT):
        self.redis = redis_client
        self.timeout = timeout
        self.wait = wait

    @contextmanager
    def hold(self, key):
        lock = None
        acquired = False
        try:
            lock = self.redis.lock(f'{LOCK_PREFIX}:{key}', timeout=self.timeout,
                                   blocking_timeout=self.wait)
            acquired = lock.acquire()
        except redis.exceptions.RedisError as e:
            logger.warning("Redis lock unavailable for %s, processing unlocked: %s", key, e)
        else:
            if not acquired:
                logger.warning("Lock wait exceeded for %s, processing unlocked", key)
        try:
            yield acquired
        finally:
            if acquired:
                try:
                    lock.release()
                except redis.exceptions.LockError:
                    logger.warning("Lock for %s expired before release", key)
                except redis.exceptions.RedisError as e:
                    logger.warning("Failed to release lock for %s: %s", key, e)


class NullLockBackend:
    @contextmanager
    def hold(self, key):
        yield True


_backend = None


def get_lock_backend():
    """Process-wide backend chosen by POSTBACK_LOCK_BACKEND."""
    global _backend
    if _backend is None:
        if POSTBACK_LOCK_BACKEND == 'redis':
            from leadtrack.extensions import redis_client
            _backend = RedisLockBackend(redis_client)
        elif POSTBACK_LOCK_BACKEND == 'none':
            _backend = NullLockBackend()
        else:
            _backend = LocalLockBackend()
    return _backend


@contextmanager
def postback_lock(postback, backend=None):
    """Hold the identity lock for a postback. Postbacks with no identity are not locked."""
    key = identity_key(postback)
    if key is None:
        yield False
        return
    backend = backend or get_lock_backend()
    with backend.hold(key) as acquired:
        yield acquired
