# walletgate/services/nonce_store.py
"""
Storage for wallet sign-in nonces.

Two interchangeable backends implement the same contract:
- InMemoryNonceStore: process-local dict with a periodic sweeper thread
  (tests, offline development, single-instance deployments)
- RedisNonceStore: shared Redis keys with native expiry (multi-instance)

Only the most recent nonce issued for a wallet is kept; issuing again
overwrites the previous challenge. Addresses are normalized to lowercase.

Backend selection is driven by walletgate/core/config.py:
- NONCE_STORE_IN_MEMORY: always use the in-memory store
- REDIS_URL: use Redis, falling back to in-memory if it cannot be reached
"""
import json
import logging
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Dict, Optional

import redis

from walletgate.core.config import settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NonceRecord:
    """A live challenge for one wallet. expires_at is a unix timestamp in seconds."""
    wallet_address: str
    nonce: str
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return self.expires_at < now


class NonceStore(ABC):
    """Contract shared by every nonce backend."""

    @abstractmethod
    def issue(self, wallet_address: str, nonce: str, ttl_seconds: float) -> NonceRecord:
        """Store a nonce for a wallet, replacing any previous one. Returns the stored record."""

    @abstractmethod
    def fetch(self, wallet_address: str) -> Optional[NonceRecord]:
        """Return the live nonce for a wallet, or None if absent or expired."""

    @abstractmethod
    def revoke(self, wallet_address: str) -> None:
        """Delete the nonce for a wallet. No error if there is none."""

    @abstractmethod
    def shutdown(self) -> None:
        """Release backend resources. Must not raise."""


class InMemoryNonceStore(NonceStore):
    """
    Process-local nonce store.

    A single daemon thread per store sweeps expired records every
    sweep_interval_seconds so abandoned challenges don't accumulate.
    """

    def __init__(
        self,
        sweep_interval_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.time
    ):
        """
        Initialize the store and start its sweeper.

        Args:
            sweep_interval_seconds: Seconds between sweeps. If None, uses config.
            clock: Time source returning unix seconds (overridable in tests).
        """
        if sweep_interval_seconds is None:
            sweep_interval_seconds = settings.NONCE_SWEEP_INTERVAL_SECONDS
        self._sweep_interval = sweep_interval_seconds
        self._clock = clock
        self._records: Dict[str, NonceRecord] = {}
        self._lock = threading.Lock()
        self._stopped = threading.Event()
        self._sweeper = threading.Thread(
            target=self._sweep_loop,
            name="nonce-sweeper",
            daemon=True
        )
        self._sweeper.start()

    def issue(self, wallet_address: str, nonce: str, ttl_seconds: float) -> NonceRecord:
        address = wallet_address.lower()
        record = NonceRecord(address, nonce, self._clock() + ttl_seconds)
        with self._lock:
            self._records[address] = record
        return record

    def fetch(self, wallet_address: str) -> Optional[NonceRecord]:
        address = wallet_address.lower()
        with self._lock:
            record = self._records.get(address)
            if record is None:
                return None
            if record.is_expired(self._clock()):
                del self._records[address]
                return None
            return record

    def revoke(self, wallet_address: str) -> None:
        with self._lock:
            self._records.pop(wallet_address.lower(), None)

    def shutdown(self) -> None:
        self._stopped.set()
        if self._sweeper.is_alive() and self._sweeper is not threading.current_thread():
            self._sweeper.join(timeout=1)
        self.clear()

    def clear(self) -> None:
        """Drop every record (useful for testing)."""
        with self._lock:
            self._records.clear()

    def sweep(self) -> int:
        """
        Delete every expired record.

        Returns:
            Number of records removed
        """
        now = self._clock()
        with self._lock:
            stale = [
                address for address, record in self._records.items()
                if record.is_expired(now)
            ]
            for address in stale:
                del self._records[address]

        if stale:
            logger.debug(f"Swept {len(stale)} expired nonces")
        return len(stale)

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def _sweep_loop(self) -> None:
        while not self._stopped.wait(self._sweep_interval):
            self.sweep()


class RedisNonceStore(NonceStore):
    """
    Redis-backed nonce store shared by all service instances.

    Keys expire natively (SET ... PX), so there is no sweeper. Overwriting
    the single key per wallet is last-write-wins and needs no lock.
    """

    key_prefix = "nonce:"

    def __init__(self, client: redis.Redis, clock: Callable[[], float] = time.time):
        self._client = client
        self._clock = clock

    @classmethod
    def from_url(cls, url: str, timeout: Optional[float] = None) -> "RedisNonceStore":
        """
        Connect to Redis and verify the connection with a PING.

        Raises:
            redis.exceptions.RedisError: If the server cannot be reached
            ValueError: If the URL is malformed
        """
        if timeout is None:
            timeout = settings.UPSTREAM_TIMEOUT_SECONDS
        client = redis.Redis.from_url(
            url,
            decode_responses=True,
            socket_timeout=timeout,
            socket_connect_timeout=timeout,
        )
        client.ping()
        return cls(client)

    def _key(self, wallet_address: str) -> str:
        return f"{self.key_prefix}{wallet_address.lower()}"

    def issue(self, wallet_address: str, nonce: str, ttl_seconds: float) -> NonceRecord:
        ttl_ms = int(ttl_seconds * 1000)
        expires_at_ms = int(self._clock() * 1000) + ttl_ms
        value = json.dumps({"nonce": nonce, "expiresAt": expires_at_ms})

        try:
            self._client.set(self._key(wallet_address), value, px=ttl_ms)
            logger.debug(f"Redis nonce store: nonce set for {wallet_address.lower()} (ttl {ttl_ms}ms)")
        except redis.exceptions.RedisError as e:
            logger.error(f"Redis nonce store: failed to set nonce for {wallet_address.lower()}: {e}")
            raise

        return NonceRecord(wallet_address.lower(), nonce, expires_at_ms / 1000)

    def fetch(self, wallet_address: str) -> Optional[NonceRecord]:
        address = wallet_address.lower()
        try:
            value = self._client.get(self._key(address))
        except redis.exceptions.RedisError as e:
            logger.error(f"Redis nonce store: failed to get nonce for {address}: {e}")
            raise

        if not value:
            return None

        data = json.loads(value)
        record = NonceRecord(address, data["nonce"], data["expiresAt"] / 1000)

        # Key TTL is authoritative; this only guards against clock drift
        if record.is_expired(self._clock()):
            return None
        return record

    def revoke(self, wallet_address: str) -> None:
        try:
            self._client.delete(self._key(wallet_address))
        except redis.exceptions.RedisError as e:
            logger.error(f"Redis nonce store: failed to delete nonce for {wallet_address.lower()}: {e}")
            raise

    def shutdown(self) -> None:
        try:
            self._client.close()
        except Exception as e:
            logger.warning(f"Redis nonce store: error while closing connection: {e}")


@dataclass
class NonceStoreSelection:
    """Outcome of choosing a backend. fallback_error is set when Redis was configured but unusable."""
    store: NonceStore
    backend: str
    fallback_error: Optional[Exception] = None

    @property
    def degraded(self) -> bool:
        return self.fallback_error is not None


def _redacted(url: str) -> str:
    """Strip credentials from a connection string for logging."""
    return url.rsplit("@", 1)[-1]


def create_nonce_store(
    use_in_memory: Optional[bool] = None,
    redis_url: Optional[str] = None
) -> NonceStoreSelection:
    """
    Build the nonce store for this process.

    Args:
        use_in_memory: Force the in-memory backend. If None, uses config.
        redis_url: Redis connection string. If None, uses config.

    Returns:
        NonceStoreSelection describing the chosen backend
    """
    if use_in_memory is None:
        use_in_memory = settings.NONCE_STORE_IN_MEMORY
    if redis_url is None:
        redis_url = settings.REDIS_URL

    if use_in_memory:
        logger.info("Nonce store: using in-memory store (forced by configuration)")
        return NonceStoreSelection(InMemoryNonceStore(), "memory")

    if not redis_url:
        logger.info("Nonce store: REDIS_URL not set, using in-memory store")
        return NonceStoreSelection(InMemoryNonceStore(), "memory")

    try:
        store = RedisNonceStore.from_url(redis_url)
    except (redis.exceptions.RedisError, ValueError) as e:
        logger.warning(
            f"Nonce store: could not use Redis at {_redacted(redis_url)} ({e}). "
            f"Falling back to in-memory store; nonces will not be shared across instances."
        )
        return NonceStoreSelection(InMemoryNonceStore(), "memory", fallback_error=e)

    logger.info(f"Nonce store: using Redis at {_redacted(redis_url)}")
    return NonceStoreSelection(store, "redis")


# Global nonce store instance
_nonce_store: Optional[NonceStore] = None
_nonce_store_lock = threading.Lock()


def get_nonce_store() -> NonceStore:
    """
    Get the global nonce store, creating it on first use.

    Returns:
        The singleton NonceStore instance
    """
    global _nonce_store

    if _nonce_store is None:
        with _nonce_store_lock:
            if _nonce_store is None:
                _nonce_store = create_nonce_store().store

    return _nonce_store


def shutdown_nonce_store() -> None:
    """Shut down and forget the global nonce store (process teardown, tests)."""
    global _nonce_store
    with _nonce_store_lock:
        if _nonce_store is not None:
            _nonce_store.shutdown()
        _nonce_store = None
