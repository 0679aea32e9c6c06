"""
Per-symbol serialization of signal processing.
"""

import asyncio
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict

import redis.asyncio as redis

from core.logging import get_logger
from core.trading.symbols import normalize_symbol

logger = get_logger(__name__, component="position_manager")


class SymbolLockProvider(ABC):
    """Admission point that lets one signal per symbol through at a time."""

    @abstractmethod
    def hold(self, symbol: str) -> "AsyncIterator[None]":
        ...


class NullSymbolLockProvider(SymbolLockProvider):
    """No serialization: concurrent signals for a symbol may interleave."""

    @asynccontextmanager
    async def hold(self, symbol: str) -> AsyncIterator[None]:
        yield


class LocalSymbolLockProvider(SymbolLockProvider):
    """In-process asyncio locks, one per normalized symbol."""

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}

    def _lock_for(self, symbol: str) -> asyncio.Lock:
        key = normalize_symbol(symbol)
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    @asynccontextmanager
    async def hold(self, symbol: str) -> AsyncIterator[None]:
        lock = self._lock_for(symbol)
        if lock.locked():
            logger.info("Waiting for in-flight signal on symbol", symbol=normalize_symbol(symbol))
        async with lock:
            yield


class RedisSymbolLockProvider(SymbolLockProvider):
    """Distributed locks so several API workers stay serialized per symbol."""

    def __init__(self, redis_client: redis.Redis, timeout: float = 120.0,
                 prefix: str = "trap_relay:lock"):
        self.redis_client = redis_client
        self.timeout = timeout
        self.prefix = prefix

    @asynccontextmanager
    async def hold(self, symbol: str) -> AsyncIterator[None]:
        name = f"{self.prefix}:{normalize_symbol(symbol)}"
        lock = self.redis_client.lock(name, timeout=self.timeout, blocking_timeout=self.timeout)
        acquired = await lock.acquire()
        if not acquired:
            raise TimeoutError(f"Could not acquire symbol lock {name}")
        try:
            yield
        finally:
            try:
                await lock.release()
            except Exception as e:
                # Lock expired while held; the next holder may already own it
                logger.warning("Symbol lock release failed", lock=name, error=str(e))
