"""Keyed mutation locks with ordered acquisition and deadlines."""

from __future__ import annotations

import asyncio
import secrets
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Iterable, List, Optional

from clubroster.domain.roster.exceptions import Busy
from clubroster.infra.redis import RedisProxy, redis_client
from clubroster.obs import metrics as obs_metrics
from clubroster.obs.logging import get_logger
from clubroster.settings import Settings, settings as default_settings

log = get_logger(__name__)

# Compare-and-delete in one round trip, same shape as redis-py's Lock release.
_RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
	return redis.call("del", KEYS[1])
end
return 0
"""


def member_key(member_id: str) -> str:
	return f"member:{member_id}"


def slot_key(subteam_id: str, event_id: str) -> str:
	return f"slot:{subteam_id}:{event_id}"


def headcount_key(subteam_id: str) -> str:
	return f"subteam:{subteam_id}"


class MemoryLockManager:
	"""Per-key asyncio locks for a single process.

	Keys are acquired in sorted order so two requests touching the same pair of
	keys can never deadlock. Idle locks are dropped to keep the table small.
	"""

	backend = "memory"

	def __init__(self, *, default_timeout: Optional[float] = None) -> None:
		self._locks: Dict[str, asyncio.Lock] = {}
		self._refs: Dict[str, int] = {}
		self.default_timeout = default_timeout

	@asynccontextmanager
	async def hold(self, keys: Iterable[str], *, timeout: Optional[float] = None) -> AsyncIterator[List[str]]:
		ordered = sorted(set(keys))
		budget = self.default_timeout if timeout is None else timeout
		loop = asyncio.get_running_loop()
		deadline = loop.time() + budget if budget is not None else None
		started = time.perf_counter()
		acquired: List[str] = []
		try:
			for key in ordered:
				await self._acquire(key, deadline)
				acquired.append(key)
			obs_metrics.observe_lock_wait(self.backend, time.perf_counter() - started)
			yield ordered
		finally:
			for key in reversed(acquired):
				await self._release(key)

	def is_held(self, key: str) -> bool:
		lock = self._locks.get(key)
		return bool(lock and lock.locked())

	async def _acquire(self, key: str, deadline: Optional[float]) -> None:
		await self._acquire_local(key, deadline)
		try:
			await self._acquire_remote(key, deadline)
		except BaseException:
			self._release_local(key)
			raise

	async def _release(self, key: str) -> None:
		try:
			await self._release_remote(key)
		finally:
			self._release_local(key)

	async def _acquire_local(self, key: str, deadline: Optional[float]) -> None:
		lock = self._locks.get(key)
		if lock is None:
			lock = asyncio.Lock()
			self._locks[key] = lock
		self._refs[key] = self._refs.get(key, 0) + 1
		try:
			if not lock.locked() or deadline is None:
				await lock.acquire()
				return
			remaining = deadline - asyncio.get_running_loop().time()
			if remaining <= 0:
				raise asyncio.TimeoutError
			await asyncio.wait_for(lock.acquire(), timeout=remaining)
		except asyncio.TimeoutError:
			self._unref(key)
			raise self._busy(key) from None
		except BaseException:
			self._unref(key)
			raise

	def _release_local(self, key: str) -> None:
		lock = self._locks.get(key)
		if lock is not None and lock.locked():
			lock.release()
		self._unref(key)

	def _unref(self, key: str) -> None:
		count = self._refs.get(key, 0) - 1
		if count <= 0:
			self._refs.pop(key, None)
			lock = self._locks.get(key)
			if lock is not None and not lock.locked():
				del self._locks[key]
		else:
			self._refs[key] = count

	async def _acquire_remote(self, key: str, deadline: Optional[float]) -> None:
		return None

	async def _release_remote(self, key: str) -> None:
		return None

	def _busy(self, key: str) -> Busy:
		obs_metrics.inc_lock_timeout(self.backend)
		log.warning("roster lock timed out", extra={"lock_key": key, "backend": self.backend})
		return Busy(lock_key=key)


class RedisLockManager(MemoryLockManager):
	"""Adds a Redis `SET NX PX` lease per key for multi-process deployments.

	The local asyncio lock is taken first so coroutines in one process queue
	locally instead of polling Redis. Leases expire after `ttl_ms`, which must
	exceed the longest critical section.
	"""

	backend = "redis"

	def __init__(
		self,
		redis: RedisProxy | None = None,
		*,
		default_timeout: Optional[float] = None,
		ttl_ms: int = 30_000,
		poll_ms: int = 25,
		namespace: str = "roster:lock:",
	) -> None:
		super().__init__(default_timeout=default_timeout)
		self.redis = redis or redis_client
		self.ttl_ms = ttl_ms
		self.poll_seconds = max(poll_ms, 1) / 1000.0
		self.namespace = namespace
		self._tokens: Dict[str, str] = {}

	def _redis_key(self, key: str) -> str:
		return f"{self.namespace}{key}"

	async def _acquire_remote(self, key: str, deadline: Optional[float]) -> None:
		token = secrets.token_hex(16)
		loop = asyncio.get_running_loop()
		while True:
			stored = await self.redis.set(self._redis_key(key), token, nx=True, px=self.ttl_ms)
			if stored:
				self._tokens[key] = token
				return
			if deadline is not None and loop.time() >= deadline:
				raise self._busy(key)
			await asyncio.sleep(self.poll_seconds)

	async def _release_remote(self, key: str) -> None:
		token = self._tokens.pop(key, None)
		if token is None:
			return
		released = await self.redis.eval(_RELEASE_SCRIPT, 1, self._redis_key(key), token)
		if not released:
			log.warning("roster lock lease expired before release", extra={"lock_key": key})


def build_lock_manager(config: Settings | None = None) -> MemoryLockManager:
	config = config or default_settings
	if config.roster_lock_backend == "redis":
		return RedisLockManager(
			default_timeout=config.roster_lock_timeout_seconds,
			ttl_ms=config.roster_lock_ttl_ms,
			poll_ms=config.roster_lock_poll_ms,
		)
	return MemoryLockManager(default_timeout=config.roster_lock_timeout_seconds)
