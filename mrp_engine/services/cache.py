from __future__ import annotations

import asyncio
import copy
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, Protocol, Set
from uuid import UUID

from mrp_engine.core.settings import MrpSettings
from mrp_engine.schemas.mrp import RunProgress

logger = logging.getLogger(__name__)

KEY_PREFIX = "mrp:"


class CacheStore(Protocol):
    """
    Key-value store used for planning caches, dirty sets, run locks and progress.

    Implementations must make every method atomic with respect to the others.
    """

    async def get(self, key: str) -> Any: ...

    async def put(self, key: str, value: Any, ttl: Optional[float] = None) -> None: ...

    async def invalidate(self, key: str) -> None: ...

    async def invalidate_prefix(self, prefix: str) -> int: ...

    async def scan(self, prefix: str) -> List[str]: ...

    async def add_members(self, key: str, members: Iterable[str], ttl: Optional[float] = None) -> None: ...

    async def members(self, key: str) -> Set[str]: ...

    async def remove_members(self, key: str, members: Iterable[str]) -> None: ...

    async def acquire(self, key: str, token: str, ttl: float) -> bool: ...

    async def release(self, key: str, token: str) -> bool: ...


@dataclass
class _Entry:
    value: Any
    expires_at: Optional[float] = None
    members: Set[str] = field(default_factory=set)


class InMemoryCacheStore:
    """
    In-process CacheStore with per-key TTL.

    One asyncio.Lock guards the whole map, so every operation is atomic for the tasks
    sharing this instance. Values are deep-copied in and out so callers never alias
    cached structures.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._entries: Dict[str, _Entry] = {}
        self._lock = asyncio.Lock()
        self._clock = clock

    def _expiry(self, ttl: Optional[float]) -> Optional[float]:
        return None if ttl is None else self._clock() + ttl

    def _live(self, key: str) -> Optional[_Entry]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.expires_at is not None and entry.expires_at <= self._clock():
            del self._entries[key]
            return None
        return entry

    # PUBLIC_INTERFACE
    async def get(self, key: str) -> Any:
        async with self._lock:
            entry = self._live(key)
            return None if entry is None else copy.deepcopy(entry.value)

    # PUBLIC_INTERFACE
    async def put(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        async with self._lock:
            self._entries[key] = _Entry(value=copy.deepcopy(value), expires_at=self._expiry(ttl))

    # PUBLIC_INTERFACE
    async def invalidate(self, key: str) -> None:
        async with self._lock:
            self._entries.pop(key, None)

    # PUBLIC_INTERFACE
    async def invalidate_prefix(self, prefix: str) -> int:
        async with self._lock:
            doomed = [k for k in self._entries if k.startswith(prefix)]
            for k in doomed:
                del self._entries[k]
            return len(doomed)

    # PUBLIC_INTERFACE
    async def scan(self, prefix: str) -> List[str]:
        async with self._lock:
            return sorted(k for k in list(self._entries) if k.startswith(prefix) and self._live(k) is not None)

    # PUBLIC_INTERFACE
    async def add_members(self, key: str, members: Iterable[str], ttl: Optional[float] = None) -> None:
        async with self._lock:
            entry = self._live(key)
            if entry is None:
                entry = _Entry(value=None)
                self._entries[key] = entry
            entry.members.update(members)
            if ttl is not None:
                entry.expires_at = self._expiry(ttl)

    # PUBLIC_INTERFACE
    async def members(self, key: str) -> Set[str]:
        async with self._lock:
            entry = self._live(key)
            return set() if entry is None else set(entry.members)

    # PUBLIC_INTERFACE
    async def remove_members(self, key: str, members: Iterable[str]) -> None:
        async with self._lock:
            entry = self._live(key)
            if entry is None:
                return
            entry.members.difference_update(members)
            if not entry.members:
                del self._entries[key]

    # PUBLIC_INTERFACE
    async def acquire(self, key: str, token: str, ttl: float) -> bool:
        """Set key to token only if it is absent (or expired)."""
        async with self._lock:
            if self._live(key) is not None:
                return False
            self._entries[key] = _Entry(value=token, expires_at=self._expiry(ttl))
            return True

    # PUBLIC_INTERFACE
    async def release(self, key: str, token: str) -> bool:
        """Delete key only if it still holds token."""
        async with self._lock:
            entry = self._live(key)
            if entry is None or entry.value != token:
                return False
            del self._entries[key]
            return True


class MrpCacheManager:
    """
    Key scheme and typed operations over a CacheStore.

    Keys:
      - mrp:cache:company:{cid}:llc                  low-level code map
      - mrp:cache:company:{cid}:explosion:bom:{bid}  unit explosion of a BOM
      - mrp:cache:company:{cid}:calendar             calendar exception rows
      - mrp:dirty:company:{cid}                      dirty product set
      - mrp:lock:company:{cid}                       run lock (owner token)
      - mrp:progress:run:{rid}                       run progress

    Company cache invalidation removes every mrp:cache:company:{cid}:* key; the dirty
    set lives outside that namespace so invalidation never loses pending changes.
    """

    def __init__(self, store: CacheStore, settings: MrpSettings) -> None:
        self.store = store
        self.settings = settings

    # --- keys ---------------------------------------------------------------------

    @staticmethod
    def company_prefix(company_id: UUID) -> str:
        return f"{KEY_PREFIX}cache:company:{company_id}:"

    def llc_key(self, company_id: UUID) -> str:
        return f"{self.company_prefix(company_id)}llc"

    def explosion_key(self, company_id: UUID, bom_id: UUID) -> str:
        return f"{self.company_prefix(company_id)}explosion:bom:{bom_id}"

    def calendar_key(self, company_id: UUID) -> str:
        return f"{self.company_prefix(company_id)}calendar"

    @staticmethod
    def dirty_key(company_id: UUID) -> str:
        return f"{KEY_PREFIX}dirty:company:{company_id}"

    @staticmethod
    def lock_key(company_id: UUID) -> str:
        return f"{KEY_PREFIX}lock:company:{company_id}"

    @staticmethod
    def progress_key(run_id: UUID) -> str:
        return f"{KEY_PREFIX}progress:run:{run_id}"

    # --- low-level codes ----------------------------------------------------------

    # PUBLIC_INTERFACE
    async def get_llc(self, company_id: UUID) -> Optional[Dict[UUID, int]]:
        raw = await self.store.get(self.llc_key(company_id))
        if raw is None:
            return None
        return {UUID(pid): int(code) for pid, code in raw.items()}

    # PUBLIC_INTERFACE
    async def put_llc(self, company_id: UUID, codes: Dict[UUID, int]) -> None:
        payload = {str(pid): code for pid, code in codes.items()}
        await self.store.put(self.llc_key(company_id), payload, ttl=self.settings.CACHE_TTL_SECONDS)

    # PUBLIC_INTERFACE
    async def invalidate_llc(self, company_id: UUID) -> None:
        await self.store.invalidate(self.llc_key(company_id))
        logger.info("Invalidated LLC cache for company %s", company_id)

    # --- explosions ---------------------------------------------------------------

    # PUBLIC_INTERFACE
    async def get_explosion(self, company_id: UUID, bom_id: UUID) -> Optional[Dict[str, Any]]:
        return await self.store.get(self.explosion_key(company_id, bom_id))

    # PUBLIC_INTERFACE
    async def put_explosion(self, company_id: UUID, bom_id: UUID, payload: Dict[str, Any]) -> None:
        await self.store.put(self.explosion_key(company_id, bom_id), payload, ttl=self.settings.CACHE_TTL_SECONDS)

    # PUBLIC_INTERFACE
    async def invalidate_bom_explosion(self, company_id: UUID, bom_id: UUID) -> int:
        """
        Drop the BOM's cached explosion and every cached explosion that pulled it in
        through a phantom item. Returns the number of entries removed.
        """
        removed = 0
        target = str(bom_id)
        prefix = f"{self.company_prefix(company_id)}explosion:bom:"
        for key in await self.store.scan(prefix):
            payload = await self.store.get(key)
            if key.endswith(target) or (payload and target in payload.get("depends_on", [])):
                await self.store.invalidate(key)
                removed += 1
        logger.info("Invalidated %d explosion cache entries for BOM %s", removed, bom_id)
        return removed

    # --- calendar -------------------------------------------------------------------

    # PUBLIC_INTERFACE
    async def get_calendar(self, company_id: UUID) -> Optional[List[Dict[str, Any]]]:
        return await self.store.get(self.calendar_key(company_id))

    # PUBLIC_INTERFACE
    async def put_calendar(self, company_id: UUID, rows: List[Dict[str, Any]]) -> None:
        await self.store.put(self.calendar_key(company_id), rows, ttl=self.settings.CACHE_TTL_SECONDS)

    # --- company-wide ---------------------------------------------------------------

    # PUBLIC_INTERFACE
    async def invalidate_company(self, company_id: UUID) -> int:
        removed = await self.store.invalidate_prefix(self.company_prefix(company_id))
        logger.info("Invalidated %d cache entries for company %s", removed, company_id)
        return removed

    # --- dirty set ------------------------------------------------------------------

    # PUBLIC_INTERFACE
    async def mark_dirty(self, company_id: UUID, product_id: UUID) -> None:
        await self.mark_many_dirty(company_id, [product_id])

    # PUBLIC_INTERFACE
    async def mark_many_dirty(self, company_id: UUID, product_ids: Iterable[UUID]) -> None:
        members = [str(pid) for pid in product_ids]
        if not members:
            return
        await self.store.add_members(
            self.dirty_key(company_id), members, ttl=self.settings.DIRTY_SET_TTL_SECONDS
        )
        logger.debug("Marked %d products dirty for company %s", len(members), company_id)

    # PUBLIC_INTERFACE
    async def get_dirty(self, company_id: UUID) -> Set[UUID]:
        return {UUID(m) for m in await self.store.members(self.dirty_key(company_id))}

    # PUBLIC_INTERFACE
    async def clear_dirty(self, company_id: UUID, product_ids: Iterable[UUID]) -> None:
        """Remove only the given ids, so products marked during the run stay dirty."""
        await self.store.remove_members(self.dirty_key(company_id), [str(pid) for pid in product_ids])

    # --- run lock -------------------------------------------------------------------

    # PUBLIC_INTERFACE
    async def acquire_run_lock(self, company_id: UUID, token: str) -> bool:
        acquired = await self.store.acquire(
            self.lock_key(company_id), token, ttl=self.settings.RUN_LOCK_TTL_SECONDS
        )
        if acquired:
            logger.info("Acquired MRP lock for company %s", company_id)
        else:
            logger.warning("MRP lock for company %s is held by another run", company_id)
        return acquired

    # PUBLIC_INTERFACE
    async def release_run_lock(self, company_id: UUID, token: str) -> bool:
        released = await self.store.release(self.lock_key(company_id), token)
        if released:
            logger.info("Released MRP lock for company %s", company_id)
        return released

    # --- progress -------------------------------------------------------------------

    # PUBLIC_INTERFACE
    async def set_progress(
        self, run_id: UUID, processed: int, total: int, current_tier: Optional[int] = None
    ) -> None:
        progress = RunProgress(
            processed=processed,
            total=total,
            percentage=round(processed / total * 100, 2) if total else 100.0,
            current_tier=current_tier,
            updated_at=datetime.now(tz=timezone.utc),
        )
        await self.store.put(
            self.progress_key(run_id), progress.model_dump(mode="json"), ttl=self.settings.CACHE_TTL_SECONDS
        )

    # PUBLIC_INTERFACE
    async def get_progress(self, run_id: UUID) -> Optional[RunProgress]:
        raw = await self.store.get(self.progress_key(run_id))
        return RunProgress.model_validate(raw) if raw else None
