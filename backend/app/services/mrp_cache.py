"""
MRP Cache Service

Redis-backed cache, lock and scratch storage used by MRP runs:
- Low-level codes per company and BOM explosion results (TTL bound)
- Per-run progress for live status checks
- Per-company run lock (SET NX EX with an ownership token)
- Dirty products set for incremental (net-change) runs
- Pre-loaded stock snapshot and chunk counters for parallel runs

Every key lives under MRP_CACHE_PREFIX ("mrp:" by default).
"""
import hashlib
import json
import secrets
from dataclasses import dataclass
from datetime import datetime, timezone
from functools import lru_cache
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

import redis
from redis.exceptions import RedisError, WatchError

from app.core.settings import get_settings
from app.exceptions import ServiceUnavailableError
from app.logging_config import get_logger

logger = get_logger(__name__)


@lru_cache
def get_redis() -> redis.Redis:
    """Process-wide Redis client (connection pool is shared)."""
    settings = get_settings()
    return redis.Redis.from_url(settings.REDIS_URL, decode_responses=True)


@dataclass
class LockInfo:
    value: str
    ttl: int


class MRPCacheService:
    """Thin domain layer over a redis-py client"""

    def __init__(self, client: Optional[redis.Redis] = None):
        settings = get_settings()
        self.redis = client if client is not None else get_redis()
        self.prefix = settings.MRP_CACHE_PREFIX
        self.cache_ttl = settings.MRP_CACHE_TTL_SECONDS
        self.lock_ttl = settings.MRP_LOCK_TTL_SECONDS
        self.dirty_ttl = settings.MRP_DIRTY_PRODUCTS_TTL_SECONDS
        self.chunk_size = settings.MRP_CHUNK_SIZE

    # ========================================================================
    # Keys
    # ========================================================================

    def low_level_code_key(self, company_id: int) -> str:
        return f"{self.prefix}llc:company:{company_id}"

    def bom_key(self, bom_id: int) -> str:
        return f"{self.prefix}bom:{bom_id}"

    def bom_explosion_key(self, product_id: int, quantity) -> str:
        qty_hash = hashlib.md5(str(quantity).encode()).hexdigest()
        return f"{self.prefix}explosion:product:{product_id}:qty:{qty_hash}"

    def progress_key(self, run_id: int) -> str:
        return f"{self.prefix}progress:run:{run_id}"

    def lock_key(self, company_id: int) -> str:
        return f"{self.prefix}lock:company:{company_id}"

    def dirty_products_key(self, company_id: int) -> str:
        return f"{self.prefix}dirty:company:{company_id}"

    def preload_key(self, run_id: int, data_type: str) -> str:
        return f"{self.prefix}preload:run:{run_id}:{data_type}"

    # ========================================================================
    # Low-level codes
    # ========================================================================

    def get_cached_low_level_codes(self, company_id: int) -> Optional[Dict[int, int]]:
        raw = self._get_json(self.low_level_code_key(company_id))
        if raw is None:
            return None
        return {int(pid): int(level) for pid, level in raw.items()}

    def cache_low_level_codes(self, company_id: int, codes: Dict[int, int]) -> None:
        self._set_json(self.low_level_code_key(company_id), codes, self.cache_ttl)

    def invalidate_low_level_codes(self, company_id: int) -> None:
        self._call(self.redis.delete, self.low_level_code_key(company_id))
        logger.info(
            f"Invalidated low-level code cache for company {company_id}",
            extra={"company_id": company_id}
        )

    # ========================================================================
    # BOM structure / explosion
    # ========================================================================

    def get_cached_bom_structure(self, bom_id: int) -> Optional[dict]:
        return self._get_json(self.bom_key(bom_id))

    def cache_bom_structure(self, bom_id: int, structure: dict) -> None:
        self._set_json(self.bom_key(bom_id), structure, self.cache_ttl)

    def invalidate_bom_structure(self, bom_id: int) -> None:
        self._call(self.redis.delete, self.bom_key(bom_id))

    def get_cached_bom_explosion(self, product_id: int, quantity) -> Optional[List[dict]]:
        return self._get_json(self.bom_explosion_key(product_id, quantity))

    def cache_bom_explosion(self, product_id: int, quantity, explosion: List[dict]) -> None:
        self._set_json(self.bom_explosion_key(product_id, quantity), explosion, self.cache_ttl)

    def invalidate_bom_explosions(self, product_id: Optional[int] = None) -> int:
        """Drop cached explosions for one product, or all of them."""
        if product_id is None:
            pattern = f"{self.prefix}explosion:product:*"
        else:
            pattern = f"{self.prefix}explosion:product:{product_id}:qty:*"
        return self._delete_pattern(pattern)

    # ========================================================================
    # Progress
    # ========================================================================

    def update_progress(
        self,
        run_id: int,
        processed: int,
        total: int,
        current_product: Optional[str] = None,
    ) -> None:
        progress = {
            "processed": processed,
            "total": total,
            "percentage": round(processed / total * 100, 2) if total > 0 else 0,
            "current_product": current_product,
            "updated_at": datetime.now(timezone.utc).isoformat(),
        }
        self._set_json(self.progress_key(run_id), progress, self.lock_ttl)

    def get_progress(self, run_id: int) -> Optional[dict]:
        return self._get_json(self.progress_key(run_id))

    def clear_progress(self, run_id: int) -> None:
        self._call(self.redis.delete, self.progress_key(run_id))

    # ========================================================================
    # Per-company run lock
    # ========================================================================

    def acquire_lock(self, company_id: int, run_id: int, ttl: Optional[int] = None) -> Optional[str]:
        """
        Try to take the company's MRP lock.

        Returns the ownership token on success, None when another run holds it.
        The token must be handed back to release_lock().
        """
        token = f"run:{run_id}:{secrets.token_hex(16)}"
        acquired = self._call(
            self.redis.set,
            self.lock_key(company_id),
            token,
            nx=True,
            ex=ttl or self.lock_ttl,
        )
        return token if acquired else None

    def release_lock(self, company_id: int, token: str) -> bool:
        """Delete the lock only if it still holds exactly this token."""
        key = self.lock_key(company_id)
        try:
            with self.redis.pipeline() as pipe:
                pipe.watch(key)
                if pipe.get(key) != token:
                    pipe.unwatch()
                    logger.warning(
                        f"MRP lock for company {company_id} not released: token mismatch or expired",
                        extra={"company_id": company_id}
                    )
                    return False
                pipe.multi()
                pipe.delete(key)
                pipe.execute()
                return True
        except WatchError:
            # Key changed between GET and DEL; it is no longer ours
            return False
        except RedisError as e:
            raise ServiceUnavailableError("MRP cache", f"unavailable: {e}") from e

    def has_lock(self, company_id: int) -> bool:
        return bool(self._call(self.redis.exists, self.lock_key(company_id)))

    def get_lock_info(self, company_id: int) -> Optional[LockInfo]:
        key = self.lock_key(company_id)
        value = self._call(self.redis.get, key)
        if not value:
            return None
        return LockInfo(value=value, ttl=self._call(self.redis.ttl, key))

    # ========================================================================
    # Dirty products (incremental MRP)
    # ========================================================================

    def dirty_products(self, company_id: int) -> "DirtyProductSet":
        return DirtyProductSet(self, company_id)

    def mark_product_dirty(self, company_id: int, product_id: int) -> None:
        self.mark_products_dirty(company_id, [product_id])

    def mark_products_dirty(self, company_id: int, product_ids: Iterable[int]) -> None:
        ids = [int(pid) for pid in product_ids]
        if not ids:
            return
        key = self.dirty_products_key(company_id)
        pipe = self.redis.pipeline()
        pipe.sadd(key, *ids)
        pipe.expire(key, self.dirty_ttl)
        self._call(pipe.execute)

    def get_dirty_products(self, company_id: int) -> Set[int]:
        members = self._call(self.redis.smembers, self.dirty_products_key(company_id))
        return {int(m) for m in members or ()}

    def remove_dirty_products(self, company_id: int, product_ids: Iterable[int]) -> None:
        ids = [int(pid) for pid in product_ids]
        if ids:
            self._call(self.redis.srem, self.dirty_products_key(company_id), *ids)

    def clear_dirty_products(self, company_id: int) -> None:
        self._call(self.redis.delete, self.dirty_products_key(company_id))

    # ========================================================================
    # Pre-loaded run data
    # ========================================================================

    def store_preloaded_data(self, run_id: int, data_type: str, data: Dict[Any, Any]) -> None:
        if not data:
            return
        key = self.preload_key(run_id, data_type)
        pipe = self.redis.pipeline()
        pipe.hset(key, mapping={str(k): json.dumps(v, default=str) for k, v in data.items()})
        pipe.expire(key, self.lock_ttl)
        self._call(pipe.execute)

    def get_preloaded_data(self, run_id: int, data_type: str, field: Any) -> Optional[Any]:
        raw = self._call(self.redis.hget, self.preload_key(run_id, data_type), str(field))
        return json.loads(raw) if raw else None

    def get_preloaded_map(self, run_id: int, data_type: str, fields: Iterable[Any]) -> Dict[str, Any]:
        """Bulk HMGET; missing fields are left out of the result."""
        keys = [str(f) for f in fields]
        if not keys:
            return {}
        values = self._call(self.redis.hmget, self.preload_key(run_id, data_type), keys)
        return {k: json.loads(v) for k, v in zip(keys, values) if v is not None}

    def clear_preloaded_data(self, run_id: int) -> int:
        return self._delete_pattern(f"{self.prefix}preload:run:{run_id}:*")

    # ========================================================================
    # Parallel chunk tracking
    # ========================================================================

    def track_chunks(self, run_id: int, chunk_count: int, total_products: int) -> None:
        key = self.preload_key(run_id, "chunks")
        pipe = self.redis.pipeline()
        pipe.hset(key, mapping={"remaining": chunk_count, "processed": 0, "total": total_products})
        pipe.expire(key, self.lock_ttl)
        self._call(pipe.execute)

    def finish_chunk(self, run_id: int, processed: int) -> Tuple[int, int, int]:
        """Count one chunk as done. Returns (chunks remaining, products processed, total products)."""
        key = self.preload_key(run_id, "chunks")
        pipe = self.redis.pipeline()
        pipe.hincrby(key, "remaining", -1)
        pipe.hincrby(key, "processed", processed)
        pipe.hget(key, "total")
        remaining, processed_total, total = self._call(pipe.execute)
        return int(remaining), int(processed_total), int(total or 0)

    # ========================================================================
    # Invalidation
    # ========================================================================

    def invalidate_company_cache(self, company_id: int) -> int:
        """
        Drop the company's low-level codes and all BOM structure/explosion entries.

        BOM keys are keyed by globally unique ids, not company, so they are
        cleared wholesale. The lock and the dirty set are left alone.
        """
        deleted = self._delete_pattern(f"{self.prefix}llc:company:{company_id}")
        deleted += self.invalidate_bom_explosions()
        deleted += self._delete_pattern(f"{self.prefix}bom:*")
        logger.info(
            f"Invalidated MRP cache for company {company_id} ({deleted} keys)",
            extra={"company_id": company_id, "keys_deleted": deleted}
        )
        return deleted

    # ========================================================================
    # Helper Methods
    # ========================================================================

    def _call(self, fn, *args, **kwargs):
        try:
            return fn(*args, **kwargs)
        except RedisError as e:
            logger.error(
                f"Redis call failed: {e}",
                extra={"operation": getattr(fn, "__name__", str(fn))}
            )
            raise ServiceUnavailableError("MRP cache", f"unavailable: {e}") from e

    def _get_json(self, key: str) -> Optional[Any]:
        raw = self._call(self.redis.get, key)
        return json.loads(raw) if raw else None

    def _set_json(self, key: str, value: Any, ttl: int) -> None:
        self._call(self.redis.setex, key, ttl, json.dumps(value, default=str))

    def _delete_pattern(self, pattern: str) -> int:
        keys = self._call(lambda: list(self.redis.scan_iter(match=pattern, count=500)))
        if not keys:
            return 0
        return self._call(self.redis.delete, *keys)


class DirtyProductSet:
    """
    Per-company set of product ids changed since the last full run.

    Draining is two-phase: snapshot() returns the ids a run will consume and
    drain() removes exactly those ids once the run has succeeded, so marks
    added while the run was in flight survive.
    """

    def __init__(self, cache: MRPCacheService, company_id: int):
        self.cache = cache
        self.company_id = company_id

    def mark(self, *product_ids: int) -> None:
        self.cache.mark_products_dirty(self.company_id, product_ids)

    def snapshot(self) -> Set[int]:
        return self.cache.get_dirty_products(self.company_id)

    def drain(self, consumed: Iterable[int]) -> None:
        self.cache.remove_dirty_products(self.company_id, consumed)

    def __len__(self) -> int:
        return len(self.snapshot())

    def __contains__(self, product_id: int) -> bool:
        return int(product_id) in self.snapshot()
