"""
Background jobs for MRP (rq)

Workers are started against the MRP queues, e.g.:
    rq worker mrp mrp-chunks --url redis://localhost:6379/0

Jobs are enqueued by dotted path from MRPService, so the service layer
never imports this module.
"""
from functools import lru_cache
from typing import List, Optional

import redis
from rq import Queue, get_current_job

from app.core.settings import get_settings
from app.db.session import SessionLocal
from app.logging_config import get_logger
from app.services.mrp import MRPService
from app.services.mrp_cache import MRPCacheService

logger = get_logger(__name__)


@lru_cache
def get_queue_connection() -> redis.Redis:
    """rq stores pickled payloads, so its connection must not decode responses."""
    return redis.Redis.from_url(get_settings().REDIS_URL)


def get_queue(name: Optional[str] = None) -> Queue:
    return Queue(name or get_settings().MRP_QUEUE_NAME, connection=get_queue_connection())


def get_chunk_queue() -> Queue:
    return get_queue(get_settings().MRP_CHUNK_QUEUE_NAME)


def process_mrp_run_job(run_id: int) -> Optional[str]:
    """Execute a queued MRP run. Returns the final run status."""
    db = SessionLocal()
    try:
        service = MRPService(db, MRPCacheService(), chunk_queue=get_chunk_queue())
        run = service.process_existing_run(run_id)
        status = run.status if run else None
        logger.info(
            f"MRP run job finished for run {run_id}",
            extra={"mrp_run_id": run_id, "status": status}
        )
        return status
    except Exception as e:
        logger.error(
            f"MRP run job failed for run {run_id}: {e}",
            exc_info=True,
            extra={"mrp_run_id": run_id}
        )
        raise
    finally:
        db.close()


def process_mrp_chunk_job(run_id: int, product_ids: List[int]) -> int:
    """
    Plan one chunk of a parallel MRP run. Returns products processed.

    On the last failed attempt the chunk is abandoned on the run, so the
    run's chunk counter still reaches zero.
    """
    db = SessionLocal()
    service = MRPService(db, MRPCacheService())
    try:
        return service.process_product_chunk(run_id, product_ids)
    except Exception as e:
        db.rollback()
        logger.error(
            f"MRP chunk job failed for run {run_id}: {e}",
            exc_info=True,
            extra={"mrp_run_id": run_id, "chunk_size": len(product_ids)}
        )
        if _is_final_attempt():
            service.abandon_chunk(run_id, product_ids, e)
        raise
    finally:
        db.close()


def _is_final_attempt() -> bool:
    # Outside a worker there is no retry
    job = get_current_job()
    return job is None or not job.retries_left
