"""
MRP (Material Requirements Planning) Service

Run orchestration:
1. Validate - horizon and active products (make items without BOM are a warning)
2. Lock - one running MRP run per company
3. Low-level codes - processing order, cached between runs
4. Product selection - full, incremental (net change) or parallel chunks
5. Per product, ascending low-level code:
   net requirements -> recommendations -> BOM explosion pushing dependent
   demand down to components that have not been processed yet
6. Complete or fail the run; the lock is always released

All per-run state lives on a RunContext, so one service instance can be
reused across runs.
"""
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from typing import Any, Dict, List, Optional, Set, Tuple

from rq import Retry
from sqlalchemy.orm import Session

from app.core.settings import get_settings
from app.exceptions import InvalidStateError, MRPLockError, NotFoundError, ValidationError
from app.logging_config import get_logger
from app.models import BOM, MRPRun, Product
from app.models.mrp import RUN_CANCELLED, RUN_COMPLETED, RUN_PENDING, RUN_RUNNING
from app.services.bom_service import BOMService, MaterialLine
from app.services.demand_supply import DemandEntry, DemandSupplyAggregator, PreloadedData, WarehouseFilter
from app.services.low_level_code import LLC_WARNING_KEY, compute_low_level_codes, load_bom_edges
from app.services.mrp_cache import MRPCacheService
from app.services.net_requirements import Requirement, calculate_net_requirements
from app.services.recommendations import RecommendationGenerator, RecommendationService
from app.services.working_calendar import WorkingCalendar

logger = get_logger(__name__)

ZERO = Decimal("0")

MODE_FULL = "full"
MODE_INCREMENTAL = "incremental"
MODE_PARALLEL = "parallel"
MODE_CHUNK = "chunk"

PROCESS_CHUNK_JOB = "app.services.mrp_jobs.process_mrp_chunk_job"
PROCESS_RUN_JOB = "app.services.mrp_jobs.process_mrp_run_job"

# Run options copied from request params (with defaults) onto the MRPRun row
RUN_OPTION_DEFAULTS = {
    "include_safety_stock": True,
    "respect_lead_times": True,
    "consider_wip": True,
    "net_change": False,
}


# ============================================================================
# Run Context
# ============================================================================

@dataclass
class RunContext:
    """Mutable state of one run (or one parallel chunk of a run)"""
    run: MRPRun
    mode: str = MODE_FULL
    lock_token: Optional[str] = None
    products_processed: int = 0
    recommendations_generated: int = 0
    processed_product_ids: List[int] = field(default_factory=list)
    warnings_summary: Dict[str, dict] = field(default_factory=dict)
    # component product id -> required date -> aggregated dependent demand
    dependent_demands: Dict[int, Dict[date, DemandEntry]] = field(default_factory=lambda: defaultdict(dict))
    dirty_snapshot: Optional[Set[int]] = None
    preloaded: Optional[PreloadedData] = None
    calendar: Optional[WorkingCalendar] = None
    generator: Optional[RecommendationGenerator] = None

    @property
    def company_id(self) -> int:
        return self.run.company_id

    @property
    def total_warnings(self) -> int:
        return sum(int(w.get("count", 1)) for w in self.warnings_summary.values())

    def add_warning(self, key: str, warning: dict) -> None:
        self.warnings_summary[key] = warning

    def record_error(self, key: str, label: str, product_sku: str, error: Exception) -> None:
        """Count an error into a grouped bucket, keeping only the first few examples."""
        bucket = self.warnings_summary.setdefault(key, {"type": label, "count": 0, "examples": []})
        bucket["count"] += 1
        if len(bucket["examples"]) < get_settings().MRP_WARNING_EXAMPLES:
            bucket["examples"].append({"product_sku": product_sku, "error": str(error)})

    def warnings_list(self) -> List[dict]:
        return list(self.warnings_summary.values())

    def warning_lines(self) -> List[str]:
        lines = []
        for warning in self.warnings_summary.values():
            line = f"{warning['type']}: {warning.get('count', 1)}"
            if warning.get("message"):
                line += f" - {warning['message']}"
            lines.append(line)
        return lines

    def push_dependent_demand(self, component_id: int, entry: DemandEntry) -> None:
        by_date = self.dependent_demands[component_id]
        existing = by_date.get(entry.required_date)
        if existing is None:
            by_date[entry.required_date] = entry
        else:
            existing.quantity += entry.quantity


# ============================================================================
# MRP Service
# ============================================================================

class MRPService:
    """Material Requirements Planning run orchestrator"""

    def __init__(
        self,
        db: Session,
        cache: Optional[MRPCacheService] = None,
        queue: Any = None,
        chunk_queue: Any = None,
    ):
        """
        Args:
            db: Database session
            cache: Cache / lock service (defaults to the shared Redis client)
            queue: rq queue for whole runs; None means runs always execute inline
            chunk_queue: rq queue for parallel chunks; None disables parallel mode
        """
        self.db = db
        self.cache = cache or MRPCacheService()
        self.queue = queue
        self.chunk_queue = chunk_queue
        self.settings = get_settings()
        self.bom_service = BOMService(db, self.cache)

    # ========================================================================
    # Run lifecycle
    # ========================================================================

    def run_mrp(
        self,
        company_id: int,
        params: Optional[Dict[str, Any]] = None,
        user_id: Optional[int] = None,
        run_async: Optional[bool] = None,
    ) -> MRPRun:
        """
        Create an MRP run and execute it, inline or on the background queue.

        Args:
            company_id: Tenant to plan for
            params: planning_horizon_start/end, name, run options, product_filters,
                warehouse_filters
            user_id: User starting the run
            run_async: Force inline (False) or queued (True) execution;
                None decides by product count

        Returns:
            The MRPRun (completed or failed when inline, pending when queued)
        """
        params = params or {}
        if run_async is None:
            run_async = self.should_use_async(company_id, params)

        run = self._create_run(company_id, params, user_id)

        logger.info(
            f"Starting MRP run {run.run_number}",
            extra={"mrp_run_id": run.id, "company_id": company_id, "async": run_async}
        )

        if run_async:
            if self.queue is not None:
                job = self.queue.enqueue(
                    PROCESS_RUN_JOB,
                    run.id,
                    job_timeout=self.settings.MRP_JOB_TIMEOUT_SECONDS,
                )
                logger.info(
                    f"MRP run {run.run_number} dispatched to queue",
                    extra={"mrp_run_id": run.id, "job_id": getattr(job, "id", None)}
                )
                return run
            logger.warning(
                "No MRP job queue configured; running inline",
                extra={"mrp_run_id": run.id}
            )

        self.execute_run(run)
        return run

    def process_existing_run(self, run_id: int) -> Optional[MRPRun]:
        """Execute a previously created run (queue worker entry point)."""
        run = self.db.query(MRPRun).filter(MRPRun.id == run_id).first()
        if not run:
            logger.error(f"MRP run {run_id} not found", extra={"mrp_run_id": run_id})
            return None
        if run.status == RUN_CANCELLED:
            logger.info(f"MRP run {run.run_number} was cancelled; skipping", extra={"mrp_run_id": run_id})
            return run
        if run.status != RUN_PENDING:
            logger.warning(
                f"MRP run {run.run_number} is {run.status}; skipping",
                extra={"mrp_run_id": run_id, "status": run.status}
            )
            return run

        self.execute_run(run)
        return run

    def execute_run(self, run: MRPRun) -> RunContext:
        """Validate, lock, calculate and finalize one pending run."""
        ctx = RunContext(run=run)
        company_id = run.company_id

        try:
            self.validate_run(ctx)
        except ValidationError as e:
            self._fail_run(ctx, e)
            raise

        try:
            ctx.lock_token = self.cache.acquire_lock(company_id, run.id)
        except Exception as e:
            logger.error(
                f"MRP run {run.run_number} could not acquire lock: {e}",
                extra={"mrp_run_id": run.id, "company_id": company_id}
            )
            self._fail_run(ctx, e)
            raise

        if not ctx.lock_token:
            error = MRPLockError(company_id, details={"mrp_run_id": run.id})
            lock = self.cache.get_lock_info(company_id)
            logger.warning(
                f"MRP run {run.run_number} blocked by lock",
                extra={"mrp_run_id": run.id, "company_id": company_id, "lock": lock.value if lock else None}
            )
            self._fail_run(ctx, error)
            raise error

        keep_preloaded = False
        try:
            run.mark_as_running()
            self.db.commit()

            products_processed = self.calculate(ctx)

            if ctx.total_warnings:
                logger.warning(
                    f"MRP run {run.run_number} completed with warnings",
                    extra={"mrp_run_id": run.id, "warnings_summary": ctx.warnings_list()}
                )

            run.mark_as_completed(
                products_processed,
                ctx.recommendations_generated,
                ctx.total_warnings,
                ctx.warnings_list() or None,
            )
            self.db.commit()

            if ctx.mode == MODE_PARALLEL:
                # Chunk jobs read the stock snapshot; the last one clears it
                keep_preloaded = True
                self._dispatch_chunks(ctx)
            elif ctx.mode == MODE_INCREMENTAL and ctx.dirty_snapshot:
                self.cache.dirty_products(company_id).drain(ctx.dirty_snapshot)

            logger.info(
                f"MRP run {run.run_number} completed",
                extra={
                    "mrp_run_id": run.id,
                    "mode": ctx.mode,
                    "products_processed": products_processed,
                    "recommendations": ctx.recommendations_generated,
                    "warnings_count": ctx.total_warnings,
                }
            )
        except Exception as e:
            self.db.rollback()
            logger.error(
                f"MRP run {run.run_number} failed: {e}",
                exc_info=True,
                extra={"mrp_run_id": run.id, "warnings": ctx.warning_lines()}
            )
            keep_preloaded = False
            self._fail_run(ctx, e)
            raise
        finally:
            self.cache.release_lock(company_id, ctx.lock_token)
            if not keep_preloaded:
                self.cache.clear_progress(run.id)
                self.cache.clear_preloaded_data(run.id)

        return ctx

    def cancel_run(self, company_id: int, run_id: int) -> MRPRun:
        run = self.get_run(company_id, run_id)
        if not run.mark_as_cancelled():
            raise InvalidStateError(
                "This MRP run cannot be cancelled.",
                current_state=run.status,
                allowed_states=[RUN_PENDING],
            )
        self.db.commit()
        logger.info(f"MRP run {run.run_number} cancelled", extra={"mrp_run_id": run.id})
        return run

    # ========================================================================
    # Validation & mode selection
    # ========================================================================

    def validate_run(self, ctx: RunContext) -> None:
        run = ctx.run
        errors = []

        if run.planning_horizon_start >= run.planning_horizon_end:
            errors.append("Planning horizon start date must be before end date.")

        if self._active_product_count(run.company_id) == 0:
            errors.append("No active products found for MRP calculation.")

        without_bom = self.db.query(Product.id).filter(
            Product.company_id == run.company_id,
            Product.is_active.is_(True),
            Product.make_or_buy == "make",
            ~Product.boms.any(BOM.status == "active"),
        ).count()
        if without_bom:
            ctx.add_warning("products_without_bom", {
                "type": "Products Without BOM",
                "count": without_bom,
                "message": (
                    f"{without_bom} manufactured product(s) without active BOM found. "
                    "These will be skipped."
                ),
            })

        if errors:
            raise ValidationError("MRP run validation failed: " + " ".join(errors))

    def should_use_async(self, company_id: int, params: Dict[str, Any]) -> bool:
        product_ids = (params.get("product_filters") or {}).get("product_ids")
        if product_ids:
            return len(product_ids) >= self.settings.MRP_ASYNC_FILTERED_THRESHOLD
        return self._active_product_count(company_id) >= self.settings.MRP_ASYNC_PRODUCT_THRESHOLD

    def should_use_incremental(self, company_id: int, dirty_count: int) -> bool:
        """Incremental only when something is dirty and it is a small share of the catalogue."""
        total = self._active_product_count(company_id)
        if total == 0 or dirty_count == 0:
            return False
        return dirty_count / total < self.settings.MRP_INCREMENTAL_MAX_DIRTY_RATIO

    # ========================================================================
    # Calculation
    # ========================================================================

    def calculate(self, ctx: RunContext) -> int:
        """Run the calculation for a running run. Returns products processed."""
        run = ctx.run

        llc = compute_low_level_codes(self.db, run.company_id, self.cache)
        if llc.warning:
            ctx.add_warning(LLC_WARNING_KEY, llc.warning)

        products: Optional[List[Product]] = None
        if run.net_change:
            snapshot = self.cache.dirty_products(run.company_id).snapshot()
            if self.should_use_incremental(run.company_id, len(snapshot)):
                ctx.mode = MODE_INCREMENTAL
                ctx.dirty_snapshot = snapshot
                products = self.get_incremental_products(run.company_id, snapshot)
            else:
                logger.info(
                    f"Net change requested but {len(snapshot)} dirty products; running full MRP",
                    extra={"mrp_run_id": run.id, "dirty_count": len(snapshot)}
                )

        if products is None:
            products = self.get_products_to_process(run)

        if not products:
            return 0

        if (
            ctx.mode == MODE_FULL
            and self.chunk_queue is not None
            and len(products) >= self.settings.MRP_PARALLEL_THRESHOLD
        ):
            return self._prepare_parallel(ctx, products)

        return self.process_products(ctx, products)

    def get_products_to_process(self, run: MRPRun) -> List[Product]:
        """Active products matching the run's filters, ascending low-level code"""
        query = self.db.query(Product).filter(
            Product.company_id == run.company_id,
            Product.is_active.is_(True),
        )

        filters = run.product_filters or {}
        if filters.get("product_ids"):
            query = query.filter(Product.id.in_(filters["product_ids"]))
        if filters.get("category_ids"):
            query = query.filter(Product.category_id.in_(filters["category_ids"]))
        if filters.get("make_or_buy"):
            query = query.filter(Product.make_or_buy == filters["make_or_buy"])

        return query.order_by(Product.low_level_code, Product.id).all()

    def get_incremental_products(self, company_id: int, dirty_ids: Set[int]) -> List[Product]:
        """
        Dirty products plus every active ancestor that uses them.

        Ancestors sit at shallower low-level codes and push the dependent
        demand a dirty component is re-planned against, so they are re-run too.
        """
        parents_of: Dict[int, Set[int]] = defaultdict(set)
        for parent_id, component_id in load_bom_edges(self.db, company_id):
            parents_of[component_id].add(parent_id)

        scope = set(dirty_ids)
        frontier = list(dirty_ids)
        while frontier:
            component_id = frontier.pop()
            for parent_id in parents_of.get(component_id, ()):
                if parent_id not in scope:
                    scope.add(parent_id)
                    frontier.append(parent_id)

        products = self.db.query(Product).filter(
            Product.company_id == company_id,
            Product.is_active.is_(True),
            Product.id.in_(scope),
        ).order_by(Product.low_level_code, Product.id).all()

        logger.info(
            f"Incremental MRP: {len(dirty_ids)} dirty products, {len(products)} in scope",
            extra={"company_id": company_id, "dirty_count": len(dirty_ids), "scope_count": len(products)}
        )
        return products

    def process_products(self, ctx: RunContext, products: List[Product]) -> int:
        """Sequential pass in bounded chunks, with progress written every few products."""
        run = ctx.run
        total = len(products)
        self._prepare_context(ctx, [p.id for p in products])

        chunk_size = self.cache.chunk_size
        interval = self.settings.MRP_PROGRESS_INTERVAL

        for start in range(0, total, chunk_size):
            chunk = products[start:start + chunk_size]
            for product in chunk:
                self.process_product(ctx, product)
                ctx.products_processed += 1
                ctx.processed_product_ids.append(product.id)

                if ctx.products_processed % interval == 0:
                    self.cache.update_progress(run.id, ctx.products_processed, total, product.sku)

            self.db.flush()

        self.cache.update_progress(run.id, ctx.products_processed, total, None)

        RecommendationService(self.db, run.company_id, self.bom_service).expire_superseded(
            run, ctx.processed_product_ids
        )
        return ctx.products_processed

    def process_product(self, ctx: RunContext, product: Product) -> None:
        """Plan one product; failures are counted on the run and never propagate."""
        run = ctx.run
        try:
            current_stock = ctx.preloaded.current_stock(product.id)
            independent = ctx.preloaded.independent_demands(product.id)
            dependent = list(ctx.dependent_demands.pop(product.id, {}).values())
            demands = sorted(independent + dependent, key=lambda d: d.required_date)
            receipts = ctx.preloaded.scheduled_receipts(product.id)

            safety_stock = Decimal(product.safety_stock or 0) if run.include_safety_stock else ZERO

            requirements = calculate_net_requirements(
                current_stock,
                demands,
                receipts,
                run.planning_horizon_start,
                run.planning_horizon_end,
                safety_stock,
            )

            if demands and not requirements:
                logger.debug(
                    f"MRP: no net requirements for {product.sku} despite demand",
                    extra={
                        "product_id": product.id,
                        "current_stock": str(current_stock),
                        "total_demand": str(sum((d.quantity for d in demands), ZERO)),
                        "dependent_demands": len(dependent),
                    }
                )

            created = ctx.generator.generate(product, requirements, current_stock)
            ctx.recommendations_generated += len(created)

            if product.is_make and requirements:
                self.explode_for_dependent_demand(ctx, product, requirements)
        except Exception as e:
            ctx.record_error("product_processing_errors", "Product Processing Errors", product.sku, e)
            logger.error(
                f"Error processing product {product.sku} in MRP: {e}",
                exc_info=True,
                extra={"mrp_run_id": run.id, "product_id": product.id}
            )

    def explode_for_dependent_demand(
        self,
        ctx: RunContext,
        product: Product,
        requirements: List[Requirement],
    ) -> None:
        """
        Explode the default BOM for each date's total net requirement and push
        the component quantities down as dependent demand.

        Components are due the parent's lead time (calendar days) earlier,
        moved forward to a working day and never before the horizon start.
        """
        bom = self.bom_service.get_default_bom_for_product(product.id)
        if not bom:
            return

        try:
            qty_by_date: Dict[date, Decimal] = defaultdict(lambda: ZERO)
            for requirement in requirements:
                qty_by_date[requirement.date] += requirement.net_requirement

            for required_date, quantity in sorted(qty_by_date.items()):
                if quantity <= 0:
                    continue

                materials = self._explode_cached(product, bom, quantity)

                component_date = ctx.calendar.next_working_day(
                    required_date - timedelta(days=product.lead_time_days or 0)
                )
                component_date = max(component_date, ctx.run.planning_horizon_start)

                for material in materials:
                    ctx.push_dependent_demand(material.product_id, DemandEntry(
                        source_type="dependent_demand",
                        source_id=product.id,
                        source_sku=product.sku,
                        required_date=component_date,
                        quantity=material.quantity,
                    ))
        except Exception as e:
            ctx.record_error("bom_explosion_errors", "BOM Explosion Errors", product.sku, e)
            logger.error(
                f"Error exploding BOM {bom.bom_number} in MRP: {e}",
                extra={"mrp_run_id": ctx.run.id, "product_id": product.id, "bom_id": bom.id}
            )

    # ========================================================================
    # Parallel chunks
    # ========================================================================

    def process_product_chunk(self, run_id: int, product_ids: List[int]) -> int:
        """
        Plan one chunk of a parallel run (queue worker entry point).

        Dependent demand only flows between products inside the same chunk.
        Recommendation and warning counts are added onto the run row under a
        row lock, since chunks finish concurrently.
        """
        run = self.db.query(MRPRun).filter(MRPRun.id == run_id).first()
        if not run:
            logger.error(f"MRP run {run_id} not found for chunk", extra={"mrp_run_id": run_id})
            return 0
        if run.status == RUN_CANCELLED:
            logger.info(f"MRP run {run.run_number} was cancelled; skipping chunk", extra={"mrp_run_id": run_id})
            return 0

        products = self.db.query(Product).filter(
            Product.company_id == run.company_id,
            Product.is_active.is_(True),
            Product.id.in_(product_ids),
        ).order_by(Product.low_level_code, Product.id).all()

        ctx = RunContext(run=run, mode=MODE_CHUNK)
        processed = 0
        if products:
            self._prepare_context(ctx, [p.id for p in products])
            snapshot = self.cache.get_preloaded_map(run.id, "stock", [p.id for p in products])
            for pid, qty in snapshot.items():
                ctx.preloaded.stock[int(pid)] = Decimal(str(qty))

            for product in products:
                self.process_product(ctx, product)
                ctx.processed_product_ids.append(product.id)
            processed = len(products)

            RecommendationService(self.db, run.company_id, self.bom_service).expire_superseded(
                run, ctx.processed_product_ids
            )
            self.db.flush()

            locked = self.db.query(MRPRun).filter(MRPRun.id == run.id).with_for_update().first()
            locked.recommendations_generated = (locked.recommendations_generated or 0) + ctx.recommendations_generated
            if ctx.total_warnings:
                locked.warnings_count = (locked.warnings_count or 0) + ctx.total_warnings
                locked.warnings_summary = _merge_warnings(locked.warnings_summary, ctx.warnings_list())
            self.db.commit()
        else:
            logger.warning(
                f"No products found for MRP chunk of run {run.run_number}",
                extra={"mrp_run_id": run.id, "product_ids": product_ids}
            )

        remaining = self._finish_chunk(run.id, processed)

        logger.info(
            f"MRP chunk processed for run {run.run_number}",
            extra={
                "mrp_run_id": run.id,
                "processed": processed,
                "recommendations": ctx.recommendations_generated,
                "chunks_remaining": remaining,
            }
        )
        return processed

    def abandon_chunk(self, run_id: int, product_ids: List[int], error: Exception) -> None:
        """
        Give up on a chunk whose retries are exhausted.

        The failure is added to the run's warnings and the chunk still counts
        as finished, so the last chunk clears progress and the stock snapshot.
        """
        self.db.rollback()
        run = self.db.query(MRPRun).filter(MRPRun.id == run_id).with_for_update().first()
        if run:
            failure = {
                "type": "Chunk Failures",
                "count": 1,
                "examples": [{"product_ids": product_ids[:10], "error": str(error)}],
            }
            run.warnings_count = (run.warnings_count or 0) + 1
            run.warnings_summary = _merge_warnings(run.warnings_summary, [failure])
            self.db.commit()

        remaining = self._finish_chunk(run_id, 0)
        logger.error(
            f"MRP chunk abandoned for run {run_id}: {error}",
            extra={"mrp_run_id": run_id, "product_ids": product_ids, "chunks_remaining": remaining}
        )

    def _finish_chunk(self, run_id: int, processed: int) -> int:
        remaining, done, total = self.cache.finish_chunk(run_id, processed)
        if remaining <= 0:
            self.cache.clear_progress(run_id)
            self.cache.clear_preloaded_data(run_id)
        else:
            self.cache.update_progress(run_id, done, total, f"{remaining} chunk(s) remaining")
        return remaining

    def _prepare_parallel(self, ctx: RunContext, products: List[Product]) -> int:
        """Snapshot stock once for all chunks; the dispatch itself happens after the run is committed."""
        run = ctx.run
        ctx.mode = MODE_PARALLEL
        ctx.processed_product_ids = [p.id for p in products]

        aggregator = DemandSupplyAggregator(self.db, run.company_id)
        stock = aggregator.load_stock(ctx.processed_product_ids, WarehouseFilter.from_params(run.warehouse_filters))
        self.cache.store_preloaded_data(run.id, "stock", {pid: str(qty) for pid, qty in stock.items()})

        ctx.products_processed = len(products)
        return ctx.products_processed

    def _dispatch_chunks(self, ctx: RunContext) -> None:
        run = ctx.run
        ids = ctx.processed_product_ids
        chunk_size = self.cache.chunk_size
        chunks = [ids[i:i + chunk_size] for i in range(0, len(ids), chunk_size)]

        logger.info(
            f"Processing MRP run {run.run_number} in parallel mode",
            extra={
                "mrp_run_id": run.id,
                "total_products": len(ids),
                "chunk_count": len(chunks),
                "chunk_size": chunk_size,
            }
        )

        self.cache.track_chunks(run.id, len(chunks), len(ids))
        for index, chunk_ids in enumerate(chunks, start=1):
            self.chunk_queue.enqueue(
                PROCESS_CHUNK_JOB,
                run.id,
                chunk_ids,
                job_timeout=self.settings.MRP_CHUNK_JOB_TIMEOUT_SECONDS,
                retry=Retry(max=2, interval=[60, 300]),
            )
            self.cache.update_progress(run.id, 0, len(ids), f"Dispatching chunk {index}/{len(chunks)}")

    # ========================================================================
    # Queries
    # ========================================================================

    def get_run(self, company_id: int, run_id: int) -> MRPRun:
        run = self.db.query(MRPRun).filter(
            MRPRun.id == run_id,
            MRPRun.company_id == company_id,
        ).first()
        if not run:
            raise NotFoundError("MRP run", run_id)
        return run

    def list_runs(
        self,
        company_id: int,
        status: Optional[str] = None,
        from_date: Optional[date] = None,
        to_date: Optional[date] = None,
        offset: int = 0,
        limit: int = 15,
    ) -> Tuple[List[MRPRun], int]:
        query = self.db.query(MRPRun).filter(MRPRun.company_id == company_id)
        if status:
            query = query.filter(MRPRun.status == status)
        if from_date:
            query = query.filter(MRPRun.created_at >= datetime.combine(from_date, time.min))
        if to_date:
            query = query.filter(MRPRun.created_at < datetime.combine(to_date + timedelta(days=1), time.min))

        total = query.count()
        runs = query.order_by(MRPRun.created_at.desc(), MRPRun.id.desc()).offset(offset).limit(limit).all()
        return runs, total

    def get_run_progress(self, run: MRPRun) -> Optional[dict]:
        """Live progress while running (or while parallel chunks are still out)."""
        if run.status not in (RUN_RUNNING, RUN_COMPLETED):
            return None
        return self.cache.get_progress(run.id)

    # ========================================================================
    # Cache hooks
    # ========================================================================

    def invalidate_cache(self, company_id: int) -> int:
        """Call when BOMs or product structures change outside BOMService."""
        deleted = self.cache.invalidate_company_cache(company_id)
        self.cache.invalidate_low_level_codes(company_id)
        logger.info("MRP cache invalidated", extra={"company_id": company_id})
        return deleted

    def mark_products_dirty(self, company_id: int, product_ids: List[int]) -> int:
        ids = [
            pid for (pid,) in self.db.query(Product.id).filter(
                Product.company_id == company_id,
                Product.id.in_(product_ids),
            ).all()
        ]
        self.cache.dirty_products(company_id).mark(*ids)
        return len(ids)

    def generate_run_number(self, company_id: int) -> str:
        """MRP-YYYYMMDD-CCC-NNN, sequential per company per day"""
        prefix = f"MRP-{date.today():%Y%m%d}-{company_id:03d}-"
        numbers = self.db.query(MRPRun.run_number).filter(
            MRPRun.company_id == company_id,
            MRPRun.run_number.like(f"{prefix}%"),
        ).all()

        last = 0
        for (number,) in numbers:
            suffix = number[len(prefix):]
            if suffix.isdigit():
                last = max(last, int(suffix))
        return f"{prefix}{last + 1:03d}"

    # ========================================================================
    # Helper Methods
    # ========================================================================

    def _create_run(self, company_id: int, params: Dict[str, Any], user_id: Optional[int]) -> MRPRun:
        start = params.get("planning_horizon_start") or date.today()
        end = params.get("planning_horizon_end") or start + timedelta(days=self.settings.MRP_DEFAULT_HORIZON_DAYS)

        options = {
            key: default if params.get(key) is None else bool(params[key])
            for key, default in RUN_OPTION_DEFAULTS.items()
        }

        run = MRPRun(
            company_id=company_id,
            run_number=self.generate_run_number(company_id),
            name=params.get("name"),
            planning_horizon_start=start,
            planning_horizon_end=end,
            product_filters=params.get("product_filters") or None,
            warehouse_filters=params.get("warehouse_filters") or None,
            status=RUN_PENDING,
            created_by=user_id,
            **options,
        )
        self.db.add(run)
        self.db.commit()
        self.db.refresh(run)
        return run

    def _prepare_context(self, ctx: RunContext, product_ids: List[int]) -> None:
        run = ctx.run
        ctx.preloaded = DemandSupplyAggregator(self.db, run.company_id).preload(
            product_ids,
            run.planning_horizon_start,
            run.planning_horizon_end,
            consider_wip=run.consider_wip,
            warehouse_filters=run.warehouse_filters,
        )
        ctx.calendar = WorkingCalendar(self.db, run.company_id)
        ctx.generator = RecommendationGenerator(self.db, run, ctx.calendar)

    def _explode_cached(self, product: Product, bom: BOM, quantity: Decimal) -> List[MaterialLine]:
        cached = self.cache.get_cached_bom_explosion(product.id, quantity)
        if cached is not None:
            return [MaterialLine.from_dict(m) for m in cached]

        materials = self.bom_service.explode_bom(bom, quantity).unwrap()
        self.cache.cache_bom_explosion(product.id, quantity, [m.to_dict() for m in materials])
        return materials

    def _fail_run(self, ctx: RunContext, error: Exception) -> None:
        message = getattr(error, "message", None) or str(error)
        lines = ctx.warning_lines()
        if lines:
            message += "\n\nWarnings:\n" + "\n".join(lines)
        ctx.run.mark_as_failed(message)
        self.db.commit()

    def _active_product_count(self, company_id: int) -> int:
        return self.db.query(Product.id).filter(
            Product.company_id == company_id,
            Product.is_active.is_(True),
        ).count()


def _merge_warnings(existing: Optional[List[dict]], new: List[dict]) -> List[dict]:
    """Fold chunk warning buckets into the run's summary by type."""
    merged: Dict[str, dict] = {w["type"]: dict(w) for w in existing or []}
    examples_cap = get_settings().MRP_WARNING_EXAMPLES
    for warning in new:
        current = merged.get(warning["type"])
        if current is None:
            merged[warning["type"]] = dict(warning)
            continue
        current["count"] = int(current.get("count", 1)) + int(warning.get("count", 1))
        if "examples" in warning:
            current["examples"] = (current.get("examples", []) + warning["examples"])[:examples_cap]
    return list(merged.values())
