"""
Low-Level Code calculation

A product's low-level code is the deepest level at which it appears as a
component across all active BOMs (finished goods are 0). Processing products
in ascending low-level code guarantees all dependent demand for a product has
been pushed down before the product itself is planned.
"""
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy.orm import Session, aliased

from app.core.settings import get_settings
from app.logging_config import get_logger
from app.models import BOM, BOMItem, Product
from app.services.mrp_cache import MRPCacheService

logger = get_logger(__name__)

LLC_WARNING_KEY = "llc_calculation_warning"
LLC_WARNING_MESSAGE = (
    "Low-Level Code calculation reached maximum iterations. Possible circular BOM reference."
)


@dataclass
class LowLevelCodeResult:
    codes: Dict[int, int]
    iterations: int
    converged: bool
    from_cache: bool = False

    @property
    def warning(self) -> Optional[dict]:
        """Aggregated run warning when the relaxation hit its iteration cap."""
        if self.converged:
            return None
        return {
            "type": "Low-Level Code Calculation Warning",
            "count": 1,
            "message": LLC_WARNING_MESSAGE,
        }


def relax_low_level_codes(
    product_ids: Iterable[int],
    edges: List[Tuple[int, int]],
    max_iterations: int = 100,
) -> LowLevelCodeResult:
    """
    Fixed-point relaxation over (parent_id, component_id) edges.

    Every product starts at 0; each pass raises a component to parent + 1
    where needed. Stops on a pass with no change or after max_iterations
    passes (a cycle never settles, so the cap is what ends it).
    """
    codes = {pid: 0 for pid in product_ids}
    changed = True
    iterations = 0

    while changed and iterations < max_iterations:
        changed = False
        iterations += 1
        for parent_id, component_id in edges:
            if parent_id not in codes or component_id not in codes:
                continue
            required = codes[parent_id] + 1
            if required > codes[component_id]:
                codes[component_id] = required
                changed = True

    return LowLevelCodeResult(codes=codes, iterations=iterations, converged=not changed)


def load_bom_edges(db: Session, company_id: int) -> List[Tuple[int, int]]:
    """Parent -> component edges of all active BOMs where both ends are active products"""
    parent = aliased(Product)
    component = aliased(Product)
    rows = (
        db.query(BOM.product_id, BOMItem.component_id)
        .join(BOMItem, BOMItem.bom_id == BOM.id)
        .join(parent, parent.id == BOM.product_id)
        .join(component, component.id == BOMItem.component_id)
        .filter(
            BOM.company_id == company_id,
            BOM.status == "active",
            parent.is_active.is_(True),
            component.is_active.is_(True),
            component.company_id == company_id,
        )
        .order_by(BOM.id, BOMItem.line_number)
        .all()
    )
    return [(int(p), int(c)) for p, c in rows]


def compute_low_level_codes(
    db: Session,
    company_id: int,
    cache: Optional[MRPCacheService] = None,
    use_cache: bool = True,
) -> LowLevelCodeResult:
    """
    Compute (or load from cache) low-level codes for a company and persist
    them to Product.low_level_code.
    """
    settings = get_settings()

    if cache is not None and use_cache:
        cached = cache.get_cached_low_level_codes(company_id)
        if cached is not None:
            _persist_codes(db, company_id, cached, reset=False)
            logger.info(
                f"Low-level codes loaded from cache for company {company_id}",
                extra={"company_id": company_id, "product_count": len(cached)}
            )
            return LowLevelCodeResult(codes=cached, iterations=0, converged=True, from_cache=True)

    product_ids = [
        pid for (pid,) in db.query(Product.id).filter(
            Product.company_id == company_id,
            Product.is_active.is_(True),
        ).all()
    ]
    edges = load_bom_edges(db, company_id)
    result = relax_low_level_codes(product_ids, edges, settings.MRP_LLC_MAX_ITERATIONS)

    _persist_codes(db, company_id, result.codes, reset=True)

    if result.converged:
        # Best-effort codes from a non-converged pass are not worth caching
        if cache is not None:
            cache.cache_low_level_codes(company_id, result.codes)
        logger.info(
            f"Low-level codes calculated for company {company_id} in {result.iterations} passes",
            extra={"company_id": company_id, "iterations": result.iterations, "edge_count": len(edges)}
        )
    else:
        logger.warning(
            f"Low-level code calculation hit {result.iterations} iterations for company {company_id}",
            extra={"company_id": company_id, "iterations": result.iterations}
        )

    return result


def _persist_codes(db: Session, company_id: int, codes: Dict[int, int], reset: bool) -> None:
    if reset:
        db.query(Product).filter(Product.company_id == company_id).update(
            {Product.low_level_code: 0}, synchronize_session=False
        )

    by_level: Dict[int, List[int]] = {}
    for product_id, level in codes.items():
        if level or not reset:
            by_level.setdefault(level, []).append(product_id)

    for level, ids in by_level.items():
        db.query(Product).filter(
            Product.company_id == company_id,
            Product.id.in_(ids),
        ).update({Product.low_level_code: level}, synchronize_session=False)

    db.flush()
    db.expire_all()
