"""
BOM Service

Bill of materials explosion and structure maintenance:
1. Explosion - recursively expand a BOM for a quantity into component lines
   (phantoms are exploded through, optional items skipped unless requested)
2. Cycle protection - path-based visited set plus a hard depth cap
3. Structure changes - add/update/remove items, activate, obsolete, set default.
   Every change validates cycles, invalidates MRP caches and marks the
   parent product dirty for incremental MRP.
"""
from dataclasses import dataclass, field, asdict
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, FrozenSet, List, Optional

from sqlalchemy.orm import Session

from app.core.settings import get_settings
from app.exceptions import (
    BusinessRuleError,
    CircularReferenceError,
    InvalidStateError,
    MaxDepthExceededError,
    NotFoundError,
)
from app.logging_config import get_logger
from app.models import BOM, BOMItem
from app.services.mrp_cache import MRPCacheService

logger = get_logger(__name__)

QTY_PLACES = Decimal("0.0001")

# Allowed BOM status transitions
BOM_TRANSITIONS = {
    "draft": ("active",),
    "active": ("obsolete", "draft"),
    "obsolete": ("draft",),
}


def round_qty(value: Decimal) -> Decimal:
    return Decimal(value).quantize(QTY_PLACES, rounding=ROUND_HALF_UP)


# ============================================================================
# Data Classes for BOM Explosion
# ============================================================================

@dataclass
class MaterialLine:
    """A single component requirement produced by BOM explosion"""
    product_id: int
    product_sku: str
    quantity: Decimal
    uom: Optional[str]
    level: int
    bom_id: int
    bom_number: str
    bom_item_id: int
    is_phantom: bool = False
    is_optional: bool = False
    scrap_percentage: Decimal = Decimal("0")
    parent_product_id: Optional[int] = None
    has_children: bool = False

    def to_dict(self) -> dict:
        data = asdict(self)
        data["quantity"] = str(self.quantity)
        data["scrap_percentage"] = str(self.scrap_percentage)
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "MaterialLine":
        values = dict(data)
        values["quantity"] = Decimal(str(values["quantity"]))
        values["scrap_percentage"] = Decimal(str(values.get("scrap_percentage") or 0))
        return cls(**values)


@dataclass
class ExplosionResult:
    """Either the exploded materials or the structural error that stopped explosion"""
    materials: List[MaterialLine] = field(default_factory=list)
    error: Optional[BusinessRuleError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> List[MaterialLine]:
        if self.error is not None:
            raise self.error
        return self.materials


# ============================================================================
# BOM Service
# ============================================================================

class BOMService:
    """Explosion and structure maintenance for bills of materials"""

    def __init__(self, db: Session, cache: Optional[MRPCacheService] = None):
        self.db = db
        self._cache = cache

    @property
    def cache(self) -> MRPCacheService:
        if self._cache is None:
            self._cache = MRPCacheService()
        return self._cache

    # ========================================================================
    # Lookups
    # ========================================================================

    def get_default_bom_for_product(self, product_id: int) -> Optional[BOM]:
        """Default BOM = is_default and active"""
        return self.db.query(BOM).filter(
            BOM.product_id == product_id,
            BOM.is_default.is_(True),
            BOM.status == "active",
        ).first()

    def get_bom(self, bom_id: int, company_id: Optional[int] = None) -> BOM:
        query = self.db.query(BOM).filter(BOM.id == bom_id)
        if company_id is not None:
            query = query.filter(BOM.company_id == company_id)
        bom = query.first()
        if not bom:
            raise NotFoundError("BOM", bom_id)
        return bom

    def get_bom_structure(self, bom: BOM) -> dict:
        """Serializable view of a BOM and its items (read-through cached)."""
        cached = self.cache.get_cached_bom_structure(bom.id)
        if cached is not None:
            return cached

        structure = {
            "id": bom.id,
            "bom_number": bom.bom_number,
            "product_id": bom.product_id,
            "status": bom.status,
            "is_default": bool(bom.is_default),
            "quantity": str(bom.quantity),
            "items": [
                {
                    "id": item.id,
                    "line_number": item.line_number,
                    "component_id": item.component_id,
                    "component_sku": item.component.sku if item.component else None,
                    "quantity": str(item.quantity),
                    "unit": item.unit,
                    "scrap_percentage": str(item.scrap_percentage or 0),
                    "is_optional": bool(item.is_optional),
                    "is_phantom": bool(item.is_phantom),
                }
                for item in bom.items
            ],
        }
        self.cache.cache_bom_structure(bom.id, structure)
        return structure

    # ========================================================================
    # Explosion
    # ========================================================================

    def explode_bom(
        self,
        bom: BOM,
        quantity: Decimal = Decimal("1"),
        max_depth: Optional[int] = None,
        include_optional: bool = False,
        explode_all_levels: bool = False,
    ) -> ExplosionResult:
        """
        Explode a BOM for a requested quantity.

        Phantom items are replaced by their own default BOM's components.
        With explode_all_levels, every component that has a default BOM is
        also expanded (its own line is kept and flagged has_children).

        Structural problems (cycles, depth overrun) are returned on the result
        rather than raised, so callers choose between skip-and-warn and abort.
        """
        if max_depth is None:
            max_depth = get_settings().MRP_MAX_EXPLOSION_DEPTH

        try:
            materials = self._explode_recursive(
                bom=bom,
                quantity=Decimal(str(quantity)),
                level=0,
                max_depth=max_depth,
                visited=frozenset(),
                include_optional=include_optional,
                explode_all_levels=explode_all_levels,
                parent_product_id=None,
            )
        except (CircularReferenceError, MaxDepthExceededError) as e:
            logger.warning(
                f"BOM explosion failed for {bom.bom_number}: {e.message}",
                extra={"bom_id": bom.id, "error_code": e.error_code}
            )
            return ExplosionResult(error=e)

        return ExplosionResult(materials=materials)

    def _explode_recursive(
        self,
        bom: BOM,
        quantity: Decimal,
        level: int,
        max_depth: int,
        visited: FrozenSet[int],
        include_optional: bool,
        explode_all_levels: bool,
        parent_product_id: Optional[int],
    ) -> List[MaterialLine]:
        if level > max_depth:
            raise MaxDepthExceededError(max_depth, details={"bom_number": bom.bom_number})

        if bom.id in visited:
            raise CircularReferenceError(bom.bom_number)

        path = visited | {bom.id}
        batch_qty = Decimal(str(bom.quantity or 1)) or Decimal("1")
        ratio = quantity / batch_qty

        materials: List[MaterialLine] = []
        for item in bom.items:
            if item.is_optional and not include_optional:
                continue

            scrap = Decimal(str(item.scrap_percentage or 0))
            required_qty = Decimal(str(item.quantity)) * ratio * (1 + scrap / 100)

            child_bom = None
            if item.is_phantom or explode_all_levels:
                child_bom = self.get_default_bom_for_product(item.component_id)

            if child_bom is not None and not item.is_phantom:
                line = self._material_line(item, bom, required_qty, level, parent_product_id)
                line.has_children = True
                materials.append(line)

            if child_bom is not None:
                materials.extend(self._explode_recursive(
                    bom=child_bom,
                    quantity=required_qty,
                    level=level + 1,
                    max_depth=max_depth,
                    visited=path,
                    include_optional=include_optional,
                    explode_all_levels=explode_all_levels,
                    parent_product_id=item.component_id,
                ))
            else:
                # No sub-BOM (or not exploding): a raw requirement
                materials.append(self._material_line(item, bom, required_qty, level, parent_product_id))

        return materials

    def _material_line(
        self,
        item: BOMItem,
        bom: BOM,
        quantity: Decimal,
        level: int,
        parent_product_id: Optional[int],
    ) -> MaterialLine:
        return MaterialLine(
            product_id=item.component_id,
            product_sku=item.component.sku if item.component else "",
            quantity=round_qty(quantity),
            uom=item.unit,
            level=level,
            bom_id=bom.id,
            bom_number=bom.bom_number,
            bom_item_id=item.id,
            is_phantom=bool(item.is_phantom),
            is_optional=bool(item.is_optional),
            scrap_percentage=Decimal(str(item.scrap_percentage or 0)),
            parent_product_id=parent_product_id,
        )

    def aggregate_materials_by_product(self, materials: List[MaterialLine]) -> List[dict]:
        """
        Sum quantities per component product.

        Components reached through more than one BOM keep a 'sources' list;
        the deepest level seen is kept.
        """
        aggregated: Dict[int, dict] = {}
        for material in materials:
            source = {
                "bom_id": material.bom_id,
                "bom_number": material.bom_number,
                "level": material.level,
                "quantity": material.quantity,
            }
            entry = aggregated.get(material.product_id)
            if entry is None:
                aggregated[material.product_id] = {
                    "product_id": material.product_id,
                    "product_sku": material.product_sku,
                    "quantity": material.quantity,
                    "uom": material.uom,
                    "level": material.level,
                    "sources": [source],
                }
                continue

            entry["quantity"] += material.quantity
            entry["sources"].append(source)
            entry["level"] = max(entry["level"], material.level)

        result = []
        for entry in aggregated.values():
            entry["quantity"] = round_qty(entry["quantity"])
            if len(entry["sources"]) == 1:
                del entry["sources"]
            result.append(entry)
        return result

    def validate_no_circular_reference(
        self,
        parent_product_id: int,
        component_id: int,
        visited: Optional[FrozenSet[int]] = None,
    ) -> None:
        """Raise CircularReferenceError if component (transitively) contains parent."""
        if parent_product_id == component_id:
            raise CircularReferenceError(message="A product cannot be a component of itself.")

        visited = visited or frozenset()
        if component_id in visited:
            raise CircularReferenceError()

        path = visited | {component_id}
        component_boms = self.db.query(BOM).filter(
            BOM.product_id == component_id,
            BOM.status == "active",
        ).all()
        for bom in component_boms:
            for item in bom.items:
                self.validate_no_circular_reference(parent_product_id, item.component_id, path)

    # ========================================================================
    # Structure maintenance
    # ========================================================================

    def add_item(self, bom: BOM, component_id: int, quantity: Decimal, **fields) -> BOMItem:
        self._require_editable(bom)
        self.validate_no_circular_reference(bom.product_id, component_id)

        next_line = max((i.line_number or 0 for i in bom.items), default=0) + 1
        item = BOMItem(
            bom_id=bom.id,
            component_id=component_id,
            quantity=quantity,
            line_number=fields.pop("line_number", None) or next_line,
            **fields,
        )
        self.db.add(item)
        self.db.flush()
        self.db.refresh(bom)

        logger.info(
            f"Added component {component_id} to BOM {bom.bom_number}",
            extra={"bom_id": bom.id, "component_id": component_id}
        )
        self._structure_changed(bom)
        return item

    def update_item(self, bom: BOM, item_id: int, **fields) -> BOMItem:
        self._require_editable(bom)
        item = self._get_item(bom, item_id)

        new_component = fields.get("component_id")
        if new_component is not None and new_component != item.component_id:
            self.validate_no_circular_reference(bom.product_id, new_component)

        for key, value in fields.items():
            setattr(item, key, value)
        self.db.flush()

        logger.info(
            f"Updated item {item_id} on BOM {bom.bom_number}",
            extra={"bom_id": bom.id, "item_id": item_id}
        )
        self._structure_changed(bom)
        return item

    def remove_item(self, bom: BOM, item_id: int) -> None:
        self._require_editable(bom)
        item = self._get_item(bom, item_id)
        self.db.delete(item)
        self.db.flush()
        self.db.refresh(bom)

        logger.info(
            f"Removed item {item_id} from BOM {bom.bom_number}",
            extra={"bom_id": bom.id, "item_id": item_id}
        )
        self._structure_changed(bom)

    def activate(self, bom: BOM) -> BOM:
        self._require_transition(bom, "active")
        if not bom.items:
            raise BusinessRuleError("Cannot activate BOM without items.", rule="bom_has_items")
        for item in bom.items:
            self.validate_no_circular_reference(bom.product_id, item.component_id)

        bom.status = "active"
        self.db.flush()
        logger.info(f"Activated BOM {bom.bom_number}", extra={"bom_id": bom.id})
        self._structure_changed(bom)
        return bom

    def obsolete(self, bom: BOM) -> BOM:
        self._require_transition(bom, "obsolete")
        bom.status = "obsolete"
        bom.is_default = False
        self.db.flush()
        logger.info(f"Marked BOM {bom.bom_number} obsolete", extra={"bom_id": bom.id})
        self._structure_changed(bom)
        return bom

    def set_as_default(self, bom: BOM) -> BOM:
        if bom.status != "active":
            raise InvalidStateError(
                "Only active BOMs can be set as default.",
                current_state=bom.status,
                allowed_states=["active"],
            )

        self.db.query(BOM).filter(
            BOM.product_id == bom.product_id,
            BOM.id != bom.id,
        ).update({BOM.is_default: False}, synchronize_session="fetch")
        bom.is_default = True
        self.db.flush()

        logger.info(
            f"Set BOM {bom.bom_number} as default for product {bom.product_id}",
            extra={"bom_id": bom.id, "product_id": bom.product_id}
        )
        self._structure_changed(bom)
        return bom

    # ========================================================================
    # Helper Methods
    # ========================================================================

    def _get_item(self, bom: BOM, item_id: int) -> BOMItem:
        item = self.db.query(BOMItem).filter(
            BOMItem.id == item_id,
            BOMItem.bom_id == bom.id,
        ).first()
        if not item:
            raise NotFoundError("BOM item", item_id)
        return item

    def _require_editable(self, bom: BOM) -> None:
        if bom.status != "draft":
            raise InvalidStateError(
                f"Cannot edit items of BOM {bom.bom_number} in {bom.status} status.",
                current_state=bom.status,
                allowed_states=["draft"],
            )

    def _require_transition(self, bom: BOM, target: str) -> None:
        allowed = BOM_TRANSITIONS.get(bom.status, ())
        if target not in allowed:
            raise InvalidStateError(
                f"Cannot move BOM {bom.bom_number} from {bom.status} to {target}.",
                current_state=bom.status,
                allowed_states=list(allowed),
            )

    def _structure_changed(self, bom: BOM) -> None:
        """Invalidate MRP caches affected by a BOM edit and flag the product for net-change MRP."""
        self.cache.invalidate_low_level_codes(bom.company_id)
        self.cache.invalidate_bom_structure(bom.id)
        # Phantom chains mean any product's explosion may include this BOM
        self.cache.invalidate_bom_explosions()
        self.cache.mark_product_dirty(bom.company_id, bom.product_id)
