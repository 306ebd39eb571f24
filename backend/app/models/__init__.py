"""Database models"""
from app.models.product import Product
from app.models.bom import BOM, BOMItem
from app.models.inventory import Warehouse, Stock
from app.models.sales_order import SalesOrder, SalesOrderItem
from app.models.purchase_order import PurchaseOrder, PurchaseOrderItem
from app.models.work_order import WorkOrder, WorkOrderMaterial
from app.models.supplier import Supplier, SupplierProduct
from app.models.company_calendar import CompanyCalendar
from app.models.company_settings import CompanySettings
from app.models.mrp import MRPRun, MRPRecommendation

__all__ = [
    # Item management
    "Product",
    # Manufacturing
    "BOM",
    "BOMItem",
    "WorkOrder",
    "WorkOrderMaterial",
    # Inventory
    "Warehouse",
    "Stock",
    # Sales
    "SalesOrder",
    "SalesOrderItem",
    # Purchasing
    "Supplier",
    "SupplierProduct",
    "PurchaseOrder",
    "PurchaseOrderItem",
    # Calendar & Company Settings
    "CompanyCalendar",
    "CompanySettings",
    # MRP
    "MRPRun",
    "MRPRecommendation",
]
