"""Structured business data rendered as text documents.

Deprecated: operational numbers embedded here go stale between refreshes.
Answer-time lookups against the live business services are preferred; this
path is kept so existing tenants can still be indexed the old way.
"""

import json
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping

import structlog
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from tenant_rag.core.exceptions import StoreError, ValidationError
from tenant_rag.database.connection import DatabaseManager

logger = structlog.get_logger(__name__)

BUSINESS_SOURCES = (
    "company-identity",
    "warehouses-locations",
    "products-catalog",
    "inventory-summary",
    "suppliers",
    "customers",
    "orders-analytics",
)

COMPANY_QUERY = text(
    'SELECT name, "displayName", description, industry, website, address, email, phone, size, "businessType" '
    "FROM companies WHERE id = :company_id"
)

LOCATIONS_QUERY = text(
    'SELECT name, type, address, "managerName", "isActive" '
    'FROM company_locations WHERE "companyId" = :company_id AND "isActive" = true'
)

PRODUCTS_QUERY = text(
    'SELECT name, sku, description, "categoryName", "brandName", "sellingPrice", "costPrice", '
    'status, "minStockLevel", "reorderPoint" '
    "FROM products WHERE \"companyId\" = :company_id AND status = 'ACTIVE' "
    'ORDER BY "createdAt" DESC LIMIT 30'
)

INVENTORY_SUMMARY_QUERY = text(
    "SELECT COUNT(DISTINCT p.id) AS total_products, "
    "COUNT(DISTINCT ii.id) AS total_inventory_items, "
    "COALESCE(SUM(ii.quantity), 0) AS total_stock, "
    'COALESCE(SUM(ii."availableQuantity"), 0) AS available_stock, '
    'COALESCE(SUM(ii."reservedQuantity"), 0) AS reserved_stock '
    'FROM products p LEFT JOIN inventory_items ii ON p.id = ii."productId" '
    'WHERE p."companyId" = :company_id'
)

TOP_ITEMS_QUERY = text(
    "SELECT p.name, p.sku, COALESCE(SUM(ii.quantity), 0) AS total_quantity, "
    'COALESCE(SUM(ii."availableQuantity"), 0) AS available_quantity, p."sellingPrice" '
    'FROM products p LEFT JOIN inventory_items ii ON p.id = ii."productId" '
    'WHERE p."companyId" = :company_id '
    'GROUP BY p.id, p.name, p.sku, p."sellingPrice" '
    "ORDER BY total_quantity DESC LIMIT 20"
)

LOW_STOCK_QUERY = text(
    "SELECT p.name, p.sku, COALESCE(SUM(ii.quantity), 0) AS current_stock, "
    'p."minStockLevel", p."reorderPoint" '
    'FROM products p LEFT JOIN inventory_items ii ON p.id = ii."productId" '
    'WHERE p."companyId" = :company_id '
    'GROUP BY p.id, p.name, p.sku, p."minStockLevel", p."reorderPoint" '
    'HAVING COALESCE(SUM(ii.quantity), 0) < p."minStockLevel" '
    "ORDER BY current_stock ASC LIMIT 20"
)

SUPPLIERS_QUERY = text(
    'SELECT name, code, email, phone, website, status, "contactName", "paymentTerms", rating, "onTimeDelivery" '
    "FROM suppliers WHERE \"companyId\" = :company_id AND status = 'ACTIVE' "
    "ORDER BY name LIMIT 30"
)

CUSTOMERS_QUERY = text(
    'SELECT "customerNumber", type, "firstName", "lastName", "companyName", email, phone, status, '
    '"creditLimit", "paymentTerms" '
    "FROM customers WHERE \"companyId\" = :company_id AND status = 'ACTIVE' "
    'ORDER BY "createdAt" DESC LIMIT 30'
)

ORDERS_SUMMARY_QUERY = text(
    'SELECT COUNT(*) AS total_orders, COALESCE(SUM("totalAmount"), 0) AS total_revenue, '
    "COUNT(CASE WHEN status = 'PENDING' THEN 1 END) AS pending_orders, "
    "COUNT(CASE WHEN status = 'PROCESSING' THEN 1 END) AS processing_orders, "
    "COUNT(CASE WHEN status = 'COMPLETED' THEN 1 END) AS completed_orders, "
    "COUNT(CASE WHEN status = 'CANCELLED' THEN 1 END) AS cancelled_orders "
    'FROM orders WHERE "companyId" = :company_id'
)

RECENT_ORDERS_QUERY = text(
    'SELECT "orderNumber", status, "fulfillmentStatus", "paymentStatus", "totalAmount", "orderDate" '
    'FROM orders WHERE "companyId" = :company_id ORDER BY "orderDate" DESC LIMIT 20'
)


@dataclass
class BusinessDocument:
    """One synthesized text document and the source name it is stored under."""
    source: str
    content: str


def _value(row: Mapping[str, Any], key: str, default: Any = "N/A") -> Any:
    value = row.get(key)
    return default if value in (None, "") else value


def _address(value: Any) -> str:
    if value in (None, ""):
        return "N/A"
    return value if isinstance(value, str) else json.dumps(value, default=str)


def render_company_identity(profile: Mapping[str, Any]) -> str:
    name = _value(profile, "name", "Unknown Company")
    industry = _value(profile, "industry")
    lines = [
        "Company Identity & Overview:",
        "==================================",
        f"Company Name: {name}",
        "",
        "Company Profile Details:",
        f"- Name: {name}",
        f"- Display Name: {_value(profile, 'displayName', name)}",
        f"- Description: {_value(profile, 'description')}",
        f"- Industry: {industry}",
        f"- Website: {_value(profile, 'website')}",
        f"- Email: {_value(profile, 'email')}",
        f"- Phone: {_value(profile, 'phone')}",
        f"- Address: {_address(profile.get('address'))}",
        f"- Company Size: {_value(profile, 'size')}",
        f"- Business Type: {_value(profile, 'businessType')}",
        "",
        f"This is {name}, operating in the {industry} industry.",
    ]
    return "\n".join(lines)


def render_locations(header: str, company_name: str, locations: List[Mapping[str, Any]]) -> str:
    blocks = [
        header,
        f"Company Locations and Warehouses for {company_name}:\nTotal Active Locations: {len(locations)}",
    ]
    for loc in locations:
        blocks.append(
            f"- Location: {loc.get('name')}\n"
            f"  Type: {_value(loc, 'type')}\n"
            f"  Address: {_address(loc.get('address'))}\n"
            f"  Manager: {_value(loc, 'managerName')}\n"
            f"  Status: {'Active' if loc.get('isActive') else 'Inactive'}"
        )
    return "\n\n".join(blocks)


def render_products(header: str, company_name: str, products: List[Mapping[str, Any]]) -> str:
    blocks = [header, f"Products Catalog for {company_name}:\nTotal Active Products: {len(products)}"]
    for prod in products:
        lines = [
            f"- Product: {prod.get('name')} (SKU: {prod.get('sku')})",
            f"  Category: {_value(prod, 'categoryName')}",
            f"  Brand: {_value(prod, 'brandName')}",
            f"  Selling Price: ${_value(prod, 'sellingPrice', 0)}",
            f"  Cost Price: ${_value(prod, 'costPrice', 0)}",
            f"  Min Stock Level: {_value(prod, 'minStockLevel', 0)}",
            f"  Reorder Point: {_value(prod, 'reorderPoint', 0)}",
            f"  Status: {prod.get('status')}",
        ]
        if prod.get("description"):
            lines.append(f"  Description: {prod['description']}")
        blocks.append("\n".join(lines))
    return "\n\n".join(blocks)


def render_inventory(
    header: str,
    company_name: str,
    summary: Mapping[str, Any],
    top_items: List[Mapping[str, Any]],
    low_stock: List[Mapping[str, Any]],
) -> str:
    blocks = [
        header,
        "\n".join(
            [
                f"Inventory Summary for {company_name}:",
                f"Total Products: {_value(summary, 'total_products', 0)}",
                f"Total Inventory Items: {_value(summary, 'total_inventory_items', 0)}",
                f"Total Stock Quantity: {_value(summary, 'total_stock', 0)}",
                f"Available Stock: {_value(summary, 'available_stock', 0)}",
                f"Reserved Stock: {_value(summary, 'reserved_stock', 0)}",
            ]
        ),
    ]
    if top_items:
        blocks.append(
            "Top Inventory Items by Stock:\n"
            + "\n".join(
                f"- {item.get('name')} ({item.get('sku')}): {item.get('total_quantity')} units "
                f"({item.get('available_quantity')} available) @ ${_value(item, 'sellingPrice', 0)}"
                for item in top_items
            )
        )
    if low_stock:
        blocks.append(
            f"Low Stock Alerts ({len(low_stock)} items):\n"
            + "\n".join(
                f"- {item.get('name')} ({item.get('sku')}): {item.get('current_stock')} units "
                f"(Min: {item.get('minStockLevel')}, Reorder: {item.get('reorderPoint')})"
                for item in low_stock
            )
        )
    return "\n\n".join(blocks)


def render_suppliers(header: str, company_name: str, suppliers: List[Mapping[str, Any]]) -> str:
    blocks = [header, f"Suppliers Directory for {company_name}:\nTotal Active Suppliers: {len(suppliers)}"]
    for sup in suppliers:
        on_time = sup.get("onTimeDelivery")
        on_time_text = f"{float(on_time) * 100:.1f}%" if on_time else "N/A"
        blocks.append(
            f"- Supplier: {sup.get('name')} (Code: {sup.get('code')})\n"
            f"  Contact: {_value(sup, 'contactName')}\n"
            f"  Email: {_value(sup, 'email')}\n"
            f"  Phone: {_value(sup, 'phone')}\n"
            f"  Website: {_value(sup, 'website')}\n"
            f"  Payment Terms: {_value(sup, 'paymentTerms')}\n"
            f"  Rating: {_value(sup, 'rating')}/5\n"
            f"  On-Time Delivery: {on_time_text}\n"
            f"  Status: {sup.get('status')}"
        )
    return "\n\n".join(blocks)


def render_customers(header: str, company_name: str, customers: List[Mapping[str, Any]]) -> str:
    blocks = [header, f"Customers Directory for {company_name}:\nTotal Active Customers: {len(customers)}"]
    for cust in customers:
        if cust.get("type") == "COMPANY":
            name = cust.get("companyName") or "N/A"
        else:
            name = f"{cust.get('firstName') or ''} {cust.get('lastName') or ''}".strip() or "N/A"
        blocks.append(
            f"- Customer #{cust.get('customerNumber')}\n"
            f"  Name: {name}\n"
            f"  Type: {cust.get('type')}\n"
            f"  Email: {_value(cust, 'email')}\n"
            f"  Phone: {_value(cust, 'phone')}\n"
            f"  Credit Limit: ${_value(cust, 'creditLimit', 0)}\n"
            f"  Payment Terms: {_value(cust, 'paymentTerms')}\n"
            f"  Status: {cust.get('status')}"
        )
    return "\n\n".join(blocks)


def render_orders(
    header: str,
    company_name: str,
    summary: Mapping[str, Any],
    recent: List[Mapping[str, Any]],
) -> str:
    revenue = float(_value(summary, "total_revenue", 0))
    blocks = [
        header,
        "\n".join(
            [
                f"Orders Analytics for {company_name}:",
                f"Total Orders: {_value(summary, 'total_orders', 0)}",
                f"Total Revenue: ${revenue:,.2f}",
                f"Pending Orders: {_value(summary, 'pending_orders', 0)}",
                f"Processing Orders: {_value(summary, 'processing_orders', 0)}",
                f"Completed Orders: {_value(summary, 'completed_orders', 0)}",
                f"Cancelled Orders: {_value(summary, 'cancelled_orders', 0)}",
            ]
        ),
    ]
    if recent:
        blocks.append(
            "Recent Orders:\n"
            + "\n".join(
                f"- Order {order.get('orderNumber')}: ${order.get('totalAmount')} - {order.get('status')} "
                f"(Fulfillment: {order.get('fulfillmentStatus')}, Payment: {order.get('paymentStatus')}) "
                f"- Date: {_date(order.get('orderDate'))}"
                for order in recent
            )
        )
    return "\n\n".join(blocks)


def _date(value: Any) -> str:
    if value is None:
        return "N/A"
    return value.date().isoformat() if hasattr(value, "date") else str(value)


class BusinessDataSource:
    """Reads a tenant's operational data and renders it as documents."""

    def __init__(self, db_manager: DatabaseManager):
        self.db_manager = db_manager

    async def _rows(self, session, query, company_id: str) -> List[Dict[str, Any]]:
        result = await session.execute(query, {"company_id": company_id})
        return [dict(row) for row in result.mappings().all()]

    async def build_documents(self, company_id: str) -> List[BusinessDocument]:
        """Query the business database and render one document per aspect.

        Raises:
            ValidationError: If the company does not exist
            StoreError: If the business database cannot be read
        """
        try:
            async with self.db_manager.business_session() as session:
                profiles = await self._rows(session, COMPANY_QUERY, company_id)
                if not profiles:
                    raise ValidationError(f"Company not found with ID: {company_id}")
                profile = profiles[0]

                locations = await self._rows(session, LOCATIONS_QUERY, company_id)
                products = await self._rows(session, PRODUCTS_QUERY, company_id)
                inventory = await self._rows(session, INVENTORY_SUMMARY_QUERY, company_id)
                top_items = await self._rows(session, TOP_ITEMS_QUERY, company_id)
                low_stock = await self._rows(session, LOW_STOCK_QUERY, company_id)
                suppliers = await self._rows(session, SUPPLIERS_QUERY, company_id)
                customers = await self._rows(session, CUSTOMERS_QUERY, company_id)
                orders = await self._rows(session, ORDERS_SUMMARY_QUERY, company_id)
                recent_orders = await self._rows(session, RECENT_ORDERS_QUERY, company_id)
        except SQLAlchemyError as e:
            raise StoreError("business data read", str(e), details={"company_id": company_id}) from e

        company_name = _value(profile, "name", "Unknown Company")
        header = f"Company: {company_name} | Industry: {_value(profile, 'industry')}"

        documents = [BusinessDocument("company-identity", render_company_identity(profile))]
        if locations:
            documents.append(
                BusinessDocument("warehouses-locations", render_locations(header, company_name, locations))
            )
        if products:
            documents.append(BusinessDocument("products-catalog", render_products(header, company_name, products)))
        documents.append(
            BusinessDocument(
                "inventory-summary",
                render_inventory(header, company_name, inventory[0] if inventory else {}, top_items, low_stock),
            )
        )
        if suppliers:
            documents.append(BusinessDocument("suppliers", render_suppliers(header, company_name, suppliers)))
        if customers:
            documents.append(BusinessDocument("customers", render_customers(header, company_name, customers)))
        documents.append(
            BusinessDocument(
                "orders-analytics",
                render_orders(header, company_name, orders[0] if orders else {}, recent_orders),
            )
        )

        logger.info(
            "Business documents built",
            company_id=company_id,
            documents=[doc.source for doc in documents],
        )
        return documents
