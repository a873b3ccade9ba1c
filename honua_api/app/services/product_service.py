"""
Marketplace catalogue: products, categories and inventory.

Products come in three types.  Type-specific attributes are kept only
for the matching type (a digital product never stores a weight).
Physical products own a ``product_inventory`` row; every change to it
is mirrored by a ``stock_movements`` entry.
"""

import json
import logging
import sqlite3
from typing import Any, Dict, List, Optional

from honua_api.app.core.db import get_connection, row_to_dict
from honua_api.app.core.errors import ConflictError, NotFoundError, PermissionDeniedError, ValidationError
from honua_api.app.services.audit_service import AuditService

logger = logging.getLogger(__name__)

PRODUCT_TYPES = ("physical", "digital", "service")
EDITABLE_STATUSES = ("active", "inactive", "sold")

TYPE_FIELDS = {
    "physical": ("condition", "weight", "dimensions", "shipping_cost"),
    "digital": ("digital_file_url", "download_limit"),
    "service": ("service_duration", "service_location"),
}
ALL_TYPE_FIELDS = tuple(field for fields in TYPE_FIELDS.values() for field in fields)

COMMON_FIELDS = (
    "title",
    "description",
    "price",
    "green_points_price",
    "category",
    "type",
    "images",
    "tags",
    "location",
    "sustainability_score",
)

PRODUCT_JSON_FIELDS = ("images", "tags", "dimensions")

# seed the inventory row when a product becomes physical
STOCK_FIELDS = ("initial_stock", "low_stock_threshold", "reorder_point")

# sort key -> ORDER BY clause; anything else falls back to created_at
SORT_OPTIONS = {
    "price_low": "p.price ASC",
    "price_high": "p.price DESC",
    "rating": "p.rating DESC, p.created_at DESC",
}

DEFAULT_LOW_STOCK_THRESHOLD = 5


def availability_status(quantity: int, threshold: int) -> str:
    if quantity <= 0:
        return "out_of_stock"
    if quantity <= threshold:
        return "low_stock"
    return "available"


def _threshold(value: Optional[int]) -> int:
    return DEFAULT_LOW_STOCK_THRESHOLD if value is None else value


def _encode(name: str, value: Any) -> Any:
    if name in PRODUCT_JSON_FIELDS and value is not None:
        return json.dumps(value)
    return value


def _type_values(product_type: str, data: Dict[str, Any]) -> Dict[str, Any]:
    """Type-specific columns, with attributes of other types cleared."""
    allowed = TYPE_FIELDS.get(product_type, ())
    return {field: (data.get(field) if field in allowed else None) for field in ALL_TYPE_FIELDS}


class ProductService:
    """Products, categories and stock."""

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _product_dict(row: sqlite3.Row) -> Dict[str, Any]:
        product = row_to_dict(row, json_fields=PRODUCT_JSON_FIELDS)
        if "seller_username" in product:
            product["seller"] = {
                "id": product["seller_id"],
                "username": product.pop("seller_username"),
                "full_name": product.pop("seller_full_name"),
                "avatar_url": product.pop("seller_avatar_url"),
            }
        return product

    @classmethod
    def _load(cls, cursor: sqlite3.Cursor, product_id: int) -> Dict[str, Any]:
        row = cursor.execute(
            """
            SELECT p.*, u.username AS seller_username, u.full_name AS seller_full_name,
                   u.avatar_url AS seller_avatar_url,
                   i.quantity AS stock_quantity, i.availability_status
            FROM marketplace_products p
            JOIN users u ON u.id = p.seller_id
            LEFT JOIN product_inventory i ON i.product_id = p.id
            WHERE p.id = ?
            """,
            (product_id,),
        ).fetchone()
        if not row:
            raise NotFoundError("Product not found")
        return cls._product_dict(row)

    @staticmethod
    def _owned(cursor: sqlite3.Cursor, product_id: int, user_id: int) -> sqlite3.Row:
        row = cursor.execute(
            "SELECT * FROM marketplace_products WHERE id = ? AND status != 'deleted'", (product_id,)
        ).fetchone()
        if not row:
            raise NotFoundError("Product not found")
        if row["seller_id"] != user_id:
            raise PermissionDeniedError("You can only manage your own products")
        return row

    @staticmethod
    def _record_movement(
        cursor: sqlite3.Cursor,
        product_id: int,
        movement_type: str,
        quantity: int,
        notes: Optional[str] = None,
        created_by: Optional[int] = None,
        order_id: Optional[int] = None,
    ) -> None:
        cursor.execute(
            """
            INSERT INTO stock_movements (product_id, order_id, movement_type, quantity, notes, created_by)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (product_id, order_id, movement_type, quantity, notes, created_by),
        )

    @classmethod
    def _set_stock(
        cls,
        cursor: sqlite3.Cursor,
        product_id: int,
        quantity: int,
        threshold: int,
        user_id: Optional[int],
        reorder_point: Optional[int] = None,
    ) -> None:
        status = availability_status(quantity, threshold)
        cursor.execute(
            """
            INSERT INTO product_inventory (product_id, quantity, low_stock_threshold, reorder_point, availability_status)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(product_id) DO UPDATE SET
                quantity = excluded.quantity,
                low_stock_threshold = excluded.low_stock_threshold,
                reorder_point = excluded.reorder_point,
                availability_status = excluded.availability_status,
                updated_at = CURRENT_TIMESTAMP
            """,
            (product_id, quantity, threshold, reorder_point if reorder_point is not None else threshold, status),
        )
        cls._record_movement(cursor, product_id, "adjustment", quantity, "Stock level set", user_id)

    @classmethod
    def _adjust_stock(
        cls,
        cursor: sqlite3.Cursor,
        product_id: int,
        delta: int,
        movement_type: str,
        order_id: Optional[int] = None,
        user_id: Optional[int] = None,
    ) -> None:
        """Move ``delta`` units between available and reserved stock.

        A negative ``delta`` reserves units for an order; a positive one
        releases them again.  Availability is recomputed either way.
        """
        inventory = cursor.execute(
            "SELECT * FROM product_inventory WHERE product_id = ?", (product_id,)
        ).fetchone()
        if not inventory:
            return
        quantity = inventory["quantity"] + delta
        reserved = max(inventory["reserved_quantity"] - delta, 0)
        cursor.execute(
            """
            UPDATE product_inventory
            SET quantity = ?, reserved_quantity = ?, availability_status = ?, updated_at = CURRENT_TIMESTAMP
            WHERE product_id = ?
            """,
            (quantity, reserved, availability_status(quantity, inventory["low_stock_threshold"]), product_id),
        )
        cls._record_movement(cursor, product_id, movement_type, abs(delta), None, user_id, order_id)

    # ------------------------------------------------------------------
    # products
    # ------------------------------------------------------------------

    @classmethod
    async def list_products(
        cls,
        page: int = 1,
        limit: int = 12,
        category: Optional[str] = None,
        type_: Optional[str] = None,
        search: Optional[str] = None,
        sort: str = "created_at",
        order: str = "desc",
        min_price: Optional[float] = None,
        max_price: Optional[float] = None,
        location: Optional[str] = None,
        sustainability: Optional[int] = None,
    ) -> Dict[str, Any]:
        """Active products matching the filters, paginated.

        Parameters
        ----------
        search : Optional[str]
            Substring matched against title, description and tags.
        sort : str
            ``created_at``, ``price_low``, ``price_high`` or ``rating``.
        sustainability : Optional[int]
            Minimum sustainability score.
        """
        page = max(page, 1)
        where = ["p.status = 'active'"]
        params: List[Any] = []
        if category:
            where.append("p.category = ?")
            params.append(category)
        if type_:
            where.append("p.type = ?")
            params.append(type_)
        if search:
            where.append("(p.title LIKE ? OR p.description LIKE ? OR p.tags LIKE ?)")
            params.extend([f"%{search}%"] * 3)
        if min_price is not None:
            where.append("p.price >= ?")
            params.append(min_price)
        if max_price is not None:
            where.append("p.price <= ?")
            params.append(max_price)
        if location:
            where.append("p.location LIKE ?")
            params.append(f"%{location}%")
        if sustainability is not None:
            where.append("p.sustainability_score >= ?")
            params.append(sustainability)
        order_by = SORT_OPTIONS.get(sort, "p.created_at ASC" if order == "asc" else "p.created_at DESC")
        where_sql = " AND ".join(where)
        conn = get_connection()
        try:
            total = conn.execute(
                f"SELECT COUNT(*) AS c FROM marketplace_products p WHERE {where_sql}", tuple(params)
            ).fetchone()["c"]
            rows = conn.execute(
                f"""
                SELECT p.*, u.username AS seller_username, u.full_name AS seller_full_name,
                       u.avatar_url AS seller_avatar_url,
                       i.quantity AS stock_quantity, i.availability_status
                FROM marketplace_products p
                JOIN users u ON u.id = p.seller_id
                LEFT JOIN product_inventory i ON i.product_id = p.id
                WHERE {where_sql}
                ORDER BY {order_by}, p.id DESC
                LIMIT ? OFFSET ?
                """,
                tuple(params) + (limit, (page - 1) * limit),
            ).fetchall()
        finally:
            conn.close()
        return {
            "products": [cls._product_dict(row) for row in rows],
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "totalPages": (total + limit - 1) // limit if limit else 0,
            },
        }

    @classmethod
    async def create_product(cls, data: Any, current_user: dict) -> Dict[str, Any]:
        """List a new product for sale.

        ``green_points_price`` defaults to five points per currency
        unit.  Physical products get an inventory row seeded from
        ``initial_stock``.
        """
        if not data.title or not data.description or data.price is None or not data.category or not data.type:
            raise ValidationError("Title, description, price, category, and type are required")
        if data.type not in PRODUCT_TYPES:
            raise ValidationError("Type must be physical, digital, or service")
        if data.price <= 0:
            raise ValidationError("Price must be greater than 0")
        payload = data.model_dump()
        values = {name: _encode(name, payload.get(name)) for name in COMMON_FIELDS}
        if values["green_points_price"] is None:
            values["green_points_price"] = round(data.price * 5)
        values.update({k: _encode(k, v) for k, v in _type_values(data.type, payload).items()})
        conn = get_connection()
        try:
            cursor = conn.cursor()
            columns = ("seller_id",) + tuple(values)
            cursor.execute(
                f"INSERT INTO marketplace_products ({', '.join(columns)}) VALUES ({', '.join('?' * len(columns))})",
                (current_user["user_id"],) + tuple(values.values()),
            )
            product_id = cursor.lastrowid
            if data.type == "physical":
                cls._set_stock(
                    cursor,
                    product_id,
                    data.initial_stock or 0,
                    _threshold(data.low_stock_threshold),
                    current_user["user_id"],
                    data.reorder_point,
                )
            conn.commit()
            product = cls._load(cursor, product_id)
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()
        logger.info("User %s listed product %s", current_user["user_id"], product_id)
        await AuditService.record(
            user_id=current_user["user_id"], action="create", object_type="product", object_id=product_id
        )
        return product

    @classmethod
    async def get_product(cls, product_id: int) -> Dict[str, Any]:
        """Return an active product and count the view."""
        conn = get_connection()
        try:
            cursor = conn.cursor()
            cursor.execute(
                "UPDATE marketplace_products SET views_count = views_count + 1 WHERE id = ? AND status = 'active'",
                (product_id,),
            )
            if cursor.rowcount == 0:
                raise NotFoundError("Product not found")
            conn.commit()
            return cls._load(cursor, product_id)
        finally:
            conn.close()

    @classmethod
    async def update_product(cls, product_id: int, data: Any, current_user: dict) -> Dict[str, Any]:
        """Apply a partial update.

        Required columns may be omitted but not cleared.  Clearing
        ``green_points_price`` restores the default derived from the
        price.  A product that becomes physical gets its inventory row,
        seeded from ``initial_stock``.
        """
        updates = data.model_dump(exclude_unset=True)
        for field in ("title", "description", "category"):
            if field in updates and not (updates[field] or "").strip():
                raise ValidationError(f"{field.capitalize()} cannot be empty")
        if "price" in updates and (updates["price"] is None or updates["price"] <= 0):
            raise ValidationError("Price must be greater than 0")
        if "type" in updates and updates["type"] not in PRODUCT_TYPES:
            raise ValidationError("Type must be physical, digital, or service")
        if "status" in updates and updates["status"] not in EDITABLE_STATUSES:
            raise ValidationError("Status must be active, inactive, or sold")
        stock_fields = {k: updates.pop(k) for k in STOCK_FIELDS if k in updates}
        conn = get_connection()
        try:
            cursor = conn.cursor()
            current = cls._owned(cursor, product_id, current_user["user_id"])
            product_type = updates.get("type", current["type"])
            columns = {k: _encode(k, v) for k, v in updates.items() if k in COMMON_FIELDS or k == "status"}
            if "green_points_price" in columns and columns["green_points_price"] is None:
                columns["green_points_price"] = round(updates.get("price", current["price"]) * 5)
            type_updates = {k: v for k, v in updates.items() if k in ALL_TYPE_FIELDS}
            if type_updates or "type" in updates:
                merged = {field: current[field] for field in ALL_TYPE_FIELDS}
                if current["dimensions"]:
                    merged["dimensions"] = json.loads(current["dimensions"])
                merged.update(type_updates)
                columns.update({k: _encode(k, v) for k, v in _type_values(product_type, merged).items()})
            if columns:
                assignments = ", ".join(f"{name} = ?" for name in columns)
                cursor.execute(
                    f"UPDATE marketplace_products SET {assignments}, updated_at = CURRENT_TIMESTAMP WHERE id = ?",
                    tuple(columns.values()) + (product_id,),
                )
            if product_type == "physical" and not cursor.execute(
                "SELECT id FROM product_inventory WHERE product_id = ?", (product_id,)
            ).fetchone():
                cls._set_stock(
                    cursor,
                    product_id,
                    stock_fields.get("initial_stock") or 0,
                    _threshold(stock_fields.get("low_stock_threshold")),
                    current_user["user_id"],
                    stock_fields.get("reorder_point"),
                )
            conn.commit()
            product = cls._load(cursor, product_id)
        finally:
            conn.close()
        await AuditService.record(
            user_id=current_user["user_id"],
            action="update",
            object_type="product",
            object_id=product_id,
            details={"fields": sorted(updates)},
        )
        return product

    @classmethod
    async def delete_product(cls, product_id: int, current_user: dict) -> None:
        """Soft delete: the row stays for order history."""
        conn = get_connection()
        try:
            cursor = conn.cursor()
            cls._owned(cursor, product_id, current_user["user_id"])
            cursor.execute(
                "UPDATE marketplace_products SET status = 'deleted', updated_at = CURRENT_TIMESTAMP WHERE id = ?",
                (product_id,),
            )
            conn.commit()
        finally:
            conn.close()
        await AuditService.record(
            user_id=current_user["user_id"], action="delete", object_type="product", object_id=product_id
        )

    # ------------------------------------------------------------------
    # categories
    # ------------------------------------------------------------------

    @classmethod
    async def list_categories(cls, include_stats: bool = False, type_: Optional[str] = None) -> List[Dict[str, Any]]:
        conn = get_connection()
        try:
            rows = conn.execute(
                """
                SELECT c.*, (SELECT COUNT(*) FROM marketplace_products p
                             WHERE p.category = c.slug AND p.status = 'active') AS product_count
                FROM marketplace_categories c WHERE c.active = 1 ORDER BY c.name
                """
            ).fetchall()
        finally:
            conn.close()
        categories = []
        for row in rows:
            category = row_to_dict(row, json_fields=("applicable_types",), bool_fields=("active",))
            if type_ in PRODUCT_TYPES and type_ not in (category.get("applicable_types") or []):
                continue
            if not include_stats:
                category.pop("product_count")
            categories.append(category)
        return categories

    @classmethod
    async def create_category(cls, data: Any, current_user: dict) -> Dict[str, Any]:
        if not data.name or not data.slug:
            raise ValidationError("Name and slug are required")
        types = data.applicable_types if data.applicable_types is not None else list(PRODUCT_TYPES)
        if not isinstance(types, list) or any(t not in PRODUCT_TYPES for t in types):
            raise ValidationError("Invalid applicable_types. Must be array of: physical, digital, service")
        conn = get_connection()
        try:
            cursor = conn.cursor()
            if cursor.execute("SELECT id FROM marketplace_categories WHERE slug = ?", (data.slug,)).fetchone():
                raise ConflictError("Category with this slug already exists")
            cursor.execute(
                """
                INSERT INTO marketplace_categories (name, slug, description, icon, applicable_types, active)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (data.name, data.slug, data.description, data.icon, json.dumps(types), 1 if data.active else 0),
            )
            category_id = cursor.lastrowid
            conn.commit()
            row = cursor.execute("SELECT * FROM marketplace_categories WHERE id = ?", (category_id,)).fetchone()
        finally:
            conn.close()
        await AuditService.record(
            user_id=current_user["user_id"], action="create", object_type="category", object_id=category_id
        )
        return row_to_dict(row, json_fields=("applicable_types",), bool_fields=("active",))

    # ------------------------------------------------------------------
    # inventory
    # ------------------------------------------------------------------

    @staticmethod
    def _inventory_dict(row: Optional[sqlite3.Row]) -> Dict[str, Any]:
        if not row:
            return {
                "quantity": 0,
                "reserved_quantity": 0,
                "low_stock_threshold": DEFAULT_LOW_STOCK_THRESHOLD,
                "reorder_point": DEFAULT_LOW_STOCK_THRESHOLD,
                "availability_status": "out_of_stock",
            }
        return {
            "quantity": row["quantity"],
            "reserved_quantity": row["reserved_quantity"],
            "low_stock_threshold": row["low_stock_threshold"],
            "reorder_point": row["reorder_point"],
            "availability_status": row["availability_status"],
        }

    @classmethod
    async def get_inventory(cls, product_id: Optional[int]) -> Dict[str, Any]:
        if not product_id:
            raise ValidationError("Product ID is required")
        conn = get_connection()
        try:
            cursor = conn.cursor()
            if not cursor.execute("SELECT id FROM marketplace_products WHERE id = ?", (product_id,)).fetchone():
                raise NotFoundError("Product not found")
            row = cursor.execute("SELECT * FROM product_inventory WHERE product_id = ?", (product_id,)).fetchone()
            return {"success": True, "inventory": cls._inventory_dict(row)}
        finally:
            conn.close()

    @classmethod
    async def update_inventory(cls, data: Any, current_user: dict) -> Dict[str, Any]:
        """Set the stock level of one of the caller's products."""
        if not data.productId:
            raise ValidationError("Product ID is required")
        if data.quantity is None or data.quantity < 0:
            raise ValidationError("Valid quantity is required")
        threshold = _threshold(data.low_stock_threshold)
        if threshold < 0:
            raise ValidationError("Low stock threshold cannot be negative")
        conn = get_connection()
        try:
            cursor = conn.cursor()
            cls._owned(cursor, data.productId, current_user["user_id"])
            existing = cursor.execute(
                "SELECT reorder_point FROM product_inventory WHERE product_id = ?", (data.productId,)
            ).fetchone()
            cls._set_stock(
                cursor,
                data.productId,
                data.quantity,
                threshold,
                current_user["user_id"],
                existing["reorder_point"] if existing else None,
            )
            conn.commit()
            row = cursor.execute(
                "SELECT * FROM product_inventory WHERE product_id = ?", (data.productId,)
            ).fetchone()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()
        logger.info("User %s set stock of product %s to %s", current_user["user_id"], data.productId, data.quantity)
        return {"success": True, "inventory": cls._inventory_dict(row), "message": "Inventory updated successfully"}
