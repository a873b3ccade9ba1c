"""
Marketplace endpoints for API v1.

Covers product listings, categories, inventory, orders, buyer/seller
messages and seller analytics.  ``/products/analytics`` is declared
before ``/products/{product_id}`` so the fixed path wins.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, Response, status

from honua_api.app.core.security import get_current_user, get_optional_user, require_roles
from honua_api.app.schemas.marketplace import (
    CategoryCreate,
    InventoryUpdate,
    MarketplaceMessageCreate,
    OrderCreate,
    OrderStatusUpdate,
    OrderUpdate,
    ProductCreate,
    ProductUpdate,
    ProductViewCreate,
)
from honua_api.app.services.analytics_service import AnalyticsService
from honua_api.app.services.marketplace_message_service import MarketplaceMessageService
from honua_api.app.services.order_service import MAX_PAGE_SIZE, OrderService
from honua_api.app.services.product_service import ProductService

router = APIRouter()


# ---------------------------------------------------------------------------
# Products
# ---------------------------------------------------------------------------


@router.get("/products")
async def list_products(
    page: int = Query(1, ge=1),
    limit: int = Query(12, ge=1, le=100),
    category: Optional[str] = Query(None),
    type: Optional[str] = Query(None, description="physical, digital or service"),
    search: Optional[str] = Query(None, description="Matched against title, description and tags"),
    sort: str = Query("created_at", description="created_at, price_low, price_high or rating"),
    order: str = Query("desc"),
    minPrice: Optional[float] = Query(None),
    maxPrice: Optional[float] = Query(None),
    location: Optional[str] = Query(None),
    sustainability: Optional[int] = Query(None, description="Minimum sustainability score"),
) -> dict:
    """Active products matching the filters.

    Returns ``products`` and ``pagination`` with ``totalPages``.
    """
    return await ProductService.list_products(
        page=page,
        limit=limit,
        category=category,
        type_=type,
        search=search,
        sort=sort,
        order=order,
        min_price=minPrice,
        max_price=maxPrice,
        location=location,
        sustainability=sustainability,
    )


@router.post("/products", status_code=status.HTTP_201_CREATED)
async def create_product(product: ProductCreate, current_user: dict = Depends(get_current_user)) -> dict:
    """List a product for sale.

    Physical products get an inventory row seeded from
    ``initial_stock``.
    """
    return {"product": await ProductService.create_product(product, current_user)}


@router.get("/products/analytics")
async def product_analytics(
    sellerId: Optional[int] = Query(None),
    productId: Optional[int] = Query(None),
    timeRange: Optional[str] = Query(None, description="7d, 30d, 90d or 1y"),
    current_user: dict = Depends(get_current_user),
) -> dict:
    return await AnalyticsService.product_analytics(sellerId, productId, timeRange, current_user)


@router.get("/products/{product_id}")
async def get_product(product_id: int) -> dict:
    """An active product; every read counts as a view."""
    return {"product": await ProductService.get_product(product_id)}


@router.put("/products/{product_id}")
async def update_product(
    product_id: int,
    updates: ProductUpdate,
    current_user: dict = Depends(get_current_user),
) -> dict:
    return {"product": await ProductService.update_product(product_id, updates, current_user)}


@router.delete("/products/{product_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_product(product_id: int, current_user: dict = Depends(get_current_user)) -> Response:
    """Withdraw a listing.  The row is kept with ``status='deleted'``."""
    await ProductService.delete_product(product_id, current_user)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ---------------------------------------------------------------------------
# Categories and inventory
# ---------------------------------------------------------------------------


@router.get("/categories")
async def list_categories(
    include_stats: bool = Query(False),
    type: Optional[str] = Query(None),
) -> dict:
    return {"categories": await ProductService.list_categories(include_stats=include_stats, type_=type)}


@router.post("/categories", status_code=status.HTTP_201_CREATED)
async def create_category(
    category: CategoryCreate,
    current_user: dict = Depends(require_roles(1, 2)),
) -> dict:
    return {"category": await ProductService.create_category(category, current_user)}


@router.get("/inventory")
async def get_inventory(productId: Optional[int] = Query(None)) -> dict:
    return await ProductService.get_inventory(productId)


@router.put("/inventory")
async def update_inventory(data: InventoryUpdate, current_user: dict = Depends(get_current_user)) -> dict:
    """Set the stock level of a physical product.  Seller only."""
    return await ProductService.update_inventory(data, current_user)


# ---------------------------------------------------------------------------
# Orders
# ---------------------------------------------------------------------------


@router.get("/orders")
async def list_orders(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=MAX_PAGE_SIZE),
    status_filter: Optional[str] = Query(None, alias="status"),
    type: str = Query("buyer", description="buyer or seller"),
    current_user: dict = Depends(get_current_user),
) -> dict:
    """Orders the caller placed (``type=buyer``) or received (``type=seller``)."""
    return await OrderService.list_orders(current_user, page=page, limit=limit, status=status_filter, type_=type)


@router.post("/orders", status_code=status.HTTP_201_CREATED)
async def create_order(order: OrderCreate, current_user: dict = Depends(get_current_user)) -> dict:
    """Place an order.

    Totals are recomputed from the product price; card and mixed
    payments come back with a ``client_secret`` to confirm client side.
    """
    return await OrderService.create_order(order, current_user)


@router.get("/orders/{order_id}")
async def get_order(order_id: int, current_user: dict = Depends(get_current_user)) -> dict:
    return {"order": await OrderService.get_order(order_id, current_user)}


@router.patch("/orders/{order_id}")
async def update_order(
    order_id: int,
    updates: OrderUpdate,
    current_user: dict = Depends(get_current_user),
) -> dict:
    return {"order": await OrderService.update_order(order_id, updates, current_user)}


@router.patch("/orders/{order_id}/status")
async def update_order_status(
    order_id: int,
    data: OrderStatusUpdate,
    current_user: dict = Depends(get_current_user),
) -> dict:
    return {"order": await OrderService.update_status(order_id, data.status, current_user)}


# ---------------------------------------------------------------------------
# Messages, analytics and customers
# ---------------------------------------------------------------------------


@router.get("/messages")
async def list_messages(
    product_id: Optional[int] = Query(None),
    order_id: Optional[int] = Query(None),
    other_user_id: Optional[int] = Query(None),
    current_user: dict = Depends(get_current_user),
) -> dict:
    messages = await MarketplaceMessageService.list_messages(
        current_user,
        product_id=product_id,
        order_id=order_id,
        other_user_id=other_user_id,
    )
    return {"messages": messages}


@router.post("/messages", status_code=status.HTTP_201_CREATED)
async def send_message(data: MarketplaceMessageCreate, current_user: dict = Depends(get_current_user)) -> dict:
    return await MarketplaceMessageService.send_message(data, current_user)


@router.get("/analytics")
async def seller_analytics(
    sellerId: Optional[int] = Query(None),
    timeRange: Optional[str] = Query(None, description="7d, 30d, 90d or 1y; defaults to 30d"),
    current_user: dict = Depends(get_current_user),
) -> dict:
    return await AnalyticsService.seller_analytics(sellerId, timeRange, current_user)


@router.post("/analytics")
async def track_view(
    data: ProductViewCreate,
    current_user: Optional[dict] = Depends(get_optional_user),
) -> dict:
    """Log a product view for the seller's analytics."""
    return await AnalyticsService.track_view(data, current_user)


@router.get("/customers")
async def customers(
    sellerId: Optional[int] = Query(None),
    customerId: Optional[int] = Query(None),
    current_user: dict = Depends(get_current_user),
) -> dict:
    return await AnalyticsService.customers(sellerId, customerId, current_user)
