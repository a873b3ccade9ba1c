"""
Pydantic models for the marketplace.

Request fields are mostly optional so that the service layer can answer
missing values with its own 400 messages; type errors are still
rejected by FastAPI before a service runs.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class ProductBase(BaseModel):
    title: Optional[str] = Field(None, examples=["Bamboo toothbrush set"])
    description: Optional[str] = None
    price: Optional[float] = Field(None, examples=[12.5])
    green_points_price: Optional[int] = None
    category: Optional[str] = Field(None, examples=["eco-products"])
    type: Optional[str] = Field(None, examples=["physical"])
    images: Optional[List[str]] = None
    tags: Optional[List[str]] = None
    location: Optional[str] = None
    sustainability_score: Optional[int] = None
    # physical
    condition: Optional[str] = None
    weight: Optional[float] = None
    dimensions: Optional[Dict[str, Any]] = None
    shipping_cost: Optional[float] = None
    # digital
    digital_file_url: Optional[str] = None
    download_limit: Optional[int] = None
    # service
    service_duration: Optional[str] = None
    service_location: Optional[str] = None


class ProductCreate(ProductBase):
    """Schema for listing a product; stock fields apply to physical goods."""

    initial_stock: Optional[int] = Field(None, ge=0)
    low_stock_threshold: Optional[int] = Field(None, ge=0)
    reorder_point: Optional[int] = Field(None, ge=0)


class ProductUpdate(ProductBase):
    """All fields are optional; only provided fields will be updated.

    The stock fields are used only when the product becomes physical
    and has no inventory yet.
    """

    status: Optional[str] = None
    initial_stock: Optional[int] = Field(None, ge=0)
    low_stock_threshold: Optional[int] = Field(None, ge=0)
    reorder_point: Optional[int] = Field(None, ge=0)


class CategoryCreate(BaseModel):
    name: Optional[str] = None
    slug: Optional[str] = None
    description: Optional[str] = None
    icon: Optional[str] = None
    applicable_types: Optional[List[str]] = None
    active: bool = True


class InventoryUpdate(BaseModel):
    productId: Optional[int] = None
    quantity: Optional[int] = None
    low_stock_threshold: Optional[int] = 5


class OrderCreate(BaseModel):
    product_id: Optional[int] = None
    quantity: Optional[int] = 1
    payment_method: Optional[str] = Field(None, examples=["green_points"])
    unit_price: Optional[float] = None
    total_price: Optional[float] = None
    green_points_used: Optional[int] = None
    shipping_address: Optional[Dict[str, Any]] = None
    notes: Optional[str] = None


class OrderUpdate(BaseModel):
    order_status: Optional[str] = None
    payment_status: Optional[str] = None
    tracking_number: Optional[str] = None
    notes: Optional[str] = None


class OrderStatusUpdate(BaseModel):
    status: Optional[str] = None


class MarketplaceMessageCreate(BaseModel):
    recipient_id: Optional[int] = None
    content: Optional[str] = None
    product_id: Optional[int] = None
    order_id: Optional[int] = None
    message_type: str = "text"


class ProductViewCreate(BaseModel):
    productId: Optional[int] = None
    sellerId: Optional[int] = None
    viewerId: Optional[int] = None
    source: str = "direct"
    userAgent: Optional[str] = None
    ipAddress: Optional[str] = None


class PaymentIntentCreate(BaseModel):
    amount: Optional[float] = None
    currency: str = "usd"
    order_id: Optional[int] = None
    customer_email: Optional[str] = None
    product_name: Optional[str] = None


class OrderEmailRequest(BaseModel):
    type: str
    orderData: Dict[str, Any]
