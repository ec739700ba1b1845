"""
Database Schemas for the Ayosi jewellery store

Each Pydantic model represents a collection in MongoDB.
Collection name is the lowercase of the class name.

Documents are stored with camelCase keys (what the storefront reads), so
every model uses a camelCase alias generator while Python code keeps
snake_case attribute names.

We store:
- User (admin accounts)
- Product (with per-size ring stock)
- Order (with frozen line items and an append-only status history)
"""

from datetime import datetime
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, model_validator
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ----------------------------------------------------------------------------
# Enumerations
# ----------------------------------------------------------------------------

Category = Literal["Rings", "Necklaces", "Bracelets", "Earrings", "Jewellery Box", "Accessories"]

CATEGORY_SUBCATEGORIES: Dict[str, List[str]] = {
    "Rings": ["Golden", "Silver"],
    "Necklaces": ["Golden", "Silver"],
    "Bracelets": ["Golden", "Silver", "Arm Cuffs"],
    "Earrings": ["Golden", "Silver", "Jhumkay"],
    "Jewellery Box": ["Box", "Gift Boxes"],
    "Accessories": [],
}

Province = Literal["punjab", "sindh", "balochistan", "kpk", "gilgit", "islamabad"]
PaymentMethod = Literal["bank_transfer", "cod"]
PaymentStatus = Literal["pending", "verified", "rejected"]
OrderStatus = Literal["Received", "Processing", "Shipping", "Delivered"]

PAYMENT_STATUSES = ("pending", "verified", "rejected")
ORDER_STATUSES = ("Received", "Processing", "Shipping", "Delivered")

# Ring size token -> sizedStock bucket
SIZE_BUCKETS: Dict[str, str] = {
    "5-6": "small",
    "7-8": "medium",
    "9-10": "large",
}


# ----------------------------------------------------------------------------
# Users
# ----------------------------------------------------------------------------

class User(CamelModel):
    """
    Users collection schema
    Collection name: "user"
    """
    name: str = Field(..., description="Full name")
    email: EmailStr = Field(..., description="Email address")
    password_hash: str = Field(..., description="Hashed password")
    is_admin: bool = Field(False, description="Admin flag")
    is_active: bool = Field(True, description="Whether user is active")


# ----------------------------------------------------------------------------
# Products
# ----------------------------------------------------------------------------

class SizedStock(CamelModel):
    small: int = Field(0, ge=0, description="Size 5-6")
    medium: int = Field(0, ge=0, description="Size 7-8")
    large: int = Field(0, ge=0, description="Size 9-10")


class Product(CamelModel):
    """
    Products collection schema
    Collection name: "product"
    """
    title: str = Field(..., min_length=1, description="Product title")
    description: str = Field(..., min_length=1, description="Product description")
    price: float = Field(..., gt=0, description="Price in rupees")
    category: Category
    subcategory: str = Field("", description="Category dependent, see CATEGORY_SUBCATEGORIES")
    images: List[str] = Field(..., min_length=1, description="Image URLs")
    quantity: Optional[int] = Field(None, ge=0, description="Stock for everything but sized rings")
    is_adjustable: bool = Field(False, description="Rings only: one size fits all")
    sized_stock: SizedStock = Field(default_factory=SizedStock)
    is_featured: bool = False
    tags: List[str] = Field(default_factory=list, description="Search tags")

    @property
    def is_sized_ring(self) -> bool:
        return self.category == "Rings" and not self.is_adjustable

    @model_validator(mode="after")
    def check_stock_and_subcategory(self):
        if self.quantity is None:
            if not self.is_sized_ring:
                raise ValueError("quantity is required unless the product is a sized ring")
            self.quantity = 0
        allowed = CATEGORY_SUBCATEGORIES.get(self.category, [])
        if self.subcategory and allowed and self.subcategory not in allowed:
            raise ValueError(f"subcategory must be one of: {', '.join(allowed)}")
        return self


# ----------------------------------------------------------------------------
# Orders
# ----------------------------------------------------------------------------

class PaymentDetails(CamelModel):
    account_name: Optional[str] = None
    account_number: Optional[str] = None
    account_holder: Optional[str] = None


class OrderItem(CamelModel):
    # None when the product was deleted or never existed in the catalog
    product: Optional[str] = None
    title: str
    price: float = Field(..., ge=0)
    quantity: int = Field(..., ge=1)
    image: str = ""
    selected_size: Optional[str] = None


class StatusHistoryEntry(CamelModel):
    status: OrderStatus
    description: str = ""
    courier_company: str = ""
    timestamp: datetime


class Order(CamelModel):
    """
    Orders collection schema
    Collection name: "order"
    """
    tracking_number: str
    customer_name: str
    email: EmailStr
    phone: str
    shipping_address: str
    city: str
    province: Province = "punjab"
    country: str = "Pakistan"
    order_items: List[OrderItem] = Field(..., min_length=1)
    subtotal: float = Field(..., ge=0)
    shipping_cost: float = Field(0, ge=0)
    total_amount: float = Field(..., ge=0)
    payment_method: PaymentMethod = "cod"
    selected_account: Optional[str] = None
    payment_details: Optional[PaymentDetails] = None
    transaction_proof: Optional[str] = None
    payment_status: PaymentStatus = "pending"
    status: OrderStatus = "Received"
    courier_company: str = ""
    shipment_description: str = ""
    estimated_delivery: Optional[datetime] = None
    actual_delivery: Optional[datetime] = None
    status_history: List[StatusHistoryEntry] = Field(default_factory=list)
