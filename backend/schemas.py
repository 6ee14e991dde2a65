"""
Schemas for the ReCraft sustainable marketplace.

Product and Donation map to MongoDB collections (collection name = class name
lowercased). The remaining models are records kept in the key-value store:
accounts, seller listings, storefront products, carts, wishlists, orders and
submitted donations.
"""
from datetime import datetime, timezone
from typing import List, Literal, Optional

from pydantic import BaseModel, EmailStr, Field


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# Accounts
class User(BaseModel):
    id: str
    name: str
    email: EmailStr
    password_hash: str
    location: Optional[str] = None
    avatar_url: Optional[str] = None
    created_at: str = Field(default_factory=utc_now_iso)

    def public(self) -> dict:
        return self.model_dump(exclude={"password_hash"})


# Artisan catalog (MongoDB)
class Product(BaseModel):
    title: str = Field(..., min_length=1)
    description: Optional[str] = None
    price: float = Field(..., ge=0)
    image: Optional[str] = Field(None, description="URL path under /uploads")
    artisan: str = Field(..., min_length=1)


# Donation intake (MongoDB)
class Donation(BaseModel):
    donor_name: Optional[str] = None
    material_type: str = Field(..., min_length=1)
    quantity: str = Field(..., min_length=1, description="free text, e.g. '3 kg'")
    condition: Optional[str] = None
    images: List[str] = Field(default_factory=list)
    notes: Optional[str] = None
    pickup: bool = False
    address: Optional[str] = None
    pincode: Optional[str] = None
    contact: Optional[str] = None
    consent: bool = False
    pickup_serviceable: Optional[bool] = None
    region: Optional[str] = None


# Seller listings
class Listing(BaseModel):
    id: str
    title: str = Field(..., min_length=1)
    price: int = Field(..., ge=0, description="whole rupees")
    stock: int = Field(..., ge=0)
    active: bool = True
    category: Optional[str] = None
    seller_id: Optional[str] = None
    created_at: str = Field(default_factory=utc_now_iso)


# Storefront entries, seeded or derived from a listing
class StoreProduct(BaseModel):
    id: str
    name: str
    image: str = ""
    price: str = Field(..., description="display string, e.g. '₹2,500'")
    quality: str = ""
    location: str = ""
    description: str = ""
    rating: float = Field(0, ge=0, le=5)
    stock: int = Field(0, ge=0)
    listing_id: Optional[str] = None


class CartItem(BaseModel):
    product: StoreProduct
    qty: int = Field(1, ge=0)


# Orders
OrderStatus = Literal["pending", "processing", "shipped", "delivered", "cancelled"]


class OrderItem(BaseModel):
    id: str
    title: str
    qty: int = Field(..., ge=1)
    price: float = Field(..., ge=0)
    image: Optional[str] = None


class ShippingAddress(BaseModel):
    name: str
    address: str
    city: str
    country: str = "India"
    phone: Optional[str] = None


class Order(BaseModel):
    id: str
    created_at: str = Field(default_factory=utc_now_iso)
    status: OrderStatus = "pending"
    total: float = Field(..., ge=0)
    items: List[OrderItem]
    shipping_to: ShippingAddress
    payment_method: Literal["cod", "upi", "card"] = "cod"


# Submitted donations (key-value store)
class ImageAttachment(BaseModel):
    filename: str
    size: int = Field(..., ge=0, description="bytes")
    content_type: Optional[str] = None


class DonationRecord(BaseModel):
    id: str
    material_type: str
    quantity: str
    condition: Literal["clean", "good", "broken", "mixed"]
    images: List[ImageAttachment] = Field(default_factory=list)
    notes: str = ""
    pickup: bool = False
    address: Optional[str] = None
    pincode: Optional[str] = None
    consent: bool = True
    pickup_serviceable: bool = False
    region: Optional[str] = None
    submitted_at: str = Field(default_factory=utc_now_iso)


class ServiceabilityResult(BaseModel):
    serviceable: bool
    code: str
    region: Optional[str] = None
    message: str
