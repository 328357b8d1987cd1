"""
Database Schemas for the TailorSpace alterations service

Each Pydantic model below corresponds to a MongoDB collection unless noted.
The collection name is given in the class docstring.
All money amounts are integer pence.
"""
import re
from datetime import datetime
from typing import Dict, List, Optional, Literal
from pydantic import BaseModel, Field, EmailStr, field_validator

import config

UserRole = Literal["customer", "runner", "tailor", "admin"]
USER_ROLES = ("customer", "runner", "tailor", "admin")

OrderStatus = Literal[
    "booked",
    "pickup_scheduled",
    "collected",
    "in_progress",
    "ready",
    "out_for_delivery",
    "delivered",
    "completed",
    "cancelled",
]

PickupSlot = Literal["morning", "afternoon", "evening"]
BookingStep = Literal["services", "items", "schedule", "checkout"]

POSTCODE_RE = re.compile(rf"^{config.SERVICE_AREA_PREFIX}\d{{1,2}}\s?\d[A-Z]{{2}}$", re.IGNORECASE)
PHONE_RE = re.compile(r"^(\+44|0)\d{10}$")


def validate_phone(value: str) -> str:
    if not PHONE_RE.match(value):
        raise ValueError("Must be a valid UK phone number")
    return value


class User(BaseModel):
    """users"""
    email: EmailStr = Field(..., description="Unique email address")
    password_hash: str = Field(..., description="BCrypt password hash")
    full_name: str = Field(..., min_length=2)
    phone: Optional[str] = None
    role: UserRole = "customer"
    active: bool = True
    email_preferences: Dict[str, bool] = Field(default_factory=lambda: {"cart_reminders": True})
    avatar_url: Optional[str] = None


class Service(BaseModel):
    """services"""
    name: str = Field(..., min_length=1)
    category: str = Field(..., description="Category slug, e.g. trousers")
    base_price: int = Field(..., ge=0, description="Price in pence")
    description: Optional[str] = None
    estimated_days: int = Field(3, ge=0)
    active: bool = True
    popular: bool = False
    sort_order: int = 0


class CartService(BaseModel):
    """The slice of a service a cart line needs. Not a collection."""
    id: str
    name: str
    price: int = Field(..., ge=0, description="Price in pence")
    category: str = ""


class CartItem(BaseModel):
    """A line in the client-side cart. Not a collection."""
    service: CartService
    quantity: int = Field(1, ge=1)
    garment_description: str = ""
    notes: str = ""
    photos: List[str] = Field(default_factory=list)


class SavedCartItem(BaseModel):
    """Persisted form of a cart line: service reference without photos."""
    service_id: str
    service_name: str
    service_price: int = Field(..., ge=0)
    garment_description: str = ""
    quantity: int = Field(1, ge=1)
    notes: str = ""


class SavedCart(BaseModel):
    """saved_carts, one per user"""
    user_id: str
    items: List[SavedCartItem] = Field(default_factory=list)
    booking_step: BookingStep = "services"
    pickup_date: Optional[str] = None
    pickup_slot: Optional[PickupSlot] = None
    last_active_at: Optional[datetime] = None


class Address(BaseModel):
    line1: str = Field(..., min_length=1)
    line2: Optional[str] = None
    city: str = Field(..., min_length=1)
    postcode: str

    @field_validator("postcode")
    @classmethod
    def check_postcode(cls, v: str) -> str:
        if not POSTCODE_RE.match(v.strip()):
            raise ValueError("Must be a valid Nottingham postcode (NG)")
        return v.strip().upper()


class OrderItem(BaseModel):
    """Embedded in Order.items"""
    service_id: str
    service_name: str
    garment_description: str
    quantity: int = Field(1, ge=1)
    price: int = Field(..., ge=0, description="Unit price in pence at booking time")
    photos: List[str] = Field(default_factory=list)
    notes: Optional[str] = None
    status: Literal["pending", "in_progress", "done"] = "pending"


class Order(BaseModel):
    """orders"""
    order_number: str = Field(..., description="Human-friendly order number")
    customer_id: str
    runner_id: Optional[str] = None
    tailor_id: Optional[str] = None
    status: OrderStatus = "booked"
    items: List[OrderItem]
    subtotal: int = 0
    delivery_fee: int = 0
    total: int = 0
    customer_address: Address
    customer_phone: str
    customer_notes: Optional[str] = None
    pickup_date: str
    pickup_slot: PickupSlot
    collected_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class TimelineEntry(BaseModel):
    """order_timeline"""
    order_id: str
    status: OrderStatus
    actor_id: Optional[str] = None
    actor_role: Optional[UserRole] = None
    notes: Optional[str] = None


class TailorProfile(BaseModel):
    """tailor_profiles"""
    user_id: str
    business_name: Optional[str] = None
    specializations: List[str] = Field(default_factory=list)
    weekly_capacity: int = Field(20, ge=0)
    turnaround_days: int = Field(5, ge=1)
    rating: float = 0.0
    completed_jobs: int = 0


class CartReminder(BaseModel):
    """cart_reminders, one per email sent"""
    user_id: str
    cart_id: str
    sequence_number: Literal[1, 2, 3]
    recovery_token: str
