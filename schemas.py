"""
Database Schemas for the Vehicle Rental Marketplace

Each Pydantic model below represents a MongoDB collection. The collection
name is the lowercase of the class name (e.g., Vehicle -> "vehicle"). Users
are a tagged variant on `role`: every role has its own model carrying only
the fields that role requires, and all of them are stored in "user".
"""

from datetime import datetime
from typing import Annotated, Any, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Discriminator, EmailStr, Field, Tag, TypeAdapter
from pydantic.alias_generators import to_camel


Role = Literal["customer", "seller", "branch-manager", "admin"]
BookingStatus = Literal["pending", "confirmed", "active", "completed", "cancelled"]
PaymentStatus = Literal["pending", "paid", "failed", "refunded"]
VehicleType = Literal["car", "motorcycle", "truck", "van", "suv"]
FuelType = Literal["petrol", "diesel", "electric", "hybrid"]
Transmission = Literal["manual", "automatic"]


class ApiModel(BaseModel):
    """Request bodies take camelCase keys, like the query strings; snake_case is accepted too."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class UserBase(ApiModel):
    name: str = Field(..., min_length=1, description="Full name")
    email: EmailStr = Field(..., description="Email address, unique")
    phone: str = Field(..., min_length=1, description="Phone number")
    address: Optional[str] = Field(None, description="Postal address")
    is_active: bool = Field(True, description="Whether user can sign in")
    stripe_customer_id: Optional[str] = Field(None, description="Payment provider customer id")


class CustomerUser(UserBase):
    role: Literal["customer"] = "customer"
    license_number: str = Field(..., min_length=1, description="Driver license number")


class SellerUser(UserBase):
    role: Literal["seller"] = "seller"


class BranchManagerUser(UserBase):
    role: Literal["branch-manager"] = "branch-manager"
    branch_location: str = Field(..., min_length=1, description="Branch the manager runs")


class AdminUser(UserBase):
    role: Literal["admin"] = "admin"


def role_of(value: Any) -> str:
    """Discriminator for the user variants; a missing role means customer."""
    if isinstance(value, dict):
        return value.get("role") or "customer"
    return getattr(value, "role", None) or "customer"


User = Annotated[
    Union[
        Annotated[CustomerUser, Tag("customer")],
        Annotated[SellerUser, Tag("seller")],
        Annotated[BranchManagerUser, Tag("branch-manager")],
        Annotated[AdminUser, Tag("admin")],
    ],
    Discriminator(role_of),
]

user_adapter: TypeAdapter = TypeAdapter(User)


class Vehicle(ApiModel):
    make: str = Field(..., min_length=1, description="Manufacturer, e.g., Toyota")
    model: str = Field(..., min_length=1, description="Model name")
    year: int = Field(..., ge=1900, le=2100, description="Manufacturing year")
    license_plate: str = Field(..., min_length=1, description="License plate, unique")
    type: VehicleType = Field(..., description="car, motorcycle, truck, van or suv")
    fuel_type: FuelType = Field(..., description="petrol, diesel, electric or hybrid")
    transmission: Transmission = Field(..., description="manual or automatic")
    seats: int = Field(..., ge=1, description="Seating capacity")
    price_per_day: float = Field(..., gt=0, description="Daily rental rate")
    location: str = Field(..., min_length=1, description="Pickup city or area")
    is_available: bool = Field(True, description="Whether the vehicle is offered for rent")
    images: List[str] = Field(default_factory=list, description="Image URLs")
    features: List[str] = Field(default_factory=list, description="Feature labels")


class CustomerDetails(ApiModel):
    name: str
    email: EmailStr
    phone: str = ""


class Booking(ApiModel):
    """
    Collection name: "booking"
    price_per_day and total_amount are snapshots taken at booking time; they
    are never recomputed from the live vehicle document.
    """
    customer_id: Any = Field(..., description="ObjectId of the customer")
    vehicle_id: Any = Field(..., description="ObjectId of the vehicle")
    start_date: datetime
    end_date: datetime
    total_days: int
    price_per_day: float
    total_amount: float
    status: BookingStatus = "pending"
    payment_status: PaymentStatus = "pending"
    payment_intent_id: Optional[str] = None
    stripe_session_id: Optional[str] = None
    customer_details: CustomerDetails
    pickup_location: str
    dropoff_location: str
    special_requests: str = ""
    notes: str = ""


class Branch(ApiModel):
    name: str = Field(..., min_length=1)
    description: str = Field(..., min_length=1)
    location: Optional[str] = None
    address: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[EmailStr] = None
    opening_hours: Optional[str] = None
    services: Optional[str] = None
    capacity: Optional[int] = Field(None, ge=1)
    established_date: Optional[datetime] = None
    is_active: bool = True


class PaymentMethod(ApiModel):
    """
    Collection name: "paymentmethod"
    A card saved with the payment provider for off-session charges.
    """
    user_id: Any
    stripe_customer_id: str
    stripe_payment_method_id: str
    brand: Optional[str] = None
    last4: Optional[str] = None
    exp_month: Optional[int] = None
    exp_year: Optional[int] = None
    country: Optional[str] = None
    funding: Optional[str] = None
    is_default: bool = False
