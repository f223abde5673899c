"""
Database and API Schemas for the Car Rental Marketplace

Input models validate request bodies at the API boundary; output models
project MongoDB documents (snake_case) to the camelCase JSON the client reads.

Collections: "users", "cars", "bookings" and "booking_days".
"""

import re
from datetime import date, datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, ValidationInfo, field_validator
from pydantic.alias_generators import to_camel

Role = Literal["user", "owner"]
BookingStatus = Literal["pending", "confirmed", "cancelled"]

PASSWORD_RULE = re.compile(r"^(?=.*[a-z])(?=.*[A-Z])(?=.*\d)(?=.*[@$!%*?&])[A-Za-z\d@$!%*?&]+$")


class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def dump(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


def _oid(doc: Dict[str, Any], key: str) -> Optional[str]:
    value = doc.get(key)
    return str(value) if value is not None else None


def _day(value) -> date:
    return value.date() if isinstance(value, datetime) else value


# ---------- Users ----------
class RegisterIn(ApiModel):
    name: str = Field(..., min_length=2, max_length=50, description="Full name")
    email: EmailStr = Field(..., description="Email address")
    password: str = Field(..., min_length=8, description="Plain password, hashed before storage")
    role: Role = Field("user", description="user | owner")

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        v = v.strip()
        if len(v) < 2:
            raise ValueError("Name must be at least 2 characters long")
        return v

    @field_validator("email")
    @classmethod
    def lower_email(cls, v: str) -> str:
        return v.lower()

    @field_validator("password")
    @classmethod
    def strong_password(cls, v: str) -> str:
        if not PASSWORD_RULE.match(v):
            raise ValueError(
                "Password must contain at least one uppercase letter, one lowercase letter, "
                "one number, and one special character"
            )
        return v


class LoginIn(ApiModel):
    email: EmailStr
    password: str = Field(..., min_length=1)

    @field_validator("email")
    @classmethod
    def lower_email(cls, v: str) -> str:
        return v.lower()


class UserOut(ApiModel):
    id: str
    name: str
    email: str
    role: Role
    image: str = ""
    is_active: bool = True
    last_login: Optional[datetime] = None

    @classmethod
    def from_doc(cls, doc: Dict[str, Any]) -> "UserOut":
        return cls(
            id=str(doc["_id"]),
            name=doc["name"],
            email=doc["email"],
            role=doc.get("role", "user"),
            image=doc.get("image", ""),
            is_active=doc.get("is_active", True),
            last_login=doc.get("last_login"),
        )


# ---------- Cars ----------
class CarIn(ApiModel):
    brand: str = Field(..., min_length=1, description="Car brand, e.g., Toyota")
    model: str = Field(..., min_length=1, description="Model name")
    image: str = Field("", description="Image URL")
    year: int = Field(..., ge=1900, description="Manufacturing year")
    category: str = Field(..., min_length=1, description="sedan, suv, van, ...")
    seating_capacity: int = Field(..., ge=1, le=50)
    fuel_type: str = Field(..., min_length=1, description="petrol, diesel, electric, hybrid")
    transmission: str = Field(..., min_length=1, description="manual or automatic")
    price_per_day: float = Field(..., ge=0)
    location: str = Field(..., min_length=1)
    description: str = Field(..., min_length=10, max_length=500)
    features: List[str] = Field(default_factory=list)

    @field_validator("brand", "model", "category", "fuel_type", "transmission", "location", "description")
    @classmethod
    def strip_text(cls, v: str) -> str:
        return v.strip()

    @field_validator("year")
    @classmethod
    def not_future_model(cls, v: int) -> int:
        if v > date.today().year + 1:
            raise ValueError("Year cannot be more than one year ahead")
        return v


class CarOut(ApiModel):
    id: str
    owner: Optional[str] = None
    brand: str
    model: str
    image: str = ""
    year: int
    category: str
    seating_capacity: int
    fuel_type: str
    transmission: str
    price_per_day: float
    location: str
    description: str = ""
    is_available: bool = True
    features: List[str] = Field(default_factory=list)
    rating: float = 0
    total_bookings: int = 0

    @classmethod
    def from_doc(cls, doc: Dict[str, Any]) -> "CarOut":
        fields = {k: doc[k] for k in cls.model_fields if k not in ("id", "owner") and k in doc}
        return cls(id=str(doc["_id"]), owner=_oid(doc, "owner"), **fields)


class ToggleCarIn(ApiModel):
    car_id: str


# ---------- Bookings ----------
class DatesIn(ApiModel):
    pickup_date: date
    return_date: date

    @field_validator("return_date")
    @classmethod
    def return_not_before_pickup(cls, v: date, info: ValidationInfo) -> date:
        pickup = info.data.get("pickup_date")
        if pickup is not None and v < pickup:
            raise ValueError("Return date must be on or after the pickup date")
        return v


class BookingIn(DatesIn):
    car_id: str = Field(..., min_length=1)


class AvailabilitySearchIn(DatesIn):
    location: str = Field(..., min_length=1)


class ChangeStatusIn(ApiModel):
    booking_id: str
    status: BookingStatus


class BookedRange(ApiModel):
    """Public calendar entry: dates only, never renter or price."""
    pickup_date: date
    return_date: date

    @classmethod
    def from_doc(cls, doc: Dict[str, Any]) -> "BookedRange":
        return cls(pickup_date=_day(doc["pickup_date"]), return_date=_day(doc["return_date"]))


class BookingOut(ApiModel):
    """``car`` and ``user`` hold ids unless the caller embeds a snapshot."""
    id: str
    car: Any = None
    user: Any = None
    owner: Optional[str] = None
    pickup_date: date
    return_date: date
    price: float
    status: BookingStatus
    created_at: Optional[datetime] = None

    @classmethod
    def from_doc(cls, doc: Dict[str, Any]) -> "BookingOut":
        return cls(
            id=str(doc["_id"]),
            car=_oid(doc, "car"),
            user=_oid(doc, "user"),
            owner=_oid(doc, "owner"),
            pickup_date=_day(doc["pickup_date"]),
            return_date=_day(doc["return_date"]),
            price=doc.get("price", 0),
            status=doc.get("status", "pending"),
            created_at=doc.get("created_at"),
        )
