"""
Database Schemas for ParkSmart (Parking Spot Booking)

Each Pydantic model describes one collection of the store. Collection names:

- User -> user
- ParkingSpot -> spot
- Booking -> booking
"""

from pydantic import BaseModel, Field, EmailStr
from typing import Optional, Literal
from datetime import datetime

SpotType = Literal["STANDARD", "HANDICAPPED", "ELECTRIC", "COMPACT"]
BookingStatus = Literal["PENDING", "CONFIRMED", "COMPLETED", "CANCELLED"]


class User(BaseModel):
    name: str = Field(..., description="Full name")
    email: EmailStr = Field(..., description="Unique email address (case-insensitive)")
    password_hash: str = Field(..., description="BCrypt hashed password")
    is_admin: bool = Field(False, description="Administrator privileges")
    is_active: bool = Field(True, description="Deactivated users cannot log in")
    created_at: Optional[datetime] = None


class ParkingSpot(BaseModel):
    spot_number: str = Field(..., min_length=1, description="Unique human-readable number, e.g. A1")
    level: int = Field(..., ge=1, description="Floor level")
    type: SpotType = Field("STANDARD", description="STANDARD | HANDICAPPED | ELECTRIC | COMPACT")
    price_per_hour: float = Field(..., ge=0, description="Hourly price")
    is_available: bool = Field(True, description="Administrative availability flag")


class Booking(BaseModel):
    user_id: int = Field(..., description="Owning user id")
    spot_id: int = Field(..., description="Booked spot id")
    date: str = Field(..., description="ISO date (YYYY-MM-DD)")
    start_time: str = Field(..., description="Start time (HH:MM)")
    end_time: str = Field(..., description="End time (HH:MM)")
    duration: int = Field(..., ge=1, description="Duration in whole hours")
    total_price: float = Field(..., ge=0, description="price_per_hour * duration")
    status: BookingStatus = Field("CONFIRMED", description="PENDING | CONFIRMED | COMPLETED | CANCELLED")
    created_at: Optional[datetime] = None
