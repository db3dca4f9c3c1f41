from enum import Enum
from pydantic import BaseModel
from typing import Optional


class AppointmentStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    REJECTED = "rejected"
    CANCELED = "canceled"
    COMPLETED = "completed"


class BookAppointmentRequest(BaseModel):
    doctorId: str
    date: str  # Format: "2025-06-28"
    time: str  # Format: "09:00 AM"
    reason: Optional[str] = None


class RescheduleRequest(BaseModel):
    date: str
    time: str


class CompleteAppointmentRequest(BaseModel):
    notes: Optional[str] = None
