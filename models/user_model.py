from enum import Enum
from typing import Dict, Optional, Union

from pydantic import BaseModel, EmailStr, Field, field_validator, model_validator

# bcrypt refuses longer secrets
MAX_PASSWORD_BYTES = 72


class Role(str, Enum):
    PATIENT = "patient"
    DOCTOR = "doctor"


class SignupRequest(BaseModel):
    name: str = Field(min_length=2)
    email: EmailStr
    password: str = Field(min_length=6)
    role: Role
    specialization: Optional[str] = None
    clinicAddress: Optional[str] = None

    @field_validator("password")
    @classmethod
    def password_fits_bcrypt(cls, value: str) -> str:
        if len(value.encode("utf-8")) > MAX_PASSWORD_BYTES:
            raise ValueError(f"Password must be at most {MAX_PASSWORD_BYTES} bytes.")
        return value

    @model_validator(mode="after")
    def doctor_details_required(self):
        if self.role == Role.DOCTOR and not (self.specialization and self.clinicAddress):
            raise ValueError("Specialization and Clinic Address are required for doctors.")
        return self


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class DoctorProfileUpdate(BaseModel):
    name: Optional[str] = None
    specialization: Optional[str] = None
    clinicAddress: Optional[str] = None
    availableHours: Optional[Dict[str, str]] = None


class PatientProfileUpdate(BaseModel):
    name: Optional[str] = None
    # Kept loose so a form can send "" or "42"; parsed by the route
    age: Optional[Union[int, str]] = None
    contactInfo: Optional[str] = None
