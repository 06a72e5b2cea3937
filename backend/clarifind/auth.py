"""
Auth module: JWT creation/validation and the principal dependencies.

A principal is either a PatientPrincipal or a DoctorPrincipal. Endpoints
gate capabilities on which of the two they receive. A missing or invalid
token resolves to None (anonymous), which only the upload and doctor
listing endpoints accept.
"""

import time
from dataclasses import dataclass
from typing import Optional, Union
from jose import jwt, JWTError
from fastapi import Depends, HTTPException, Request
from clarifind.config import get_settings
from clarifind.schemas.lab_result import Doctor
from clarifind.services.doctors import get_doctor

ALGORITHM = "HS256"
TOKEN_EXPIRE_SECONDS = 86400  # 24 hours


@dataclass(frozen=True)
class PatientPrincipal:
    email: str
    full_name: str

    def owns(self, patient_email: str) -> bool:
        return self.email.lower() == patient_email.lower()


@dataclass(frozen=True)
class DoctorPrincipal:
    email: str
    full_name: str
    doctor: Doctor


Principal = Union[PatientPrincipal, DoctorPrincipal]


def create_token(profile) -> str:
    """Create a signed JWT for the given Profile model instance."""
    settings = get_settings()
    payload = {
        "sub": profile.email,
        "full_name": profile.full_name,
        "user_type": profile.user_type,
        "exp": int(time.time()) + TOKEN_EXPIRE_SECONDS,
    }
    if profile.doctor_id:
        payload["doctor_id"] = profile.doctor_id
    return jwt.encode(payload, settings.jwt_secret_key, algorithm=ALGORITHM)


def decode_token(token: str) -> Optional[Principal]:
    """Decode and validate a JWT. Returns None if invalid, expired, or of an unknown user type."""
    try:
        settings = get_settings()
        payload = jwt.decode(token, settings.jwt_secret_key, algorithms=[ALGORITHM])
    except JWTError:
        return None

    email = payload.get("sub")
    if not email:
        return None
    full_name = payload.get("full_name", email)
    user_type = payload.get("user_type")

    if user_type == "patient":
        return PatientPrincipal(email=email, full_name=full_name)
    if user_type == "doctor":
        doctor = get_doctor(payload.get("doctor_id", ""))
        if doctor is None:
            return None
        return DoctorPrincipal(email=email, full_name=full_name, doctor=doctor)
    return None


async def get_current_user(request: Request) -> Optional[Principal]:
    """
    FastAPI dependency. Extracts the JWT from the Authorization header.
    Returns None when the header is absent or the token is invalid.
    """
    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Bearer "):
        return None
    return decode_token(auth_header[7:])


async def require_principal(
    principal: Optional[Principal] = Depends(get_current_user),
) -> Principal:
    if principal is None:
        raise HTTPException(status_code=401, detail="Authentication required")
    return principal


async def require_doctor(principal: Principal = Depends(require_principal)) -> DoctorPrincipal:
    if not isinstance(principal, DoctorPrincipal):
        raise HTTPException(status_code=403, detail="Only doctors can review lab results")
    return principal


async def require_patient(principal: Principal = Depends(require_principal)) -> PatientPrincipal:
    if not isinstance(principal, PatientPrincipal):
        raise HTTPException(status_code=403, detail="Only patients have their own lab results")
    return principal
