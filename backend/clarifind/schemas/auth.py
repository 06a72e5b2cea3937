from pydantic import BaseModel
from typing import Literal, Optional


class SignUpRequest(BaseModel):
    email: str
    full_name: str
    user_type: Literal["patient", "doctor"] = "patient"


class TokenRequest(BaseModel):
    email: str


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    email: str
    full_name: str
    user_type: str
    doctor_id: Optional[str] = None
