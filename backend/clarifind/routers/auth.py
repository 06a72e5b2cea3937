from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from clarifind.database import get_db
from clarifind.models.profile import Profile
from clarifind.auth import create_token, require_principal, DoctorPrincipal, Principal
from clarifind.schemas.auth import SignUpRequest, TokenRequest, TokenResponse
from clarifind.services.doctors import get_doctor_by_email

router = APIRouter()


@router.post("/signup", status_code=201)
async def sign_up(body: SignUpRequest, db: AsyncSession = Depends(get_db)):
    email = body.email.strip().lower()
    if not email or "@" not in email:
        raise HTTPException(status_code=400, detail="A valid email is required")

    existing = await db.scalar(select(Profile).where(Profile.email == email))
    if existing:
        raise HTTPException(status_code=409, detail=f"An account for '{email}' already exists")

    doctor_id = None
    if body.user_type == "doctor":
        doctor = get_doctor_by_email(email)
        if not doctor:
            raise HTTPException(status_code=400, detail=f"'{email}' is not on the doctor roster")
        doctor_id = doctor.id

    profile = Profile(email=email, full_name=body.full_name.strip(), user_type=body.user_type, doctor_id=doctor_id)
    db.add(profile)
    await db.flush()
    return {"email": profile.email, "full_name": profile.full_name, "user_type": profile.user_type}


@router.post("/token", response_model=TokenResponse)
async def get_token(body: TokenRequest, db: AsyncSession = Depends(get_db)):
    """
    Exchange an email for a JWT token. No password: demo only.
    Body: {"email": "sarah.wilson@clarifind.com"}
    """
    email = body.email.strip().lower()
    if not email:
        raise HTTPException(status_code=400, detail="email required")

    profile = await db.scalar(select(Profile).where(Profile.email == email))
    if not profile:
        raise HTTPException(status_code=404, detail=f"No account for '{email}'")

    return TokenResponse(
        access_token=create_token(profile),
        email=profile.email,
        full_name=profile.full_name,
        user_type=profile.user_type,
        doctor_id=profile.doctor_id,
    )


@router.get("/me")
async def whoami(principal: Principal = Depends(require_principal)):
    if isinstance(principal, DoctorPrincipal):
        return {
            "email": principal.email,
            "full_name": principal.full_name,
            "user_type": "doctor",
            "doctor": principal.doctor.model_dump(by_alias=True),
        }
    return {"email": principal.email, "full_name": principal.full_name, "user_type": "patient"}
