from fastapi import APIRouter
from clarifind.schemas.lab_result import Doctor
from clarifind.services.doctors import get_available_doctors

router = APIRouter()


@router.get("", response_model=list[Doctor])
async def list_doctors():
    return get_available_doctors()
