import logging
from datetime import timedelta
from contextlib import contextmanager
from typing import Optional
from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, Response, UploadFile
from sqlalchemy.ext.asyncio import AsyncSession
from clarifind.auth import (
    DoctorPrincipal,
    PatientPrincipal,
    Principal,
    require_doctor,
    require_patient,
    require_principal,
)
from clarifind.config import get_settings
from clarifind.database import get_db
from clarifind.exceptions import (
    FileReadError,
    ImmutableFieldError,
    InvalidTransitionError,
    MissingInterpretationError,
    StorageConflictError,
    StorageWriteError,
    UnknownFieldError,
    UploadRejectedError,
    VersionConflictError,
)
from clarifind.schemas.lab_result import (
    AssignRequest,
    InterpretationRequest,
    LabResult,
    LabResultListResponse,
    LabResultSummary,
    LabStatus,
    Priority,
    StatusCounts,
    StatusUpdateRequest,
    VersionedRequest,
)
from clarifind.services import lab_result_filters as filters
from clarifind.services.doctors import get_doctor
from clarifind.services.encoding import (
    content_disposition,
    decode_data_uri,
    read_upload_as_data_uri,
    validate_upload,
)
from clarifind.services.lab_result_store import LabResultStore
from clarifind.services.storage import DatabaseStorage

logger = logging.getLogger(__name__)

router = APIRouter()


def get_lab_result_store(db: AsyncSession = Depends(get_db)) -> LabResultStore:
    settings = get_settings()
    return LabResultStore(
        DatabaseStorage(db),
        key=settings.lab_results_storage_key,
        fresh_window=timedelta(hours=settings.fresh_window_hours),
    )


@contextmanager
def _lifecycle_errors():
    """Translate store failures into HTTP responses."""
    try:
        yield
    except MissingInterpretationError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except (VersionConflictError, InvalidTransitionError, StorageConflictError) as e:
        raise HTTPException(status_code=409, detail=str(e))
    except (ImmutableFieldError, UnknownFieldError) as e:
        raise HTTPException(status_code=400, detail=str(e))
    except StorageWriteError:
        raise HTTPException(status_code=500, detail="Failed to update lab result")


def _found(result: Optional[LabResult], result_id: str) -> LabResultSummary:
    if result is None:
        raise HTTPException(status_code=404, detail=f"Lab result {result_id} not found")
    return LabResultSummary.from_result(result)


def _summaries(results: list[LabResult]) -> LabResultListResponse:
    return LabResultListResponse(
        results=[LabResultSummary.from_result(r) for r in results],
        total=len(results),
    )


async def _get_visible(store: LabResultStore, result_id: str, principal: Principal) -> LabResult:
    result = await store.get_by_id(result_id)
    if result is None:
        raise HTTPException(status_code=404, detail=f"Lab result {result_id} not found")
    if isinstance(principal, PatientPrincipal) and not principal.owns(result.patient_email):
        raise HTTPException(status_code=403, detail="Access denied: this lab result belongs to another patient")
    return result


@router.post("", response_model=LabResultSummary, status_code=201)
async def upload_lab_result(
    file: UploadFile = File(...),
    patient_email: str = Form(...),
    priority: Optional[Priority] = Form(None),
    store: LabResultStore = Depends(get_lab_result_store),
):
    patient_email = patient_email.strip()
    if not patient_email or "@" not in patient_email:
        raise HTTPException(status_code=400, detail="A valid email is required")

    try:
        settings = get_settings()
        # Reject on the declared size and type before reading the body
        validate_upload(file.content_type or "", file.size or 0, settings)
        file_data, size = await read_upload_as_data_uri(file)
        validate_upload(file.content_type or "", size, settings)
        result = await store.create_encoded(
            file_name=file.filename or "upload",
            file_data=file_data,
            size=size,
            patient_email=patient_email,
            content_type=file.content_type or "",
            priority=priority,
        )
    except UploadRejectedError as e:
        raise HTTPException(status_code=e.status_code, detail=e.reason)
    except FileReadError:
        raise HTTPException(status_code=400, detail="Failed to read uploaded file")
    except (StorageWriteError, StorageConflictError):
        raise HTTPException(status_code=500, detail="Failed to save lab result")
    return LabResultSummary.from_result(result)


@router.get("", response_model=LabResultListResponse)
async def list_lab_results(
    status: Optional[LabStatus] = Query(None),
    doctor_id: Optional[str] = Query(None, description="Only results assigned to this doctor"),
    unassigned: bool = Query(False),
    search: str = Query("", description="Search by patient email, file name, or reference number"),
    store: LabResultStore = Depends(get_lab_result_store),
    current_user: DoctorPrincipal = Depends(require_doctor),
):
    results = await store.get_all()
    if status:
        results = filters.by_status(results, status)
    if doctor_id:
        results = filters.by_doctor(results, doctor_id)
    if unassigned:
        results = filters.unassigned(results)
    if search:
        results = filters.search(results, search)
    return _summaries(results)


@router.get("/fresh", response_model=LabResultListResponse)
async def list_fresh_results(
    doctor_id: Optional[str] = Query(None),
    store: LabResultStore = Depends(get_lab_result_store),
    current_user: DoctorPrincipal = Depends(require_doctor),
):
    return _summaries(await store.get_fresh(doctor_id))


@router.get("/stats", response_model=StatusCounts)
async def lab_result_stats(
    store: LabResultStore = Depends(get_lab_result_store),
    current_user: DoctorPrincipal = Depends(require_doctor),
):
    results = await store.get_all()
    counts = filters.status_counts(results)
    return StatusCounts(
        pending=counts["pending"],
        in_review=counts["in-review"],
        completed=counts["completed"],
        fresh=len(filters.fresh(results, window=store.fresh_window)),
        total=len(results),
    )


@router.get("/mine", response_model=LabResultListResponse)
async def list_my_results(
    store: LabResultStore = Depends(get_lab_result_store),
    current_user: PatientPrincipal = Depends(require_patient),
):
    return _summaries(await store.get_by_patient_email(current_user.email))


@router.get("/{result_id}", response_model=LabResultSummary)
async def get_lab_result(
    result_id: str,
    store: LabResultStore = Depends(get_lab_result_store),
    current_user: Principal = Depends(require_principal),
):
    return LabResultSummary.from_result(await _get_visible(store, result_id, current_user))


@router.get("/{result_id}/file")
async def download_lab_result_file(
    result_id: str,
    store: LabResultStore = Depends(get_lab_result_store),
    current_user: Principal = Depends(require_principal),
):
    result = await _get_visible(store, result_id, current_user)
    try:
        content_type, content = decode_data_uri(result.file_data)
    except ValueError as e:
        logger.error("Stored file for %s is unreadable: %s", result_id, e)
        raise HTTPException(status_code=500, detail="Stored file could not be decoded")
    return Response(
        content=content,
        media_type=content_type,
        headers={"Content-Disposition": content_disposition(result.file_name)},
    )


@router.post("/{result_id}/assign", response_model=LabResultSummary)
async def assign_lab_result(
    result_id: str,
    body: AssignRequest = AssignRequest(),
    store: LabResultStore = Depends(get_lab_result_store),
    current_user: DoctorPrincipal = Depends(require_doctor),
):
    doctor = current_user.doctor
    if body.doctor_id:
        doctor = get_doctor(body.doctor_id)
        if doctor is None:
            raise HTTPException(status_code=404, detail=f"Doctor {body.doctor_id} not found")
    with _lifecycle_errors():
        result = await store.assign(result_id, doctor, expected_version=body.version)
    return _found(result, result_id)


@router.post("/{result_id}/unassign", response_model=LabResultSummary)
async def unassign_lab_result(
    result_id: str,
    body: VersionedRequest = VersionedRequest(),
    store: LabResultStore = Depends(get_lab_result_store),
    current_user: DoctorPrincipal = Depends(require_doctor),
):
    with _lifecycle_errors():
        result = await store.unassign(result_id, expected_version=body.version)
    return _found(result, result_id)


@router.put("/{result_id}/status", response_model=LabResultSummary)
async def update_lab_result_status(
    result_id: str,
    body: StatusUpdateRequest,
    store: LabResultStore = Depends(get_lab_result_store),
    current_user: DoctorPrincipal = Depends(require_doctor),
):
    with _lifecycle_errors():
        result = await store.update_status(result_id, body.status, expected_version=body.version)
    return _found(result, result_id)


@router.post("/{result_id}/interpretation/draft", response_model=LabResultSummary)
async def save_interpretation_draft(
    result_id: str,
    body: InterpretationRequest,
    store: LabResultStore = Depends(get_lab_result_store),
    current_user: DoctorPrincipal = Depends(require_doctor),
):
    with _lifecycle_errors():
        result = await store.save_draft(result_id, body.text, expected_version=body.version)
    return _found(result, result_id)


@router.post("/{result_id}/interpretation/send", response_model=LabResultSummary)
async def send_interpretation(
    result_id: str,
    body: InterpretationRequest,
    store: LabResultStore = Depends(get_lab_result_store),
    current_user: DoctorPrincipal = Depends(require_doctor),
):
    with _lifecycle_errors():
        result = await store.send_interpretation(result_id, body.text, expected_version=body.version)
    return _found(result, result_id)


@router.delete("/{result_id}")
async def delete_lab_result(
    result_id: str,
    store: LabResultStore = Depends(get_lab_result_store),
    current_user: DoctorPrincipal = Depends(require_doctor),
):
    with _lifecycle_errors():
        deleted = await store.delete(result_id)
    if not deleted:
        raise HTTPException(status_code=404, detail=f"Lab result {result_id} not found")
    return {"deleted": True, "result_id": result_id}
