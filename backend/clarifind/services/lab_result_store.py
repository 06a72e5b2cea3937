"""
Lab result store and lifecycle operations.

All records live in one JSON array under a single storage key. Every
mutation re-reads the collection, applies the change, and writes the
whole array back against the revision it read, retrying on conflict.
"""

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional
from pydantic import TypeAdapter, ValidationError
from clarifind.exceptions import (
    ImmutableFieldError,
    InvalidTransitionError,
    MissingInterpretationError,
    StorageConflictError,
    UnknownFieldError,
    VersionConflictError,
)
from clarifind.schemas.lab_result import LAB_STATUSES, Doctor, LabResult
from clarifind.services import lab_result_filters as filters
from clarifind.services.doctors import AVAILABLE_DOCTORS
from clarifind.services.encoding import (
    detect_test_type,
    format_file_size,
    to_data_uri,
)
from clarifind.services.reference import generate_reference_number
from clarifind.services.storage import StorageBackend

logger = logging.getLogger(__name__)

DEFAULT_STORAGE_KEY = "clarifind_lab_results"
MAX_WRITE_ATTEMPTS = 3

IMMUTABLE_FIELDS = frozenset({
    "id", "patient_email", "file_name", "file_data", "file_type",
    "file_size", "upload_date", "test_type", "version",
})

_records = TypeAdapter(list[LabResult])


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _index_of(records: list[LabResult], result_id: str) -> Optional[int]:
    return next((i for i, r in enumerate(records) if r.id == result_id), None)


def _normalise_fields(fields: dict) -> dict:
    """Map camelCase aliases onto field names; unknown keys are rejected."""
    names = {}
    for name, info in LabResult.model_fields.items():
        names[name] = name
        if info.alias:
            names[info.alias] = name
    unknown = [key for key in fields if key not in names]
    if unknown:
        raise UnknownFieldError(unknown)
    return {names[key]: value for key, value in fields.items()}


def _sent_fields(result_id: str, text: str) -> Callable[[LabResult], dict]:
    def build_fields(current):
        if current.status == "completed":
            raise InvalidTransitionError(result_id, "the interpretation has already been sent")
        return {"interpretation": text, "status": "completed"}
    return build_fields


class LabResultStore:
    def __init__(
        self,
        storage: StorageBackend,
        key: str = DEFAULT_STORAGE_KEY,
        fresh_window: timedelta = filters.FRESH_WINDOW,
    ):
        self.storage = storage
        self.key = key
        self.fresh_window = fresh_window
        self._lock = asyncio.Lock()

    # -- persistence -------------------------------------------------------

    async def _load(self) -> tuple[list[LabResult], Optional[int]]:
        stored = await self.storage.read(self.key)
        if stored is None:
            return [], None
        try:
            return _records.validate_json(stored.value), stored.revision
        except (ValidationError, ValueError) as e:
            logger.warning("Stored lab results under %s could not be decoded, treating as empty: %s", self.key, e)
            return [], stored.revision

    def _dump(self, records: list[LabResult]) -> str:
        return _records.dump_json(records, by_alias=True, exclude_none=True).decode("utf-8")

    async def _mutate(self, mutation: Callable[[list[LabResult]], tuple]):
        """
        Run mutation(records) -> (result, changed) against a fresh read and
        persist the collection when it reports a change.
        """
        async with self._lock:
            for attempt in range(1, MAX_WRITE_ATTEMPTS + 1):
                records, revision = await self._load()
                result, changed = mutation(records)
                if not changed:
                    return result
                try:
                    await self.storage.write(self.key, self._dump(records), revision)
                    return result
                except StorageConflictError:
                    if attempt == MAX_WRITE_ATTEMPTS:
                        raise
                    logger.warning("Lab results changed underneath us, retrying (attempt %d)", attempt)

    # -- record store ------------------------------------------------------

    async def get_all(self) -> list[LabResult]:
        records, _ = await self._load()
        return records

    async def get_by_id(self, result_id: str) -> Optional[LabResult]:
        records = await self.get_all()
        index = _index_of(records, result_id)
        return records[index] if index is not None else None

    async def create(
        self,
        file_name: str,
        content: bytes,
        patient_email: str,
        content_type: str = "",
        priority: Optional[str] = None,
    ) -> LabResult:
        return await self.create_encoded(
            file_name=file_name,
            file_data=to_data_uri(content, content_type),
            size=len(content),
            patient_email=patient_email,
            content_type=content_type,
            priority=priority,
        )

    async def create_encoded(
        self,
        file_name: str,
        file_data: str,
        size: int,
        patient_email: str,
        content_type: str = "",
        priority: Optional[str] = None,
    ) -> LabResult:
        def mutation(records):
            result = LabResult(
                id=generate_reference_number(r.id for r in records),
                patient_email=patient_email,
                file_name=file_name,
                file_data=file_data,
                file_type=content_type,
                upload_date=_now(),
                status="pending",
                file_size=format_file_size(size),
                test_type=detect_test_type(file_name),
                priority=priority,
            )
            records.append(result)
            return result, True

        result = await self._mutate(mutation)
        logger.info("Created lab result %s (%s) for %s", result.id, result.test_type, patient_email)
        return result

    async def update(
        self,
        result_id: str,
        fields: dict,
        expected_version: Optional[int] = None,
    ) -> Optional[LabResult]:
        """Shallow-merge fields into a record. None values clear a field."""
        fields = _normalise_fields(fields)
        blocked = IMMUTABLE_FIELDS & set(fields)
        if blocked:
            raise ImmutableFieldError(blocked)
        return await self._update_with(result_id, lambda current: fields, expected_version)

    async def _update_with(
        self,
        result_id: str,
        build_fields: Callable[[LabResult], dict],
        expected_version: Optional[int],
    ) -> Optional[LabResult]:
        def mutation(records):
            index = _index_of(records, result_id)
            if index is None:
                return None, False
            current = records[index]
            if expected_version is not None and current.version != expected_version:
                raise VersionConflictError(result_id, expected_version, current.version)
            merged = {**current.model_dump(), **build_fields(current), "version": current.version + 1}
            records[index] = LabResult.model_validate(merged)
            return records[index], True

        return await self._mutate(mutation)

    async def delete(self, result_id: str) -> bool:
        def mutation(records):
            index = _index_of(records, result_id)
            if index is None:
                return False, False
            del records[index]
            return True, True

        deleted = await self._mutate(mutation)
        if deleted:
            logger.info("Deleted lab result %s", result_id)
        return deleted

    # -- lifecycle ---------------------------------------------------------

    async def assign(
        self,
        result_id: str,
        doctor: Doctor,
        expected_version: Optional[int] = None,
    ) -> Optional[LabResult]:
        result = await self._update_with(
            result_id,
            lambda current: {"assigned_doctor": doctor, "assigned_at": _now(), "status": "in-review"},
            expected_version,
        )
        if result:
            logger.info("Assigned %s to %s", result_id, doctor.id)
        return result

    async def unassign(self, result_id: str, expected_version: Optional[int] = None) -> Optional[LabResult]:
        result = await self._update_with(
            result_id,
            lambda current: {"assigned_doctor": None, "assigned_at": None, "status": "pending"},
            expected_version,
        )
        if result:
            logger.info("Unassigned %s", result_id)
        return result

    async def update_status(
        self,
        result_id: str,
        status: str,
        expected_version: Optional[int] = None,
    ) -> Optional[LabResult]:
        """
        Set the status alone. The assignment must already agree with the
        target: pending records have no doctor, in-review and completed
        records have one. Use assign/unassign to change both together.
        """
        if status not in LAB_STATUSES:
            raise InvalidTransitionError(result_id, f"unknown status '{status}'")

        def build_fields(current):
            if status == "pending" and current.assigned_doctor is not None:
                raise InvalidTransitionError(
                    result_id, "a result with an assigned doctor cannot return to pending; unassign it instead"
                )
            if status != "pending" and current.assigned_doctor is None:
                raise InvalidTransitionError(result_id, f"assign a doctor before moving to {status}")
            return {"status": status}

        result = await self._update_with(result_id, build_fields, expected_version)
        if result:
            logger.info("Status of %s set to %s", result_id, status)
        return result

    async def send_interpretation(
        self,
        result_id: str,
        text: str,
        expected_version: Optional[int] = None,
    ) -> Optional[LabResult]:
        text = (text or "").strip()
        if not text:
            raise MissingInterpretationError()
        result = await self._update_with(
            result_id,
            _sent_fields(result_id, text),
            expected_version,
        )
        if result:
            logger.info("Interpretation sent for %s", result_id)
        return result

    async def save_draft(
        self,
        result_id: str,
        text: str,
        expected_version: Optional[int] = None,
    ) -> Optional[LabResult]:
        text = (text or "").strip()
        if not text:
            return await self.get_by_id(result_id)
        return await self._update_with(result_id, lambda current: {"interpretation": text}, expected_version)

    # -- queries -----------------------------------------------------------

    async def get_by_status(self, status: str) -> list[LabResult]:
        return filters.by_status(await self.get_all(), status)

    async def get_by_patient_email(self, email: str) -> list[LabResult]:
        return filters.by_patient_email(await self.get_all(), email)

    async def get_by_doctor(self, doctor_id: str) -> list[LabResult]:
        return filters.by_doctor(await self.get_all(), doctor_id)

    async def get_unassigned(self) -> list[LabResult]:
        return filters.unassigned(await self.get_all())

    async def get_by_status_and_doctor(self, status: str, doctor_id: Optional[str] = None) -> list[LabResult]:
        return filters.by_status_and_doctor(await self.get_all(), status, doctor_id)

    async def get_fresh(self, doctor_id: Optional[str] = None, now: Optional[datetime] = None) -> list[LabResult]:
        return filters.fresh(await self.get_all(), doctor_id, now=now, window=self.fresh_window)

    async def search(self, term: str) -> list[LabResult]:
        return filters.search(await self.get_all(), term)

    # -- demo data ---------------------------------------------------------

    async def seed_demo_data(self, now: Optional[datetime] = None) -> bool:
        """Write the demo records if the collection is empty. Returns True if seeded."""
        now = now or _now()

        def mutation(records):
            if records:
                return False, False
            records.extend(_demo_results(now))
            return True, True

        seeded = await self._mutate(mutation)
        if seeded:
            logger.info("Seeded demo lab results under %s", self.key)
        return seeded


DEMO_PDF = to_data_uri(b"%PDF-1.4\n% Clarifind demo lab report\n%%EOF\n", "application/pdf")


def _demo_results(now: datetime) -> list[LabResult]:
    doctors = AVAILABLE_DOCTORS

    def demo(**fields) -> LabResult:
        return LabResult(file_data=DEMO_PDF, file_type="application/pdf", priority="normal", **fields)

    return [
        demo(id="CLR-123456", patient_email="john.doe@email.com", file_name="CBC_Results_Jan2024.pdf",
             upload_date=now, status="pending", file_size="1.2 MB", test_type="Complete Blood Count"),
        demo(id="CLR-123457", patient_email="sarah.smith@email.com", file_name="Lipid_Panel_Results.pdf",
             upload_date=datetime(2024, 1, 14, 14, 45, tzinfo=timezone.utc), status="in-review",
             file_size="0.8 MB", test_type="Lipid Panel", assigned_doctor=doctors[1],
             assigned_at=datetime(2024, 1, 14, 15, 0, tzinfo=timezone.utc)),
        demo(id="CLR-123458", patient_email="mike.jones@email.com", file_name="Thyroid_Function_Test.pdf",
             upload_date=datetime(2024, 1, 13, 9, 15, tzinfo=timezone.utc), status="completed",
             file_size="1.0 MB", test_type="Thyroid Function", assigned_doctor=doctors[2],
             assigned_at=datetime(2024, 1, 13, 10, 0, tzinfo=timezone.utc),
             interpretation=(
                 "Your thyroid function tests show normal TSH, T3, and T4 levels. All values are "
                 "within the healthy reference ranges, indicating that your thyroid gland is "
                 "functioning properly. Continue with your current lifestyle and follow up as "
                 "recommended by your primary care physician."
             )),
        LabResult(id="CLR-123459", patient_email="emma.williams@email.com", file_name="Glucose_A1C_Results.pdf",
                  file_data=DEMO_PDF, file_type="application/pdf", upload_date=now - timedelta(hours=2),
                  status="pending", file_size="0.9 MB", test_type="Glucose/Diabetes Panel", priority="high"),
        demo(id="CLR-123460", patient_email="alex.brown@email.com", file_name="Liver_Function_Panel.pdf",
             upload_date=datetime(2024, 1, 12, 16, 30, tzinfo=timezone.utc), status="in-review",
             file_size="1.1 MB", test_type="Liver Function", assigned_doctor=doctors[0],
             assigned_at=datetime(2024, 1, 12, 17, 0, tzinfo=timezone.utc)),
    ]
