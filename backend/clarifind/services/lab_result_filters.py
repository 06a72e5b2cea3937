"""Views over a full lab result collection. Every filter is a linear scan."""

from datetime import datetime, timedelta, timezone
from typing import Iterable, Optional
from clarifind.schemas.lab_result import LAB_STATUSES, LabResult

FRESH_WINDOW = timedelta(hours=24)


def by_status(records: Iterable[LabResult], status: str) -> list[LabResult]:
    return [r for r in records if r.status == status]


def by_doctor(records: Iterable[LabResult], doctor_id: str) -> list[LabResult]:
    return [r for r in records if r.assigned_doctor is not None and r.assigned_doctor.id == doctor_id]


def unassigned(records: Iterable[LabResult]) -> list[LabResult]:
    return [r for r in records if r.assigned_doctor is None]


def by_patient_email(records: Iterable[LabResult], email: str) -> list[LabResult]:
    email = email.lower()
    return [r for r in records if r.patient_email.lower() == email]


def by_status_and_doctor(records: Iterable[LabResult], status: str,
                         doctor_id: Optional[str] = None) -> list[LabResult]:
    matching = by_status(records, status)
    if not doctor_id:
        return matching
    return by_doctor(matching, doctor_id)


def fresh(records: Iterable[LabResult], doctor_id: Optional[str] = None,
          now: Optional[datetime] = None, window: timedelta = FRESH_WINDOW) -> list[LabResult]:
    """Pending results uploaded strictly after now - window."""
    cutoff = (now or datetime.now(timezone.utc)) - window
    results = [r for r in records if r.status == "pending" and r.upload_date > cutoff]
    if doctor_id:
        results = [
            r for r in results
            if r.assigned_doctor is None or r.assigned_doctor.id == doctor_id
        ]
    return results


def search(records: Iterable[LabResult], term: str) -> list[LabResult]:
    """Case-insensitive match on patient email, file name, or reference number."""
    term = (term or "").strip().lower()
    if not term:
        return list(records)
    return [
        r for r in records
        if term in r.patient_email.lower() or term in r.file_name.lower() or term in r.id.lower()
    ]


def status_counts(records: Iterable[LabResult]) -> dict[str, int]:
    counts = {status: 0 for status in LAB_STATUSES}
    for r in records:
        counts[r.status] += 1
    return counts
