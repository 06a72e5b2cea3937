from typing import Optional
from clarifind.schemas.lab_result import Doctor

# Fixed roster; doctors are not persisted independently of lab results.
AVAILABLE_DOCTORS = [
    Doctor(id="doc-001", name="Dr. Sarah Wilson", email="sarah.wilson@clarifind.com",
           specialization="Internal Medicine"),
    Doctor(id="doc-002", name="Dr. Michael Chen", email="michael.chen@clarifind.com",
           specialization="Cardiology"),
    Doctor(id="doc-003", name="Dr. Emily Rodriguez", email="emily.rodriguez@clarifind.com",
           specialization="Endocrinology"),
    Doctor(id="doc-004", name="Dr. David Park", email="david.park@clarifind.com",
           specialization="General Practice"),
]


def get_available_doctors() -> list[Doctor]:
    return list(AVAILABLE_DOCTORS)


def get_doctor(doctor_id: str) -> Optional[Doctor]:
    return next((d for d in AVAILABLE_DOCTORS if d.id == doctor_id), None)


def get_doctor_by_email(email: str) -> Optional[Doctor]:
    email = email.strip().lower()
    return next((d for d in AVAILABLE_DOCTORS if d.email.lower() == email), None)
