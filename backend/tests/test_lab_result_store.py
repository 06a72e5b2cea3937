import json
import re
from datetime import datetime, timedelta, timezone
import pytest
from clarifind.exceptions import (
    ImmutableFieldError,
    InvalidTransitionError,
    MissingInterpretationError,
    StorageConflictError,
    UnknownFieldError,
    VersionConflictError,
)
from clarifind.services.doctors import get_doctor
from clarifind.services.lab_result_store import DEFAULT_STORAGE_KEY, LabResultStore
from clarifind.services.storage import MemoryStorage

PDF = b"%PDF-1.4 test content"


async def upload(store, file_name="CBC_Results.pdf", email="john.doe@email.com", **kwargs):
    return await store.create(file_name, PDF, email, content_type="application/pdf", **kwargs)


async def test_create_sets_initial_fields(store):
    result = await upload(store)

    assert re.fullmatch(r"CLR-\d{6}", result.id)
    assert result.status == "pending"
    assert result.test_type == "Complete Blood Count"
    assert result.file_size == "21 Bytes"
    assert result.file_type == "application/pdf"
    assert result.file_data.startswith("data:application/pdf;base64,")
    assert result.assigned_doctor is None
    assert result.version == 1
    assert result.effective_priority == "normal"


async def test_create_general_lab_test(store):
    result = await upload(store, file_name="random_file.pdf")
    assert result.test_type == "General Lab Test"


async def test_rapid_creates_get_unique_ids(store):
    ids = [(await upload(store)).id for _ in range(5)]
    assert len(set(ids)) == 5


async def test_get_all_preserves_insertion_order(store):
    first = await upload(store, file_name="lipid.pdf")
    second = await upload(store, file_name="thyroid.pdf")
    await store.save_draft(first.id, "draft")

    results = await store.get_all()
    assert [r.id for r in results] == [first.id, second.id]
    assert results[0].interpretation == "draft"
    assert results[1] == second


async def test_persisted_collection_uses_camel_case_without_empty_fields(store, storage):
    result = await upload(store)
    await store.assign(result.id, get_doctor("doc-001"))
    await store.unassign(result.id)

    stored = json.loads((await storage.read(DEFAULT_STORAGE_KEY)).value)
    assert len(stored) == 1
    assert stored[0]["patientEmail"] == "john.doe@email.com"
    assert stored[0]["testType"] == "Complete Blood Count"
    assert "assignedDoctor" not in stored[0]
    assert "assignedAt" not in stored[0]


async def test_get_all_empty_when_storage_absent(store):
    assert await store.get_all() == []
    assert await store.get_by_id("CLR-000001") is None


async def test_corrupt_storage_reads_as_empty():
    store = LabResultStore(MemoryStorage({DEFAULT_STORAGE_KEY: "{not json"}))
    assert await store.get_all() == []

    result = await upload(store)
    assert [r.id for r in await store.get_all()] == [result.id]


async def test_assign_moves_to_in_review(store):
    result = await upload(store)
    doctor = get_doctor("doc-002")

    await store.assign(result.id, doctor)
    assigned = await store.get_by_id(result.id)

    assert assigned.status == "in-review"
    assert assigned.assigned_doctor == doctor
    assert assigned.assigned_at is not None


async def test_second_assign_wins(store):
    result = await upload(store)
    await store.assign(result.id, get_doctor("doc-001"))
    await store.assign(result.id, get_doctor("doc-003"))

    assert (await store.get_by_id(result.id)).assigned_doctor.id == "doc-003"


async def test_unassign_restores_pending(store):
    result = await upload(store)
    await store.assign(result.id, get_doctor("doc-001"))
    await store.unassign(result.id)

    restored = await store.get_by_id(result.id)
    assert restored.status == "pending"
    assert restored.assigned_doctor is None
    assert restored.assigned_at is None


async def test_lifecycle_on_unknown_id_returns_none(store):
    assert await store.assign("CLR-404404", get_doctor("doc-001")) is None
    assert await store.unassign("CLR-404404") is None
    assert await store.update("CLR-404404", {"priority": "high"}) is None
    assert await store.send_interpretation("CLR-404404", "text") is None


async def test_send_empty_interpretation_leaves_record_unchanged(store):
    result = await upload(store)

    for text in ("", "   \n"):
        with pytest.raises(MissingInterpretationError):
            await store.send_interpretation(result.id, text)

    assert await store.get_by_id(result.id) == result


async def test_send_interpretation_completes(store):
    result = await upload(store)
    sent = await store.send_interpretation(result.id, "  All values normal.  ")

    assert sent.interpretation == "All values normal."
    assert sent.status == "completed"
    assert await store.get_by_id(result.id) == sent


async def test_completed_interpretation_cannot_be_resent(store):
    result = await upload(store)
    sent = await store.send_interpretation(result.id, "Final reading")

    with pytest.raises(InvalidTransitionError):
        await store.send_interpretation(result.id, "Rewritten")
    assert await store.get_by_id(result.id) == sent


async def test_save_draft_keeps_status(store):
    result = await upload(store)
    await store.assign(result.id, get_doctor("doc-001"))

    draft = await store.save_draft(result.id, "Looks fine so far")
    assert draft.interpretation == "Looks fine so far"
    assert draft.status == "in-review"


async def test_save_empty_draft_is_noop(store):
    result = await upload(store)
    unchanged = await store.save_draft(result.id, "  ")
    assert unchanged == result
    assert unchanged.version == 1


async def test_update_is_shallow_and_bumps_version(store):
    result = await upload(store)
    updated = await store.update(result.id, {"priority": "urgent"})

    assert updated.priority == "urgent"
    assert updated.version == 2
    assert updated.file_name == result.file_name


async def test_update_rejects_immutable_fields(store):
    result = await upload(store)
    with pytest.raises(ImmutableFieldError):
        await store.update(result.id, {"patient_email": "someone@else.com"})


async def test_update_rejects_immutable_fields_by_alias(store):
    result = await upload(store)
    with pytest.raises(ImmutableFieldError) as blocked:
        await store.update(result.id, {"patientEmail": "evil@x.com", "testType": "Hacked"})
    assert blocked.value.fields == ["patient_email", "test_type"]
    assert await store.get_by_id(result.id) == result


async def test_update_accepts_aliases_for_mutable_fields(store):
    result = await upload(store)
    updated = await store.update(result.id, {"assignedDoctor": get_doctor("doc-001"), "priority": "high"})
    assert updated.assigned_doctor.id == "doc-001"
    assert updated.priority == "high"


async def test_update_rejects_unknown_fields(store):
    result = await upload(store)
    with pytest.raises(UnknownFieldError):
        await store.update(result.id, {"stauts": "completed"})

    unchanged = await store.get_by_id(result.id)
    assert unchanged.version == 1
    assert unchanged.status == "pending"


async def test_stale_version_is_rejected(store):
    result = await upload(store)
    await store.assign(result.id, get_doctor("doc-001"), expected_version=1)

    with pytest.raises(VersionConflictError) as conflict:
        await store.send_interpretation(result.id, "late edit", expected_version=1)
    assert conflict.value.actual == 2
    assert (await store.get_by_id(result.id)).interpretation is None


async def test_update_status_requires_assignment(store):
    result = await upload(store)

    with pytest.raises(InvalidTransitionError):
        await store.update_status(result.id, "completed")
    with pytest.raises(InvalidTransitionError):
        await store.update_status(result.id, "in-review")

    await store.assign(result.id, get_doctor("doc-001"))
    completed = await store.update_status(result.id, "completed")
    assert completed.status == "completed"
    assert completed.assigned_doctor.id == "doc-001"


async def test_update_status_to_pending_with_doctor_is_rejected(store):
    result = await upload(store)
    await store.assign(result.id, get_doctor("doc-001"))

    with pytest.raises(InvalidTransitionError):
        await store.update_status(result.id, "pending")


async def test_update_status_unknown_value(store):
    result = await upload(store)
    with pytest.raises(InvalidTransitionError):
        await store.update_status(result.id, "archived")


async def test_delete(store):
    result = await upload(store)
    assert await store.delete(result.id) is True
    assert await store.delete(result.id) is False
    assert await store.get_all() == []


async def test_queries(store):
    mine = await upload(store, file_name="lipid.pdf", email="Jane@Email.com")
    other = await upload(store, file_name="tsh.pdf")
    await store.assign(other.id, get_doctor("doc-002"))

    assert [r.id for r in await store.get_by_status("pending")] == [mine.id]
    assert [r.id for r in await store.get_by_doctor("doc-002")] == [other.id]
    assert [r.id for r in await store.get_unassigned()] == [mine.id]
    assert [r.id for r in await store.get_by_patient_email("jane@email.com")] == [mine.id]
    assert [r.id for r in await store.get_by_status_and_doctor("in-review", "doc-002")] == [other.id]
    assert await store.get_by_status_and_doctor("in-review", "doc-001") == []
    assert [r.id for r in await store.search("LIPID")] == [mine.id]


async def test_fresh_results(store):
    result = await upload(store)
    assert [r.id for r in await store.get_fresh()] == [result.id]

    later = datetime.now(timezone.utc) + timedelta(hours=25)
    assert await store.get_fresh(now=later) == []


async def test_seed_demo_data_only_once(store):
    assert await store.seed_demo_data() is True
    assert await store.seed_demo_data() is False

    results = await store.get_all()
    assert len(results) == 5
    assert {r.id for r in await store.get_fresh()} == {"CLR-123456", "CLR-123459"}
    assert (await store.get_by_id("CLR-123458")).status == "completed"


class FlakyStorage(MemoryStorage):
    """Simulates another writer landing between our read and write."""

    def __init__(self, conflicts):
        super().__init__()
        self.conflicts = conflicts
        self.writes = 0

    async def write(self, key, value, expected_revision):
        self.writes += 1
        if self.conflicts:
            self.conflicts -= 1
            raise StorageConflictError(key, expected_revision)
        return await super().write(key, value, expected_revision)


async def test_write_conflict_is_retried():
    storage = FlakyStorage(conflicts=2)
    store = LabResultStore(storage)

    result = await upload(store)
    assert storage.writes == 3
    assert [r.id for r in await store.get_all()] == [result.id]


async def test_write_conflict_gives_up():
    store = LabResultStore(FlakyStorage(conflicts=3))
    with pytest.raises(StorageConflictError):
        await upload(store)
    assert await store.get_all() == []
