from datetime import datetime, timezone

import pytest
from dateutil.relativedelta import relativedelta

from file_registry.exceptions import ConflictError, NotFoundError, TranslationError, ValidationError
from file_registry.models import ClinicalExemption, EmbargoStage, ReleaseState
from file_registry.schemas import FileFilter, FileFilterProperties, FileStateFilter, UpdateOptions
from file_registry.service import FileService


@pytest.mark.asyncio
async def test_files_are_presented_with_prefixed_ids(service, make_file):
    created = await service.create_file(make_file("obj-1"))
    assert created.file_id == f"FL{created.file_number}"

    fetched = await service.get_file_by_id(created.file_id)
    assert fetched.object_id == "obj-1"
    assert fetched.model_dump(by_alias=True)["fileId"] == created.file_id


@pytest.mark.asyncio
async def test_lookup_errors(service):
    with pytest.raises(NotFoundError):
        await service.get_file_by_id("FL999")
    with pytest.raises(NotFoundError):
        await service.get_file_by_object_id("missing")
    with pytest.raises(TranslationError):
        await service.get_file_by_id("999")
    with pytest.raises(TranslationError):
        await service.get_file_by_id("FL" + str(2**64))
    with pytest.raises(TranslationError):
        await service.delete_by_ids(["FL" + str(2**64)])


@pytest.mark.asyncio
async def test_get_or_create_returns_existing(service, make_file):
    first = await service.get_or_create_file(make_file("obj-1", labels=[{"key": "ignored"}]))
    assert first.labels == []

    again = await service.get_or_create_file(make_file("obj-1", programId="OTHER"))
    assert again.file_id == first.file_id
    assert again.program_id == "PGM1"


@pytest.mark.asyncio
async def test_query_helpers(service, make_file):
    await service.create_file(make_file("obj-1", analysisId="A1", programId="P1"))
    await service.create_file(make_file("obj-2", analysisId="A1", programId="P2"))
    await service.create_file(make_file("obj-3", analysisId="A2", programId="P2", embargoStage="PUBLIC"))

    assert [f.object_id for f in await service.get_files_by_analysis_id("A1")] == ["obj-1", "obj-2"]
    assert [f.object_id for f in await service.get_files_by_object_ids(["obj-3", "obj-1"])] == ["obj-1", "obj-3"]
    assert await service.get_files_by_object_ids([]) == []
    assert await service.get_programs() == ["P1", "P2"]
    assert await service.count_files(FileFilter(exclude=FileFilterProperties(programs=["P1"]))) == 2

    public = await service.get_files_by_state(FileStateFilter(embargo_stage=EmbargoStage.PUBLIC))
    assert [f.object_id for f in public] == ["obj-3"]

    streamed = [f.file_id async for f in service.iterate_files()]
    assert len(streamed) == 3


@pytest.mark.asyncio
async def test_paginated_files(service, make_file):
    for i in range(5):
        await service.create_file(make_file(f"obj-{i}", programId="P1" if i < 4 else "P2"))

    response = await service.get_paginated_files(page=2, limit=3, properties=FileFilterProperties(programs=["P1"]))
    assert response.meta.total == 4
    assert response.meta.total_pages == 2
    assert response.meta.count == 1
    assert response.meta.has_prev is True
    assert response.meta.has_next is False
    assert [f.object_id for f in response.data] == ["obj-3"]

    empty = await service.get_paginated_files(properties=FileFilterProperties(programs=["none"]))
    assert empty.meta.total == 0
    assert empty.meta.total_pages == 0
    assert empty.data == []


# =============================================================================
# Targeted updates
# =============================================================================


@pytest.mark.asyncio
async def test_release_and_admin_updates(service, make_file):
    await service.create_file(make_file("obj-1"))

    updated = await service.update_file_release_properties(
        "obj-1", embargo_stage=EmbargoStage.MEMBER_ACCESS, release_state=ReleaseState.QUEUED
    )
    assert updated.embargo_stage == EmbargoStage.MEMBER_ACCESS
    assert updated.release_state == ReleaseState.QUEUED

    updated = await service.update_file_admin_controls("obj-1", admin_hold=True, admin_promote=EmbargoStage.PUBLIC)
    assert updated.admin_hold is True
    assert updated.admin_promote == EmbargoStage.PUBLIC

    updated = await service.update_file_admin_controls("obj-1", admin_promote=None)
    assert updated.admin_promote is None

    published = datetime(2024, 1, 1, tzinfo=timezone.utc)
    updated = await service.update_file_publish_status("obj-1", status="PUBLISHED", first_published=published)
    assert updated.first_published.replace(tzinfo=None) == published.replace(tzinfo=None)
    assert updated.version == 5


@pytest.mark.asyncio
async def test_recalculate_file_state_queues_eligible_files(service, make_file):
    published = datetime.now(timezone.utc) - relativedelta(months=30)
    file = await service.create_file(make_file("obj-1", firstPublished=published.isoformat()))

    recalculated = await service.recalculate_file_state(file)
    assert recalculated.embargo_stage == EmbargoStage.ASSOCIATE_ACCESS
    assert recalculated.release_state == ReleaseState.QUEUED

    # Nothing changes on a second pass
    again = await service.recalculate_file_state(recalculated)
    assert again.version == recalculated.version


# =============================================================================
# Bulk updates & delete
# =============================================================================


@pytest.mark.asyncio
async def test_admin_promote_and_demote(service, make_file):
    await service.create_file(make_file("obj-1", programId="P1"))
    await service.create_file(make_file("obj-2", programId="P2"))

    promoted = await service.admin_promote(
        FileFilter(include=FileFilterProperties(programs=["P1"])),
        EmbargoStage.MEMBER_ACCESS,
        UpdateOptions(return_documents=True),
    )
    assert [(f.object_id, f.admin_promote) for f in promoted] == [("obj-1", EmbargoStage.MEMBER_ACCESS)]

    result = await service.admin_demote(FileFilter(), EmbargoStage.PROGRAM_ONLY)
    assert result is None
    for f in await service.get_files():
        assert f.admin_demote == EmbargoStage.PROGRAM_ONLY


@pytest.mark.asyncio
async def test_delete_by_prefixed_ids(service, make_file):
    a = await service.create_file(make_file("obj-1"))
    b = await service.create_file(make_file("obj-2"))

    assert await service.delete_by_ids([a.file_id]) == 1
    with pytest.raises(NotFoundError):
        await service.get_file_by_id(a.file_id)
    assert (await service.get_file_by_object_id("obj-2")).file_id == b.file_id

    with pytest.raises(TranslationError):
        await service.delete_by_ids(["nope"])


# =============================================================================
# Labels
# =============================================================================


@pytest.mark.asyncio
async def test_add_or_update_labels(service, make_file):
    file = await service.create_file(make_file("obj-1", labels=[{"key": "tissue", "value": ["liver"]}]))

    updated = await service.add_or_update_file_labels(
        file.file_id,
        [{"key": "Tissue ", "value": ["lung"]}, {"key": "Assay", "value": ["WGS"]}],
    )
    assert [(label.key, label.value) for label in updated.labels] == [
        ("tissue", ["lung"]),
        ("assay", ["WGS"]),
    ]
    assert updated.version == file.version + 1


@pytest.mark.asyncio
async def test_remove_labels(service, make_file):
    file = await service.create_file(
        make_file("obj-1", labels=[{"key": "a", "value": []}, {"key": "b", "value": ["x"]}])
    )
    updated = await service.remove_labels(file.file_id, ["a", "missing"])
    assert [label.key for label in updated.labels] == ["b"]


@pytest.mark.asyncio
async def test_label_update_detects_concurrent_change(service, store, make_file, monkeypatch):
    file = await service.create_file(make_file("obj-1"))
    stale = await store.get_by_id(file.file_number)

    # Someone else writes between our read and our write
    await store.update_one("obj-1", {"status": "SUPPRESSED"})

    async def get_stale(_file_id):
        return stale

    monkeypatch.setattr(store, "get_by_id", get_stale)
    with pytest.raises(ConflictError):
        await service.add_or_update_file_labels(file.file_id, [{"key": "tissue"}])

    monkeypatch.undo()
    current = await service.get_file_by_id(file.file_id)
    assert current.labels == []
    assert current.status == "SUPPRESSED"


@pytest.mark.asyncio
async def test_get_or_create_recovers_from_concurrent_create(service, store, make_file, monkeypatch):
    get_by_object_id = store.get_by_object_id
    lookups = []

    async def lookup_before_winner_commits(object_id):
        lookups.append(object_id)
        if len(lookups) == 1:
            # The competing caller has not inserted yet when we first look
            await FileService(store).create_file(make_file(object_id))
            return None
        return await get_by_object_id(object_id)

    monkeypatch.setattr(store, "get_by_object_id", lookup_before_winner_commits)
    file = await service.get_or_create_file(make_file("obj-1"))

    assert file.object_id == "obj-1"
    assert lookups == ["obj-1", "obj-1"]
    assert await store.count() == 1


# =============================================================================
# Clinical exemption
# =============================================================================


@pytest.mark.asyncio
async def test_apply_and_remove_clinical_exemption(service, make_file):
    await service.create_file(make_file("obj-1", programId="P1"))
    await service.create_file(make_file("obj-2", programId="P2"))

    exempted = await service.apply_clinical_exemption(
        FileFilter(include=FileFilterProperties(programs=["P1"])),
        "EARLY_RELEASE",
        UpdateOptions(return_documents=True),
    )
    assert [(f.object_id, f.clinical_exemption) for f in exempted] == [("obj-1", ClinicalExemption.EARLY_RELEASE)]
    assert (await service.get_file_by_object_id("obj-2")).clinical_exemption is None
    assert exempted[0].model_dump(mode="json", by_alias=True)["clinicalExemption"] == "EARLY_RELEASE"

    result = await service.remove_clinical_exemption(FileFilter())
    assert result is None
    for f in await service.get_files():
        assert f.clinical_exemption is None


@pytest.mark.asyncio
async def test_apply_clinical_exemption_rejects_unknown_reason(service, make_file):
    await service.create_file(make_file("obj-1"))
    with pytest.raises(ValidationError, match="clinical exemption"):
        await service.apply_clinical_exemption(FileFilter(), "BECAUSE")
    assert (await service.get_file_by_object_id("obj-1")).version == 1
