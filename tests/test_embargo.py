from datetime import datetime, timezone
from types import SimpleNamespace

import pytest

from file_registry.embargo import (
    calculate_embargo_stage,
    get_embargo_stage,
    months_since,
    recalculate_release_properties,
)
from file_registry.models import EmbargoStage, ReleaseState

PUBLISHED = datetime(2020, 1, 15, tzinfo=timezone.utc)


def _file(**overrides):
    fields = dict(
        first_published=PUBLISHED,
        embargo_stage=EmbargoStage.PROGRAM_ONLY,
        release_state=ReleaseState.RESTRICTED,
        admin_promote=None,
        admin_demote=None,
        admin_hold=None,
    )
    fields.update(overrides)
    return SimpleNamespace(**fields)


@pytest.mark.parametrize(
    "now, expected",
    [
        (datetime(2020, 1, 15, tzinfo=timezone.utc), EmbargoStage.PROGRAM_ONLY),
        (datetime(2021, 1, 14, tzinfo=timezone.utc), EmbargoStage.PROGRAM_ONLY),
        (datetime(2021, 1, 15, tzinfo=timezone.utc), EmbargoStage.MEMBER_ACCESS),
        (datetime(2021, 7, 14, tzinfo=timezone.utc), EmbargoStage.MEMBER_ACCESS),
        (datetime(2021, 7, 15, tzinfo=timezone.utc), EmbargoStage.ASSOCIATE_ACCESS),
        (datetime(2022, 1, 14, tzinfo=timezone.utc), EmbargoStage.ASSOCIATE_ACCESS),
        (datetime(2022, 1, 15, tzinfo=timezone.utc), EmbargoStage.PUBLIC),
        (datetime(2030, 1, 1, tzinfo=timezone.utc), EmbargoStage.PUBLIC),
    ],
)
def test_stage_boundaries(now, expected):
    assert calculate_embargo_stage(PUBLISHED, now) == expected


def test_unpublished_file_is_program_only():
    assert calculate_embargo_stage(None) == EmbargoStage.PROGRAM_ONLY


def test_naive_datetimes_are_treated_as_utc():
    assert months_since(datetime(2020, 1, 15), datetime(2020, 7, 15, tzinfo=timezone.utc)) == 6


def test_admin_promote_raises_stage():
    now = datetime(2020, 3, 1, tzinfo=timezone.utc)
    assert get_embargo_stage(_file(admin_promote=EmbargoStage.ASSOCIATE_ACCESS), now) == EmbargoStage.ASSOCIATE_ACCESS
    # A promote below the calculated stage has no effect
    later = datetime(2021, 3, 1, tzinfo=timezone.utc)
    assert get_embargo_stage(_file(admin_promote=EmbargoStage.PROGRAM_ONLY), later) == EmbargoStage.MEMBER_ACCESS


def test_admin_demote_caps_stage():
    now = datetime(2023, 1, 1, tzinfo=timezone.utc)
    assert get_embargo_stage(_file(admin_demote=EmbargoStage.MEMBER_ACCESS), now) == EmbargoStage.MEMBER_ACCESS
    file = _file(admin_promote=EmbargoStage.PUBLIC, admin_demote=EmbargoStage.PROGRAM_ONLY)
    assert get_embargo_stage(file, datetime(2020, 2, 1, tzinfo=timezone.utc)) == EmbargoStage.PROGRAM_ONLY


def test_recalculate_moves_stage_forward():
    now = datetime(2021, 8, 1, tzinfo=timezone.utc)
    assert recalculate_release_properties(_file(), now) == {"embargo_stage": EmbargoStage.ASSOCIATE_ACCESS}


def test_recalculate_queues_public_eligible_file():
    now = datetime(2023, 1, 1, tzinfo=timezone.utc)
    assert recalculate_release_properties(_file(), now) == {
        "embargo_stage": EmbargoStage.ASSOCIATE_ACCESS,
        "release_state": ReleaseState.QUEUED,
    }


def test_held_file_is_not_queued():
    now = datetime(2023, 1, 1, tzinfo=timezone.utc)
    file = _file(admin_hold=True, release_state=ReleaseState.QUEUED)
    assert recalculate_release_properties(file, now) == {
        "embargo_stage": EmbargoStage.ASSOCIATE_ACCESS,
        "release_state": ReleaseState.RESTRICTED,
    }


def test_released_file_keeps_release_state():
    now = datetime(2023, 1, 1, tzinfo=timezone.utc)
    released = _file(embargo_stage=EmbargoStage.PUBLIC, release_state=ReleaseState.PUBLIC)
    assert recalculate_release_properties(released, now) == {}

    demoted = _file(
        embargo_stage=EmbargoStage.PUBLIC,
        release_state=ReleaseState.PUBLIC,
        admin_demote=EmbargoStage.MEMBER_ACCESS,
    )
    assert recalculate_release_properties(demoted, now) == {"embargo_stage": EmbargoStage.MEMBER_ACCESS}


def test_up_to_date_file_has_no_changes():
    now = datetime(2020, 6, 1, tzinfo=timezone.utc)
    assert recalculate_release_properties(_file(), now) == {}
