"""
Embargo stage calculation.

A file's embargo stage follows from the time since it was first published:

    0-12 months  = PROGRAM_ONLY
    12-18 months = MEMBER_ACCESS
    18-24 months = ASSOCIATE_ACCESS
    > 24 months  = PUBLIC

A calculated PUBLIC only means the file is eligible for release. Moving a
file to PUBLIC requires the release process, so an unreleased file that
reaches PUBLIC is recorded as ASSOCIATE_ACCESS and queued for release.
"""

from datetime import datetime, timezone
from typing import Optional

from dateutil.relativedelta import relativedelta

from .models import EmbargoStage, File, ReleaseState

MEMBER_ACCESS_MONTHS = 12
ASSOCIATE_ACCESS_MONTHS = 18
PUBLIC_MONTHS = 24


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def months_since(start: datetime, now: Optional[datetime] = None) -> int:
    """Whole calendar months elapsed between two instants."""
    now = _as_utc(now or datetime.now(timezone.utc))
    delta = relativedelta(now, _as_utc(start))
    return delta.years * 12 + delta.months


def calculate_embargo_stage(first_published: Optional[datetime], now: Optional[datetime] = None) -> EmbargoStage:
    """Stage a file should be in given when it was first published."""
    if first_published is None:
        return EmbargoStage.PROGRAM_ONLY

    months = months_since(first_published, now)
    if months >= PUBLIC_MONTHS:
        return EmbargoStage.PUBLIC
    if months >= ASSOCIATE_ACCESS_MONTHS:
        return EmbargoStage.ASSOCIATE_ACCESS
    if months >= MEMBER_ACCESS_MONTHS:
        return EmbargoStage.MEMBER_ACCESS
    return EmbargoStage.PROGRAM_ONLY


def get_embargo_stage(file: File, now: Optional[datetime] = None) -> EmbargoStage:
    """Calculated stage raised to any admin promote value, then capped by any admin demote value."""
    stage = calculate_embargo_stage(file.first_published, now)
    if file.admin_promote is not None and file.admin_promote.rank > stage.rank:
        stage = file.admin_promote
    if file.admin_demote is not None and file.admin_demote.rank < stage.rank:
        stage = file.admin_demote
    return stage


def recalculate_release_properties(file: File, now: Optional[datetime] = None) -> dict:
    """
    Embargo stage and release state changes for a file.

    Returns only the fields whose value differs from the stored one, so an
    empty dict means the file is already up to date.
    """
    stage = get_embargo_stage(file, now)
    updates = {}

    if file.release_state == ReleaseState.PUBLIC:
        # A released file stays released; only record a restricting stage
        if stage != EmbargoStage.PUBLIC:
            updates["embargo_stage"] = stage
    elif stage == EmbargoStage.PUBLIC and not file.admin_hold:
        updates["embargo_stage"] = EmbargoStage.ASSOCIATE_ACCESS
        updates["release_state"] = ReleaseState.QUEUED
    else:
        if stage == EmbargoStage.PUBLIC:
            # Held files never queue for release
            stage = EmbargoStage.ASSOCIATE_ACCESS
        updates["embargo_stage"] = stage
        updates["release_state"] = ReleaseState.RESTRICTED

    return {key: value for key, value in updates.items() if getattr(file, key) != value}
