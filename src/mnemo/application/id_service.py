"""Identifiers for review log entries."""

from datetime import datetime

from ulid import ULID


def generate_log_id(moment: datetime | None = None) -> str:
    """
    Generate a review log id using ULID.

    Ids carry the review time in their timestamp part, so sorting by id
    sorts by review time.
    """
    ulid = ULID.from_datetime(moment) if moment is not None else ULID()
    return f"rev_{ulid}"
