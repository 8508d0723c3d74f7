from datetime import UTC, datetime
from typing import Annotated

from pydantic import BaseModel, PlainSerializer


def to_naive_utc(value: datetime) -> datetime:
    """Convert aware datetimes to naive UTC; naive values are assumed UTC already."""
    if value.tzinfo is not None:
        return value.astimezone(UTC).replace(tzinfo=None)
    return value


def _serialize_utc(value: datetime) -> str:
    return value.replace(tzinfo=UTC).isoformat().replace("+00:00", "Z")


# Naive UTC datetimes from the database, rendered with an explicit "Z"
UTCDateTime = Annotated[
    datetime, PlainSerializer(_serialize_utc, return_type=str, when_used="json")
]


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    total_pages: int

    @classmethod
    def build(cls, page: int, limit: int, total: int) -> "Pagination":
        return cls(page=page, limit=limit, total=total, total_pages=(total + limit - 1) // limit)
