"""Shelf models."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class ShelfCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    section: str | None = Field(None, max_length=100)
    location: str | None = Field(None, max_length=200)
    description: str | None = None
    capacity: int | None = Field(None, ge=0)


class ShelfUpdate(BaseModel):
    name: str | None = Field(None, min_length=1, max_length=200)
    section: str | None = None
    location: str | None = None
    description: str | None = None
    capacity: int | None = Field(None, ge=0)


class Shelf(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    section: str | None = None
    location: str | None = None
    description: str | None = None
    capacity: int | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class ShelfCapacity(BaseModel):
    """
    Usage report for one shelf.

    Capacity is advisory; shelves without one are reported against the
    default so the report still shows a percentage.
    """

    shelf_id: int
    name: str
    section: str | None = None
    capacity: int
    copy_count: int
    usage_percent: float
    is_over_capacity: bool
