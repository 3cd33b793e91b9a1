"""
Catalog models: books and their physical copies.

A ``Book`` is the bibliographic record; a ``BookCopy`` is one loanable item
on a shelf. Copy status is owned by the inventory store and the loan engine,
so the public update schema deliberately cannot set it to Checked Out.
"""

from datetime import date, datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..database.schema import CopyStatusEnum

CopyStatus = CopyStatusEnum


class BookCreate(BaseModel):
    """Schema for adding a title to the catalog."""

    title: str = Field(..., min_length=1, max_length=500)
    author: str | None = Field(None, max_length=300)
    isbn: str | None = Field(
        None,
        description="ISBN-10 or ISBN-13; hyphens are stripped",
        examples=["9780134685479", "0-06-112008-1"],
    )
    publisher: str | None = Field(None, max_length=300)
    publication_year: str | None = Field(None, max_length=10)
    category: str | None = Field(None, max_length=100)
    description: str | None = None
    language: str = Field(default="English", max_length=50)
    pages: int | None = Field(None, gt=0)

    @field_validator("isbn")
    @classmethod
    def normalize_isbn(cls, v: str | None) -> str | None:
        if v is None:
            return None
        cleaned = v.replace("-", "").replace(" ", "").upper()
        if not cleaned:
            return None
        if len(cleaned) not in (10, 13):
            raise ValueError("ISBN must have 10 or 13 characters")
        if not cleaned[:-1].isdigit() or not (cleaned[-1].isdigit() or cleaned[-1] == "X"):
            raise ValueError("ISBN must contain only digits (and a trailing X for ISBN-10)")
        return cleaned


class BookUpdate(BaseModel):
    """Descriptive fields; any subset may be given."""

    title: str | None = Field(None, min_length=1, max_length=500)
    author: str | None = None
    publisher: str | None = None
    publication_year: str | None = None
    category: str | None = None
    description: str | None = None
    language: str | None = None
    pages: int | None = Field(None, gt=0)


class Book(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    title: str
    author: str | None = None
    isbn: str | None = None
    publisher: str | None = None
    publication_year: str | None = None
    category: str | None = None
    description: str | None = None
    language: str = "English"
    pages: int | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class BookAvailability(BaseModel):
    """Copy counts per status for one title."""

    book_id: int
    title: str
    total_copies: int = 0
    available_copies: int = 0
    checked_out_copies: int = 0
    damaged_copies: int = 0
    lost_copies: int = 0
    maintenance_copies: int = 0

    @property
    def is_available(self) -> bool:
        return self.available_copies > 0


class CategoryPopularity(BaseModel):
    category: str
    book_count: int


class BookCopyCreate(BaseModel):
    book_id: int
    barcode: str = Field(..., min_length=1, max_length=100)
    shelf_id: int | None = None
    location_code: str | None = Field(None, max_length=100)
    condition: str = Field(default="Good", max_length=50)
    acquisition_date: date | None = None
    status: CopyStatus = CopyStatus.AVAILABLE

    @field_validator("status")
    @classmethod
    def validate_initial_status(cls, v: CopyStatus) -> CopyStatus:
        if v == CopyStatus.CHECKED_OUT:
            raise ValueError("A new copy cannot start out as Checked Out")
        return v


class BookCopy(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    book_id: int
    shelf_id: int | None = None
    barcode: str
    location_code: str | None = None
    status: CopyStatus
    condition: str = "Good"
    acquisition_date: date | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
