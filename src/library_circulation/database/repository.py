"""
Repository pattern implementation for the library circulation server.

Repositories are the data access layer between the SQLAlchemy schema and the
loan engine / HTTP / tool boundaries:

1. **Transport separation**: handlers deal in pydantic models, never rows
2. **Transaction ownership**: repositories only flush; the caller's
   ``session_scope()`` decides whether the unit of work commits
3. **Typed failures**: lookups raise the entity's ``NotFoundError`` subclass
   and unique-constraint violations raise ``DuplicateError``

The base repository provides the common CRUD operations; specialized
repositories add the guards and queries of their entity.
"""

from abc import ABC, abstractmethod
from typing import Generic, TypeVar

from pydantic import BaseModel, Field
from sqlalchemy import asc, desc, func, select
from sqlalchemy.orm import Session

from ..errors import NotFoundError, ValidationError
from .schema import Base
from .session import safe_flush, safe_query

ModelType = TypeVar("ModelType", bound=Base)
CreateSchemaType = TypeVar("CreateSchemaType", bound=BaseModel)
UpdateSchemaType = TypeVar("UpdateSchemaType", bound=BaseModel)
ResponseSchemaType = TypeVar("ResponseSchemaType", bound=BaseModel)


class PaginationParams(BaseModel):
    """Standard pagination parameters for list operations."""

    page: int = Field(default=1, ge=1)
    page_size: int = Field(default=20, ge=1, le=100)

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.page_size


class PaginatedResponse(BaseModel, Generic[ResponseSchemaType]):
    items: list[ResponseSchemaType]
    total: int
    page: int
    page_size: int
    total_pages: int
    has_next: bool
    has_previous: bool


class BaseRepository(
    ABC, Generic[ModelType, CreateSchemaType, UpdateSchemaType, ResponseSchemaType]
):
    """
    Abstract base repository providing common CRUD operations.

    Subclasses name their row class, response schema and the error raised
    when a lookup misses.
    """

    not_found_error: type[NotFoundError] = NotFoundError

    def __init__(self, session: Session):
        self.session = session

    @property
    @abstractmethod
    def model_class(self) -> type[ModelType]:
        """Return the SQLAlchemy model class."""

    @property
    @abstractmethod
    def response_schema(self) -> type[ResponseSchemaType]:
        """Return the Pydantic response schema."""

    @property
    def entity_name(self) -> str:
        return self.model_class.__name__

    def _to_response_model(self, db_obj: ModelType) -> ResponseSchemaType:
        return self.response_schema.model_validate(db_obj, from_attributes=True)

    def _get_row(self, id: int, for_update: bool = False) -> ModelType | None:
        query = select(self.model_class).where(self.model_class.id == id)
        if for_update:
            query = query.with_for_update()
        return safe_query(
            self.session,
            lambda s: s.execute(query).scalar_one_or_none(),
            f"Failed to get {self.entity_name} by ID",
        )

    def _require_row(self, id: int, for_update: bool = False) -> ModelType:
        db_obj = self._get_row(id, for_update=for_update)
        if db_obj is None:
            raise self.not_found_error(f"{self.entity_name} with ID {id} not found", id=id)
        return db_obj

    def get_by_id(self, id: int) -> ResponseSchemaType | None:
        db_obj = self._get_row(id)
        return self._to_response_model(db_obj) if db_obj is not None else None

    def get(self, id: int) -> ResponseSchemaType:
        """Like ``get_by_id`` but raises the entity's not-found error."""
        return self._to_response_model(self._require_row(id))

    def get_all(
        self,
        pagination: PaginationParams | None = None,
        order_by: str | None = None,
        order_desc: bool = False,
    ) -> list[ResponseSchemaType] | PaginatedResponse[ResponseSchemaType]:
        """
        Get all entities with optional pagination and sorting.

        Args:
            pagination: Pagination parameters
            order_by: Column name to order by; unknown names are ignored
            order_desc: Whether to order descending

        Returns:
            List of entities or paginated response
        """
        query = select(self.model_class)

        if order_by and hasattr(self.model_class, order_by):
            order_field = getattr(self.model_class, order_by)
            query = query.order_by(desc(order_field) if order_desc else asc(order_field))
        else:
            query = query.order_by(self.model_class.id)

        if pagination:
            count_query = select(func.count()).select_from(self.model_class)
            total = (
                safe_query(
                    self.session,
                    lambda s: s.execute(count_query).scalar(),
                    "Failed to get total count",
                )
                or 0
            )

            query = query.offset(pagination.offset).limit(pagination.page_size)
            results = safe_query(
                self.session,
                lambda s: s.execute(query).scalars().all(),
                "Failed to get paginated results",
            )

            return PaginatedResponse(
                items=[self._to_response_model(item) for item in results],
                total=total,
                page=pagination.page,
                page_size=pagination.page_size,
                total_pages=(total + pagination.page_size - 1) // pagination.page_size,
                has_next=pagination.page * pagination.page_size < total,
                has_previous=pagination.page > 1,
            )

        results = safe_query(
            self.session, lambda s: s.execute(query).scalars().all(), "Failed to get all results"
        )
        return [self._to_response_model(item) for item in results]

    def create(self, data: CreateSchemaType) -> ResponseSchemaType:
        """
        Create new entity.

        Raises:
            DuplicateError: If a unique column already holds the value
        """
        db_obj = self.model_class(**data.model_dump())
        self.session.add(db_obj)
        safe_flush(self.session, f"create {self.entity_name}")
        self.session.refresh(db_obj)
        return self._to_response_model(db_obj)

    def update(self, id: int, data: UpdateSchemaType) -> ResponseSchemaType:
        """Apply the fields explicitly set on ``data``."""
        db_obj = self._require_row(id)
        changes = data.model_dump(exclude_unset=True)
        if not changes:
            raise ValidationError(f"No fields to update for {self.entity_name} {id}")

        for field, value in changes.items():
            setattr(db_obj, field, value)

        safe_flush(self.session, f"update {self.entity_name}")
        self.session.refresh(db_obj)
        return self._to_response_model(db_obj)

    def delete(self, id: int) -> None:
        """Delete an entity after ``_check_can_delete`` has passed."""
        db_obj = self._require_row(id, for_update=True)
        self._check_can_delete(db_obj)
        self.session.delete(db_obj)
        safe_flush(self.session, f"delete {self.entity_name}")

    def _check_can_delete(self, db_obj: ModelType) -> None:  # noqa: B027
        """Raise a ConflictError when the row is still referenced."""

    def exists(self, id: int) -> bool:
        query = select(func.count()).select_from(self.model_class).where(self.model_class.id == id)
        count = safe_query(self.session, lambda s: s.execute(query).scalar(), "Failed to check existence")
        return count > 0
