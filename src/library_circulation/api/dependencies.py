"""Shared FastAPI dependencies and the response envelope."""

from collections.abc import Generator
from typing import Any

from fastapi import Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from ..database.session import DatabaseManager
from ..errors import LibraryError
from ..services.loan_engine import LoanEngine


def get_db(request: Request) -> DatabaseManager:
    return request.app.state.db


def get_engine(request: Request) -> LoanEngine:
    return request.app.state.engine


def get_session(request: Request) -> Generator[Session, None, None]:
    """One transactional session per request, committed when the handler returns."""
    with request.app.state.db.session_scope() as session:
        yield session


def envelope(data: Any = None, message: str | None = None) -> dict[str, Any]:
    body: dict[str, Any] = {"success": True, "data": data}
    if message:
        body["message"] = message
    return body


def error_body(error: LibraryError) -> dict[str, Any]:
    return {"success": False, **error.to_dict()}


def respond(data: Any, message: str | None = None, status_code: int = status.HTTP_200_OK) -> JSONResponse:
    """Envelope with an explicit status (201 created, 207 partial batch...)."""
    return JSONResponse(status_code=status_code, content=jsonable_encoder(envelope(data, message)))
