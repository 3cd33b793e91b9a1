"""
FastAPI application factory.

The app holds no globals: the ``DatabaseManager``, the ``LoanEngine`` and
the config are attached to ``app.state`` and reached by the dependencies
in ``dependencies.py``.
"""

import logging

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from ..config import ServerConfig
from ..database.session import DatabaseManager
from ..errors import ErrorKind, LibraryError
from ..services.loan_engine import LoanEngine
from . import inventory, loans, users
from .dependencies import envelope, error_body

logger = logging.getLogger(__name__)


def create_app(
    db: DatabaseManager,
    config: ServerConfig | None = None,
    engine: LoanEngine | None = None,
) -> FastAPI:
    """
    Build the HTTP API over an opened database.

    Args:
        db: Opened database manager
        config: Server configuration; defaults are read from the environment
        engine: Loan engine to share with other transports; built from
            ``db`` and the config's loan policy when omitted
    """
    config = config or ServerConfig()
    engine = engine or LoanEngine(db, config.loan_policy)

    app = FastAPI(title=config.server_name, version=config.server_version, debug=config.debug)
    app.state.db = db
    app.state.engine = engine
    app.state.config = config

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(LibraryError)
    async def library_error_handler(request: Request, exc: LibraryError) -> JSONResponse:
        if exc.kind == ErrorKind.SYSTEM:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        return JSONResponse(status_code=exc.status_code, content=jsonable_encoder(error_body(exc)))

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content=jsonable_encoder(
                {
                    "success": False,
                    "error": "Invalid request",
                    "code": "InvalidPayload",
                    "kind": ErrorKind.VALIDATION.value,
                    "details": exc.errors(),
                }
            ),
        )

    app.include_router(loans.router, prefix="/api")
    app.include_router(inventory.router, prefix="/api")
    app.include_router(users.router, prefix="/api")

    @app.get("/api/health")
    def health():
        return envelope(
            {"status": "ok" if db.verify_connection() else "degraded", **config.server_info},
        )

    return app
