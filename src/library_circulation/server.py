"""Library Circulation Server

Runs the circulation service over one of two transports:

- ``stdio``: the FastMCP tool bridge, one tool per desk IPC channel
- ``http``: the FastAPI application under ``/api``, served by uvicorn

Both transports share a single ``DatabaseManager`` and ``LoanEngine``
built here from ``ServerConfig``.
"""

import logging
import signal
import sys
from typing import Any

import uvicorn
from fastmcp import FastMCP

from .api import create_app
from .config import ServerConfig
from .database.session import DatabaseManager
from .observability import initialize_observability
from .services.loan_engine import LoanEngine
from .tools import build_all_tools

logger = logging.getLogger(__name__)


def configure_logging(config: ServerConfig) -> None:
    """Logs go to stderr; stdout carries the stdio protocol."""
    logging.basicConfig(
        level=getattr(logging, config.log_level),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stderr)],
    )
    if not config.debug:
        logging.getLogger("fastmcp").setLevel(logging.WARNING)


def create_mcp_server(engine: LoanEngine, config: ServerConfig) -> FastMCP:
    """Build the FastMCP server and register every circulation tool."""
    mcp = FastMCP(
        name=config.server_name,
        version=config.server_version,
        instructions=(
            "Library circulation desk. Check books out to members, take them back "
            "(one by one, in batches or from a scanned QR code), renew loans, record "
            "fine payments and review overdue loans and transaction groups."
        ),
    )

    tools = build_all_tools(engine)
    for tool in tools:
        logger.debug("Registering tool: %s", tool["name"])
        try:
            mcp.tool(name=tool["name"], description=tool["description"])(tool["handler"])
        except Exception:
            logger.exception("Failed to register tool %s", tool["name"])
            raise

    logger.info("Registered %d tools", len(tools))
    return mcp


def open_database(config: ServerConfig) -> DatabaseManager:
    db = DatabaseManager.from_config(config).open()
    db.init_database()
    if not db.verify_connection():
        db.close()
        raise RuntimeError(f"Database at {config.database_path} is not reachable")
    return db


def run(config: ServerConfig) -> None:
    """Open the store, build the engine and serve on the configured transport."""
    db = open_database(config)
    engine = LoanEngine(db, config.loan_policy)

    def signal_handler(signum: int, _frame: Any) -> None:
        logger.info("Received signal %s, initiating shutdown...", signum)
        sys.exit(0)

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    try:
        if config.transport == "stdio":
            logger.info("Starting %s v%s on stdio transport", config.server_name, config.server_version)
            create_mcp_server(engine, config).run(transport="stdio")
        else:
            logger.info(
                "Starting %s v%s on http://%s:%d",
                config.server_name,
                config.server_version,
                config.http_host,
                config.http_port,
            )
            app = create_app(db, config, engine)
            uvicorn.run(
                app,
                host=config.http_host,
                port=config.http_port,
                log_level=config.log_level.lower(),
            )
    finally:
        db.close()
        logger.info("Shutdown complete")


def main() -> None:
    """Entry point for the ``library-circulation`` command."""
    config = ServerConfig()
    configure_logging(config)
    initialize_observability()

    logger.info("=" * 60)
    logger.info("Library Circulation Server")
    logger.info("Version: %s", config.server_version)
    logger.info("Transport: %s", config.transport)
    logger.info("Database: %s", config.database_path)
    logger.info("=" * 60)

    try:
        run(config)
    except KeyboardInterrupt:
        logger.info("Server stopped by user")
    except Exception:
        logger.exception("Failed to start library circulation server")
        sys.exit(1)


if __name__ == "__main__":
    main()
