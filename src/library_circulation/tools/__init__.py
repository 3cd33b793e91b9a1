"""Tool bridge definitions for the library circulation server."""

from typing import Any

from ..services.loan_engine import LoanEngine
from .circulation import build_circulation_tools


def build_all_tools(engine: LoanEngine) -> list[dict[str, Any]]:
    """Every tool the server registers, bound to ``engine``."""
    return build_circulation_tools(engine)


__all__ = ["build_all_tools", "build_circulation_tools"]
