"""Circulation services built on the repositories."""

from .loan_engine import LoanEngine
from .transactions import group_loans

__all__ = ["LoanEngine", "group_loans"]
