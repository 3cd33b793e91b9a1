"""Library circulation server: loans, returns and fines for a lending desk."""

__version__ = "0.1.0"
