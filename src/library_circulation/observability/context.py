"""Context managers for tracing loan engine and repository operations."""

from contextlib import contextmanager

import logfire

from ..errors import LibraryError


@contextmanager
def trace_operation(component: str, operation: str, **attributes):
    """
    Wrap an operation in a logfire span.

    Business-rule failures are tagged with their error code; anything else is
    tagged as an unexpected error. Both are re-raised.
    """
    with logfire.span(
        f"{component}.{operation}",
        component=component,
        operation=operation,
        **attributes,
    ) as span:
        try:
            yield span
        except LibraryError as e:
            span.set_attribute("error.code", e.code)
            span.set_attribute("error.kind", e.kind.value)
            raise
        except Exception as e:
            span.set_attribute("error.unexpected", str(e))
            raise
