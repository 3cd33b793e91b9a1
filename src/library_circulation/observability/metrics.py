"""Custom metrics for the library circulation server."""

import logfire

books_circulation = logfire.metric_counter(
    "library.books.circulation", description="Circulation events (checkout, return, renew, lost)"
)

fines_assessed = logfire.metric_counter(
    "library.fines.assessed", unit="currency", description="Fine amounts charged on return"
)


def record_circulation_event(event_type: str, count: int = 1, fine: float = 0.0):
    """Record ``count`` copies moving through a circulation event."""
    if count:
        books_circulation.add(count, {"event_type": event_type})
    if fine > 0:
        fines_assessed.add(fine, {"event_type": event_type})
