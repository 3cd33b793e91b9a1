"""Decorators for tracing tool bridge handlers."""

import functools
from collections.abc import Callable
from datetime import datetime

import logfire


def trace_tool(tool_name: str):
    """Decorator to trace a tool handler's execution."""

    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            with logfire.span(f"tool.execution.{tool_name}", tool_name=tool_name) as span:
                start_time = datetime.now()
                _add_attributes(span, "input", kwargs)

                result = await func(*args, **kwargs)

                is_error = isinstance(result, dict) and result.get("isError", False)
                span.set_attribute("tool.success", not is_error)
                span.set_attribute(
                    "tool.duration_ms", (datetime.now() - start_time).total_seconds() * 1000
                )
                return result

        return wrapper

    return decorator


def _add_attributes(span, prefix: str, data: dict):
    for key, value in data.items():
        if isinstance(value, str | int | float | bool):
            span.set_attribute(f"{prefix}.{key}", value)
