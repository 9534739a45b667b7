"""Domain errors raised by catalogue services and cache helpers.

Handlers in ``storefront.core.exception_handlers`` turn them into JSON
responses. Quota denials are not errors: the throttle returns them as
results and the wrapper answers with a 429 itself.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TypedDict


class ErrorDetails(TypedDict, total=False):
    """Optional context attached to an error response."""

    product_id: str
    cache_name: str
    pattern: str
    fields: list[str]


@dataclass
class AppError(Exception):
    """Base error carrying a stable machine-readable ``code``."""

    code: str
    message: str
    details: ErrorDetails | None = None

    def __post_init__(self) -> None:
        super().__init__(self.message)


class ValidationAppError(AppError):
    """Invalid client input or an invalid cache key pattern."""


class NotFoundAppError(AppError):
    """The requested product (or other resource) does not exist."""
