"""Rate limiting for storefront route handlers.

This module wires the throttle adapter into the HTTP layer by composing
handlers: ``with_rate_limit(handler, "auth")`` returns a handler with the
same signature that checks the client's quota first.

Design goals:
- Minimal coupling: handlers stay unaware of throttling.
- Swap-friendly: the limiter lives behind ``AbstractRateLimiter`` and is
  resolved from ``app.state.services`` at request time.
- Fail-open: a failure inside the throttle itself is logged and the request
  proceeds. Only an explicit denial stops a request.

Usage:
    @router.get("/products/{product_id}")
    @with_api_rate_limit
    async def get_product(request: Request, product_id: str) -> Response: ...

The wrapped handler must accept the ``Request`` (as a ``request`` argument
or positionally) so the client can be identified.
"""

from __future__ import annotations

import functools
import inspect
import logging
from typing import Any, Awaitable, Callable

from fastapi import Request, Response, status
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from storefront.adapters.rate_limit.base import RateLimitResult, RateLimitRule
from storefront.core.client_identity import resolve_client_identifier
from storefront.core.logging import hash_identifier

logger = logging.getLogger(__name__)

Handler = Callable[..., Any | Awaitable[Any]]

LIMIT_HEADER = "X-RateLimit-Limit"
REMAINING_HEADER = "X-RateLimit-Remaining"
RETRY_AFTER_HEADER = "Retry-After"


def _find_request(args: tuple[Any, ...], kwargs: dict[str, Any]) -> Request | None:
    candidate = kwargs.get("request")
    if isinstance(candidate, Request):
        return candidate
    for arg in args:
        if isinstance(arg, Request):
            return arg
    for value in kwargs.values():
        if isinstance(value, Request):
            return value
    return None


def _rule_label(limit: str | RateLimitRule) -> str:
    return limit.name if isinstance(limit, RateLimitRule) else limit


def _evaluate(request: Request | None, limit: str | RateLimitRule) -> tuple[RateLimitResult | None, bool]:
    """Run the throttle check for ``request``.

    Returns:
        Tuple of (result, include_headers). ``result`` is None when the
        check was skipped (disabled, no services) or failed.
    """
    if request is None:
        logger.warning("rate_limit.skipped", extra={"reason": "request_not_found", "category": _rule_label(limit)})
        return None, False

    services = getattr(request.app.state, "services", None)
    if services is None or not services.rate_limit_enabled:
        return None, False

    try:
        identifier = resolve_client_identifier(request)
        if isinstance(limit, RateLimitRule):
            result = services.limiter.check_rule(limit, identifier)
        else:
            result = services.limiter.check(limit, identifier)
    except Exception as exc:
        logger.error(
            "rate_limit.check_failed",
            extra={
                "category": _rule_label(limit),
                "error_type": type(exc).__name__,
                "error_msg": str(exc),
            },
        )
        return None, False

    if result.allowed:
        logger.debug(
            "rate_limit.allowed",
            extra={
                "category": _rule_label(limit),
                "identifier_hash": hash_identifier(identifier),
                "limit": result.limit,
                "remaining": result.remaining,
            },
        )
    else:
        logger.warning(
            "rate_limit.exceeded",
            extra={
                "category": _rule_label(limit),
                "identifier_hash": hash_identifier(identifier),
                "limit": result.limit,
                "retry_after_s": result.retry_after_seconds,
                "blocked": result.blocked,
                "request_path": request.url.path,
            },
        )
    return result, services.include_rate_limit_headers


def build_denied_response(result: RateLimitResult, *, include_headers: bool = True) -> JSONResponse:
    """Build the 429 payload ``{error, limit, retryAfter}`` for a denial."""
    retry_after = result.retry_after_seconds or 1
    message = "Too many attempts, client temporarily blocked" if result.blocked else "Rate limit exceeded"

    headers: dict[str, str] = {}
    if include_headers:
        headers[LIMIT_HEADER] = str(result.limit)
        headers[REMAINING_HEADER] = "0"
        headers[RETRY_AFTER_HEADER] = str(retry_after)

    return JSONResponse(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        content={"error": message, "limit": result.limit, "retryAfter": retry_after},
        headers=headers or None,
    )


def _as_response(result: Any) -> Response:
    if isinstance(result, Response):
        return result
    return JSONResponse(content=jsonable_encoder(result))


def with_rate_limit(handler: Handler, limit: str | RateLimitRule = "api") -> Callable[..., Awaitable[Response]]:
    """Compose ``handler`` with a quota check.

    Args:
        handler: Route handler (sync or async) receiving the ``Request``.
        limit: Category name (``auth``, ``api``, ``payment``; unknown names
            fall back to ``api``) or an explicit ``RateLimitRule``.

    Returns:
        Async handler with the same signature. Denied requests get a 429
        response without ``handler`` being called; allowed ones get the
        handler's response with ``X-RateLimit-*`` headers added.
    """
    if not isinstance(limit, (str, RateLimitRule)):
        raise TypeError("limit must be a category name or a RateLimitRule")

    is_async = inspect.iscoroutinefunction(handler)

    @functools.wraps(handler)
    async def rate_limited(*args: Any, **kwargs: Any) -> Response:
        request = _find_request(args, kwargs)
        result, include_headers = _evaluate(request, limit)

        if result is not None and not result.allowed:
            return build_denied_response(result, include_headers=include_headers)

        if is_async:
            outcome = await handler(*args, **kwargs)
        else:
            outcome = await run_in_threadpool(handler, *args, **kwargs)
        response = _as_response(outcome)

        if result is not None and include_headers:
            response.headers[LIMIT_HEADER] = str(result.limit)
            response.headers[REMAINING_HEADER] = str(result.remaining)
        return response

    return rate_limited


def with_auth_rate_limit(handler: Handler) -> Callable[..., Awaitable[Response]]:
    return with_rate_limit(handler, "auth")


def with_api_rate_limit(handler: Handler) -> Callable[..., Awaitable[Response]]:
    return with_rate_limit(handler, "api")


def with_payment_rate_limit(handler: Handler) -> Callable[..., Awaitable[Response]]:
    return with_rate_limit(handler, "payment")


def rate_limited(limit: str | RateLimitRule = "api") -> Callable[[Handler], Callable[..., Awaitable[Response]]]:
    """Decorator form of ``with_rate_limit`` for custom rules."""

    def decorator(handler: Handler) -> Callable[..., Awaitable[Response]]:
        return with_rate_limit(handler, limit)

    return decorator
