"""Request correlation middleware.

The incoming ``X-Request-ID`` is reused when it looks sane, otherwise a UUID
is generated. The id is kept in a context variable while the request runs,
so every throttle and cache event logged on its behalf carries it, and it is
echoed back on the response, 429 denials included.

Usage:
    app.middleware("http")(request_id_middleware)
"""

from __future__ import annotations

import re
import time
import uuid

from fastapi import Request, Response

from storefront.core.config import settings
from storefront.core.logging import clear_request_id, set_request_id

# Client-supplied ids end up in logs; accept only short token-like values
_REQUEST_ID_RE = re.compile(r"^[A-Za-z0-9._:-]{1,128}$")

DURATION_HEADER = "X-Request-Duration-ms"


def resolve_request_id(incoming: str | None) -> str:
    if incoming and _REQUEST_ID_RE.match(incoming):
        return incoming
    return str(uuid.uuid4())


async def request_id_middleware(request: Request, call_next) -> Response:
    header_name = settings.log.request_id_header
    request_id = resolve_request_id(request.headers.get(header_name))

    set_request_id(request_id)
    started = time.perf_counter()
    try:
        response: Response = await call_next(request)
    finally:
        clear_request_id()

    response.headers[header_name] = request_id
    response.headers.setdefault(DURATION_HEADER, f"{(time.perf_counter() - started) * 1000:.2f}")
    return response
