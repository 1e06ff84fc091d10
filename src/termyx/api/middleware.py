"""
Starlette middleware applying a baseline rate limit to the API.

Each request under the limited prefix counts one hit for the client IP
under the configured preset. Over the limit the endpoint never runs and
the client gets a 429; otherwise the X-RateLimit-* headers are attached to
the endpoint's response so clients can back off.

Route-level presets (auth, strict, pdf) are enforced by the endpoints
themselves on top of this.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Optional, Sequence

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from ..services.rate_limiter import RATE_LIMIT_PRESETS, RateLimiter, rate_limit_headers
from .dependencies import client_key


logger = logging.getLogger(__name__)


class RateLimitMiddleware(BaseHTTPMiddleware):
    def __init__(
        self,
        app: Any,
        rate_limiter: RateLimiter,
        *,
        preset: str = "standard",
        path_prefix: str = "/api",
        skip_paths: Optional[Sequence[str]] = None,
    ) -> None:
        super().__init__(app)
        if preset not in RATE_LIMIT_PRESETS:
            raise ValueError(f"unknown rate limit preset {preset!r}")
        self.rate_limiter = rate_limiter
        self.preset = preset
        self.limited_root = path_prefix.rstrip("/")
        self.exempt = frozenset(p.rstrip("/") for p in skip_paths or ())

    def _is_limited(self, path: str) -> bool:
        path = path.rstrip("/")
        if path != self.limited_root and not path.startswith(f"{self.limited_root}/"):
            return False
        # Exempt paths are matched exactly (health probes)
        return path not in self.exempt

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Any]
    ) -> Response:
        if not self._is_limited(request.url.path):
            return await call_next(request)

        identifier = client_key(request)
        result = self.rate_limiter.preset(self.preset, identifier)
        headers = rate_limit_headers(result)
        if not result.success:
            logger.info(
                "Rate limit exceeded",
                extra={"path": request.url.path, "client": identifier},
            )
            return JSONResponse(
                status_code=429,
                content={"error": "Muitas requisicoes. Tente novamente mais tarde."},
                headers=headers,
            )

        response = await call_next(request)
        # Route-level limits set their own, tighter headers
        for name, value in headers.items():
            response.headers.setdefault(name, value)
        return response
