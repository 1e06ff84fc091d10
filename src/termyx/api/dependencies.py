from __future__ import annotations

from typing import Optional

from fastapi import Depends, Header, HTTPException, Request, status

from ..models.results import RateLimitResult
from ..models.user import UserAccount
from ..services.rate_limiter import rate_limit_headers
from ..services.registry import Services


def get_services(request: Request) -> Services:
    return request.app.state.services


def client_ip(request: Request) -> Optional[str]:
    """First hop of X-Forwarded-For, then X-Real-IP."""
    forwarded_for = request.headers.get("x-forwarded-for")
    if forwarded_for:
        first = forwarded_for.split(",")[0].strip()
        if first:
            return first
    return request.headers.get("x-real-ip") or None


def client_key(request: Request) -> str:
    """Rate limit identifier: proxied IP, then the socket peer."""
    ip_address = client_ip(request)
    if ip_address:
        return ip_address
    return request.client.host if request.client else "unknown"


async def get_current_user_id(
    x_user_id: Optional[str] = Header(default=None),
) -> str:
    # The auth proxy in front of the API sets this header
    if not x_user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Nao autorizado")
    return x_user_id


async def get_current_user(
    user_id: str = Depends(get_current_user_id),
    services: Services = Depends(get_services),
) -> UserAccount:
    user = await services.db.get_user(user_id)
    if user is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Usuario nao encontrado")
    return user


def enforce_rate_limit(result: RateLimitResult, message: str) -> None:
    if not result.success:
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail=message,
            headers=rate_limit_headers(result),
        )
