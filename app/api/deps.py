from fastapi import Depends, HTTPException, status, Request
from fastapi.security import HTTPAuthorizationCredentials
from functools import lru_cache
from typing import Optional

from ..core.config import settings
from ..core.database import SessionLocal, get_redis
from ..core.exceptions import InvalidCredential
from ..core.security import security, Identity, TokenAuthority
from ..services.appointment_store import SQLAppointmentStore
from ..services.directory import SQLClinicDirectory
from ..services.scheduling_service import SchedulingService

@lru_cache()
def get_token_authority() -> TokenAuthority:
    """Token authority configured from settings."""
    return TokenAuthority()

@lru_cache()
def get_scheduling_service() -> SchedulingService:
    """Process-wide scheduling service; owns the practitioner locks and the index."""
    return SchedulingService(
        store=SQLAppointmentStore(SessionLocal),
        directory=SQLClinicDirectory(SessionLocal),
    )

async def get_current_identity(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    authority: TokenAuthority = Depends(get_token_authority),
) -> Identity:
    """Extract and verify the bearer token from the Authorization header."""
    if credentials is None or not credentials.credentials:
        raise InvalidCredential("Missing bearer token")

    return authority.verify(credentials.credentials)

# Rate limiting dependency
async def rate_limit_check(
    request: Request,
    redis_client = Depends(get_redis)
) -> None:
    """Basic rate limiting for the login endpoint."""
    client_ip = request.client.host if request.client else "unknown"
    key = f"rate_limit:login:{client_ip}"

    current_requests = redis_client.get(key)
    if current_requests is None:
        redis_client.setex(key, settings.LOGIN_RATE_WINDOW_SECONDS, 1)
    else:
        if int(current_requests) >= settings.LOGIN_RATE_LIMIT:
            raise HTTPException(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                detail="Too many requests. Please try again later."
            )
        redis_client.incr(key)
