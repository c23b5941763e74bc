from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ...core.database import get_db
from ...core.security import Identity, TokenAuthority
from ...api.deps import get_current_identity, get_token_authority, rate_limit_check
from ...services.auth_service import AuthService
from ...schemas.auth import UserLogin, TokenResponse, IdentityResponse

router = APIRouter(prefix="/auth", tags=["Authentication"])

@router.post("/token", response_model=TokenResponse)
async def login(
    login_data: UserLogin,
    db: Session = Depends(get_db),
    authority: TokenAuthority = Depends(get_token_authority),
    _: None = Depends(rate_limit_check)
):
    """Authenticate an account and return an access token."""
    auth_service = AuthService(db, authority)
    return auth_service.authenticate_user(login_data)

@router.get("/me", response_model=IdentityResponse)
async def get_current_identity_info(
    identity: Identity = Depends(get_current_identity)
):
    """Get the identity carried by the bearer token."""
    return IdentityResponse(
        subject=identity.subject,
        role=identity.role,
        expires_at=identity.expires_at,
    )

@router.post("/verify-token")
async def verify_token_endpoint(
    identity: Identity = Depends(get_current_identity)
):
    """Verify if token is valid."""
    return {
        "valid": True,
        "subject": identity.subject,
        "role": identity.role.value,
        "expires": identity.expires_at.isoformat()
    }
