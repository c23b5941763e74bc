from sqlalchemy.orm import Session
from datetime import datetime
from typing import Optional
import logging

from ..models.account import Account
from ..core.exceptions import InvalidCredential
from ..core.security import TokenAuthority, verify_password, utcnow
from ..schemas.auth import UserLogin, TokenResponse

logger = logging.getLogger(__name__)

class AuthService:
    """Exchanges account credentials for a stateless access token."""

    def __init__(self, db: Session, authority: TokenAuthority):
        self.db = db
        self.authority = authority

    def authenticate_user(self, login_data: UserLogin, now: Optional[datetime] = None) -> TokenResponse:
        """Authenticate an account and return an access token."""
        account = self.db.query(Account).filter(
            Account.email == login_data.email
        ).first()

        # Same message for unknown email and wrong password
        if not account or not verify_password(login_data.password, account.password_hash):
            logger.info(f"Failed login for {login_data.email}")
            raise InvalidCredential("Invalid email or password")

        if not account.is_active:
            raise InvalidCredential("Account is deactivated")

        now = now or utcnow()
        account.last_login = now
        self.db.commit()

        token = self.authority.issue_token(account.subject_id, account.role, now)
        logger.info(f"Issued access token for {account.role.value} '{account.subject_id}'")

        return TokenResponse(
            access_token=token.access_token,
            token_type=token.token_type,
            expires_in=token.expires_in,
            subject=account.subject_id,
            role=account.role,
        )
