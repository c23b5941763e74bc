from datetime import datetime, timedelta, timezone
from typing import Optional
from jose import JWTError, jwt
from passlib.context import CryptContext
from fastapi.security import HTTPBearer
from pydantic import BaseModel
from enum import Enum
import calendar
import logging

from .config import settings
from .exceptions import InvalidCredential, ExpiredCredential

logger = logging.getLogger(__name__)

# Password hashing
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

# Bearer transport; missing headers are reported as 401 by the dependency
security = HTTPBearer(auto_error=False)

ACCESS_TOKEN_TYPE = "access"

class UserRole(str, Enum):
    ADMIN = "admin"
    DOCTOR = "doctor"
    PATIENT = "patient"

class Identity(BaseModel):
    """Verified caller identity, produced only by TokenAuthority."""
    subject: str
    role: UserRole
    expires_at: datetime

    model_config = {"frozen": True}

class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int

class TokenPayload(BaseModel):
    sub: Optional[str] = None
    role: Optional[str] = None
    iat: Optional[int] = None
    exp: Optional[int] = None
    token_type: Optional[str] = None

# Password utilities
def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a plain password against its hash."""
    return pwd_context.verify(plain_password, hashed_password)

def get_password_hash(password: str) -> str:
    """Generate password hash."""
    return pwd_context.hash(password)

# Time helpers. All instants are naive UTC.
def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)

def as_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)

def _to_timestamp(value: datetime) -> int:
    return calendar.timegm(value.utctimetuple())

def _from_timestamp(value: int) -> datetime:
    return datetime.fromtimestamp(value, tz=timezone.utc).replace(tzinfo=None)


class TokenAuthority:
    """
    Issues and verifies stateless signed access credentials.

    Verification only looks at the token itself: the signature and the
    embedded claims. There is no revocation list, so a credential stays
    valid until its expiry.
    """

    def __init__(
        self,
        secret_key: str = settings.SECRET_KEY,
        algorithm: str = settings.ALGORITHM,
        ttl: timedelta = timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES),
    ):
        self.secret_key = secret_key
        self.algorithm = algorithm
        self.ttl = ttl

    def issue(self, subject: str, role: UserRole, now: Optional[datetime] = None) -> str:
        """Create a signed access token for ``subject`` expiring after the TTL."""
        now = as_naive_utc(now) if now else utcnow()
        expire = now + self.ttl

        to_encode = {
            "sub": str(subject),
            "role": UserRole(role).value,
            "iat": _to_timestamp(now),
            "exp": _to_timestamp(expire),
            "token_type": ACCESS_TOKEN_TYPE,
        }
        return jwt.encode(to_encode, self.secret_key, algorithm=self.algorithm)

    def issue_token(self, subject: str, role: UserRole, now: Optional[datetime] = None) -> Token:
        return Token(
            access_token=self.issue(subject, role, now),
            expires_in=int(self.ttl.total_seconds()),
        )

    def verify(self, token: str, now: Optional[datetime] = None) -> Identity:
        """
        Verify and decode an access token.

        Raises:
            InvalidCredential: malformed token, bad signature or unusable claims
            ExpiredCredential: ``now`` is at or past the embedded expiry
        """
        now = as_naive_utc(now) if now else utcnow()

        try:
            # Expiry is compared against the caller's clock below
            payload = jwt.decode(
                token,
                self.secret_key,
                algorithms=[self.algorithm],
                options={"verify_exp": False},
            )
            claims = TokenPayload(**payload)
        except (JWTError, ValueError) as exc:
            logger.info(f"Rejected credential: {exc}")
            raise InvalidCredential("Invalid or malformed token")

        if claims.token_type != ACCESS_TOKEN_TYPE:
            raise InvalidCredential("Invalid token type")

        if not claims.sub or claims.exp is None:
            raise InvalidCredential("Invalid token payload")

        try:
            role = UserRole(claims.role)
        except ValueError:
            raise InvalidCredential("Unknown role in token")

        expires_at = _from_timestamp(claims.exp)
        if now >= expires_at:
            raise ExpiredCredential("Token has expired")

        return Identity(subject=claims.sub, role=role, expires_at=expires_at)
