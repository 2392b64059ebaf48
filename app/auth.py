import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError
from jose import jwt as jose_jwt
from sqlalchemy.orm import Session, joinedload

from .config import ACCESS_TOKEN_EXPIRE_MINUTES, JWT_ALGORITHM, SECRET_KEY
from .database import get_db
from .models import Doctor, Patient, User

logger = logging.getLogger(__name__)

# auto_error=False so a missing header becomes our 401 instead of FastAPI's 403
security = HTTPBearer(auto_error=False)

ROLE_ADMIN = "admin"
ROLE_DOCTOR = "doctor"
ROLE_PATIENT = "patient"


@dataclass(frozen=True)
class AuthContext:
    """Identity and capabilities of the caller, resolved once per request"""

    user_id: int
    role: Optional[str]
    patient_id: Optional[int] = None
    doctor_id: Optional[int] = None

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN

    @property
    def is_patient(self) -> bool:
        return self.role == ROLE_PATIENT and self.patient_id is not None

    @property
    def is_doctor(self) -> bool:
        return self.role == ROLE_DOCTOR and self.doctor_id is not None


def create_access_token(
    user_id: int, role: Optional[str] = None, expires_delta: Optional[timedelta] = None
) -> str:
    """
    Create a signed access token for a user

    Args:
        user_id: Subject of the token
        role: Informational role claim (the database stays authoritative)
        expires_delta: Token lifetime (default ACCESS_TOKEN_EXPIRE_MINUTES)
    """
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)
    )
    to_encode: dict[str, Any] = {"sub": str(user_id), "exp": expire}
    if role:
        to_encode["role"] = role
    return jose_jwt.encode(to_encode, SECRET_KEY, algorithm=JWT_ALGORITHM)


def decode_access_token(token: str) -> dict[str, Any]:
    """Verify and decode an access token, raising 401 when it is unusable"""
    try:
        return jose_jwt.decode(token, SECRET_KEY, algorithms=[JWT_ALGORITHM])
    except JWTError as e:
        logger.warning(f"⚠️ JWT verification failed: {e}")
        raise HTTPException(status_code=401, detail="Invalid or expired token") from e


def resolve_auth_context(db: Session, user_id: int) -> Optional[AuthContext]:
    """Load the user with its role and patient/doctor profile"""
    user = (
        db.query(User)
        .options(
            joinedload(User.role),
            joinedload(User.patient_profile),
            joinedload(User.doctor_profile),
        )
        .filter(User.id == user_id)
        .first()
    )
    if not user:
        return None

    patient: Optional[Patient] = user.patient_profile
    doctor: Optional[Doctor] = user.doctor_profile
    return AuthContext(
        user_id=user.id,
        role=user.role.name if user.role else None,
        patient_id=patient.id if patient else None,
        doctor_id=doctor.id if doctor else None,
    )


async def get_auth_context(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: Session = Depends(get_db),
) -> AuthContext:
    """Resolve the caller's AuthContext from the bearer token"""
    if not credentials:
        raise HTTPException(status_code=401, detail="User not authenticated")

    payload = decode_access_token(credentials.credentials)

    subject = payload.get("sub")
    try:
        user_id = int(subject)
    except (TypeError, ValueError):
        logger.error(f"❌ Token has an unusable subject claim: {subject!r}")
        raise HTTPException(status_code=401, detail="Invalid token claims") from None

    ctx = resolve_auth_context(db, user_id)
    if not ctx:
        logger.warning(f"⚠️ Token subject {user_id} does not match any user")
        raise HTTPException(status_code=401, detail="User not authenticated")

    logger.debug(f"✅ User authenticated: id={ctx.user_id} role={ctx.role}")
    return ctx


async def require_admin(ctx: AuthContext = Depends(get_auth_context)) -> AuthContext:
    if not ctx.is_admin:
        logger.warning(f"⚠️ User {ctx.user_id} attempted to access an admin route")
        raise HTTPException(status_code=403, detail="Admin access required")
    return ctx


async def get_optional_auth_context(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: Session = Depends(get_db),
) -> Optional[AuthContext]:
    """Like get_auth_context, but None for an anonymous or unusable token"""
    if not credentials:
        return None
    try:
        return await get_auth_context(credentials, db)
    except HTTPException:
        return None
