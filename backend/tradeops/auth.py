"""Authentication and authorization."""
from datetime import timedelta
from typing import Optional
import logging
import time
from uuid import UUID
from jose import JWTError, jwt
from passlib.context import CryptContext
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session
from .config import settings
from .database import get_db
from .models import User
from .states import Role

# Password hashing
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
logger = logging.getLogger(__name__)

# Bearer token scheme
security = HTTPBearer()


def _credentials_error(detail: str = "Could not validate credentials") -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify password against hash."""
    try:
        return pwd_context.verify(plain_password, hashed_password)
    except Exception:
        # Invalid/corrupted hash should not crash login flow.
        logger.exception("Password verification failed due to invalid hash format")
        return False


def get_password_hash(password: str) -> str:
    """Hash password."""
    return pwd_context.hash(password)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """Create JWT access token."""
    to_encode = data.copy()
    now = int(time.time())
    if expires_delta:
        exp = now + int(expires_delta.total_seconds())
    else:
        exp = now + int(settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES) * 60
    to_encode.update({"exp": exp, "iat": now, "type": "access"})
    return jwt.encode(to_encode, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def decode_token(token: str) -> dict:
    """Decode JWT token, applying the configured clock-skew leeway to exp/iat."""
    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET_KEY,
            algorithms=[settings.JWT_ALGORITHM],
            options={"verify_exp": False},
        )
    except JWTError:
        raise _credentials_error()

    now = int(time.time())
    try:
        exp = int(payload["exp"])
        iat = int(payload["iat"]) if payload.get("iat") is not None else None
    except (KeyError, TypeError, ValueError):
        raise _credentials_error()

    if now > exp + int(settings.JWT_LEEWAY_SECONDS):
        raise _credentials_error("Token expired")
    # Reject tokens issued far in the future (clock skew / malicious tokens).
    if iat is not None and iat > now + int(settings.JWT_LEEWAY_SECONDS):
        raise _credentials_error()
    return payload


def _parse_token_subject(payload: dict) -> UUID:
    """Parse and validate JWT subject as UUID."""
    sub = payload.get("sub")
    if not sub:
        raise _credentials_error()
    try:
        return UUID(str(sub))
    except ValueError:
        raise _credentials_error()


def authenticate_user(db: Session, username: str, password: str) -> User | None:
    user = db.query(User).filter(User.username == username, User.is_active.is_(True)).first()
    if user is None or not verify_password(password, user.password_hash):
        return None
    return user


def issue_access_token(user: User) -> str:
    return create_access_token({"sub": str(user.id), "org": str(user.org_id), "role": user.role})


def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: Session = Depends(get_db)
) -> User:
    """Get current authenticated user."""
    payload = decode_token(credentials.credentials)

    if payload.get("type") != "access":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token type"
        )

    user_id = _parse_token_subject(payload)
    user = db.query(User).filter(User.id == user_id, User.is_active.is_(True)).first()
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found or inactive"
        )
    return user


# Permission checks
class PermissionChecker:
    """Check user permissions based on role."""

    def __init__(self, required_permission: str):
        self.required_permission = required_permission

    def __call__(self, current_user: User = Depends(get_current_user)):
        """Check if user has required permission."""
        if not check_permission(current_user, self.required_permission):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Permission denied: {self.required_permission} required"
            )
        return current_user


_ADMINS = {Role.ADMIN, Role.SUPER_ADMIN}
_EXECUTIVES = {Role.DIRECTOR, Role.MD}
_MANAGERS = {
    Role.SALES_MANAGER, Role.TECH_LEAD, Role.COMPLIANCE_MANAGER, Role.WAREHOUSE_MANAGER,
    Role.PURCHASE_MANAGER, Role.FINANCE_MANAGER, Role.QC_MANAGER, Role.LOGISTICS_MANAGER,
}
_INTERNAL_STAFF = set(Role) - {Role.CUSTOMER, Role.VENDOR, Role.SYSTEM}

# Permission -> roles granted it.
_PERMISSION_GRANTS: dict[str, set[Role]] = {
    "canTransitionItems": _INTERNAL_STAFF | {Role.SYSTEM},
    "canViewItems": _INTERNAL_STAFF,
    "canRequestRevisions": {Role.SALES_EXECUTIVE, Role.SALES_MANAGER} | _EXECUTIVES | _ADMINS,
    "canDecideRevisions": {Role.TECH_LEAD, Role.DIRECTOR, Role.CUSTOMER, Role.SALES_MANAGER} | _ADMINS,
    "canViewRevisions": _INTERNAL_STAFF | {Role.CUSTOMER},
    "canViewSla": _MANAGERS | _EXECUTIVES | _ADMINS,
    "canTriggerSlaMonitor": _EXECUTIVES | _ADMINS,
    "canViewAudit": _MANAGERS | _EXECUTIVES | _ADMINS | {Role.COMPLIANCE_OFFICER},
    "canViewCatalog": _INTERNAL_STAFF,
}

# Role permissions matrix
ROLE_PERMISSIONS: dict[str, dict[str, bool]] = {
    role.value: {permission: role in roles for permission, roles in _PERMISSION_GRANTS.items()}
    for role in Role
}


def check_permission(user: User, permission: str) -> bool:
    """Check if user has specific permission."""
    permissions = ROLE_PERMISSIONS.get(user.role, {})
    return permissions.get(permission, False)
