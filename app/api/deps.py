"""Shared dependencies: JWT identity, role checks and record store access."""
from datetime import datetime, timedelta, timezone
from typing import Annotated, Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from pydantic import ValidationError

from app.config import settings
from app.db import get_store
from app.errors import ErrorCode, OperationResult
from app.models.user import Actor, UserRole
from app.store.base import DocumentStore

security = HTTPBearer(auto_error=False)

_STATUS_BY_CODE = {
    ErrorCode.INVALID_ARGUMENT: status.HTTP_400_BAD_REQUEST,
    ErrorCode.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorCode.CONFLICT: status.HTTP_409_CONFLICT,
    ErrorCode.UNAVAILABLE: status.HTTP_503_SERVICE_UNAVAILABLE,
    ErrorCode.PERMISSION_DENIED: status.HTTP_403_FORBIDDEN,
}


def create_access_token(subject: str, role: str, name: str = "") -> str:
    """Tokens are normally issued by the identity service; used by tooling and tests."""
    expire = datetime.now(timezone.utc) + timedelta(minutes=settings.jwt_access_token_expire_minutes)
    to_encode = {"sub": subject, "role": role, "name": name, "exp": expire, "type": "access"}
    return jwt.encode(to_encode, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


async def get_current_actor(
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(security)],
) -> Actor:
    if not credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    try:
        payload = jwt.decode(credentials.credentials, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
    except JWTError:
        raise HTTPException(status_code=401, detail="Invalid or expired token")
    if payload.get("type") != "access":
        raise HTTPException(status_code=401, detail="Invalid token")
    try:
        return Actor(uid=payload.get("sub"), role=payload.get("role"), name=payload.get("name") or "")
    except ValidationError:
        raise HTTPException(status_code=401, detail="Invalid token")


def require_roles(*allowed: UserRole):
    async def checker(actor: Annotated[Actor, Depends(get_current_actor)]):
        if actor.role not in allowed:
            raise HTTPException(status_code=403, detail="Insufficient permissions")
        return actor

    return checker


def raise_for_failure(result: OperationResult) -> OperationResult:
    """Turn a failed result into an HTTP error carrying the result as detail."""
    if not result.success:
        raise HTTPException(
            status_code=_STATUS_BY_CODE.get(result.code, status.HTTP_500_INTERNAL_SERVER_ERROR),
            detail=result.model_dump(mode="json"),
        )
    return result


# Type aliases for route injection
Store = Annotated[DocumentStore, Depends(get_store)]
CurrentActor = Annotated[Actor, Depends(get_current_actor)]
AdminOnly = Annotated[Actor, Depends(require_roles(UserRole.ADMIN))]
TeacherOrAdmin = Annotated[Actor, Depends(require_roles(UserRole.TEACHER, UserRole.ADMIN))]
