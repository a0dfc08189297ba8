import uuid
from typing import Literal
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import jwt, JWTError
from pydantic import BaseModel
from counselbook.core.config import settings

http_bearer = HTTPBearer(auto_error=False)

Role = Literal["client", "counselor", "admin"]

class Principal(BaseModel):
    """Identity resolved by the login service; trusted as-is by the core."""
    user_id: uuid.UUID
    role: Role
    client_id: uuid.UUID | None = None
    counselor_id: uuid.UUID | None = None

    @property
    def is_staff(self) -> bool:
        return self.role in ("counselor", "admin")

def _decode_token(token: str) -> dict:
    try:
        payload = jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALG], audience=settings.REQUIRED_AUDIENCE)
        return payload
    except JWTError as e:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=f"Invalid token: {e}")

def _opt_uuid(v) -> uuid.UUID | None:
    return uuid.UUID(str(v)) if v else None

async def get_principal(creds: HTTPAuthorizationCredentials | None = Depends(http_bearer)) -> Principal:
    # In local dev, allow a missing token and act as an admin
    if creds is None and settings.ENV == "local":
        return Principal(user_id=uuid.UUID(int=0), role="admin")
    if creds is None:
        raise HTTPException(status_code=401, detail="Missing token")

    data = _decode_token(creds.credentials)
    try:
        return Principal(
            user_id=uuid.UUID(str(data.get("sub") or data.get("user_id"))),
            role=data.get("role", "client"),
            client_id=_opt_uuid(data.get("client_id")),
            counselor_id=_opt_uuid(data.get("counselor_id")),
        )
    except ValueError as e:
        raise HTTPException(status_code=401, detail=f"Invalid token claims: {e}")

def require_roles(*allowed: str):
    def dep(principal: Principal = Depends(get_principal)) -> Principal:
        if principal.role not in allowed:
            raise HTTPException(status_code=403, detail="Insufficient role")
        return principal
    return dep
