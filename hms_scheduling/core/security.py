import uuid
import logging
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import jwt, JWTError
from pydantic import BaseModel
from hms_scheduling.core.config import settings

logger = logging.getLogger(__name__)

http_bearer = HTTPBearer(auto_error=False)

# Role grants; explicit token scopes are added on top.
ROLE_SCOPES: dict[str, set[str]] = {
    "patient": {"availability:read", "availability:write"},
    "front_desk": {"availability:read", "availability:write", "appointments:read", "appointments:write", "realtime:read"},
    "doctor": {"availability:read", "appointments:read", "appointments:write", "schedules:read", "schedules:write", "realtime:read"},
    "admin": {"*"},
}

class Principal(BaseModel):
    user_id: uuid.UUID
    roles: list[str] = []
    scopes: list[str] = []

    def granted(self) -> set[str]:
        out = set(self.scopes)
        for role in self.roles:
            out |= ROLE_SCOPES.get(role, set())
        return out

def _decode_token(token: str) -> dict:
    try:
        return jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALG], audience=settings.REQUIRED_AUDIENCE)
    except JWTError as e:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=f"Invalid token: {e}")

def _token_scopes(data: dict) -> list[str]:
    # accepts a "scopes" list or an OAuth-style space separated "scope" string
    if isinstance(data.get("scopes"), list):
        return [str(s) for s in data["scopes"]]
    return str(data.get("scope") or "").split()

async def get_principal(creds: HTTPAuthorizationCredentials | None = Depends(http_bearer)) -> Principal:
    # In local/dev, allow missing token
    if creds is None and settings.ENV == "local":
        return Principal(user_id=uuid.uuid4(), roles=["admin"])
    if creds is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing token")

    data = _decode_token(creds.credentials)
    try:
        user_id = uuid.UUID(str(data.get("sub") or data.get("user_id")))
    except ValueError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Token subject is not a user id")
    return Principal(user_id=user_id, roles=list(data.get("roles", [])), scopes=_token_scopes(data))

def require_scopes(*needed: str):
    def dep(principal: Principal = Depends(get_principal)) -> Principal:
        granted = principal.granted()
        if "*" in granted or set(needed).issubset(granted):
            return principal
        logger.info("Denied user %s: needs %s", principal.user_id, ",".join(needed))
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient scopes")
    return dep
