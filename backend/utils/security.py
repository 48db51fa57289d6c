from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError, jwt

from config.env import JWT_ALGORITHM, JWT_SECRET

security = HTTPBearer(auto_error=False)


def _decode_bearer(token: str) -> dict:
    secret = (JWT_SECRET or "").strip()
    if not secret:
        raise RuntimeError("JWT_SECRET is not configured")
    return jwt.decode(token, secret, algorithms=[JWT_ALGORITHM])


async def get_optional_user_id(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
) -> str | None:
    """
    Resolved user id, or None for an anonymous caller.
    A token that is present but invalid is still rejected.
    """
    if credentials is None:
        return None

    try:
        payload = _decode_bearer(credentials.credentials)
    except JWTError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
        )

    user_id = payload.get("sub")
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token payload",
        )

    return str(user_id)


async def require_user_id(user_id=Depends(get_optional_user_id)) -> str:
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
        )
    return user_id
