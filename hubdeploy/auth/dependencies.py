from fastapi import HTTPException, Request
from jose import JWTError, jwt

from hubdeploy.auth.context import ROLE_PERMISSIONS, AuthContext
from hubdeploy.config import settings


async def get_current_auth(request: Request) -> AuthContext:
    token = _extract_bearer_token(request)

    auth = _try_jwt(token)
    if auth is not None:
        return auth

    raise HTTPException(status_code=401, detail="Invalid authentication credentials")


def _extract_bearer_token(request: Request) -> str:
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Missing authentication token")
    return auth_header[7:]


def _try_jwt(token: str) -> AuthContext | None:
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=["HS256"],
            options={"require_exp": True},
        )
    except JWTError:
        return None

    user_id = payload.get("user_id") or payload.get("sub")
    role = payload.get("role")

    if not user_id or not role:
        return None
    if role not in ROLE_PERMISSIONS:
        return None

    return AuthContext(
        user_id=str(user_id),
        role=role,
        permissions=ROLE_PERMISSIONS[role],
    )
