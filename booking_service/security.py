import json

from fastapi import Depends, Header, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from .config import JWT_ALGORITHM, JWT_SECRET

bearer_scheme = HTTPBearer(auto_error=False)


def _parse_roles(raw: str | None) -> list[str]:
    if not raw:
        return []
    try:
        roles = json.loads(raw)
    except ValueError:
        # tolerate a plain comma separated header from older gateways
        roles = raw.split(",")
    if isinstance(roles, str):
        roles = [roles]
    if not isinstance(roles, list):
        return []
    return [str(r).strip() for r in roles if str(r).strip()]


def _decode_token(token: str) -> dict:
    try:
        return jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except JWTError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
        )


def get_current_user(
    request: Request,
    creds: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    x_user_sub: str | None = Header(default=None),
    x_user_roles: str | None = Header(default=None),
) -> dict:
    """
    Resolve the caller as {"sub": email, "roles": [...]}.

    With JWT_SECRET configured a Bearer token is required; otherwise the identity
    headers forwarded by the gateway are trusted.
    """
    if JWT_SECRET:
        token = None
        if creds and creds.scheme.lower() == "bearer":
            token = creds.credentials
        if not token:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Missing Bearer token",
            )
        payload = _decode_token(token)
        sub = payload.get("sub")
        roles = payload.get("roles")
    else:
        sub = x_user_sub
        roles = _parse_roles(x_user_roles)

    if not sub:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing user identity",
        )

    request.state.user_sub = sub
    request.state.user_roles = roles
    return {"sub": sub, "roles": roles}


def require_role(user: dict, allowed_roles: list[str]):
    user_roles = user.get("roles")

    if not isinstance(user_roles, list) or not user_roles:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="No roles supplied for this user",
        )

    allowed = {r.lower() for r in allowed_roles}
    roles = {r.lower() for r in user_roles}

    if roles.isdisjoint(allowed):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Access forbidden for this role",
        )
