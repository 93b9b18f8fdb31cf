from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel

from coursecert.core.config import settings
from coursecert.core.error_handling import AuthenticationError

# Tokens are issued by the identity service; this API only verifies them.
bearer_scheme = HTTPBearer(auto_error=False)


class Principal(BaseModel):
    user_id: str


def create_access_token(user_id: str, expires_in: timedelta = timedelta(hours=1)) -> str:
    now = datetime.now(timezone.utc)
    payload = {"sub": user_id, "iat": now, "exp": now + expires_in}
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_principal(token: str) -> Principal:
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[settings.jwt_algorithm],
            options={"require": ["sub", "exp"]},
        )
    except jwt.ExpiredSignatureError:
        raise AuthenticationError("Token expired", user_message="Your session has expired.")
    except jwt.InvalidTokenError:
        raise AuthenticationError("Could not validate credentials")

    sub = payload.get("sub")
    if not isinstance(sub, str) or not sub:
        raise AuthenticationError("Token has no subject")
    return Principal(user_id=sub)


async def current_principal(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> Principal:
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise AuthenticationError("Missing bearer token")
    return decode_principal(credentials.credentials)
