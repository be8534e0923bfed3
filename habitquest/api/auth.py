"""API authentication using bearer JWTs issued by the identity provider"""
import logging
from dataclasses import dataclass
from typing import Optional
from fastapi import Security
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError, jwt

from habitquest import config
from habitquest.exceptions import AuthenticationError, AuthorizationError, ConfigurationError

logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class AuthenticatedUser:
    """The acting user, taken from the token's `sub` and `email` claims"""
    uid: str
    email: Optional[str] = None


def decode_token(token: str) -> AuthenticatedUser:
    """
    Verify a bearer token and return its user

    Raises:
        ConfigurationError: No signing secret configured
        AuthenticationError: Bad signature, expired, wrong audience or no `sub`
    """
    if not config.AUTH_JWT_SECRET:
        raise ConfigurationError("AUTH_JWT_SECRET is not configured", config_key="AUTH_JWT_SECRET")

    options = {"verify_aud": bool(config.AUTH_JWT_AUDIENCE)}
    try:
        claims = jwt.decode(
            token,
            config.AUTH_JWT_SECRET,
            algorithms=[config.AUTH_JWT_ALGORITHM],
            audience=config.AUTH_JWT_AUDIENCE or None,
            options=options,
        )
    except JWTError as e:
        logger.warning(f"Rejected bearer token: {e}")
        raise AuthenticationError("Could not validate credentials")

    uid = claims.get("sub")
    if not uid:
        raise AuthenticationError("Token has no subject")
    return AuthenticatedUser(uid=str(uid), email=claims.get("email"))


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Security(security)
) -> AuthenticatedUser:
    """
    Resolve the acting user from the Authorization header

    Raises:
        AuthenticationError: Header missing or token invalid
    """
    if credentials is None:
        raise AuthenticationError("Not authenticated")
    return decode_token(credentials.credentials)


def require_same_user(current: AuthenticatedUser, user_id: str, resource: str = "this account") -> None:
    """Users may only read and write their own profile and habits"""
    if current.uid != user_id:
        raise AuthorizationError(
            f"{current.uid} may not access {user_id}",
            resource=resource,
            user_id=current.uid,
        )
