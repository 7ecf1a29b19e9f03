from __future__ import annotations

from typing import Annotated, Any, Mapping

from fastapi import Depends, HTTPException, Request, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from app.core.config import Settings, get_settings
from app.tickets.models import Principal, Role


class AuthenticationError(RuntimeError):
    """Raised when a bearer token cannot be turned into a principal."""


class TokenIdentityProvider:
    """Verify bearer tokens signed by the identity service.

    Tokens are HS256 JWTs carrying the user id (``userId`` or ``sub``) and the
    user's ``role``. Issuing them is the identity service's job.
    """

    def __init__(self, secret: str, *, algorithm: str = "HS256") -> None:
        self._secret = secret
        self._algorithm = algorithm

    @classmethod
    def from_settings(cls, settings: Settings) -> "TokenIdentityProvider":
        return cls(settings.jwt_secret, algorithm=settings.jwt_algorithm)

    def authenticate(self, token: str | None) -> Principal:
        if not token:
            raise AuthenticationError("Access denied. No token provided.")
        try:
            claims: Mapping[str, Any] = jwt.decode(token, self._secret, algorithms=[self._algorithm])
        except JWTError as exc:
            raise AuthenticationError("Invalid or expired token") from exc

        user_id = claims.get("userId") or claims.get("sub")
        if not user_id or not str(user_id).strip():
            raise AuthenticationError("Token does not identify a user")
        try:
            role = Role(str(claims.get("role", "")).upper())
        except ValueError as exc:
            raise AuthenticationError("Token carries an unknown role") from exc
        return Principal(id=str(user_id).strip(), role=role)


bearer_scheme = HTTPBearer(auto_error=False)


def get_identity_provider(request: Request) -> TokenIdentityProvider:
    provider = getattr(request.app.state, "identity_provider", None)
    if provider is None:
        provider = TokenIdentityProvider.from_settings(get_settings())
        request.app.state.identity_provider = provider
    return provider


async def get_current_principal(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Security(bearer_scheme)],
    provider: Annotated[TokenIdentityProvider, Depends(get_identity_provider)],
) -> Principal:
    """Resolve the caller from the ``Authorization: Bearer`` header."""

    token = credentials.credentials if credentials is not None else None
    try:
        return provider.authenticate(token)
    except AuthenticationError as exc:
        raise HTTPException(
            status_code=401,
            detail=str(exc),
            headers={"WWW-Authenticate": "Bearer"},
        ) from exc


CurrentPrincipal = Annotated[Principal, Depends(get_current_principal)]
