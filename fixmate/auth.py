"""Bearer-token verification for the chat API.

Credentials are issued by the external login service. This module only turns
an ``Authorization: Bearer <token>`` header into an authenticated user id.

Token format accepted by ``SignedTokenVerifier``::

    <user_id>.<hex HMAC-SHA256(user_id, AUTH_SECRET)>
"""
from __future__ import annotations

import hashlib
import hmac
from typing import Optional, Protocol

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

_BEARER = HTTPBearer(auto_error=False)


class TokenVerifier(Protocol):
    def __call__(self, token: str) -> Optional[str]:
        """Return the user id for a valid token, None otherwise."""


def _sign(user_id: str, secret: str) -> str:
    return hmac.new(secret.encode("utf-8"), user_id.encode("utf-8"), hashlib.sha256).hexdigest()


def issue_token(user_id: str, secret: str) -> str:
    return f"{user_id}.{_sign(user_id, secret)}"


class SignedTokenVerifier:
    def __init__(self, secret: Optional[str]) -> None:
        self.secret = secret

    def __call__(self, token: str) -> Optional[str]:
        if not self.secret or "." not in token:
            return None
        user_id, _, signature = token.rpartition(".")
        if not user_id:
            return None
        if not hmac.compare_digest(signature, _sign(user_id, self.secret)):
            return None
        return user_id


def get_current_user_id(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(_BEARER),
) -> str:
    if credentials is None or not credentials.credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing bearer token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    verifier: TokenVerifier = request.app.state.token_verifier
    user_id = verifier(credentials.credentials)
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user_id
