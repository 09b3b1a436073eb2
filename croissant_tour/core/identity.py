from __future__ import annotations

import hashlib
import logging
import secrets
from dataclasses import dataclass

from fastapi import Request, Response
from jose import JWTError, jwt

from croissant_tour.core.config import settings
from croissant_tour.core.errors import InvalidInput
from croissant_tour.core.validation import validate_user_id

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"
FALLBACK_HOST = "127.0.0.1"


@dataclass(frozen=True)
class IdentityResolution:
    user_id: str
    token: str
    is_new: bool


def client_host(request: Request) -> str:
    # Respect proxies if configured to pass X-Forwarded-For
    xff = request.headers.get("x-forwarded-for")
    if xff:
        return xff.split(",")[0].strip() or FALLBACK_HOST
    if request.client:
        return request.client.host
    return FALLBACK_HOST


def new_user_id(host: str, *, random_bytes: int | None = None) -> str:
    """Mint a fresh anonymous user id.

    The host only contributes entropy: two clients behind the same NAT share
    the prefix but get different random suffixes.
    """
    digest = hashlib.sha256(host.encode("utf-8")).hexdigest()[:16]
    suffix = secrets.token_hex(random_bytes or settings.identity_random_bytes)
    return f"{digest}-{suffix}"


def encode_identity_token(user_id: str) -> str:
    if not settings.identity_sign_tokens:
        return user_id
    return jwt.encode({"sub": user_id}, settings.app_secret_key, algorithm=ALGORITHM)


def decode_identity_token(token: str) -> str | None:
    """Return the user id carried by `token`, or None if it cannot be used as one."""
    if settings.identity_sign_tokens:
        try:
            payload = jwt.decode(token, settings.app_secret_key, algorithms=[ALGORITHM])
        except JWTError:
            return None
        user_id = payload.get("sub")
    else:
        user_id = token

    try:
        return validate_user_id(user_id)
    except InvalidInput:
        return None


def resolve_user_id(token: str | None, host: str) -> IdentityResolution:
    if token:
        user_id = decode_identity_token(token)
        if user_id:
            return IdentityResolution(user_id=user_id, token=token, is_new=False)
        logger.warning("Rejected identity token from %s, issuing a new one", host)

    user_id = new_user_id(host)
    logger.info("New anonymous user %s", user_id)
    return IdentityResolution(user_id=user_id, token=encode_identity_token(user_id), is_new=True)


def persist_identity(response: Response, identity: IdentityResolution) -> None:
    response.set_cookie(
        key=settings.identity_cookie_name,
        value=identity.token,
        max_age=settings.identity_cookie_max_age,
        path="/",
        samesite="strict",
        secure=settings.cookie_secure,
        httponly=True,
    )
