from __future__ import annotations

import logging
import secrets

from fastapi import Depends, Header, HTTPException, Request, Response, status
from sqlalchemy.orm import Session

from croissant_tour.core.config import settings
from croissant_tour.core.identity import client_host, persist_identity, resolve_user_id
from croissant_tour.db import crud
from croissant_tour.db.session import get_db
from croissant_tour.services.ratings import RatingService

logger = logging.getLogger(__name__)


def get_current_user_id(
    request: Request,
    response: Response,
    db: Session = Depends(get_db),
) -> str:
    token = request.cookies.get(settings.identity_cookie_name)
    identity = resolve_user_id(token, client_host(request))

    crud.ensure_user(db, identity.user_id)
    if identity.is_new:
        persist_identity(response, identity)
    return identity.user_id


def get_rating_service(db: Session = Depends(get_db)) -> RatingService:
    return RatingService(db)


def require_dashboard_access(x_dashboard_token: str | None = Header(default=None)) -> None:
    expected = settings.dashboard_token
    if not expected:
        return
    if not x_dashboard_token or not secrets.compare_digest(x_dashboard_token, expected):
        logger.warning("Dashboard access denied")
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden")
