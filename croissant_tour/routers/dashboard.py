from __future__ import annotations

from fastapi import APIRouter, Depends

from croissant_tour.core.deps import get_rating_service, require_dashboard_access
from croissant_tour.schemas.ratings import UserRatingRow
from croissant_tour.services.ratings import RatingService

router = APIRouter(prefix="/dashboard", tags=["dashboard"], dependencies=[Depends(require_dashboard_access)])


@router.get("/ratings", response_model=list[UserRatingRow])
def get_all_user_ratings(service: RatingService = Depends(get_rating_service)) -> list[UserRatingRow]:
    return [
        UserRatingRow(user_id=e.user_id, place_id=e.place_id, score=e.score, created_at=e.created_at)
        for e in service.get_all_user_ratings()
    ]
