from __future__ import annotations

from fastapi import APIRouter, Depends

from croissant_tour.core.deps import get_current_user_id, get_rating_service
from croissant_tour.core.rate_limit import write_limit
from croissant_tour.schemas.ratings import GlobalStatResponse, RatingIn, RatingOut, ResetResponse
from croissant_tour.services.ratings import RatingService

router = APIRouter(prefix="/ratings", tags=["ratings"])


@router.post("", status_code=204, dependencies=[write_limit])
def upsert_ratings(
    payload: list[RatingIn],
    user_id: str = Depends(get_current_user_id),
    service: RatingService = Depends(get_rating_service),
) -> None:
    service.upsert_ratings(user_id, [(item.place_id, item.score) for item in payload])


@router.delete("/{place_id}", status_code=204, dependencies=[write_limit])
def delete_rating(
    place_id: str,
    user_id: str = Depends(get_current_user_id),
    service: RatingService = Depends(get_rating_service),
) -> None:
    service.delete_rating(user_id, place_id)


@router.delete("", response_model=ResetResponse, dependencies=[write_limit])
def delete_all_user_ratings(
    user_id: str = Depends(get_current_user_id),
    service: RatingService = Depends(get_rating_service),
) -> ResetResponse:
    return ResetResponse(deleted=service.reset_all(user_id))


@router.get("/me", response_model=list[RatingOut])
def get_user_ratings(
    user_id: str = Depends(get_current_user_id),
    service: RatingService = Depends(get_rating_service),
) -> list[RatingOut]:
    return [RatingOut(place_id=s.place_id, score=s.score) for s in service.get_my_ratings(user_id)]


@router.get("/stats", response_model=list[GlobalStatResponse])
def get_global_stats(
    _user_id: str = Depends(get_current_user_id),
    service: RatingService = Depends(get_rating_service),
) -> list[GlobalStatResponse]:
    return [
        GlobalStatResponse(place_id=s.place_id, average_score=s.average_score, rating_count=s.rating_count)
        for s in service.get_global_stats()
    ]
