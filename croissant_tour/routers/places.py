from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status

from croissant_tour.core.deps import get_current_user_id, get_rating_service
from croissant_tour.core.rate_limit import write_limit
from croissant_tour.schemas.ratings import GlobalStatResponse, PlaceStateResponse, ScoreUpdate, VisitedUpdate
from croissant_tour.services.ratings import PlaceState, RatingService

router = APIRouter(prefix="/places/{place_id}", tags=["places"])


def _to_state_response(state: PlaceState) -> PlaceStateResponse:
    return PlaceStateResponse(place_id=state.place_id, score=state.score, visited=state.visited)


@router.get("", response_model=PlaceStateResponse)
def get_place_state(
    place_id: str,
    user_id: str = Depends(get_current_user_id),
    service: RatingService = Depends(get_rating_service),
) -> PlaceStateResponse:
    return _to_state_response(service.current_state(user_id, place_id))


@router.put("/score", response_model=PlaceStateResponse, dependencies=[write_limit])
def set_score(
    place_id: str,
    payload: ScoreUpdate,
    user_id: str = Depends(get_current_user_id),
    service: RatingService = Depends(get_rating_service),
) -> PlaceStateResponse:
    return _to_state_response(service.set_score(user_id, place_id, payload.score))


@router.put("/visited", response_model=PlaceStateResponse, dependencies=[write_limit])
def set_visited(
    place_id: str,
    payload: VisitedUpdate,
    user_id: str = Depends(get_current_user_id),
    service: RatingService = Depends(get_rating_service),
) -> PlaceStateResponse:
    return _to_state_response(service.set_visited(user_id, place_id, payload.visited))


@router.get("/stats", response_model=GlobalStatResponse)
def get_place_stat(
    place_id: str,
    service: RatingService = Depends(get_rating_service),
) -> GlobalStatResponse:
    stat = service.get_place_stat(place_id)
    if stat is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No ratings for this place")
    return GlobalStatResponse(place_id=stat.place_id, average_score=stat.average_score, rating_count=stat.rating_count)
