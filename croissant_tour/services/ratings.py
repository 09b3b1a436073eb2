from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.orm import Session

from croissant_tour.core.validation import validate_place_id, validate_score, validate_user_id
from croissant_tour.db import crud
from croissant_tour.services.aggregation import GlobalStat, compute_global_stats, compute_place_stat

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PlaceState:
    place_id: str
    score: int | None

    @property
    def visited(self) -> bool:
        # A stored score is the only persisted form of "visited"
        return self.score is not None


@dataclass(frozen=True)
class UserRatingEntry:
    user_id: str
    place_id: str | None
    score: int | None
    created_at: datetime | None


class RatingService:
    """Per-user rating operations on top of the store and the aggregation.

    Two persisted states exist per (user, place): no row (unrated) or a row
    with a score. Visited-without-score lives only in the client.
    """

    def __init__(self, db: Session) -> None:
        self.db = db

    def current_state(self, user_id: str, place_id: str) -> PlaceState:
        user_id = validate_user_id(user_id)
        place_id = validate_place_id(place_id)
        rating = crud.get_rating(self.db, user_id, place_id)
        return PlaceState(place_id=place_id, score=rating.score if rating else None)

    def set_visited(self, user_id: str, place_id: str, visited: bool) -> PlaceState:
        user_id = validate_user_id(user_id)
        place_id = validate_place_id(place_id)

        if visited:
            # Nothing to write until the first score arrives
            return self.current_state(user_id, place_id)

        removed = crud.delete_rating(self.db, user_id, place_id)
        logger.info("Unvisited place=%s user=%s (removed=%s)", place_id, user_id, removed)
        return PlaceState(place_id=place_id, score=None)

    def set_score(self, user_id: str, place_id: str, score: int) -> PlaceState:
        """Set a score, or clear it when the same score is sent again."""
        user_id = validate_user_id(user_id)
        place_id = validate_place_id(place_id)
        score = validate_score(score)

        current = self.current_state(user_id, place_id)
        if current.score == score:
            crud.delete_rating(self.db, user_id, place_id)
            logger.info("Cleared score place=%s user=%s", place_id, user_id)
            return PlaceState(place_id=place_id, score=None)

        crud.upsert_rating(self.db, user_id, place_id, score)
        logger.info("Scored place=%s user=%s score=%s (was %s)", place_id, user_id, score, current.score)
        return PlaceState(place_id=place_id, score=score)

    def upsert_ratings(self, user_id: str, items: Iterable[tuple[str, int]]) -> int:
        written = crud.upsert_ratings(self.db, user_id, items)
        if written:
            logger.info("Upserted %s rating(s) for user=%s", written, user_id)
        return written

    def delete_rating(self, user_id: str, place_id: str) -> None:
        removed = crud.delete_rating(self.db, user_id, place_id)
        logger.info("Deleted rating place=%s user=%s (removed=%s)", place_id, user_id, removed)

    def reset_all(self, user_id: str) -> int:
        removed = crud.delete_all_ratings(self.db, user_id)
        logger.info("Reset user=%s, removed %s rating(s)", user_id, removed)
        return removed

    def get_my_ratings(self, user_id: str) -> list[PlaceState]:
        return [PlaceState(place_id=r.place_id, score=r.score) for r in crud.read_user_ratings(self.db, user_id)]

    def get_global_stats(self) -> list[GlobalStat]:
        return compute_global_stats(self.db)

    def get_place_stat(self, place_id: str) -> GlobalStat | None:
        return compute_place_stat(self.db, validate_place_id(place_id))

    def get_all_user_ratings(self) -> list[UserRatingEntry]:
        return [
            UserRatingEntry(user_id=row.user_id, place_id=row.place_id, score=row.score, created_at=row.created_at)
            for row in crud.read_all_user_ratings(self.db)
        ]
