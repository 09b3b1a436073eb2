from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class RatingIn(_CamelModel):
    place_id: str = Field(min_length=1, max_length=64)
    # Range is checked by the service so that it answers with the same error everywhere
    score: int


class RatingOut(_CamelModel):
    place_id: str
    score: int


class ScoreUpdate(_CamelModel):
    score: int


class VisitedUpdate(_CamelModel):
    visited: bool


class PlaceStateResponse(_CamelModel):
    place_id: str
    score: int | None
    visited: bool


class GlobalStatResponse(_CamelModel):
    place_id: str
    average_score: float
    rating_count: int


class ResetResponse(_CamelModel):
    deleted: int


class UserRatingRow(_CamelModel):
    user_id: str
    place_id: str | None
    score: int | None
    created_at: datetime | None
