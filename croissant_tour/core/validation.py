from __future__ import annotations

from croissant_tour.core.errors import InvalidInput
from croissant_tour.models.ratings import MAX_SCORE, MIN_SCORE

MAX_ID_LENGTH = 64


def validate_score(score: object) -> int:
    # bool is an int subclass; True must not pass as a score of 1
    if isinstance(score, bool) or not isinstance(score, int):
        raise InvalidInput(f"Score must be an integer, got {score!r}")
    if not MIN_SCORE <= score <= MAX_SCORE:
        raise InvalidInput(f"Score must be between {MIN_SCORE} and {MAX_SCORE}, got {score}")
    return score


def _validate_id(value: object, kind: str) -> str:
    if not isinstance(value, str):
        raise InvalidInput(f"{kind} must be a string")
    value = value.strip()
    if not value:
        raise InvalidInput(f"{kind} must not be empty")
    if len(value) > MAX_ID_LENGTH:
        raise InvalidInput(f"{kind} is longer than {MAX_ID_LENGTH} characters")
    return value


def validate_place_id(place_id: object) -> str:
    return _validate_id(place_id, "Place id")


def validate_user_id(user_id: object) -> str:
    return _validate_id(user_id, "User id")
