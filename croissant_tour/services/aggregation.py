from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from croissant_tour.core.errors import StorageUnavailable
from croissant_tour.models.ratings import Rating


@dataclass(frozen=True)
class GlobalStat:
    place_id: str
    rating_count: int
    average_score: float


def _stats_query():
    avg = func.avg(Rating.score)
    return (
        select(Rating.place_id, func.count(Rating.id), avg)
        .group_by(Rating.place_id)
        # Equal averages fall back to place id so the order is stable
        .order_by(avg.desc(), Rating.place_id.asc())
    )


def compute_global_stats(db: Session) -> list[GlobalStat]:
    """Aggregate every place's ratings into (count, mean).

    Computed from the ratings table on every call with a single statement, so
    the result always matches the rows visible to that read. Nothing is cached
    and no counters are stored anywhere.
    """
    try:
        rows = db.execute(_stats_query()).all()
    except SQLAlchemyError as exc:
        db.rollback()
        raise StorageUnavailable(str(exc)) from exc

    return [
        GlobalStat(place_id=place_id, rating_count=int(cnt or 0), average_score=float(avg or 0.0))
        for place_id, cnt, avg in rows
    ]


def compute_place_stat(db: Session, place_id: str) -> GlobalStat | None:
    try:
        row = db.execute(_stats_query().where(Rating.place_id == place_id)).first()
    except SQLAlchemyError as exc:
        db.rollback()
        raise StorageUnavailable(str(exc)) from exc

    if row is None:
        return None
    _, cnt, avg = row
    return GlobalStat(place_id=place_id, rating_count=int(cnt or 0), average_score=float(avg or 0.0))
