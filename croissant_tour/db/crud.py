from __future__ import annotations

import functools
import logging
from collections.abc import Iterable
from datetime import datetime

from sqlalchemy import delete, insert, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from croissant_tour.core.errors import StorageUnavailable
from croissant_tour.core.validation import validate_place_id, validate_score, validate_user_id
from croissant_tour.models.ratings import Rating
from croissant_tour.models.users import User

logger = logging.getLogger(__name__)


def _storage_op(fn):
    """Roll back and re-raise driver errors as StorageUnavailable."""

    @functools.wraps(fn)
    def wrapper(db: Session, *args, **kwargs):
        try:
            return fn(db, *args, **kwargs)
        except SQLAlchemyError as exc:
            db.rollback()
            logger.exception("Storage error in %s", fn.__name__)
            raise StorageUnavailable(str(exc)) from exc

    return wrapper


def _dialect_insert(db: Session):
    dialect = db.get_bind().dialect.name
    if dialect == "sqlite":
        from sqlalchemy.dialects.sqlite import insert as dialect_insert
    elif dialect == "postgresql":
        from sqlalchemy.dialects.postgresql import insert as dialect_insert
    else:
        return None
    return dialect_insert


def _ensure_user(db: Session, user_id: str) -> None:
    dialect_insert = _dialect_insert(db)
    if dialect_insert is not None:
        stmt = dialect_insert(User).values(id=user_id, created_at=datetime.utcnow())
        db.execute(stmt.on_conflict_do_nothing(index_elements=["id"]))
        return

    if db.get(User, user_id) is None:
        try:
            with db.begin_nested():
                db.execute(insert(User).values(id=user_id, created_at=datetime.utcnow()))
        except IntegrityError:
            # Created concurrently by another request
            pass


def _upsert_rating(db: Session, user_id: str, place_id: str, score: int) -> None:
    now = datetime.utcnow()
    dialect_insert = _dialect_insert(db)
    if dialect_insert is not None:
        stmt = dialect_insert(Rating).values(
            user_id=user_id, place_id=place_id, score=score, created_at=now, updated_at=now
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["user_id", "place_id"],
            set_={"score": stmt.excluded.score, "updated_at": now},
        )
        db.execute(stmt)
        return

    existing = db.scalar(
        select(Rating).where(Rating.user_id == user_id, Rating.place_id == place_id).with_for_update()
    )
    if existing is not None:
        existing.score = score
        existing.updated_at = now
        db.flush()
        return
    try:
        with db.begin_nested():
            db.add(Rating(user_id=user_id, place_id=place_id, score=score, created_at=now, updated_at=now))
    except IntegrityError:
        # Lost the insert race; the row exists now
        db.execute(
            Rating.__table__.update()
            .where(Rating.user_id == user_id, Rating.place_id == place_id)
            .values(score=score, updated_at=now)
        )


@_storage_op
def ensure_user(db: Session, user_id: str) -> None:
    user_id = validate_user_id(user_id)
    _ensure_user(db, user_id)
    db.commit()


@_storage_op
def upsert_rating(db: Session, user_id: str, place_id: str, score: int) -> None:
    user_id = validate_user_id(user_id)
    place_id = validate_place_id(place_id)
    score = validate_score(score)

    _ensure_user(db, user_id)
    _upsert_rating(db, user_id, place_id, score)
    db.commit()


@_storage_op
def upsert_ratings(db: Session, user_id: str, items: Iterable[tuple[str, int]]) -> int:
    """Write a batch of (place_id, score) pairs in one transaction.

    Every pair is validated before the first write, so one bad score rejects
    the whole batch. Returns the number of rows written.
    """
    user_id = validate_user_id(user_id)
    pairs = [(validate_place_id(place_id), validate_score(score)) for place_id, score in items]
    if not pairs:
        return 0

    _ensure_user(db, user_id)
    for place_id, score in pairs:
        _upsert_rating(db, user_id, place_id, score)
    db.commit()
    return len(pairs)


@_storage_op
def delete_rating(db: Session, user_id: str, place_id: str) -> int:
    user_id = validate_user_id(user_id)
    place_id = validate_place_id(place_id)

    res = db.execute(delete(Rating).where(Rating.user_id == user_id, Rating.place_id == place_id))
    db.commit()
    return int(res.rowcount or 0)


@_storage_op
def delete_all_ratings(db: Session, user_id: str) -> int:
    user_id = validate_user_id(user_id)

    res = db.execute(delete(Rating).where(Rating.user_id == user_id))
    db.commit()
    return int(res.rowcount or 0)


@_storage_op
def get_rating(db: Session, user_id: str, place_id: str) -> Rating | None:
    return db.scalar(select(Rating).where(Rating.user_id == user_id, Rating.place_id == place_id))


@_storage_op
def read_user_ratings(db: Session, user_id: str) -> list[Rating]:
    user_id = validate_user_id(user_id)
    return list(db.scalars(select(Rating).where(Rating.user_id == user_id).order_by(Rating.place_id)).all())


@_storage_op
def read_all_user_ratings(db: Session) -> list:
    """Every user with each of their ratings; users with none appear once with nulls."""
    stmt = (
        select(User.id.label("user_id"), Rating.place_id, Rating.score, Rating.created_at)
        .select_from(User)
        .outerjoin(Rating, Rating.user_id == User.id)
        .order_by(User.id, Rating.created_at, Rating.place_id)
    )
    return list(db.execute(stmt).all())
