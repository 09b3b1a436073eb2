from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional, Protocol, TypeVar

import aiohttp
import anyio
from sqlalchemy.orm import Session

from croissant_tour.core.errors import InvalidInput, RatingError
from croissant_tour.core.identity import new_user_id
from croissant_tour.services.ratings import RatingService
from tour_client.config import Config

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class APIError(Exception):
    status_code: int
    message: str
    details: Any = None

    def __str__(self) -> str:
        return f"{self.status_code}: {self.message}"


@dataclass(frozen=True)
class UserRating:
    place_id: str
    score: int


@dataclass(frozen=True)
class PlaceStat:
    place_id: str
    average_score: float
    rating_count: int


@dataclass(frozen=True)
class UserRatingRecord:
    user_id: str
    place_id: str | None
    score: int | None
    created_at: datetime | None


class RatingActions(Protocol):
    """Calls the presentation layer makes into the rating service."""

    async def upsert_ratings(self, ratings: Iterable[UserRating]) -> None: ...

    async def delete_rating(self, place_id: str) -> None: ...

    async def delete_all_user_ratings(self) -> None: ...

    async def get_user_ratings(self) -> list[UserRating]: ...

    async def get_global_stats(self) -> list[PlaceStat]: ...

    async def get_all_user_ratings(self) -> list[UserRatingRecord]: ...


class HttpRatingActions:
    """aiohttp transport for the ratings HTTP API.

    The identity cookie set by the server lives in the session's cookie jar, so
    one instance corresponds to one anonymous user.
    """

    def __init__(
        self,
        base_url: str = Config.API_BASE_URL,
        *,
        timeout_seconds: float = Config.API_TIMEOUT_SECONDS,
        dashboard_token: str = Config.DASHBOARD_TOKEN,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self.dashboard_token = dashboard_token
        self._session = session
        self._owns_session = session is None

    async def __aenter__(self) -> "HttpRatingActions":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            # unsafe=True keeps cookies for bare IP hosts like 127.0.0.1
            self._session = aiohttp.ClientSession(cookie_jar=aiohttp.CookieJar(unsafe=True), timeout=self.timeout)
        return self._session

    async def close(self) -> None:
        if self._session is not None and self._owns_session:
            await self._session.close()
        self._session = None

    async def request(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        headers: Optional[dict[str, str]] = None,
    ) -> Any:
        url = f"{self.base_url}{path}"
        try:
            async with self._get_session().request(
                method.upper(), url, json=json, headers={"Accept": "application/json", **(headers or {})}
            ) as resp:
                # Read JSON if there is any, but do not require it
                try:
                    payload = await resp.json(content_type=None)
                except ValueError:
                    payload = await resp.text()

                if resp.status >= 400:
                    msg = None
                    if isinstance(payload, dict):
                        msg = payload.get("detail") or payload.get("message")
                    raise APIError(resp.status, str(msg or f"HTTP {resp.status}"), payload)
                return payload
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            logger.warning("%s %s failed: %s", method.upper(), url, exc)
            raise APIError(503, "Service unreachable", str(exc)) from exc

    async def upsert_ratings(self, ratings: Iterable[UserRating]) -> None:
        body = [{"placeId": r.place_id, "score": r.score} for r in ratings]
        if not body:
            return
        await self.request("POST", "/ratings", json=body)

    async def delete_rating(self, place_id: str) -> None:
        await self.request("DELETE", f"/ratings/{place_id}")

    async def delete_all_user_ratings(self) -> None:
        await self.request("DELETE", "/ratings")

    async def get_user_ratings(self) -> list[UserRating]:
        payload = await self.request("GET", "/ratings/me")
        return [UserRating(place_id=row["placeId"], score=int(row["score"])) for row in payload or []]

    async def get_global_stats(self) -> list[PlaceStat]:
        payload = await self.request("GET", "/ratings/stats")
        return [
            PlaceStat(
                place_id=row["placeId"],
                average_score=float(row["averageScore"]),
                rating_count=int(row["ratingCount"]),
            )
            for row in payload or []
        ]

    async def get_all_user_ratings(self) -> list[UserRatingRecord]:
        headers = {"X-Dashboard-Token": self.dashboard_token} if self.dashboard_token else None
        payload = await self.request("GET", "/dashboard/ratings", headers=headers)
        return [
            UserRatingRecord(
                user_id=row["userId"],
                place_id=row.get("placeId"),
                score=row.get("score"),
                created_at=datetime.fromisoformat(row["createdAt"]) if row.get("createdAt") else None,
            )
            for row in payload or []
        ]


class ServiceRatingActions:
    """In-process transport: drives RatingService directly for one user.

    Database work is blocking, so each call runs in a worker thread with its
    own session.
    """

    def __init__(self, session_factory: Callable[[], Session], user_id: str) -> None:
        self.session_factory = session_factory
        self.user_id = user_id

    @classmethod
    def for_new_user(cls, session_factory: Callable[[], Session], host: str = "127.0.0.1") -> "ServiceRatingActions":
        return cls(session_factory, new_user_id(host))

    async def _run(self, fn: Callable[[RatingService], T]) -> T:
        def _call() -> T:
            db = self.session_factory()
            try:
                return fn(RatingService(db))
            finally:
                db.close()

        try:
            return await anyio.to_thread.run_sync(_call)
        except InvalidInput as exc:
            raise APIError(422, str(exc)) from exc
        except RatingError as exc:
            raise APIError(503, "Storage unavailable", str(exc)) from exc

    async def upsert_ratings(self, ratings: Iterable[UserRating]) -> None:
        items = [(r.place_id, r.score) for r in ratings]
        await self._run(lambda svc: svc.upsert_ratings(self.user_id, items))

    async def delete_rating(self, place_id: str) -> None:
        await self._run(lambda svc: svc.delete_rating(self.user_id, place_id))

    async def delete_all_user_ratings(self) -> None:
        await self._run(lambda svc: svc.reset_all(self.user_id))

    async def get_user_ratings(self) -> list[UserRating]:
        states = await self._run(lambda svc: svc.get_my_ratings(self.user_id))
        return [UserRating(place_id=s.place_id, score=s.score) for s in states]

    async def get_global_stats(self) -> list[PlaceStat]:
        stats = await self._run(lambda svc: svc.get_global_stats())
        return [PlaceStat(place_id=s.place_id, average_score=s.average_score, rating_count=s.rating_count) for s in stats]

    async def get_all_user_ratings(self) -> list[UserRatingRecord]:
        rows = await self._run(lambda svc: svc.get_all_user_ratings())
        return [
            UserRatingRecord(user_id=r.user_id, place_id=r.place_id, score=r.score, created_at=r.created_at)
            for r in rows
        ]
