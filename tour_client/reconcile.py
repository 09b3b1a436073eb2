from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Iterable
from contextlib import AsyncExitStack
from dataclasses import dataclass, replace
from functools import partial

import anyio

from tour_client.api import APIError, PlaceStat, RatingActions, UserRating

logger = logging.getLogger(__name__)

MIN_SCORE = 1
MAX_SCORE = 5

Notifier = Callable[[str, Exception], None]


@dataclass(frozen=True)
class CatalogPlace:
    id: str
    name: str
    known_for: str


@dataclass(frozen=True)
class PlaceView:
    id: str
    name: str
    known_for: str
    visited: bool = False
    score: int | None = None


DEFAULT_CATALOG: tuple[CatalogPlace, ...] = (
    CatalogPlace("1", "Arsicault Bakery", "Buttery croissants, kouign amann"),
    CatalogPlace("2", "Tartine Bakery", "Morning buns, chocolate croissants"),
    CatalogPlace("3", "b. patisserie", "Kouign amann, almond croissants"),
    CatalogPlace("4", "Neighbor Bakehouse", "Savory croissants, twice-baked croissants"),
    CatalogPlace("5", "Jane the Bakery", "Seasonal fruit croissants, artisan breads"),
    CatalogPlace("6", "Thorough Bread", "Almond croissants, fruit tarts"),
    CatalogPlace("7", "Craftsman and Wolves", "Rebel Within muffin, innovative pastries"),
    CatalogPlace("8", "Le Marais Bakery", "Organic French pastries, giant croissant"),
    CatalogPlace("9", "Vive La Tarte", "Tacro, Belgian-inspired croissants"),
)


def _log_failure(message: str, error: Exception) -> None:
    logger.warning("%s: %s", message, error)


class TourTracker:
    """Optimistic local view of one user's checklist.

    Every mutation is a small local transaction per place: take a snapshot,
    apply the new state to the view, call the service, then either refresh
    the global stats or roll back and notify.

    Remote calls for the same place run one at a time in the order the
    actions were issued. Each remote call writes the absolute target state
    (upsert the score or delete the row), so the last action issued wins.

    Rollbacks go to the last state the server acknowledged, never to an
    earlier optimistic one. While a later call on the place is still queued a
    failure changes nothing on screen; the queued call settles the place.
    When the failed call was the last one, the view falls back to the
    acknowledged state unless it already agrees with it on the score.

    Actions are coroutines meant to be started without awaiting the result,
    e.g. ``tg.start_soon(tracker.set_score, "2", 4)``.
    """

    def __init__(
        self,
        actions: RatingActions,
        catalog: Iterable[CatalogPlace] = DEFAULT_CATALOG,
        *,
        notify: Notifier | None = None,
        refresh_stats: bool = True,
    ) -> None:
        self.actions = actions
        self.notify = notify or _log_failure
        self.refresh_stats = refresh_stats

        self._places: dict[str, PlaceView] = {
            p.id: PlaceView(id=p.id, name=p.name, known_for=p.known_for) for p in catalog
        }
        self.global_stats: list[PlaceStat] = []

        self._locks: dict[str, anyio.Lock] = {}
        self._confirmed: dict[str, PlaceView] = dict(self._places)
        self._generation: dict[str, int] = {pid: 0 for pid in self._places}
        self._pending: dict[str, int] = {pid: 0 for pid in self._places}
        self._stats_requested = 0
        self._stats_applied = 0

    # --- view ---

    @property
    def places(self) -> list[PlaceView]:
        return list(self._places.values())

    def place(self, place_id: str) -> PlaceView:
        return self._places[place_id]

    def visited_places(self) -> list[PlaceView]:
        return [p for p in self._places.values() if p.visited]

    def sorted_places(self) -> list[PlaceView]:
        # visited first, best score first, then by name
        return sorted(self._places.values(), key=lambda p: (not p.visited, -(p.score or 0), p.name.lower()))

    def stat_for(self, place_id: str) -> PlaceStat | None:
        return next((s for s in self.global_stats if s.place_id == place_id), None)

    @property
    def progress(self) -> tuple[int, int]:
        return len(self.visited_places()), len(self._places)

    # --- loading ---

    async def load(self) -> bool:
        try:
            ratings = await self.actions.get_user_ratings()
            stats = await self.actions.get_global_stats()
        except APIError as exc:
            self.notify("Could not load your ratings", exc)
            return False

        scores = {r.place_id: r.score for r in ratings}
        for pid, view in self._places.items():
            self._places[pid] = self._confirmed[pid] = replace(view, visited=pid in scores, score=scores.get(pid))
            self._generation[pid] += 1
        self.global_stats = list(stats)
        return True

    async def refresh_global_stats(self) -> bool:
        self._stats_requested += 1
        ticket = self._stats_requested
        try:
            stats = await self.actions.get_global_stats()
        except APIError as exc:
            self.notify("Could not refresh global stats", exc)
            return False
        # An older response must not overwrite a newer one
        if ticket > self._stats_applied:
            self._stats_applied = ticket
            self.global_stats = list(stats)
        return True

    # --- actions ---

    async def toggle_visited(self, place_id: str) -> bool:
        current = self._get(place_id)
        if current is None:
            return False

        visited = not current.visited
        target = replace(current, visited=visited, score=current.score if visited else None)

        # Visited without a score is a local-only state
        remote = None if visited else partial(self.actions.delete_rating, place_id)

        return await self._commit(place_id, target, remote, "Could not update visited status")

    async def set_score(self, place_id: str, score: int) -> bool:
        current = self._get(place_id)
        if current is None:
            return False
        if isinstance(score, bool) or not isinstance(score, int) or not MIN_SCORE <= score <= MAX_SCORE:
            self.notify("Could not update score", ValueError(f"Score must be between {MIN_SCORE} and {MAX_SCORE}"))
            return False

        new_score = None if current.score == score else score
        target = replace(current, score=new_score, visited=True if new_score is not None else current.visited)

        if new_score is None:
            remote = partial(self.actions.delete_rating, place_id)
        else:
            remote = partial(self.actions.upsert_ratings, [UserRating(place_id, new_score)])

        return await self._commit(place_id, target, remote, "Could not update score")

    async def reset(self) -> bool:
        """Clear every place for this user."""
        snapshot = dict(self._places)
        stats_snapshot = list(self.global_stats)
        generations = {}
        for pid, view in self._places.items():
            self._places[pid] = replace(view, visited=False, score=None)
            self._generation[pid] += 1
            self._pending[pid] += 1
            generations[pid] = self._generation[pid]

        # Wait for queued per-place calls so none of them lands after the reset
        async with AsyncExitStack() as stack:
            try:
                for pid in sorted(self._places):
                    await stack.enter_async_context(self._lock(pid))
                await self.actions.delete_all_user_ratings()
            except APIError as exc:
                for pid, gen in generations.items():
                    self._settle(pid, gen, snapshot[pid], None)
                self.global_stats = stats_snapshot
                self.notify("Could not reset your progress", exc)
                return False
            except BaseException:
                for pid, gen in generations.items():
                    self._settle(pid, gen, snapshot[pid], None)
                raise

            for pid, gen in generations.items():
                self._settle(pid, gen, snapshot[pid], replace(snapshot[pid], visited=False, score=None))

        if self.refresh_stats:
            await self.refresh_global_stats()
        return True

    # --- internals ---

    def _get(self, place_id: str) -> PlaceView | None:
        view = self._places.get(place_id)
        if view is None:
            logger.warning("Unknown place id %s", place_id)
        return view

    def _lock(self, place_id: str) -> anyio.Lock:
        lock = self._locks.get(place_id)
        if lock is None:
            lock = self._locks[place_id] = anyio.Lock()
        return lock

    def _settle(self, place_id: str, generation: int, snapshot: PlaceView, stored: PlaceView | None) -> None:
        """Account for one finished remote call; `stored` is what the server now holds, None on failure."""
        self._pending[place_id] -= 1
        if stored is not None:
            self._confirmed[place_id] = stored
            return
        if self._pending[place_id]:
            logger.info("Failed action on place %s is followed by a queued one, leaving the view as is", place_id)
            return

        acknowledged = self._confirmed[place_id]
        candidate = snapshot if self._generation[place_id] == generation else self._places[place_id]
        # The visited flag alone is local, only the score has to match the server
        self._places[place_id] = candidate if candidate.score == acknowledged.score else acknowledged

    async def _commit(
        self,
        place_id: str,
        target: PlaceView,
        remote: Callable[[], Awaitable[None]] | None,
        failure_message: str,
    ) -> bool:
        snapshot = self._places[place_id]
        self._places[place_id] = target
        self._generation[place_id] += 1
        generation = self._generation[place_id]

        if remote is None:
            return True

        self._pending[place_id] += 1
        try:
            async with self._lock(place_id):
                await remote()
        except APIError as exc:
            self._settle(place_id, generation, snapshot, None)
            self.notify(failure_message, exc)
            return False
        except BaseException:
            self._settle(place_id, generation, snapshot, None)
            raise

        self._settle(place_id, generation, snapshot, target)
        if self.refresh_stats:
            await self.refresh_global_stats()
        return True
