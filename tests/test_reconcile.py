import anyio
import pytest
from anyio import wait_all_tasks_blocked

from croissant_tour.db.session import SessionLocal
from tour_client.api import APIError, PlaceStat, ServiceRatingActions, UserRating
from tour_client.reconcile import CatalogPlace, TourTracker

pytestmark = pytest.mark.anyio

CATALOG = [
    CatalogPlace("1", "Arsicault Bakery", "Buttery croissants"),
    CatalogPlace("2", "Tartine Bakery", "Morning buns"),
    CatalogPlace("3", "b. patisserie", "Kouign amann"),
]


class FakeActions:
    """In-memory service with switches for failures and blocking."""

    def __init__(self) -> None:
        self.ratings: dict[str, int] = {}
        self.others: dict[str, list[int]] = {}
        self.calls: list[tuple] = []
        self.fail_places: set[str] = set()
        self.fail_scores: set[int] = set()
        self.fail_reset = False
        self.fail_reads = False
        self.gate: anyio.Event | None = None

    async def _pass_gate(self) -> None:
        if self.gate is not None:
            await self.gate.wait()

    async def upsert_ratings(self, ratings):
        ratings = list(ratings)
        self.calls.append(("upsert", [(r.place_id, r.score) for r in ratings]))
        await self._pass_gate()
        for r in ratings:
            if r.place_id in self.fail_places or r.score in self.fail_scores:
                raise APIError(503, "Storage unavailable")
        for r in ratings:
            self.ratings[r.place_id] = r.score

    async def delete_rating(self, place_id):
        self.calls.append(("delete", place_id))
        await self._pass_gate()
        if place_id in self.fail_places:
            raise APIError(503, "Storage unavailable")
        self.ratings.pop(place_id, None)

    async def delete_all_user_ratings(self):
        self.calls.append(("reset",))
        if self.fail_reset:
            raise APIError(503, "Storage unavailable")
        self.ratings.clear()

    async def get_user_ratings(self):
        if self.fail_reads:
            raise APIError(503, "Storage unavailable")
        return [UserRating(pid, s) for pid, s in self.ratings.items()]

    async def get_global_stats(self):
        if self.fail_reads:
            raise APIError(503, "Storage unavailable")
        merged: dict[str, list[int]] = {pid: list(v) for pid, v in self.others.items()}
        for pid, s in self.ratings.items():
            merged.setdefault(pid, []).append(s)
        stats = [PlaceStat(pid, sum(v) / len(v), len(v)) for pid, v in merged.items()]
        return sorted(stats, key=lambda s: (-s.average_score, s.place_id))

    async def get_all_user_ratings(self):
        return []


@pytest.fixture()
def fake():
    return FakeActions()


@pytest.fixture()
def notes():
    return []


@pytest.fixture()
def tracker(fake, notes):
    return TourTracker(fake, CATALOG, notify=lambda msg, err: notes.append((msg, err)))


async def test_load_builds_view(fake, tracker):
    fake.ratings = {"2": 4}
    fake.others = {"2": [2], "3": [5]}

    assert await tracker.load() is True
    assert tracker.place("2").visited and tracker.place("2").score == 4
    assert not tracker.place("1").visited
    assert [s.place_id for s in tracker.global_stats] == ["3", "2"]
    assert tracker.stat_for("2").rating_count == 2
    assert tracker.progress == (1, 3)


async def test_load_failure_keeps_catalog(fake, tracker, notes):
    fake.fail_reads = True
    assert await tracker.load() is False
    assert len(tracker.places) == 3
    assert not tracker.visited_places()
    assert notes and notes[0][0] == "Could not load your ratings"


async def test_score_is_applied_before_the_call_returns(fake, tracker):
    fake.gate = anyio.Event()
    async with anyio.create_task_group() as tg:
        tg.start_soon(tracker.set_score, "1", 4)
        await wait_all_tasks_blocked()

        assert tracker.place("1").score == 4
        assert tracker.place("1").visited
        assert fake.ratings == {}
        fake.gate.set()

    assert fake.ratings == {"1": 4}
    assert tracker.stat_for("1").average_score == 4.0


async def test_failed_score_rolls_back(fake, tracker, notes):
    await tracker.set_score("1", 3)
    fake.fail_places.add("1")

    assert await tracker.set_score("1", 5) is False
    assert tracker.place("1").score == 3
    assert notes[-1][0] == "Could not update score"
    assert isinstance(notes[-1][1], APIError)
    assert fake.ratings == {"1": 3}


async def test_same_score_toggles_off(fake, tracker):
    await tracker.set_score("2", 4)
    await tracker.set_score("2", 4)

    assert tracker.place("2").score is None
    assert tracker.place("2").visited is False
    assert fake.ratings == {}
    assert fake.calls[-1] == ("delete", "2")


async def test_toggle_visited(fake, tracker):
    assert await tracker.toggle_visited("3") is True
    assert tracker.place("3").visited
    assert fake.calls == []

    await tracker.set_score("3", 5)
    await tracker.toggle_visited("3")
    assert not tracker.place("3").visited
    assert tracker.place("3").score is None
    assert fake.ratings == {}


async def test_failed_unvisit_restores_score(fake, tracker, notes):
    await tracker.set_score("3", 2)
    fake.fail_places.add("3")

    assert await tracker.toggle_visited("3") is False
    assert tracker.place("3").visited and tracker.place("3").score == 2
    assert notes[-1][0] == "Could not update visited status"


async def test_places_do_not_affect_each_other(fake, tracker):
    fake.fail_places.add("1")
    async with anyio.create_task_group() as tg:
        tg.start_soon(tracker.set_score, "1", 4)
        tg.start_soon(tracker.set_score, "2", 5)

    assert tracker.place("1").score is None
    assert tracker.place("2").score == 5
    assert fake.ratings == {"2": 5}


async def test_same_place_calls_run_in_issue_order(fake, tracker):
    fake.gate = anyio.Event()
    async with anyio.create_task_group() as tg:
        tg.start_soon(tracker.set_score, "1", 4)
        await wait_all_tasks_blocked()
        tg.start_soon(tracker.set_score, "1", 2)
        await wait_all_tasks_blocked()

        # the second call waits for the first one
        assert fake.calls == [("upsert", [("1", 4)])]
        assert tracker.place("1").score == 2
        fake.gate.set()

    assert [c[1] for c in fake.calls] == [[("1", 4)], [("1", 2)]]
    assert fake.ratings == {"1": 2}
    assert tracker.place("1").score == 2


async def test_superseded_failure_keeps_latest_intent(fake, tracker, notes):
    fake.gate = anyio.Event()
    fake.fail_scores.add(4)
    async with anyio.create_task_group() as tg:
        tg.start_soon(tracker.set_score, "1", 4)
        await wait_all_tasks_blocked()
        tg.start_soon(tracker.set_score, "1", 5)
        await wait_all_tasks_blocked()
        fake.gate.set()

    assert len(notes) == 1
    assert tracker.place("1").score == 5
    assert fake.ratings == {"1": 5}


async def test_two_failed_scores_fall_back_to_server_state(fake, tracker, notes):
    fake.gate = anyio.Event()
    fake.fail_places.add("1")
    async with anyio.create_task_group() as tg:
        tg.start_soon(tracker.set_score, "1", 4)
        await wait_all_tasks_blocked()
        tg.start_soon(tracker.set_score, "1", 5)
        await wait_all_tasks_blocked()
        fake.gate.set()

    assert len(notes) == 2
    assert fake.ratings == {}
    assert tracker.place("1").score is None
    assert not tracker.place("1").visited


async def test_later_failure_keeps_earlier_acknowledged_score(fake, tracker, notes):
    fake.gate = anyio.Event()
    fake.fail_scores.add(5)
    async with anyio.create_task_group() as tg:
        tg.start_soon(tracker.set_score, "1", 4)
        await wait_all_tasks_blocked()
        tg.start_soon(tracker.set_score, "1", 5)
        await wait_all_tasks_blocked()
        fake.gate.set()

    assert len(notes) == 1
    assert fake.ratings == {"1": 4}
    assert tracker.place("1").score == 4


async def test_failed_unvisit_followed_by_local_visit_restores_score(fake, tracker, notes):
    await tracker.set_score("1", 3)
    fake.gate = anyio.Event()
    fake.fail_places.add("1")
    async with anyio.create_task_group() as tg:
        tg.start_soon(tracker.toggle_visited, "1")
        await wait_all_tasks_blocked()
        # visiting again without a score makes no remote call
        await tracker.toggle_visited("1")
        assert tracker.place("1").visited and tracker.place("1").score is None
        fake.gate.set()

    assert len(notes) == 1
    assert fake.ratings == {"1": 3}
    assert tracker.place("1").visited and tracker.place("1").score == 3


async def test_failed_action_keeps_local_visited_flag(fake, tracker, notes):
    fake.gate = anyio.Event()
    fake.fail_places.add("2")
    async with anyio.create_task_group() as tg:
        await tracker.toggle_visited("2")
        tg.start_soon(tracker.set_score, "2", 4)
        await wait_all_tasks_blocked()
        fake.gate.set()

    assert len(notes) == 1
    assert tracker.place("2").visited
    assert tracker.place("2").score is None


async def test_invalid_score_rejected_locally(fake, tracker, notes):
    for bad in (0, 6, True):
        assert await tracker.set_score("1", bad) is False
    assert fake.calls == []
    assert tracker.place("1").score is None
    assert len(notes) == 3


async def test_unknown_place_is_ignored(fake, tracker):
    assert await tracker.set_score("42", 3) is False
    assert await tracker.toggle_visited("42") is False
    assert fake.calls == []


async def test_reset(fake, tracker):
    fake.others = {"1": [3]}
    for pid, score in (("1", 5), ("2", 4), ("3", 1)):
        await tracker.set_score(pid, score)

    assert await tracker.reset() is True
    assert tracker.visited_places() == []
    assert fake.ratings == {}
    assert [(s.place_id, s.rating_count) for s in tracker.global_stats] == [("1", 1)]


async def test_failed_reset_restores_everything(fake, tracker, notes):
    await tracker.set_score("1", 5)
    await tracker.set_score("2", 3)
    stats_before = list(tracker.global_stats)
    fake.fail_reset = True

    assert await tracker.reset() is False
    assert tracker.place("1").score == 5
    assert tracker.place("2").score == 3
    assert tracker.global_stats == stats_before
    assert notes[-1][0] == "Could not reset your progress"


async def test_stats_refresh_failure_keeps_the_write(fake, tracker, notes):
    await tracker.set_score("1", 5)
    fake.fail_reads = True
    assert await tracker.set_score("2", 4) is True
    assert tracker.place("2").score == 4
    assert fake.ratings == {"1": 5, "2": 4}
    assert notes[-1][0] == "Could not refresh global stats"


async def test_sorted_places(tracker):
    await tracker.set_score("3", 2)
    await tracker.set_score("2", 5)
    await tracker.toggle_visited("1")
    assert [p.id for p in tracker.sorted_places()] == ["2", "3", "1"]


async def test_against_real_service(clean_db):
    u1 = TourTracker(ServiceRatingActions.for_new_user(SessionLocal, "203.0.113.1"), CATALOG)
    u2 = TourTracker(ServiceRatingActions.for_new_user(SessionLocal, "203.0.113.2"), CATALOG)
    assert await u1.load() and await u2.load()

    await u1.set_score("2", 4)
    await u2.set_score("2", 2)
    assert [(s.place_id, s.average_score, s.rating_count) for s in u2.global_stats] == [("2", 3.0, 2)]

    await u1.set_score("2", 4)
    assert u1.place("2").score is None
    assert [(s.place_id, s.average_score, s.rating_count) for s in u1.global_stats] == [("2", 2.0, 1)]

    fresh = TourTracker(u1.actions, CATALOG)
    await fresh.load()
    assert fresh.visited_places() == []

    rows = await u1.actions.get_all_user_ratings()
    assert {r.user_id for r in rows} == {u1.actions.user_id, u2.actions.user_id}
