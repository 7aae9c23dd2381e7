import sys
from pathlib import Path
from typing import List, Optional

import pytest
import pytest_asyncio
from fakeredis.aioredis import FakeRedis

# Ensure backend package is importable when tests run from repo root
BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
	sys.path.insert(0, str(BACKEND_ROOT))

from clubroster.domain.roster import models
from clubroster.domain.roster.locks import MemoryLockManager
from clubroster.domain.roster.service import RosterService
from clubroster.domain.roster.state import RosterState
from clubroster.infra import postgres
from clubroster.obs.logging import clear_context

CLUB_ID = "club-1"
OTHER_CLUB_ID = "club-2"
SUBTEAM_A = "sub-a"
SUBTEAM_B = "sub-b"
OTHER_SUBTEAM = "sub-z"

ANATOMY = "ev-anatomy"
PHYSIOLOGY = "ev-physiology"
CODEBUSTERS = "ev-codebusters"
ORNITHOLOGY = "ev-ornithology"
SCRAMBLER = "ev-scrambler"
TOWERS = "ev-towers"
ROAD_SCHOLAR = "ev-road-scholar"


def division_c_events() -> List[models.Event]:
	return [
		models.Event(ANATOMY, "C", "Anatomy", max_competitors=2),
		models.Event(PHYSIOLOGY, "C", "Physiology", max_competitors=2),
		models.Event(CODEBUSTERS, "C", "Codebusters", max_competitors=3),
		models.Event(ORNITHOLOGY, "C", "Ornithology", max_competitors=2),
		models.Event(SCRAMBLER, "C", "Scrambler", max_competitors=2, self_scheduled=True),
		models.Event(TOWERS, "C", "Towers", max_competitors=2, self_scheduled=True),
	]


def division_c_groups() -> List[models.ConflictGroup]:
	return [
		models.ConflictGroup("grp-life", "C", "Life Science Block", (ANATOMY, PHYSIOLOGY), block_number=1),
		models.ConflictGroup("grp-build", "C", "Build Block", (ORNITHOLOGY, SCRAMBLER, TOWERS), block_number=3),
	]


def build_snapshot(
	members_a: int = 3,
	members_b: int = 1,
	unassigned: int = 1,
	assignments: Optional[List[models.RosterAssignment]] = None,
) -> models.ClubSnapshot:
	"""Division C club with subteams A and B; members are m1.. in A, then B, then unassigned."""
	members: List[models.Member] = []
	layout = [SUBTEAM_A] * members_a + [SUBTEAM_B] * members_b + [None] * unassigned
	for idx, subteam_id in enumerate(layout, start=1):
		members.append(models.Member(f"m{idx}", CLUB_ID, subteam_id, display_name=f"Member {idx:02d}"))
	return models.ClubSnapshot(
		club=models.Club(CLUB_ID, "Lincoln High", "C"),
		members=members,
		subteams=[
			models.Subteam(SUBTEAM_A, CLUB_ID, "Team A"),
			models.Subteam(SUBTEAM_B, CLUB_ID, "Team B"),
		],
		events=division_c_events(),
		conflict_groups=division_c_groups(),
		assignments=list(assignments or []),
	)


def other_club_snapshot() -> models.ClubSnapshot:
	return models.ClubSnapshot(
		club=models.Club(OTHER_CLUB_ID, "Roosevelt Middle", "B"),
		members=[models.Member("z1", OTHER_CLUB_ID, OTHER_SUBTEAM, display_name="Zed")],
		subteams=[models.Subteam(OTHER_SUBTEAM, OTHER_CLUB_ID, "Team Z")],
		events=[models.Event(ROAD_SCHOLAR, "B", "Road Scholar", max_competitors=2)],
	)


def make_state(snapshot: Optional[models.ClubSnapshot] = None, *, with_other_club: bool = True) -> RosterState:
	state = RosterState()
	state.load_snapshot(snapshot or build_snapshot())
	if with_other_club:
		state.load_snapshot(other_club_snapshot())
	return state


@pytest_asyncio.fixture(autouse=True)
async def fake_redis():
	from clubroster.infra.redis import redis_client, set_redis_client
	original = redis_client.client
	client = FakeRedis(decode_responses=True)
	set_redis_client(client)
	try:
		yield client
	finally:
		set_redis_client(original)
		await client.flushall()


@pytest.fixture(autouse=True)
def patch_postgres(monkeypatch):
	async def _noop():
		return None

	monkeypatch.setattr(postgres, "init_pool", _noop)
	monkeypatch.setattr(postgres, "close_pool", _noop)


@pytest.fixture(autouse=True)
def reset_log_context():
	yield
	clear_context()


@pytest.fixture
def roster_state() -> RosterState:
	return make_state()


@pytest.fixture
def roster_service(roster_state) -> RosterService:
	return RosterService(roster_state, locks=MemoryLockManager(default_timeout=1.0), move_policy="orphan")
