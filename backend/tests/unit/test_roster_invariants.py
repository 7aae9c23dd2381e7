import asyncio
import random
from dataclasses import replace

import pytest

from clubroster.domain.roster.coordinator import AssignmentCoordinator
from clubroster.domain.roster.exceptions import AssignmentError, NotFoundError
from clubroster.domain.roster.locks import MemoryLockManager
from clubroster.domain.roster.persistence import RosterPersistence
from conftest import (
    ANATOMY,
    CLUB_ID,
    CODEBUSTERS,
    ORNITHOLOGY,
    PHYSIOLOGY,
    SCRAMBLER,
    SUBTEAM_A,
    SUBTEAM_B,
    TOWERS,
    build_snapshot,
    make_state,
)

EVENTS = [ANATOMY, PHYSIOLOGY, CODEBUSTERS, ORNITHOLOGY, SCRAMBLER, TOWERS]
SUBTEAMS = [SUBTEAM_A, SUBTEAM_B, None]


class YieldingPersistence(RosterPersistence):
    """Suspends inside every write so other coroutines run mid critical section."""

    async def insert_assignment(self, assignment):
        await asyncio.sleep(0)

    async def delete_assignments(self, assignments):
        await asyncio.sleep(0)

    async def move_member(self, member_id, subteam_id, removed=()):
        await asyncio.sleep(0)

    async def save_subteam(self, subteam):
        await asyncio.sleep(0)

    async def delete_subteam(self, subteam_id, member_ids, removed):
        await asyncio.sleep(0)


async def _random_operation(coordinator: AssignmentCoordinator, rng: random.Random, members: list[str]) -> None:
    # yield first so gathered operations interleave at lock boundaries
    await asyncio.sleep(0)
    directory = coordinator.state.directory
    member_id = rng.choice(members)
    roll = rng.random()
    try:
        if roll < 0.55:
            subteam_id = directory.get_member(member_id).subteam_id or SUBTEAM_A
            await coordinator.assign_member_to_event(member_id, subteam_id, rng.choice(EVENTS))
        elif roll < 0.8:
            await coordinator.remove_assignment(member_id, rng.choice(EVENTS))
        elif roll < 0.93:
            await coordinator.move_member_to_subteam(member_id, rng.choice(SUBTEAMS))
        elif roll < 0.97:
            subteam_id = rng.choice([SUBTEAM_A, SUBTEAM_B])
            name = directory.get_subteam(subteam_id).name
            await coordinator.delete_subteam(subteam_id)
            await coordinator.create_subteam(CLUB_ID, name, subteam_id=subteam_id)
        else:
            subteam_id = rng.choice([SUBTEAM_A, SUBTEAM_B])
            await coordinator.rename_subteam(subteam_id, f"Team {rng.randint(1, 99)}")
    except (AssignmentError, NotFoundError):
        pass


@pytest.mark.asyncio
@pytest.mark.parametrize("policy", ["orphan", "cascade", "forbid"])
@pytest.mark.parametrize("seed", [3, 17, 2024])
async def test_invariants_hold_under_concurrent_interleavings(policy, seed):
    rng = random.Random(seed)
    state = make_state(build_snapshot(members_a=6, members_b=5, unassigned=3))
    state.directory.subteams[SUBTEAM_A] = replace(state.directory.get_subteam(SUBTEAM_A), max_headcount=8)
    coordinator = AssignmentCoordinator(
        state,
        locks=MemoryLockManager(default_timeout=5.0),
        persistence=YieldingPersistence(),
        move_policy=policy,
    )
    members = [member.id for member in state.directory.members_of_club(CLUB_ID)]

    for _ in range(6):
        await asyncio.gather(*(_random_operation(coordinator, rng, members) for _ in range(40)))
        assert state.check_invariants() == []

    for (subteam_id, event_id), count in _slot_counts(state).items():
        assert count <= state.directory.get_event(event_id).max_competitors
    for subteam in state.directory.subteams.values():
        assert state.ledger.headcount(subteam.id) <= subteam.max_headcount
    assert all(row.subteam_id in state.directory.subteams for row in state.store)
    if policy != "orphan":
        for member_id in members:
            member = state.directory.get_member(member_id)
            assert all(row.subteam_id == member.subteam_id for row in state.store.for_member(member_id))


def _slot_counts(state):
    counts = {}
    for row in state.store:
        counts[(row.subteam_id, row.event_id)] = counts.get((row.subteam_id, row.event_id), 0) + 1
    return counts
