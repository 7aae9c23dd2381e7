"""Write-through persistence for roster state.

The coordinator calls these hooks inside its critical section, before it
touches the in-memory store and ledger, so a failed write leaves memory
untouched. Ledger counters are never persisted; they are derived from the
loaded rows.
"""

from __future__ import annotations

from typing import Awaitable, Callable, Iterable, Optional, Sequence

import asyncpg

from clubroster.domain.roster import models
from clubroster.domain.roster.exceptions import DuplicateAssignment, NotFoundError
from clubroster.infra.postgres import get_pool
from clubroster.obs.logging import get_logger
from clubroster.settings import settings

log = get_logger(__name__)

PoolGetter = Callable[[], Awaitable[asyncpg.Pool]]

ROSTER_SCHEMA = """
CREATE TABLE IF NOT EXISTS roster_assignments (
	id TEXT PRIMARY KEY,
	member_id TEXT NOT NULL,
	subteam_id TEXT NOT NULL,
	event_id TEXT NOT NULL,
	created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
	CONSTRAINT roster_assignments_member_event_key UNIQUE (member_id, event_id)
);
CREATE INDEX IF NOT EXISTS roster_assignments_slot_idx ON roster_assignments (subteam_id, event_id);
"""


class RosterPersistence:
	"""Persistence that does nothing; in-memory state is authoritative."""

	async def insert_assignment(self, assignment: models.RosterAssignment) -> None:
		return None

	async def delete_assignments(self, assignments: Sequence[models.RosterAssignment]) -> None:
		return None

	async def move_member(
		self,
		member_id: str,
		subteam_id: Optional[str],
		removed: Sequence[models.RosterAssignment] = (),
	) -> None:
		return None

	async def save_subteam(self, subteam: models.Subteam) -> None:
		return None

	async def delete_subteam(
		self,
		subteam_id: str,
		member_ids: Iterable[str],
		removed: Sequence[models.RosterAssignment],
	) -> None:
		return None

	async def load_club(self, club_id: str) -> models.ClubSnapshot:
		raise NotFoundError("club_not_found", club_id=club_id)


class PostgresRosterPersistence(RosterPersistence):
	"""asyncpg-backed persistence; owns `roster_assignments`, reads the rest."""

	def __init__(self, pool_getter: PoolGetter | None = None) -> None:
		self._get_pool = pool_getter or get_pool

	async def ensure_schema(self) -> None:
		pool = await self._get_pool()
		async with pool.acquire() as conn:
			await conn.execute(ROSTER_SCHEMA)

	async def insert_assignment(self, assignment: models.RosterAssignment) -> None:
		pool = await self._get_pool()
		async with pool.acquire() as conn:
			try:
				await conn.execute(
					"""
					INSERT INTO roster_assignments (id, member_id, subteam_id, event_id, created_at)
					VALUES ($1, $2, $3, $4, $5)
					""",
					assignment.id,
					assignment.member_id,
					assignment.subteam_id,
					assignment.event_id,
					assignment.created_at,
				)
			except asyncpg.UniqueViolationError as exc:
				raise DuplicateAssignment(member_id=assignment.member_id, event_id=assignment.event_id) from exc

	async def delete_assignments(self, assignments: Sequence[models.RosterAssignment]) -> None:
		if not assignments:
			return
		pool = await self._get_pool()
		async with pool.acquire() as conn:
			async with conn.transaction():
				await self._delete_rows(conn, assignments)

	async def move_member(
		self,
		member_id: str,
		subteam_id: Optional[str],
		removed: Sequence[models.RosterAssignment] = (),
	) -> None:
		pool = await self._get_pool()
		async with pool.acquire() as conn:
			async with conn.transaction():
				row = await conn.fetchrow(
					"UPDATE club_members SET subteam_id = $2 WHERE id = $1 RETURNING id",
					member_id,
					subteam_id,
				)
				if row is None:
					raise NotFoundError("member_not_found", member_id=member_id)
				await self._delete_rows(conn, removed)

	async def save_subteam(self, subteam: models.Subteam) -> None:
		pool = await self._get_pool()
		async with pool.acquire() as conn:
			await conn.execute(
				"""
				INSERT INTO subteams (id, club_id, name)
				VALUES ($1, $2, $3)
				ON CONFLICT (id) DO UPDATE SET name = EXCLUDED.name
				""",
				subteam.id,
				subteam.club_id,
				subteam.name,
			)

	async def delete_subteam(
		self,
		subteam_id: str,
		member_ids: Iterable[str],
		removed: Sequence[models.RosterAssignment],
	) -> None:
		pool = await self._get_pool()
		async with pool.acquire() as conn:
			async with conn.transaction():
				await self._delete_rows(conn, removed)
				await conn.execute(
					"UPDATE club_members SET subteam_id = NULL WHERE id = ANY($1::text[])",
					list(member_ids),
				)
				await conn.execute("DELETE FROM subteams WHERE id = $1", subteam_id)

	async def load_club(self, club_id: str) -> models.ClubSnapshot:
		pool = await self._get_pool()
		async with pool.acquire() as conn:
			club_row = await conn.fetchrow("SELECT id, name, division FROM clubs WHERE id = $1", club_id)
			if club_row is None:
				raise NotFoundError("club_not_found", club_id=club_id)
			division = club_row["division"]
			subteam_rows = await conn.fetch(
				"SELECT id, club_id, name FROM subteams WHERE club_id = $1 ORDER BY created_at",
				club_id,
			)
			member_rows = await conn.fetch(
				"SELECT id, club_id, subteam_id, display_name FROM club_members WHERE club_id = $1",
				club_id,
			)
			event_rows = await conn.fetch(
				"""
				SELECT id, division, name, max_competitors, self_scheduled
				FROM events
				WHERE division = $1
				ORDER BY name ASC
				""",
				division,
			)
			group_rows = await conn.fetch(
				"""
				SELECT g.id, g.division, g.name, g.block_number,
				       COALESCE(array_agg(ge.event_id) FILTER (WHERE ge.event_id IS NOT NULL), '{}') AS event_ids
				FROM conflict_groups g
				LEFT JOIN conflict_group_events ge ON ge.group_id = g.id
				WHERE g.division = $1
				GROUP BY g.id
				ORDER BY g.block_number ASC
				""",
				division,
			)
			assignment_rows = await conn.fetch(
				"""
				SELECT ra.id, ra.member_id, ra.subteam_id, ra.event_id, ra.created_at
				FROM roster_assignments ra
				JOIN club_members cm ON cm.id = ra.member_id
				WHERE cm.club_id = $1
				""",
				club_id,
			)
		snapshot = models.ClubSnapshot(
			club=models.Club(id=str(club_row["id"]), name=club_row["name"], division=division),
			members=[_row_to_member(row) for row in member_rows],
			subteams=[_row_to_subteam(row) for row in subteam_rows],
			events=[_row_to_event(row) for row in event_rows],
			conflict_groups=[_row_to_group(row) for row in group_rows],
			assignments=[_row_to_assignment(row) for row in assignment_rows],
		)
		log.info(
			"roster snapshot loaded",
			extra={
				"club_id": club_id,
				"division": division,
				"members": len(snapshot.members),
				"assignments": len(snapshot.assignments),
			},
		)
		return snapshot

	@staticmethod
	async def _delete_rows(conn: asyncpg.Connection, assignments: Sequence[models.RosterAssignment]) -> None:
		if not assignments:
			return
		await conn.execute(
			"DELETE FROM roster_assignments WHERE id = ANY($1::text[])",
			[assignment.id for assignment in assignments],
		)


def _row_to_member(row: asyncpg.Record) -> models.Member:
	subteam_id = row["subteam_id"]
	return models.Member(
		id=str(row["id"]),
		club_id=str(row["club_id"]),
		subteam_id=str(subteam_id) if subteam_id is not None else None,
		display_name=row["display_name"],
	)


def _row_to_subteam(row: asyncpg.Record) -> models.Subteam:
	return models.Subteam(
		id=str(row["id"]),
		club_id=str(row["club_id"]),
		name=row["name"],
		max_headcount=settings.roster_subteam_max_headcount,
	)


def _row_to_event(row: asyncpg.Record) -> models.Event:
	return models.Event(
		id=str(row["id"]),
		division=row["division"],
		name=row["name"],
		max_competitors=int(row["max_competitors"]),
		self_scheduled=bool(row["self_scheduled"]),
	)


def _row_to_group(row: asyncpg.Record) -> models.ConflictGroup:
	return models.ConflictGroup(
		id=str(row["id"]),
		division=row["division"],
		name=row["name"],
		block_number=int(row["block_number"] or 0),
		event_ids=tuple(str(event_id) for event_id in row["event_ids"]),
	)


def _row_to_assignment(row: asyncpg.Record) -> models.RosterAssignment:
	return models.RosterAssignment(
		id=str(row["id"]),
		member_id=str(row["member_id"]),
		subteam_id=str(row["subteam_id"]),
		event_id=str(row["event_id"]),
		created_at=row["created_at"],
	)
