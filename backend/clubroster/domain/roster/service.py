"""Roster service layer: picker queries and structured mutation results."""

from __future__ import annotations

from typing import Iterable, List, Optional

from clubroster.domain.roster import models, schemas
from clubroster.domain.roster.coordinator import AssignmentCoordinator
from clubroster.domain.roster.eligibility import EligibilityEngine
from clubroster.domain.roster.exceptions import RosterError, RosterErrorCode
from clubroster.domain.roster.locks import MemoryLockManager
from clubroster.domain.roster.persistence import RosterPersistence
from clubroster.domain.roster.state import RosterState
from clubroster.obs import metrics as obs_metrics
from clubroster.obs.logging import bind_context, get_logger, reset_context
from clubroster.settings import Settings

log = get_logger(__name__)


class RosterService:
	def __init__(
		self,
		state: RosterState | None = None,
		*,
		persistence: RosterPersistence | None = None,
		locks: MemoryLockManager | None = None,
		move_policy: str | None = None,
		config: Settings | None = None,
	) -> None:
		self.state = state or RosterState()
		self.coordinator = AssignmentCoordinator(
			self.state,
			locks=locks,
			persistence=persistence,
			move_policy=move_policy,
			config=config,
		)
		self.persistence = self.coordinator.persistence

	@property
	def engine(self) -> EligibilityEngine:
		return self.coordinator.engine

	# loading

	async def load_club(self, club_id: str) -> models.ClubSnapshot:
		snapshot = await self.persistence.load_club(club_id)
		self.load_snapshot(snapshot)
		return snapshot

	def load_snapshot(self, snapshot: models.ClubSnapshot) -> None:
		self.state.load_snapshot(snapshot)

	def reload_conflicts(self, division: str, groups: Iterable[models.ConflictGroup]) -> List[schemas.ConflictBlock]:
		"""Swap a division's conflict groups; raises ConfigError and keeps no index if malformed."""
		self.state.directory.set_conflict_groups(division, groups)
		self.state.conflicts.rebuild(division)
		return self.conflict_blocks(division)

	# queries

	def eligible_events(self, member_id: str, subteam_id: str) -> List[schemas.EventOption]:
		events = self.engine.eligible_events_for_member(member_id, subteam_id)
		return [self._event_option(event, subteam_id) for event in sorted(events, key=lambda event: (event.name, event.id))]

	def eligible_members(self, event_id: str, subteam_id: str) -> List[schemas.MemberSummary]:
		members = self.engine.eligible_members_for_event(event_id, subteam_id)
		return [schemas.MemberSummary.from_model(member) for member in sorted(members, key=_member_sort_key)]

	def check_assignment(self, member_id: str, subteam_id: str, event_id: str) -> schemas.ValidationResult:
		"""Dry-run validation; the answer may be stale by the time a mutation runs."""
		try:
			self.engine.validate_assignment(member_id, subteam_id, event_id)
		except RosterError as exc:
			if not exc.recoverable:
				raise
			blocking = []
			if exc.code is RosterErrorCode.CONFLICT_EXCLUDED:
				blocking = self.blocking_assignments(member_id, event_id)
			return schemas.ValidationResult(allowed=False, error=schemas.ErrorDetail.from_error(exc), blocking=blocking)
		return schemas.ValidationResult(allowed=True)

	def blocking_assignments(self, member_id: str, event_id: str) -> List[schemas.AssignmentSummary]:
		return [
			schemas.AssignmentSummary.from_model(assignment)
			for assignment in self.engine.blocking_assignments(member_id, event_id)
		]

	def roster_board(self, subteam_id: str) -> List[schemas.EventRosterSlot]:
		"""Per-event occupancy for one subteam, in event-name order."""
		directory = self.state.directory
		subteam = directory.get_subteam(subteam_id)
		division = directory.get_club(subteam.club_id).division
		index = self.state.conflicts.get(division)
		board: List[schemas.EventRosterSlot] = []
		for event in sorted(directory.events_in_division(division), key=lambda event: (event.name, event.id)):
			rows = self.state.store.for_event(event.id, subteam_id)
			assigned = self.state.ledger.occupancy(subteam_id, event.id)
			group = index.group_of(event.id)
			board.append(
				schemas.EventRosterSlot(
					event_id=event.id,
					event_name=event.name,
					assigned=assigned,
					max_competitors=event.max_competitors,
					self_scheduled=event.self_scheduled,
					full=assigned >= event.max_competitors,
					group_name=group.name if group else None,
					members=sorted(
						(schemas.MemberSummary.from_model(directory.get_member(row.member_id)) for row in rows),
						key=_member_sort_key,
					),
				)
			)
		return board

	def orphaned_assignments(self, club_id: str) -> List[schemas.AssignmentSummary]:
		"""Assignments whose subteam differs from the member's current subteam."""
		self.state.directory.get_club(club_id)
		orphaned: List[schemas.AssignmentSummary] = []
		for member in self.state.directory.members_of_club(club_id):
			orphaned.extend(
				schemas.AssignmentSummary.from_model(assignment)
				for assignment in self.engine.stale_assignments(member.id)
			)
		return sorted(orphaned, key=lambda item: (item.member_id, item.event_id))

	def conflict_blocks(self, division: str) -> List[schemas.ConflictBlock]:
		directory = self.state.directory
		blocks: List[schemas.ConflictBlock] = []
		for group in directory.conflict_groups(division):
			event_ids = list(dict.fromkeys(group.event_ids))
			blocks.append(
				schemas.ConflictBlock(
					id=group.id,
					name=group.name,
					block_number=group.block_number,
					event_ids=event_ids,
					event_names=[directory.get_event(event_id).name for event_id in event_ids],
				)
			)
		return blocks

	def subteams(self, club_id: str) -> List[schemas.SubteamSummary]:
		self.state.directory.get_club(club_id)
		return [self._subteam_summary(subteam) for subteam in self.state.directory.subteams_of_club(club_id)]

	def audit(self) -> List[str]:
		problems = self.state.check_invariants()
		for problem in problems:
			obs_metrics.inc_invariant_violation("audit")
			log.error("roster audit failed", extra={"problem": problem})
		return problems

	# mutations

	async def assign(
		self,
		member_id: str,
		subteam_id: str,
		event_id: str,
		*,
		timeout: Optional[float] = None,
	) -> schemas.MutationResult:
		tokens = bind_context(club_id=self._club_of_member(member_id))
		try:
			assignment = await self.coordinator.assign_member_to_event(member_id, subteam_id, event_id, timeout=timeout)
		except RosterError as exc:
			return self._failed("assign", exc)
		finally:
			reset_context(tokens)
		return schemas.MutationResult(ok=True, assignment=schemas.AssignmentSummary.from_model(assignment))

	async def remove(self, member_id: str, event_id: str, *, timeout: Optional[float] = None) -> schemas.MutationResult:
		tokens = bind_context(club_id=self._club_of_member(member_id))
		try:
			assignment = await self.coordinator.remove_assignment(member_id, event_id, timeout=timeout)
		except RosterError as exc:
			return self._failed("remove", exc)
		finally:
			reset_context(tokens)
		return schemas.MutationResult(ok=True, assignment=schemas.AssignmentSummary.from_model(assignment))

	async def remove_by_id(self, assignment_id: str, *, timeout: Optional[float] = None) -> schemas.MutationResult:
		try:
			assignment = await self.coordinator.remove_assignment_by_id(assignment_id, timeout=timeout)
		except RosterError as exc:
			return self._failed("remove", exc)
		return schemas.MutationResult(ok=True, assignment=schemas.AssignmentSummary.from_model(assignment))

	async def move_member(
		self,
		member_id: str,
		subteam_id: Optional[str],
		*,
		timeout: Optional[float] = None,
	) -> schemas.MutationResult:
		tokens = bind_context(club_id=self._club_of_member(member_id))
		try:
			member, removed = await self.coordinator.move_member_to_subteam(member_id, subteam_id, timeout=timeout)
		except RosterError as exc:
			return self._failed("move", exc)
		finally:
			reset_context(tokens)
		return schemas.MutationResult(
			ok=True,
			member=schemas.MemberSummary.from_model(member),
			subteam=self._subteam_summary(self.state.directory.get_subteam(subteam_id)) if subteam_id else None,
			removed=[schemas.AssignmentSummary.from_model(assignment) for assignment in removed],
		)

	async def create_subteam(self, club_id: str, name: str) -> schemas.MutationResult:
		try:
			subteam = await self.coordinator.create_subteam(club_id, name)
		except RosterError as exc:
			return self._failed("create_subteam", exc)
		return schemas.MutationResult(ok=True, subteam=self._subteam_summary(subteam))

	async def rename_subteam(
		self,
		subteam_id: str,
		name: str,
		*,
		timeout: Optional[float] = None,
	) -> schemas.MutationResult:
		try:
			subteam = await self.coordinator.rename_subteam(subteam_id, name, timeout=timeout)
		except RosterError as exc:
			return self._failed("rename_subteam", exc)
		return schemas.MutationResult(ok=True, subteam=self._subteam_summary(subteam))

	async def delete_subteam(self, subteam_id: str, *, timeout: Optional[float] = None) -> schemas.MutationResult:
		try:
			subteam, _, removed = await self.coordinator.delete_subteam(subteam_id, timeout=timeout)
		except RosterError as exc:
			return self._failed("delete_subteam", exc)
		return schemas.MutationResult(
			ok=True,
			subteam=schemas.SubteamSummary(
				id=subteam.id,
				club_id=subteam.club_id,
				name=subteam.name,
				headcount=0,
				max_headcount=subteam.max_headcount,
			),
			removed=[schemas.AssignmentSummary.from_model(assignment) for assignment in removed],
		)

	# helpers

	def _failed(self, action: str, exc: RosterError) -> schemas.MutationResult:
		if not exc.recoverable:
			log.error(
				"roster mutation failed",
				extra={"action": action, "code": exc.code.value, "reason": exc.detail, "error_context": exc.context},
			)
			raise exc
		return schemas.MutationResult.failed(exc)

	def _club_of_member(self, member_id: str) -> Optional[str]:
		member = self.state.directory.members.get(member_id)
		return member.club_id if member else None

	def _event_option(self, event: models.Event, subteam_id: str) -> schemas.EventOption:
		return schemas.EventOption(
			id=event.id,
			name=event.name,
			division=event.division,
			max_competitors=event.max_competitors,
			self_scheduled=event.self_scheduled,
			occupancy=self.state.ledger.occupancy(subteam_id, event.id),
		)

	def _subteam_summary(self, subteam: models.Subteam) -> schemas.SubteamSummary:
		return schemas.SubteamSummary(
			id=subteam.id,
			club_id=subteam.club_id,
			name=subteam.name,
			headcount=self.state.ledger.headcount(subteam.id),
			max_headcount=subteam.max_headcount,
		)


def _member_sort_key(member: models.Member | schemas.MemberSummary) -> tuple[str, str]:
	return ((member.display_name or "").lower(), member.id)
