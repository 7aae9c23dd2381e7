"""Serialized validate-then-mutate for roster assignments and subteam moves.

Every mutation follows the same shape: take the keyed locks, re-validate
against live state, write through to persistence, then update the store,
ledger and directory with no await in between. A rejected mutation therefore
changes nothing, and other coroutines never observe the store and ledger out
of step.
"""

from __future__ import annotations

from collections import Counter
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable, List, Optional, Set

import ulid

from clubroster.domain.roster import models
from clubroster.domain.roster.eligibility import EligibilityEngine
from clubroster.domain.roster.exceptions import InvariantViolation, MoveBlocked, NotFoundError, RosterError
from clubroster.domain.roster.locks import MemoryLockManager, build_lock_manager, headcount_key, member_key, slot_key
from clubroster.domain.roster.persistence import RosterPersistence
from clubroster.domain.roster.state import RosterState
from clubroster.obs import metrics as obs_metrics
from clubroster.obs.logging import get_logger
from clubroster.settings import MOVE_POLICIES, Settings, settings as default_settings

log = get_logger(__name__)


class AssignmentCoordinator:
	def __init__(
		self,
		state: RosterState,
		*,
		locks: MemoryLockManager | None = None,
		persistence: RosterPersistence | None = None,
		move_policy: str | None = None,
		config: Settings | None = None,
	) -> None:
		self.config = config or default_settings
		self.state = state
		self.engine = EligibilityEngine(state.directory, state.store, state.ledger, state.conflicts)
		self.locks = locks or build_lock_manager(self.config)
		self.persistence = persistence or RosterPersistence()
		self.move_policy = (move_policy or self.config.roster_move_policy).lower()
		if self.move_policy not in MOVE_POLICIES:
			raise ValueError(f"unknown move policy: {self.move_policy}")

	async def assign_member_to_event(
		self,
		member_id: str,
		subteam_id: str,
		event_id: str,
		*,
		timeout: Optional[float] = None,
	) -> models.RosterAssignment:
		state = self.state
		try:
			async with self.locks.hold([member_key(member_id), slot_key(subteam_id, event_id)], timeout=timeout):
				event = self.engine.validate_assignment(member_id, subteam_id, event_id)
				assignment = models.RosterAssignment(
					id=str(ulid.new()),
					member_id=member_id,
					subteam_id=subteam_id,
					event_id=event_id,
				)
				await self.persistence.insert_assignment(assignment)
				try:
					state.ledger.reserve(subteam_id, event)
					try:
						state.store.insert(assignment)
					except RosterError:
						state.ledger.release(subteam_id, event_id)
						raise
				except RosterError:
					await self.persistence.delete_assignments([assignment])
					raise
		except RosterError as exc:
			obs_metrics.inc_assign_attempt(exc.code.value)
			log.info(
				"roster assignment rejected",
				extra={"member_id": member_id, "subteam_id": subteam_id, "event_id": event_id, "reason": exc.code.value},
			)
			raise
		obs_metrics.inc_assign_attempt("ok")
		log.info("roster assignment created", extra=assignment.to_dict())
		return assignment

	async def remove_assignment(
		self,
		member_id: str,
		event_id: str,
		*,
		timeout: Optional[float] = None,
	) -> models.RosterAssignment:
		state = self.state
		keys = [member_key(member_id)]
		current = state.store.get(member_id, event_id)
		if current is not None:
			keys.append(slot_key(current.subteam_id, event_id))
		try:
			async with self.locks.hold(keys, timeout=timeout):
				# Releasing a slot only frees capacity, so a slot key that went
				# stale while we waited cannot break the capacity invariant.
				assignment = state.store.get(member_id, event_id)
				if assignment is None:
					raise NotFoundError("assignment_not_found", member_id=member_id, event_id=event_id)
				await self.persistence.delete_assignments([assignment])
				self._drop(assignment)
		except RosterError as exc:
			obs_metrics.inc_removal(exc.code.value)
			raise
		obs_metrics.inc_removal("ok")
		log.info("roster assignment removed", extra=assignment.to_dict())
		return assignment

	async def remove_assignment_by_id(
		self,
		assignment_id: str,
		*,
		timeout: Optional[float] = None,
	) -> models.RosterAssignment:
		assignment = self.state.store.get_by_id(assignment_id)
		if assignment is None:
			obs_metrics.inc_removal(NotFoundError.code.value)
			raise NotFoundError("assignment_not_found", assignment_id=assignment_id)
		return await self.remove_assignment(assignment.member_id, assignment.event_id, timeout=timeout)

	async def move_member_to_subteam(
		self,
		member_id: str,
		new_subteam_id: Optional[str],
		*,
		timeout: Optional[float] = None,
	) -> tuple[models.Member, List[models.RosterAssignment]]:
		"""Move a member; returns the updated member and any assignments removed by cascade."""
		state = self.state
		removed: List[models.RosterAssignment] = []

		def keys() -> Set[str]:
			held = {member_key(member_id)}
			current = state.directory.get_member(member_id).subteam_id
			if current:
				held.add(headcount_key(current))
			if new_subteam_id:
				held.add(headcount_key(new_subteam_id))
			return held

		try:
			async with self._hold_stable(keys, timeout):
				member = state.directory.get_member(member_id)
				target = self.engine.validate_move(member_id, new_subteam_id)
				if member.subteam_id == new_subteam_id:
					obs_metrics.inc_move("noop")
					return member, removed
				stale = [
					assignment
					for assignment in state.store.for_member(member_id)
					if assignment.subteam_id != new_subteam_id
				]
				if stale and self.move_policy == "forbid":
					raise MoveBlocked(
						member_id=member_id,
						subteam_id=new_subteam_id,
						stale_assignment_ids=sorted(assignment.id for assignment in stale),
						stale_event_ids=sorted(assignment.event_id for assignment in stale),
					)
				if self.move_policy == "cascade":
					removed = stale
				await self.persistence.move_member(member_id, new_subteam_id, removed)
				if target is not None:
					state.ledger.reserve_headcount(target)
				if member.subteam_id:
					state.ledger.release_headcount(member.subteam_id)
				updated = state.directory.set_member_subteam(member_id, new_subteam_id)
				for assignment in removed:
					self._drop(assignment)
		except RosterError as exc:
			obs_metrics.inc_move(exc.code.value)
			raise
		obs_metrics.inc_move("ok")
		obs_metrics.inc_cascade_removals(len(removed))
		orphaned = 0 if self.move_policy == "cascade" else len(stale)
		log.info(
			"member subteam changed",
			extra={
				"member_id": member_id,
				"from_subteam_id": member.subteam_id,
				"to_subteam_id": new_subteam_id,
				"removed_assignments": len(removed),
				"orphaned_assignments": orphaned,
			},
		)
		if orphaned:
			log.warning(
				"member keeps assignments from a previous subteam",
				extra={"member_id": member_id, "event_ids": sorted(a.event_id for a in stale)},
			)
		return updated, removed

	async def create_subteam(self, club_id: str, name: str, *, subteam_id: Optional[str] = None) -> models.Subteam:
		self.state.directory.get_club(club_id)
		subteam = models.Subteam(
			id=subteam_id or str(ulid.new()),
			club_id=club_id,
			name=name,
			max_headcount=self.config.roster_subteam_max_headcount,
		)
		await self.persistence.save_subteam(subteam)
		self.state.directory.add_subteam(subteam)
		log.info("subteam created", extra={"subteam_id": subteam.id, "club_id": club_id})
		return subteam

	async def rename_subteam(self, subteam_id: str, name: str, *, timeout: Optional[float] = None) -> models.Subteam:
		async with self.locks.hold([headcount_key(subteam_id)], timeout=timeout):
			current = self.state.directory.get_subteam(subteam_id)
			await self.persistence.save_subteam(models.Subteam(current.id, current.club_id, name, current.max_headcount))
			return self.state.directory.rename_subteam(subteam_id, name)

	async def delete_subteam(
		self,
		subteam_id: str,
		*,
		timeout: Optional[float] = None,
	) -> tuple[models.Subteam, List[models.Member], List[models.RosterAssignment]]:
		"""Delete a subteam: members become unassigned and its assignments are removed."""
		state = self.state
		state.directory.get_subteam(subteam_id)

		def keys() -> Set[str]:
			held = {headcount_key(subteam_id)}
			held.update(member_key(member.id) for member in state.directory.members_of_subteam(subteam_id))
			for assignment in state.store.for_subteam(subteam_id):
				held.add(member_key(assignment.member_id))
				held.add(slot_key(subteam_id, assignment.event_id))
			return held

		async with self._hold_stable(keys, timeout):
			subteam = state.directory.get_subteam(subteam_id)
			members = state.directory.members_of_subteam(subteam_id)
			assignments = state.store.for_subteam(subteam_id)
			expected = Counter(assignment.event_id for assignment in assignments)
			if state.ledger.headcount(subteam_id) != len(members) or state.ledger.slots_of(subteam_id) != expected:
				obs_metrics.inc_invariant_violation("drop_drifted_subteam")
				raise InvariantViolation("subteam_counters_drifted", subteam_id=subteam_id)
			await self.persistence.delete_subteam(subteam_id, [member.id for member in members], assignments)
			for assignment in assignments:
				self._drop(assignment)
			released: List[models.Member] = []
			for member in members:
				state.ledger.release_headcount(subteam_id)
				released.append(state.directory.set_member_subteam(member.id, None))
			state.ledger.drop_subteam(subteam_id)
			state.directory.remove_subteam(subteam_id)
		obs_metrics.inc_cascade_removals(len(assignments))
		log.info(
			"subteam deleted",
			extra={"subteam_id": subteam_id, "unassigned_members": len(released), "removed_assignments": len(assignments)},
		)
		return subteam, released, assignments

	@asynccontextmanager
	async def _hold_stable(self, collect: Callable[[], Set[str]], timeout: Optional[float]) -> AsyncIterator[None]:
		"""Hold every key `collect` names, widening the set until a re-read under the locks adds nothing.

		Lock keys are derived from state read before acquisition, which may change
		while we wait. Callers re-read inside the block and only see state whose
		keys they hold.
		"""
		held = collect()
		while True:
			async with self.locks.hold(held, timeout=timeout):
				live = collect()
				if live <= held:
					yield
					return
			held = held | live

	def _drop(self, assignment: models.RosterAssignment) -> None:
		self.state.ledger.release(assignment.subteam_id, assignment.event_id)
		self.state.store.delete(assignment.member_id, assignment.event_id)
