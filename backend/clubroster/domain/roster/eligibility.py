"""Eligibility queries and pre-mutation validation for roster assignments.

Every answer is computed from the live directory, store and ledger on each
call. Nothing is cached between calls: roster state changes often and a stale
answer could admit a conflicting assignment.
"""

from __future__ import annotations

from typing import FrozenSet, List, Optional

from clubroster.domain.roster import models
from clubroster.domain.roster.conflicts import ConflictRegistry
from clubroster.domain.roster.directory import RosterDirectory
from clubroster.domain.roster.exceptions import (
	AlreadyAssigned,
	CapacityExceeded,
	ConflictExcluded,
	CrossSubteamMismatch,
	DivisionMismatch,
	HeadcountExceeded,
)
from clubroster.domain.roster.ledger import CapacityLedger
from clubroster.domain.roster.store import AssignmentStore


class EligibilityEngine:
	def __init__(
		self,
		directory: RosterDirectory,
		store: AssignmentStore,
		ledger: CapacityLedger,
		conflicts: ConflictRegistry,
	) -> None:
		self._directory = directory
		self._store = store
		self._ledger = ledger
		self._conflicts = conflicts

	def eligible_events_for_member(self, member_id: str, subteam_id: str) -> FrozenSet[models.Event]:
		"""Events the member could still join with `subteam_id`'s capacity. Unordered."""
		member = self._directory.get_member(member_id)
		self._directory.get_subteam(subteam_id)
		division = self._directory.get_club(member.club_id).division
		index = self._conflicts.get(division)

		held = self._store.for_member(member_id)
		held_ids = {assignment.event_id for assignment in held}
		blocked: set[str] = set()
		for assignment in held:
			blocked |= index.conflicts_of(assignment.event_id)

		return frozenset(
			event
			for event in self._directory.events_in_division(division)
			if event.id not in held_ids
			and event.id not in blocked
			and self._ledger.has_room(subteam_id, event)
		)

	def eligible_members_for_event(self, event_id: str, subteam_id: str) -> FrozenSet[models.Member]:
		"""Subteam members who could join the event. Unordered."""
		event = self._directory.get_event(event_id)
		subteam = self._directory.get_subteam(subteam_id)
		if self._directory.get_club(subteam.club_id).division != event.division:
			return frozenset()
		partners = self._conflicts.get(event.division).conflicts_of(event_id)
		return frozenset(
			member
			for member in self._directory.members_of_subteam(subteam_id)
			if not self._store.holds(member.id, event_id)
			and not any(self._store.holds(member.id, partner) for partner in partners)
		)

	def blocking_assignments(self, member_id: str, event_id: str) -> List[models.RosterAssignment]:
		"""The member's current assignments that exclude `event_id`."""
		event = self._directory.get_event(event_id)
		partners = self._conflicts.get(event.division).conflicts_of(event_id)
		if not partners:
			return []
		return [assignment for assignment in self._store.for_member(member_id) if assignment.event_id in partners]

	def stale_assignments(self, member_id: str) -> List[models.RosterAssignment]:
		"""Assignments made under a subteam the member no longer belongs to."""
		member = self._directory.get_member(member_id)
		return [
			assignment
			for assignment in self._store.for_member(member_id)
			if assignment.subteam_id != member.subteam_id
		]

	def validate_assignment(self, member_id: str, subteam_id: str, event_id: str) -> models.Event:
		member = self._directory.get_member(member_id)
		subteam = self._directory.get_subteam(subteam_id)
		event = self._directory.get_event(event_id)

		if member.subteam_id != subteam.id:
			raise CrossSubteamMismatch(
				member_id=member_id,
				subteam_id=subteam_id,
				member_subteam_id=member.subteam_id,
			)
		division = self._directory.get_club(member.club_id).division
		if event.division != division:
			raise DivisionMismatch(
				event_id=event_id,
				event_name=event.name,
				event_division=event.division,
				club_division=division,
			)
		existing = self._store.get(member_id, event_id)
		if existing is not None:
			raise AlreadyAssigned(
				member_id=member_id,
				event_id=event_id,
				event_name=event.name,
				assigned_subteam_id=existing.subteam_id,
			)
		if not self._ledger.has_room(subteam_id, event):
			raise CapacityExceeded(
				subteam_id=subteam_id,
				event_id=event_id,
				event_name=event.name,
				current=self._ledger.occupancy(subteam_id, event_id),
				max_competitors=event.max_competitors,
			)
		blocking = self.blocking_assignments(member_id, event_id)
		if blocking:
			group = self._conflicts.get(division).group_of(event_id)
			raise ConflictExcluded(
				member_id=member_id,
				event_id=event_id,
				event_name=event.name,
				group_name=group.name if group else None,
				conflicting_event_ids=sorted(assignment.event_id for assignment in blocking),
				conflicting_event_names=sorted(
					self._directory.get_event(assignment.event_id).name for assignment in blocking
				),
			)
		return event

	def validate_move(self, member_id: str, new_subteam_id: Optional[str]) -> Optional[models.Subteam]:
		member = self._directory.get_member(member_id)
		if new_subteam_id is None:
			return None
		subteam = self._directory.get_subteam(new_subteam_id)
		if subteam.club_id != member.club_id:
			raise CrossSubteamMismatch(
				"subteam_not_in_club",
				member_id=member_id,
				subteam_id=new_subteam_id,
				club_id=member.club_id,
			)
		if member.subteam_id == subteam.id:
			return subteam
		if not self._ledger.has_headroom(subteam):
			raise HeadcountExceeded(
				subteam_id=subteam.id,
				subteam_name=subteam.name,
				current=self._ledger.headcount(subteam.id),
				max_headcount=subteam.max_headcount,
			)
		return subteam
