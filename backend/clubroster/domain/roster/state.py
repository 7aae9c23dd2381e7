"""Bundle of the mutable roster structures plus invariant auditing."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from typing import List

from clubroster.domain.roster import models
from clubroster.domain.roster.conflicts import ConflictRegistry
from clubroster.domain.roster.directory import RosterDirectory
from clubroster.domain.roster.ledger import CapacityLedger
from clubroster.domain.roster.store import AssignmentStore


@dataclass
class RosterState:
	directory: RosterDirectory = field(default_factory=RosterDirectory)
	store: AssignmentStore = field(default_factory=AssignmentStore)
	ledger: CapacityLedger = field(default_factory=CapacityLedger)
	conflicts: ConflictRegistry = field(init=False)

	def __post_init__(self) -> None:
		self.conflicts = ConflictRegistry(self.directory)

	def load_snapshot(self, snapshot: models.ClubSnapshot) -> None:
		"""Merge one club's reference data and assignments, then derive counters.

		Raises ConfigError if the division's conflict groups are malformed.
		"""
		directory = self.directory
		directory.add_club(snapshot.club)
		for event in snapshot.events:
			directory.add_event(event)
		for subteam in snapshot.subteams:
			directory.add_subteam(subteam)
		for member in snapshot.members:
			directory.add_member(member)
		directory.set_conflict_groups(snapshot.club.division, snapshot.conflict_groups)
		member_ids = {member.id for member in snapshot.members}
		for assignment in list(self.store):
			if assignment.member_id in member_ids:
				self.store.delete(assignment.member_id, assignment.event_id)
		for assignment in snapshot.assignments:
			self.store.insert(assignment)
		self.rebuild_ledger()
		self.conflicts.rebuild(snapshot.club.division)

	def rebuild_ledger(self) -> None:
		self.ledger.rebuild(self.store, self.directory.members.values())

	def check_invariants(self) -> List[str]:
		"""Return human-readable violations of the four roster invariants (empty when sound)."""
		problems: List[str] = []
		directory = self.directory

		slot_counts: Counter[tuple[str, str]] = Counter()
		per_member: dict[str, list[models.RosterAssignment]] = {}
		seen: set[tuple[str, str]] = set()
		for assignment in self.store:
			if assignment.key in seen:
				problems.append(f"duplicate assignment {assignment.member_id}/{assignment.event_id}")
			seen.add(assignment.key)
			slot_counts[(assignment.subteam_id, assignment.event_id)] += 1
			per_member.setdefault(assignment.member_id, []).append(assignment)

		for (subteam_id, event_id), count in slot_counts.items():
			event = directory.events.get(event_id)
			if event is not None and count > event.max_competitors:
				problems.append(f"slot {subteam_id}/{event_id} holds {count} > {event.max_competitors}")
			if self.ledger.occupancy(subteam_id, event_id) != count:
				problems.append(
					f"ledger slot {subteam_id}/{event_id} = {self.ledger.occupancy(subteam_id, event_id)}, store = {count}"
				)

		for subteam in directory.subteams.values():
			members = len(directory.members_of_subteam(subteam.id))
			if members > subteam.max_headcount:
				problems.append(f"subteam {subteam.id} holds {members} > {subteam.max_headcount}")
			if self.ledger.headcount(subteam.id) != members:
				problems.append(f"ledger headcount {subteam.id} = {self.ledger.headcount(subteam.id)}, directory = {members}")

		for member_id, assignments in per_member.items():
			member = directory.members.get(member_id)
			if member is None:
				continue
			index = self.conflicts.get(directory.get_club(member.club_id).division)
			for i, first in enumerate(assignments):
				for second in assignments[i + 1 :]:
					if index.has_conflict(first.event_id, second.event_id):
						problems.append(f"member {member_id} holds conflicting {first.event_id} and {second.event_id}")
		return problems
