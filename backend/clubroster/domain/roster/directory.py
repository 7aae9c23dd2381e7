"""In-memory reference data: clubs, members, subteams, events, conflict groups."""

from __future__ import annotations

from dataclasses import replace
from typing import Dict, Iterable, List, Optional, Set

from clubroster.domain.roster import models
from clubroster.domain.roster.exceptions import NotFoundError


class RosterDirectory:
	"""Reference data consulted by the eligibility engine.

	Member subteam affiliation is mutated only through `set_member_subteam`,
	which the coordinator calls inside its critical section.
	"""

	def __init__(self) -> None:
		self.clubs: Dict[str, models.Club] = {}
		self.members: Dict[str, models.Member] = {}
		self.subteams: Dict[str, models.Subteam] = {}
		self.events: Dict[str, models.Event] = {}
		self._groups: Dict[str, List[models.ConflictGroup]] = {}
		self._subteam_members: Dict[str, Set[str]] = {}

	# clubs

	def add_club(self, club: models.Club) -> models.Club:
		self.clubs[club.id] = club
		return club

	def get_club(self, club_id: str) -> models.Club:
		club = self.clubs.get(club_id)
		if club is None:
			raise NotFoundError("club_not_found", club_id=club_id)
		return club

	# members

	def add_member(self, member: models.Member) -> models.Member:
		self.get_club(member.club_id)
		previous = self.members.get(member.id)
		if previous is not None and previous.subteam_id:
			self._subteam_members.get(previous.subteam_id, set()).discard(member.id)
		self.members[member.id] = member
		if member.subteam_id:
			self._subteam_members.setdefault(member.subteam_id, set()).add(member.id)
		return member

	def get_member(self, member_id: str) -> models.Member:
		member = self.members.get(member_id)
		if member is None:
			raise NotFoundError("member_not_found", member_id=member_id)
		return member

	def set_member_subteam(self, member_id: str, subteam_id: Optional[str]) -> models.Member:
		member = self.get_member(member_id)
		if member.subteam_id:
			self._subteam_members.get(member.subteam_id, set()).discard(member_id)
		updated = replace(member, subteam_id=subteam_id)
		self.members[member_id] = updated
		if subteam_id:
			self._subteam_members.setdefault(subteam_id, set()).add(member_id)
		return updated

	def members_of_club(self, club_id: str) -> List[models.Member]:
		return [member for member in self.members.values() if member.club_id == club_id]

	def members_of_subteam(self, subteam_id: str) -> List[models.Member]:
		return [self.members[member_id] for member_id in self._subteam_members.get(subteam_id, ())]

	# subteams

	def add_subteam(self, subteam: models.Subteam) -> models.Subteam:
		self.get_club(subteam.club_id)
		self.subteams[subteam.id] = subteam
		self._subteam_members.setdefault(subteam.id, set())
		return subteam

	def get_subteam(self, subteam_id: str) -> models.Subteam:
		subteam = self.subteams.get(subteam_id)
		if subteam is None:
			raise NotFoundError("subteam_not_found", subteam_id=subteam_id)
		return subteam

	def rename_subteam(self, subteam_id: str, name: str) -> models.Subteam:
		updated = replace(self.get_subteam(subteam_id), name=name)
		self.subteams[subteam_id] = updated
		return updated

	def remove_subteam(self, subteam_id: str) -> models.Subteam:
		subteam = self.get_subteam(subteam_id)
		if self._subteam_members.get(subteam_id):
			raise ValueError("subteam still has members")
		del self.subteams[subteam_id]
		self._subteam_members.pop(subteam_id, None)
		return subteam

	def subteams_of_club(self, club_id: str) -> List[models.Subteam]:
		return [subteam for subteam in self.subteams.values() if subteam.club_id == club_id]

	# events & conflict groups

	def add_event(self, event: models.Event) -> models.Event:
		self.events[event.id] = event
		return event

	def get_event(self, event_id: str) -> models.Event:
		event = self.events.get(event_id)
		if event is None:
			raise NotFoundError("event_not_found", event_id=event_id)
		return event

	def events_in_division(self, division: models.Division) -> List[models.Event]:
		return [event for event in self.events.values() if event.division == division]

	def set_conflict_groups(self, division: models.Division, groups: Iterable[models.ConflictGroup]) -> None:
		"""Replace the division's conflict groups; the caller rebuilds the index."""
		self._groups[division] = sorted(groups, key=lambda group: (group.block_number, group.name))

	def conflict_groups(self, division: models.Division) -> List[models.ConflictGroup]:
		return list(self._groups.get(division, ()))

