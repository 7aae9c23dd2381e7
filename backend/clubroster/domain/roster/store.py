"""Indexed in-memory relation of roster assignments."""

from __future__ import annotations

from typing import Dict, Iterator, List, Optional, Tuple

from clubroster.domain.roster import models
from clubroster.domain.roster.exceptions import DuplicateAssignment, NotFoundError


class AssignmentStore:
	"""(member, subteam, event) rows, unique on (member, event).

	No business rules live here; legality is checked upstream.
	"""

	def __init__(self) -> None:
		self._rows: Dict[Tuple[str, str], models.RosterAssignment] = {}
		self._by_id: Dict[str, models.RosterAssignment] = {}
		self._by_member: Dict[str, Dict[str, models.RosterAssignment]] = {}
		self._by_event: Dict[str, Dict[str, models.RosterAssignment]] = {}
		self._by_subteam: Dict[str, Dict[Tuple[str, str], models.RosterAssignment]] = {}

	def insert(self, assignment: models.RosterAssignment) -> models.RosterAssignment:
		if assignment.key in self._rows:
			raise DuplicateAssignment(member_id=assignment.member_id, event_id=assignment.event_id)
		self._rows[assignment.key] = assignment
		self._by_id[assignment.id] = assignment
		self._by_member.setdefault(assignment.member_id, {})[assignment.event_id] = assignment
		self._by_event.setdefault(assignment.event_id, {})[assignment.member_id] = assignment
		self._by_subteam.setdefault(assignment.subteam_id, {})[assignment.key] = assignment
		return assignment

	def delete(self, member_id: str, event_id: str) -> models.RosterAssignment:
		assignment = self._rows.pop((member_id, event_id), None)
		if assignment is None:
			raise NotFoundError("assignment_not_found", member_id=member_id, event_id=event_id)
		self._by_id.pop(assignment.id, None)
		_discard(self._by_member, member_id, event_id)
		_discard(self._by_event, event_id, member_id)
		_discard(self._by_subteam, assignment.subteam_id, assignment.key)
		return assignment

	def get(self, member_id: str, event_id: str) -> Optional[models.RosterAssignment]:
		return self._rows.get((member_id, event_id))

	def get_by_id(self, assignment_id: str) -> Optional[models.RosterAssignment]:
		return self._by_id.get(assignment_id)

	def for_member(self, member_id: str) -> List[models.RosterAssignment]:
		return list(self._by_member.get(member_id, {}).values())

	def for_event(self, event_id: str, subteam_id: Optional[str] = None) -> List[models.RosterAssignment]:
		rows = self._by_event.get(event_id, {}).values()
		if subteam_id is None:
			return list(rows)
		return [row for row in rows if row.subteam_id == subteam_id]

	def for_subteam(self, subteam_id: str) -> List[models.RosterAssignment]:
		return list(self._by_subteam.get(subteam_id, {}).values())

	def holds(self, member_id: str, event_id: str) -> bool:
		return (member_id, event_id) in self._rows

	def __len__(self) -> int:
		return len(self._rows)

	def __iter__(self) -> Iterator[models.RosterAssignment]:
		return iter(list(self._rows.values()))


def _discard(index: Dict, outer: str, inner) -> None:
	bucket = index.get(outer)
	if bucket is None:
		return
	bucket.pop(inner, None)
	if not bucket:
		del index[outer]
