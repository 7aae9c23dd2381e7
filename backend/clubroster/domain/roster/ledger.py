"""Live occupancy counters for (subteam, event) slots and subteam headcount."""

from __future__ import annotations

from collections import Counter
from typing import Dict, Iterable, Tuple

from clubroster.domain.roster import models
from clubroster.domain.roster.exceptions import CapacityExceeded, HeadcountExceeded, InvariantViolation
from clubroster.obs import metrics as obs_metrics

SlotKey = Tuple[str, str]


class CapacityLedger:
	"""O(1) capacity checks.

	Methods never await, so each call is atomic with respect to other
	coroutines. Keeping the ledger in lockstep with the assignment store is the
	coordinator's job.
	"""

	def __init__(self) -> None:
		self._slots: Counter[SlotKey] = Counter()
		self._headcount: Counter[str] = Counter()

	def occupancy(self, subteam_id: str, event_id: str) -> int:
		return self._slots[(subteam_id, event_id)]

	def headcount(self, subteam_id: str) -> int:
		return self._headcount[subteam_id]

	def slots_of(self, subteam_id: str) -> Counter[str]:
		return Counter({event_id: count for (owner, event_id), count in self._slots.items() if owner == subteam_id and count})

	def has_room(self, subteam_id: str, event: models.Event) -> bool:
		return self.occupancy(subteam_id, event.id) < event.max_competitors

	def has_headroom(self, subteam: models.Subteam) -> bool:
		return self.headcount(subteam.id) < subteam.max_headcount

	def reserve(self, subteam_id: str, event: models.Event) -> int:
		key = (subteam_id, event.id)
		current = self._slots[key]
		if current >= event.max_competitors:
			raise CapacityExceeded(
				subteam_id=subteam_id,
				event_id=event.id,
				event_name=event.name,
				current=current,
				max_competitors=event.max_competitors,
			)
		self._slots[key] = current + 1
		return current + 1

	def release(self, subteam_id: str, event_id: str) -> int:
		key = (subteam_id, event_id)
		current = self._slots[key]
		if current <= 0:
			obs_metrics.inc_invariant_violation("slot_underflow")
			raise InvariantViolation("slot_underflow", subteam_id=subteam_id, event_id=event_id)
		if current == 1:
			del self._slots[key]
		else:
			self._slots[key] = current - 1
		return current - 1

	def reserve_headcount(self, subteam: models.Subteam) -> int:
		current = self._headcount[subteam.id]
		if current >= subteam.max_headcount:
			raise HeadcountExceeded(
				subteam_id=subteam.id,
				subteam_name=subteam.name,
				current=current,
				max_headcount=subteam.max_headcount,
			)
		self._headcount[subteam.id] = current + 1
		return current + 1

	def release_headcount(self, subteam_id: str) -> int:
		current = self._headcount[subteam_id]
		if current <= 0:
			obs_metrics.inc_invariant_violation("headcount_underflow")
			raise InvariantViolation("headcount_underflow", subteam_id=subteam_id)
		if current == 1:
			del self._headcount[subteam_id]
		else:
			self._headcount[subteam_id] = current - 1
		return current - 1

	def drop_subteam(self, subteam_id: str) -> None:
		"""Forget every counter of a deleted subteam once it holds nothing."""
		if self._headcount[subteam_id] or any(key[0] == subteam_id and count for key, count in self._slots.items()):
			obs_metrics.inc_invariant_violation("drop_nonempty_subteam")
			raise InvariantViolation("subteam_counters_not_empty", subteam_id=subteam_id)
		self._headcount.pop(subteam_id, None)

	def rebuild(
		self,
		assignments: Iterable[models.RosterAssignment],
		members: Iterable[models.Member],
	) -> None:
		"""Recompute every counter from the store and the member directory."""
		slots: Counter[SlotKey] = Counter()
		for assignment in assignments:
			slots[(assignment.subteam_id, assignment.event_id)] += 1
		headcount: Counter[str] = Counter()
		for member in members:
			if member.subteam_id:
				headcount[member.subteam_id] += 1
		self._slots = slots
		self._headcount = headcount

	def snapshot(self) -> Dict[str, Dict[str, int]]:
		return {
			"slots": {f"{subteam_id}:{event_id}": count for (subteam_id, event_id), count in self._slots.items()},
			"headcount": dict(self._headcount),
		}
