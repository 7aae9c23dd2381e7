"""Conflict index: which events share a time block within a division."""

from __future__ import annotations

from typing import Dict, FrozenSet, Iterable, Optional

from clubroster.domain.roster import models
from clubroster.domain.roster.directory import RosterDirectory
from clubroster.domain.roster.exceptions import ConfigError
from clubroster.obs import metrics as obs_metrics
from clubroster.obs.logging import get_logger

log = get_logger(__name__)

_EMPTY: FrozenSet[str] = frozenset()


class ConflictIndex:
	"""Read-only after build. Rebuild wholesale when groups change."""

	def __init__(
		self,
		division: models.Division,
		group_of: Dict[str, models.ConflictGroup],
		partners: Dict[str, FrozenSet[str]],
	) -> None:
		self.division = division
		self._group_of = group_of
		self._partners = partners

	@classmethod
	def build(
		cls,
		division: models.Division,
		events: Iterable[models.Event],
		groups: Iterable[models.ConflictGroup],
	) -> "ConflictIndex":
		by_id = {event.id: event for event in events}
		group_of: Dict[str, models.ConflictGroup] = {}
		members_by_group: Dict[str, list[str]] = {}
		for group in groups:
			if group.division != division:
				raise ConfigError("group_division_mismatch", group_id=group.id, division=division)
			for event_id in dict.fromkeys(group.event_ids):
				event = by_id.get(event_id)
				if event is None:
					raise ConfigError("group_references_unknown_event", group_id=group.id, event_id=event_id)
				if event.division != division:
					raise ConfigError(
						"group_event_division_mismatch",
						group_id=group.id,
						event_id=event_id,
						event_division=event.division,
					)
				if event.self_scheduled:
					continue
				existing = group_of.get(event_id)
				if existing is not None and existing.id != group.id:
					raise ConfigError(
						"event_in_multiple_groups",
						event_id=event_id,
						event_name=event.name,
						group_ids=[existing.id, group.id],
					)
				group_of[event_id] = group
				members_by_group.setdefault(group.id, []).append(event_id)

		partners: Dict[str, FrozenSet[str]] = {}
		for event_ids in members_by_group.values():
			block = frozenset(event_ids)
			for event_id in event_ids:
				partners[event_id] = block - {event_id}
		return cls(division, group_of, partners)

	def conflicts_of(self, event_id: str) -> FrozenSet[str]:
		return self._partners.get(event_id, _EMPTY)

	def has_conflict(self, event_a: str, event_b: str) -> bool:
		if event_a == event_b:
			return False
		return event_b in self._partners.get(event_a, _EMPTY)

	def group_of(self, event_id: str) -> Optional[models.ConflictGroup]:
		return self._group_of.get(event_id)

	def __len__(self) -> int:
		return len(self._group_of)


class ConflictRegistry:
	"""Per-division cache of conflict indexes built from a directory."""

	def __init__(self, directory: RosterDirectory) -> None:
		self._directory = directory
		self._indexes: Dict[models.Division, ConflictIndex] = {}

	def get(self, division: models.Division) -> ConflictIndex:
		index = self._indexes.get(division)
		if index is None:
			index = self.rebuild(division)
		return index

	def rebuild(self, division: models.Division) -> ConflictIndex:
		try:
			index = ConflictIndex.build(
				division,
				self._directory.events_in_division(division),
				self._directory.conflict_groups(division),
			)
		except ConfigError as exc:
			obs_metrics.inc_conflict_index_build(division, "config_error")
			log.error(
				"conflict index build failed",
				extra={"division": division, "reason": exc.detail, "error_context": exc.context},
			)
			self._indexes.pop(division, None)
			raise
		self._indexes[division] = index
		obs_metrics.inc_conflict_index_build(division, "ok")
		obs_metrics.set_conflict_index_size(division, len(index))
		log.info("conflict index built", extra={"division": division, "grouped_events": len(index)})
		return index

	def invalidate(self, division: Optional[models.Division] = None) -> None:
		if division is None:
			self._indexes.clear()
		else:
			self._indexes.pop(division, None)
