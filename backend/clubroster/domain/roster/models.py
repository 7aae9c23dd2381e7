"""Domain models for club rosters and event assignments."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional, Tuple


Division = str


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True, frozen=True)
class Club:
    id: str
    name: str
    division: Division


@dataclass(slots=True, frozen=True)
class Member:
    """A club membership; `subteam_id` is None while unassigned."""

    id: str
    club_id: str
    subteam_id: Optional[str] = None
    display_name: Optional[str] = None

    def is_unassigned(self) -> bool:
        return self.subteam_id is None


@dataclass(slots=True, frozen=True)
class Subteam:
    id: str
    club_id: str
    name: str
    max_headcount: int = 15


@dataclass(slots=True, frozen=True)
class Event:
    id: str
    division: Division
    name: str
    max_competitors: int
    self_scheduled: bool = False


@dataclass(slots=True, frozen=True)
class ConflictGroup:
    """Events sharing one time block; at most one per member unless self-scheduled."""

    id: str
    division: Division
    name: str
    event_ids: Tuple[str, ...]
    block_number: int = 0


@dataclass(slots=True, frozen=True)
class RosterAssignment:
    id: str
    member_id: str
    subteam_id: str
    event_id: str
    created_at: datetime = field(default_factory=_now)

    @property
    def key(self) -> Tuple[str, str]:
        return (self.member_id, self.event_id)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "member_id": self.member_id,
            "subteam_id": self.subteam_id,
            "event_id": self.event_id,
            "created_at": self.created_at.isoformat(),
        }


@dataclass(slots=True)
class ClubSnapshot:
    """Everything the engine needs to serve one club."""

    club: Club
    members: List[Member] = field(default_factory=list)
    subteams: List[Subteam] = field(default_factory=list)
    events: List[Event] = field(default_factory=list)
    conflict_groups: List[ConflictGroup] = field(default_factory=list)
    assignments: List[RosterAssignment] = field(default_factory=list)
