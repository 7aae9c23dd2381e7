"""Pydantic schemas returned by the roster service."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from clubroster.domain.roster import models
from clubroster.domain.roster.exceptions import RosterError, RosterErrorCode


class ErrorDetail(BaseModel):
    code: str
    detail: str
    message: str
    status_code: int
    context: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_error(cls, exc: RosterError) -> "ErrorDetail":
        return cls(
            code=exc.code.value,
            detail=exc.detail,
            message=describe_error(exc),
            status_code=exc.status_code,
            context=dict(exc.context),
        )


class AssignmentSummary(BaseModel):
    id: str
    member_id: str
    subteam_id: str
    event_id: str
    created_at: datetime

    @classmethod
    def from_model(cls, assignment: models.RosterAssignment) -> "AssignmentSummary":
        return cls(
            id=assignment.id,
            member_id=assignment.member_id,
            subteam_id=assignment.subteam_id,
            event_id=assignment.event_id,
            created_at=assignment.created_at,
        )


class MemberSummary(BaseModel):
    id: str
    club_id: str
    subteam_id: Optional[str] = None
    display_name: Optional[str] = None

    @classmethod
    def from_model(cls, member: models.Member) -> "MemberSummary":
        return cls(
            id=member.id,
            club_id=member.club_id,
            subteam_id=member.subteam_id,
            display_name=member.display_name,
        )


class SubteamSummary(BaseModel):
    id: str
    club_id: str
    name: str
    headcount: int
    max_headcount: int


class EventOption(BaseModel):
    id: str
    name: str
    division: str
    max_competitors: int
    self_scheduled: bool = False
    occupancy: int = 0


class EventRosterSlot(BaseModel):
    event_id: str
    event_name: str
    assigned: int
    max_competitors: int
    self_scheduled: bool = False
    full: bool = False
    group_name: Optional[str] = None
    members: List[MemberSummary] = Field(default_factory=list)


class ConflictBlock(BaseModel):
    id: str
    name: str
    block_number: int
    event_ids: List[str]
    event_names: List[str]


class MutationResult(BaseModel):
    ok: bool
    assignment: Optional[AssignmentSummary] = None
    member: Optional[MemberSummary] = None
    subteam: Optional[SubteamSummary] = None
    removed: List[AssignmentSummary] = Field(default_factory=list)
    error: Optional[ErrorDetail] = None

    @classmethod
    def failed(cls, exc: RosterError) -> "MutationResult":
        return cls(ok=False, error=ErrorDetail.from_error(exc))


class ValidationResult(BaseModel):
    allowed: bool
    error: Optional[ErrorDetail] = None
    blocking: List[AssignmentSummary] = Field(default_factory=list)


def describe_error(exc: RosterError) -> str:
    """Human-readable sentence for UI toasts and pickers."""
    ctx = exc.context
    code = exc.code
    if code is RosterErrorCode.CAPACITY_EXCEEDED:
        return f"{ctx.get('event_name', 'Event')} is at capacity ({ctx.get('max_competitors')} competitors)"
    if code is RosterErrorCode.CONFLICT_EXCLUDED:
        names = ", ".join(ctx.get("conflicting_event_names") or ctx.get("conflicting_event_ids") or [])
        return f"Conflicts with: {names}"
    if code is RosterErrorCode.HEADCOUNT_EXCEEDED:
        return f"{ctx.get('subteam_name', 'Subteam')} is full ({ctx.get('max_headcount')} members)"
    if code is RosterErrorCode.ALREADY_ASSIGNED:
        return f"Already assigned to {ctx.get('event_name', 'this event')}"
    if code is RosterErrorCode.CROSS_SUBTEAM_MISMATCH:
        if exc.detail == "subteam_not_in_club":
            return "Subteam belongs to a different club"
        return "Member is not on this subteam"
    if code is RosterErrorCode.DIVISION_MISMATCH:
        return f"{ctx.get('event_name', 'Event')} is not offered in division {ctx.get('club_division')}"
    if code is RosterErrorCode.MOVE_BLOCKED:
        return "Remove the member's existing event assignments before changing subteams"
    if code is RosterErrorCode.BUSY:
        return "Roster is busy, try again"
    if code is RosterErrorCode.NOT_FOUND:
        return exc.detail.replace("_", " ").capitalize()
    if code is RosterErrorCode.DUPLICATE_ASSIGNMENT:
        return "Assignment already exists"
    return exc.detail
