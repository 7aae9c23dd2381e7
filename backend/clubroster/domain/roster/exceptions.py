"""Error taxonomy for roster assignment operations."""

from __future__ import annotations

from enum import Enum
from typing import Any

from fastapi import status


class RosterErrorCode(str, Enum):
	CONFIG_ERROR = "config_error"
	DUPLICATE_ASSIGNMENT = "duplicate_assignment"
	ALREADY_ASSIGNED = "already_assigned"
	CAPACITY_EXCEEDED = "capacity_exceeded"
	CONFLICT_EXCLUDED = "conflict_excluded"
	HEADCOUNT_EXCEEDED = "headcount_exceeded"
	CROSS_SUBTEAM_MISMATCH = "cross_subteam_mismatch"
	DIVISION_MISMATCH = "division_mismatch"
	MOVE_BLOCKED = "move_blocked"
	NOT_FOUND = "not_found"
	BUSY = "busy"
	INVARIANT_VIOLATION = "invariant_violation"


class RosterError(Exception):
	"""Base class for roster errors.

	`context` names the entities involved (member, subteam, event ids and
	display names) so callers can render a specific message.
	"""

	code: RosterErrorCode = RosterErrorCode.INVARIANT_VIOLATION
	status_code: int = status.HTTP_400_BAD_REQUEST
	detail: str = "roster_error"
	recoverable: bool = True

	def __init__(self, detail: str | None = None, **context: Any) -> None:
		super().__init__(detail or self.detail)
		if detail:
			self.detail = detail
		self.context: dict[str, Any] = {key: value for key, value in context.items() if value is not None}


class ConfigError(RosterError):
	"""Malformed conflict-group or reference data; fatal for the division."""

	code = RosterErrorCode.CONFIG_ERROR
	status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
	detail = "invalid_conflict_configuration"
	recoverable = False


class InvariantViolation(RosterError):
	"""Internal bookkeeping went out of sync (e.g. ledger underflow)."""

	code = RosterErrorCode.INVARIANT_VIOLATION
	status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
	detail = "invariant_violation"
	recoverable = False


class DuplicateAssignment(RosterError):
	code = RosterErrorCode.DUPLICATE_ASSIGNMENT
	status_code = status.HTTP_409_CONFLICT
	detail = "duplicate_assignment"


class NotFoundError(RosterError):
	code = RosterErrorCode.NOT_FOUND
	status_code = status.HTTP_404_NOT_FOUND
	detail = "not_found"


class Busy(RosterError):
	"""Lock acquisition exceeded the caller's deadline; nothing was mutated."""

	code = RosterErrorCode.BUSY
	status_code = status.HTTP_423_LOCKED
	detail = "roster_busy"


class AssignmentError(RosterError):
	"""Rejected by validation; `code` is the reason."""

	status_code = status.HTTP_409_CONFLICT


class AlreadyAssigned(AssignmentError):
	code = RosterErrorCode.ALREADY_ASSIGNED
	detail = "member_already_assigned"


class CapacityExceeded(AssignmentError):
	code = RosterErrorCode.CAPACITY_EXCEEDED
	detail = "event_at_capacity"


class ConflictExcluded(AssignmentError):
	code = RosterErrorCode.CONFLICT_EXCLUDED
	detail = "conflict_block"


class HeadcountExceeded(AssignmentError):
	code = RosterErrorCode.HEADCOUNT_EXCEEDED
	detail = "subteam_full"


class CrossSubteamMismatch(AssignmentError):
	code = RosterErrorCode.CROSS_SUBTEAM_MISMATCH
	status_code = status.HTTP_400_BAD_REQUEST
	detail = "member_not_on_subteam"


class DivisionMismatch(AssignmentError):
	code = RosterErrorCode.DIVISION_MISMATCH
	status_code = status.HTTP_400_BAD_REQUEST
	detail = "division_mismatch"


class MoveBlocked(AssignmentError):
	"""Subteam move refused while the member holds assignments from another subteam."""

	code = RosterErrorCode.MOVE_BLOCKED
	detail = "stale_assignments"

