"""Roster domain exports."""

from .coordinator import AssignmentCoordinator
from .persistence import PostgresRosterPersistence, RosterPersistence
from .service import RosterService
from .state import RosterState

__all__ = [
	"AssignmentCoordinator",
	"PostgresRosterPersistence",
	"RosterPersistence",
	"RosterService",
	"RosterState",
]
