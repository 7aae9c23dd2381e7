"""Central registry for Prometheus metrics used by the roster engine."""

from __future__ import annotations

import logging

from prometheus_client import Counter, Gauge, Histogram

log = logging.getLogger(__name__)


ROSTER_ASSIGN_ATTEMPTS = Counter(
	"clubroster_assign_attempts_total",
	"Roster assignment attempts by outcome code",
	["outcome"],
)

ROSTER_REMOVALS = Counter(
	"clubroster_removals_total",
	"Roster assignment removals by outcome code",
	["outcome"],
)

ROSTER_MOVES = Counter(
	"clubroster_subteam_moves_total",
	"Member subteam moves by outcome code",
	["outcome"],
)

ROSTER_CASCADE_REMOVALS = Counter(
	"clubroster_cascade_removals_total",
	"Assignments removed as a side effect of subteam moves or deletions",
)

ROSTER_LOCK_TIMEOUTS = Counter(
	"clubroster_lock_timeouts_total",
	"Lock acquisitions that exceeded their deadline",
	["backend"],
)

ROSTER_LOCK_WAIT = Histogram(
	"clubroster_lock_wait_seconds",
	"Time spent waiting for roster mutation locks",
	["backend"],
	buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0),
)

CONFLICT_INDEX_EVENTS = Gauge(
	"clubroster_conflict_index_events",
	"Grouped events held by the conflict index per division",
	["division"],
)

CONFLICT_INDEX_BUILDS = Counter(
	"clubroster_conflict_index_builds_total",
	"Conflict index builds per division and result",
	["division", "result"],
)

INVARIANT_VIOLATIONS = Counter(
	"clubroster_invariant_violations_total",
	"Defensive invariant checks that failed",
	["kind"],
)


def inc_assign_attempt(outcome: str) -> None:
	ROSTER_ASSIGN_ATTEMPTS.labels(outcome=outcome).inc()


def inc_removal(outcome: str) -> None:
	ROSTER_REMOVALS.labels(outcome=outcome).inc()


def inc_move(outcome: str) -> None:
	ROSTER_MOVES.labels(outcome=outcome).inc()


def inc_cascade_removals(count: int = 1) -> None:
	if count > 0:
		ROSTER_CASCADE_REMOVALS.inc(count)


def inc_lock_timeout(backend: str) -> None:
	ROSTER_LOCK_TIMEOUTS.labels(backend=backend).inc()


def observe_lock_wait(backend: str, seconds: float) -> None:
	ROSTER_LOCK_WAIT.labels(backend=backend).observe(max(seconds, 0.0))


def set_conflict_index_size(division: str, size: int) -> None:
	CONFLICT_INDEX_EVENTS.labels(division=division).set(size)


def inc_conflict_index_build(division: str, result: str) -> None:
	CONFLICT_INDEX_BUILDS.labels(division=division, result=result).inc()


def inc_invariant_violation(kind: str) -> None:
	log.error("roster invariant violation", extra={"kind": kind})
	INVARIANT_VIOLATIONS.labels(kind=kind).inc()
