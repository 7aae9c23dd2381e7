import pytest

from clubroster.domain.roster import models
from clubroster.domain.roster.conflicts import ConflictIndex, ConflictRegistry
from clubroster.domain.roster.directory import RosterDirectory
from clubroster.domain.roster.exceptions import ConfigError
from conftest import (
    ANATOMY,
    CODEBUSTERS,
    ORNITHOLOGY,
    PHYSIOLOGY,
    SCRAMBLER,
    TOWERS,
    division_c_events,
    division_c_groups,
)


def _index() -> ConflictIndex:
    return ConflictIndex.build("C", division_c_events(), division_c_groups())


def test_grouped_events_conflict_symmetrically():
    index = _index()
    assert index.has_conflict(ANATOMY, PHYSIOLOGY)
    assert index.has_conflict(PHYSIOLOGY, ANATOMY)
    assert index.conflicts_of(ANATOMY) == frozenset({PHYSIOLOGY})


def test_event_never_conflicts_with_itself():
    index = _index()
    assert not index.has_conflict(ANATOMY, ANATOMY)
    assert ANATOMY not in index.conflicts_of(ANATOMY)


def test_ungrouped_event_has_no_partners():
    index = _index()
    assert index.conflicts_of(CODEBUSTERS) == frozenset()
    assert index.group_of(CODEBUSTERS) is None
    assert not index.has_conflict(CODEBUSTERS, ANATOMY)


def test_self_scheduled_events_are_exempt_from_their_group():
    index = _index()
    assert not index.has_conflict(SCRAMBLER, TOWERS)
    assert not index.has_conflict(SCRAMBLER, ORNITHOLOGY)
    assert not index.has_conflict(ORNITHOLOGY, TOWERS)
    assert index.conflicts_of(ORNITHOLOGY) == frozenset()
    assert index.group_of(SCRAMBLER) is None
    assert index.group_of(ORNITHOLOGY).name == "Build Block"


def test_self_scheduled_event_may_sit_in_two_groups():
    groups = division_c_groups() + [
        models.ConflictGroup("grp-extra", "C", "Afternoon", (SCRAMBLER, CODEBUSTERS), block_number=4),
    ]
    index = ConflictIndex.build("C", division_c_events(), groups)
    assert index.conflicts_of(CODEBUSTERS) == frozenset()


def test_event_in_two_groups_is_a_config_error():
    groups = division_c_groups() + [
        models.ConflictGroup("grp-dup", "C", "Duplicate", (ANATOMY, CODEBUSTERS), block_number=2),
    ]
    with pytest.raises(ConfigError) as excinfo:
        ConflictIndex.build("C", division_c_events(), groups)
    assert excinfo.value.detail == "event_in_multiple_groups"
    assert excinfo.value.context["event_id"] == ANATOMY
    assert excinfo.value.recoverable is False


def test_group_with_unknown_event_is_a_config_error():
    groups = [models.ConflictGroup("grp-x", "C", "Broken", (ANATOMY, "ev-missing"))]
    with pytest.raises(ConfigError) as excinfo:
        ConflictIndex.build("C", division_c_events(), groups)
    assert excinfo.value.detail == "group_references_unknown_event"


def test_group_from_other_division_is_a_config_error():
    groups = [models.ConflictGroup("grp-b", "B", "Wrong division", (ANATOMY,))]
    with pytest.raises(ConfigError):
        ConflictIndex.build("C", division_c_events(), groups)


def test_registry_builds_lazily_and_drops_index_on_bad_rebuild():
    directory = RosterDirectory()
    for event in division_c_events():
        directory.add_event(event)
    directory.set_conflict_groups("C", division_c_groups())
    registry = ConflictRegistry(directory)

    first = registry.get("C")
    assert registry.get("C") is first

    directory.set_conflict_groups(
        "C",
        division_c_groups() + [models.ConflictGroup("grp-dup", "C", "Duplicate", (PHYSIOLOGY, CODEBUSTERS))],
    )
    with pytest.raises(ConfigError):
        registry.rebuild("C")
    with pytest.raises(ConfigError):
        registry.get("C")

    directory.set_conflict_groups("C", division_c_groups())
    rebuilt = registry.get("C")
    assert rebuilt is not first
    assert rebuilt.has_conflict(ANATOMY, PHYSIOLOGY)


def test_registry_invalidate_forces_rebuild():
    directory = RosterDirectory()
    for event in division_c_events():
        directory.add_event(event)
    registry = ConflictRegistry(directory)
    assert not registry.get("C").has_conflict(ANATOMY, PHYSIOLOGY)

    directory.set_conflict_groups("C", division_c_groups())
    registry.invalidate("C")
    assert registry.get("C").has_conflict(ANATOMY, PHYSIOLOGY)
