"""Tests for dependency analysis of entity descriptors."""

import pytest
from hypothesis import given, strategies as st

from wrestling_sync.sync.dependency_graph import DependencyGraph
from wrestling_sync.sync.entities import DEFAULT_ENTITIES
from wrestling_sync.sync.exceptions import ConfigurationError
from wrestling_sync.sync.models import EntityDescriptor


def descriptor(name, *depends_on):
    return EntityDescriptor(name, frozenset(depends_on))


@st.composite
def acyclic_descriptors(draw):
    """Random DAG: each entity may only depend on entities created before it."""
    count = draw(st.integers(min_value=1, max_value=12))
    names = [f"entity_{i}" for i in range(count)]
    descriptors = []
    for index, name in enumerate(names):
        dependencies = draw(st.sets(st.sampled_from(names[:index]), max_size=index)) if index else set()
        descriptors.append(EntityDescriptor(name, frozenset(dependencies)))
    shuffled = draw(st.permutations(descriptors))
    return list(shuffled)


@st.composite
def cyclic_descriptors(draw):
    """A DAG with one back edge added to close a cycle."""
    count = draw(st.integers(min_value=2, max_value=8))
    names = [f"entity_{i}" for i in range(count)]
    # chain entity_0 <- entity_1 <- ... <- entity_{n-1}, then entity_0 depends on the last
    descriptors = [EntityDescriptor(names[0], frozenset({names[-1]}))]
    for index in range(1, count):
        descriptors.append(EntityDescriptor(names[index], frozenset({names[index - 1]})))
    extra = draw(st.lists(st.sampled_from(names), max_size=3))
    for offset, name in enumerate(extra):
        descriptors.append(EntityDescriptor(f"leaf_{offset}", frozenset({name})))
    return descriptors


@given(acyclic_descriptors())
def test_levels_partition_entities_and_respect_dependencies(descriptors):
    graph = DependencyGraph.build(descriptors)

    seen = [name for level in graph.levels for name in level.entities]
    assert sorted(seen) == sorted(d.name for d in descriptors)
    assert len(seen) == len(set(seen))

    for d in descriptors:
        for dependency in d.depends_on:
            assert graph.level_of(dependency) < graph.level_of(d.name)

    for d in descriptors:
        if not d.depends_on:
            assert graph.level_of(d.name) == 0

    for level in graph.levels:
        assert list(level.entities) == sorted(level.entities)


@given(cyclic_descriptors())
def test_cycles_are_rejected(descriptors):
    with pytest.raises(ConfigurationError) as exc_info:
        DependencyGraph.build(descriptors)
    assert "entity_0" in exc_info.value.entities


def test_promotion_scenario_levels():
    graph = DependencyGraph.build([
        descriptor("seasons"),
        descriptor("templates"),
        descriptor("factions"),
        descriptor("shows", "seasons", "templates"),
        descriptor("wrestlers", "factions"),
        descriptor("segments", "shows", "wrestlers"),
    ])

    assert [list(level.entities) for level in graph.levels] == [
        ["factions", "seasons", "templates"],
        ["shows", "wrestlers"],
        ["segments"],
    ]
    assert graph.automatic_sync_order() == [
        "factions", "seasons", "templates", "shows", "wrestlers", "segments"
    ]
    assert graph.dependencies_of("segments") == frozenset({"shows", "wrestlers"})
    assert "shows" in graph
    assert "titles" not in graph
    assert len(graph) == 6


def test_two_entity_cycle_names_both():
    with pytest.raises(ConfigurationError) as exc_info:
        DependencyGraph.build([descriptor("a", "b"), descriptor("b", "a"), descriptor("c")])
    assert exc_info.value.entities == ["a", "b"]
    assert exc_info.value.error_code == "configuration_error"


def test_self_dependency_is_a_cycle():
    with pytest.raises(ConfigurationError):
        DependencyGraph.build([descriptor("a", "a")])


def test_unknown_dependency_is_rejected():
    with pytest.raises(ConfigurationError) as exc_info:
        DependencyGraph.build([descriptor("shows", "seasons")])
    assert exc_info.value.details["unknown_dependencies"] == ["shows -> seasons"]


def test_duplicate_names_are_rejected():
    with pytest.raises(ConfigurationError):
        DependencyGraph.build([descriptor("shows"), descriptor("shows")])


def test_unknown_entity_lookup():
    graph = DependencyGraph.build([descriptor("shows")])
    with pytest.raises(ConfigurationError) as exc_info:
        graph.level_of("titles")
    assert exc_info.value.details["valid_entities"] == ["shows"]


def test_default_catalogue_levels():
    graph = DependencyGraph.build([definition.descriptor for definition in DEFAULT_ENTITIES])

    assert [list(level.entities) for level in graph.levels] == [
        ["factions", "injury_types", "seasons", "templates"],
        ["shows", "wrestlers"],
        ["segments", "teams"],
    ]
