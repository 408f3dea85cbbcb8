"""Dependency analysis that turns entity descriptors into sync levels."""

import logging
from typing import Dict, Iterable, List, Set, Tuple, FrozenSet

from .exceptions import ConfigurationError
from .models import EntityDescriptor, DependencyLevel


logger = logging.getLogger(__name__)


class DependencyGraph:
    """Immutable topological view of the entity descriptors.

    Built once at startup with :meth:`build`. Entities in the same level
    have no dependency between them and may be synced concurrently.
    """

    def __init__(self, descriptors: Dict[str, EntityDescriptor],
                 levels: Tuple[DependencyLevel, ...]):
        self._descriptors = descriptors
        self._levels = levels
        self._level_index: Dict[str, int] = {
            name: level.index for level in levels for name in level.entities
        }

    @classmethod
    def build(cls, descriptors: Iterable[EntityDescriptor]) -> "DependencyGraph":
        """Order descriptors into dependency levels with Kahn's algorithm.

        Args:
            descriptors: Entity descriptors to analyze

        Returns:
            DependencyGraph holding the computed levels

        Raises:
            ConfigurationError: On duplicate names, unknown dependencies or cycles
        """
        by_name: Dict[str, EntityDescriptor] = {}
        for descriptor in descriptors:
            if descriptor.name in by_name:
                raise ConfigurationError(
                    f"Entity '{descriptor.name}' is declared more than once",
                    entities=[descriptor.name]
                )
            by_name[descriptor.name] = descriptor

        unknown = {
            f"{descriptor.name} -> {dependency}"
            for descriptor in by_name.values()
            for dependency in descriptor.depends_on
            if dependency not in by_name
        }
        if unknown:
            raise ConfigurationError(
                f"Unknown entity dependencies: {', '.join(sorted(unknown))}",
                entities=sorted({edge.split(' -> ')[0] for edge in unknown}),
                details={"unknown_dependencies": sorted(unknown)}
            )

        remaining: Dict[str, Set[str]] = {
            name: set(descriptor.depends_on) for name, descriptor in by_name.items()
        }
        dependents: Dict[str, Set[str]] = {name: set() for name in by_name}
        for name, dependencies in remaining.items():
            for dependency in dependencies:
                dependents[dependency].add(name)

        levels: List[DependencyLevel] = []
        while remaining:
            ready = sorted(name for name, deps in remaining.items() if not deps)
            if not ready:
                stuck = sorted(remaining)
                logger.error(f"Circular dependency detected among entities: {stuck}")
                raise ConfigurationError(
                    f"Circular dependency detected among entities: {', '.join(stuck)}",
                    entities=stuck
                )

            levels.append(DependencyLevel(index=len(levels), entities=tuple(ready)))
            for name in ready:
                del remaining[name]
                for dependent in dependents[name]:
                    if dependent in remaining:
                        remaining[dependent].discard(name)

        graph = cls(by_name, tuple(levels))
        logger.info(
            f"Determined {len(levels)} sync levels: "
            + " | ".join(", ".join(level.entities) for level in levels)
        )
        return graph

    @property
    def levels(self) -> Tuple[DependencyLevel, ...]:
        return self._levels

    @property
    def entity_names(self) -> FrozenSet[str]:
        return frozenset(self._descriptors)

    def automatic_sync_order(self) -> List[str]:
        """Flatten the levels into a single list, for display only."""
        return [name for level in self._levels for name in level.entities]

    def level_of(self, name: str) -> int:
        """Return the level index of an entity.

        Raises:
            ConfigurationError: If the entity is unknown
        """
        try:
            return self._level_index[name]
        except KeyError:
            raise ConfigurationError(
                f"Unknown entity: {name}", entities=[name],
                details={"valid_entities": self.automatic_sync_order()}
            ) from None

    def dependencies_of(self, name: str) -> FrozenSet[str]:
        self.level_of(name)
        return self._descriptors[name].depends_on

    def descriptor(self, name: str) -> EntityDescriptor:
        self.level_of(name)
        return self._descriptors[name]

    def __contains__(self, name: object) -> bool:
        return name in self._descriptors

    def __len__(self) -> int:
        return len(self._descriptors)
