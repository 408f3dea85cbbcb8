"""Typed registry mapping entity names to their descriptor and worker."""

import logging
from dataclasses import dataclass
from typing import Dict, List, Iterator

from .dependency_graph import DependencyGraph
from .exceptions import ConfigurationError
from .interfaces import SyncWorker
from .models import EntityDescriptor


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RegisteredEntity:
    descriptor: EntityDescriptor
    worker: SyncWorker

    @property
    def name(self) -> str:
        return self.descriptor.name


class EntityRegistry:
    """Registered entity types; validated against the dependency graph at startup."""

    def __init__(self):
        self._entries: Dict[str, RegisteredEntity] = {}

    def register(self, descriptor: EntityDescriptor, worker: SyncWorker) -> None:
        """Register an entity type.

        Raises:
            ConfigurationError: If the name is already registered
        """
        if descriptor.name in self._entries:
            raise ConfigurationError(
                f"Entity '{descriptor.name}' is already registered",
                entities=[descriptor.name]
            )
        self._entries[descriptor.name] = RegisteredEntity(descriptor, worker)
        logger.debug(f"Registered entity {descriptor.name} "
                     f"(depends on: {sorted(descriptor.depends_on) or 'nothing'})")

    def worker_for(self, name: str) -> SyncWorker:
        try:
            return self._entries[name].worker
        except KeyError:
            raise ConfigurationError(
                f"No worker registered for entity: {name}", entities=[name],
                details={"valid_entities": self.names()}
            ) from None

    def descriptors(self) -> List[EntityDescriptor]:
        return [entry.descriptor for entry in self._entries.values()]

    def names(self) -> List[str]:
        return sorted(self._entries)

    def build_graph(self) -> DependencyGraph:
        """Build the dependency graph of everything registered."""
        if not self._entries:
            raise ConfigurationError("No entities registered")
        return DependencyGraph.build(self.descriptors())

    def validate_against(self, graph: DependencyGraph) -> None:
        """Check that the registry and a previously built graph still agree.

        Raises:
            ConfigurationError: Listing entities present on only one side
        """
        registered = set(self._entries)
        mismatched = registered.symmetric_difference(graph.entity_names)
        for name in registered & graph.entity_names:
            if self._entries[name].descriptor != graph.descriptor(name):
                mismatched.add(name)
        if mismatched:
            raise ConfigurationError(
                f"Entity registry does not match the dependency graph: {', '.join(sorted(mismatched))}",
                entities=mismatched
            )

    def __contains__(self, name: object) -> bool:
        return name in self._entries

    def __iter__(self) -> Iterator[RegisteredEntity]:
        return iter(self._entries.values())

    def __len__(self) -> int:
        return len(self._entries)
