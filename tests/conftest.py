"""
Pytest configuration and fixtures for the test suite.
"""
import asyncio
import tempfile
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest
from hypothesis import settings

from wrestling_sync.database import SyncDatabase
from wrestling_sync.sync.config import SyncConfig
from wrestling_sync.sync.interfaces import RemoteSource
from wrestling_sync.sync.models import RemoteRecord, SyncDirection

# Configure Hypothesis settings for all tests
# Disable deadline to avoid flaky failures during parallel execution
settings.register_profile("default", deadline=None)
settings.load_profile("default")


def page(external_id: Optional[str], **properties: Any) -> RemoteRecord:
    """Build a remote record from Notion property names given as keywords.

    Underscores in keyword names become spaces, so ``Deck_Size`` maps to
    the ``Deck Size`` property.
    """
    return RemoteRecord(
        external_id=external_id,
        fields={name.replace("_", " "): value for name, value in properties.items()}
    )


class FakeRemoteSource(RemoteSource):
    """In-memory remote with scripted failures, delays and gates."""

    def __init__(self, pages: Optional[Dict[str, List[RemoteRecord]]] = None):
        self.pages: Dict[str, List[RemoteRecord]] = pages or {}
        self.fetch_calls: List[str] = []
        self.fetch_errors: Dict[str, List[BaseException]] = {}
        self.push_errors: Dict[str, List[BaseException]] = {}
        self.pushed: List[Dict[str, Any]] = []
        self.delays: Dict[str, float] = {}
        self.gates: Dict[str, asyncio.Event] = {}
        self.entered: Dict[str, asyncio.Event] = {}
        self.active = 0
        self.max_active = 0
        self._next_id = 0

    async def fetch(self, entity_type: str, direction: SyncDirection) -> List[RemoteRecord]:
        self.fetch_calls.append(entity_type)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if entity_type in self.entered:
                self.entered[entity_type].set()
            if entity_type in self.gates:
                await self.gates[entity_type].wait()
            if entity_type in self.delays:
                await asyncio.sleep(self.delays[entity_type])
            errors = self.fetch_errors.get(entity_type)
            if errors:
                raise errors.pop(0)
            return list(self.pages.get(entity_type, []))
        finally:
            self.active -= 1

    async def push(self, entity_type: str, external_id: Optional[str],
                   fields: Dict[str, Any]) -> str:
        errors = self.push_errors.get(entity_type)
        if errors:
            raise errors.pop(0)
        if external_id is None:
            self._next_id += 1
            external_id = f"{entity_type}-remote-{self._next_id}"
        self.pushed.append({"entity_type": entity_type, "external_id": external_id,
                            "fields": dict(fields)})
        return external_id


def make_config(**overrides: Any) -> SyncConfig:
    """Configuration for tests: no waiting between retries, no scheduler, no backups."""
    values = dict(
        scheduler_enabled=False,
        retry_base_delay_seconds=0.0,
        retry_max_delay_seconds=0.0,
        api_timeout_seconds=5.0,
        backup_enabled=False,
    )
    values.update(overrides)
    return SyncConfig(**values)


@pytest.fixture
def test_db():
    """Create an open temporary sync database."""
    with tempfile.TemporaryDirectory() as tmpdir:
        db_path = Path(tmpdir) / "test.duckdb"
        with SyncDatabase(db_path) as db:
            yield db


@pytest.fixture
def fake_remote():
    return FakeRemoteSource()


@pytest.fixture
def roster_pages():
    """A small, consistent promotion: factions, wrestlers and a team."""
    return {
        "factions": [
            page("fac-1", Name="The Corporation", Active=True),
        ],
        "wrestlers": [
            page("wr-1", Name="Rock", Deck_Size=20, Faction=["fac-1"]),
            page("wr-2", Name="Mankind", Deck_Size=18),
        ],
        "teams": [
            page("team-1", Name="Rock 'n' Sock", Member_1=["wr-1"], Member_2=["wr-2"]),
        ],
    }
