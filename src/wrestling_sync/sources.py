"""
Remote source backed by JSON exports of the Notion databases.

Each entity type is one ``<entity>.json`` file in the export directory,
holding either a list of pages or a Notion query response with a
``results`` list. A page is ``{"id": ..., "properties": {...}}``.
"""

import json
import logging
import uuid
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from wrestling_sync.sync.backup import BackupManager
from wrestling_sync.sync.exceptions import ExternalServiceError
from wrestling_sync.sync.interfaces import RemoteSource
from wrestling_sync.sync.models import RemoteRecord, SyncDirection

logger = logging.getLogger(__name__)


class SnapshotRemoteSource(RemoteSource):
    """
    Reads and writes Notion export files.

    Pushes between ``begin_push`` and ``end_push`` are collected in memory
    and written once; the previous file is backed up first.
    """

    def __init__(self, export_directory: Union[str, Path],
                 backup_manager: Optional[BackupManager] = None):
        """
        Initialize the snapshot source.

        Args:
            export_directory: Directory holding one JSON file per entity type
            backup_manager: Creates backups before files are rewritten
        """
        self.export_directory = Path(export_directory)
        self.backup_manager = backup_manager
        self._pending: Dict[str, Dict[str, Dict[str, Any]]] = {}

    def path_for(self, entity_type: str) -> Path:
        return self.export_directory / f"{entity_type}.json"

    async def fetch(self, entity_type: str, direction: SyncDirection) -> List[RemoteRecord]:
        """
        Read all pages of one entity type.

        Returns:
            Remote records in file order; empty if the file does not exist

        Raises:
            ExternalServiceError: If the file cannot be parsed
            OSError: If the file cannot be read
        """
        pages = self._load_pages(entity_type)
        records = [
            RemoteRecord(external_id=page.get("id"), fields=page.get("properties") or {})
            for page in pages.values()
        ]
        logger.debug(f"Read {len(records)} {entity_type} pages from {self.path_for(entity_type)}")
        return records

    async def push(self, entity_type: str, external_id: Optional[str],
                   fields: Dict[str, Any]) -> str:
        """
        Create or update one page.

        Returns:
            The page ID, newly assigned when ``external_id`` is None or unknown
        """
        batched = entity_type in self._pending
        pages = self._pending[entity_type] if batched else self._load_pages(entity_type)

        page_id = external_id or str(uuid.uuid4())
        page = pages.setdefault(page_id, {"id": page_id, "properties": {}})
        page["properties"] = {**(page.get("properties") or {}), **fields}

        if not batched:
            self._write_pages(entity_type, pages)
        return page_id

    async def begin_push(self, entity_type: str) -> None:
        self._pending[entity_type] = self._load_pages(entity_type)

    async def end_push(self, entity_type: str) -> None:
        pages = self._pending.pop(entity_type, None)
        if pages is not None:
            self._write_pages(entity_type, pages)

    def _load_pages(self, entity_type: str) -> Dict[str, Dict[str, Any]]:
        path = self.path_for(entity_type)
        if not path.exists():
            logger.warning(f"No export found for {entity_type} at {path}")
            return {}

        try:
            with open(path, encoding="utf-8") as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise ExternalServiceError(
                f"read {entity_type}", f"invalid JSON in {path}: {e}", retryable=False
            ) from e

        if isinstance(data, dict):
            data = data.get("results", [])
        if not isinstance(data, list):
            raise ExternalServiceError(
                f"read {entity_type}", f"expected a list of pages in {path}", retryable=False
            )

        pages: Dict[str, Dict[str, Any]] = {}
        for index, page in enumerate(data):
            if not isinstance(page, dict):
                raise ExternalServiceError(
                    f"read {entity_type}", f"page {index} in {path} is not an object",
                    retryable=False
                )
            # Pages without an ID are kept so the worker can report them
            pages[page.get("id") or f"__missing_{index}"] = page
        return pages

    def _write_pages(self, entity_type: str, pages: Dict[str, Dict[str, Any]]) -> None:
        path = self.path_for(entity_type)
        if self.backup_manager is not None:
            self.backup_manager.backup(path)

        self.export_directory.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_suffix(".json.tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(list(pages.values()), f, indent=2, ensure_ascii=False, default=str)
        tmp_path.replace(path)
        logger.info(f"Wrote {len(pages)} {entity_type} pages to {path}")
