"""Timestamped backups of export files before they are overwritten."""

import logging
import shutil
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Union

logger = logging.getLogger(__name__)


class BackupManager:
    """Copies a file into the backup directory and keeps the newest copies."""

    timestamp_format = "%Y%m%d_%H%M%S_%f"

    def __init__(self, backup_directory: Union[str, Path], max_files: int = 10,
                 enabled: bool = True):
        if max_files <= 0:
            raise ValueError(f"max_files must be positive, got {max_files}")
        self.backup_directory = Path(backup_directory)
        self.max_files = max_files
        self.enabled = enabled

    def backup(self, path: Union[str, Path]) -> Optional[Path]:
        """Back up ``path`` as ``<stem>_<timestamp><suffix>``.

        Returns:
            The backup path, or None when backups are disabled or the file
            does not exist yet
        """
        source = Path(path)
        if not self.enabled:
            return None
        if not source.exists():
            logger.debug(f"Nothing to back up, {source} does not exist")
            return None

        self.backup_directory.mkdir(parents=True, exist_ok=True)
        timestamp = datetime.now().strftime(self.timestamp_format)
        target = self.backup_directory / f"{source.stem}_{timestamp}{source.suffix}"
        shutil.copy2(source, target)
        logger.info(f"Created backup: {target}")

        self.prune(source.stem, source.suffix)
        return target

    def backups_for(self, stem: str, suffix: str = ".json") -> List[Path]:
        """Existing backups of one file, newest first."""
        if not self.backup_directory.exists():
            return []
        # Timestamps sort lexicographically
        return sorted(self.backup_directory.glob(f"{stem}_*{suffix}"), reverse=True)

    def prune(self, stem: str, suffix: str = ".json") -> int:
        """Delete all but the newest ``max_files`` backups of one file."""
        removed = 0
        for old in self.backups_for(stem, suffix)[self.max_files:]:
            try:
                old.unlink()
                removed += 1
                logger.debug(f"Deleted old backup: {old.name}")
            except OSError as e:
                logger.warning(f"Failed to delete old backup {old}: {e}")
        return removed
