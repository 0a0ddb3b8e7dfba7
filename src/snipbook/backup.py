"""Backup utilities for snipbook.

A backup is a full export bundle (content included) written to the backup
directory. Provides:
- Manual and automatic (interval based) backups
- Rotation by count
- Listing with notebook/snippet statistics
- Restore through the merge engine
"""
import json
import logging
import re
from datetime import datetime, timedelta, timezone
from pathlib import Path
from threading import Lock
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Union

from snipbook.config import config
from snipbook.services.export_service import (
    ExportOptions,
    export_to_file,
    load_import_file,
)
from snipbook.services.merge_service import MergePolicy, MergeResult
from snipbook.utils import sanitize_for_terminal

if TYPE_CHECKING:
    from snipbook.services.store import Store

logger = logging.getLogger(__name__)

TIMESTAMP_FORMAT = "%Y%m%d-%H%M%S"

# backup-20240105-093000.json, backup-auto-20240105-093000.json,
# backup-20240105-093000-before-import.json
_BACKUP_NAME = re.compile(r"^backup-(auto-)?(\d{8}-\d{6})(?:-[A-Za-z0-9_\-]+)?\.json$")


class BackupManager:
    """Manages store backups with rotation."""

    def __init__(
        self,
        backup_dir: Optional[Union[str, Path]] = None,
        max_backups: Optional[int] = None,
        auto_interval: Optional[timedelta] = None,
    ):
        """Initialize the backup manager.

        Args:
            backup_dir: Directory for backups. Defaults to config.
            max_backups: Maximum number of backups to keep.
            auto_interval: Minimum time between automatic backups.
        """
        self.backup_dir = Path(backup_dir) if backup_dir else config.get_backup_path()
        self.backup_dir.mkdir(parents=True, exist_ok=True)
        self.max_backups = max_backups or config.max_backups
        self.auto_interval = auto_interval or timedelta(
            minutes=config.auto_backup_interval_minutes
        )
        self._lock = Lock()

    def _backup_path(self, now: datetime, label: Optional[str], auto: bool) -> Path:
        stem = "backup-auto-" if auto else "backup-"
        stem += now.strftime(TIMESTAMP_FORMAT)
        label_part = sanitize_for_terminal(label) if label else ""
        if label_part:
            stem += f"-{label_part}"
        path = self.backup_dir / f"{stem}.json"
        counter = 1
        while path.exists():
            path = self.backup_dir / f"{stem}-{counter}.json"
            counter += 1
        return path

    def create_backup(
        self,
        store: "Store",
        label: Optional[str] = None,
        auto: bool = False,
        now: Optional[datetime] = None,
    ) -> Path:
        """Write a full backup of the store and rotate old ones.

        Args:
            store: The store to back up.
            label: Optional label to include in the filename.
            auto: Mark the backup as automatic.
            now: Timestamp to use (defaults to the current UTC time).

        Returns:
            Path to the backup file.

        Raises:
            StorageError: If the backup cannot be written.
        """
        with self._lock:
            now = now or datetime.now(timezone.utc)
            backup_path = self._backup_path(now, label, auto)
            export_to_file(store, backup_path, ExportOptions(include_content=True))

            size_kb = backup_path.stat().st_size / 1024
            kind = "Automatic backup" if auto else "Backup"
            logger.info(f"{kind} created: {backup_path} ({size_kb:.1f} KB)")

            self._rotate_backups()
            return backup_path

    def _backup_files(self) -> List[Path]:
        """Backup files, newest first by the timestamp in their names."""
        found = []
        for path in self.backup_dir.glob("backup-*.json"):
            match = _BACKUP_NAME.match(path.name)
            if match:
                found.append((match.group(2), path.stat().st_mtime, path))
        found.sort(key=lambda item: (item[0], item[1]), reverse=True)
        return [path for _, _, path in found]

    def _rotate_backups(self) -> int:
        """Remove the oldest backups beyond max_backups.

        Returns:
            Number of backups removed.
        """
        removed = 0
        for backup in self._backup_files()[self.max_backups:]:
            try:
                backup.unlink()
                removed += 1
                logger.debug(f"Removed old backup (count limit): {backup}")
            except OSError as e:
                logger.warning(f"Could not remove old backup {backup.name}: {e}")

        if removed > 0:
            logger.info(f"Rotated {removed} old backup(s)")
        return removed

    @staticmethod
    def _read_stats(path: Path) -> Dict[str, int]:
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
            return {
                "notebooks": len(data.get("notebooks", {})),
                "snippets": len(data.get("snippets", {})),
                "root_notebooks": len(data.get("root_notebooks", [])),
                "readable": True,
            }
        except (OSError, ValueError, AttributeError, TypeError) as e:
            logger.debug(f"Could not read backup stats from {path.name}: {e}")
            return {"notebooks": 0, "snippets": 0, "root_notebooks": 0, "readable": False}

    def list_backups(self) -> List[Dict[str, Any]]:
        """List all available backups, newest first.

        Returns:
            List of backup metadata dictionaries. Unreadable files are
            listed with zero counts and readable=False.
        """
        backups = []
        for path in self._backup_files():
            stat = path.stat()
            info: Dict[str, Any] = {
                "path": str(path),
                "name": path.name,
                "auto": path.name.startswith("backup-auto-"),
                "size_bytes": stat.st_size,
                "created_at": datetime.fromtimestamp(
                    stat.st_mtime, tz=timezone.utc
                ).isoformat(),
            }
            info.update(self._read_stats(path))
            backups.append(info)
        return backups

    def last_auto_backup_time(self) -> Optional[datetime]:
        for path in self._backup_files():
            match = _BACKUP_NAME.match(path.name)
            if match and match.group(1):
                return datetime.strptime(match.group(2), TIMESTAMP_FORMAT).replace(
                    tzinfo=timezone.utc
                )
        return None

    def maybe_auto_backup(
        self, store: "Store", now: Optional[datetime] = None
    ) -> Optional[Path]:
        """Create an automatic backup if the interval has elapsed.

        Returns:
            Path to the new backup, or None if none was due.
        """
        now = now or datetime.now(timezone.utc)
        last = self.last_auto_backup_time()
        if last is not None and now - last < self.auto_interval:
            return None
        return self.create_backup(store, auto=True, now=now)

    def restore_backup(
        self,
        store: "Store",
        backup_path: Union[str, Path],
        policy: MergePolicy = MergePolicy.OVERWRITE_ALL,
        safety_backup: bool = True,
    ) -> MergeResult:
        """Merge a backup into the store.

        The backup is parsed before anything changes. By default the
        current state is saved first as a "pre-restore" backup.

        Raises:
            StorageError: If the backup cannot be read.
            SerializationError: If it is not a valid bundle.
        """
        bundle = load_import_file(backup_path)
        if safety_backup:
            self.create_backup(store, label="pre-restore")
        result = store.merge_bundle(bundle, policy)
        logger.info(f"Restored from {Path(backup_path).name}: {result.summary()}")
        return result

    def delete_backup(self, backup_path: Union[str, Path]) -> bool:
        """Delete one backup file inside the backup directory."""
        path = Path(backup_path)
        if path.parent.resolve() != self.backup_dir.resolve():
            raise ValueError(f"{path} is not inside {self.backup_dir}")
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        logger.info(f"Deleted backup {path.name}")
        return True


def backup_now(store: "Store", label: Optional[str] = None) -> Path:
    """Convenience function to create a backup in the configured directory.

    Example:
        from snipbook.backup import backup_now
        path = backup_now(store, label="before-cleanup")
    """
    return BackupManager().create_backup(store, label=label)
