"""File-backed run history.

One JSON document per idempotency key, stored as ``<runs_dir>/<key>.json``.
"""

import json
import os
from pathlib import Path
from typing import List, Optional

from ledgerrun.storage.base import RunRecord
from ledgerrun.utils.exceptions import PersistenceFault
from ledgerrun.utils.logging import get_logger

logger = get_logger(__name__)


class RunStore:
    """Persist and look up run records by idempotency key.

    ``save`` overwrites an existing record silently. ``create`` is the
    atomic create-if-absent primitive used to reserve a key: exactly one of
    several concurrent callers for the same key gets True.

    Example:
        >>> store = RunStore("./runs")
        >>> if store.create(record):
        ...     ...  # this process owns the key
        >>> store.list()[0].idempotency_key
    """

    def __init__(self, runs_dir: str | Path = "./runs"):
        self.runs_dir = Path(runs_dir)

    def path_for(self, key: str) -> Path:
        if not key or "/" in key or "\\" in key or key.startswith("."):
            raise ValueError(f"Invalid idempotency key: {key!r}")
        return self.runs_dir / f"{key}.json"

    def exists(self, key: str) -> bool:
        return self.path_for(key).exists()

    def load(self, key: str) -> Optional[RunRecord]:
        """Load a record, or None if the key has no record.

        Raises:
            PersistenceFault: If the file exists but cannot be read or parsed
        """
        path = self.path_for(key)
        if not path.exists():
            return None
        return self._read(path)

    def save(self, record: RunRecord) -> Path:
        """Write a record, replacing any existing one for the same key.

        Raises:
            PersistenceFault: If the record cannot be written
        """
        path = self.path_for(record.idempotency_key)
        tmp_path = path.with_name(f".{path.name}.tmp")
        try:
            self.runs_dir.mkdir(parents=True, exist_ok=True)
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(record.to_dict(), f, indent=2)
            os.replace(tmp_path, path)
        except OSError as e:
            raise PersistenceFault(
                f"Failed to save run record {record.idempotency_key}: {e}"
            ) from e

        logger.debug("Saved run record %s", path)
        return path

    def create(self, record: RunRecord) -> bool:
        """Write a record only if none exists for its key.

        Returns:
            True if this call created the record, False if the key was taken

        Raises:
            PersistenceFault: If the record cannot be written
        """
        path = self.path_for(record.idempotency_key)
        try:
            self.runs_dir.mkdir(parents=True, exist_ok=True)
            with open(path, "x", encoding="utf-8") as f:
                json.dump(record.to_dict(), f, indent=2)
        except FileExistsError:
            logger.info("Run record %s already exists", record.idempotency_key)
            return False
        except OSError as e:
            raise PersistenceFault(
                f"Failed to create run record {record.idempotency_key}: {e}"
            ) from e

        logger.debug("Created run record %s", path)
        return True

    def delete(self, key: str) -> bool:
        """Remove a record. Returns False if there was none.

        Raises:
            PersistenceFault: If the record exists but cannot be removed
        """
        path = self.path_for(key)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        except OSError as e:
            raise PersistenceFault(f"Failed to delete run record {key}: {e}") from e

        logger.debug("Deleted run record %s", path)
        return True

    def list(self) -> List[RunRecord]:
        """All records, newest first by timestamp.

        Raises:
            PersistenceFault: If the directory or a record cannot be read
        """
        if not self.runs_dir.exists():
            return []

        try:
            paths = sorted(self.runs_dir.glob("*.json"))
        except OSError as e:
            raise PersistenceFault(f"Failed to list runs in {self.runs_dir}: {e}") from e

        records = [self._read(path) for path in paths]
        records.sort(key=lambda r: r.timestamp, reverse=True)
        return records

    def _read(self, path: Path) -> RunRecord:
        try:
            with open(path, "r", encoding="utf-8") as f:
                return RunRecord.from_dict(json.load(f))
        except (OSError, ValueError, KeyError, TypeError) as e:
            raise PersistenceFault(f"Failed to read run record {path}: {e}") from e
