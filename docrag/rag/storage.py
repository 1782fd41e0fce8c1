"""Directory-backed JSON storage, one file per collection."""
import json
import os
import re
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

import structlog

from docrag.exceptions import ConfigurationError, StorageError

logger = structlog.get_logger()

COLLECTION_NAME_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_-]{0,99}$")
FILE_SUFFIX = ".json"


def validate_collection_name(name: str) -> str:
    """Return ``name`` unchanged if it is filesystem-safe.

    Raises:
        ConfigurationError: For empty names, path separators, dots or
            anything outside ``[A-Za-z0-9_-]``
    """
    if not isinstance(name, str) or not COLLECTION_NAME_PATTERN.match(name):
        raise ConfigurationError(
            "Collection names must be 1-100 characters of letters, digits, '_' or '-' "
            "and start with a letter or digit",
            operation="validate_collection_name",
            collection=name,
        )
    return name


class CollectionStorage:
    """Reads and rewrites whole collection files in a single directory."""

    def __init__(self, directory: Path):
        self.directory = Path(directory)

    def path_for(self, name: str) -> Path:
        return self.directory / f"{validate_collection_name(name)}{FILE_SUFFIX}"

    def list_names(self) -> List[str]:
        """Collection names that have a backing file, sorted."""
        if not self.directory.exists():
            return []
        return sorted(
            path.stem
            for path in self.directory.glob(f"*{FILE_SUFFIX}")
            if path.is_file() and COLLECTION_NAME_PATTERN.match(path.stem)
        )

    def read(self, name: str) -> List[Dict[str, Any]]:
        """Load the raw records of a collection.

        Raises:
            StorageError: If the file is missing, unreadable or not a JSON list
        """
        path = self.path_for(name)
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            raise StorageError(
                f"Failed to read collection file: {e}",
                operation="read",
                collection=name,
                path=str(path),
            ) from e

        if not isinstance(data, list):
            raise StorageError(
                "Collection file must contain a JSON list of records",
                operation="read",
                collection=name,
                path=str(path),
            )
        return data

    def write(self, name: str, records: List[Dict[str, Any]]) -> None:
        """Atomically replace a collection file with ``records``.

        Raises:
            StorageError: If the file cannot be written
        """
        path = self.path_for(name)
        tmp_path = None
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(
                prefix=f".{name}.", suffix=".tmp", dir=self.directory
            )
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(records, f, indent=2)
            os.replace(tmp_path, path)
        except (OSError, TypeError, ValueError) as e:
            if tmp_path and os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise StorageError(
                f"Failed to write collection file: {e}",
                operation="write",
                collection=name,
                path=str(path),
            ) from e

        logger.debug("collection_file_written", collection=name, records=len(records))

    def delete(self, name: str) -> bool:
        """Remove a collection file. Returns False if it did not exist."""
        path = self.path_for(name)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        except OSError as e:
            raise StorageError(
                f"Failed to delete collection file: {e}",
                operation="delete",
                collection=name,
                path=str(path),
            ) from e
        return True

    def modified_at(self, name: str) -> Optional[datetime]:
        path = self.path_for(name)
        if not path.exists():
            return None
        return datetime.fromtimestamp(path.stat().st_mtime, tz=timezone.utc)
