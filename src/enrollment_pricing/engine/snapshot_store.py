"""
Snapshot Store - write-once persistence for pricing results.

A snapshot id can be written exactly once. Any second write to the same id
raises SnapshotExistsError, whatever the payload. There is no update or
delete operation.
"""
import json
import logging
import os
import re
import tempfile
import threading
from abc import ABC, abstractmethod
from decimal import Decimal
from pathlib import Path

from .errors import NotFoundError, SnapshotExistsError, ValidationError
from .models import PricingResult

logger = logging.getLogger(__name__)

SNAPSHOT_ID_PATTERN = re.compile(r'^[A-Za-z0-9_-]{1,128}$')


def _json_default(value):
    if isinstance(value, Decimal):
        return str(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def serialize_result(result: PricingResult) -> str:
    """Serialize a result to the stored JSON text. Amounts become decimal strings."""
    return json.dumps(result.to_dict(), default=_json_default, sort_keys=True, indent=2)


def deserialize_result(text: str) -> PricingResult:
    return PricingResult.from_dict(json.loads(text))


class SnapshotStore(ABC):
    """Write-once key space of pricing snapshots keyed by snapshot id."""

    @abstractmethod
    def put(self, result: PricingResult) -> None:
        """Persist `result` under its snapshot id. Raises SnapshotExistsError on reuse."""

    @abstractmethod
    def get(self, snapshot_id: str) -> PricingResult:
        """Return the stored result. Raises NotFoundError for unknown ids."""

    @abstractmethod
    def get_raw(self, snapshot_id: str) -> str:
        """Return the stored JSON text exactly as written."""

    @abstractmethod
    def __contains__(self, snapshot_id: str) -> bool:
        ...

    @abstractmethod
    def count(self) -> int:
        ...


class InMemorySnapshotStore(SnapshotStore):
    """Process-local store. Holds serialized text so callers never share objects."""

    def __init__(self):
        self._snapshots: dict[str, str] = {}
        self._lock = threading.Lock()

    def put(self, result: PricingResult) -> None:
        text = serialize_result(result)
        with self._lock:
            if result.snapshot_id in self._snapshots:
                raise SnapshotExistsError(result.snapshot_id)
            self._snapshots[result.snapshot_id] = text

    def get_raw(self, snapshot_id: str) -> str:
        try:
            return self._snapshots[snapshot_id]
        except KeyError:
            raise NotFoundError(f"Snapshot '{snapshot_id}' not found")

    def get(self, snapshot_id: str) -> PricingResult:
        return deserialize_result(self.get_raw(snapshot_id))

    def __contains__(self, snapshot_id: str) -> bool:
        return snapshot_id in self._snapshots

    def count(self) -> int:
        return len(self._snapshots)


class FileSnapshotStore(SnapshotStore):
    """
    One JSON file per snapshot under `directory`.

    Writes go to a temp file in the same directory, are fsynced, then
    hard-linked to `<snapshot_id>.json`. The link fails when the target
    exists, so the final name is created atomically and at most once.
    """

    def __init__(self, directory: Path):
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)

    def _path(self, snapshot_id: str) -> Path:
        return self.directory / f"{snapshot_id}.json"

    def put(self, result: PricingResult) -> None:
        snapshot_id = result.snapshot_id
        if not SNAPSHOT_ID_PATTERN.match(snapshot_id or ''):
            raise ValidationError(f"Invalid snapshot id '{snapshot_id}'")

        text = serialize_result(result)
        target = self._path(snapshot_id)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{snapshot_id}.", suffix=".tmp", dir=self.directory)
        try:
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                f.write(text)
                f.flush()
                os.fsync(f.fileno())
            try:
                os.link(tmp_name, target)
            except FileExistsError:
                raise SnapshotExistsError(snapshot_id)
        finally:
            os.unlink(tmp_name)

        self._fsync_directory()
        logger.debug("Stored snapshot %s at %s", snapshot_id, target)

    def _fsync_directory(self):
        if not hasattr(os, 'O_DIRECTORY'):
            return
        dir_fd = os.open(self.directory, os.O_RDONLY | os.O_DIRECTORY)
        try:
            os.fsync(dir_fd)
        finally:
            os.close(dir_fd)

    def get_raw(self, snapshot_id: str) -> str:
        if not SNAPSHOT_ID_PATTERN.match(snapshot_id or ''):
            raise NotFoundError(f"Snapshot '{snapshot_id}' not found")
        path = self._path(snapshot_id)
        try:
            with open(path, 'r', encoding='utf-8') as f:
                return f.read()
        except FileNotFoundError:
            raise NotFoundError(f"Snapshot '{snapshot_id}' not found")

    def get(self, snapshot_id: str) -> PricingResult:
        return deserialize_result(self.get_raw(snapshot_id))

    def __contains__(self, snapshot_id: str) -> bool:
        if not SNAPSHOT_ID_PATTERN.match(snapshot_id or ''):
            return False
        return self._path(snapshot_id).exists()

    def count(self) -> int:
        return sum(1 for _ in self.directory.glob('*.json'))
