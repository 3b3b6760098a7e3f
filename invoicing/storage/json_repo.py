from __future__ import annotations

import glob
import json
import logging
import os
import shutil
import tempfile
import threading
from datetime import date, datetime
from pathlib import Path
from typing import Any, Callable, Dict, Generic, Iterable, List, Mapping, Optional, TypeVar, Union
from uuid import uuid4

from pydantic import BaseModel

from invoicing.errors import DuplicateRecord, RecordNotFound, StoreError

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=Union[BaseModel, Mapping[str, Any]])
Predicate = Callable[[Dict[str, Any]], bool]


def _json_default(o: Any) -> Any:
    if isinstance(o, (date, datetime)):
        return o.isoformat()
    return str(o)


class JsonRepository(Generic[T]):
    """
    Generic JSON table with a configurable primary key.
    - backup rotation (backup_enabled, backup_keep)
    - skips the write when the content is unchanged
    - every write is a temp file + os.replace, so readers see the old table
      or the new one, never a mix
    - ``lock`` can be shared between repositories so that a store can group
      writes on several tables and keep readers out meanwhile
    """

    def __init__(
        self,
        filepath: Union[str, Path],
        entity_name: str = "entity",
        key: str = "id",
        *,
        backup_enabled: bool = True,
        backup_keep: int = 5,
        lock: Optional[threading.RLock] = None,
    ) -> None:
        self.filepath = Path(filepath)
        self.entity_name = entity_name
        self.key = key
        self._lock = lock or threading.RLock()
        self.backup_enabled = backup_enabled
        self.backup_keep = max(0, int(backup_keep))

        try:
            self.filepath.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StoreError(f"Cannot create data directory {self.filepath.parent}") from e
        if not self.filepath.exists():
            self._write_raw([])

    @property
    def lock(self) -> threading.RLock:
        return self._lock

    # ---------------- low level I/O ---------------- #

    def _read_raw(self) -> List[Dict[str, Any]]:
        with self._lock:
            try:
                with self.filepath.open("r", encoding="utf-8") as f:
                    data = json.load(f)
                return data if isinstance(data, list) else []
            except FileNotFoundError:
                return []
            except json.JSONDecodeError as e:
                # corrupt file: keep a copy aside and start from an empty table
                backup = self.filepath.with_suffix(".corrupt.json")
                logger.warning("Corrupt %s table %s (%s), copied to %s", self.entity_name, self.filepath, e, backup)
                try:
                    shutil.copy2(self.filepath, backup)
                except OSError as copy_err:
                    raise StoreError(f"Cannot back up corrupt file {self.filepath}") from copy_err
                return []
            except OSError as e:
                raise StoreError(f"Cannot read {self.filepath}") from e

    def _rotate_backups(self) -> None:
        if not self.backup_enabled or self.backup_keep <= 0:
            return
        pattern = str(self.filepath.with_suffix(".*.bak.json"))
        files = sorted(glob.glob(pattern))
        if len(files) > self.backup_keep:
            for old in files[: len(files) - self.backup_keep]:
                try:
                    Path(old).unlink(missing_ok=True)
                except OSError as e:
                    logger.warning("Cannot remove old backup %s: %s", old, e)

    def _write_raw(self, data: Iterable[Mapping[str, Any]]) -> None:
        with self._lock:
            new_dump = json.dumps(list(data), ensure_ascii=False, indent=2, default=_json_default)

            try:
                if self.filepath.exists() and self.filepath.read_text(encoding="utf-8") == new_dump:
                    return

                if self.backup_enabled and self.filepath.exists():
                    ts = datetime.now().strftime("%Y%m%d-%H%M%S-%f")
                    shutil.copy2(self.filepath, self.filepath.with_suffix(f".{ts}.bak.json"))
                    self._rotate_backups()

                fd, tmp = tempfile.mkstemp(prefix=self.filepath.name, suffix=".tmp", dir=self.filepath.parent)
                try:
                    with os.fdopen(fd, "w", encoding="utf-8") as f:
                        f.write(new_dump)
                    os.replace(tmp, self.filepath)
                except BaseException:
                    Path(tmp).unlink(missing_ok=True)
                    raise
            except OSError as e:
                raise StoreError(f"Cannot write {self.entity_name} table {self.filepath}") from e

    # ---------------- Helpers ---------------- #

    @staticmethod
    def _to_dict(item: T) -> Dict[str, Any]:
        if isinstance(item, BaseModel):
            return item.model_dump(mode="json")
        if isinstance(item, Mapping):
            return dict(item)
        return dict(item.__dict__)  # type: ignore[arg-type]

    def _matches(self, row: Mapping[str, Any], obj_id: Any) -> bool:
        return str(row.get(self.key)) == str(obj_id)

    # ---------------- CRUD ---------------- #

    def list_all(self) -> List[Dict[str, Any]]:
        return self._read_raw()

    def get_by_id(self, obj_id: Any) -> Optional[Dict[str, Any]]:
        for it in self._read_raw():
            if self._matches(it, obj_id):
                return it
        return None

    def add(self, item: T) -> Dict[str, Any]:
        record = self._to_dict(item)
        k = self.key
        if not record.get(k):
            record[k] = uuid4().hex
        with self._lock:
            data = self._read_raw()
            if any(self._matches(d, record[k]) for d in data):
                raise DuplicateRecord(f"{self.entity_name} with {k}={record[k]} already exists")
            data.append(record)
            self._write_raw(data)
        return record

    def update(self, item: T) -> Dict[str, Any]:
        record = self._to_dict(item)
        k = self.key
        obj_id = record.get(k)
        if not obj_id:
            raise ValueError(f"Cannot update {self.entity_name} without '{k}'")
        with self._lock:
            data = self._read_raw()
            for idx, existing in enumerate(data):
                if self._matches(existing, obj_id):
                    merged = {**existing, **record}
                    data[idx] = merged
                    self._write_raw(data)
                    return merged
        raise RecordNotFound(f"{self.entity_name} with {k}={obj_id} not found")

    def upsert(self, item: T) -> Dict[str, Any]:
        try:
            return self.update(item)
        except RecordNotFound:
            return self.add(item)

    def delete(self, obj_id: Any) -> bool:
        with self._lock:
            data = self._read_raw()
            new_data = [d for d in data if not self._matches(d, obj_id)]
            changed = len(new_data) != len(data)
            if changed:
                self._write_raw(new_data)
        return changed

    def delete_where(self, predicate: Predicate) -> int:
        with self._lock:
            data = self._read_raw()
            new_data = [d for d in data if not predicate(d)]
            removed = len(data) - len(new_data)
            if removed:
                self._write_raw(new_data)
        return removed

    def replace_where(self, predicate: Predicate, items: Iterable[T]) -> List[Dict[str, Any]]:
        """Drop the rows matching ``predicate`` and append ``items`` in one write."""
        records = [self._to_dict(it) for it in items]
        for r in records:
            if not r.get(self.key):
                r[self.key] = uuid4().hex
        with self._lock:
            data = [d for d in self._read_raw() if not predicate(d)]
            data.extend(records)
            self._write_raw(data)
        return records

    # ---------------- Lookups ---------------- #

    def find(self, predicate: Predicate) -> List[Dict[str, Any]]:
        return [r for r in self._read_raw() if predicate(r)]

    def find_one(self, predicate: Predicate) -> Optional[Dict[str, Any]]:
        for r in self._read_raw():
            if predicate(r):
                return r
        return None
