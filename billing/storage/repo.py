from __future__ import annotations

import glob
import json
import logging
import shutil
import threading
from contextlib import contextmanager
from datetime import date, datetime
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Iterator, List, Mapping, Optional, Sequence, Union
from uuid import uuid4

from pydantic import BaseModel

from billing.errors import StoreFailure

logger = logging.getLogger(__name__)

_LOCKS: Dict[str, threading.RLock] = {}
_LOCKS_GUARD = threading.Lock()


def file_lock(path: Union[str, Path]) -> threading.RLock:
    """Un verrou par fichier, partagé par toutes les instances qui le visent."""
    key = str(Path(path).resolve())
    with _LOCKS_GUARD:
        lock = _LOCKS.get(key)
        if lock is None:
            lock = _LOCKS[key] = threading.RLock()
        return lock


def json_default(o: Any) -> Any:
    if isinstance(o, (date, datetime)):
        return o.isoformat()
    return str(o)


class DuplicateKeyError(ValueError):
    def __init__(self, entity_name: str, field: str, value: Any):
        super().__init__(f"{entity_name} with {field}={value} already exists")
        self.field = field
        self.value = value


class StaleRecordError(ValueError):
    def __init__(self, entity_name: str, obj_id: Any, expected: int, current: int):
        super().__init__(
            f"{entity_name} {obj_id}: version {expected} attendue, {current} en base"
        )
        self.expected = expected
        self.current = current


class JsonFile:
    """
    Fichier JSON protégé par verrou.
    - Rotation de backups (backup_enabled, backup_keep)
    - N'écrit pas si le contenu ne change pas (réduction du bruit et des .bak)
    """

    def __init__(
        self,
        filepath: Union[str, Path],
        empty: Any,
        *,
        backup_enabled: bool = True,
        backup_keep: int = 5,
    ) -> None:
        self.filepath = Path(filepath)
        self._empty = empty
        self.lock = file_lock(self.filepath)
        self.backup_enabled = backup_enabled
        self.backup_keep = max(0, int(backup_keep))

        try:
            self.filepath.parent.mkdir(parents=True, exist_ok=True)
            if not self.filepath.exists():
                self.write(self._empty)
        except OSError as e:
            raise StoreFailure(f"Stockage indisponible: {self.filepath.name}") from e

    def read(self) -> Any:
        try:
            with self.filepath.open("r", encoding="utf-8") as f:
                data = json.load(f)
            return data if isinstance(data, type(self._empty)) else type(self._empty)()
        except FileNotFoundError:
            return type(self._empty)()
        except json.JSONDecodeError:
            # Fichier corrompu → sauvegarde et repart à vide
            logger.error("%s corrompu, copie en .corrupt.json", self.filepath.name)
            try:
                shutil.copy2(self.filepath, self.filepath.with_suffix(".corrupt.json"))
            except OSError:
                logger.exception("Copie du fichier corrompu impossible")
            return type(self._empty)()
        except OSError as e:
            raise StoreFailure(f"Lecture impossible: {self.filepath.name}") from e

    def _rotate_backups(self) -> None:
        if not self.backup_enabled or self.backup_keep <= 0:
            return
        pattern = str(self.filepath.with_suffix(".*.bak.json"))
        files = sorted(glob.glob(pattern))
        # garde les plus récents
        if len(files) > self.backup_keep:
            for old in files[: len(files) - self.backup_keep]:
                try:
                    Path(old).unlink(missing_ok=True)
                except OSError:
                    logger.warning("Suppression du backup %s impossible", old)

    def write(self, data: Any) -> None:
        with self.lock:
            new_dump = json.dumps(data, ensure_ascii=False, indent=2, default=json_default)

            # si contenu identique → ne rien faire
            if self.filepath.exists():
                try:
                    if self.filepath.read_text(encoding="utf-8") == new_dump:
                        return
                except OSError:
                    pass

            try:
                if self.backup_enabled and self.filepath.exists():
                    ts = datetime.now().strftime("%Y%m%d-%H%M%S-%f")
                    shutil.copy2(self.filepath, self.filepath.with_suffix(f".{ts}.bak.json"))
                    self._rotate_backups()

                tmp = self.filepath.with_suffix(".tmp")
                with tmp.open("w", encoding="utf-8") as f:
                    f.write(new_dump)
                tmp.replace(self.filepath)
            except OSError as e:
                raise StoreFailure(f"Écriture impossible: {self.filepath.name}") from e


class JsonRepository:
    """
    Repo JSON générique avec clé primaire configurable.
    - unique : champs supplémentaires soumis à contrainte d'unicité (ex. 'number')
    - version : si présent dans les enregistrements, update() peut vérifier
      la version attendue (verrouillage optimiste)
    """

    def __init__(
        self,
        filepath: Union[str, Path],
        entity_name: str = "entity",
        key: str = "id",
        *,
        unique: Sequence[str] = (),
        backup_enabled: bool = True,
        backup_keep: int = 5,
    ) -> None:
        self.entity_name = entity_name
        self.key = key
        self.unique = tuple(unique)
        self.file = JsonFile(filepath, [], backup_enabled=backup_enabled, backup_keep=backup_keep)

    @property
    def filepath(self) -> Path:
        return self.file.filepath

    @contextmanager
    def transaction(self) -> Iterator[List[Dict[str, Any]]]:
        """Lecture + écriture sous verrou ; la liste reçue est réécrite à la sortie."""
        with self.file.lock:
            data = self.file.read()
            yield data
            self.file.write(data)

    # ---------------- Helpers ---------------- #

    @staticmethod
    def _to_dict(item: Union[BaseModel, Mapping[str, Any]]) -> Dict[str, Any]:
        if isinstance(item, BaseModel):
            return item.model_dump(mode="json")
        return dict(item)

    def _check_unique(self, data: Iterable[Mapping[str, Any]], record: Mapping[str, Any], skip_id: Any = None) -> None:
        for field in (self.key, *self.unique):
            value = record.get(field)
            if value in (None, ""):
                continue
            for d in data:
                if skip_id is not None and str(d.get(self.key)) == str(skip_id):
                    continue
                if str(d.get(field)) == str(value):
                    raise DuplicateKeyError(self.entity_name, field, value)

    # ---------------- CRUD ---------------- #

    def list_all(self) -> List[Dict[str, Any]]:
        return self.file.read()

    def get_by_id(self, obj_id: Any) -> Optional[Dict[str, Any]]:
        k = self.key
        for it in self.file.read():
            if str(it.get(k)) == str(obj_id):
                return it
        return None

    def add(self, item: Union[BaseModel, Mapping[str, Any]]) -> Dict[str, Any]:
        record = self._to_dict(item)
        k = self.key
        if not record.get(k):
            record[k] = uuid4().hex
        with self.transaction() as data:
            self._check_unique(data, record)
            data.append(record)
        return record

    def update(self, item: Union[BaseModel, Mapping[str, Any]], expected_version: Optional[int] = None) -> Dict[str, Any]:
        """
        Remplace l'enregistrement de même clé.
        Avec expected_version : la version en base doit correspondre, l'enregistrement
        écrit porte expected_version + 1.
        """
        record = self._to_dict(item)
        k = self.key
        obj_id = record.get(k)
        if not obj_id:
            raise ValueError(f"Cannot update {self.entity_name} without '{k}'")
        with self.transaction() as data:
            for idx, existing in enumerate(data):
                if str(existing.get(k)) != str(obj_id):
                    continue
                if expected_version is not None:
                    current = int(existing.get("version") or 0)
                    if current != expected_version:
                        raise StaleRecordError(self.entity_name, obj_id, expected_version, current)
                    record["version"] = expected_version + 1
                self._check_unique(data, record, skip_id=obj_id)
                data[idx] = record
                return record
        raise KeyError(f"{self.entity_name} with {k}={obj_id} not found")

    def delete(self, obj_id: Any) -> bool:
        k = self.key
        with self.transaction() as data:
            before = len(data)
            data[:] = [d for d in data if str(d.get(k)) != str(obj_id)]
            return len(data) != before

    # ---------------- Recherches ---------------- #

    def find(self, predicate: Callable[[Dict[str, Any]], bool]) -> List[Dict[str, Any]]:
        return [r for r in self.file.read() if predicate(r)]

    def find_one(self, predicate: Callable[[Dict[str, Any]], bool]) -> Optional[Dict[str, Any]]:
        for r in self.file.read():
            if predicate(r):
                return r
        return None
