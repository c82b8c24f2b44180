from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional, Union

from billing.storage.repo import JsonFile

logger = logging.getLogger(__name__)


class CounterCeilingReached(Exception):
    def __init__(self, scope: str, ceiling: int):
        super().__init__(f"compteur {scope} plein ({ceiling})")
        self.scope = scope
        self.ceiling = ceiling


class JsonCounterStore:
    """
    Compteurs nommés dans un fichier JSON :
        {"INV-0325-1": {"value": 3, "updated_at": "..."}}
    increment() est atomique pour toutes les instances du processus
    (verrou par fichier, cf. repo.file_lock).
    """

    def __init__(self, filepath: Union[str, Path], *, backup_enabled: bool = False, backup_keep: int = 0) -> None:
        self.file = JsonFile(filepath, {}, backup_enabled=backup_enabled, backup_keep=backup_keep)

    def peek(self, scope: str) -> int:
        entry = self.file.read().get(scope) or {}
        return int(entry.get("value") or 0)

    def increment(
        self,
        scope: str,
        *,
        ceiling: Optional[int] = None,
        seed: Optional[Callable[[], int]] = None,
    ) -> int:
        """
        Incrémente puis renvoie la nouvelle valeur.
        seed() donne la valeur de départ d'un compteur inexistant (0 par défaut).
        Au plafond : CounterCeilingReached, le compteur n'est pas modifié.
        """
        with self.file.lock:
            data = self.file.read()
            entry = data.get(scope)
            if entry is None:
                current = int(seed()) if seed else 0
                logger.debug("compteur %s créé à %d", scope, current)
            else:
                current = int(entry.get("value") or 0)

            if ceiling is not None and current >= ceiling:
                raise CounterCeilingReached(scope, ceiling)

            value = current + 1
            data[scope] = {"value": value, "updated_at": datetime.now().isoformat(timespec="seconds")}
            self.file.write(data)
            return value
