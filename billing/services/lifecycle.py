from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from datetime import date
from typing import Any, Dict, Generic, List, Tuple, Type, TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from billing import errors
from billing.models.commands import parse_command
from billing.services.line_items import amount_cent, normalize_items
from billing.services.numbering import DocumentNumberAllocator, parse_business_date
from billing.storage.repo import DuplicateKeyError, JsonRepository, StaleRecordError

logger = logging.getLogger(__name__)

D = TypeVar("D", bound=BaseModel)


class DocumentLifecycle(ABC, Generic[D]):
    """
    Cycle de vie commun factures / devis :
    création (numéro alloué à la date métier), lecture, édition par id ou par
    numéro via une commande typée, suppression par numéro.
    Les sous-classes fournissent les modèles, _build() et _recompute().
    """

    model: Type[D]
    create_command: Type[BaseModel]
    update_command: Type[BaseModel]
    entity_name = "document"
    label = "Document"
    item_roles: Tuple[str, ...] = ("services",)
    # groupes qui ne peuvent jamais être vides
    required_roles: Tuple[str, ...] = ("services",)

    def __init__(self, repo: JsonRepository, allocator: DocumentNumberAllocator, prefix: str) -> None:
        self.repo = repo
        self.allocator = allocator
        self.prefix = prefix

    # ----- Hydratation ----- #

    def _hydrate(self, d: Dict[str, Any]) -> D:
        try:
            return self.model.model_validate(d)
        except PydanticValidationError as e:
            logger.error("%s illisible (id=%s): %s", self.entity_name, d.get("id"), e)
            raise errors.StoreFailure(f"{self.label} illisible en base") from e

    def _validated(self, data: Dict[str, Any]) -> D:
        try:
            return self.model.model_validate(data)
        except PydanticValidationError as e:
            fields = sorted({".".join(str(p) for p in err["loc"]) for err in e.errors()})
            raise errors.ValidationError("Champs invalides: " + ", ".join(fields)) from e

    # ----- Lecture ----- #

    def list_all(self) -> List[D]:
        out: List[D] = []
        for d in self.repo.list_all():
            try:
                out.append(self.model.model_validate(d))
            except PydanticValidationError:
                # On ignore les entrées invalides pour ne pas casser la liste
                logger.warning("%s ignoré (id=%s): enregistrement invalide", self.entity_name, d.get("id"))
                continue
        return out

    def get(self, number: str) -> D:
        d = self.repo.find_one(lambda x: x.get("number") == number)
        if d is None:
            raise errors.NotFound(f"{self.label} introuvable: {number}")
        return self._hydrate(d)

    def get_by_id(self, doc_id: str) -> D:
        d = self.repo.get_by_id(doc_id)
        if d is None:
            raise errors.NotFound(f"{self.label} introuvable (id={doc_id})")
        return self._hydrate(d)

    # ----- Création ----- #

    @abstractmethod
    def _build(self, cmd: Any) -> Dict[str, Any]:
        """Champs du document (hors numéro et date) depuis la commande de création."""

    @abstractmethod
    def _recompute(self, doc: D) -> D:
        """Totaux et compteurs recalculés à partir des lignes."""

    def create(self, payload: Any) -> D:
        cmd = parse_command(self.create_command, payload)
        if cmd.business_date in (None, ""):
            raise errors.ValidationError("Champ requis: date")
        business_date: date = parse_business_date(cmd.business_date)
        fields = self._build(cmd)

        def persist(number: str) -> D:
            doc = self._recompute(self._validated({**fields, "number": number, "created_at": business_date}))
            self.repo.add(doc)
            return doc

        doc = self.allocator.claim(self.prefix, business_date, persist)
        logger.info("%s %s créé (total %d cts)", self.entity_name, doc.number, doc.total_cent)
        return doc

    # ----- Édition ----- #

    def edit(self, number: str, changes: Any) -> D:
        return self._apply_update(self.get(number), changes)

    def edit_by_id(self, doc_id: str, changes: Any) -> D:
        return self._apply_update(self.get_by_id(doc_id), changes)

    def _apply_update(self, doc: D, payload: Any) -> D:
        cmd = parse_command(self.update_command, payload)
        if cmd.expected_version is not None and cmd.expected_version != doc.version:
            raise errors.Conflict(
                f"{self.label} {doc.number} modifié entre-temps "
                f"(version {doc.version}, attendue {cmd.expected_version})"
            )
        changes = cmd.changes()
        data = doc.model_dump()
        for role in self.item_roles:
            if role in changes:
                data[role] = normalize_items(changes.pop(role), role=role, required=role in self.required_roles)
        if "discount" in changes or "discount_cent" in changes:
            data["discount_cent"] = amount_cent(changes.pop("discount_cent", None), changes.pop("discount", None))
        data.update(changes)

        updated = self._recompute(self._validated(data))
        return self._save(updated, expected_version=doc.version)

    def _save(self, doc: D, expected_version: int) -> D:
        try:
            record = self.repo.update(doc, expected_version=expected_version)
        except StaleRecordError as e:
            raise errors.Conflict(f"{self.label} {doc.number} modifié entre-temps") from e
        except DuplicateKeyError as e:
            raise errors.Conflict(str(e)) from e
        except KeyError as e:
            raise errors.NotFound(f"{self.label} introuvable: {doc.number}") from e
        doc.version = record["version"]
        return doc

    # ----- Suppression ----- #

    def delete(self, number: str) -> None:
        d = self.repo.find_one(lambda x: x.get("number") == number)
        if d is None or not self.repo.delete(d.get("id")):
            raise errors.NotFound(f"{self.label} introuvable: {number}")
        logger.info("%s %s supprimé", self.entity_name, number)

    # ----- Helpers ----- #

    @staticmethod
    def _discount_cent(cmd: Any) -> int:
        return amount_cent(cmd.discount_cent, cmd.discount)


def numbers_in(repo: JsonRepository):
    """Numéros déjà en base (initialisation des compteurs de l'allocateur)."""
    return lambda: [str(d.get("number") or "") for d in repo.list_all()]
