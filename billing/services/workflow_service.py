from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Optional

from pydantic import BaseModel

from billing import errors
from billing.config import Settings, configure_logging, load_settings
from billing.models.invoice import Invoice
from billing.services.invoice_service import InvoiceService
from billing.services.quote_service import QuoteService
from billing.storage.counters import JsonCounterStore

logger = logging.getLogger(__name__)


class Outcome(BaseModel):
    """Résultat renvoyé à la couche requête : valeur ou échec typé (kind, message)."""
    ok: bool
    value: Any = None
    error: Optional[Dict[str, str]] = None


def _dump(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if isinstance(value, list):
        return [_dump(v) for v in value]
    return value


class WorkflowService:
    """
    Point d'entrée de la couche requête.
    Chaque opération renvoie un Outcome ; aucune exception ne sort d'ici et
    les erreurs inattendues ne sont jamais recopiées telles quelles.
    """

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or load_settings()
        counters = JsonCounterStore(self.settings.counters_json)
        self.invoices = InvoiceService(self.settings, counters=counters)
        self.quotes = QuoteService(self.settings, counters=counters)

    def _run(self, op: str, fn: Callable[..., Any], *args: Any) -> Outcome:
        try:
            value = fn(*args)
        except errors.BillingError as e:
            logger.info("%s refusé (%s): %s", op, e.kind, e.message)
            return Outcome(ok=False, error=e.to_dict())
        except Exception as e:
            logger.exception("%s: erreur inattendue", op)
            return Outcome(ok=False, error=errors.to_failure(e))
        return Outcome(ok=True, value=_dump(value))

    # ---------- Factures ----------
    def create_invoice(self, payload: Any) -> Outcome:
        return self._run("create_invoice", self.invoices.create, payload)

    def list_invoices(self) -> Outcome:
        return self._run("list_invoices", self.invoices.list_all)

    def get_invoice(self, number: str) -> Outcome:
        return self._run("get_invoice", self.invoices.get, number)

    def edit_invoice(self, number: str, changes: Any) -> Outcome:
        return self._run("edit_invoice", self.invoices.edit, number, changes)

    def edit_invoice_by_id(self, invoice_id: str, changes: Any) -> Outcome:
        return self._run("edit_invoice_by_id", self.invoices.edit_by_id, invoice_id, changes)

    def apply_payment(self, number: str, payment: Any) -> Outcome:
        return self._run("apply_payment", self.invoices.apply_payment, number, payment)

    def delete_invoice(self, number: str) -> Outcome:
        return self._run("delete_invoice", self.invoices.delete, number)

    # ---------- Devis ----------
    def create_quote(self, payload: Any) -> Outcome:
        return self._run("create_quote", self.quotes.create, payload)

    def list_quotes(self) -> Outcome:
        return self._run("list_quotes", self.quotes.list_all)

    def get_quote(self, number: str) -> Outcome:
        return self._run("get_quote", self.quotes.get, number)

    def edit_quote(self, number: str, changes: Any) -> Outcome:
        return self._run("edit_quote", self.quotes.edit, number, changes)

    def edit_quote_by_id(self, quote_id: str, changes: Any) -> Outcome:
        return self._run("edit_quote_by_id", self.quotes.edit_by_id, quote_id, changes)

    def delete_quote(self, number: str) -> Outcome:
        return self._run("delete_quote", self.quotes.delete, number)

    def quote_invoice_payload(self, number: str, business_date: Any = None) -> Outcome:
        return self._run("quote_invoice_payload", self.quotes.invoice_payload, number, business_date)

    # Devis accepté → facture
    def convert_quote(self, number: str, payment_option: str, business_date: Any = None) -> Outcome:
        return self._run("convert_quote", self._convert_quote, number, payment_option, business_date)

    def _convert_quote(self, number: str, payment_option: str, business_date: Any) -> Invoice:
        q = self.quotes.get(number)
        if q.status != "ACCEPTED":
            raise errors.ValidationError(f"Devis {number} non accepté (statut {q.status})")
        payload = self.quotes.invoice_payload(number, business_date)
        payload["payment_option"] = payment_option
        inv = self.invoices.create(payload)
        logger.info("devis %s converti en facture %s", number, inv.number)
        return inv


def open_workflow(data_dir: Any = None) -> WorkflowService:
    """
    Démarrage : settings + logging + stockage.
    Un stockage inaccessible à ce stade lève StoreFailure (fatal pour le processus).
    """
    settings = load_settings(data_dir)
    configure_logging(settings.log_level)
    wf = WorkflowService(settings)
    logger.info("stockage prêt dans %s", settings.data_dir)
    return wf
