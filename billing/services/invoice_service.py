# billing/services/invoice_service.py
from __future__ import annotations

import logging
from datetime import date
from typing import Any, Dict, Optional

from billing import errors
from billing.config import Settings, load_settings
from billing.models.commands import InvoiceCreate, InvoiceUpdate, PaymentCommand, parse_command
from billing.models.invoice import Invoice, PaymentRecord
from billing.services.lifecycle import DocumentLifecycle, numbers_in
from billing.services.line_items import amount_cent, clean_decimal, normalize_items
from billing.services.numbering import DocumentNumberAllocator
from billing.services.totals import compute, status_for
from billing.storage.counters import JsonCounterStore
from billing.storage.repo import JsonRepository

logger = logging.getLogger(__name__)


class InvoiceService(DocumentLifecycle[Invoice]):
    model = Invoice
    create_command = InvoiceCreate
    update_command = InvoiceUpdate
    entity_name = "invoice"
    label = "Facture"
    item_roles = ("services",)
    required_roles = ("services",)

    def __init__(
        self,
        settings: Optional[Settings] = None,
        *,
        repo: Optional[JsonRepository] = None,
        counters: Optional[JsonCounterStore] = None,
    ) -> None:
        self.settings = settings or load_settings()
        st = self.settings.storage
        repo = repo or JsonRepository(
            self.settings.invoices_json, entity_name="invoice", key="id", unique=("number",),
            backup_enabled=st.backup_enabled, backup_keep=st.backup_keep,
        )
        counters = counters or JsonCounterStore(self.settings.counters_json)
        allocator = DocumentNumberAllocator(
            counters, existing=numbers_in(repo), max_attempts=self.settings.numbering.max_attempts
        )
        super().__init__(repo, allocator, self.settings.numbering.invoice_prefix)

    # ----------- création -----------
    def _build(self, cmd: InvoiceCreate) -> Dict[str, Any]:
        services = normalize_items(cmd.services, role="services", required=True)
        paid = amount_cent(cmd.paid_cent, cmd.paid_amount)
        payments = [PaymentRecord(amount_cent=paid)] if paid > 0 else []
        return {
            "client_name": cmd.client_name,
            "client_phone": cmd.client_phone,
            "client_address": cmd.client_address,
            "post_code": cmd.post_code,
            "payment_option": cmd.payment_option,
            "category": cmd.category,
            "services": services,
            "discount_cent": self._discount_cent(cmd),
            "paid_cent": paid,
            "payments": payments,
            "notes": cmd.notes or "",
        }

    # ----------- totaux -----------
    def _recompute(self, inv: Invoice) -> Invoice:
        totals = compute([inv.services], inv.discount_cent, inv.paid_cent)
        inv.subtotal_cent = totals.subtotal_cent
        inv.discount_cent = totals.discount_cent
        inv.total_cent = totals.total_cent
        inv.remaining_cent = totals.remaining_cent
        inv.status = status_for(totals, inv.paid_cent)
        inv.number_of_services = len(inv.services)
        return inv

    # ----------- encaissement -----------
    def apply_payment(self, number: str, payment: Any) -> Invoice:
        """
        Ajoute un encaissement (delta, pas un montant cumulé).
        - payment_id déjà connu : aucun effet, la facture est renvoyée telle quelle
        - reste à payer à 0 : référence et date de paiement enregistrées
        """
        cmd = parse_command(PaymentCommand, payment)
        if cmd.amount_cent is None and cmd.amount in (None, ""):
            raise errors.ValidationError("Champ requis: amount")
        raw = cmd.amount_cent if cmd.amount_cent is not None else cmd.amount
        d = clean_decimal(raw)
        if d is None:
            raise errors.ValidationError(f"Montant invalide: {raw!r}")
        if d < 0:
            raise errors.ValidationError("Le montant d'un encaissement ne peut pas être négatif")
        delta = amount_cent(cmd.amount_cent, cmd.amount)

        inv = self.get(number)
        if inv.has_payment(cmd.payment_id):
            logger.info("encaissement %s déjà appliqué sur %s", cmd.payment_id, number)
            return inv

        loaded_version = inv.version
        inv.paid_cent += delta
        inv.payments.append(PaymentRecord(
            payment_id=cmd.payment_id, amount_cent=delta, reference_number=cmd.reference_number,
        ))
        self._recompute(inv)

        if inv.remaining_cent == 0:
            inv.reference_number = cmd.reference_number or inv.reference_number
            inv.paid_date = cmd.paid_date or inv.paid_date or date.today()
            logger.info("facture %s soldée (réf. %s)", number, inv.reference_number)

        return self._save(inv, expected_version=loaded_version)
