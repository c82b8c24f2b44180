from __future__ import annotations

from datetime import date
from typing import Any, Dict, List, Optional

from billing.config import Settings, load_settings
from billing.models.commands import QuoteCreate, QuoteUpdate
from billing.models.quote import Quote
from billing.services.lifecycle import DocumentLifecycle, numbers_in
from billing.services.line_items import normalize_items
from billing.services.numbering import DocumentNumberAllocator, parse_business_date
from billing.services.totals import compute
from billing.storage.counters import JsonCounterStore
from billing.storage.repo import JsonRepository

MATERIAL_PREFIX = "(Material) "


class QuoteService(DocumentLifecycle[Quote]):
    model = Quote
    create_command = QuoteCreate
    update_command = QuoteUpdate
    entity_name = "quote"
    label = "Devis"
    item_roles = ("services", "materials")
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
            self.settings.quotes_json, entity_name="quote", key="id", unique=("number",),
            backup_enabled=st.backup_enabled, backup_keep=st.backup_keep,
        )
        counters = counters or JsonCounterStore(self.settings.counters_json)
        allocator = DocumentNumberAllocator(
            counters, existing=numbers_in(repo), max_attempts=self.settings.numbering.max_attempts
        )
        super().__init__(repo, allocator, self.settings.numbering.quote_prefix)

    # ----- Création / Recalc ----- #

    def _build(self, cmd: QuoteCreate) -> Dict[str, Any]:
        return {
            "client_name": cmd.client_name,
            "client_phone": cmd.client_phone,
            "client_address": cmd.client_address,
            "post_code": cmd.post_code,
            "category": cmd.category,
            "services": normalize_items(cmd.services, role="services", required=True),
            "materials": normalize_items(cmd.materials, role="materials"),
            "discount_cent": self._discount_cent(cmd),
            "valid_until": cmd.valid_until,
            "notes": cmd.notes or "",
            "status": "DRAFT",
        }

    def _recompute(self, q: Quote) -> Quote:
        totals = compute([q.services, q.materials], q.discount_cent)
        q.subtotal_cent = totals.subtotal_cent
        q.discount_cent = totals.discount_cent
        q.total_cent = totals.total_cent
        q.number_of_services = len(q.services)
        q.number_of_materials = len(q.materials)
        return q

    def list_all(self) -> List[Quote]:
        # plus récents d'abord (date métier)
        return sorted(super().list_all(), key=lambda q: q.created_at, reverse=True)

    # ----- Conversion en facture ----- #

    def invoice_payload(self, number: str, business_date: Any = None) -> Dict[str, Any]:
        """
        Payload prêt pour InvoiceService.create() : services + matériaux
        (préfixés '(Material) '), remise à plat, données client.
        payment_option reste à fournir par l'appelant.
        """
        q = self.get(number)
        d = parse_business_date(business_date) if business_date else date.today()
        services = [
            {"name": s.name, "unit_price_cent": s.unit_price_cent, "qty": s.qty} for s in q.services
        ] + [
            {"name": f"{MATERIAL_PREFIX}{m.name}", "unit_price_cent": m.unit_price_cent, "qty": m.qty}
            for m in q.materials
        ]
        return {
            "client_name": q.client_name,
            "client_phone": q.client_phone,
            "client_address": q.client_address,
            "post_code": q.post_code,
            "category": q.category,
            "services": services,
            "discount_cent": q.discount_cent,
            "paid_cent": 0,
            "date": d.isoformat(),
            "notes": (q.notes or "").strip(),
        }
