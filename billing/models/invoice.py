from __future__ import annotations
from pydantic import BaseModel, ConfigDict, Field
from typing import List, Literal, Optional
from datetime import date, datetime
from .common import gen_id, LineItem

InvoiceStatus = Literal["OPEN", "PARTIAL", "PAID"]


class PaymentRecord(BaseModel):
    payment_id: Optional[str] = None  # jeton d'idempotence fourni par l'appelant
    amount_cent: int
    at: datetime = Field(default_factory=datetime.now)
    reference_number: Optional[str] = None


class Invoice(BaseModel):
    model_config = ConfigDict(extra="ignore")  # tolère d'anciennes clés dans les JSON

    id: str = Field(default_factory=gen_id)
    number: str
    version: int = 1

    client_name: str
    client_phone: Optional[str] = None
    client_address: str
    post_code: str
    payment_option: str
    category: str

    services: List[LineItem] = Field(default_factory=list)
    number_of_services: int = 0

    discount_cent: int = 0
    subtotal_cent: int = 0
    total_cent: int = 0
    paid_cent: int = 0
    remaining_cent: int = 0
    status: InvoiceStatus = "OPEN"

    created_at: date
    reference_number: Optional[str] = None
    paid_date: Optional[date] = None
    notes: str = ""

    payments: List[PaymentRecord] = Field(default_factory=list)

    def has_payment(self, payment_id: Optional[str]) -> bool:
        if not payment_id:
            return False
        return any(p.payment_id == payment_id for p in self.payments)
