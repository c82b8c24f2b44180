from __future__ import annotations
from typing import Iterable, Optional, Sequence

from pydantic import BaseModel

from billing.models.common import LineItem


class Totals(BaseModel):
    subtotal_cent: int
    discount_cent: int
    total_cent: int
    remaining_cent: Optional[int] = None


def subtotal_cent(item_groups: Iterable[Sequence[LineItem]]) -> int:
    return sum(item.total_cent for group in item_groups for item in group)


def compute(
    item_groups: Iterable[Sequence[LineItem]],
    discount_cent: int = 0,
    paid_cent: Optional[int] = None,
) -> Totals:
    """
    Totaux d'un document, en centimes.
    - remise à plat (jamais un pourcentage), bornée à [0, sous-total]
    - remaining_cent seulement si paid_cent est fourni
    """
    subtotal = subtotal_cent(item_groups)
    discount = min(max(0, int(discount_cent or 0)), subtotal)
    total = max(0, subtotal - discount)
    remaining = None
    if paid_cent is not None:
        remaining = max(0, total - max(0, int(paid_cent)))
    return Totals(subtotal_cent=subtotal, discount_cent=discount, total_cent=total, remaining_cent=remaining)


def status_for(totals: Totals, paid_cent: int) -> str:
    if totals.remaining_cent == 0:
        return "PAID"
    if paid_cent > 0:
        return "PARTIAL"
    return "OPEN"
