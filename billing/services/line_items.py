from __future__ import annotations

import math
import re
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Iterable, List, Optional

from billing import errors
from billing.models.common import LineItem

# clés en centimes (prioritaires) puis en unités monétaires
PRICE_CENT_KEYS = ("unit_price_cent", "unit_price_cents", "price_cent", "price_cents", "unitPriceCent")
PRICE_UNIT_KEYS = ("unit_price", "unitPrice", "price")
QTY_KEYS = ("qty", "quantity")
NAME_KEYS = ("name", "label")


# ---------- Nombres (souple) ---------- #

def clean_decimal(val: Any) -> Optional[Decimal]:
    """'1 234,50 £' -> Decimal('1234.50'), '1e3' -> Decimal('1E+3') ; None si illisible ou non fini."""
    if val is None or val == "" or isinstance(val, bool):
        return None
    if isinstance(val, (int, float, Decimal)):
        try:
            d = Decimal(str(val))
        except InvalidOperation:
            return None
    else:
        try:
            # notation numérique standard d'abord (exposants compris)
            d = Decimal(str(val).strip())
        except InvalidOperation:
            s = re.sub(r"[^0-9,.\-]", "", str(val)).replace(",", ".")
            try:
                d = Decimal(s)
            except InvalidOperation:
                return None
    return d if d.is_finite() else None


def _whole(d: Decimal) -> int:
    try:
        return int(d.quantize(Decimal("1")))
    except InvalidOperation:
        # hors précision décimale (ex. '1e40') : illisible
        return 0


def to_cents(val: Any) -> int:
    """Montant en unités monétaires -> centimes >= 0 (0 si illisible)."""
    d = clean_decimal(val)
    if d is None or d < 0:
        return 0
    return _whole(d * 100)


def cents_or_zero(val: Any) -> int:
    d = clean_decimal(val)
    if d is None or d < 0:
        return 0
    return _whole(d)


def amount_cent(cents: Any = None, units: Any = None) -> int:
    """Centimes explicites si fournis, sinon conversion depuis les unités."""
    if cents not in (None, ""):
        return cents_or_zero(cents)
    return to_cents(units)


def qty_to_float(v: Any) -> float:
    """Quantité absente -> 1 ; présente mais invalide, non finie ou négative -> 0."""
    if v is None or (isinstance(v, str) and not v.strip()):
        return 1.0
    d = clean_decimal(v)
    if d is None or d < 0:
        return 0.0
    f = float(d)
    return f if math.isfinite(f) else 0.0


def _first(payload: Dict[str, Any], keys: Iterable[str]) -> Any:
    for k in keys:
        v = payload.get(k)
        if v not in (None, ""):
            return v
    return None


def _as_dict(raw: Any) -> Dict[str, Any]:
    if isinstance(raw, LineItem):
        return raw.model_dump()
    if isinstance(raw, dict):
        return raw
    if hasattr(raw, "model_dump"):
        return raw.model_dump()
    raise errors.ValidationError("Ligne invalide: objet attendu")


# ---------- Normalisation ---------- #

def normalize_item(raw: Any) -> LineItem:
    d = _as_dict(raw)
    name = _first(d, NAME_KEYS)
    # nom vide toléré : la ligne reste comptée
    name = str(name).strip() if name is not None else ""
    price = amount_cent(_first(d, PRICE_CENT_KEYS), _first(d, PRICE_UNIT_KEYS))
    qty = qty_to_float(_first(d, QTY_KEYS))
    return LineItem(name=name, unit_price_cent=price, qty=qty)


def normalize_items(raw: Any, *, role: str = "services", required: bool = False) -> List[LineItem]:
    """
    Liste brute (dicts issus de la requête) -> List[LineItem].
    required=True : liste vide ou absente refusée (ex. services à la création).
    """
    if raw is None:
        raw = []
    if not isinstance(raw, (list, tuple)):
        raise errors.ValidationError(f"'{role}' doit être une liste")
    items = [normalize_item(x) for x in raw]
    if required and not items:
        raise errors.ValidationError(f"Au moins une ligne '{role}' est requise")
    return items
