from __future__ import annotations
from datetime import date
from typing import Annotated, Any, List, Mapping, Optional, Type, TypeVar

from pydantic import AliasChoices, BaseModel, BeforeValidator, ConfigDict, Field, StringConstraints
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from billing import errors
from .quote import QuoteCategory, QuoteStatus

C = TypeVar("C", bound=BaseModel)


def _blank_to_none(v: Any) -> Any:
    if isinstance(v, str) and not v.strip():
        return None
    return v


def _none_to_list(v: Any) -> Any:
    return [] if v is None else v


def _none_to_empty(v: Any) -> Any:
    return "" if v is None else v


OptStr = Annotated[Optional[str], BeforeValidator(_blank_to_none)]
OptDate = Annotated[Optional[date], BeforeValidator(_blank_to_none)]
RawItems = Annotated[List[Any], BeforeValidator(_none_to_list)]
Notes = Annotated[str, BeforeValidator(_none_to_empty)]
Required = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]

_DATE_ALIASES = AliasChoices("date", "business_date", "businessDate", "created_at", "createdAt")


class _Command(BaseModel):
    # accepte clientName comme client_name
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        str_strip_whitespace=True,
        extra="ignore",
    )


class _Update(_Command):
    # allow-list stricte : tout champ inconnu ou immuable est refusé
    model_config = ConfigDict(extra="forbid")

    expected_version: Optional[int] = None

    def changes(self) -> dict:
        return {k: getattr(self, k) for k in self.model_fields_set if k != "expected_version"}


# ---------- Factures ----------

class InvoiceCreate(_Command):
    client_name: Required
    client_phone: OptStr = None
    client_address: Required
    post_code: Required
    payment_option: Required
    category: Required
    services: RawItems = Field(default_factory=list)
    discount: Any = None
    discount_cent: Optional[int] = None
    paid_amount: Any = None
    paid_cent: Optional[int] = None
    business_date: Any = Field(default=None, validation_alias=_DATE_ALIASES)
    notes: OptStr = None


class InvoiceUpdate(_Update):
    client_name: Optional[Required] = None
    client_phone: OptStr = None
    client_address: Optional[Required] = None
    post_code: Optional[Required] = None
    payment_option: Optional[Required] = None
    category: Optional[Required] = None
    services: Optional[RawItems] = None
    discount: Any = None
    discount_cent: Optional[int] = None
    notes: Notes = ""


class PaymentCommand(_Command):
    amount: Any = Field(default=None, validation_alias=AliasChoices("amount", "paidAmount", "paid_amount"))
    amount_cent: Optional[int] = None
    reference_number: OptStr = None
    paid_date: OptDate = None
    payment_id: OptStr = None


# ---------- Devis ----------

class QuoteCreate(_Command):
    client_name: Required
    client_phone: OptStr = None
    client_address: OptStr = None
    post_code: Required
    category: QuoteCategory
    services: RawItems = Field(default_factory=list)
    materials: RawItems = Field(default_factory=list)
    discount: Any = None
    discount_cent: Optional[int] = None
    business_date: Any = Field(default=None, validation_alias=_DATE_ALIASES)
    valid_until: OptDate = None
    notes: OptStr = None


class QuoteUpdate(_Update):
    client_name: Optional[Required] = None
    client_phone: OptStr = None
    client_address: OptStr = None
    post_code: Optional[Required] = None
    category: Optional[QuoteCategory] = None
    services: Optional[RawItems] = None
    materials: Optional[RawItems] = None
    discount: Any = None
    discount_cent: Optional[int] = None
    status: Optional[QuoteStatus] = None
    valid_until: OptDate = None
    notes: Notes = ""


def parse_command(model: Type[C], payload: Any) -> C:
    """Valide un payload brut (dict) en commande typée ; erreurs → errors.ValidationError."""
    if isinstance(payload, model):
        return payload
    if payload is None:
        payload = {}
    if not isinstance(payload, Mapping):
        raise errors.ValidationError("Payload invalide: objet attendu")
    try:
        return model.model_validate(dict(payload))
    except PydanticValidationError as e:
        fields = sorted({".".join(str(p) for p in err["loc"]) or "payload" for err in e.errors()})
        raise errors.ValidationError("Champs invalides ou manquants: " + ", ".join(fields)) from e
