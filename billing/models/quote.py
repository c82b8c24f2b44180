from __future__ import annotations
from pydantic import BaseModel, ConfigDict, Field
from typing import List, Literal, Optional
from datetime import date
from .common import gen_id, LineItem

QuoteStatus = Literal["DRAFT", "SENT", "ACCEPTED", "DECLINED"]
QuoteCategory = Literal["Residential", "Commercial", "Industrial"]


class Quote(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str = Field(default_factory=gen_id)
    number: str
    version: int = 1

    client_name: str
    client_phone: Optional[str] = None
    client_address: Optional[str] = None
    post_code: str
    category: QuoteCategory

    services: List[LineItem] = Field(default_factory=list)
    materials: List[LineItem] = Field(default_factory=list)
    number_of_services: int = 0
    number_of_materials: int = 0

    discount_cent: int = 0
    subtotal_cent: int = 0
    total_cent: int = 0

    created_at: date
    valid_until: Optional[date] = None
    status: QuoteStatus = "DRAFT"
    notes: str = ""
