from __future__ import annotations
from pydantic import BaseModel, Field
import uuid


def gen_id() -> str:
    return uuid.uuid4().hex


class LineItem(BaseModel):
    name: str = ""
    unit_price_cent: int = Field(default=0, ge=0)
    qty: float = Field(default=1.0, ge=0)

    @property
    def total_cent(self) -> int:
        return int(round(self.unit_price_cent * self.qty))
