from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel
from decimal import Decimal
from datetime import date, datetime
from typing import Optional


class ExpenseFields(BaseModel):
    """Fields a client may set on create and update."""

    # Accept both idempotency_key and idempotencyKey style names
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    amount: Decimal = Field(..., ge=0, max_digits=10, decimal_places=2, description="Must not be negative")
    category: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=1000)
    date: date

    @field_validator("category")
    @classmethod
    def category_must_not_be_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Category cannot be blank or whitespace")
        return v.strip()

    @field_validator("amount", mode="before")
    @classmethod
    def amount_must_not_be_negative(cls, v):
        if v is None or isinstance(v, bool):
            return v
        try:
            val = Decimal(str(v))
        except ArithmeticError:
            raise ValueError("Amount must be a number")
        if not val.is_finite():
            raise ValueError("Amount must be a number")
        if val < 0:
            raise ValueError("Amount cannot be negative")
        return val


class ExpenseCreate(ExpenseFields):
    idempotency_key: Optional[str] = Field(default=None, max_length=255)

    @field_validator("idempotency_key")
    @classmethod
    def blank_key_means_no_key(cls, v: Optional[str]) -> Optional[str]:
        if v is None or not v.strip():
            return None
        return v


class ExpenseUpdate(ExpenseFields):
    pass


class ExpenseResponse(BaseModel):
    id: int
    idempotency_key: Optional[str]
    amount: Decimal
    category: str
    description: Optional[str]
    date: date
    created_at: datetime

    model_config = {"from_attributes": True}
