from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, conint


class CalculationKind(str, Enum):
    # Values match the message types the POS frontend posts to its worker
    ORDER_TOTAL = "order-total"
    DISCOUNT = "discount-calculation"
    TAX = "tax-calculation"


# One cart entry - accepts the cart's `price` field as well as `unit_price`
class LineItem(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str = ""
    unit_price: float = Field(
        ge=0,
        allow_inf_nan=False,
        validation_alias=AliasChoices("unit_price", "unitPrice", "price"),
    )
    quantity: conint(gt=0)  # Quantity > 0


# Percentage-off rule gated by a minimum order amount, as stored by the backend
class DiscountPolicy(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    percentage: float = Field(ge=0, le=100, allow_inf_nan=False)
    minimum_order_amount: float = Field(
        default=0,
        ge=0,
        allow_inf_nan=False,
        validation_alias=AliasChoices("minimum_order_amount", "minimumOrderAmount", "minOrderAmount"),
    )
    active: bool = Field(default=True, validation_alias=AliasChoices("active", "isActive"))


# --- Request bodies ---

class OrderTotalRequest(BaseModel):
    items: List[LineItem] = Field(default_factory=list)  # Empty cart is a valid (zero) order
    discount: Optional[DiscountPolicy] = None


class DiscountRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    subtotal: float = Field(ge=0, allow_inf_nan=False)
    percentage: float = Field(ge=0, le=100, allow_inf_nan=False)
    minimum_order_amount: float = Field(
        default=0,
        ge=0,
        allow_inf_nan=False,
        validation_alias=AliasChoices("minimum_order_amount", "minimumOrderAmount", "minOrderAmount"),
    )


class TaxRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    amount: float = Field(ge=0, allow_inf_nan=False)
    tax_rate: float = Field(
        ge=0,
        allow_inf_nan=False,
        validation_alias=AliasChoices("tax_rate", "taxRate", "tax_rate_percent"),
    )


# --- Results ---

class OrderTotalResult(BaseModel):
    subtotal: float = Field(ge=0)
    discount_amount: float = Field(ge=0, default=0.0)
    total: float = Field(ge=0)


class DiscountResult(BaseModel):
    discount_amount: float = Field(ge=0, default=0.0)
    is_applicable: bool = False
    final_amount: float = Field(ge=0)


class TaxResult(BaseModel):
    tax_amount: float = Field(ge=0)
    total_with_tax: float = Field(ge=0)


# --- Worker envelopes ---

class CalculationRequest(BaseModel):
    correlation_id: int
    kind: CalculationKind
    payload: Dict[str, Any]


class CalculationReply(BaseModel):
    correlation_id: int
    kind: CalculationKind
    result: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    error_type: Optional[str] = None  # Exception class name when error is set
