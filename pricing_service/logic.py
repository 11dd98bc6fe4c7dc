import logging
import math
from typing import Any, Dict, Iterable, Optional, Type, TypeVar, Union

from pydantic import BaseModel, ValidationError

from . import schemas
from .errors import InvalidInputError

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


def round_half_up(value: float) -> int:
    """
    Rounds to the nearest integer with halves going up, the way the POS
    frontend's Math.round does (2.5 -> 3, not banker's 2).
    """
    if not math.isfinite(value):
        raise InvalidInputError(f"cannot round non-finite value {value!r}")
    floored = math.floor(value)
    return int(floored + 1 if value - floored >= 0.5 else floored)


def _parse(model: Type[ModelT], value: Any) -> ModelT:
    if isinstance(value, model):
        return value
    try:
        return model.model_validate(value)
    except ValidationError as e:
        raise InvalidInputError(f"invalid {model.__name__}", e) from e


def compute_discount(subtotal: float, percentage: float, minimum_order_amount: float = 0) -> schemas.DiscountResult:
    """
    Discount for an order that already has a subtotal. Applies only once the
    subtotal reaches the minimum order amount.
    """
    request = _parse(
        schemas.DiscountRequest,
        {"subtotal": subtotal, "percentage": percentage, "minimum_order_amount": minimum_order_amount},
    )

    discount_amount = 0.0
    is_applicable = False
    if request.subtotal >= request.minimum_order_amount:
        # Rounding up a fraction of a 100% discount must not exceed the subtotal
        discount_amount = min(float(round_half_up(request.subtotal * request.percentage / 100)), request.subtotal)
        is_applicable = True

    logger.debug(
        f"Discount {request.percentage}% (min {request.minimum_order_amount}) on {request.subtotal}: "
        f"applicable={is_applicable}, amount={discount_amount}"
    )
    return schemas.DiscountResult(
        discount_amount=discount_amount,
        is_applicable=is_applicable,
        final_amount=request.subtotal - discount_amount,
    )


def compute_order_total(
    items: Iterable[Union[schemas.LineItem, Dict[str, Any]]],
    discount: Optional[Union[schemas.DiscountPolicy, Dict[str, Any]]] = None,
) -> schemas.OrderTotalResult:
    """
    Calculates subtotal, discount and total for a cart.

    An inactive discount policy is ignored, same as no policy at all.
    """
    line_items = [_parse(schemas.LineItem, item) for item in items]
    policy = _parse(schemas.DiscountPolicy, discount) if discount is not None else None

    subtotal = sum(item.unit_price * item.quantity for item in line_items)
    logger.debug(f"Calculated subtotal = {subtotal:.2f} over {len(line_items)} item(s)")

    discount_amount = 0.0
    if policy is not None and policy.active:
        discount_amount = compute_discount(subtotal, policy.percentage, policy.minimum_order_amount).discount_amount

    total = subtotal - discount_amount
    logger.info(f"Order total calculated - Subtotal: {subtotal:.2f}, Discount: {discount_amount:.2f}, Total: {total:.2f}")

    return schemas.OrderTotalResult(subtotal=subtotal, discount_amount=discount_amount, total=total)


def compute_tax(amount: float, tax_rate_percent: float) -> schemas.TaxResult:
    """Proportional tax on an amount, rounded like the discount."""
    request = _parse(schemas.TaxRequest, {"amount": amount, "tax_rate": tax_rate_percent})
    tax_amount = float(round_half_up(request.amount * request.tax_rate / 100))
    return schemas.TaxResult(tax_amount=tax_amount, total_with_tax=request.amount + tax_amount)


def run_calculation(kind: Union[schemas.CalculationKind, str], payload: Dict[str, Any]) -> Dict[str, Any]:
    """
    Runs one calculation from a wire payload and returns the result as a dict.
    Both the worker thread and the in-process fallback go through here.
    """
    try:
        kind = schemas.CalculationKind(kind)
    except ValueError as e:
        raise InvalidInputError(f"Unknown calculation type: {kind}") from e

    if kind is schemas.CalculationKind.ORDER_TOTAL:
        request = _parse(schemas.OrderTotalRequest, payload)
        result = compute_order_total(request.items, request.discount)
    elif kind is schemas.CalculationKind.DISCOUNT:
        request = _parse(schemas.DiscountRequest, payload)
        result = compute_discount(request.subtotal, request.percentage, request.minimum_order_amount)
    else:
        request = _parse(schemas.TaxRequest, payload)
        result = compute_tax(request.amount, request.tax_rate)

    return result.model_dump()
