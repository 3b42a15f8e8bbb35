"""Bill arithmetic and cash handling.

Amounts are computed with ``Decimal`` and rounded half-up to cents.
"""
import enum
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

from pos_common.errors import InsufficientPaymentError, ValidationError

CENT = Decimal("0.01")
ZERO = Decimal("0.00")
HUNDRED = Decimal("100")


class PaymentMethod(str, enum.Enum):
    CASH = "Cash"
    CARD = "Card"
    ONLINE = "Online"
    CREDIT = "Credit"


class PaymentStatus(str, enum.Enum):
    UNPAID = "Unpaid"
    PAID = "Paid"
    CREDIT = "Credit"


def money(value) -> Decimal:
    if value is None:
        return ZERO
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class BillAmounts:
    subtotal: Decimal
    service_charge: Decimal
    discount_percentage: Decimal
    discount_amount: Decimal
    grand_total: Decimal


@dataclass(frozen=True)
class CashSettlement:
    cash_received: Decimal
    change: Decimal


def line_total(unit_price, quantity) -> Decimal:
    return money(Decimal(str(unit_price)) * int(quantity))


def order_subtotal(items) -> Decimal:
    """Sum of ``unit_price * quantity`` over (unit_price, quantity) pairs."""
    return sum((line_total(price, qty) for price, qty in items), ZERO)


def calculate_bill(subtotal, service_charge, discount_percentage) -> BillAmounts:
    subtotal = money(subtotal)
    service_charge = money(service_charge)
    pct = Decimal(str(discount_percentage))
    if subtotal < 0:
        raise ValidationError("Subtotal cannot be negative")
    if service_charge < 0:
        raise ValidationError("Service charge cannot be negative")
    if pct < 0 or pct > HUNDRED:
        raise ValidationError("Discount percentage must be between 0 and 100")

    gross = subtotal + service_charge
    discount_amount = money(gross * pct / HUNDRED)
    grand_total = max(ZERO, gross - discount_amount)
    return BillAmounts(
        subtotal=subtotal,
        service_charge=service_charge,
        discount_percentage=pct,
        discount_amount=discount_amount,
        grand_total=grand_total,
    )


def resolve_payment_status(payment_method, customer_id) -> PaymentStatus:
    method = PaymentMethod(payment_method)
    if method == PaymentMethod.CREDIT:
        if not customer_id:
            raise ValidationError("A customer is required for credit sales")
        return PaymentStatus.CREDIT
    return PaymentStatus.UNPAID


def settle(grand_total, payment_method, cash_received=None) -> CashSettlement:
    grand_total = money(grand_total)
    method = PaymentMethod(payment_method)
    if method == PaymentMethod.CREDIT:
        raise ValidationError("Credit is chosen when the bill is generated, not at payment")
    if method != PaymentMethod.CASH:
        return CashSettlement(cash_received=grand_total, change=ZERO)

    if cash_received is None:
        raise ValidationError("Cash received is required for cash payments")
    received = money(cash_received)
    if received < grand_total:
        raise InsufficientPaymentError(
            f"Cash received {received} is less than the bill total {grand_total}"
        )
    return CashSettlement(cash_received=received, change=received - grand_total)
