"""
Charge calculator: lines + charge rules + discount -> billing breakdown.

This is the only place billing arithmetic lives. Reservations, room
service and restaurant bills all go through ``compute_charges`` so that
the preview a cashier sees and the snapshot the server stores agree to
the cent.

Policy:
  * taxes are computed on the pre-discount subtotal, one line per rule
  * a percentage discount is a percentage of the subtotal
  * the discount is clamped to ``subtotal + tax_total``
  * ``total = max(0, subtotal + tax_total - discount)``

All amounts are ``Decimal`` rounded half-up to 2 places, each tax line
rounded on its own so the breakdown always adds up.
"""
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Iterable, Sequence

from hms.errors import ValidationError

CENT = Decimal("0.01")
ZERO = Decimal("0.00")
HUNDRED = Decimal("100")

DISCOUNT_NONE = "none"
DISCOUNT_PERCENTAGE = "percentage"
DISCOUNT_FIXED = "fixed"
DISCOUNT_TYPES = (DISCOUNT_NONE, DISCOUNT_PERCENTAGE, DISCOUNT_FIXED)

SCOPE_RESERVATION = "reservation"
SCOPE_ORDER = "order"


def money(x) -> Decimal:
    """Round a trusted amount to 2dp. Use ``parse_amount`` for user input."""
    if x is None:
        x = 0
    return Decimal(str(x)).quantize(CENT, rounding=ROUND_HALF_UP)


def parse_amount(value, field_name: str) -> Decimal:
    """Strict numeric parse: no silent ``0`` for blanks, NaN or garbage."""
    if value is None:
        raise ValidationError(field_name, "is required")
    if isinstance(value, bool):
        raise ValidationError(field_name, "must be a number")
    if isinstance(value, Decimal):
        d = value
    elif isinstance(value, (int, float, str)):
        text = str(value).strip()
        if not text:
            raise ValidationError(field_name, "is required")
        try:
            d = Decimal(text)
        except InvalidOperation:
            raise ValidationError(field_name, f"must be a number, got {value!r}")
    else:
        raise ValidationError(field_name, f"must be a number, got {type(value).__name__}")
    if not d.is_finite():
        raise ValidationError(field_name, "must be a finite number")
    return d


def parse_non_negative(value, field_name: str) -> Decimal:
    d = parse_amount(value, field_name)
    if d < 0:
        raise ValidationError(field_name, "must not be negative")
    return d


# ── Inputs ──────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class ChargeLine:
    description: str
    quantity: object
    unit_amount: object


@dataclass(frozen=True)
class ChargeRule:
    name: str
    rate: object  # percent
    active: bool = True


@dataclass(frozen=True)
class DiscountSpec:
    type: str = DISCOUNT_NONE
    value: object = 0
    reason: str | None = None

    @classmethod
    def from_fields(cls, discount_type: str | None, value, reason: str | None = None) -> "DiscountSpec":
        """Build from persisted columns, where ``None`` type means no discount."""
        if not discount_type or discount_type == DISCOUNT_NONE:
            return cls(DISCOUNT_NONE, 0, None)
        return cls(discount_type, value if value is not None else 0, reason)

    @property
    def is_none(self) -> bool:
        return self.type == DISCOUNT_NONE


NO_DISCOUNT = DiscountSpec()


# ── Output ──────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class TaxLine:
    name: str
    rate: Decimal
    amount: Decimal

    def as_dict(self) -> dict:
        return {"name": self.name, "rate": f"{self.rate:.2f}", "amount": f"{self.amount:.2f}"}


@dataclass(frozen=True)
class ChargeBreakdown:
    subtotal: Decimal
    tax_breakdown: tuple[TaxLine, ...] = field(default_factory=tuple)
    tax_total: Decimal = ZERO
    discount_amount: Decimal = ZERO
    total: Decimal = ZERO

    def as_dict(self) -> dict:
        return {
            "subtotal": f"{self.subtotal:.2f}",
            "tax_breakdown": [t.as_dict() for t in self.tax_breakdown],
            "tax_total": f"{self.tax_total:.2f}",
            "discount_amount": f"{self.discount_amount:.2f}",
            "total": f"{self.total:.2f}",
        }


# ── Validation ──────────────────────────────────────────────────────────────

def validate_discount(discount: DiscountSpec | None) -> tuple[str, Decimal]:
    if discount is None:
        return DISCOUNT_NONE, ZERO
    dtype = (discount.type or DISCOUNT_NONE)
    if dtype not in DISCOUNT_TYPES:
        raise ValidationError("discount.type", f"unknown discount type {dtype!r}")
    if dtype == DISCOUNT_NONE:
        return DISCOUNT_NONE, ZERO
    value = parse_non_negative(discount.value, "discount.value")
    if dtype == DISCOUNT_PERCENTAGE and value > HUNDRED:
        raise ValidationError("discount.value", "percentage must be between 0 and 100")
    return dtype, value


def _validate_rate(rule: ChargeRule, i: int) -> Decimal:
    return parse_non_negative(rule.rate, f"rules[{i}].rate")


# ── Calculation ─────────────────────────────────────────────────────────────

def line_amount(line: ChargeLine, i: int = 0) -> Decimal:
    qty = parse_non_negative(line.quantity, f"lines[{i}].quantity")
    unit = parse_non_negative(line.unit_amount, f"lines[{i}].unit_amount")
    return money(qty * unit)


def compute_discount(discount: DiscountSpec | None, subtotal: Decimal, tax_total: Decimal) -> Decimal:
    dtype, value = validate_discount(discount)
    if dtype == DISCOUNT_PERCENTAGE:
        amount = money(subtotal * value / HUNDRED)
    elif dtype == DISCOUNT_FIXED:
        amount = money(value)
    else:
        amount = ZERO
    return min(amount, subtotal + tax_total)


def compute_charges(
    lines: Iterable[ChargeLine],
    rules: Iterable[ChargeRule] = (),
    discount: DiscountSpec | None = None,
) -> ChargeBreakdown:
    """Pure and deterministic: equal inputs give equal outputs."""
    subtotal = ZERO
    for i, line in enumerate(lines):
        subtotal += line_amount(line, i)

    taxes: list[TaxLine] = []
    for i, rule in enumerate(rules):
        rate = _validate_rate(rule, i)
        if not rule.active:
            continue
        taxes.append(TaxLine(name=rule.name, rate=money(rate), amount=money(subtotal * rate / HUNDRED)))
    tax_total = sum((t.amount for t in taxes), ZERO)

    discount_amount = compute_discount(discount, subtotal, tax_total)
    total = max(ZERO, subtotal + tax_total - discount_amount)

    return ChargeBreakdown(
        subtotal=subtotal,
        tax_breakdown=tuple(taxes),
        tax_total=tax_total,
        discount_amount=discount_amount,
        total=total,
    )


def applicable_rules(registry: Iterable, scope: str) -> list[ChargeRule]:
    """
    Reduce a charge-rule registry (ORM rows or anything with ``name``,
    ``rate``, ``status``/``active`` and the ``apply_to_*`` flags) to the
    active rules for ``scope`` ("reservation" or "order").
    """
    if scope not in (SCOPE_RESERVATION, SCOPE_ORDER):
        raise ValidationError("scope", f"unknown scope {scope!r}")
    flag = "apply_to_reservations" if scope == SCOPE_RESERVATION else "apply_to_orders"
    out: list[ChargeRule] = []
    for r in registry:
        status = getattr(r, "status", None)
        active = getattr(status, "value", status) == "active" if status is not None else bool(getattr(r, "active", True))
        if active and getattr(r, flag, False):
            out.append(ChargeRule(name=r.name, rate=money(r.rate)))
    return out


def rules_from_breakdown(tax_breakdown: Sequence[dict]) -> list[ChargeRule]:
    """Rules as they were applied to a stored snapshot (``applied_taxes``)."""
    return [ChargeRule(name=t["name"], rate=t["rate"]) for t in tax_breakdown]
