# bites/ordering/pricing.py
from __future__ import annotations

from dataclasses import asdict, dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, Iterable, Mapping

DEFAULT_TAX_RATE = 0.05


@dataclass(frozen=True)
class Totals:
    subtotal: float
    delivery_fee: float
    taxes: float
    coupon_discount: float
    total: float

    def as_dict(self) -> Dict[str, float]:
        return asdict(self)


def _money(v: Any) -> Decimal:
    return Decimal(str(v or 0))


def line_total(line: Mapping[str, Any]) -> Decimal:
    """unit price x quantity, plus each chosen customization once."""
    qty = int(line.get("quantity", 1) or 1)
    extras = sum((_money(c.get("price")) for c in (line.get("customizations") or [])), Decimal(0))
    return _money(line.get("price")) * qty + extras


def compute_totals(
    items: Iterable[Mapping[str, Any]],
    delivery_fee: float = 0.0,
    coupon_discount: float = 0.0,
    tax_rate: float = DEFAULT_TAX_RATE,
) -> Totals:
    subtotal = sum((line_total(x) for x in items), Decimal(0))
    # taxes are whole units, half rounds up
    taxes = (subtotal * _money(tax_rate)).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    fee = _money(delivery_fee)
    discount = _money(coupon_discount)
    total = max(Decimal(0), subtotal + fee + taxes - discount)
    return Totals(
        subtotal=float(subtotal),
        delivery_fee=float(fee),
        taxes=float(taxes),
        coupon_discount=float(discount),
        total=float(total),
    )


def totals_consistent(t: Totals) -> bool:
    expected = max(
        Decimal(0),
        _money(t.subtotal) + _money(t.delivery_fee) + _money(t.taxes) - _money(t.coupon_discount),
    )
    return _money(t.total) == expected and min(t.subtotal, t.delivery_fee, t.taxes, t.coupon_discount, t.total) >= 0
