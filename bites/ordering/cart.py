# bites/ordering/cart.py
from __future__ import annotations

import json
from typing import Any, Dict, List, Optional, Tuple

from .pricing import DEFAULT_TAX_RATE, Totals, compute_totals, line_total


def empty_cart() -> Dict[str, Any]:
    return {
        "restaurant_id": None,
        "items": [],
        "coupon": None,
        "discount": 0.0,
        "delivery_fee": 0.0,
    }


def load_cart(raw: Any) -> Dict[str, Any]:
    if isinstance(raw, str):
        try:
            raw = json.loads(raw or "{}")
        except Exception:
            raw = {}
    cart = empty_cart()
    if isinstance(raw, dict):
        cart.update({k: raw[k] for k in cart if k in raw})
    if not isinstance(cart["items"], list):
        cart["items"] = []
    return cart


def _customization_key(customizations: List[Dict[str, Any]]) -> Tuple[Tuple[str, str], ...]:
    return tuple((str(c.get("name", "")), str(c.get("option", ""))) for c in customizations or [])


def recalc_line_total(line: Dict[str, Any]) -> None:
    line["line_total"] = float(round(line_total(line), 2))


def add_to_cart(
    cart: Dict[str, Any],
    restaurant_id: int,
    menu_item_id: int,
    name: str,
    price: float,
    quantity: int = 1,
    customizations: Optional[List[Dict[str, Any]]] = None,
) -> Dict[str, Any]:
    """Add a line; a line from another restaurant replaces the whole cart."""
    customizations = list(customizations or [])

    if cart.get("restaurant_id") is not None and cart["restaurant_id"] != restaurant_id:
        cart["items"] = []
        cart["coupon"] = None
        cart["discount"] = 0.0
    cart["restaurant_id"] = restaurant_id

    key = _customization_key(customizations)
    for line in cart["items"]:
        if line.get("menu_item_id") == menu_item_id and _customization_key(line.get("customizations")) == key:
            line["quantity"] = int(line.get("quantity", 0)) + quantity
            recalc_line_total(line)
            return cart

    new_line = {
        "menu_item_id": menu_item_id,
        "name": name,
        "price": float(price),
        "quantity": quantity,
        "customizations": customizations,
        "line_total": 0.0,
    }
    recalc_line_total(new_line)
    cart["items"].append(new_line)
    return cart


def _reset_if_empty(cart: Dict[str, Any]) -> None:
    # an empty basket carries no restaurant, fee or coupon
    if not cart["items"]:
        clear_cart(cart)


def remove_from_cart(cart: Dict[str, Any], menu_item_id: int) -> Dict[str, Any]:
    cart["items"] = [x for x in cart["items"] if x.get("menu_item_id") != menu_item_id]
    _reset_if_empty(cart)
    return cart


def update_quantity(cart: Dict[str, Any], menu_item_id: int, quantity: int) -> Dict[str, Any]:
    if quantity <= 0:
        return remove_from_cart(cart, menu_item_id)
    for line in cart["items"]:
        if line.get("menu_item_id") == menu_item_id:
            line["quantity"] = quantity
            recalc_line_total(line)
    return cart


def clear_cart(cart: Dict[str, Any]) -> Dict[str, Any]:
    cart.clear()
    cart.update(empty_cart())
    return cart


def apply_coupon(cart: Dict[str, Any], code: str, discount: float) -> Dict[str, Any]:
    cart["coupon"] = code
    cart["discount"] = float(discount)
    return cart


def remove_coupon(cart: Dict[str, Any]) -> Dict[str, Any]:
    cart["coupon"] = None
    cart["discount"] = 0.0
    return cart


def set_delivery_fee(cart: Dict[str, Any], fee: float) -> Dict[str, Any]:
    cart["delivery_fee"] = float(fee)
    return cart


def cart_totals(cart: Dict[str, Any], tax_rate: float = DEFAULT_TAX_RATE) -> Totals:
    return compute_totals(
        cart.get("items") or [],
        delivery_fee=cart.get("delivery_fee") or 0.0,
        coupon_discount=cart.get("discount") or 0.0,
        tax_rate=tax_rate,
    )


def build_summary(cart: Dict[str, Any], currency_symbol: str = "₹", tax_rate: float = DEFAULT_TAX_RATE) -> Tuple[str, float]:
    items = cart.get("items") or []
    if not items:
        return ("Your basket is empty.", 0.0)

    lines: List[str] = []
    for i, line in enumerate(items, start=1):
        qty = int(line.get("quantity", 1) or 1)
        name = str(line.get("name", "Item"))
        extras = ", ".join(f"{c.get('name')}: {c.get('option')}" for c in line.get("customizations") or [])
        label = f"{name} ({extras})" if extras else name
        lt = float(line.get("line_total", 0.0) or 0.0)
        lines.append(f"{i}. x{qty} {label} = {currency_symbol}{lt:.2f}")

    t = cart_totals(cart, tax_rate)
    footer = [f"Subtotal: {currency_symbol}{t.subtotal:.2f}", f"Taxes: {currency_symbol}{t.taxes:.2f}"]
    if t.delivery_fee:
        footer.append(f"Delivery: {currency_symbol}{t.delivery_fee:.2f}")
    if t.coupon_discount:
        footer.append(f"Discount ({cart.get('coupon')}): -{currency_symbol}{t.coupon_discount:.2f}")
    footer.append(f"Total: {currency_symbol}{t.total:.2f}")
    return ("Order summary:\n" + "\n".join(lines) + "\n\n" + "\n".join(footer), t.total)
