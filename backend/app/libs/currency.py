"""Rupee formatting and discount arithmetic shared by checkout and the admin views."""

from typing import Any, Dict, Optional


def format_inr(amount: Optional[float] = 0) -> str:
    """Format a rupee amount with Indian digit grouping: 123456 -> ₹1,23,456."""
    value = int(round(float(amount or 0)))
    sign = "-" if value < 0 else ""
    digits = str(abs(value))
    if len(digits) > 3:
        head, tail = digits[:-3], digits[-3:]
        groups = []
        while len(head) > 2:
            groups.insert(0, head[-2:])
            head = head[:-2]
        if head:
            groups.insert(0, head)
        digits = ",".join(groups) + "," + tail
    return f"{sign}₹{digits}"


def coupon_discount(base_price: float, coupon: Optional[Dict[str, Any]]) -> float:
    """Discount a coupon grants on ``base_price`` (percentage or flat)."""
    if not coupon:
        return 0
    value = float(coupon.get("value") or 0)
    if coupon.get("type") == "percentage":
        return base_price * value / 100
    return value


def discounted_price(base_price: float, coupon: Optional[Dict[str, Any]]) -> float:
    return max(0, base_price - coupon_discount(base_price, coupon))
