"""
SHIPPER EARNINGS

Breakdown shown to a shipper together with an order offer.
Fuel cost is a flat per-km estimate; currency is VND.
"""

from typing import Any, Dict, Optional

from dispatch.core.models import DEFAULT_COMMISSION_RATE, DELIVERY_SCHEDULED, Order

FUEL_COST_PER_KM = 3000
DEFAULT_DELIVERY_MINUTES = 30


def earnings_breakdown(order: Order, distance_km: Optional[float] = None) -> Dict[str, Any]:
    shipping_fee = order.shipping_fee or 0
    rate = order.shipper_commission_rate or DEFAULT_COMMISSION_RATE
    shipper_earnings = order.shipper_earnings or round(shipping_fee * rate)
    platform_fee = shipping_fee - shipper_earnings

    distance = order.delivery_distance or distance_km or 0
    earnings_per_km = round(shipper_earnings / distance) if distance > 0 else 0
    fuel_cost = round(distance * FUEL_COST_PER_KM)
    net_earnings = max(0, shipper_earnings - fuel_cost)

    if shipping_fee > 0:
        profit_margin = round((shipper_earnings - fuel_cost) / shipping_fee * 100, 1)
    else:
        profit_margin = 0.0

    return {
        "distance_km": distance,
        "shipping_fee": shipping_fee,
        "shipper_earnings": shipper_earnings,
        "platform_fee": platform_fee,
        "commission_rate": rate,
        "earnings_per_km": earnings_per_km,
        "fuel_cost_estimate": fuel_cost,
        "net_earnings": net_earnings,
        "profit_margin_pct": profit_margin,
        "is_profitable": shipper_earnings > fuel_cost,
        "estimated_delivery_time": order.estimated_delivery_time or DEFAULT_DELIVERY_MINUTES,
        "delivery_type": order.delivery_type,
        "requested_delivery_time": order.requested_delivery_time,
        "urgency": "low" if order.delivery_type == DELIVERY_SCHEDULED else "medium",
    }
