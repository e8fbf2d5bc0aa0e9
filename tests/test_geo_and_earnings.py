import math

from dispatch.core.models import DELIVERY_SCHEDULED, Order
from dispatch.intelligence.earnings import earnings_breakdown
from dispatch.intelligence.geo import (
    estimate_delivery_time,
    haversine_distance,
    is_valid_coordinate,
    linear_shipping_fee,
)


def test_haversine_rounds_to_one_decimal():
    # Ben Thanh market -> Cho Lon, roughly 5.4 km
    d = haversine_distance(10.7725, 106.6980, 10.7520, 106.6520)
    assert d == round(d, 1)
    assert 5.0 < d < 6.0


def test_haversine_same_point_is_zero():
    assert haversine_distance(10.0, 106.0, 10.0, 106.0) == 0.0


def test_estimate_delivery_time_clamped():
    assert estimate_delivery_time(0) == 10
    assert estimate_delivery_time(2.5) == 20
    assert estimate_delivery_time(50) == 60
    assert estimate_delivery_time(None) == 0
    assert estimate_delivery_time(float("nan")) == 0


def test_linear_shipping_fee_per_started_km():
    assert linear_shipping_fee(1.5) == 15000
    assert linear_shipping_fee(2.0) == 15000
    assert linear_shipping_fee(2.1) == 20000
    assert linear_shipping_fee(4.0) == 25000


def test_is_valid_coordinate():
    assert is_valid_coordinate(10.7, 106.7)
    assert is_valid_coordinate("10.7", "106.7")
    assert not is_valid_coordinate(91, 0)
    assert not is_valid_coordinate(0, -181)
    assert not is_valid_coordinate(None, 1)
    assert not is_valid_coordinate(math.nan, 1)


def test_earnings_breakdown_defaults_to_commission():
    order = Order(id="o1", user_id="u", restaurant_id="r", shipping_fee=25000, delivery_distance=5.0)

    result = earnings_breakdown(order)

    assert result["shipper_earnings"] == 20000
    assert result["platform_fee"] == 5000
    assert result["fuel_cost_estimate"] == 15000
    assert result["net_earnings"] == 5000
    assert result["earnings_per_km"] == 4000
    assert result["profit_margin_pct"] == 20.0
    assert result["is_profitable"] is True
    assert result["estimated_delivery_time"] == 30
    assert result["urgency"] == "medium"


def test_earnings_breakdown_unprofitable_scheduled_order():
    order = Order(
        id="o2", user_id="u", restaurant_id="r",
        shipping_fee=15000, delivery_type=DELIVERY_SCHEDULED,
    )

    result = earnings_breakdown(order, distance_km=10)

    assert result["distance_km"] == 10
    assert result["net_earnings"] == 0
    assert result["is_profitable"] is False
    assert result["urgency"] == "low"


def test_earnings_breakdown_without_fee():
    order = Order(id="o3", user_id="u", restaurant_id="r")
    result = earnings_breakdown(order)
    assert result["shipping_fee"] == 0
    assert result["profit_margin_pct"] == 0.0
    assert result["earnings_per_km"] == 0
