"""
Dispatch Console
Pending queue, live shipper pool, shipper app, system constraints and fee quotes.
"""
import random
from datetime import datetime

import pandas as pd
import plotly.express as px
import pydeck as pdk
import streamlit as st

from dispatch.assignment.errors import AssignmentError
from dispatch.assignment.job_queue import FIND_SHIPPER
from dispatch.assignment.pending_assignments import MAX_ATTEMPTS
from dispatch.core.models import ORDER_CONFIRMED, ORDER_DELIVERING
from dispatch.integrations.mapbox import geocode
from dispatch.intelligence.geo import haversine_distance, linear_shipping_fee
from dispatch.notifications.in_app_notifier import get_notifications_for, get_unread_count
from dispatch.runtime import DispatchRuntime
from security.access_guard import can_update_constraints
from security.roles import ADMIN, ALL_ROLES

# Ho Chi Minh City centre
DEFAULT_VIEW = (10.7769, 106.7009)
ONLINE_SPREAD = 0.04  # ~4 km
DEFAULT_MAX_KM = 10

PENDING_COLUMNS = ["Order", "Priority", "Attempts", "Next Attempt", "Sent", "Status", "Notes"]
SHIPPER_COLUMNS = ["Shipper", "Name", "lat", "lon", "Score", "Active", "Max km"]
OPEN_ORDER_COLUMNS = ["Order ID", "Distance km", "Fee", "Earnings", "Held"]


def _fmt_ts(ts):
    return datetime.fromtimestamp(ts).strftime("%H:%M:%S") if ts else "-"


# ═══════════════════════════════════════════════════════════════
# DATA FRAMES
# ═══════════════════════════════════════════════════════════════

def pending_queue_frame(runtime: DispatchRuntime) -> pd.DataFrame:
    rows = []
    for p in runtime.pending.list_all():
        rows.append({
            "Order": p.order_id[:8],
            "Priority": p.priority,
            "Attempts": p.attempt_count,
            "Next Attempt": _fmt_ts(p.next_attempt_at),
            "Sent": "✅" if p.is_sent_to_shipper else "",
            "Status": "ABANDONED" if p.abandoned else "WAITING",
            "Notes": p.notes or "",
        })
    return pd.DataFrame(rows, columns=PENDING_COLUMNS)


def active_shippers_frame(runtime: DispatchRuntime) -> pd.DataFrame:
    rows = []
    for s in runtime.tracker.get_all_shippers():
        rows.append({
            "Shipper": s.shipper_id[:8],
            "Name": s.shipper.name,
            "lat": s.latitude,
            "lon": s.longitude,
            "Score": s.eligibility_score,
            "Active": s.shipper.active_deliveries,
            "Max km": s.max_distance,
        })
    return pd.DataFrame(rows, columns=SHIPPER_COLUMNS)


def attempts_frame(runtime: DispatchRuntime) -> pd.DataFrame:
    counts = {n: 0 for n in range(MAX_ATTEMPTS + 1)}
    for p in runtime.pending.list_all():
        counts[min(p.attempt_count, MAX_ATTEMPTS)] += 1
    return pd.DataFrame(list(counts.items()), columns=["Attempts", "Orders"])


def open_orders_frame(runtime: DispatchRuntime, shipper_id: str) -> pd.DataFrame:
    """Confirmed, unassigned orders as one shipper sees them (nearest first)."""
    active = runtime.tracker.get(shipper_id)
    holds = {h.order_id: h.shipper_id for h in runtime.offers.active_holds()}

    rows = []
    for order in runtime.repos.orders.find(lambda o: o.status == ORDER_CONFIRMED and not o.is_assigned):
        distance = None
        if active is not None and order.restaurant_lat is not None and order.restaurant_lng is not None:
            distance = haversine_distance(
                active.latitude, active.longitude, order.restaurant_lat, order.restaurant_lng
            )
        holder = holds.get(order.id)
        rows.append({
            "Order ID": order.id,
            "Distance km": distance,
            "Fee": order.shipping_fee,
            "Earnings": order.shipper_earnings,
            "Held": "" if holder is None else ("you" if holder == shipper_id else "other shipper"),
        })

    df = pd.DataFrame(rows, columns=OPEN_ORDER_COLUMNS)
    return df.sort_values("Distance km", na_position="last").reset_index(drop=True)


def bring_shippers_online(runtime: DispatchRuntime, center=DEFAULT_VIEW, spread=ONLINE_SPREAD,
                          max_distance=DEFAULT_MAX_KM, rng=random) -> int:
    """Put every offline shipper in the pool at a random spot around center."""
    added = 0
    for shipper in runtime.repos.shippers.all():
        if runtime.tracker.get(shipper.id) is not None:
            continue
        lat = center[0] + rng.uniform(-spread, spread)
        lng = center[1] + rng.uniform(-spread, spread)
        if runtime.tracker.add_shipper(shipper.id, lat, lng, max_distance).success:
            added += 1
    return added


# ═══════════════════════════════════════════════════════════════
# SECTIONS
# ═══════════════════════════════════════════════════════════════

def render_pending_queue(runtime: DispatchRuntime):
    st.markdown("### ⏳ Pending Shipper Assignments")

    stats = runtime.queue.get_queue_stats(FIND_SHIPPER)
    health = runtime.queue.get_health_status()

    col1, col2, col3, col4 = st.columns(4)
    with col1:
        st.metric("Pending Orders", runtime.repos.pending_assignments.count())
    with col2:
        st.metric("Queued Jobs", stats["size"])
    with col3:
        st.metric("Active Jobs", health["active"])
    with col4:
        st.metric("Failed Jobs", health["failed"])

    df = pending_queue_frame(runtime)
    if df.empty:
        st.info("No orders waiting for a shipper")
        return

    st.dataframe(df, use_container_width=True, hide_index=True)

    fig = px.bar(attempts_frame(runtime), x="Attempts", y="Orders", title="Orders by Attempt Count")
    st.plotly_chart(fig, use_container_width=True)


def render_shipper_pool(runtime: DispatchRuntime):
    st.markdown("### 🛵 Active Shipper Pool")

    stats = runtime.tracker.get_shipper_stats()

    col1, col2, col3 = st.columns(3)
    with col1:
        st.metric("Online Shippers", stats["active_shippers"])
    with col2:
        st.metric("Average Score", stats["average_score"])
    with col3:
        st.metric("Avg Active Deliveries", stats["average_active_deliveries"])

    df = active_shippers_frame(runtime)
    if df.empty:
        st.info("No shippers online")
        return

    layer = pdk.Layer(
        "ScatterplotLayer",
        data=df,
        get_position="[lon, lat]",
        get_color="[255, 140, 0, 180]",
        get_radius=150,
        pickable=True,
    )
    view_state = pdk.ViewState(latitude=DEFAULT_VIEW[0], longitude=DEFAULT_VIEW[1], zoom=11)
    st.pydeck_chart(pdk.Deck(layers=[layer], initial_view_state=view_state, tooltip={"text": "{Name}\nScore: {Score}"}))

    st.dataframe(df.drop(columns=["lat", "lon"]), use_container_width=True, hide_index=True)

    dist = pd.DataFrame(
        list(stats["distribution_by_active_deliveries"].items()),
        columns=["Active Deliveries", "Shippers"],
    )
    st.plotly_chart(
        px.bar(dist, x="Active Deliveries", y="Shippers", title="Workload Distribution"),
        use_container_width=True,
    )


def render_shipper_app(runtime: DispatchRuntime):
    st.markdown("### 📱 Shipper App")

    if st.button("Bring every shipper online"):
        st.success(f"{bring_shippers_online(runtime)} shippers joined the pool")

    shippers = [s for s in runtime.repos.shippers.all() if s.is_approved_shipper]
    if not shippers:
        st.info("No approved shippers yet. Run scripts/seed_dispatch.py")
        return

    names = {s.id: f"{s.name} ({s.id[:8]})" for s in shippers}
    shipper_id = st.selectbox("Shipper", list(names), format_func=names.get)
    active = runtime.tracker.get(shipper_id)

    # ── presence ──
    if active is None:
        col1, col2, col3 = st.columns(3)
        with col1:
            lat = st.number_input("Latitude", value=DEFAULT_VIEW[0], format="%.6f")
        with col2:
            lng = st.number_input("Longitude", value=DEFAULT_VIEW[1], format="%.6f")
        with col3:
            max_km = st.number_input("Max distance (km)", 1.0, 50.0, float(DEFAULT_MAX_KM))

        if st.button("Go online", type="primary"):
            result = runtime.tracker.add_shipper(shipper_id, lat, lng, max_km)
            if result.success:
                st.success(f"{result.message} (score {result.score})")
            else:
                st.error(result.message)
        return

    st.caption(f"🟢 Online at {active.latitude:.4f}, {active.longitude:.4f} • score {active.eligibility_score}")
    if st.button("Go offline"):
        runtime.tracker.remove_shipper(shipper_id)
        st.info("Offline")
        return

    # ── current hold ──
    hold = runtime.offers.get_pending_assignment_for_shipper(shipper_id)
    if hold is not None:
        st.warning(f"Holding order {hold['order_id'][:8]} • {hold['remaining_seconds']}s left")
        col1, col2 = st.columns(2)
        try:
            with col1:
                if st.button("Accept", type="primary"):
                    runtime.offers.accept_assignment(hold["assignment_id"], shipper_id)
                    st.success("Order assigned to you")
            with col2:
                if st.button("Reject"):
                    runtime.offers.reject_assignment(hold["assignment_id"], shipper_id)
                    st.info("Order passed on")
        except AssignmentError as e:
            st.error(str(e))

    # ── open orders ──
    df = open_orders_frame(runtime, shipper_id)
    if df.empty:
        st.info("No orders waiting for a shipper")
    else:
        st.dataframe(df, use_container_width=True, hide_index=True)
        order_id = st.selectbox("Order", df["Order ID"].tolist(), format_func=lambda oid: oid[:8])
        if st.button("Request order"):
            try:
                runtime.offers.request_order_assignment(order_id, shipper_id)
                st.success("Order reserved. Accept or reject within the time limit")
            except AssignmentError as e:
                st.error(str(e))

    # ── deliveries in progress ──
    deliveries = runtime.repos.orders.find(
        lambda o: o.shipper_id == shipper_id and o.status == ORDER_DELIVERING
    )
    for order in deliveries:
        col1, col2, col3 = st.columns([3, 1, 1])
        with col1:
            st.write(f"🛵 Delivering {order.id[:8]} • {order.shipper_earnings or 0:,} ₫")
        with col2:
            if st.button("Delivered", key=f"done-{order.id}"):
                runtime.orders.complete_delivery(order.id)
                st.success("Delivery completed")
        with col3:
            if st.button("Failed", key=f"fail-{order.id}"):
                runtime.orders.fail_delivery(order.id)
                st.warning("Delivery marked as failed")


def render_constraints(runtime: DispatchRuntime, role: str):
    st.markdown("### ⚙️ System Constraints")

    constraints = runtime.constraints.get_constraints()
    st.json(constraints.to_dict())

    if not can_update_constraints(role):
        st.caption("🔒 Only admins can change constraints")
        return

    with st.form("constraints_form"):
        min_completion_rate = st.slider("Min completion rate", 0.0, 1.0, float(constraints.min_completion_rate))
        min_total_orders = st.number_input("Min total orders", 0, 1000, int(constraints.min_total_orders))
        max_active = st.number_input("Max active deliveries", 1, 20, int(constraints.max_active_deliveries))
        max_distance = st.number_input("Max delivery distance (km)", 1.0, 100.0, float(constraints.max_delivery_distance))
        min_rating = st.slider("Min shipper rating", 0.0, 5.0, float(constraints.min_shipper_rating))

        if st.form_submit_button("Save constraints", type="primary"):
            runtime.constraints.update_constraints(
                min_completion_rate=min_completion_rate,
                min_total_orders=int(min_total_orders),
                max_active_deliveries=int(max_active),
                max_delivery_distance=float(max_distance),
                min_shipper_rating=min_rating,
            )
            st.success("Constraints saved")


def render_fee_quote(runtime: DispatchRuntime):
    st.markdown("### 💰 Fee Quote")

    col1, col2 = st.columns(2)
    with col1:
        r_lat = st.number_input("Restaurant lat", value=DEFAULT_VIEW[0], format="%.6f")
        r_lng = st.number_input("Restaurant lng", value=DEFAULT_VIEW[1], format="%.6f")
    with col2:
        d_lat = st.number_input("Customer lat", value=10.7626, format="%.6f")
        d_lng = st.number_input("Customer lng", value=106.6602, format="%.6f")

    with st.expander("📍 Customer address lookup"):
        street = st.text_input("Street")
        ward = st.text_input("Ward")
        district = st.text_input("District")
        city = st.text_input("City", value="Ho Chi Minh")
        if street:
            location = geocode(street, ward, district, city)
            if location is None:
                st.caption("Address not found or Mapbox not configured, using coordinates above")
            else:
                d_lat, d_lng = location["lat"], location["lng"]
                st.caption(f"Found at {d_lat:.6f}, {d_lng:.6f}")

    quote = runtime.orders.calculate_order(d_lat, d_lng, r_lat, r_lng)

    col1, col2, col3, col4 = st.columns(4)
    with col1:
        st.metric("Distance", f"{quote['distance_km']} km")
    with col2:
        st.metric("Dispatch Fee", f"{quote['shipping_fee']:,} ₫")
    with col3:
        st.metric("Checkout Fee", f"{linear_shipping_fee(quote['distance_km']):,} ₫")
    with col4:
        st.metric("ETA", f"{quote['estimated_delivery_time']} min")

    if not quote["deliverable"]:
        st.warning("Outside the maximum delivery distance")


def render_notifications(role: str):
    unread = get_unread_count(role)
    with st.expander(f"🔔 Notifications ({unread} unread)"):
        notifications = get_notifications_for(role)
        if not notifications:
            st.caption("Nothing yet")
        for n in notifications[:20]:
            st.write(f"{'🆕 ' if not n['read'] else ''}{n['message']}  \n_{n['timestamp']}_")


def render_dispatch_console(runtime: DispatchRuntime):
    role = st.selectbox("Acting role", sorted(ALL_ROLES), index=sorted(ALL_ROLES).index(ADMIN))

    render_notifications(role)

    tabs = st.tabs(["⏳ Queue", "🛵 Shippers", "📱 Shipper App", "⚙️ Constraints", "💰 Quote"])
    with tabs[0]:
        render_pending_queue(runtime)
    with tabs[1]:
        render_shipper_pool(runtime)
    with tabs[2]:
        render_shipper_app(runtime)
    with tabs[3]:
        render_constraints(runtime, role)
    with tabs[4]:
        render_fee_quote(runtime)
