"""
Food Delivery Dispatch Console
Minimal main file: services built once, console rendered lazily
"""
import streamlit as st
from datetime import datetime

from dispatch import config

# ═══════════════════════════════════════════════════════════════
# PAGE CONFIG (MUST BE FIRST)
# ═══════════════════════════════════════════════════════════════
st.set_page_config(
    page_title="Dispatch Console",
    layout="wide",
    initial_sidebar_state="collapsed"
)

config.configure_logging()

# ═══════════════════════════════════════════════════════════════
# RUNTIME (ONCE PER PROCESS)
# ═══════════════════════════════════════════════════════════════
@st.cache_resource
def get_runtime():
    """Build every dispatch service ONCE and start the assignment worker."""
    from dispatch.runtime import build_runtime
    runtime = build_runtime()
    runtime.start_worker()
    return runtime

# ═══════════════════════════════════════════════════════════════
# HEADER (MINIMAL)
# ═══════════════════════════════════════════════════════════════
st.title("🛵 Dispatch Console")
st.caption("Shipper matching • Retry queue • Live pool")

runtime = get_runtime()

from ui.dispatch_console import render_dispatch_console
render_dispatch_console(runtime)

# ═══════════════════════════════════════════════════════════════
# FOOTER
# ═══════════════════════════════════════════════════════════════
st.divider()
st.caption(f"⚡ Worker running • Last updated: {datetime.now().strftime('%H:%M:%S')}")
