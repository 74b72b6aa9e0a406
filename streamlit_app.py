"""
Drip Irrigation Dashboard
Live telemetry, analytics and valve control for registered ESP32 devices
"""

import datetime
import logging
import weakref

import streamlit as st
from streamlit_autorefresh import st_autorefresh

import analytics
import charts
import config
import devices
import export
from alerts import AlertCenter, check_sensor_alerts
from backend import connect
from commands import CommandDispatcher, CommandError
from reconciler import DeviceReconciler, LIVE, NO_DATA, STALE, VALVE_PENDING, VALVE_REVERTED

config.configure_logging()
logger = logging.getLogger("drip_dashboard")

st.set_page_config(
    page_title="Drip Irrigation",
    layout="wide",
    initial_sidebar_state="expanded"
)

WINDOW_LABELS = {
    "1h": "Last 1 Hour",
    "6h": "Last 6 Hours",
    "24h": "Last 24 Hours",
    "7d": "Last 7 Days",
    "30d": "Last 30 Days",
    "all": "Everything loaded",
}

# =====================================================
# SESSION RESOURCES
# =====================================================

class SessionServices(dict):
    """Per-session services; streams and timers are released when the session is dropped"""


def _release_services(reconciler, alert_center):
    logger.info("Session ended, releasing device streams")
    alert_center.close()
    reconciler.close()


def get_services():
    """Backend, reconciler, dispatcher and alerts for this browser session"""
    if "services" not in st.session_state:
        backend = connect(config.FIREBASE_CONFIG, id_token=config.ID_TOKEN)
        reconciler = DeviceReconciler(backend, config.USER_ID)
        with st.spinner("Loading devices..."):
            reconciler.load_devices()
        reconciler.watch_devices()
        alert_center = AlertCenter(backend, config.USER_ID)
        alert_center.watch(reconciler.devices)
        services = SessionServices({
            "backend": backend,
            "reconciler": reconciler,
            "dispatcher": CommandDispatcher(backend, reconciler),
            "alerts": alert_center,
            "watched": [d["deviceId"] for d in reconciler.devices],
        })
        weakref.finalize(services, _release_services, reconciler, alert_center)
        st.session_state.services = services
    return st.session_state.services


def run_command(action, *args):
    """Send a command and report the outcome"""
    try:
        action(*args)
        return True
    except CommandError as e:
        st.error(f"❌ Command failed: {e}")
        return False

# =====================================================
# SECTIONS
# =====================================================

def device_sidebar(services):
    reconciler = services["reconciler"]
    device_items = reconciler.devices

    with st.sidebar:
        st.markdown("### 📟 Devices")
        if not device_items:
            st.info("No devices registered yet.")
            return None, "24h"

        labels = [d.get("name") or d["deviceId"] for d in device_items]
        selected = reconciler.selected
        index = next(
            (i for i, d in enumerate(device_items) if selected and d["id"] == selected["id"]), 0
        )
        choice = st.selectbox("Device", range(len(device_items)), index=index,
                              format_func=lambda i: labels[i])
        if selected is None or device_items[choice]["id"] != selected["id"]:
            reconciler.select_device(device_items[choice])

        for d in device_items:
            health = devices.device_health(d)
            icon = {"online": "🟢", "warning": "🟠"}.get(health, "🔴")
            st.caption(f"{icon} {d.get('name') or d['deviceId']}: {health}")

        st.markdown("---")
        window = st.selectbox("History Range", list(WINDOW_LABELS), index=2,
                              format_func=WINDOW_LABELS.get)
    return device_items[choice], window


def live_section(state):
    live = state["live"] or {}
    moisture = live.get("moisture", 0)
    condition, icon, color, status_text = analytics.moisture_condition(moisture)

    if state["status"] == LIVE:
        st.caption("🟢 Live")
    elif state["status"] == STALE:
        st.caption("🟠 Stale: no update in the last 2 minutes")
    else:
        st.caption("⚪ Demo data: the device has not reported yet")
    if not state["connected"]:
        st.caption("🔌 Database connection lost")

    col1, col2, col3, col4 = st.columns(4)
    with col1:
        st.metric("💧 Soil Moisture", f"{moisture}%")
    with col2:
        st.metric("🌱 Condition", f"{icon} {condition}")
    with col3:
        st.metric("🌡 Temperature", f"{live.get('temperature', 0)}°C")
    with col4:
        st.metric("💨 Humidity", f"{live.get('humidity', 0)}%")


def control_section(services, device, state):
    dispatcher = services["dispatcher"]
    device_id = device["deviceId"]
    valve = state["valve"]
    valve_status = valve["value"]

    label = "✅ ON" if valve_status == "ON" else "⭕ OFF"
    if valve["state"] == VALVE_PENDING:
        label += " (waiting for device)"
    elif valve["state"] == VALVE_REVERTED:
        st.warning("⚠ The device did not apply the last valve command")
    st.metric("🚰 Valve", label)

    col1, col2, col3, col4 = st.columns(4)
    with col1:
        if st.button("🟢 OPEN VALVE", use_container_width=True, disabled=(valve_status == "ON")):
            if run_command(dispatcher.set_valve, device_id, "ON"):
                st.rerun()
    with col2:
        if st.button("🔴 CLOSE VALVE", use_container_width=True, disabled=(valve_status == "OFF")):
            if run_command(dispatcher.set_valve, device_id, "OFF"):
                st.rerun()
    with col3:
        minutes = st.number_input("Minutes", min_value=1, max_value=120,
                                  value=int(device.get("wateringDuration", 5)))
        if st.button("💧 QUICK WATER", use_container_width=True):
            if run_command(dispatcher.quick_water, device_id, minutes):
                st.rerun()
    with col4:
        if st.button("🛑 EMERGENCY STOP", use_container_width=True, type="primary"):
            if run_command(dispatcher.emergency_stop, device_id):
                st.rerun()

    mode = st.radio("Mode", ["AUTOMATIC", "MANUAL"], horizontal=True,
                    index=0 if device.get("autoWatering", True) else 1)
    if st.button("🎛 Apply Mode"):
        if run_command(dispatcher.set_mode, device_id, mode):
            st.success(f"✅ Mode set to {mode}")


def analytics_section(services, device, state, window):
    reconciler = services["reconciler"]
    st.markdown("### 📈 Moisture History")
    history = analytics.filter_window(state["history"], window)
    if history and history[0].get("synthetic"):
        st.caption("Demo series shown until the device logs history")
    st.plotly_chart(charts.moisture_figure(history, threshold=device.get("moistureThreshold")),
                    use_container_width=True)

    st.markdown("### 📊 Analytics")
    result = analytics.analyze(reconciler.load_history(), window)
    if not result["readings"]:
        st.caption("No logged history in this range yet")
    eff = result["efficiency"]
    pred = result["predictions"]

    col1, col2, col3, col4 = st.columns(4)
    with col1:
        st.metric("📊 Average Moisture", f"{eff.get('avg_moisture', 0)}%")
    with col2:
        st.metric("⏱ Total Watering",
                  analytics.format_runtime(eff.get("total_watering_time", 0) * 60))
    with col3:
        st.metric("📉 Low Moisture", f"{eff.get('low_moisture_percent', 0)}%")
    with col4:
        st.metric("💧 Watering Gain", f"{eff.get('watering_efficiency', 0)}%")

    if pred:
        st.info(
            f"🔮 Moisture is **{pred['trend']}**, about **{pred['predicted_moisture']}%** "
            f"in 6 hours (confidence {pred['confidence']:.0f}%)"
        )
    else:
        st.caption("At least 10 readings are needed for a prediction")

    col_a, col_b = st.columns(2)
    with col_a:
        st.plotly_chart(charts.trend_figure(result["moisture_trends"]), use_container_width=True)
    with col_b:
        st.plotly_chart(charts.events_figure(result["watering_events"]), use_container_width=True)

    st.markdown("### 💾 Export Data")
    stamp = datetime.datetime.now(config.TIMEZONE).strftime('%Y%m%d_%H%M%S')
    col_e1, col_e2 = st.columns(2)
    with col_e1:
        st.download_button(
            label="📥 Watering History CSV",
            data=export.events_to_csv(result["watering_events"]),
            file_name=f"watering_history_{device['deviceId']}_{stamp}.csv",
            mime="text/csv",
            use_container_width=True
        )
    with col_e2:
        st.download_button(
            label="📥 Sensor History CSV",
            data=export.history_to_csv(result["readings"]),
            file_name=f"sensor_history_{device['deviceId']}_{stamp}.csv",
            mime="text/csv",
            use_container_width=True
        )


def alerts_section(services, device, state):
    alert_center = services["alerts"]
    if state["live"] and state["status"] != NO_DATA:
        for alert in check_sensor_alerts(device, state["live"], last_seen=state["last_seen"]):
            alert_center.add(alert)

    pending = alert_center.pending()
    if not pending:
        return
    st.markdown("### 🔔 Alerts")
    for alert in pending:
        show = st.error if alert["severity"] == "error" else st.warning
        col1, col2 = st.columns([4, 1])
        with col1:
            show(f"{alert['deviceName']}: {alert['message']}")
        with col2:
            if st.button("Acknowledge", key=f"ack_{alert['id']}"):
                try:
                    alert_center.acknowledge(alert)
                    st.rerun()
                except Exception as e:
                    st.error(f"❌ Failed to acknowledge: {e}")


def settings_section(services, device):
    backend = services["backend"]
    with st.expander("⚙ Device Settings"):
        with st.form("device_config"):
            name = st.text_input("Name", value=device.get("name", ""))
            location = st.text_input("Location", value=device.get("location", ""))
            threshold = st.slider("Moisture threshold (%)", 0, 100, int(device["moistureThreshold"]))
            auto = st.toggle("Automatic watering", value=bool(device["autoWatering"]))
            duration = st.number_input("Watering duration (min)", min_value=1,
                                       value=int(device["wateringDuration"]))
            interval = st.number_input("Check interval (min)", min_value=1,
                                       value=int(device["checkInterval"]))
            if st.form_submit_button("💾 Save Settings", type="primary"):
                try:
                    devices.update_device_config(backend, config.USER_ID, device, {
                        "name": name,
                        "location": location,
                        "moistureThreshold": threshold,
                        "autoWatering": auto,
                        "wateringDuration": duration,
                        "checkInterval": interval,
                    })
                    st.success("✅ Device configuration updated")
                except Exception as e:
                    st.error(f"❌ Failed to update settings: {e}")

        col1, col2 = st.columns(2)
        with col1:
            if st.button("📡 Test Connection", use_container_width=True):
                if run_command(services["dispatcher"].ping, device["deviceId"]):
                    st.success("✅ Test command sent to device")
        with col2:
            if st.button("🗑 Remove Device", use_container_width=True):
                try:
                    devices.remove_device(backend, config.USER_ID, device)
                    st.success("✅ Device removed")
                    st.rerun()
                except Exception as e:
                    st.error(f"❌ Error removing device: {e}")

# =====================================================
# PAGE
# =====================================================

def dashboard_page():
    if not config.USER_ID:
        st.warning("⚠ Set DRIP_USER_ID to the signed-in user's id.")
        return

    st_autorefresh(interval=config.REFRESH_INTERVAL_MS, key="refresh", limit=None)
    services = get_services()

    # follow device list changes
    device_ids = [d["deviceId"] for d in services["reconciler"].devices]
    if device_ids != services["watched"]:
        services["alerts"].watch(services["reconciler"].devices)
        services["watched"] = device_ids

    st.markdown("# 💧 Drip Irrigation Dashboard")
    device, window = device_sidebar(services)
    if device is None:
        st.info("Register an ESP32 to start monitoring.")
        return

    state = services["reconciler"].state()
    alerts_section(services, device, state)
    live_section(state)
    st.markdown("---")
    control_section(services, device, state)
    st.markdown("---")
    analytics_section(services, device, state, window)
    st.markdown("---")
    settings_section(services, device)


dashboard_page()
