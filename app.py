import logging
import os
from datetime import date, datetime

import pandas as pd
import streamlit as st
from streamlit_autorefresh import st_autorefresh

from alerts import alert_stats, merge_alerts
from context import build_context
from medicine import MedicineError
from storage import CaregiverSettings

logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO"))

HEALTH_INTERVAL_MS = int(float(os.getenv("HEALTH_INTERVAL_SECONDS", "5")) * 1000)

st.set_page_config(page_title="CareConnect", layout="wide")

# ---- Context (one per browser session) ----
if "ctx" not in st.session_state:
    st.session_state.ctx = build_context()
if "notified" not in st.session_state:
    st.session_state.notified = set()  # (reminder id, time, day) already announced

ctx = st.session_state.ctx

# ---- Sidebar ----
st.sidebar.title("CareConnect")
page = st.sidebar.radio("Page", ["Dashboard", "Medicines", "History", "Settings"])
auto = st.sidebar.toggle("Live monitoring", value=True)

st.sidebar.subheader("Test scenarios")
if st.sidebar.button("Simulate high heart rate"):
    ctx.simulator.simulate_high_heart_rate()
if st.sidebar.button("Simulate low heart rate"):
    ctx.simulator.simulate_low_heart_rate()
if st.sidebar.button("Reset to normal"):
    ctx.simulator.reset_to_normal()
if st.sidebar.button("Toggle fall detection"):
    ctx.simulator.toggle_fall_detection()
if st.sidebar.button("Simulate fall"):
    ctx.alerts.report_fall(ctx.simulator.fall_detection_active, ctx.simulator.current().heart_rate)

if auto:
    count = st_autorefresh(interval=HEALTH_INTERVAL_MS, key="health_refresh")
    # one simulator step per refresh
    if count and st.session_state.get("last_tick") != count:
        st.session_state.last_tick = count
        ctx.simulator.tick()

# ---- Medicine notifications ----
now = datetime.now()
for dose in ctx.medicine.reminders_due_at(now):
    key = (dose.reminder.id, dose.scheduled_time, now.date().isoformat())
    if key not in st.session_state.notified:
        st.session_state.notified.add(key)
        st.toast(f"Medicine time! Take {dose.reminder.name} ({dose.reminder.dosage})")

settings = ctx.store.get_settings()
health = ctx.latest or ctx.simulator.current()


def dashboard():
    st.title("Dashboard")
    st.caption(f"Caregiver: {settings.caregiver_name} • {settings.caregiver_phone}")
    if "flash" in st.session_state:
        st.success(st.session_state.pop("flash"))

    status_ok = settings.min_heart_rate <= health.heart_rate <= settings.max_heart_rate
    stats = alert_stats(ctx.store.get_alerts(), now)

    c1, c2, c3, c4 = st.columns(4)
    c1.metric("Heart rate (bpm)", health.heart_rate, help="Normal" if status_ok else "Out of range")
    c2.metric("Fall detection", "Protection Active" if health.fall_detection_active else "Detection Disabled")
    avg = stats["avg_heart_rate"]
    c3.metric("Avg alert HR today", f"{round(avg)} BPM" if avg else f"{health.heart_rate} BPM")
    c4.metric("Falls detected today", stats["falls_detected"])

    if not status_ok:
        st.error(f"Heart rate {health.heart_rate} BPM outside {settings.min_heart_rate}-{settings.max_heart_rate}")

    st.subheader("Emergency")
    if st.button("🚨 SOS", type="primary", use_container_width=True):
        result = ctx.alerts.send_emergency_alert(health.heart_rate)
        (st.success if result.success else st.error)(result.message)

    st.subheader("Medicines due")
    due = ctx.medicine.due_doses(now)
    if not due:
        st.info("Nothing due right now.")
    for i, dose in enumerate(due):
        col_a, col_b = st.columns([3, 1])
        label = "OVERDUE" if dose.is_overdue else "due"
        col_a.write(f"**{dose.reminder.name}** ({dose.reminder.dosage}) at {dose.scheduled_time} — {label}")
        if col_b.button("Mark taken", key=f"take-{dose.reminder.id}-{dose.scheduled_time}-{i}"):
            try:
                st.session_state.flash = ctx.confirm_dose(dose.reminder.id, dose.scheduled_time)
            except MedicineError as e:
                st.error(str(e))
            else:
                # redraw so the confirmed dose leaves the due list
                st.rerun()


def medicines():
    st.title("Medicine Reminders")

    with st.form("add_medicine", clear_on_submit=True):
        name = st.text_input("Medicine name")
        dosage = st.text_input("Dosage")
        times = st.text_input("Times (HH:MM, comma separated)", value="08:00")
        start = st.date_input("Start date", value=date.today())
        end = st.date_input("End date", value=None)
        notes = st.text_area("Notes")
        if st.form_submit_button("Add New Medicine"):
            try:
                ctx.medicine.add_reminder(
                    name=name, dosage=dosage, times=times.split(","),
                    start_date=start, end_date=end, notes=notes,
                )
                st.success(f"{name} reminder has been set up successfully.")
            except ValueError as e:
                st.error(str(e))

    for r in ctx.medicine.reminders:
        with st.container(border=True):
            st.write(f"**{r.name}** — {r.dosage} at {', '.join(r.times)}")
            st.caption(f"Taken today: {ctx.medicine.taken_count_today(r.id, now)}/{len(r.times)}"
                       + (f" • {r.notes}" if r.notes else ""))
            a, b = st.columns(2)
            if a.button("Disable" if r.is_active else "Enable", key=f"toggle-{r.id}"):
                ctx.medicine.toggle_reminder(r.id)
                st.rerun()
            if b.button("Delete", key=f"delete-{r.id}"):
                ctx.medicine.delete_reminder(r.id)
                st.rerun()

    st.subheader("Today's log")
    logs = ctx.medicine.logs_for_day(now)
    if logs:
        st.dataframe(pd.DataFrame([log.to_dict() for log in logs]), use_container_width=True, hide_index=True)
    else:
        st.info("No doses logged today.")


def history():
    st.title("Alert History")
    rows = merge_alerts(ctx.store.get_alerts(), ctx.alerts.fetch_server_alerts())
    if rows:
        st.dataframe(pd.DataFrame(rows), use_container_width=True, hide_index=True)
    else:
        st.info("No alerts yet.")
    if st.button("Clear local history"):
        ctx.store.clear_alerts()
        st.rerun()


def settings_page():
    st.title("Settings")
    with st.form("settings"):
        name = st.text_input("Caregiver name", value=settings.caregiver_name)
        phone = st.text_input("Caregiver phone", value=settings.caregiver_phone)
        lo, hi = st.slider("Heart rate range (bpm)", 30, 200,
                           (settings.min_heart_rate, settings.max_heart_rate))
        sensitivity = st.selectbox("Fall sensitivity", ["low", "medium", "high"],
                                   index=["low", "medium", "high"].index(settings.fall_sensitivity))
        if st.form_submit_button("Save"):
            ctx.store.save_settings(CaregiverSettings(name, phone, lo, hi, sensitivity))
            st.success("Settings saved.")

    if st.button("Send test alert"):
        result = ctx.alerts.send_test_alert(settings.caregiver_phone)
        (st.success if result.success else st.error)(result.message)


{"Dashboard": dashboard, "Medicines": medicines, "History": history, "Settings": settings_page}[page]()
