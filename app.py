"""
app.py
------
Streamlit front-end for CardioScribe.

    streamlit run app.py

Doctors record (or type) a consultation, review and edit the extracted heart
features, request a risk prediction and search any patient's history.
Patients see their own prediction history.  All state lives in the
``DiagnosisWorkflow`` / ``PatientHistoryView`` objects kept in
``st.session_state``; this file only renders them and forwards button
presses.
"""

import asyncio
import logging

import streamlit as st
from dotenv import load_dotenv
from streamlit_webrtc import WebRtcMode, webrtc_streamer

from cardioscribe import ApiClient, DiagnosisWorkflow, DoctorPhase, HistoryPhase, PatientHistoryView
from cardioscribe.errors import CardioScribeError
from cardioscribe.features import FIELD_SPECS
from cardioscribe.schemas import DisplayDiagnosis, Role
from cardioscribe.session import SessionState, sign_in, sign_up
from cardioscribe.workflow import SLOT_EXTRACTION, SLOT_HISTORY, SLOT_PREDICTION

load_dotenv()

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)

st.set_page_config(
    page_title="CardioScribe - Heart Risk Assistant",
    page_icon="🫀",
    layout="wide",
)

if "session" not in st.session_state:
    st.session_state.session = SessionState()
if "client" not in st.session_state:
    st.session_state.client = ApiClient()
if "workflow" not in st.session_state:
    st.session_state.workflow = DiagnosisWorkflow(st.session_state.client)
if "patient_view" not in st.session_state:
    st.session_state.patient_view = None

session: SessionState = st.session_state.session
wf: DiagnosisWorkflow = st.session_state.workflow

# ══════════════════════════════════════════════════════════════════════════════
#  CSS
# ══════════════════════════════════════════════════════════════════════════════
st.markdown("""
<style>
.section-title { font-size:1.05rem; font-weight:700; color:#0f172a; margin:1.2rem 0 0.6rem; }
.dx-card { border:1px solid #e2e8f0; border-radius:0.75rem; padding:0.9rem 1.1rem;
           margin-bottom:0.75rem; background:#ffffff; }
.dx-card .dx-date { font-size:0.78rem; color:#64748b; margin-bottom:0.35rem; }
.dx-card .dx-risk { font-weight:700; color:#b91c1c; margin:0.35rem 0; }
.dx-label { font-size:0.7rem; font-weight:800; text-transform:uppercase;
            letter-spacing:0.06em; color:#94a3b8; margin-top:0.5rem; }
.empty-state { color:#94a3b8; font-style:italic; padding:1rem 0; }
</style>
""", unsafe_allow_html=True)


def _run(coro):
    return asyncio.run(coro)


def render_alert(alert) -> None:
    if alert is None:
        return
    st.error(f"**{alert.title}**: {alert.message}")


def render_diagnosis(diagnosis: DisplayDiagnosis) -> None:
    date_html = f'<div class="dx-date">📅 {diagnosis.date}</div>' if diagnosis.date else ""
    risk_html = f'<div class="dx-risk">{diagnosis.prediction_line}</div>' if diagnosis.prediction_line else ""
    symptoms = "<br>".join(diagnosis.symptom_lines) or "N/A"
    medicines = "<br>".join(diagnosis.medicine_lines) or "N/A"
    summary_html = (
        f'<div class="dx-label">Summary</div><div>{diagnosis.summary}</div>'
        if diagnosis.summary else ""
    )
    st.markdown(
        f'<div class="dx-card">{date_html}{risk_html}'
        f'<div class="dx-label">Symptoms</div><div>{symptoms}</div>'
        f'<div class="dx-label">Medicines</div><div>{medicines}</div>'
        f'{summary_html}</div>',
        unsafe_allow_html=True,
    )


def do_logout() -> None:
    st.session_state.session = wf.logout()
    st.session_state.patient_view = None


# ══════════════════════════════════════════════════════════════════════════════
#  AUTH
# ══════════════════════════════════════════════════════════════════════════════

def render_auth() -> None:
    st.markdown("## 🫀 CardioScribe")
    role_label = st.radio("I am a", ["Doctor", "Patient"], horizontal=True)
    role = Role(role_label.lower())
    login_tab, register_tab = st.tabs(["Login", "Register"])

    with login_tab:
        with st.form("login"):
            name = st.text_input("Name")
            password = st.text_input("Password", type="password")
            submitted = st.form_submit_button("Login")
        if submitted:
            try:
                st.session_state.session = _run(sign_in(st.session_state.client, role, name, password))
            except CardioScribeError as exc:
                st.error(f"**{exc.title}**: {exc.user_message}")
            else:
                st.rerun()

    with register_tab:
        with st.form("register"):
            name = st.text_input("Name", key="reg_name")
            email = st.text_input("Email", key="reg_email")
            password = st.text_input("Password", type="password", key="reg_password")
            confirm = st.text_input("Confirm password", type="password", key="reg_confirm")
            submitted = st.form_submit_button("Register")
        if submitted:
            try:
                message = _run(sign_up(st.session_state.client, role, name, email, password, confirm))
            except CardioScribeError as exc:
                st.error(f"**{exc.title}**: {exc.user_message}")
            else:
                st.success(message)


# ══════════════════════════════════════════════════════════════════════════════
#  DOCTOR
# ══════════════════════════════════════════════════════════════════════════════

def render_feature_editor() -> None:
    editing = wf.phase == DoctorPhase.EDITING
    values = wf.features.working_copy() if editing else wf.features.current()

    if wf.features.rejected:
        st.warning("Please check: " + ", ".join(wf.features.rejected))

    if not editing:
        rows = [f"{FIELD_SPECS[name].label}: {values.get(name, 'N/A')}" for name in FIELD_SPECS]
        st.markdown("<br>".join(rows), unsafe_allow_html=True)
        if st.button("✏️ Edit", disabled=wf.phase != DoctorPhase.EXTRACTED):
            wf.begin_edit()
            st.rerun()
        return

    with st.form("edit_features"):
        inputs = {}
        for name, spec in FIELD_SPECS.items():
            current = values.get(name)
            if spec.kind == "choice":
                options = list(spec.choices)
                index = options.index(current) if current in options else 0
                inputs[name] = st.selectbox(spec.label, options, index=index)
            else:
                inputs[name] = st.text_input(spec.label, value="" if current is None else str(current))
        save = st.form_submit_button("Save")
        cancel = st.form_submit_button("Cancel")

    if cancel:
        wf.cancel_edit()
        st.rerun()
    if save:
        failed = [name for name, value in inputs.items() if not wf.update_field(name, value).ok]
        if failed:
            st.error("Invalid value for: " + ", ".join(failed))
        else:
            wf.commit_edit()
            st.rerun()


def render_doctor() -> None:
    col_left, col_right = st.columns([3, 2], gap="large")

    # ─── LEFT: capture, features, analysis ──────────────────────────────────
    with col_left:
        st.markdown('<div class="section-title">Consultation</div>', unsafe_allow_html=True)

        recorder = wf.recorder
        webrtc_ctx = webrtc_streamer(
            key="consultation_audio",
            mode=WebRtcMode.SENDONLY,
            audio_processor_factory=lambda: recorder,
            rtc_configuration={"iceServers": [{"urls": ["stun:stun.l.google.com:19302"]}]},
            media_stream_constraints={"video": False, "audio": True},
        )
        if not webrtc_ctx.state.playing:
            st.caption("Allow microphone access and press START to connect the microphone.")

        rec_col, stop_col = st.columns(2)
        with rec_col:
            if st.button("🎙️ Start recording", disabled=wf.phase == DoctorPhase.RECORDING):
                wf.start_recording()
                st.rerun()
        with stop_col:
            if st.button(
                "⏹ Stop & analyze",
                disabled=wf.phase != DoctorPhase.RECORDING or wf.busy(SLOT_EXTRACTION),
            ):
                with st.spinner("Analyzing recording…"):
                    _run(wf.stop_and_analyze())
                st.rerun()

        if wf.phase == DoctorPhase.RECORDING:
            st.markdown("🔴 Recording…")

        with st.expander("Or describe the symptoms in text"):
            text = st.text_area("Description", key="symptom_text")
            if st.button("Analyze text", disabled=wf.busy(SLOT_EXTRACTION)):
                with st.spinner("Analyzing…"):
                    _run(wf.analyze_text(text))
                st.rerun()

        if wf.extraction_display is not None:
            st.markdown('<div class="section-title">Extracted from recording</div>', unsafe_allow_html=True)
            render_diagnosis(wf.extraction_display)

        if wf.phase in (DoctorPhase.EXTRACTED, DoctorPhase.EDITING, DoctorPhase.COMPLETE):
            st.markdown('<div class="section-title">Heart features</div>', unsafe_allow_html=True)
            render_feature_editor()

            patient_name = st.text_input("Patient name", key="predict_patient")
            if st.button(
                "🫀 Analyze heart risk",
                disabled=wf.phase != DoctorPhase.EXTRACTED or wf.busy(SLOT_PREDICTION),
            ):
                with st.spinner("Requesting prediction…"):
                    _run(wf.analyze(patient_name))
                st.rerun()

        if wf.result is not None:
            st.markdown('<div class="section-title">Prediction</div>', unsafe_allow_html=True)
            st.markdown(f"**Patient:** {wf.result.patient_name}")
            render_diagnosis(wf.result.diagnosis)

    # ─── RIGHT: patient history search ──────────────────────────────────────
    with col_right:
        st.markdown('<div class="section-title">Patient history</div>', unsafe_allow_html=True)
        query = st.text_input("Patient ID or name", key="history_query")
        if st.button("🔍 Search", disabled=wf.busy(SLOT_HISTORY)):
            with st.spinner("Loading history…"):
                _run(wf.search_history(query))
            st.rerun()

        if wf.history_phase == HistoryPhase.EMPTY:
            st.markdown(f'<div class="empty-state">{wf.history_message}</div>', unsafe_allow_html=True)
        elif wf.history_phase == HistoryPhase.ERROR:
            st.markdown(f'<div class="empty-state">{wf.history_message}</div>', unsafe_allow_html=True)
            if wf.can_retry_history() and st.button("Retry"):
                _run(wf.retry_history())
                st.rerun()
        elif wf.history_phase == HistoryPhase.SHOWN and wf.history is not None:
            for diagnosis in wf.history.diagnoses:
                render_diagnosis(diagnosis)
            if wf.history.skipped:
                st.caption(f"{len(wf.history.skipped)} record(s) could not be displayed.")


# ══════════════════════════════════════════════════════════════════════════════
#  PATIENT
# ══════════════════════════════════════════════════════════════════════════════

def render_patient() -> None:
    view = st.session_state.patient_view
    if view is None or view.session != session:
        view = PatientHistoryView(session, st.session_state.client)
        st.session_state.patient_view = view
        _run(view.load())

    stats = view.stats
    c1, c2, c3 = st.columns(3)
    c1.metric("Total diagnoses", stats.total)
    c2.metric("High risk", stats.high_risk)
    c3.metric("Latest", stats.latest_date or "N/A")

    if st.button("↻ Refresh"):
        _run(view.load())
        st.rerun()

    if view.phase == HistoryPhase.ERROR:
        render_alert(view.alert)
    elif view.phase == HistoryPhase.EMPTY:
        st.markdown(f'<div class="empty-state">{view.message}</div>', unsafe_allow_html=True)
    elif view.history is not None:
        for diagnosis in view.history.diagnoses:
            render_diagnosis(diagnosis)


# ══════════════════════════════════════════════════════════════════════════════
#  HEADER + ROUTING
# ══════════════════════════════════════════════════════════════════════════════

if not session.logged_in:
    render_auth()
else:
    header_col1, header_col2 = st.columns([3, 1])
    with header_col1:
        st.markdown(f"## 🫀 CardioScribe · {session.identity}")
    with header_col2:
        st.button("Logout", on_click=do_logout)

    render_alert(wf.alert)
    if wf.alert is not None and st.button("Dismiss"):
        wf.dismiss_alert()
        st.rerun()

    if session.role == Role.DOCTOR:
        render_doctor()
    else:
        render_patient()
