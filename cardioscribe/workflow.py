"""
workflow.py
-----------
Screen-level state machines.  These are what the front-end holds in its
session state and calls on every button press.

DiagnosisWorkflow (doctor screen)
---------------------------------
Recording sub-machine:

    Idle → Recording → Uploading → Extracted ⇄ Editing
                                   Extracted → Analyzing → Complete

History sub-machine (independent, may run while a recording is analysed):

    Idle → Searching → Shown | Empty | Error

Every operation returns ``Ok(data)`` or ``Err(error)``; nothing raises to the
UI.  Four busy slots (recording, extraction, prediction, history) guard
against a second request of the same kind while one is pending.

``logout()`` / ``close()`` reset both machines and bump a generation
counter.  Requests already in flight are not cancelled; when they complete
their results are dropped because the generation no longer matches.

PatientHistoryView (patient screen)
-----------------------------------
Loads the logged-in patient's own history with the same presentation rules.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping, Optional

from .api_client import ApiClient
from .errors import (
    CardioScribeError,
    Err,
    InvalidTransition,
    NotFound,
    Ok,
    Outcome,
    SlotBusy,
    ValidationError,
)
from .extraction import analyze_audio, analyze_text, extraction_to_display
from .features import FeatureStore, build_snapshot
from .history import fetch_history, summarize_history
from .prediction import submit_prediction
from .recorder import AudioRecorder
from .schemas import DisplayDiagnosis, ExtractionResult, HistoryResult, HistoryStats, RiskResult
from .session import SessionState, logout as logged_out_state

logger = logging.getLogger(__name__)

SLOT_RECORDING = "recording"
SLOT_EXTRACTION = "extraction"
SLOT_PREDICTION = "prediction"
SLOT_HISTORY = "history"


class DoctorPhase(str, Enum):
    IDLE      = "idle"
    RECORDING = "recording"
    UPLOADING = "uploading"
    EXTRACTED = "extracted"
    EDITING   = "editing"
    ANALYZING = "analyzing"
    COMPLETE  = "complete"


class HistoryPhase(str, Enum):
    IDLE      = "idle"
    SEARCHING = "searching"
    SHOWN     = "shown"
    EMPTY     = "empty"
    ERROR     = "error"


@dataclass(frozen=True)
class Alert:
    """What the UI shows in its modal."""

    title: str
    message: str
    kind: str
    retryable: bool = False

    @classmethod
    def from_error(cls, error: CardioScribeError) -> "Alert":
        return cls(
            title=error.title,
            message=error.user_message,
            kind=error.kind,
            retryable=error.retryable,
        )


# Phases from which a fresh capture / text analysis may begin.
_NEW_SESSION_PHASES = {DoctorPhase.IDLE, DoctorPhase.EXTRACTED, DoctorPhase.COMPLETE}


class DiagnosisWorkflow:
    """
    Usage
    -----
    wf = DiagnosisWorkflow(ApiClient())
    wf.start_recording()
    await wf.stop_and_analyze()
    wf.begin_edit(); wf.update_field("Age", 50); wf.commit_edit()
    outcome = await wf.analyze("John Doe")
    """

    def __init__(
        self,
        client: Optional[ApiClient] = None,
        recorder: Optional[AudioRecorder] = None,
    ) -> None:
        self.client = client or ApiClient()
        self.recorder = recorder or AudioRecorder()
        self.features = FeatureStore()
        self._busy: set[str] = set()
        self._generation = 0
        self._reset()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _reset(self) -> None:
        self.phase = DoctorPhase.IDLE
        self.extraction: Optional[ExtractionResult] = None
        self.extraction_display: Optional[DisplayDiagnosis] = None
        self.audio_ref: Optional[str] = None
        self.result: Optional[RiskResult] = None
        self.history_phase = HistoryPhase.IDLE
        self.history: Optional[HistoryResult] = None
        self.history_message = ""
        self.history_query = ""
        self.history_error: Optional[CardioScribeError] = None
        self.alert: Optional[Alert] = None
        self.features.clear()

    def _fail(self, error: CardioScribeError) -> Err:
        logger.warning("%s: %s", error.kind, error.user_message)
        self.alert = Alert.from_error(error)
        return Err(error)

    def _claim(self, slot: str) -> Optional[Err]:
        if slot in self._busy:
            return Err(SlotBusy(slot))
        self._busy.add(slot)
        return None

    def _release(self, slot: str, generation: int) -> None:
        if generation == self._generation:
            self._busy.discard(slot)

    def _stale(self, generation: int) -> Optional[Err]:
        if generation != self._generation:
            logger.info("Dropping result of a request started before the last reset.")
            return Err(InvalidTransition("The session was reset before the request finished."))
        return None

    def _begin_new_session(self) -> None:
        self.extraction = None
        self.extraction_display = None
        self.audio_ref = None
        self.result = None
        self.features.clear()

    def busy(self, slot: str) -> bool:
        return slot in self._busy

    def dismiss_alert(self) -> None:
        self.alert = None

    # ------------------------------------------------------------------
    # Recording → extraction
    # ------------------------------------------------------------------

    def start_recording(self) -> Outcome:
        if self.phase == DoctorPhase.RECORDING:
            return Ok(None)
        if SLOT_EXTRACTION in self._busy or SLOT_PREDICTION in self._busy:
            return Err(SlotBusy(SLOT_EXTRACTION if SLOT_EXTRACTION in self._busy else SLOT_PREDICTION))
        if self.phase not in _NEW_SESSION_PHASES:
            return self._fail(InvalidTransition("Finish editing before starting a new recording."))

        try:
            self.recorder.start_recording()
        except CardioScribeError as exc:
            return self._fail(exc)

        self._begin_new_session()
        self._busy.add(SLOT_RECORDING)
        self.phase = DoctorPhase.RECORDING
        return Ok(None)

    async def stop_and_analyze(self) -> Outcome:
        """Finalise the recording and upload it for extraction."""
        if self.phase != DoctorPhase.RECORDING:
            return self._fail(InvalidTransition("No recording in progress."))
        busy = self._claim(SLOT_EXTRACTION)
        if busy:
            return busy

        generation = self._generation
        self._busy.discard(SLOT_RECORDING)
        try:
            uri = self.recorder.stop_recording()
        except CardioScribeError as exc:
            self.phase = DoctorPhase.IDLE
            self._release(SLOT_EXTRACTION, generation)
            return self._fail(exc)

        self.audio_ref = uri
        self.phase = DoctorPhase.UPLOADING
        try:
            result = await analyze_audio(self.client, uri)
        except CardioScribeError as exc:
            stale = self._stale(generation)
            if stale:
                return stale
            self.phase = DoctorPhase.IDLE
            return self._fail(exc)
        finally:
            if generation == self._generation:
                self.recorder.finish_upload()
            self._release(SLOT_EXTRACTION, generation)

        return self._stale(generation) or self._accept_extraction(result)

    async def analyze_text(self, text: str) -> Outcome:
        """Text path: same extraction flow without a recording."""
        if self.phase not in _NEW_SESSION_PHASES:
            return self._fail(InvalidTransition("Finish the current step first."))
        busy = self._claim(SLOT_EXTRACTION)
        if busy:
            return busy

        generation = self._generation
        self._begin_new_session()
        self.phase = DoctorPhase.UPLOADING
        try:
            result = await analyze_text(self.client, text)
        except CardioScribeError as exc:
            stale = self._stale(generation)
            if stale:
                return stale
            self.phase = DoctorPhase.IDLE
            return self._fail(exc)
        finally:
            self._release(SLOT_EXTRACTION, generation)

        return self._stale(generation) or self._accept_extraction(result)

    def _accept_extraction(self, result: ExtractionResult) -> Ok:
        self.extraction = result
        self.extraction_display = extraction_to_display(result)
        rejected = self.features.load_extraction(result)
        self.phase = DoctorPhase.EXTRACTED
        self.alert = None
        if rejected:
            logger.info("Extracted features need attention: %s", ", ".join(rejected))
        return Ok(result)

    def load_manual_form(self, form: Mapping[str, Any]) -> Outcome:
        """Manual entry path: the form values become the canonical snapshot."""
        if self.phase not in _NEW_SESSION_PHASES:
            return self._fail(InvalidTransition("Finish the current step first."))
        try:
            self.features.load_form(form)
        except ValidationError as exc:
            return self._fail(exc)
        self.extraction = None
        self.extraction_display = None
        self.result = None
        self.phase = DoctorPhase.EXTRACTED
        return Ok(self.features.current())

    # ------------------------------------------------------------------
    # Editing
    # ------------------------------------------------------------------

    def begin_edit(self) -> Outcome:
        if self.phase != DoctorPhase.EXTRACTED:
            return self._fail(InvalidTransition("There are no extracted features to edit."))
        self.features.begin_edit()
        self.phase = DoctorPhase.EDITING
        return Ok(self.features.working_copy())

    def update_field(self, name: str, value: Any) -> Outcome:
        if self.phase != DoctorPhase.EDITING:
            return self._fail(InvalidTransition("Press Edit before changing values."))
        try:
            return Ok(self.features.update_field(name, value))
        except ValidationError as exc:
            return self._fail(exc)

    def commit_edit(self) -> Outcome:
        if self.phase != DoctorPhase.EDITING:
            return self._fail(InvalidTransition("Nothing to save."))
        snapshot = self.features.commit_edit()
        self.phase = DoctorPhase.EXTRACTED
        return Ok(snapshot)

    def cancel_edit(self) -> Outcome:
        if self.phase != DoctorPhase.EDITING:
            return self._fail(InvalidTransition("Nothing to cancel."))
        self.features.cancel_edit()
        self.phase = DoctorPhase.EXTRACTED
        return Ok(self.features.current())

    # ------------------------------------------------------------------
    # Analysis
    # ------------------------------------------------------------------

    async def analyze(self, patient_name: str) -> Outcome:
        """Submit the canonical snapshot and show the re-read history record."""
        if self.phase != DoctorPhase.EXTRACTED:
            return self._fail(InvalidTransition("Save or cancel your edits before analyzing."))
        if not (patient_name or "").strip():
            return self._fail(ValidationError(["patientName"], "Please enter the patient's name."))
        try:
            snapshot = build_snapshot(self.features.current())
        except ValidationError as exc:
            return self._fail(exc)

        busy = self._claim(SLOT_PREDICTION)
        if busy:
            return busy
        generation = self._generation
        self.phase = DoctorPhase.ANALYZING
        try:
            result = await submit_prediction(self.client, patient_name, snapshot)
        except CardioScribeError as exc:
            stale = self._stale(generation)
            if stale:
                return stale
            self.phase = DoctorPhase.EXTRACTED
            return self._fail(exc)
        finally:
            self._release(SLOT_PREDICTION, generation)

        stale = self._stale(generation)
        if stale:
            return stale
        self.result = result
        self.phase = DoctorPhase.COMPLETE
        self.alert = None
        return Ok(result)

    # ------------------------------------------------------------------
    # History search
    # ------------------------------------------------------------------

    async def search_history(self, patient_name: str) -> Outcome:
        busy = self._claim(SLOT_HISTORY)
        if busy:
            return busy
        generation = self._generation
        self.history_query = (patient_name or "").strip()
        self.history_phase = HistoryPhase.SEARCHING
        self.history = None
        self.history_message = ""
        self.history_error = None
        try:
            history = await fetch_history(self.client, patient_name)
        except NotFound as exc:
            stale = self._stale(generation)
            if stale:
                return stale
            self.history_phase = HistoryPhase.EMPTY
            self.history_message = exc.user_message
            return Err(exc)
        except ValidationError as exc:
            stale = self._stale(generation)
            if stale:
                return stale
            self.history_phase = HistoryPhase.IDLE
            return self._fail(exc)
        except CardioScribeError as exc:
            stale = self._stale(generation)
            if stale:
                return stale
            self.history_phase = HistoryPhase.ERROR
            self.history_message = exc.user_message
            self.history_error = exc
            return self._fail(exc)
        finally:
            self._release(SLOT_HISTORY, generation)

        stale = self._stale(generation)
        if stale:
            return stale
        self.history = history
        if history.is_empty:
            self.history_phase = HistoryPhase.EMPTY
            self.history_message = f'No predictions found for patient "{history.patient_name}"'
        else:
            self.history_phase = HistoryPhase.SHOWN
        return Ok(history)

    def can_retry_history(self) -> bool:
        """True after a retryable history failure; NotFound is never retried."""
        return (
            self.history_phase == HistoryPhase.ERROR
            and self.history_error is not None
            and self.history_error.retryable
        )

    async def retry_history(self) -> Outcome:
        if not self.can_retry_history():
            return Err(InvalidTransition("Nothing to retry."))
        if self.alert is not None and self.alert.kind == self.history_error.kind:
            self.alert = None
        return await self.search_history(self.history_query)

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    def close(self) -> None:
        """Screen went away: drop everything not yet persisted."""
        self._generation += 1
        self._busy.clear()
        self.recorder.discard()
        self._reset()

    def logout(self) -> SessionState:
        self.close()
        logger.info("Logged out; in-session data discarded.")
        return logged_out_state()


class PatientHistoryView:
    """The patient's own history screen."""

    def __init__(self, session: SessionState, client: Optional[ApiClient] = None) -> None:
        self.session = session
        self.client = client or ApiClient()
        self.phase = HistoryPhase.IDLE
        self.history: Optional[HistoryResult] = None
        self.stats = HistoryStats()
        self.message = ""
        self.alert: Optional[Alert] = None

    async def load(self) -> Outcome:
        if not self.session.logged_in:
            return Err(InvalidTransition("Please log in first."))
        self.phase = HistoryPhase.SEARCHING
        try:
            history = await fetch_history(self.client, self.session.identity or "")
        except NotFound:
            self.phase = HistoryPhase.EMPTY
            self.message = "No diagnosis data available."
            self.history, self.stats = None, HistoryStats()
            return Ok(None)
        except CardioScribeError as exc:
            self.phase = HistoryPhase.ERROR
            self.message = exc.user_message
            self.alert = Alert.from_error(exc)
            return Err(exc)

        self.history = history
        self.stats = summarize_history(history)
        self.phase = HistoryPhase.SHOWN if not history.is_empty else HistoryPhase.EMPTY
        self.message = "" if not history.is_empty else "No diagnosis data available."
        return Ok(history)
