"""
errors.py
---------
Error taxonomy and tagged results shared by every workflow module.

Low-level modules (recorder, api_client, extraction, prediction, history)
*raise* one of the exceptions below.  The screen-level state machine in
``workflow.py`` catches them and hands the UI an ``Ok`` / ``Err`` value, so
nothing network-originated ever reaches a global handler.

Each exception carries:
    kind          stable identifier (used by tests and the UI)
    title         alert heading
    user_message  human-readable text for the alert body
    retryable     whether the UI should offer a retry action
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Generic, TypeVar


class CardioScribeError(Exception):
    """Base class for every error surfaced to the user."""

    kind: str = "error"
    title: str = "Error"
    retryable: bool = False

    def __init__(self, user_message: str = "Something went wrong!") -> None:
        super().__init__(user_message)
        self.user_message = user_message


# ---------------------------------------------------------------------------
# Recording
# ---------------------------------------------------------------------------


class PermissionDenied(CardioScribeError):
    kind = "permission_denied"
    title = "Permission required"

    def __init__(
        self,
        user_message: str = "Microphone permission is required to record audio.",
    ) -> None:
        super().__init__(user_message)


class ArtifactUnavailable(CardioScribeError):
    kind = "artifact_unavailable"

    def __init__(self, user_message: str = "Recording URI not found.") -> None:
        super().__init__(user_message)


# ---------------------------------------------------------------------------
# Network
# ---------------------------------------------------------------------------


class NetworkError(CardioScribeError):
    kind = "network_error"
    title = "Network Error"

    def __init__(
        self,
        user_message: str = "Network error. Please try again later.",
    ) -> None:
        super().__init__(user_message)


class Timeout(CardioScribeError):
    kind = "timeout"
    title = "Timeout"
    retryable = True

    def __init__(
        self,
        user_message: str = "The server took too long to respond.",
    ) -> None:
        super().__init__(user_message)


class UploadError(CardioScribeError):
    kind = "upload_error"
    title = "Upload Error"


class ServerError(CardioScribeError):
    """Non-2xx status or a body that is not the expected JSON shape."""

    kind = "server_error"

    def __init__(
        self,
        user_message: str = "Failed to get diagnosis from server.",
        status_code: int | None = None,
    ) -> None:
        super().__init__(user_message)
        self.status_code = status_code


# ---------------------------------------------------------------------------
# Prediction & history
# ---------------------------------------------------------------------------


class ValidationError(CardioScribeError):
    """Local, pre-network rejection of one or more input fields."""

    kind = "validation_error"
    title = "Invalid input"

    def __init__(self, fields: list[str], user_message: str | None = None) -> None:
        self.fields = list(fields)
        if user_message is None:
            user_message = "Missing or invalid value for: " + ", ".join(self.fields)
        super().__init__(user_message)


class SubmissionError(CardioScribeError):
    kind = "submission_error"
    title = "Prediction failed"

    def __init__(
        self,
        user_message: str = "Failed to submit the prediction request.",
        status_code: int | None = None,
    ) -> None:
        super().__init__(user_message)
        self.status_code = status_code


class NoRecordFound(CardioScribeError):
    kind = "no_record_found"
    title = "No record found"

    def __init__(self, patient_name: str) -> None:
        super().__init__(
            f'Prediction was accepted but no record was found for patient "{patient_name}".'
        )
        self.patient_name = patient_name


class NotFound(CardioScribeError):
    """Benign empty state: the patient has no stored predictions."""

    kind = "not_found"
    title = "No predictions"

    def __init__(self, patient_name: str) -> None:
        super().__init__(f'No predictions found for patient "{patient_name}"')
        self.patient_name = patient_name


class FetchError(CardioScribeError):
    kind = "fetch_error"
    title = "Failed to load"
    retryable = True

    def __init__(
        self,
        user_message: str = "Failed to load patient diagnosis.",
        status_code: int | None = None,
    ) -> None:
        super().__init__(user_message)
        self.status_code = status_code


# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------


class AuthError(CardioScribeError):
    kind = "auth_error"
    title = "Login failed"


# ---------------------------------------------------------------------------
# Workflow
# ---------------------------------------------------------------------------


class SlotBusy(CardioScribeError):
    kind = "slot_busy"
    title = "Please wait"

    def __init__(self, slot: str) -> None:
        super().__init__(f"A {slot} request is already in progress.")
        self.slot = slot


class InvalidTransition(CardioScribeError):
    kind = "invalid_transition"
    title = "Not available"


# ---------------------------------------------------------------------------
# Tagged results
# ---------------------------------------------------------------------------

T = TypeVar("T")


@dataclass(frozen=True)
class Ok(Generic[T]):
    data: T
    ok = True


@dataclass(frozen=True)
class Err:
    error: CardioScribeError
    ok = False

    @property
    def kind(self) -> str:
        return self.error.kind


Outcome = Ok[Any] | Err
