"""
prediction.py
-------------
Prediction Workflow: submit a feature snapshot under a patient name, then
re-read the patient's history to obtain the record to display.

Public API
----------
    submit_prediction(client, patient_name, snapshot) -> RiskResult
    latest_record(history)                            -> (PredictionRecord, DisplayDiagnosis)

Why the second request?
-----------------------
The synchronous ``/api/heart/predict`` answer is only an acknowledgement.
The risk label, probability and date the user should see are the ones the
server persisted, so the immediate response is logged and dropped and the
newest history row is shown instead.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping, Union

from .api_client import ApiClient, error_message, json_body
from .config import PREDICT_ENDPOINT
from .errors import NoRecordFound, NotFound, ServerError, SubmissionError, ValidationError
from .features import build_snapshot
from .history import fetch_history
from .schemas import DisplayDiagnosis, HeartFeatures, HistoryResult, PredictionRecord, RiskAssessment, RiskResult

logger = logging.getLogger(__name__)


def latest_record(history: HistoryResult) -> tuple[PredictionRecord, DisplayDiagnosis]:
    """
    Most recent record by calendar date.

    ``history`` is already sorted descending with a stable sort, so the
    first element is the newest date and, among rows sharing that date, the
    one the server listed first.
    """
    if not history.records:
        raise NoRecordFound(history.patient_name)
    return history.records[0], history.diagnoses[0]


def _acknowledge(body: Any) -> list[RiskAssessment]:
    if not isinstance(body, list) or not body:
        raise SubmissionError("The prediction service returned no result.")
    assessments = []
    for item in body:
        try:
            assessments.append(RiskAssessment.model_validate(item))
        except ValueError as exc:
            logger.warning("Unreadable prediction item %r: %s", item, exc)
    if not assessments:
        raise SubmissionError("The prediction service returned no result.")
    return assessments


async def submit_prediction(
    client: ApiClient,
    patient_name: str,
    snapshot: Union[HeartFeatures, Mapping[str, Any]],
) -> RiskResult:
    """
    Validate, submit, and resolve the authoritative result.

    Parameters
    ----------
    client       : API client to use.
    patient_name : Name the prediction is stored under.
    snapshot     : A validated ``HeartFeatures`` or a raw mapping (manual
                   form / reconciled extraction) that is validated here.

    Raises
    ------
    ValidationError : blank name or missing/invalid fields, raised before
                      any request is made.
    SubmissionError : non-2xx or empty prediction response.
    NoRecordFound   : prediction accepted but the history has no rows.
    Timeout / NetworkError / FetchError : transport problems.
    """
    name = (patient_name or "").strip()
    if not name:
        raise ValidationError(["patientName"], "Please enter the patient's name.")
    features = snapshot if isinstance(snapshot, HeartFeatures) else build_snapshot(snapshot)

    payload = {
        "patientName": name,
        "patientData": [features.model_dump(by_alias=True)],
    }
    response = await client.post(PREDICT_ENDPOINT, json=payload)
    if not response.is_success:
        raise SubmissionError(
            error_message(response, "Failed to submit the prediction request."),
            status_code=response.status_code,
        )
    try:
        body = json_body(response)
    except ServerError as exc:
        raise SubmissionError(exc.user_message, status_code=response.status_code) from exc

    acknowledged = _acknowledge(body)
    logger.info(
        "Prediction accepted for %r (immediate: %s); re-reading history.",
        name,
        ", ".join(a.risk_level for a in acknowledged),
    )

    try:
        history = await fetch_history(client, name)
    except NotFound as exc:
        logger.error("Prediction for %r accepted but history is empty.", name)
        raise NoRecordFound(name) from exc

    record, diagnosis = latest_record(history)
    return RiskResult(patient_name=name, record=record, diagnosis=diagnosis)
