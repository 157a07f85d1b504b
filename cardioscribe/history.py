"""
history.py
----------
History Presentation Model: fetches a patient's persisted prediction history
and turns each row into a :class:`~cardioscribe.schemas.DisplayDiagnosis`.

Public API
----------
    fetch_history(client, patient_name) -> HistoryResult
    build_history(patient_name, rows)   -> HistoryResult
    record_to_display(record)           -> DisplayDiagnosis
    medicine_lines(risk_level)          -> list[str]
    summarize_history(result)           -> HistoryStats

Rows missing ``date`` or ``riskLevel``, or whose date cannot be parsed, are
left out of the display list and reported in ``HistoryResult.skipped``;
a row is never given a made-up date.
"""

from __future__ import annotations

import datetime as dt
import logging
import re
from typing import Any, Iterable, Mapping, Optional
from urllib.parse import quote

from .api_client import ApiClient, error_message, json_body
from .config import HISTORY_ENDPOINT_TEMPLATE
from .errors import FetchError, NetworkError, NotFound, ServerError, ValidationError
from .features import FIELD_SPECS, canonical_field, parse_field
from .schemas import DisplayDiagnosis, HistoryResult, HistoryStats, PredictionRecord, SkippedRecord

logger = logging.getLogger(__name__)

NOT_AVAILABLE = "N/A"
DATE_FORMAT = "%Y-%m-%d"


# ---------------------------------------------------------------------------
# Risk level → medicine recommendations
# ---------------------------------------------------------------------------

_MEDICINES_BY_RISK: dict[str, list[str]] = {
    "high": ["Aspirin (daily)", "Statins (for cholesterol)", "Beta-blockers (for heart rate)"],
    "medium": ["Aspirin (as needed)", "Lifestyle changes recommended"],
    "low": ["No immediate medication", "Maintain healthy lifestyle"],
    "negative": ["No immediate medication", "Maintain healthy lifestyle"],
}
_DEFAULT_MEDICINES: list[str] = ["Consult a doctor for recommendations"]

HIGH_RISK_LEVELS = {"high", "critical"}


def medicine_lines(risk_level: Any) -> list[str]:
    """Total, case-insensitive lookup; anything unrecognised gets the default."""
    key = str(risk_level).strip().lower() if risk_level is not None else ""
    return list(_MEDICINES_BY_RISK.get(key, _DEFAULT_MEDICINES))


def prediction_line(risk_level: str, probability: Optional[float]) -> str:
    label = risk_level.strip().capitalize() or "Unknown"
    if probability is None:
        return f"Heart disease risk: {label}"
    return f"Heart disease risk: {label} ({probability:.0%})"


# ---------------------------------------------------------------------------
# Input data → symptom lines
# ---------------------------------------------------------------------------

_VALUE_LABELS: dict[str, dict[Any, str]] = {
    "Sex": {"M": "Male", "F": "Female"},
    "ChestPainType": {
        "ATA": "Atypical angina",
        "NAP": "Non-anginal pain",
        "ASY": "Asymptomatic",
        "TA": "Typical angina",
    },
    "FastingBS": {0: "No", 1: "Yes"},
    "RestingECG": {
        "Normal": "Normal",
        "ST": "ST-T wave abnormality",
        "LVH": "Left ventricular hypertrophy",
    },
    "ExerciseAngina": {"Y": "Yes", "N": "No"},
    "ST_Slope": {"Up": "Upsloping", "Flat": "Flat", "Down": "Downsloping"},
}

_UNITS: dict[str, str] = {
    "RestingBP": " mm Hg",
    "Cholesterol": " mg/dl",
    "MaxHR": " bpm",
}


def _display_value(name: str, raw: Any) -> str:
    try:
        value = parse_field(name, raw)
    except ValidationError:
        return NOT_AVAILABLE
    if name in _VALUE_LABELS:
        return _VALUE_LABELS[name].get(value, NOT_AVAILABLE)
    return f"{value}{_UNITS.get(name, '')}"


def symptom_lines(input_data: Optional[Mapping[str, Any]]) -> list[str]:
    """Human-readable lines in field order; values resolving to N/A are omitted."""
    if not input_data:
        return []
    by_name = {canonical_field(key): value for key, value in input_data.items()}
    lines = []
    for name, spec in FIELD_SPECS.items():
        text = _display_value(name, by_name.get(name))
        if text != NOT_AVAILABLE:
            lines.append(f"{spec.label}: {text}")
    return lines


# ---------------------------------------------------------------------------
# Dates
# ---------------------------------------------------------------------------

_ISO_DATE_RE = re.compile(r"^(\d{4})-(\d{2})-(\d{2})(?:[T ].*)?$")


def parse_record_date(value: Any) -> dt.date:
    """
    Accept ISO dates, ISO datetimes (any precision or offset) and the
    ``[year, month, day, ...]`` arrays some JSON serialisers emit.

    Raises ValueError for anything else.
    """
    if isinstance(value, dt.datetime):
        return value.date()
    if isinstance(value, dt.date):
        return value
    if isinstance(value, str):
        match = _ISO_DATE_RE.match(value.strip())
        if not match:
            raise ValueError(f"unrecognised date {value!r}")
        year, month, day = (int(part) for part in match.groups())
        return dt.date(year, month, day)
    if isinstance(value, (list, tuple)) and len(value) >= 3 and all(
        isinstance(part, int) and not isinstance(part, bool) for part in value[:3]
    ):
        try:
            return dt.date(*value[:3])
        except OverflowError as exc:
            raise ValueError(f"date out of range {value!r}") from exc
    raise ValueError(f"unrecognised date {value!r}")


# ---------------------------------------------------------------------------
# Records → display
# ---------------------------------------------------------------------------


def _parse_row(row: Any) -> PredictionRecord:
    """Validate one raw history row; raises ValueError with the skip reason."""
    if not isinstance(row, Mapping):
        raise ValueError("row is not an object")
    raw_date = row.get("date")
    risk_level = row.get("riskLevel", row.get("RiskLevel"))
    if raw_date in (None, ""):
        raise ValueError("missing date")
    if risk_level in (None, "") or not isinstance(risk_level, str):
        raise ValueError("missing riskLevel")

    date = parse_record_date(raw_date)

    probability = row.get("probability", row.get("Probability"))
    if isinstance(probability, bool) or not isinstance(probability, (int, float)):
        probability = None
    elif not 0.0 <= probability <= 1.0:
        logger.warning("Ignoring out-of-range probability %r", probability)
        probability = None

    input_data = row.get("inputData", row.get("input_data"))
    if not isinstance(input_data, Mapping):
        input_data = {}

    return PredictionRecord(
        date=date,
        risk_level=risk_level.strip(),
        probability=probability,
        input_data=dict(input_data),
    )


def record_to_display(record: PredictionRecord) -> DisplayDiagnosis:
    return DisplayDiagnosis(
        date=record.date.strftime(DATE_FORMAT),
        symptom_lines=symptom_lines(record.input_data),
        prediction_line=prediction_line(record.risk_level, record.probability),
        medicine_lines=medicine_lines(record.risk_level),
    )


def build_history(patient_name: str, rows: Iterable[Any]) -> HistoryResult:
    """
    Pure transformation of raw rows into a sorted HistoryResult.

    Sorting is descending by date and stable, so rows sharing a date keep
    the order the server returned them in.
    """
    parsed: list[PredictionRecord] = []
    skipped: list[SkippedRecord] = []
    for index, row in enumerate(rows):
        try:
            parsed.append(_parse_row(row))
        except ValueError as exc:
            skipped.append(SkippedRecord(index=index, reason=str(exc)))

    if skipped:
        logger.warning(
            "Skipped %d malformed history record(s) for %r: %s",
            len(skipped), patient_name,
            "; ".join(f"#{s.index} {s.reason}" for s in skipped),
        )

    records = sorted(parsed, key=lambda r: r.date, reverse=True)
    return HistoryResult(
        patient_name=patient_name,
        records=records,
        diagnoses=[record_to_display(r) for r in records],
        skipped=skipped,
    )


# ---------------------------------------------------------------------------
# Public async entry point
# ---------------------------------------------------------------------------


async def fetch_history(client: ApiClient, patient_name: str) -> HistoryResult:
    """
    Load and normalise the stored predictions for ``patient_name``.

    Raises
    ------
    ValidationError : blank patient name (no request is made).
    NotFound        : HTTP 404 or an empty list; a benign empty state.
    Timeout         : the server did not answer in time (retryable).
    FetchError      : any other failure (retryable).
    """
    name = (patient_name or "").strip()
    if not name:
        raise ValidationError(["patientName"], "Please enter a Patient ID or name")

    path = HISTORY_ENDPOINT_TEMPLATE.format(name=quote(name, safe=""))
    try:
        response = await client.get(path)
    except NetworkError as exc:
        raise FetchError(exc.user_message) from exc

    if response.status_code == 404:
        logger.info("No predictions stored for %r", name)
        raise NotFound(name)
    if not response.is_success:
        raise FetchError(
            error_message(response, "Failed to load patient diagnosis."),
            status_code=response.status_code,
        )

    try:
        body = json_body(response)
    except ServerError as exc:
        raise FetchError(exc.user_message, status_code=response.status_code) from exc

    if isinstance(body, Mapping) and isinstance(body.get("predictions"), list):
        body = body["predictions"]
    if not isinstance(body, list):
        raise FetchError("Unexpected history format from server.", status_code=response.status_code)
    if not body:
        raise NotFound(name)

    result = build_history(name, body)
    logger.info("Loaded %d prediction(s) for %r", len(result.records), name)
    return result


# ---------------------------------------------------------------------------
# Dashboard figures
# ---------------------------------------------------------------------------


def summarize_history(result: HistoryResult) -> HistoryStats:
    """Totals shown on the dashboard stat cards."""
    if not result.records:
        return HistoryStats()
    latest = result.records[0]
    return HistoryStats(
        total=len(result.records),
        high_risk=sum(1 for r in result.records if r.risk_level.lower() in HIGH_RISK_LEVELS),
        latest_date=latest.date.strftime(DATE_FORMAT),
        latest_risk_level=latest.risk_level,
    )
