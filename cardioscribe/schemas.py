"""
schemas.py
----------
Pydantic models that define the JSON contract between the CardioScribe
client and the clinical API, plus the view models handed to the front-end.

Wire models accept the camelCase / PascalCase keys the server sends
(``riskLevel``, ``RiskLevel``, ``inputData`` …) through aliases; Python code
always uses the snake_case attribute names.
"""

from __future__ import annotations

import datetime as dt
from enum import Enum
from typing import Any, Literal, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


# ---------------------------------------------------------------------------
# Shared enums
# ---------------------------------------------------------------------------


class Role(str, Enum):
    DOCTOR  = "doctor"
    PATIENT = "patient"


class RecordingState(str, Enum):
    IDLE      = "idle"
    RECORDING = "recording"
    UPLOADING = "uploading"


# ---------------------------------------------------------------------------
# Feature snapshot (input to the heart-disease predictor)
# ---------------------------------------------------------------------------


class HeartFeatures(BaseModel):
    """
    A complete, validated feature snapshot.

    Field aliases are the column names the prediction service was trained
    on; ``model_dump(by_alias=True)`` yields the exact request body shape.
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    age: int = Field(alias="Age", ge=0, le=120)
    sex: Literal["M", "F"] = Field(alias="Sex")
    chest_pain_type: Literal["ATA", "NAP", "ASY", "TA"] = Field(alias="ChestPainType")
    resting_bp: int = Field(alias="RestingBP", ge=0, le=300)
    cholesterol: int = Field(alias="Cholesterol", ge=0, le=700)
    fasting_bs: Literal[0, 1] = Field(alias="FastingBS")
    resting_ecg: Literal["Normal", "ST", "LVH"] = Field(alias="RestingECG")
    max_hr: int = Field(alias="MaxHR", ge=0, le=250)
    exercise_angina: Literal["Y", "N"] = Field(alias="ExerciseAngina")
    oldpeak: float = Field(alias="Oldpeak", ge=-10.0, le=10.0)
    st_slope: Literal["Up", "Flat", "Down"] = Field(alias="ST_Slope")


# ---------------------------------------------------------------------------
# Upload & extraction output
# ---------------------------------------------------------------------------


class ExtractionResult(BaseModel):
    """Normalised response of the audio / text analysis endpoints."""

    transcript: str = ""
    de_identified_transcript: str = ""
    summary: str = ""
    features_extracted: dict[str, Any] = Field(default_factory=dict)
    symptoms: list[str] = Field(default_factory=list)
    medicines: list[str] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Prediction service
# ---------------------------------------------------------------------------


class RiskAssessment(BaseModel):
    """One element of the synchronous ``/api/heart/predict`` response."""

    model_config = ConfigDict(populate_by_name=True)

    risk_level: str = Field(validation_alias=AliasChoices("RiskLevel", "riskLevel", "risk_level"))
    probability: Optional[float] = Field(
        default=None,
        validation_alias=AliasChoices("Probability", "probability"),
    )


class PredictionRecord(BaseModel):
    """One persisted row of a patient's prediction history."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    date: dt.date
    risk_level: str = Field(validation_alias=AliasChoices("riskLevel", "RiskLevel", "risk_level"))
    probability: Optional[float] = None
    input_data: dict[str, Any] = Field(
        default_factory=dict,
        validation_alias=AliasChoices("inputData", "input_data"),
    )


# ---------------------------------------------------------------------------
# View models (consumed by the front-end)
# ---------------------------------------------------------------------------


class DisplayDiagnosis(BaseModel):
    """Read-only card content; rebuilt from source data on every render."""

    model_config = ConfigDict(frozen=True)

    date: Optional[str] = None
    symptom_lines: list[str] = Field(default_factory=list)
    prediction_line: str = ""
    medicine_lines: list[str] = Field(default_factory=list)
    summary: str = ""


class SkippedRecord(BaseModel):
    """A history row that could not be displayed, and why."""

    index: int
    reason: str


class HistoryResult(BaseModel):
    patient_name: str
    records: list[PredictionRecord] = Field(default_factory=list)
    diagnoses: list[DisplayDiagnosis] = Field(default_factory=list)
    skipped: list[SkippedRecord] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.diagnoses


class RiskResult(BaseModel):
    """Authoritative outcome of a prediction, re-read from history."""

    patient_name: str
    record: PredictionRecord
    diagnosis: DisplayDiagnosis


class HistoryStats(BaseModel):
    total: int = 0
    high_risk: int = 0
    latest_date: Optional[str] = None
    latest_risk_level: Optional[str] = None
