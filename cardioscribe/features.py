"""
features.py
-----------
Feature Reconciliation Store: turns whatever the extraction service (or a
manual form) produced into a typed heart-disease feature snapshot, and holds
that snapshot as editable state.

Public API
----------
    canonical_field(name)            -> wire name or None
    parse_field(name, value)         -> typed value (raises ValidationError)
    reconcile(raw_mapping)           -> (typed values, rejected field names)
    build_snapshot(values)           -> HeartFeatures (raises ValidationError)
    FeatureStore                     begin_edit / update_field / commit_edit / cancel_edit

Edit semantics
--------------
The canonical snapshot is only ever replaced in a single assignment on
``commit_edit()``.  ``update_field()`` touches the working copy alone, so
``cancel_edit()`` always restores exactly what was there before.
"""

from __future__ import annotations

import copy
import logging
import math
import re
from dataclasses import dataclass
from typing import Any, Mapping, Optional

from pydantic import ValidationError as PydanticValidationError

from .errors import InvalidTransition, ValidationError
from .schemas import ExtractionResult, HeartFeatures

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Field definitions
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FieldSpec:
    name: str                        # wire name, e.g. "RestingBP"
    kind: str                        # "int" | "float" | "choice"
    label: str
    choices: tuple = ()
    minimum: Optional[float] = None
    maximum: Optional[float] = None


FIELD_SPECS: dict[str, FieldSpec] = {
    spec.name: spec
    for spec in (
        FieldSpec("Age", "int", "Age", minimum=0, maximum=120),
        FieldSpec("Sex", "choice", "Sex", choices=("M", "F")),
        FieldSpec("ChestPainType", "choice", "Chest pain type", choices=("ATA", "NAP", "ASY", "TA")),
        FieldSpec("RestingBP", "int", "Resting blood pressure", minimum=0, maximum=300),
        FieldSpec("Cholesterol", "int", "Cholesterol", minimum=0, maximum=700),
        FieldSpec("FastingBS", "choice", "Fasting blood sugar > 120 mg/dl", choices=(0, 1)),
        FieldSpec("RestingECG", "choice", "Resting ECG", choices=("Normal", "ST", "LVH")),
        FieldSpec("MaxHR", "int", "Maximum heart rate", minimum=0, maximum=250),
        FieldSpec("ExerciseAngina", "choice", "Exercise-induced angina", choices=("Y", "N")),
        FieldSpec("Oldpeak", "float", "Oldpeak (ST depression)", minimum=-10.0, maximum=10.0),
        FieldSpec("ST_Slope", "choice", "ST slope", choices=("Up", "Flat", "Down")),
    )
}

REQUIRED_FIELDS: tuple[str, ...] = tuple(FIELD_SPECS)

# Spelling variants the extraction service is known to emit, keyed by the
# lower-cased alphanumeric form of the incoming key.
_KEY_ALIASES: dict[str, str] = {
    "age": "Age",
    "sex": "Sex",
    "gender": "Sex",
    "chestpaintype": "ChestPainType",
    "chestpain": "ChestPainType",
    "restingbp": "RestingBP",
    "restingbloodpressure": "RestingBP",
    "cholesterol": "Cholesterol",
    "fastingbs": "FastingBS",
    "fastingbloodsugar": "FastingBS",
    "restingecg": "RestingECG",
    "maxhr": "MaxHR",
    "maxheartrate": "MaxHR",
    "exerciseangina": "ExerciseAngina",
    "oldpeak": "Oldpeak",
    "stslope": "ST_Slope",
}

_CHOICE_SYNONYMS: dict[str, dict[str, Any]] = {
    "Sex": {"m": "M", "male": "M", "f": "F", "female": "F"},
    "ChestPainType": {
        "ata": "ATA", "atypicalangina": "ATA",
        "nap": "NAP", "nonanginalpain": "NAP",
        "asy": "ASY", "asymptomatic": "ASY",
        "ta": "TA", "typicalangina": "TA",
    },
    "FastingBS": {"0": 0, "1": 1, "no": 0, "yes": 1, "false": 0, "true": 1},
    "RestingECG": {"normal": "Normal", "st": "ST", "lvh": "LVH"},
    "ExerciseAngina": {"y": "Y", "yes": "Y", "true": "Y", "n": "N", "no": "N", "false": "N"},
    "ST_Slope": {
        "up": "Up", "upsloping": "Up",
        "flat": "Flat",
        "down": "Down", "downsloping": "Down",
    },
}

_INT_RE = re.compile(r"^[+-]?\d+$")
_FLOAT_RE = re.compile(r"^[+-]?(\d+(\.\d*)?|\.\d+)$")


def _squash(text: str) -> str:
    return re.sub(r"[^a-z0-9]", "", text.lower())


def canonical_field(name: str) -> Optional[str]:
    """Map any known spelling of a field name to its wire name."""
    if name in FIELD_SPECS:
        return name
    return _KEY_ALIASES.get(_squash(str(name)))


# ---------------------------------------------------------------------------
# Value parsing
# ---------------------------------------------------------------------------


def _parse_number(spec: FieldSpec, value: Any) -> float | int:
    if isinstance(value, bool):
        raise ValueError("boolean is not a number")
    if isinstance(value, str):
        text = value.strip()
        if spec.kind == "int":
            if not _INT_RE.match(text):
                raise ValueError(f"{value!r} is not a whole number")
            number: float | int = int(text)
        else:
            if not _FLOAT_RE.match(text):
                raise ValueError(f"{value!r} is not a number")
            number = float(text)
    elif isinstance(value, (int, float)):
        number = value
    else:
        raise ValueError(f"{type(value).__name__} is not a number")

    if isinstance(number, float) and not math.isfinite(number):
        raise ValueError("number must be finite")
    if spec.kind == "int":
        if isinstance(number, float):
            if not number.is_integer():
                raise ValueError(f"{number} is not a whole number")
            number = int(number)
    else:
        number = float(number)

    if spec.minimum is not None and number < spec.minimum:
        raise ValueError(f"{number} is below {spec.minimum}")
    if spec.maximum is not None and number > spec.maximum:
        raise ValueError(f"{number} is above {spec.maximum}")
    return number


def _parse_choice(spec: FieldSpec, value: Any) -> Any:
    if not isinstance(value, bool) and value in spec.choices:
        return spec.choices[spec.choices.index(value)]
    if isinstance(value, bool) and spec.name == "FastingBS":
        return int(value)
    synonyms = _CHOICE_SYNONYMS.get(spec.name, {})
    key = _squash(str(value))
    if key in synonyms:
        return synonyms[key]
    raise ValueError(f"{value!r} is not one of {', '.join(map(str, spec.choices))}")


def parse_field(name: str, value: Any) -> Any:
    """
    Validate a single input value and return it in its declared type.

    Raises `ValidationError` naming the field when the field is unknown,
    empty, or the value does not match the declared type.  Non-numeric
    input for a numeric field is rejected rather than coerced.
    """
    wire_name = canonical_field(name)
    if wire_name is None:
        raise ValidationError([str(name)], f"Unknown field: {name}")
    spec = FIELD_SPECS[wire_name]

    if value is None or (isinstance(value, str) and not value.strip()):
        raise ValidationError([wire_name], f"{spec.label} is required.")

    try:
        if spec.kind == "choice":
            return _parse_choice(spec, value)
        return _parse_number(spec, value)
    except ValueError as exc:
        logger.warning("Rejected value for %s: %s", wire_name, exc)
        raise ValidationError([wire_name], f"Invalid value for {spec.label}: {exc}") from exc


def reconcile(raw: Mapping[str, Any]) -> tuple[dict[str, Any], list[str]]:
    """
    Convert a loosely-keyed mapping into typed wire-named values.

    Unknown keys are ignored; fields whose value cannot be parsed are left
    out of the result and reported in the second element, so an extraction
    with one bad value still pre-fills everything else.
    """
    values: dict[str, Any] = {}
    rejected: list[str] = []
    for key, value in raw.items():
        wire_name = canonical_field(key)
        if wire_name is None:
            logger.debug("Ignoring unknown extracted field %r", key)
            continue
        if value is None or value == "":
            continue
        try:
            values[wire_name] = parse_field(wire_name, value)
        except ValidationError:
            rejected.append(wire_name)
    return values, rejected


def missing_fields(values: Mapping[str, Any]) -> list[str]:
    return [name for name in REQUIRED_FIELDS if values.get(name) is None]


def build_snapshot(values: Mapping[str, Any]) -> HeartFeatures:
    """
    Build a complete snapshot ready for submission.

    Every missing or invalid field is collected first so the resulting
    `ValidationError` lists all of them in declaration order.
    """
    typed: dict[str, Any] = {}
    offending: list[str] = []
    provided = {canonical_field(k) or k: v for k, v in values.items()}
    for name in REQUIRED_FIELDS:
        try:
            typed[name] = parse_field(name, provided.get(name))
        except ValidationError:
            offending.append(name)
    if offending:
        raise ValidationError(offending)

    try:
        return HeartFeatures.model_validate(typed)
    except PydanticValidationError as exc:
        fields = sorted({str(err["loc"][0]) for err in exc.errors() if err.get("loc")})
        raise ValidationError(fields or list(REQUIRED_FIELDS)) from exc


# ---------------------------------------------------------------------------
# Editable store
# ---------------------------------------------------------------------------


class FeatureStore:
    """
    Holds the canonical feature snapshot and an optional working copy.

    Usage
    -----
    store = FeatureStore()
    store.load_extraction(result)
    store.begin_edit()
    store.update_field("Age", 50)
    store.commit_edit()          # or store.cancel_edit()
    """

    def __init__(self, values: Optional[Mapping[str, Any]] = None) -> None:
        self._canonical: dict[str, Any] = dict(values or {})
        self._working: Optional[dict[str, Any]] = None
        self.rejected: list[str] = []

    @property
    def editing(self) -> bool:
        return self._working is not None

    def current(self) -> dict[str, Any]:
        """Deep copy of the canonical snapshot."""
        return copy.deepcopy(self._canonical)

    def working_copy(self) -> dict[str, Any]:
        if self._working is None:
            raise InvalidTransition("Not in edit mode.")
        return copy.deepcopy(self._working)

    def load_extraction(self, result: ExtractionResult) -> list[str]:
        """Replace the snapshot with features from an extraction (last write wins)."""
        values, rejected = reconcile(result.features_extracted)
        if rejected:
            logger.warning("Extraction contained unusable values for: %s", ", ".join(rejected))
        self._canonical = values
        self._working = None
        self.rejected = rejected
        return rejected

    def load_form(self, form: Mapping[str, Any]) -> None:
        """Replace the snapshot with manually entered values (all validated)."""
        typed: dict[str, Any] = {}
        offending: list[str] = []
        for key, value in form.items():
            try:
                wire_name = canonical_field(key) or key
                typed[wire_name] = parse_field(key, value)
            except ValidationError as exc:
                offending.extend(exc.fields)
        if offending:
            raise ValidationError(offending)
        self._canonical = typed
        self._working = None
        self.rejected = []

    def clear(self) -> None:
        self._canonical = {}
        self._working = None
        self.rejected = []

    def begin_edit(self) -> None:
        self._working = copy.deepcopy(self._canonical)

    def update_field(self, name: str, value: Any) -> Any:
        """Validate ``value`` and store it in the working copy only."""
        if self._working is None:
            raise InvalidTransition("Call begin_edit() before updating fields.")
        typed = parse_field(name, value)
        self._working[canonical_field(name)] = typed
        return typed

    def commit_edit(self) -> dict[str, Any]:
        if self._working is None:
            raise InvalidTransition("Nothing to commit: not in edit mode.")
        self._canonical, self._working = self._working, None
        self.rejected = [name for name in self.rejected if name not in self._canonical]
        return self.current()

    def cancel_edit(self) -> None:
        self._working = None

    def snapshot(self) -> HeartFeatures:
        """Validated snapshot of the canonical values (raises ValidationError)."""
        return build_snapshot(self._canonical)
