"""
test_features.py
----------------
Unit tests for the Feature Reconciliation Store.

Run from the project root:
    python3 -m pytest cardioscribe/test_features.py

No network: everything here is pure local validation and edit state.
"""

from __future__ import annotations

import copy

import pytest

from cardioscribe.errors import InvalidTransition, ValidationError
from cardioscribe.features import (
    FeatureStore,
    build_snapshot,
    canonical_field,
    parse_field,
    reconcile,
)
from cardioscribe.schemas import ExtractionResult, HeartFeatures


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

COMPLETE_SNAPSHOT = {
    "Age": 45,
    "Sex": "M",
    "ChestPainType": "ATA",
    "RestingBP": 140,
    "Cholesterol": 289,
    "FastingBS": 0,
    "RestingECG": "Normal",
    "MaxHR": 172,
    "ExerciseAngina": "N",
    "Oldpeak": 0.0,
    "ST_Slope": "Up",
}

# The way the extraction service actually spells things
MESSY_EXTRACTION = {
    "age": "45",
    "sex": "male",
    "chest_pain_type": "Atypical Angina",
    "restingBP": 140,
    "cholesterol": 289.0,
    "fasting_bs": False,
    "resting_ecg": "normal",
    "max_hr": "172",
    "exercise_angina": "no",
    "oldpeak": "1.5",
    "stSlope": "flat",
    "smoker": "yes",
}


# ---------------------------------------------------------------------------
# Field parsing
# ---------------------------------------------------------------------------

def test_canonical_field_accepts_common_spellings():
    assert canonical_field("Age") == "Age"
    assert canonical_field("chest_pain_type") == "ChestPainType"
    assert canonical_field("stSlope") == "ST_Slope"
    assert canonical_field("ST_Slope") == "ST_Slope"
    assert canonical_field("max_heart_rate") == "MaxHR"
    assert canonical_field("favourite_colour") is None


def test_numeric_field_rejects_non_numeric_input():
    with pytest.raises(ValidationError) as info:
        parse_field("RestingBP", "abc")
    assert info.value.fields == ["RestingBP"]

    for bad in ("12.5", "", None, True, float("nan")):
        with pytest.raises(ValidationError):
            parse_field("Age", bad)


def test_numeric_field_parses_clean_input():
    assert parse_field("Age", "50") == 50
    assert parse_field("Age", 50.0) == 50
    assert parse_field("Oldpeak", "-1.5") == -1.5
    assert isinstance(parse_field("Oldpeak", 2), float)


def test_numeric_field_enforces_range():
    with pytest.raises(ValidationError):
        parse_field("Age", 400)
    with pytest.raises(ValidationError):
        parse_field("MaxHR", -1)


def test_choice_fields_are_reconciled_case_insensitively():
    assert parse_field("Sex", "female") == "F"
    assert parse_field("ExerciseAngina", "Yes") == "Y"
    assert parse_field("ST_Slope", "DOWN") == "Down"
    assert parse_field("FastingBS", "1") == 1
    assert parse_field("FastingBS", True) == 1
    with pytest.raises(ValidationError):
        parse_field("ChestPainType", "sharp")


def test_reconcile_keeps_good_values_and_reports_bad_ones():
    raw = dict(MESSY_EXTRACTION, restingBP="high")
    values, rejected = reconcile(raw)
    assert rejected == ["RestingBP"]
    assert "RestingBP" not in values
    assert values["Age"] == 45
    assert values["ChestPainType"] == "ATA"
    assert values["ST_Slope"] == "Flat"
    assert "smoker" not in values


# ---------------------------------------------------------------------------
# Snapshot validation
# ---------------------------------------------------------------------------

def test_build_snapshot_from_complete_values():
    snapshot = build_snapshot(COMPLETE_SNAPSHOT)
    assert isinstance(snapshot, HeartFeatures)
    assert snapshot.model_dump(by_alias=True) == COMPLETE_SNAPSHOT


def test_build_snapshot_lists_every_offending_field():
    values = dict(COMPLETE_SNAPSHOT)
    del values["RestingBP"]
    values["MaxHR"] = "fast"
    with pytest.raises(ValidationError) as info:
        build_snapshot(values)
    assert info.value.fields == ["RestingBP", "MaxHR"]
    assert "RestingBP" in info.value.user_message


def test_valid_snapshots_never_raise():
    variants = [
        COMPLETE_SNAPSHOT,
        dict(COMPLETE_SNAPSHOT, Sex="F", ChestPainType="ASY", FastingBS=1, ST_Slope="Down"),
        dict(COMPLETE_SNAPSHOT, Age="70", RestingBP="120", Oldpeak="2.3"),
        dict(COMPLETE_SNAPSHOT, RestingECG="LVH", ExerciseAngina="Y", Oldpeak=-0.5),
    ]
    for values in variants:
        build_snapshot(values)


# ---------------------------------------------------------------------------
# Edit store
# ---------------------------------------------------------------------------

def test_commit_edit_replaces_canonical():
    store = FeatureStore()
    store.load_extraction(ExtractionResult(features_extracted={**COMPLETE_SNAPSHOT}))
    store.begin_edit()
    store.update_field("Age", 50)
    assert store.current()["Age"] == 45       # canonical untouched until commit
    store.commit_edit()
    assert store.current()["Age"] == 50
    assert not store.editing


def test_cancel_edit_restores_exact_snapshot():
    store = FeatureStore(COMPLETE_SNAPSHOT)
    before = copy.deepcopy(store.current())

    store.begin_edit()
    store.update_field("Age", 61)
    store.update_field("sex", "female")
    store.update_field("Oldpeak", "3.1")
    with pytest.raises(ValidationError):
        store.update_field("Cholesterol", "lots")
    store.cancel_edit()

    assert store.current() == before
    assert repr(store.current()) == repr(before)


def test_rejected_update_leaves_working_copy_unchanged():
    store = FeatureStore(COMPLETE_SNAPSHOT)
    store.begin_edit()
    with pytest.raises(ValidationError):
        store.update_field("RestingBP", "abc")
    assert store.working_copy()["RestingBP"] == 140


def test_update_without_begin_edit_is_rejected():
    store = FeatureStore(COMPLETE_SNAPSHOT)
    with pytest.raises(InvalidTransition):
        store.update_field("Age", 50)
    with pytest.raises(InvalidTransition):
        store.commit_edit()


def test_load_extraction_is_last_write_wins():
    store = FeatureStore()
    store.load_extraction(ExtractionResult(features_extracted=MESSY_EXTRACTION))
    store.load_extraction(ExtractionResult(features_extracted={"Age": 30}))
    assert store.current() == {"Age": 30}


def test_load_form_validates_all_inputs():
    store = FeatureStore()
    form = {k: str(v) for k, v in COMPLETE_SNAPSHOT.items()}
    store.load_form(form)
    assert store.snapshot().age == 45

    with pytest.raises(ValidationError) as info:
        store.load_form(dict(form, Age="forty", MaxHR=""))
    assert set(info.value.fields) == {"Age", "MaxHR"}
    assert store.current()["Age"] == 45
