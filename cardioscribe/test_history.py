"""
test_history.py
---------------
Tests for the History Presentation Model.

Run from the project root:
    python3 -m pytest cardioscribe/test_history.py

The API is replaced with ``httpx.MockTransport`` so the real request code
runs without any server.
"""

from __future__ import annotations

import asyncio
import datetime as dt
import logging

import httpx
import pytest

from cardioscribe.api_client import ApiClient
from cardioscribe.errors import FetchError, NotFound, Timeout, ValidationError
from cardioscribe.history import (
    build_history,
    fetch_history,
    medicine_lines,
    parse_record_date,
    summarize_history,
    symptom_lines,
)

logging.basicConfig(
    level=logging.WARNING,
    format="%(levelname)s [%(name)s] %(message)s",
)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

INPUT_DATA = {
    "Age": 54,
    "Sex": "M",
    "ChestPainType": "ASY",
    "RestingBP": 150,
    "Cholesterol": 195,
    "FastingBS": 0,
    "RestingECG": "Normal",
    "MaxHR": 122,
    "ExerciseAngina": "Y",
    "Oldpeak": 1.5,
    "ST_Slope": "Flat",
}

HISTORY_ROWS = [
    {"date": "2024-03-10", "riskLevel": "Low", "probability": 0.12, "inputData": INPUT_DATA},
    {"date": "2024-06-15T09:30:00Z", "riskLevel": "HIGH", "probability": 0.82, "inputData": INPUT_DATA},
    {"date": [2024, 4, 1, 12, 0], "riskLevel": "medium", "probability": 0.5, "inputData": {}},
    {"riskLevel": "High", "probability": 0.9},                        # no date
    {"date": "2024-05-01", "probability": 0.3},                      # no riskLevel
    {"date": "yesterday", "riskLevel": "Low", "probability": 0.1},   # unparseable
]


def _client(handler) -> ApiClient:
    return ApiClient(base_url="http://test", transport=httpx.MockTransport(handler))


def _serving(rows, status: int = 200):
    calls: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(status, json=rows)

    return handler, calls


# ---------------------------------------------------------------------------
# Medicine table
# ---------------------------------------------------------------------------

def test_medicine_table_is_case_insensitive_and_total():
    assert medicine_lines("High") == [
        "Aspirin (daily)",
        "Statins (for cholesterol)",
        "Beta-blockers (for heart rate)",
    ]
    assert medicine_lines("hIgH") == medicine_lines("high")
    assert medicine_lines(" Medium ") == ["Aspirin (as needed)", "Lifestyle changes recommended"]
    assert medicine_lines("Low") == ["No immediate medication", "Maintain healthy lifestyle"]
    assert medicine_lines("low") == medicine_lines("NEGATIVE")
    for other in ("unknown", "critical", "", None, 3):
        assert medicine_lines(other) == ["Consult a doctor for recommendations"]


# ---------------------------------------------------------------------------
# Dates and symptom lines
# ---------------------------------------------------------------------------

def test_parse_record_date_formats():
    assert parse_record_date("2024-06-15") == dt.date(2024, 6, 15)
    assert parse_record_date("2024-06-15T23:59:59.123456789+02:00") == dt.date(2024, 6, 15)
    assert parse_record_date([2024, 6, 15]) == dt.date(2024, 6, 15)
    for bad in ("15/06/2024", "", 1718409600, None, "2024-13-01"):
        with pytest.raises(ValueError):
            parse_record_date(bad)


def test_symptom_lines_omit_unavailable_values():
    lines = symptom_lines({"age": 54, "Sex": "X", "ChestPainType": "ASY", "MaxHR": "n/a"})
    assert lines == ["Age: 54", "Chest pain type: Asymptomatic"]
    assert symptom_lines(None) == []


# ---------------------------------------------------------------------------
# build_history
# ---------------------------------------------------------------------------

def test_build_history_sorts_descending_and_reports_skips():
    result = build_history("Jane", HISTORY_ROWS)

    dates = [d.date for d in result.diagnoses]
    assert dates == ["2024-06-15", "2024-04-01", "2024-03-10"]
    assert all(a >= b for a, b in zip(dates, dates[1:]))

    assert [s.index for s in result.skipped] == [3, 4, 5]
    assert result.skipped[0].reason == "missing date"
    assert result.skipped[1].reason == "missing riskLevel"

    top = result.diagnoses[0]
    assert top.prediction_line == "Heart disease risk: High (82%)"
    assert top.medicine_lines[0] == "Aspirin (daily)"
    assert "Sex: Male" in top.symptom_lines


def test_same_date_keeps_server_order():
    rows = [
        {"date": "2024-06-15", "riskLevel": "Low", "probability": 0.1},
        {"date": "2024-06-15T18:00:00", "riskLevel": "High", "probability": 0.9},
        {"date": "2024-07-01", "riskLevel": "Medium", "probability": 0.4},
    ]
    result = build_history("Jane", rows)
    assert [r.risk_level for r in result.records] == ["Medium", "Low", "High"]


def test_out_of_range_date_array_is_skipped():
    rows = [
        {"date": [10**20, 1, 1], "riskLevel": "High", "probability": 0.9},
        {"date": "2024-06-15", "riskLevel": "Low", "probability": 0.1},
    ]
    with pytest.raises(ValueError):
        parse_record_date(rows[0]["date"])

    result = build_history("Jane", rows)
    assert [r.risk_level for r in result.records] == ["Low"]
    assert [s.index for s in result.skipped] == [0]
    assert "out of range" in result.skipped[0].reason


def test_summarize_history():
    stats = summarize_history(build_history("Jane", HISTORY_ROWS))
    assert stats.total == 3
    assert stats.high_risk == 1
    assert stats.latest_date == "2024-06-15"
    assert stats.latest_risk_level == "HIGH"


# ---------------------------------------------------------------------------
# fetch_history (mocked transport)
# ---------------------------------------------------------------------------

def test_fetch_history_is_idempotent():
    handler, calls = _serving(HISTORY_ROWS)
    client = _client(handler)
    first = asyncio.run(fetch_history(client, "Jane Roe"))
    second = asyncio.run(fetch_history(client, "Jane Roe"))
    assert first == second
    assert len(calls) == 2
    assert calls[0].url.raw_path == b"/api/patient/Jane%20Roe/predictions"


def test_fetch_history_404_is_not_found():
    client = _client(lambda request: httpx.Response(404, json={"message": "not found"}))
    with pytest.raises(NotFound) as info:
        asyncio.run(fetch_history(client, "unknown"))
    assert info.value.user_message == 'No predictions found for patient "unknown"'
    assert not info.value.retryable


def test_fetch_history_empty_list_is_not_found():
    handler, _ = _serving([])
    with pytest.raises(NotFound):
        asyncio.run(fetch_history(_client(handler), "Jane"))


def test_fetch_history_server_error_is_retryable_fetch_error():
    client = _client(lambda request: httpx.Response(500, text="boom"))
    with pytest.raises(FetchError) as info:
        asyncio.run(fetch_history(client, "Jane"))
    assert info.value.retryable
    assert info.value.status_code == 500


def test_fetch_history_timeout():
    def handler(request):
        raise httpx.ReadTimeout("slow", request=request)

    with pytest.raises(Timeout) as info:
        asyncio.run(fetch_history(_client(handler), "Jane"))
    assert info.value.retryable


def test_fetch_history_connection_failure_is_fetch_error():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(FetchError):
        asyncio.run(fetch_history(_client(handler), "Jane"))


def test_fetch_history_rejects_blank_name_without_request():
    handler, calls = _serving(HISTORY_ROWS)
    with pytest.raises(ValidationError):
        asyncio.run(fetch_history(_client(handler), "   "))
    assert calls == []
