"""
test_extraction.py
------------------
Tests for the Upload & Extraction Client.

Run from the project root:
    python3 -m pytest cardioscribe/test_extraction.py
"""

from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from cardioscribe.api_client import ApiClient
from cardioscribe.errors import ArtifactUnavailable, ServerError, UploadError, ValidationError
from cardioscribe.extraction import (
    analyze_audio,
    analyze_text,
    extraction_to_display,
    normalize_extraction,
)
from cardioscribe.schemas import ExtractionResult


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

AUDIO_RESPONSE = {
    "transcript": "chest pain when climbing stairs",
    "de_identified_transcript": "chest pain when climbing stairs",
    "summary": "Exertional chest pain.",
    "features_extracted": {"Age": 45, "Sex": "M", "ChestPainType": "ATA"},
}

TEXT_RESPONSE = {
    "symptoms": ["Chest pain", "Shortness of breath"],
    "medicines": "Aspirin, Statins",
    "summary": "Possible angina.",
}


def _client(handler) -> ApiClient:
    return ApiClient(base_url="http://test", transport=httpx.MockTransport(handler))


@pytest.fixture
def recording(tmp_path):
    path = tmp_path / "rec1.m4a"
    path.write_bytes(b"\x00\x00fake-m4a")
    return path


# ---------------------------------------------------------------------------
# Normalisation
# ---------------------------------------------------------------------------

def test_normalize_camel_case_response():
    result = normalize_extraction({
        "transcript": "hello",
        "deIdentifiedTranscript": "hello [NAME]",
        "featuresExtracted": {"age": 50},
        "medications": ["Aspirin"],
    })
    assert result.de_identified_transcript == "hello [NAME]"
    assert result.features_extracted == {"age": 50}
    assert result.medicines == ["Aspirin"]


def test_normalize_rejects_non_object_body():
    with pytest.raises(ServerError):
        normalize_extraction(["not", "an", "object"])


def test_display_fills_missing_blocks_with_na():
    display = extraction_to_display(ExtractionResult())
    assert display.symptom_lines == ["N/A"]
    assert display.medicine_lines == ["N/A"]
    assert display.summary == "N/A"

    display = extraction_to_display(normalize_extraction(AUDIO_RESPONSE))
    assert "Age: 45" in display.symptom_lines
    assert "Chest pain type: Atypical angina" in display.symptom_lines


# ---------------------------------------------------------------------------
# analyze_audio
# ---------------------------------------------------------------------------

def test_analyze_audio_sends_multipart_audio_file(recording):
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=AUDIO_RESPONSE)

    result = asyncio.run(analyze_audio(_client(handler), recording.as_uri()))

    assert len(seen) == 1
    request = seen[0]
    assert request.url.path == "/api/audio/analyze"
    assert request.headers["content-type"].startswith("multipart/form-data")
    body = request.content
    assert b'name="audioFile"' in body
    assert b'filename="rec1.m4a"' in body
    assert b"audio/m4a" in body

    assert result.transcript == "chest pain when climbing stairs"
    assert result.features_extracted["Age"] == 45


def test_analyze_audio_alternate_endpoint(recording):
    paths = []

    def handler(request):
        paths.append(request.url.path)
        return httpx.Response(200, json=TEXT_RESPONSE)

    asyncio.run(analyze_audio(_client(handler), recording.as_uri(), endpoint="/api/audio/predict"))
    assert paths == ["/api/audio/predict"]


def test_analyze_audio_missing_file(tmp_path):
    def handler(request):
        raise AssertionError("no request expected")

    with pytest.raises(ArtifactUnavailable):
        asyncio.run(analyze_audio(_client(handler), (tmp_path / "gone.m4a").as_uri()))


def test_analyze_audio_network_failure_is_upload_error(recording):
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(UploadError):
        asyncio.run(analyze_audio(_client(handler), recording.as_uri()))


def test_analyze_audio_timeout_is_upload_error(recording):
    def handler(request):
        raise httpx.WriteTimeout("slow", request=request)

    with pytest.raises(UploadError):
        asyncio.run(analyze_audio(_client(handler), recording.as_uri()))


def test_analyze_audio_server_error(recording):
    client = _client(lambda request: httpx.Response(502, text="Bad gateway"))
    with pytest.raises(ServerError) as info:
        asyncio.run(analyze_audio(client, recording.as_uri()))
    assert info.value.status_code == 502
    assert info.value.user_message == "Bad gateway"


def test_analyze_audio_malformed_body(recording):
    client = _client(lambda request: httpx.Response(200, text="<html>oops</html>"))
    with pytest.raises(ServerError):
        asyncio.run(analyze_audio(client, recording.as_uri()))


# ---------------------------------------------------------------------------
# analyze_text
# ---------------------------------------------------------------------------

def test_analyze_text_posts_json():
    seen = []

    def handler(request):
        seen.append(json.loads(request.content))
        return httpx.Response(200, json=TEXT_RESPONSE)

    result = asyncio.run(analyze_text(_client(handler), "  chest pain  "))
    assert seen == [{"text": "chest pain"}]
    assert result.symptoms == ["Chest pain", "Shortness of breath"]
    assert result.medicines == ["Aspirin", "Statins"]


def test_analyze_text_rejects_empty_input():
    def handler(request):
        raise AssertionError("no request expected")

    with pytest.raises(ValidationError):
        asyncio.run(analyze_text(_client(handler), "   "))
