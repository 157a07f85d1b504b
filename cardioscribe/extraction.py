"""
extraction.py
-------------
Upload & Extraction Client: sends a recorded audio artifact (or typed text)
to the analysis service and normalises whatever comes back into an
:class:`~cardioscribe.schemas.ExtractionResult`.

Public API
----------
    analyze_audio(client, artifact_ref) -> ExtractionResult
    analyze_text(client, text)          -> ExtractionResult
    normalize_extraction(body)          -> ExtractionResult
    extraction_to_display(result)       -> DisplayDiagnosis

The service has grown several response shapes over time (camelCase and
snake_case keys, ``symptoms``/``medicines`` lists instead of structured
features, comma-separated strings instead of lists).  All of them are folded
into one model here so nothing downstream has to care.

No retries: a failed upload is reported and the user re-triggers it.
"""

from __future__ import annotations

import logging
import mimetypes
from pathlib import Path
from typing import Any, Mapping
from urllib.parse import unquote, urlparse
from urllib.request import url2pathname

from .api_client import ApiClient, error_message, json_body
from .config import AUDIO_ENDPOINT, TEXT_ENDPOINT
from .errors import ArtifactUnavailable, NetworkError, ServerError, Timeout, UploadError, ValidationError
from .history import symptom_lines
from .schemas import DisplayDiagnosis, ExtractionResult

logger = logging.getLogger(__name__)

NOT_AVAILABLE = "N/A"

# Audio container types the recorder or the device may hand us.
_AUDIO_MIME_TYPES: dict[str, str] = {
    ".m4a": "audio/m4a",
    ".wav": "audio/wav",
    ".mp3": "audio/mpeg",
    ".aac": "audio/aac",
    ".webm": "audio/webm",
}


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _artifact_path(artifact_ref: str) -> Path:
    """Resolve a ``file://`` URI (or a bare path) to a local path."""
    parsed = urlparse(artifact_ref)
    if parsed.scheme == "file":
        return Path(url2pathname(unquote(parsed.path)))
    if parsed.scheme and len(parsed.scheme) > 1:
        raise ArtifactUnavailable(f"Unsupported recording location: {artifact_ref}")
    return Path(artifact_ref)


def _audio_mime_type(path: Path) -> str:
    suffix = path.suffix.lower()
    return _AUDIO_MIME_TYPES.get(suffix) or mimetypes.guess_type(path.name)[0] or "application/octet-stream"


def _first(body: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        if body.get(key) not in (None, ""):
            return body[key]
    return None


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, (list, tuple)):
        return ", ".join(str(v).strip() for v in value if str(v).strip())
    return str(value).strip()


def _as_lines(value: Any) -> list[str]:
    """Accept a list, a comma-separated string, or nothing."""
    if value is None:
        return []
    if isinstance(value, str):
        items = value.split(",")
    elif isinstance(value, (list, tuple)):
        items = [str(v) for v in value]
    else:
        items = [str(value)]
    return [item.strip() for item in items if item.strip()]


def normalize_extraction(body: Any) -> ExtractionResult:
    """Fold any known analysis response shape into an ExtractionResult."""
    if not isinstance(body, Mapping):
        raise ServerError("Failed to get diagnosis from server.")

    features = _first(body, "features_extracted", "featuresExtracted", "features")
    if features is not None and not isinstance(features, Mapping):
        logger.warning("Ignoring non-object features payload of type %s", type(features).__name__)
        features = None

    return ExtractionResult(
        transcript=_as_text(_first(body, "transcript", "text")),
        de_identified_transcript=_as_text(
            _first(body, "de_identified_transcript", "deIdentifiedTranscript", "deidentified_transcript")
        ),
        summary=_as_text(_first(body, "summary")),
        features_extracted=dict(features or {}),
        symptoms=_as_lines(_first(body, "symptoms")),
        medicines=_as_lines(_first(body, "medicines", "medications")),
    )


async def _post_for_extraction(client: ApiClient, path: str, **kwargs: Any) -> ExtractionResult:
    try:
        response = await client.post(path, **kwargs)
    except Timeout as exc:
        raise UploadError("The analysis request timed out. Please try again.") from exc
    except NetworkError as exc:
        raise UploadError(exc.user_message) from exc

    if not response.is_success:
        raise ServerError(
            error_message(response, "Failed to get diagnosis from server."),
            status_code=response.status_code,
        )
    return normalize_extraction(json_body(response))


# ---------------------------------------------------------------------------
# Public async entry points
# ---------------------------------------------------------------------------


async def analyze_audio(
    client: ApiClient,
    artifact_ref: str,
    endpoint: str = AUDIO_ENDPOINT,
) -> ExtractionResult:
    """
    Upload a recorded sample as multipart field ``audioFile``.

    Parameters
    ----------
    client       : API client to use.
    artifact_ref : ``file://`` URI returned by the recorder.
    endpoint     : ``/api/audio/analyze`` (default) or ``/api/audio/predict``.

    Raises
    ------
    ArtifactUnavailable if the file is gone, UploadError for network
    problems, ServerError for non-2xx or malformed responses.
    """
    path = _artifact_path(artifact_ref)
    try:
        audio_bytes = path.read_bytes()
    except OSError as exc:
        logger.error("Cannot read recording %s: %s", path, exc)
        raise ArtifactUnavailable() from exc

    files = {"audioFile": (path.name, audio_bytes, _audio_mime_type(path))}
    logger.info("Uploading %s (%d bytes) to %s", path.name, len(audio_bytes), endpoint)
    result = await _post_for_extraction(client, endpoint, files=files)
    logger.info(
        "Extraction received: %d feature(s), %d symptom(s).",
        len(result.features_extracted), len(result.symptoms),
    )
    return result


async def analyze_text(client: ApiClient, text: str) -> ExtractionResult:
    """Send a typed description instead of audio."""
    if not text or not text.strip():
        raise ValidationError(["text"], "Please enter a description to analyze.")
    return await _post_for_extraction(client, TEXT_ENDPOINT, json={"text": text.strip()})


# ---------------------------------------------------------------------------
# Presentation
# ---------------------------------------------------------------------------


def extraction_to_display(result: ExtractionResult) -> DisplayDiagnosis:
    """
    Build the Symptoms / Medicines / Summary cards for an audio analysis.

    Structured features, when present, contribute symptom lines through the
    same field mapping the history view uses.
    """
    symptoms = list(result.symptoms)
    for line in symptom_lines(result.features_extracted):
        if line not in symptoms:
            symptoms.append(line)

    return DisplayDiagnosis(
        symptom_lines=symptoms or [NOT_AVAILABLE],
        medicine_lines=list(result.medicines) or [NOT_AVAILABLE],
        summary=result.summary or NOT_AVAILABLE,
    )
