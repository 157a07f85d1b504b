"""
config.py
---------
Runtime settings for the CardioScribe client.

Every module that talks to the clinical API or touches the filesystem reads
its settings from here, so the base URL, timeouts and recording location
live in one place.
"""

from __future__ import annotations

import os
import tempfile

from dotenv import load_dotenv

load_dotenv()

# ---------------------------------------------------------------------------
# Configuration: override via .env
# ---------------------------------------------------------------------------

API_BASE_URL: str = os.getenv("CARDIO_API_BASE_URL", "http://localhost:8080").rstrip("/")
API_TIMEOUT: float = float(os.getenv("CARDIO_API_TIMEOUT", "30"))

# The analysis service exposes the same multipart contract under two paths.
AUDIO_ENDPOINT: str = os.getenv("CARDIO_AUDIO_ENDPOINT", "/api/audio/analyze")
TEXT_ENDPOINT: str = "/api/text/analyze"
PREDICT_ENDPOINT: str = "/api/heart/predict"
HISTORY_ENDPOINT_TEMPLATE: str = "/api/patient/{name}/predictions"
LOGIN_ENDPOINT_TEMPLATE: str = "/api/{role}/login"
REGISTER_ENDPOINT_TEMPLATE: str = "/api/{role}/register"

RECORDINGS_DIR: str = os.getenv(
    "CARDIO_RECORDINGS_DIR",
    os.path.join(tempfile.gettempdir(), "cardioscribe"),
)
