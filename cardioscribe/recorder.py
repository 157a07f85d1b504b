"""
recorder.py
-----------
Microphone capture for a single audio sample.

`AudioRecorder` doubles as a ``streamlit_webrtc`` audio processor: the WebRTC
worker thread calls :meth:`AudioRecorder.recv` with every incoming
``av.AudioFrame``.  Frames are only buffered between
:meth:`start_recording` and :meth:`stop_recording`; the buffered PCM is then
written to a WAV file whose ``file://`` URI is the artifact handed to the
upload step.
"""

from __future__ import annotations

import logging
import os
import threading
import uuid
import wave
from pathlib import Path
from typing import Callable, Optional
from urllib.parse import urlparse
from urllib.request import url2pathname

import av
import numpy as np

from .config import RECORDINGS_DIR
from .errors import ArtifactUnavailable, PermissionDenied
from .schemas import RecordingState

logger = logging.getLogger(__name__)


def _always_granted() -> bool:
    return True


class AudioRecorder:
    def __init__(
        self,
        permission_request: Callable[[], bool] = _always_granted,
        recordings_dir: str = RECORDINGS_DIR,
    ) -> None:
        self.recording_state = RecordingState.IDLE
        self.frames_buffer: list[bytes] = []
        self.sample_rate = 48000
        self.channels = 1          # always mono after down-mix
        self.sample_width = 2      # 16-bit PCM
        self.last_uri: Optional[str] = None

        self._permission_request = permission_request
        self._permission_granted = False
        self._recordings_dir = recordings_dir
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start_recording(self) -> None:
        """
        Begin buffering audio.

        Microphone permission is requested the first time only.  Raises
        `PermissionDenied` if the user refuses; the recorder then stays idle.
        Calling this while a recording is already active does nothing.
        """
        if not self._permission_granted:
            if not self._permission_request():
                logger.warning("Microphone permission refused; recording not started.")
                raise PermissionDenied()
            self._permission_granted = True

        self._remove_artifact()
        with self._lock:
            if self.recording_state == RecordingState.RECORDING:
                logger.info("start_recording ignored: a recording is already active.")
                return
            self.frames_buffer = []
            self.recording_state = RecordingState.RECORDING
        logger.info("Recording started.")

    def stop_recording(self) -> str:
        """
        Finalise the artifact and return its ``file://`` URI.

        Raises `ArtifactUnavailable` when no recording is active or when
        nothing was captured.  On success the recorder moves to
        ``UPLOADING`` until :meth:`finish_upload` is called.
        """
        with self._lock:
            if self.recording_state != RecordingState.RECORDING:
                raise ArtifactUnavailable("No active recording to stop.")
            pcm = b"".join(self.frames_buffer)
            self.frames_buffer = []
            self.recording_state = RecordingState.IDLE

        if not pcm:
            logger.warning("Recording stopped with no captured audio.")
            raise ArtifactUnavailable()

        uri = self._write_wav(pcm)
        self.last_uri = uri
        self.recording_state = RecordingState.UPLOADING
        logger.info("Recording saved to %s (%d bytes of PCM).", uri, len(pcm))
        return uri

    def finish_upload(self) -> None:
        """The artifact has been handed off; delete it and get ready for the next recording."""
        self.recording_state = RecordingState.IDLE
        self._remove_artifact()

    def discard(self) -> None:
        """Drop any buffered audio and return to idle (logout / new session)."""
        with self._lock:
            self.frames_buffer = []
            self.recording_state = RecordingState.IDLE
        self._remove_artifact()

    # ------------------------------------------------------------------
    # Audio input
    # ------------------------------------------------------------------

    def recv(self, frame: av.AudioFrame) -> av.AudioFrame:
        """WebRTC callback; buffers the frame while recording."""
        if self.recording_state != RecordingState.RECORDING:
            return frame

        samples = frame.to_ndarray()
        channels = len(frame.layout.channels)
        if frame.format.is_planar:
            mono = samples.mean(axis=0) if channels > 1 else samples[0]
        else:
            mono = samples.reshape(-1, channels).mean(axis=1)

        if samples.dtype.kind == "f":
            mono = np.clip(mono, -1.0, 1.0) * 32767.0

        self.write_pcm(mono.astype(np.int16).tobytes(), frame.sample_rate)
        return frame

    def write_pcm(self, raw_data: bytes, sample_rate: int) -> None:
        """Append mono 16-bit PCM captured at ``sample_rate``."""
        with self._lock:
            if self.recording_state != RecordingState.RECORDING:
                return
            self.sample_rate = sample_rate
            self.frames_buffer.append(raw_data)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _remove_artifact(self) -> None:
        if self.last_uri is None:
            return
        path = Path(url2pathname(urlparse(self.last_uri).path))
        self.last_uri = None
        try:
            path.unlink(missing_ok=True)
        except OSError as exc:
            logger.warning("Could not delete recording %s: %s", path, exc)

    def _write_wav(self, pcm: bytes) -> str:
        os.makedirs(self._recordings_dir, exist_ok=True)
        path = Path(self._recordings_dir) / f"rec-{uuid.uuid4().hex}.wav"
        with wave.open(str(path), "wb") as wf:
            wf.setnchannels(self.channels)
            wf.setsampwidth(self.sample_width)
            wf.setframerate(self.sample_rate)
            wf.writeframes(pcm)
        if not path.exists():
            raise ArtifactUnavailable()
        return path.resolve().as_uri()
