"""
ingestion/audio_loader.py — File I/O boundary for audio loading.

This is the ONLY module in the audio pipeline that reads audio from disk or
writes temporary audio files. Everything downstream (core/audio/features.py,
core/audio/chord_tracking.py) takes pre-loaded (signal, sample_rate) arrays —
never file paths.

Usage:
    from ingestion.audio_loader import load_audio, temporary_audio_file

    signal, sr = load_audio("/path/to/track.wav")

    with temporary_audio_file(raw_bytes, "upload.mp3") as path:
        signal, sr = load_audio(path)
"""

from __future__ import annotations

import base64
import binascii
import logging
import os
import tempfile
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

import numpy as np

logger = logging.getLogger(__name__)

# Supported audio file extensions (must be loadable by librosa / soundfile)
AUDIO_EXTENSIONS: frozenset[str] = frozenset(
    {".mp3", ".wav", ".flac", ".aiff", ".aif", ".ogg", ".m4a", ".opus"}
)

# Leading bytes → extension, checked in order
_MAGIC_SUFFIXES: tuple[tuple[bytes, int, str], ...] = (
    (b"WAVE", 8, ".wav"),
    (b"fLaC", 0, ".flac"),
    (b"OggS", 0, ".ogg"),
    (b"ID3", 0, ".mp3"),
    (b"AIFF", 8, ".aiff"),
    (b"AIFC", 8, ".aiff"),
    (b"ftyp", 4, ".m4a"),
)

_MIME_SUFFIXES: dict[str, str] = {
    "audio/wav": ".wav",
    "audio/x-wav": ".wav",
    "audio/wave": ".wav",
    "audio/mpeg": ".mp3",
    "audio/mp3": ".mp3",
    "audio/flac": ".flac",
    "audio/x-flac": ".flac",
    "audio/ogg": ".ogg",
    "audio/aiff": ".aiff",
    "audio/x-aiff": ".aiff",
    "audio/mp4": ".m4a",
    "audio/x-m4a": ".m4a",
    "audio/opus": ".opus",
}


class DecodeError(RuntimeError):
    """The input could not be turned into a mono signal. Fatal for a run."""


# ---------------------------------------------------------------------------
# Decoding
# ---------------------------------------------------------------------------


def load_audio(
    path: str | Path,
    *,
    sr: int | None = None,
    duration: float | None = None,
) -> tuple[np.ndarray, int]:
    """Load an audio file and return (signal, sample_rate).

    Args:
        path: Path to an audio file.
              Supported formats: mp3, wav, flac, aiff, ogg, m4a, opus.
        sr: Target sample rate in Hz. None preserves the native rate.
        duration: Maximum seconds to load. None loads the whole file.

    Returns:
        (signal, sample_rate) — mono float64 samples and rate in Hz.

    Raises:
        DecodeError: File missing, unsupported extension, undecodable, or
                     decodes to an empty signal.
    """
    import librosa  # deferred to allow testing without audio backend

    file_path = Path(path)

    if not file_path.is_file():
        raise DecodeError(f"Audio file not found: {file_path}")

    if file_path.suffix.lower() not in AUDIO_EXTENSIONS:
        raise DecodeError(
            f"Unsupported audio format {file_path.suffix!r}. "
            f"Supported: {sorted(AUDIO_EXTENSIONS)}"
        )

    try:
        signal, loaded_sr = librosa.load(
            file_path,
            sr=sr,
            mono=True,
            duration=duration,
            offset=0.0,
        )
    except Exception as exc:
        raise DecodeError(f"Failed to decode audio file {file_path.name!r}: {exc}") from exc

    signal = np.asarray(signal, dtype=np.float64)
    if signal.ndim > 1:
        signal = np.mean(signal, axis=0)
    if signal.size == 0:
        raise DecodeError(f"Audio file {file_path.name!r} contains no samples")
    if not np.all(np.isfinite(signal)):
        raise DecodeError(f"Audio file {file_path.name!r} decoded to non-finite samples")

    logger.debug(
        "Decoded %s: %d samples at %d Hz", file_path.name, signal.size, int(loaded_sr)
    )
    return signal, int(loaded_sr)


# ---------------------------------------------------------------------------
# In-memory input
# ---------------------------------------------------------------------------


def guess_audio_suffix(data: bytes, file_name: str | None = None) -> str:
    """Pick a file extension for raw audio bytes.

    The file name's extension wins when it is a supported format;
    otherwise the container is sniffed from its magic bytes.

    Raises:
        DecodeError: Neither the name nor the bytes identify an audio format.
    """
    if file_name:
        suffix = Path(file_name).suffix.lower()
        if suffix in AUDIO_EXTENSIONS:
            return suffix

    for magic, offset, suffix in _MAGIC_SUFFIXES:
        if data[offset : offset + len(magic)] == magic:
            return suffix
    # MPEG frame sync without an ID3 tag
    if len(data) >= 2 and data[0] == 0xFF and (data[1] & 0xE0) == 0xE0:
        return ".mp3"
    raise DecodeError("Unrecognized audio data: unknown container format")


@contextmanager
def temporary_audio_file(data: bytes, file_name: str | None = None) -> Iterator[str]:
    """Write bytes to a temporary audio file and delete it on exit.

    The file is removed on every exit path, including when the body raises.

    Yields:
        Absolute path of the temporary file.

    Raises:
        DecodeError: ``data`` is empty or not recognizable as audio.
    """
    if not data:
        raise DecodeError("Audio payload is empty")
    suffix = guess_audio_suffix(data, file_name)

    handle = tempfile.NamedTemporaryFile(prefix="analysis-", suffix=suffix, delete=False)
    try:
        with handle:
            handle.write(data)
        logger.debug("Wrote %d bytes to temporary file %s", len(data), handle.name)
        yield handle.name
    finally:
        try:
            os.unlink(handle.name)
        except FileNotFoundError:
            pass


def decode_audio_payload(payload: str) -> tuple[bytes, str | None]:
    """Decode base64 audio or a ``data:`` URL.

    Args:
        payload: Plain base64 text, or ``data:<mime>;base64,<data>``.

    Returns:
        (raw bytes, suggested file extension or None). The extension comes
        from the data URL's MIME type when it names a known audio format.

    Raises:
        DecodeError: Malformed data URL, invalid base64, or empty payload.
    """
    text = payload.strip()
    suffix: str | None = None

    if text.startswith("data:"):
        header, sep, text = text.partition(",")
        if not sep:
            raise DecodeError("Malformed data URL: missing ',' separator")
        params = header[len("data:") :].split(";")
        if "base64" not in params[1:]:
            raise DecodeError("Only base64-encoded data URLs are supported")
        suffix = _MIME_SUFFIXES.get(params[0].lower())

    try:
        data = base64.b64decode("".join(text.split()), validate=True)
    except (binascii.Error, ValueError) as exc:
        raise DecodeError(f"Invalid base64 audio payload: {exc}") from exc

    if not data:
        raise DecodeError("Audio payload is empty")
    return data, suffix
