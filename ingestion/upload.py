"""
ingestion/upload.py — Temporary hosting of audio files for the language model.

The language model can only listen to audio it can fetch, so the pipeline
hands the local file to a temporary file host and passes the returned URL
along. Two layers:

    LitterboxUploader   network client (httpx, multipart form, retried)
    UploadStage         pipeline branch; converts every failure into an
                        UploadOutcome with ``url=None`` (soft failure)

Endpoint is overridable with the ``UPLOAD_URL`` environment variable.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path

import httpx
from dotenv import load_dotenv

from core.config import DEFAULT_CONFIG, VALID_UPLOAD_TTLS, AnalysisConfig
from core.pipeline.cancellation import AnalysisCancelled, CancellationToken
from core.pipeline.types import UploadOutcome
from infrastructure.retry import with_retry
from ingestion.audio_loader import AUDIO_EXTENSIONS

logger = logging.getLogger(__name__)

LITTERBOX_URL = "https://litterbox.catbox.moe/resources/internals/api.php"

MAX_UPLOAD_BYTES = 50 * 1024 * 1024

_TTL_HOURS: dict[str, int] = {"1h": 1, "12h": 12, "24h": 24, "72h": 72}

_DEFAULT_TIMEOUT_SECONDS = 60.0


class UploadError(RuntimeError):
    """The file could not be hosted. Always a soft failure for a run."""


@dataclass(frozen=True)
class UploadReceipt:
    """A hosted file: public URL and when it stops being reachable."""

    url: str
    expires_at: datetime
    ttl: str


class LitterboxUploader:
    """Upload client for litterbox.catbox.moe.

    Args:
        endpoint: Upload URL. Defaults to ``UPLOAD_URL`` or the public host.
        client: Injected ``httpx.Client``. Tests pass one built on
            ``httpx.MockTransport``. None = one client per upload.
        max_bytes: Files larger than this are rejected before any request.
        timeout_seconds: Per-request timeout for the default client.
    """

    def __init__(
        self,
        endpoint: str | None = None,
        *,
        client: httpx.Client | None = None,
        max_bytes: int = MAX_UPLOAD_BYTES,
        timeout_seconds: float = _DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        load_dotenv()
        self._endpoint = endpoint or os.environ.get("UPLOAD_URL", LITTERBOX_URL)
        self._client = client
        self._max_bytes = max_bytes
        self._timeout = timeout_seconds

    @property
    def endpoint(self) -> str:
        return self._endpoint

    def upload(
        self,
        path: str | Path,
        ttl: str = "1h",
        cancel: CancellationToken | None = None,
    ) -> UploadReceipt:
        """Host ``path`` for ``ttl`` and return its public URL.

        ``cancel`` is checked before every attempt, so a cancelled run stops
        retrying instead of sending the file again.

        Raises:
            UploadError: Unknown ttl, missing, non-audio or oversized file,
                HTTP error, or a response body that is not a URL.
            AnalysisCancelled: ``cancel`` was set before an attempt.
        """
        if ttl not in VALID_UPLOAD_TTLS:
            raise UploadError(f"Unknown ttl {ttl!r}, valid options: {sorted(VALID_UPLOAD_TTLS)}")

        file_path = Path(path)
        if not file_path.is_file():
            raise UploadError(f"File not found: {file_path}")
        if file_path.suffix.lower() not in AUDIO_EXTENSIONS:
            raise UploadError(f"Refusing to upload non-audio file: {file_path.name}")
        size = file_path.stat().st_size
        if size > self._max_bytes:
            raise UploadError(
                f"File too large: {size / 1024 / 1024:.2f}MB "
                f"(max {self._max_bytes / 1024 / 1024:.0f}MB)"
            )

        logger.info(
            "Uploading %s (%.2fMB) to temporary storage", file_path.name, size / 1024 / 1024
        )
        try:
            body = self._post(file_path, ttl, cancel)
        except (UploadError, AnalysisCancelled):
            raise
        except Exception as exc:
            raise UploadError(f"Upload of {file_path.name!r} failed: {exc}") from exc

        url = body.strip()
        if not url.startswith("http"):
            raise UploadError(f"Invalid URL returned: {url[:200]!r}")

        expires_at = datetime.now(timezone.utc) + timedelta(hours=_TTL_HOURS[ttl])
        logger.info("Upload complete: %s (expires %s)", url, expires_at.isoformat())
        return UploadReceipt(url=url, expires_at=expires_at, ttl=ttl)

    @with_retry(
        max_attempts=3,
        base_seconds=1.0,
        exceptions=(httpx.TransportError,),
    )
    def _post(self, file_path: Path, ttl: str, cancel: CancellationToken | None) -> str:
        """One multipart POST. Transport errors are retried, HTTP errors are not."""
        if cancel is not None:
            cancel.raise_if_cancelled()
        data = {"reqtype": "fileupload", "time": ttl}
        with file_path.open("rb") as fh:
            files = {"fileToUpload": (file_path.name, fh, "application/octet-stream")}
            if self._client is not None:
                response = self._client.post(self._endpoint, data=data, files=files)
            else:
                with httpx.Client(timeout=self._timeout) as client:
                    response = client.post(self._endpoint, data=data, files=files)

        if response.status_code != 200:
            raise UploadError(f"Upload host returned HTTP {response.status_code}")
        return response.text


class UploadStage:
    """Pipeline branch that makes a local file listenable by URL.

    ``upload`` never raises (except for cancellation); failures come back
    as ``UploadOutcome(url=None, error=...)``.
    """

    def __init__(
        self,
        uploader: LitterboxUploader | None = None,
        config: AnalysisConfig = DEFAULT_CONFIG,
    ) -> None:
        self._uploader = uploader or LitterboxUploader(max_bytes=config.max_upload_bytes)
        self._config = config

    def upload(
        self,
        path: str,
        cancel: CancellationToken | None = None,
    ) -> UploadOutcome:
        """Upload ``path`` with the configured ttl.

        Raises:
            AnalysisCancelled: ``cancel`` was set before the request was sent,
                between retries, or while the request was in flight. A URL
                obtained for a cancelled run is discarded.
        """
        if cancel is not None:
            cancel.raise_if_cancelled()
        try:
            receipt = self._uploader.upload(path, self._config.upload_ttl, cancel)
        except AnalysisCancelled:
            raise
        except Exception as exc:
            logger.warning("Upload failed, proceeding without AI analysis: %s", exc)
            return UploadOutcome(url=None, error=str(exc) or exc.__class__.__name__)
        if cancel is not None and cancel.cancelled:
            logger.info("Discarding upload of %s: %s", Path(path).name, cancel.reason)
            cancel.raise_if_cancelled()
        return UploadOutcome(url=receipt.url, expires_at=receipt.expires_at.isoformat())
