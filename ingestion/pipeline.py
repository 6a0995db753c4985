"""
ingestion/pipeline.py — PipelineOrchestrator: the fixed analysis DAG.

    prepare-audio
        │
        ├──────────────────────────┐
        ▼                          ▼
    technical-analysis        upload-audio          (parallel, barrier join)
        │                          │
        └────────────┬─────────────┘
                     ▼
             creative-analysis
                     ▼
              compile-results ──► AnalysisResult

Failure policy:
    - prepare-audio rejects a relative, missing or non-audio path before
      either branch starts, so nothing but audio is ever uploaded.
    - technical-analysis failing (decode, or any unexpected error) fails the
      run at once; the upload branch is cancelled and its result discarded.
    - upload-audio failing only removes creative commentary.
    - creative-analysis never fails the run.
    - cancellation before the join fails the run with "Analysis cancelled";
      after the join the run skips commentary and compiles what it has.

``run()`` never raises: every outcome is an AnalysisResult. Progress goes to
an optional sink through a ProgressEmitter, ending with one ``result`` event;
nothing is forwarded after it.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterator
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from pathlib import Path

from core.audio.port import FeatureExtractionPort
from core.audio.types import AudioSource, FeatureSet
from core.config import DEFAULT_CONFIG, AnalysisConfig
from core.pipeline.cancellation import AnalysisCancelled, CancellationToken
from core.pipeline.progress import ProgressChannel, ProgressEmitter, ProgressSink
from core.pipeline.report import (
    build_failure_result,
    compile_result,
    format_technical_summary,
)
from core.pipeline.types import (
    AnalysisResult,
    BranchResults,
    PipelineRun,
    PipelineStage,
    ProgressEvent,
    UploadOutcome,
)
from infrastructure.metrics import (
    StageTimer,
    record_progress_dropped,
    record_run,
    record_soft_failure,
)
from ingestion.audio_loader import (
    AUDIO_EXTENSIONS,
    DecodeError,
    decode_audio_payload,
    temporary_audio_file,
)
from ingestion.creative import CreativeAnnotationStage
from ingestion.technical_analysis import TechnicalAnalysisStage
from ingestion.upload import UploadStage

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Step names and start messages
# ---------------------------------------------------------------------------

STEP_PREPARE = "prepare-audio"
STEP_TECHNICAL = "technical-analysis"
STEP_UPLOAD = "upload-audio"
STEP_CREATIVE = "creative-analysis"
STEP_COMPILE = "compile-results"
STEP_PIPELINE = "pipeline"

STEP_MESSAGES: dict[str, str] = {
    STEP_PREPARE: "📁 Loading audio file...",
    STEP_TECHNICAL: "🎵 Analyzing technical features (BPM, key, energy)...",
    STEP_UPLOAD: "📤 Uploading audio for AI analysis...",
    STEP_CREATIVE: "🎨 Getting creative AI insights...",
    STEP_COMPILE: "📊 Compiling final analysis...",
}

CANCELLED_CAUSE = "Analysis cancelled"

# Join polls this often so a cancelled run is not stuck behind a hung branch
_JOIN_POLL_SECONDS = 0.1

# Optional fields counted as extractor soft failures when absent
_EXTRACTOR_FIELDS: tuple[str, ...] = (
    "bpm",
    "onset_rate",
    "key",
    "energy",
    "loudness",
    "rms",
    "dynamic_complexity",
    "spectral_centroid",
    "spectral_rolloff",
    "spectral_flatness",
    "zero_crossing_rate",
    "danceability",
    "mfcc",
    "mel_bands",
    "spectral_contrast",
    "hpcp",
)


class PipelineOrchestrator:
    """Runs one audio file through the analysis DAG.

    Stages are injectable; defaults are built from ``config`` and the
    process-wide feature backend. An orchestrator holds no per-run state,
    so one instance can serve concurrent runs.

    Args:
        technical: Technical analysis stage.
        uploader: Upload stage.
        annotator: Creative annotation stage.
        backend: DSP backend for the default technical stage.
        config: Pipeline configuration.

    Example:
        orchestrator = PipelineOrchestrator()
        result = orchestrator.run(AudioSource("/abs/path/track.wav"), sink=print)
        print(result.final_message)
    """

    def __init__(
        self,
        technical: TechnicalAnalysisStage | None = None,
        uploader: UploadStage | None = None,
        annotator: CreativeAnnotationStage | None = None,
        *,
        backend: FeatureExtractionPort | None = None,
        config: AnalysisConfig = DEFAULT_CONFIG,
    ) -> None:
        self._config = config
        if technical is None:
            if backend is None:
                from ingestion.feature_backend import get_feature_backend

                backend = get_feature_backend()
            technical = TechnicalAnalysisStage(backend, config)
        self._technical = technical
        self._uploader = uploader or UploadStage(config=config)
        self._annotator = annotator or CreativeAnnotationStage(config=config)

    @property
    def config(self) -> AnalysisConfig:
        return self._config

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def run(
        self,
        source: AudioSource,
        sink: ProgressSink | None = None,
        cancel: CancellationToken | None = None,
    ) -> AnalysisResult:
        """Analyze ``source`` and return the terminal result. Never raises."""
        run = PipelineRun()
        emitter = ProgressEmitter(sink)
        token = cancel or CancellationToken()
        file_name = source.file_name
        logger.info("Run %s started for %s", run.id, file_name)

        try:
            self._prepare(source, emitter, token)
            branches = self._fork_join(source, emitter, token, run)
            result = self._annotate_and_compile(file_name, branches, emitter, token, run)
        except AnalysisCancelled:
            logger.warning("Run %s cancelled: %s", run.id, token.reason)
            result = self._fail(run, file_name, CANCELLED_CAUSE, status="cancelled")
        except DecodeError as exc:
            logger.error("Run %s failed to decode %s: %s", run.id, file_name, exc)
            result = self._fail(run, file_name, str(exc))
        except Exception as exc:
            logger.exception("Run %s failed: %s", run.id, exc)
            result = self._fail(run, file_name, str(exc) or exc.__class__.__name__)

        emitter.emit(
            ProgressEvent(
                type="result",
                message=result.final_message,
                step_name=STEP_PIPELINE,
                result=result.to_dict(),
            )
        )
        logger.info(
            "Run %s finished: %s in %.0f ms",
            run.id,
            result.status.value,
            result.processing_time_ms,
        )
        return result

    def run_bytes(
        self,
        data: bytes,
        file_name: str | None = None,
        sink: ProgressSink | None = None,
        cancel: CancellationToken | None = None,
    ) -> AnalysisResult:
        """Analyze in-memory audio through a temporary file.

        The temporary file is deleted on every exit path.
        """
        display_name = file_name or "audio"
        try:
            with temporary_audio_file(data, file_name) as path:
                return self.run(
                    AudioSource(path=path, display_name=display_name), sink=sink, cancel=cancel
                )
        except DecodeError as exc:
            logger.error("Rejected audio payload %s: %s", display_name, exc)
            return self._reject(display_name, str(exc), sink)

    def run_payload(
        self,
        payload: str,
        file_name: str | None = None,
        sink: ProgressSink | None = None,
        cancel: CancellationToken | None = None,
    ) -> AnalysisResult:
        """Analyze base64 or ``data:`` URL audio."""
        try:
            data, suffix = decode_audio_payload(payload)
        except DecodeError as exc:
            display_name = file_name or "audio"
            logger.error("Rejected audio payload %s: %s", display_name, exc)
            return self._reject(display_name, str(exc), sink)
        if file_name is None and suffix is not None:
            file_name = f"audio{suffix}"
        return self.run_bytes(data, file_name, sink=sink, cancel=cancel)

    def stream(
        self,
        source: AudioSource,
        cancel: CancellationToken | None = None,
    ) -> Iterator[ProgressEvent]:
        """Run in a background thread and yield its progress events.

        The last event is the ``result`` event. Closing the iterator early
        cancels the run.
        """
        return self._stream(lambda sink, token: self.run(source, sink=sink, cancel=token), cancel)

    def stream_payload(
        self,
        payload: str,
        file_name: str | None = None,
        cancel: CancellationToken | None = None,
    ) -> Iterator[ProgressEvent]:
        """``stream`` for base64 or ``data:`` URL audio."""
        return self._stream(
            lambda sink, token: self.run_payload(payload, file_name, sink=sink, cancel=token),
            cancel,
        )

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    def _prepare(
        self,
        source: AudioSource,
        emitter: ProgressEmitter,
        cancel: CancellationToken,
    ) -> None:
        emitter.progress(STEP_PREPARE, STEP_MESSAGES[STEP_PREPARE])
        cancel.raise_if_cancelled()
        path = Path(source.path)
        if not path.is_absolute():
            raise DecodeError(f"Audio path must be absolute: {source.path}")
        if not path.is_file():
            raise DecodeError(f"Audio file not found: {source.path}")
        if path.suffix.lower() not in AUDIO_EXTENSIONS:
            raise DecodeError(f"Unsupported audio format: {path.name}")
        logger.info("Preparing audio: %s", source.file_name)
        emitter.complete(STEP_PREPARE, "📁 Audio file loaded successfully")

    def _technical_branch(
        self,
        source: AudioSource,
        emitter: ProgressEmitter,
        cancel: CancellationToken,
        run: PipelineRun,
    ) -> FeatureSet:
        emitter.progress(STEP_TECHNICAL, STEP_MESSAGES[STEP_TECHNICAL])
        with StageTimer("technical_analysis"):
            features = self._technical.run(source, cancel)
        run.finish_branch(PipelineStage.TECHNICAL_ANALYSIS)

        missing = sum(1 for name in _EXTRACTOR_FIELDS if getattr(features, name) is None)
        for _ in range(missing):
            record_soft_failure("extractor")
        emitter.complete(STEP_TECHNICAL, format_technical_summary(features))
        return features

    def _upload_branch(
        self,
        source: AudioSource,
        emitter: ProgressEmitter,
        cancel: CancellationToken,
        run: PipelineRun,
    ) -> UploadOutcome:
        emitter.progress(STEP_UPLOAD, STEP_MESSAGES[STEP_UPLOAD])
        with StageTimer("upload"):
            outcome = self._uploader.upload(source.path, cancel)
        run.finish_branch(PipelineStage.UPLOADING)

        if outcome.succeeded:
            emitter.complete(STEP_UPLOAD, "✅ Audio uploaded successfully")
        else:
            record_soft_failure("upload")
            emitter.complete(STEP_UPLOAD, "⚠️ Upload failed, proceeding without AI analysis")
        return outcome

    def _fork_join(
        self,
        source: AudioSource,
        emitter: ProgressEmitter,
        cancel: CancellationToken,
        run: PipelineRun,
    ) -> BranchResults:
        """Run both branches concurrently and wait for both.

        Both branches share a child of ``cancel``. A failed technical branch
        ends the wait at once and cancels that child, so the upload stops at
        its next check; whatever it still produces is discarded.
        """
        run.start_branches()
        branch_cancel = cancel.child()
        executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix=f"run-{run.id[:8]}")
        try:
            technical: Future[FeatureSet] = executor.submit(
                self._technical_branch, source, emitter, branch_cancel, run
            )
            upload: Future[UploadOutcome] = executor.submit(
                self._upload_branch, source, emitter, branch_cancel, run
            )
            pending: set[Future] = {technical, upload}
            while pending:
                done, pending = wait(
                    pending, timeout=_JOIN_POLL_SECONDS, return_when=FIRST_COMPLETED
                )
                if technical in done and technical.exception() is not None:
                    branch_cancel.cancel("technical analysis failed")
                    raise technical.exception()  # type: ignore[misc]
                if pending:
                    cancel.raise_if_cancelled()

            run.finish_branch(PipelineStage.TECHNICAL_ANALYSIS)
            run.finish_branch(PipelineStage.UPLOADING)
            upload_exc = upload.exception()
            if isinstance(upload_exc, AnalysisCancelled):
                raise upload_exc
            if upload_exc is not None:
                logger.warning("Upload branch crashed, continuing without URL: %s", upload_exc)
                record_soft_failure("upload")
                outcome = UploadOutcome(url=None, error=str(upload_exc))
            else:
                outcome = upload.result()
            return BranchResults(technical=technical.result(), upload=outcome)
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

    def _annotate_and_compile(
        self,
        file_name: str,
        branches: BranchResults,
        emitter: ProgressEmitter,
        cancel: CancellationToken,
        run: PipelineRun,
    ) -> AnalysisResult:
        run.advance(PipelineStage.CREATIVE_ANNOTATION)
        emitter.progress(STEP_CREATIVE, STEP_MESSAGES[STEP_CREATIVE])

        url = branches.upload.url
        creative: str | None = None
        if cancel.cancelled:
            logger.info("Run %s cancelled after join — skipping creative analysis", run.id)
            emitter.complete(STEP_CREATIVE, "⚠️ Skipping creative analysis (cancelled)")
        elif url is None:
            emitter.complete(STEP_CREATIVE, "⚠️ Skipping creative analysis (no audio URL)")
        else:
            with StageTimer("creative_annotation"):
                creative = self._annotator.annotate(branches.technical, url)
            if creative is None:
                record_soft_failure("annotation")
                emitter.complete(STEP_CREATIVE, "⚠️ Creative analysis failed")
            else:
                emitter.complete(STEP_CREATIVE, "✨ Creative analysis complete!")

        run.advance(PipelineStage.COMPILING)
        emitter.progress(STEP_COMPILE, STEP_MESSAGES[STEP_COMPILE])
        skipped: list[str] = []
        if url is None:
            skipped.append(STEP_UPLOAD)
        if creative is None:
            skipped.append(STEP_CREATIVE)
        with StageTimer("compile"):
            result = compile_result(
                file_name,
                branches.technical,
                creative,
                run_id=run.id,
                processing_time_ms=run.elapsed_ms(),
                skipped_stages=tuple(skipped),
            )
        run.advance(PipelineStage.DONE)
        emitter.complete(STEP_COMPILE, result.message)
        record_run(status="success")
        return result

    # ------------------------------------------------------------------
    # Failure and streaming helpers
    # ------------------------------------------------------------------

    def _fail(
        self,
        run: PipelineRun,
        file_name: str,
        cause: str,
        *,
        status: str = "failure",
    ) -> AnalysisResult:
        if not run.is_terminal:
            run.advance(PipelineStage.FAILED)
        record_run(status=status)
        return build_failure_result(
            file_name, cause, run_id=run.id, processing_time_ms=run.elapsed_ms()
        )

    def _reject(self, file_name: str, cause: str, sink: ProgressSink | None) -> AnalysisResult:
        """Failure for input that never became a file, with its terminal event."""
        run = PipelineRun()
        result = self._fail(run, file_name, cause)
        ProgressEmitter(sink).emit(
            ProgressEvent(
                type="result",
                message=result.final_message,
                step_name=STEP_PIPELINE,
                result=result.to_dict(),
            )
        )
        return result

    def _stream(
        self,
        call: Callable[[ProgressSink, CancellationToken], AnalysisResult],
        cancel: CancellationToken | None,
    ) -> Iterator[ProgressEvent]:
        token = cancel or CancellationToken()
        channel = ProgressChannel(
            self._config.progress_buffer_size,
            on_drop=lambda _event: record_progress_dropped(),
        )

        def worker() -> None:
            try:
                call(channel, token)
            finally:
                channel.close()

        thread = threading.Thread(target=worker, name="analysis-stream", daemon=True)
        thread.start()
        try:
            yield from channel
        finally:
            if thread.is_alive():
                token.cancel("progress consumer went away")
