"""
api/routes/analyze.py — Audio analysis endpoints.

Endpoints:
    POST /analyze/audio         — Run the full pipeline, return the AnalysisResult
    POST /analyze/audio/stream  — Same run, streamed as Server-Sent Events

Both accept either a server-side absolute ``file_path`` or inline
``audio_data`` (base64 / data URL) and delegate to PipelineOrchestrator
in ingestion/pipeline.py.

A failed analysis (e.g. undecodable file) is data, not an HTTP fault: it
returns 200 with ``status="failure"``. Malformed requests return 422.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator

from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse

from api.deps import get_pipeline_orchestrator
from api.schemas.analysis import AnalysisResponse, AudioAnalysisRequest, ProgressEventOut
from core.audio.types import AudioSource
from ingestion.pipeline import PipelineOrchestrator

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/analyze", tags=["analyze"])


def _sse(event: ProgressEventOut) -> str:
    return f"data: {event.model_dump_json(exclude_none=True)}\n\n"


# ---------------------------------------------------------------------------
# POST /analyze/audio
# ---------------------------------------------------------------------------


@router.post("/audio", response_model=AnalysisResponse)
def analyze_audio(
    request: AudioAnalysisRequest,
    orchestrator: PipelineOrchestrator = Depends(get_pipeline_orchestrator),
) -> AnalysisResponse:
    """Analyze one audio file: technical features plus optional AI commentary.

    Args:
        request: AudioAnalysisRequest with file_path or audio_data.

    Returns:
        AnalysisResponse. ``technical`` is null only when ``status="failure"``.

    Raises:
        422: Neither or both inputs given, or file_path is relative.
    """
    if request.audio_data is not None:
        result = orchestrator.run_payload(request.audio_data, request.file_name)
    else:
        source = AudioSource(path=request.file_path or "", display_name=request.file_name)
        result = orchestrator.run(source)

    if not result.succeeded:
        logger.warning("Audio analysis failed: %s", result.message)
    return AnalysisResponse(**result.to_dict())


# ---------------------------------------------------------------------------
# POST /analyze/audio/stream
# ---------------------------------------------------------------------------


@router.post("/audio/stream")
def analyze_audio_stream(
    request: AudioAnalysisRequest,
    orchestrator: PipelineOrchestrator = Depends(get_pipeline_orchestrator),
) -> StreamingResponse:
    """Stream progress events as ``data: <json>`` lines.

    Events arrive per stage (start, then ``status="complete"``); the two
    parallel branches may interleave. The last event has ``type="result"``
    and carries the full AnalysisResult under ``result``.
    """
    if request.audio_data is not None:
        events = orchestrator.stream_payload(request.audio_data, request.file_name)
    else:
        source = AudioSource(path=request.file_path or "", display_name=request.file_name)
        events = orchestrator.stream(source)

    def body() -> Iterator[str]:
        for event in events:
            yield _sse(ProgressEventOut(**event.to_dict()))

    return StreamingResponse(
        body(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )
