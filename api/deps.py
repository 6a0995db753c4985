"""
FastAPI dependency providers.

Provides process-wide singletons for the pipeline orchestrator and its
collaborators so the DSP backend and the language-model client are
created once and reused across requests. Tests replace them through
``app.dependency_overrides``.

FastAPI runs sync dependencies in a thread pool, so the first requests
can arrive concurrently; each singleton is built double-checked under
its own lock.
"""

import threading

from core.audio.port import FeatureExtractionPort
from core.config import DEFAULT_CONFIG, AnalysisConfig
from core.generation.base import GenerationProvider
from ingestion.creative import CreativeAnnotationStage
from ingestion.feature_backend import get_feature_backend
from ingestion.generation import create_generation_provider
from ingestion.pipeline import PipelineOrchestrator
from ingestion.upload import UploadStage


def get_analysis_config() -> AnalysisConfig:
    """Return the pipeline configuration."""
    return DEFAULT_CONFIG


def get_backend() -> FeatureExtractionPort:
    """Return the process-wide DSP backend (created once, under a lock)."""
    return get_feature_backend()


_generation_provider: GenerationProvider | None = None
_provider_lock = threading.Lock()


def get_generation_provider() -> GenerationProvider:
    """
    Return a cached generation provider singleton.

    Reads ``LLM_PROVIDER`` from the environment on first call to decide
    between OpenRouter, OpenAI and Anthropic. The provider is reused thereafter.
    """
    global _generation_provider  # noqa: PLW0603
    if _generation_provider is None:
        with _provider_lock:
            if _generation_provider is None:
                _generation_provider = create_generation_provider()
    return _generation_provider


_orchestrator: PipelineOrchestrator | None = None
_orchestrator_lock = threading.Lock()


def get_pipeline_orchestrator() -> PipelineOrchestrator:
    """
    Return a cached PipelineOrchestrator singleton.

    The generation provider is resolved lazily on the first annotation, so a
    missing API key only disables creative commentary, never the endpoint.
    """
    global _orchestrator  # noqa: PLW0603
    if _orchestrator is None:
        with _orchestrator_lock:
            if _orchestrator is None:
                config = get_analysis_config()
                _orchestrator = PipelineOrchestrator(
                    uploader=UploadStage(config=config),
                    annotator=CreativeAnnotationStage(
                        provider_factory=get_generation_provider, config=config
                    ),
                    backend=get_backend(),
                    config=config,
                )
    return _orchestrator
