"""
ingestion/creative.py — Creative commentary from a multimodal language model.

CreativeAnnotationStage asks the model to listen to the uploaded audio and
describe it, anchored by the technical digest. It is optional by
construction: no URL means no call, and any error or timeout means no
commentary. ``annotate`` never raises.

The timeout is enforced on the caller side: the call runs on a worker
thread and the stage stops waiting after ``annotation_timeout_seconds``.
The same value is passed to the client as its network timeout.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError

from core.audio.types import FeatureSet
from core.config import DEFAULT_CONFIG, AnalysisConfig
from core.generation.base import GenerationProvider, GenerationRequest, Message
from core.pipeline.prompts import build_audio_analysis_prompt

logger = logging.getLogger(__name__)


class AnnotationError(RuntimeError):
    """The language model call failed, timed out, or returned nothing."""


class CreativeAnnotationStage:
    """Optional commentary stage.

    Args:
        provider: Generation provider. None = built on first use by
            ``provider_factory``; a factory error is a soft failure too.
        provider_factory: Zero-argument callable returning a provider.
        config: Prompt size, sampling parameters and timeout.
    """

    def __init__(
        self,
        provider: GenerationProvider | None = None,
        *,
        provider_factory: Callable[[], GenerationProvider] | None = None,
        config: AnalysisConfig = DEFAULT_CONFIG,
    ) -> None:
        self._provider = provider
        self._provider_factory = provider_factory
        self._config = config

    def _get_provider(self) -> GenerationProvider:
        if self._provider is None:
            if self._provider_factory is None:
                from ingestion.generation import create_generation_provider

                self._provider_factory = create_generation_provider
            self._provider = self._provider_factory()
        return self._provider

    def build_request(self, features: FeatureSet, media_url: str) -> GenerationRequest:
        prompt = build_audio_analysis_prompt(
            features, media_url, max_chords=self._config.max_prompt_chords
        )
        return GenerationRequest(
            messages=(Message(role="user", content=prompt),),
            temperature=self._config.annotation_temperature,
            max_tokens=self._config.annotation_max_tokens,
            media_url=media_url,
            timeout_seconds=self._config.annotation_timeout_seconds,
        )

    def request_commentary(self, features: FeatureSet, media_url: str) -> str:
        """Call the model and wait at most ``annotation_timeout_seconds``.

        Raises:
            AnnotationError: Provider unavailable, call failed, timed out,
                or returned empty text.
        """
        try:
            provider = self._get_provider()
        except Exception as exc:
            raise AnnotationError(f"Generation provider unavailable: {exc}") from exc

        request = self.build_request(features, media_url)
        timeout = self._config.annotation_timeout_seconds

        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="annotation")
        try:
            future = executor.submit(provider.generate, request)
            try:
                response = future.result(timeout=timeout)
            except FutureTimeoutError as exc:
                future.cancel()
                raise AnnotationError(f"Creative analysis timed out after {timeout:.0f}s") from exc
            except Exception as exc:
                raise AnnotationError(f"Creative analysis failed: {exc}") from exc
        finally:
            # Do not block on a hung call; the worker finishes in the background.
            executor.shutdown(wait=False)

        text = (response.content or "").strip()
        if not text:
            raise AnnotationError("Creative analysis returned empty text")
        logger.info(
            "Creative analysis from %s: %d chars (%d in / %d out tokens)",
            response.model,
            len(text),
            response.usage_input_tokens,
            response.usage_output_tokens,
        )
        return text

    def annotate(self, features: FeatureSet, media_url: str | None) -> str | None:
        """Commentary text, or None when skipped or failed.

        With no ``media_url`` the model is never called.
        """
        if not media_url:
            logger.info("Skipping creative analysis (no audio URL)")
            return None
        try:
            return self.request_commentary(features, media_url)
        except AnnotationError as exc:
            logger.warning("%s", exc)
            return None
        except Exception as exc:
            logger.warning("Creative analysis failed unexpectedly: %s", exc)
            return None
