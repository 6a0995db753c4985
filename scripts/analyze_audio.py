"""CLI script: analyze one audio file and print progress plus the result.

Usage:
    # Full pipeline (technical + upload + creative commentary):
    python scripts/analyze_audio.py /abs/path/track.wav

    # Technical features only, printed as a sectioned report:
    python scripts/analyze_audio.py /abs/path/track.wav --technical-only

    # Quick preview of a long file (non-overlapping chord frames):
    python scripts/analyze_audio.py /abs/path/track.wav --fast

    # Save the AnalysisResult as JSON:
    python scripts/analyze_audio.py track.wav --output results/track.json

Output:
    Progress lines as each stage starts and completes, then the analysis
    message (or the feature report with --technical-only).

Environment variables read:
    LLM_PROVIDER        — openrouter (default) | openai | anthropic
    OPENROUTER_API_KEY  — required for the default provider
    ANNOTATION_MODEL    — overrides the provider's default model
    UPLOAD_URL          — overrides the temporary upload endpoint
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from dataclasses import replace
from pathlib import Path

# Allow running from the repo root without installing the package.
sys.path.insert(0, str(Path(__file__).parent.parent))

from dotenv import load_dotenv  # noqa: E402

from core.audio.types import AudioSource  # noqa: E402
from core.config import DEFAULT_CONFIG, FAST_CONFIG, VALID_UPLOAD_TTLS  # noqa: E402
from core.pipeline.report import format_feature_report  # noqa: E402
from core.pipeline.types import ProgressEvent  # noqa: E402

logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(message)s")
logger = logging.getLogger(__name__)


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Analyze an audio file: tempo, key, chords, spectral features "
        "and optional AI commentary."
    )
    parser.add_argument("path", help="Audio file (wav, mp3, flac, ogg, aiff, m4a).")
    parser.add_argument(
        "--name",
        default=None,
        help="Display name used in messages. Defaults to the file's basename.",
    )
    parser.add_argument(
        "--technical-only",
        action="store_true",
        default=False,
        help="Skip upload and commentary; print the full feature report.",
    )
    parser.add_argument(
        "--fast",
        action="store_true",
        default=False,
        help="Use non-overlapping chord frames and fewer spectral peaks.",
    )
    parser.add_argument(
        "--ttl",
        choices=sorted(VALID_UPLOAD_TTLS),
        default=None,
        help="Expiry of the temporary upload (default: 1h).",
    )
    parser.add_argument(
        "--output",
        type=str,
        default=None,
        metavar="PATH",
        help="Write the AnalysisResult JSON to this path.",
    )
    parser.add_argument(
        "--quiet",
        action="store_true",
        default=False,
        help="Only log warnings and errors.",
    )
    return parser.parse_args()


def _print_event(event: ProgressEvent) -> None:
    if event.type == "result":
        return
    marker = "✔" if event.status == "complete" else "…"
    print(f"[{event.step_name}] {marker} {event.message}", flush=True)


def _run_technical_only(source: AudioSource, config) -> int:
    from ingestion.feature_backend import get_feature_backend
    from ingestion.technical_analysis import TechnicalAnalysisStage

    features = TechnicalAnalysisStage(get_feature_backend(), config).run(source)
    print(format_feature_report(features))
    return 0


def main() -> int:
    args = _parse_args()
    load_dotenv()
    if args.quiet:
        logging.getLogger().setLevel(logging.WARNING)

    config = FAST_CONFIG if args.fast else DEFAULT_CONFIG
    if args.ttl:
        config = replace(config, upload_ttl=args.ttl)

    source = AudioSource(path=str(Path(args.path).resolve()), display_name=args.name)
    logger.info("Analyzing %s", source.path)

    if args.technical_only:
        from ingestion.audio_loader import DecodeError

        try:
            return _run_technical_only(source, config)
        except DecodeError as exc:
            logger.error("%s", exc)
            return 1

    from ingestion.pipeline import PipelineOrchestrator

    result = PipelineOrchestrator(config=config).run(source, sink=_print_event)

    print()
    print(result.message)
    print()
    print(result.final_message)

    if args.output:
        out = Path(args.output)
        out.parent.mkdir(parents=True, exist_ok=True)
        out.write_text(json.dumps(result.to_dict(), indent=2, ensure_ascii=False))
        logger.info("Result saved to %s", out)

    return 0 if result.succeeded else 1


if __name__ == "__main__":
    sys.exit(main())
