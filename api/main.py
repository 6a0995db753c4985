from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response

from api.routes.analyze import router as analyze_router
from infrastructure.metrics import get_metrics_response

# Provider keys and UPLOAD_URL must be in the environment before the first request
load_dotenv()

# Local drop-zone UI dev servers (CRA on 3000, Vite on 5173)
_UI_ORIGINS = [
    f"http://{host}:{port}" for host in ("localhost", "127.0.0.1") for port in (3000, 5173)
]

app = FastAPI(
    title="Audio Analysis Pipeline",
    description="Tempo, key, chord progression and spectral features, with optional AI commentary.",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_UI_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(analyze_router)


@app.get("/health")
def health() -> dict[str, str]:
    """Liveness check. Does not touch librosa or the language model."""
    return {"status": "ok"}


@app.get("/metrics")
def metrics() -> Response:
    """Pipeline run, stage timing and soft-failure counters for Prometheus."""
    body, content_type = get_metrics_response()
    return Response(content=body, media_type=content_type)
